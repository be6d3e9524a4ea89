"""Vote engine exception classes.

Every allocation failure maps to exactly one `AllocationErrorKind`; the
allocation boundary turns these exceptions into typed results.
"""

from enum import StrEnum


class AllocationErrorKind(StrEnum):
    election_not_active = "election_not_active"
    invalid_target = "invalid_target"
    invalid_quantity = "invalid_quantity"
    insufficient_votes = "insufficient_votes"
    conflict = "conflict"
    not_found = "not_found"


class VotingError(Exception):
    kind: AllocationErrorKind | None = None


class NotFound(VotingError):
    kind = AllocationErrorKind.not_found


class ElectionNotActive(VotingError):
    kind = AllocationErrorKind.election_not_active


class InvalidTarget(VotingError):
    kind = AllocationErrorKind.invalid_target


class InvalidQuantity(VotingError):
    kind = AllocationErrorKind.invalid_quantity


class InsufficientVotes(VotingError):
    kind = AllocationErrorKind.insufficient_votes

    def __init__(self, remaining: int) -> None:
        self.remaining = int(remaining)
        super().__init__(f"Only {self.remaining} votes remaining for this office")


class ConflictError(VotingError):
    """A concurrent writer advanced votes_used between our read and our write."""

    kind = AllocationErrorKind.conflict


class ElectionError(VotingError):
    """Administrative operation rejected (lifecycle transitions, power grants)."""


__all__ = [
    "AllocationErrorKind",
    "ConflictError",
    "ElectionError",
    "ElectionNotActive",
    "InsufficientVotes",
    "InvalidQuantity",
    "InvalidTarget",
    "NotFound",
    "VotingError",
]
