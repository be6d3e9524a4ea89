"""Vote allocation: the only write path into the participation ledger and the tally."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import DatabaseError, IntegrityError, OperationalError

from voting.exceptions import (
    AllocationErrorKind,
    ConflictError,
    ElectionNotActive,
    InsufficientVotes,
    InvalidQuantity,
    InvalidTarget,
    VotingError,
)
from voting.ledger import entitlement, record_usage, votes_used
from voting.models import Election
from voting.storage import VoteStore, get_vote_store
from voting.tally import append_tally

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationResult:
    ok: bool
    error: AllocationErrorKind | None = None
    message: str = ""
    remaining: int | None = None
    votes_used: int | None = None
    entitlement: int | None = None

    @property
    def retryable(self) -> bool:
        # Only a lost race is worth retrying, and only after re-reading the balance.
        return self.error == AllocationErrorKind.conflict


@dataclass(frozen=True)
class _Allocation:
    votes_used: int
    entitlement: int


def _validate_quantity(quantity: object) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity("quantity must be a whole number of votes")
    if quantity < 1:
        raise InvalidQuantity("You must use at least 1 vote")
    return quantity


def _allocate(
    *,
    store: VoteStore,
    election_id: int,
    voter_id: int,
    office_id: int,
    candidate_id: int,
    quantity: object,
) -> _Allocation:
    election = store.get_election(election_id)
    if election.status != Election.Status.active:
        raise ElectionNotActive(f"election is not active (status: {election.status})")

    office = store.get_office(office_id)
    candidate = store.get_candidate(candidate_id)
    if office.election_id != election.id or candidate.office_id != office.id:
        logger.warning(
            "Rejected allocation with mismatched target: election=%s office=%s voter=%s",
            election_id,
            office_id,
            voter_id,
        )
        raise InvalidTarget("candidate does not run for this office in this election")

    amount = _validate_quantity(quantity)

    voter = store.get_voter(voter_id)
    cap = entitlement(voter)

    with store.atomic():
        used = votes_used(store=store, election_id=election.id, voter_id=voter.id, office_id=office.id)
        remaining = cap - used
        if amount > remaining:
            raise InsufficientVotes(max(remaining, 0))

        # The conditional write re-checks the cap, so a racing submission that
        # spent votes after our read makes this raise ConflictError and roll back.
        record_usage(
            store=store,
            election_id=election.id,
            voter_id=voter.id,
            office_id=office.id,
            delta=amount,
            cap=cap,
        )
        append_tally(
            store=store,
            election_id=election.id,
            office_id=office.id,
            candidate_id=candidate.id,
            quantity=amount,
        )
        used_after = votes_used(store=store, election_id=election.id, voter_id=voter.id, office_id=office.id)

    return _Allocation(votes_used=used_after, entitlement=cap)


def _current_balance(*, store: VoteStore, election_id: int, voter_id: int, office_id: int) -> tuple[int, int] | None:
    try:
        cap = entitlement(store.get_voter(voter_id))
        used = votes_used(store=store, election_id=election_id, voter_id=voter_id, office_id=office_id)
    except (VotingError, DatabaseError):
        return None
    return used, cap


def _conflict_result(
    *,
    store: VoteStore,
    election_id: int,
    voter_id: int,
    office_id: int,
    message: str,
) -> AllocationResult:
    balance = _current_balance(store=store, election_id=election_id, voter_id=voter_id, office_id=office_id)
    return AllocationResult(
        ok=False,
        error=AllocationErrorKind.conflict,
        message=message,
        remaining=max(balance[1] - balance[0], 0) if balance else None,
        votes_used=balance[0] if balance else None,
        entitlement=balance[1] if balance else None,
    )


def allocate(
    *,
    election_id: int,
    voter_id: int,
    office_id: int,
    candidate_id: int,
    quantity: int,
    store: VoteStore | None = None,
) -> AllocationResult:
    """Spend `quantity` of the voter's votes for `office_id` on `candidate_id`.

    Not idempotent: every successful call is a separate ballot action and
    spends votes again. Failures never raise; they come back as a rejected
    `AllocationResult` carrying the error kind and, where known, the voter's
    remaining balance on the office.
    """
    store = store or get_vote_store()

    try:
        allocation = _allocate(
            store=store,
            election_id=election_id,
            voter_id=voter_id,
            office_id=office_id,
            candidate_id=candidate_id,
            quantity=quantity,
        )
    except InsufficientVotes as exc:
        logger.info(
            "Allocation rejected (%s): election=%s office=%s voter=%s remaining=%s",
            exc.kind,
            election_id,
            office_id,
            voter_id,
            exc.remaining,
        )
        balance = _current_balance(store=store, election_id=election_id, voter_id=voter_id, office_id=office_id)
        return AllocationResult(
            ok=False,
            error=exc.kind,
            message=str(exc),
            remaining=exc.remaining,
            votes_used=balance[0] if balance else None,
            entitlement=balance[1] if balance else None,
        )
    except ConflictError as exc:
        return _conflict_result(
            store=store,
            election_id=election_id,
            voter_id=voter_id,
            office_id=office_id,
            message=str(exc),
        )
    except (OperationalError, IntegrityError) as exc:
        # A busy database (SQLite lock timeout) or a lost unique insert: the
        # transaction rolled back and the voter may simply retry.
        logger.warning(
            "Allocation hit a database conflict (%s): election=%s office=%s voter=%s",
            type(exc).__name__,
            election_id,
            office_id,
            voter_id,
        )
        return _conflict_result(
            store=store,
            election_id=election_id,
            voter_id=voter_id,
            office_id=office_id,
            message="the ballot could not be recorded right now; reload your remaining votes and try again",
        )
    except VotingError as exc:
        if not isinstance(exc, InvalidTarget):
            logger.info(
                "Allocation rejected (%s): election=%s office=%s voter=%s",
                exc.kind,
                election_id,
                office_id,
                voter_id,
            )
        return AllocationResult(ok=False, error=exc.kind, message=str(exc))

    logger.info("Allocation recorded: election=%s office=%s quantity=%s", election_id, office_id, quantity)
    return AllocationResult(
        ok=True,
        message="Vote recorded",
        remaining=allocation.entitlement - allocation.votes_used,
        votes_used=allocation.votes_used,
        entitlement=allocation.entitlement,
    )
