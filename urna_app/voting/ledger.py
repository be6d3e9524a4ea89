"""Entitlement and the participation ledger.

The ledger records how many votes each voter has spent per office. It has no
way to record or read which candidate received them.
"""

import logging

from voting.exceptions import ConflictError
from voting.storage import VoteStore, VoterInfo

logger = logging.getLogger(__name__)


def entitlement(voter: VoterInfo) -> int:
    """Votes a voter may spend on each office: base allowance plus delegated powers."""
    return int(voter.base_votes) + int(voter.powers)


def votes_used(*, store: VoteStore, election_id: int, voter_id: int, office_id: int) -> int:
    return store.votes_used(election_id=election_id, voter_id=voter_id, office_id=office_id)


def record_usage(
    *,
    store: VoteStore,
    election_id: int,
    voter_id: int,
    office_id: int,
    delta: int,
    cap: int,
) -> None:
    """Create or advance the participation record by `delta`, capped at `cap`.

    Callers must run this inside `store.atomic()` together with the matching
    tally insert.
    """
    if not store.increment_usage(
        election_id=election_id,
        voter_id=voter_id,
        office_id=office_id,
        delta=delta,
        cap=cap,
    ):
        logger.warning(
            "Participation update lost a race: election=%s voter=%s office=%s",
            election_id,
            voter_id,
            office_id,
        )
        raise ConflictError("votes were spent concurrently; reload your remaining votes and try again")
