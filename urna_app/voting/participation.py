"""Participation reporting: who has voted and how much, never for whom.

Everything here is computed from participation rows and the voter roster.
This module must not read tally data.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from voting.exceptions import InvalidTarget
from voting.ledger import entitlement
from voting.storage import VoteStore, get_vote_store


@dataclass(frozen=True)
class VoterParticipation:
    voter_id: int
    full_name: str
    entitlement: int
    votes_used_total: int
    offices_completed: int
    offices_total: int

    @property
    def has_voted(self) -> bool:
        return self.votes_used_total > 0


@dataclass(frozen=True)
class ParticipationSummary:
    voters_total: int
    voters_voted: int
    voters_completed: int
    votes_available_total: int
    votes_used_total: int


@dataclass(frozen=True)
class OfficeBallotStatus:
    office_id: int
    name: str
    entitlement: int
    votes_used: int

    @property
    def remaining(self) -> int:
        return max(self.entitlement - self.votes_used, 0)


def participation_for(*, election_id: int, store: VoteStore | None = None) -> list[VoterParticipation]:
    """Per-voter participation for an election, one row per active voter."""
    store = store or get_vote_store()
    election = store.get_election(election_id)
    office_ids = {o.id for o in store.list_offices(election.id)}

    used_by_voter: dict[int, dict[int, int]] = defaultdict(dict)
    for row in store.usage_rows(election_id=election.id):
        if row.office_id not in office_ids:
            continue
        per_office = used_by_voter[row.voter_id]
        per_office[row.office_id] = per_office.get(row.office_id, 0) + row.votes_used

    report: list[VoterParticipation] = []
    for voter in store.list_voters():
        cap = entitlement(voter)
        per_office = used_by_voter.get(voter.id, {})
        report.append(
            VoterParticipation(
                voter_id=voter.id,
                full_name=voter.full_name,
                entitlement=cap,
                votes_used_total=sum(per_office.values()),
                offices_completed=sum(1 for used in per_office.values() if used >= cap),
                offices_total=len(office_ids),
            )
        )

    report.sort(key=lambda r: (r.full_name, r.voter_id))
    return report


def participation_summary(rows: list[VoterParticipation]) -> ParticipationSummary:
    return ParticipationSummary(
        voters_total=len(rows),
        voters_voted=sum(1 for r in rows if r.has_voted),
        voters_completed=sum(1 for r in rows if r.offices_total and r.offices_completed >= r.offices_total),
        # Each office carries the full allowance.
        votes_available_total=sum(r.entitlement * r.offices_total for r in rows),
        votes_used_total=sum(r.votes_used_total for r in rows),
    )


def ballot_status_for(
    *,
    election_id: int,
    voter_id: int,
    office_id: int | None = None,
    store: VoteStore | None = None,
) -> list[OfficeBallotStatus]:
    """Remaining votes per office for one voter, optionally narrowed to one office."""
    store = store or get_vote_store()
    election = store.get_election(election_id)
    cap = entitlement(store.get_voter(voter_id))

    offices = store.list_offices(election.id)
    if office_id is not None:
        offices = [o for o in offices if o.id == office_id]
        if not offices:
            raise InvalidTarget("office does not belong to this election")

    return [
        OfficeBallotStatus(
            office_id=office.id,
            name=office.name,
            entitlement=cap,
            votes_used=store.votes_used(election_id=election.id, voter_id=voter_id, office_id=office.id),
        )
        for office in offices
    ]
