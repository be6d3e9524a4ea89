"""Anonymous tally store and the results aggregator."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from voting.exceptions import InvalidTarget
from voting.storage import CandidateInfo, ElectionInfo, OfficeInfo, VoteStore, get_vote_store


@dataclass(frozen=True)
class CandidateResult:
    candidate_id: int
    name: str
    list_number: int | None
    votes: int
    percent: Decimal = Decimal("0.0")


@dataclass(frozen=True)
class OfficeResults:
    office_id: int
    name: str
    total_votes: int
    candidates: list[CandidateResult]


@dataclass(frozen=True)
class ElectionResults:
    election_id: int
    name: str
    status: str
    offices: list[OfficeResults]

    @property
    def total_votes(self) -> int:
        return sum(o.total_votes for o in self.offices)


def append_tally(*, store: VoteStore, election_id: int, office_id: int, candidate_id: int, quantity: int) -> None:
    """Append one anonymous tally increment. Rows are never updated or deleted."""
    store.insert_tally(
        election_id=election_id,
        office_id=office_id,
        candidate_id=candidate_id,
        quantity=quantity,
    )


def _ranking_key(result: CandidateResult) -> tuple[int, int, int, str, int]:
    # Numbered candidates first, then by list number, name and id for a
    # deterministic order among ties.
    has_no_number = 1 if result.list_number is None else 0
    return (-result.votes, has_no_number, result.list_number or 0, result.name, result.candidate_id)


def _percent(votes: int, total: int) -> Decimal:
    if total <= 0:
        return Decimal("0.0")
    return (Decimal(votes) * 100 / Decimal(total)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _office_results(*, store: VoteStore, election_id: int, office: OfficeInfo) -> OfficeResults:
    roster: list[CandidateInfo] = store.list_candidates(office.id)
    totals = store.tally_totals(election_id=election_id, office_id=office.id)
    total_votes = sum(totals.get(c.id, 0) for c in roster)

    results = [
        CandidateResult(
            candidate_id=c.id,
            name=c.name,
            list_number=c.list_number,
            votes=totals.get(c.id, 0),
            percent=_percent(totals.get(c.id, 0), total_votes),
        )
        for c in roster
    ]
    results.sort(key=_ranking_key)
    return OfficeResults(office_id=office.id, name=office.name, total_votes=total_votes, candidates=results)


def results_for(*, election_id: int, office_id: int, store: VoteStore | None = None) -> list[CandidateResult]:
    """Per-candidate vote totals for one office, zero-filled and ranked.

    Reads committed tally rows only; while voting is open the figures are live
    and may lag concurrent submissions.
    """
    store = store or get_vote_store()
    office = store.get_office(office_id)
    if office.election_id != election_id:
        raise InvalidTarget("office does not belong to this election")
    return _office_results(store=store, election_id=election_id, office=office).candidates


def _election_results(*, store: VoteStore, election: ElectionInfo) -> ElectionResults:
    return ElectionResults(
        election_id=election.id,
        name=election.name,
        status=election.status,
        offices=[
            _office_results(store=store, election_id=election.id, office=office)
            for office in store.list_offices(election.id)
        ],
    )


def election_results(*, election_id: int, store: VoteStore | None = None) -> ElectionResults:
    store = store or get_vote_store()
    return _election_results(store=store, election=store.get_election(election_id))


def election_results_by_link(*, public_link: str, store: VoteStore | None = None) -> ElectionResults:
    store = store or get_vote_store()
    return _election_results(store=store, election=store.get_election_by_public_link(public_link))
