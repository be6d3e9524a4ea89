"""Storage access for the vote engine.

The engine talks to storage only through the `VoteStore` protocol. Production
uses `DjangoVoteStore` (one per process, see `get_vote_store`); tests can swap
in `InMemoryVoteStore`, which offers the same transactional guarantees inside
a single process.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from typing import Protocol, TypeVar

from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from voting.exceptions import NotFound
from voting.models import (
    Candidate,
    Election,
    Office,
    ParticipationRecord,
    TallyEntry,
    Voter,
)

_T = TypeVar("_T")


@dataclass(frozen=True)
class VoterInfo:
    id: int
    full_name: str
    base_votes: int
    powers: int


@dataclass(frozen=True)
class ElectionInfo:
    id: int
    name: str
    status: str
    public_link: str


@dataclass(frozen=True)
class OfficeInfo:
    id: int
    election_id: int
    name: str


@dataclass(frozen=True)
class CandidateInfo:
    id: int
    office_id: int
    name: str
    list_number: int | None


@dataclass(frozen=True)
class UsageRow:
    voter_id: int
    office_id: int
    votes_used: int


class VoteStore(Protocol):
    def atomic(self) -> AbstractContextManager[None]: ...

    def get_voter(self, voter_id: int) -> VoterInfo: ...

    def get_election(self, election_id: int) -> ElectionInfo: ...

    def get_election_by_public_link(self, public_link: str) -> ElectionInfo: ...

    def get_office(self, office_id: int) -> OfficeInfo: ...

    def get_candidate(self, candidate_id: int) -> CandidateInfo: ...

    def list_offices(self, election_id: int) -> list[OfficeInfo]: ...

    def list_candidates(self, office_id: int) -> list[CandidateInfo]: ...

    def list_voters(self) -> list[VoterInfo]: ...

    def votes_used(self, *, election_id: int, voter_id: int, office_id: int) -> int: ...

    def increment_usage(self, *, election_id: int, voter_id: int, office_id: int, delta: int, cap: int) -> bool:
        """Add `delta` to votes_used only if the result stays within `cap`.

        Must be a single indivisible operation. Returns False when the
        conditional write matched nothing.
        """
        ...

    def insert_tally(self, *, election_id: int, office_id: int, candidate_id: int, quantity: int) -> None: ...

    def tally_totals(self, *, election_id: int, office_id: int) -> dict[int, int]: ...

    def usage_rows(self, *, election_id: int) -> list[UsageRow]: ...


class DjangoVoteStore:
    def atomic(self) -> AbstractContextManager[None]:
        return transaction.atomic()

    def get_voter(self, voter_id: int) -> VoterInfo:
        try:
            voter = Voter.objects.only("id", "full_name", "base_votes", "powers").get(pk=voter_id)
        except Voter.DoesNotExist as exc:
            raise NotFound("voter not found") from exc
        return _voter_info(voter)

    def get_election(self, election_id: int) -> ElectionInfo:
        try:
            election = Election.objects.only("id", "name", "status", "public_link").get(pk=election_id)
        except Election.DoesNotExist as exc:
            raise NotFound("election not found") from exc
        return _election_info(election)

    def get_election_by_public_link(self, public_link: str) -> ElectionInfo:
        election = (
            Election.objects.only("id", "name", "status", "public_link")
            .filter(public_link=str(public_link or "").strip())
            .first()
        )
        if election is None:
            raise NotFound("election not found")
        return _election_info(election)

    def get_office(self, office_id: int) -> OfficeInfo:
        try:
            office = Office.objects.only("id", "election_id", "name").get(pk=office_id)
        except Office.DoesNotExist as exc:
            raise NotFound("office not found") from exc
        return OfficeInfo(id=office.id, election_id=office.election_id, name=office.name)

    def get_candidate(self, candidate_id: int) -> CandidateInfo:
        try:
            candidate = Candidate.objects.only("id", "office_id", "name", "list_number").get(pk=candidate_id)
        except Candidate.DoesNotExist as exc:
            raise NotFound("candidate not found") from exc
        return _candidate_info(candidate)

    def list_offices(self, election_id: int) -> list[OfficeInfo]:
        return [
            OfficeInfo(id=o.id, election_id=o.election_id, name=o.name)
            for o in Office.objects.filter(election_id=election_id).only("id", "election_id", "name").order_by("id")
        ]

    def list_candidates(self, office_id: int) -> list[CandidateInfo]:
        return [
            _candidate_info(c)
            for c in Candidate.objects.filter(office_id=office_id).only("id", "office_id", "name", "list_number")
        ]

    def list_voters(self) -> list[VoterInfo]:
        return [
            _voter_info(v)
            for v in Voter.objects.filter(is_active=True).only("id", "full_name", "base_votes", "powers")
        ]

    def votes_used(self, *, election_id: int, voter_id: int, office_id: int) -> int:
        agg = ParticipationRecord.objects.filter(
            election_id=election_id,
            voter_id=voter_id,
            office_id=office_id,
        ).aggregate(total=Sum("votes_used"))
        return int(agg.get("total") or 0)

    def increment_usage(self, *, election_id: int, voter_id: int, office_id: int, delta: int, cap: int) -> bool:
        if delta > cap:
            return False

        # The unique constraint on (election, voter, office) settles concurrent
        # first inserts; get_or_create re-reads the winner's row.
        record, _created = ParticipationRecord.objects.get_or_create(
            election_id=election_id,
            voter_id=voter_id,
            office_id=office_id,
        )

        # Check and increment in one statement. The row lock taken by UPDATE
        # makes a racing writer re-evaluate the WHERE clause after we commit.
        updated = ParticipationRecord.objects.filter(
            pk=record.pk,
            votes_used__lte=cap - delta,
        ).update(
            votes_used=F("votes_used") + delta,
            last_voted_at=timezone.now(),
        )
        return updated == 1

    def insert_tally(self, *, election_id: int, office_id: int, candidate_id: int, quantity: int) -> None:
        TallyEntry.objects.create(
            election_id=election_id,
            office_id=office_id,
            candidate_id=candidate_id,
            quantity=quantity,
        )

    def tally_totals(self, *, election_id: int, office_id: int) -> dict[int, int]:
        rows = (
            TallyEntry.objects.filter(election_id=election_id, office_id=office_id)
            .values("candidate_id")
            .annotate(total=Sum("quantity"))
            .order_by()
        )
        return {int(row["candidate_id"]): int(row["total"] or 0) for row in rows}

    def usage_rows(self, *, election_id: int) -> list[UsageRow]:
        return [
            UsageRow(voter_id=int(voter_id), office_id=int(office_id), votes_used=int(votes_used))
            for voter_id, office_id, votes_used in ParticipationRecord.objects.filter(
                election_id=election_id,
            ).values_list("voter_id", "office_id", "votes_used")
        ]


def _voter_info(voter: Voter) -> VoterInfo:
    return VoterInfo(
        id=voter.id,
        full_name=voter.full_name,
        base_votes=int(voter.base_votes),
        powers=int(voter.powers),
    )


def _election_info(election: Election) -> ElectionInfo:
    return ElectionInfo(
        id=election.id,
        name=election.name,
        status=str(election.status),
        public_link=election.public_link,
    )


def _candidate_info(candidate: Candidate) -> CandidateInfo:
    return CandidateInfo(
        id=candidate.id,
        office_id=candidate.office_id,
        name=candidate.name,
        list_number=candidate.list_number,
    )


class InMemoryVoteStore:
    """Process-local store with the same atomicity contract as the database.

    Atomic blocks are serialized by a re-entrant lock and restore the
    participation/tally state they started from when an exception escapes,
    which gives each nesting level savepoint semantics.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._voters: dict[int, VoterInfo] = {}
        self._active_voter_ids: set[int] = set()
        self._elections: dict[int, ElectionInfo] = {}
        self._offices: dict[int, OfficeInfo] = {}
        self._candidates: dict[int, CandidateInfo] = {}
        self._usage: dict[tuple[int, int, int], int] = {}
        self._tally: list[tuple[int, int, int, int]] = []

    # Roster setup. These stand in for the external management subsystems.

    def add_voter(self, *, full_name: str, base_votes: int = 1, powers: int = 0, is_active: bool = True) -> VoterInfo:
        with self._lock:
            voter = VoterInfo(id=next(self._ids), full_name=full_name, base_votes=base_votes, powers=powers)
            self._voters[voter.id] = voter
            if is_active:
                self._active_voter_ids.add(voter.id)
            return voter

    def add_election(self, *, name: str, status: str = Election.Status.active, public_link: str = "") -> ElectionInfo:
        with self._lock:
            election_id = next(self._ids)
            election = ElectionInfo(
                id=election_id,
                name=name,
                status=str(status),
                public_link=public_link or f"eleccion-{election_id}",
            )
            self._elections[election.id] = election
            return election

    def set_election_status(self, election_id: int, status: str) -> ElectionInfo:
        with self._lock:
            current = self.get_election(election_id)
            updated = ElectionInfo(id=current.id, name=current.name, status=str(status), public_link=current.public_link)
            self._elections[election_id] = updated
            return updated

    def add_office(self, *, election_id: int, name: str) -> OfficeInfo:
        with self._lock:
            office = OfficeInfo(id=next(self._ids), election_id=election_id, name=name)
            self._offices[office.id] = office
            return office

    def add_candidate(self, *, office_id: int, name: str, list_number: int | None = None) -> CandidateInfo:
        with self._lock:
            candidate = CandidateInfo(id=next(self._ids), office_id=office_id, name=name, list_number=list_number)
            self._candidates[candidate.id] = candidate
            return candidate

    # VoteStore

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            usage_snapshot = dict(self._usage)
            tally_snapshot = list(self._tally)
            try:
                yield
            except BaseException:
                self._usage = usage_snapshot
                self._tally = tally_snapshot
                raise

    def get_voter(self, voter_id: int) -> VoterInfo:
        return self._lookup(self._voters, voter_id, "voter")

    def get_election(self, election_id: int) -> ElectionInfo:
        return self._lookup(self._elections, election_id, "election")

    def get_election_by_public_link(self, public_link: str) -> ElectionInfo:
        with self._lock:
            for election in self._elections.values():
                if election.public_link == public_link:
                    return election
        raise NotFound("election not found")

    def get_office(self, office_id: int) -> OfficeInfo:
        return self._lookup(self._offices, office_id, "office")

    def get_candidate(self, candidate_id: int) -> CandidateInfo:
        return self._lookup(self._candidates, candidate_id, "candidate")

    def list_offices(self, election_id: int) -> list[OfficeInfo]:
        with self._lock:
            return sorted((o for o in self._offices.values() if o.election_id == election_id), key=lambda o: o.id)

    def list_candidates(self, office_id: int) -> list[CandidateInfo]:
        with self._lock:
            return [c for c in self._candidates.values() if c.office_id == office_id]

    def list_voters(self) -> list[VoterInfo]:
        with self._lock:
            return [v for v in self._voters.values() if v.id in self._active_voter_ids]

    def votes_used(self, *, election_id: int, voter_id: int, office_id: int) -> int:
        with self._lock:
            return self._usage.get((election_id, voter_id, office_id), 0)

    def increment_usage(self, *, election_id: int, voter_id: int, office_id: int, delta: int, cap: int) -> bool:
        with self._lock:
            key = (election_id, voter_id, office_id)
            current = self._usage.get(key, 0)
            if current + delta > cap:
                return False
            self._usage[key] = current + delta
            return True

    def insert_tally(self, *, election_id: int, office_id: int, candidate_id: int, quantity: int) -> None:
        with self._lock:
            self._tally.append((election_id, office_id, candidate_id, quantity))

    def tally_totals(self, *, election_id: int, office_id: int) -> dict[int, int]:
        totals: dict[int, int] = {}
        with self._lock:
            for e_id, o_id, candidate_id, quantity in self._tally:
                if e_id == election_id and o_id == office_id:
                    totals[candidate_id] = totals.get(candidate_id, 0) + quantity
        return totals

    def usage_rows(self, *, election_id: int) -> list[UsageRow]:
        with self._lock:
            return [
                UsageRow(voter_id=voter_id, office_id=office_id, votes_used=votes_used)
                for (e_id, voter_id, office_id), votes_used in self._usage.items()
                if e_id == election_id
            ]

    def tally_row_count(self) -> int:
        with self._lock:
            return len(self._tally)

    def _lookup(self, table: dict[int, _T], key: int, label: str) -> _T:
        with self._lock:
            value = table.get(key)
        if value is None:
            raise NotFound(f"{label} not found")
        return value


_default_store: DjangoVoteStore | None = None
_default_store_lock = threading.Lock()


def get_vote_store() -> VoteStore:
    """Return the process-wide database-backed store."""
    global _default_store
    if _default_store is None:
        with _default_store_lock:
            if _default_store is None:
                _default_store = DjangoVoteStore()
    return _default_store
