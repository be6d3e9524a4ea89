from __future__ import annotations

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from voting.exceptions import ElectionError, NotFound
from voting.models import Election, ParticipationRecord, PowerGrant, Voter

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    Election.Status.pending.value: frozenset({Election.Status.active.value}),
    Election.Status.active.value: frozenset({Election.Status.finalized.value}),
    Election.Status.finalized.value: frozenset(),
}


@transaction.atomic
def set_election_status(*, election_id: int, status: str, actor: str | None = None) -> Election:
    """Move an election along pending -> active -> finalized.

    Allocation only branches on the stored status, so the row is locked while
    it changes to keep concurrent transitions from interleaving.
    """
    try:
        election = Election.objects.select_for_update().get(pk=election_id)
    except Election.DoesNotExist as exc:
        raise NotFound("election not found") from exc

    if status not in Election.Status.values:
        raise ElectionError(f"unknown election status: {status!r}")

    current = str(election.status)
    status = str(status)
    if status not in _ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise ElectionError(f"cannot move election from {current} to {status}")

    now = timezone.now()
    election.status = status
    update_fields = ["status", "updated_at"]
    if status == Election.Status.active:
        election.started_at = now
        update_fields.append("started_at")
    elif status == Election.Status.finalized:
        election.finished_at = now
        update_fields.append("finished_at")
    election.save(update_fields=update_fields)

    logger.info("Election %s moved from %s to %s (actor=%s)", election.pk, current, status, actor or "-")
    return election


@transaction.atomic
def grant_powers(*, voter_id: int, powers: int, reason: str = "", granted_by: str = "") -> Voter:
    """Add (or, with a negative value, revoke) delegated powers for a voter.

    The increment is applied in SQL so concurrent grants add up. Revocations
    are refused while any election is active and for voters who have already
    spent votes, since participation records and reports are measured against
    the current entitlement and must keep votes_used <= entitlement.
    """
    if isinstance(powers, bool) or not isinstance(powers, int) or powers == 0:
        raise ElectionError("powers must be a non-zero whole number")

    if not Voter.objects.filter(pk=voter_id).exists():
        raise NotFound("voter not found")

    if powers < 0 and Election.objects.filter(status=Election.Status.active).exists():
        raise ElectionError("cannot revoke powers while an election is active")

    if powers < 0 and ParticipationRecord.objects.filter(voter_id=voter_id, votes_used__gt=0).exists():
        raise ElectionError("cannot revoke powers from a voter who has already voted")

    updated = Voter.objects.filter(pk=voter_id, powers__gte=max(-powers, 0)).update(
        powers=F("powers") + powers,
        updated_at=timezone.now(),
    )
    if updated != 1:
        raise ElectionError("voter does not have that many powers to revoke")

    PowerGrant.objects.create(
        voter_id=voter_id,
        powers=powers,
        reason=str(reason or "").strip(),
        granted_by=str(granted_by or "").strip(),
    )

    voter = Voter.objects.get(pk=voter_id)
    logger.info("Granted %+d powers to voter %s (now %s)", powers, voter_id, voter.powers)
    return voter
