from django.http import HttpRequest, JsonResponse

from voting.exceptions import AllocationErrorKind
from voting.models import Voter

# Written by the identity subsystem at login.
SESSION_VOTER_KEY = "_voter_id"

_STATUS_BY_KIND: dict[AllocationErrorKind, int] = {
    AllocationErrorKind.not_found: 404,
    AllocationErrorKind.election_not_active: 409,
    AllocationErrorKind.conflict: 409,
    AllocationErrorKind.invalid_target: 400,
    AllocationErrorKind.invalid_quantity: 400,
    AllocationErrorKind.insufficient_votes: 400,
}


def get_voter_id(request: HttpRequest) -> int | None:
    """Return the session voter's id, or None for anonymous requests."""
    session = request.session if hasattr(request, "session") else None
    raw = session.get(SESSION_VOTER_KEY) if session else None
    try:
        voter_id = int(raw)
    except (TypeError, ValueError):
        return None
    return voter_id if voter_id > 0 else None


def is_admin_voter(voter_id: int) -> bool:
    return Voter.objects.filter(pk=voter_id, is_active=True, role=Voter.Role.admin).exists()


def status_for_kind(kind: AllocationErrorKind | None) -> int:
    if kind is None:
        return 400
    return _STATUS_BY_KIND.get(kind, 400)


def error_response(
    kind: AllocationErrorKind | str,
    message: str,
    *,
    status: int | None = None,
    remaining: int | None = None,
) -> JsonResponse:
    if status is None:
        status = status_for_kind(kind if isinstance(kind, AllocationErrorKind) else None)
    return JsonResponse(
        {"ok": False, "error": str(kind), "message": message, "remaining": remaining},
        status=status,
    )


def authentication_required() -> JsonResponse:
    return error_response("authentication_required", "Authentication required.", status=403)
