"""Ballot submission and the voter's remaining-votes view."""

import json

from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from voting.allocation import AllocationResult, allocate
from voting.exceptions import AllocationErrorKind, VotingError
from voting.participation import ballot_status_for
from voting.views_utils import authentication_required, error_response, get_voter_id, status_for_kind


def _coerce_quantity(raw: object) -> object:
    # Whatever cannot be read as an integer is handed through unchanged so the
    # allocation boundary reports it as invalid_quantity.
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            return text
    return raw


def _parse_vote_payload(request: HttpRequest) -> tuple[int, object]:
    if request.content_type and request.content_type.startswith("application/json"):
        raw = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("request body must be a JSON object")
        candidate_raw = data.get("candidate_id")
        quantity_raw = data.get("quantity")
    else:
        candidate_raw = request.POST.get("candidate_id")
        quantity_raw = request.POST.get("quantity")

    if candidate_raw is None or str(candidate_raw).strip() == "":
        raise ValueError("candidate_id is required")
    if isinstance(candidate_raw, bool):
        raise ValueError("candidate_id must be an integer")
    try:
        candidate_id = int(str(candidate_raw).strip())
    except ValueError as exc:
        raise ValueError("candidate_id must be an integer") from exc

    if quantity_raw is None:
        quantity_raw = ""
    return candidate_id, _coerce_quantity(quantity_raw)


def _allocation_payload(result: AllocationResult) -> dict[str, object]:
    return {
        "ok": result.ok,
        "error": str(result.error) if result.error else None,
        "message": result.message,
        "remaining": result.remaining,
        "votes_used": result.votes_used,
        "entitlement": result.entitlement,
        "retryable": result.retryable,
    }


@require_POST
def election_vote_submit(request: HttpRequest, election_id: int, office_id: int) -> JsonResponse:
    voter_id = get_voter_id(request)
    if voter_id is None:
        return authentication_required()

    try:
        candidate_id, quantity = _parse_vote_payload(request)
    except (ValueError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        return error_response(AllocationErrorKind.invalid_target, str(exc), status=400)

    result = allocate(
        election_id=election_id,
        voter_id=voter_id,
        office_id=office_id,
        candidate_id=candidate_id,
        quantity=quantity,  # type: ignore[arg-type]
    )
    status = 200 if result.ok else status_for_kind(result.error)
    return JsonResponse(_allocation_payload(result), status=status)


@require_GET
def election_ballot(request: HttpRequest, election_id: int) -> JsonResponse:
    voter_id = get_voter_id(request)
    if voter_id is None:
        return authentication_required()

    try:
        offices = ballot_status_for(election_id=election_id, voter_id=voter_id)
    except VotingError as exc:
        return error_response(exc.kind or AllocationErrorKind.not_found, str(exc))

    return JsonResponse(
        {
            "ok": True,
            "election_id": election_id,
            "offices": [
                {
                    "office_id": o.office_id,
                    "name": o.name,
                    "entitlement": o.entitlement,
                    "votes_used": o.votes_used,
                    "remaining": o.remaining,
                }
                for o in offices
            ],
        }
    )
