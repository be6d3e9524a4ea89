"""Public results and the participation dashboard feed.

Both are plain reads, so the results page can poll them on a timer and also
re-fetch on push notifications without any special handling.
"""

from dataclasses import asdict

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET

from voting.exceptions import AllocationErrorKind, VotingError
from voting.participation import participation_for, participation_summary
from voting.tally import ElectionResults, election_results_by_link
from voting.views_utils import authentication_required, error_response, get_voter_id, is_admin_voter


def _results_payload(results: ElectionResults) -> dict[str, object]:
    return {
        "election_id": results.election_id,
        "name": results.name,
        "status": results.status,
        "total_votes": results.total_votes,
        "offices": [
            {
                "office_id": office.office_id,
                "name": office.name,
                "total_votes": office.total_votes,
                "candidates": [
                    {
                        "candidate_id": c.candidate_id,
                        "name": c.name,
                        "list_number": c.list_number,
                        "votes": c.votes,
                        "percent": float(c.percent),
                    }
                    for c in office.candidates
                ],
            }
            for office in results.offices
        ],
    }


@require_GET
def election_public_results(request: HttpRequest, public_link: str) -> JsonResponse:
    try:
        results = election_results_by_link(public_link=public_link)
    except VotingError as exc:
        return error_response(exc.kind or AllocationErrorKind.not_found, str(exc))

    payload = _results_payload(results)
    payload["refresh_seconds"] = int(settings.VOTING_RESULTS_REFRESH_SECONDS)
    return JsonResponse(payload)


@require_GET
def election_participation(request: HttpRequest, election_id: int) -> JsonResponse:
    voter_id = get_voter_id(request)
    if voter_id is None:
        return authentication_required()
    if not is_admin_voter(voter_id):
        return error_response("forbidden", "Only administrators can view participation.", status=403)

    try:
        rows = participation_for(election_id=election_id)
    except VotingError as exc:
        return error_response(exc.kind or AllocationErrorKind.not_found, str(exc))

    return JsonResponse(
        {
            "election_id": election_id,
            "summary": asdict(participation_summary(rows)),
            "voters": [
                {
                    "voter_id": r.voter_id,
                    "full_name": r.full_name,
                    "entitlement": r.entitlement,
                    "votes_used_total": r.votes_used_total,
                    "offices_completed": r.offices_completed,
                    "offices_total": r.offices_total,
                    "has_voted": r.has_voted,
                }
                for r in rows
            ],
        }
    )
