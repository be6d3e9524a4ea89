from __future__ import annotations

import logging

from django.db import DatabaseError, connection
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET

from voting.models import ParticipationRecord, TallyEntry

logger = logging.getLogger(__name__)

_REQUIRED_TABLES: tuple[str, ...] = (
    ParticipationRecord._meta.db_table,
    TallyEntry._meta.db_table,
)


@require_GET
def healthz(_request: HttpRequest) -> JsonResponse:
    return JsonResponse({"status": "ok"})


@require_GET
def readyz(_request: HttpRequest) -> JsonResponse:
    """Ready once the database answers and the ballot tables are migrated."""
    try:
        connection.ensure_connection()
        tables = set(connection.introspection.table_names())
    except DatabaseError as exc:
        logger.exception("Readiness check failed: database unreachable")
        return JsonResponse({"status": "not ready", "error": str(exc)}, status=503)

    missing = sorted(t for t in _REQUIRED_TABLES if t not in tables)
    if missing:
        logger.error("Readiness check failed: missing tables %s", ", ".join(missing))
        return JsonResponse({"status": "not ready", "missing_tables": missing}, status=503)

    return JsonResponse({"status": "ready", "database": "ok"})
