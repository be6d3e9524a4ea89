import logging

_PROBE_PATHS: tuple[str, ...] = ("/healthz", "/readyz")


class HealthEndpointFilter(logging.Filter):
    """Drop successful load-balancer probe lines from access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if not any(path in message for path in _PROBE_PATHS):
            return True
        # Failing probes stay visible.
        return " 200 " not in message
