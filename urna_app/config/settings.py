"""Django settings for Urna.

Every deployment knob is read from the environment so the same image can run
locally (sqlite), under CI, and behind gunicorn with PostgreSQL.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import urlparse


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


BASE_DIR = Path(__file__).resolve().parent.parent

DEBUG: bool = _env_bool("DEBUG")

# `manage.py check --deploy` flags the insecure default.
SECRET_KEY: str = os.getenv("SECRET_KEY", "") or "django-insecure-urna-development-only"

if os.getenv("ALLOWED_HOSTS"):
    ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "").split(",") if h.strip()]
else:
    ALLOWED_HOSTS = ["localhost", "127.0.0.1"]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "django.contrib.sessions",
    "voting",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES: list[dict[str, object]] = []

# Ballot transactions take the write lock at BEGIN so concurrent submissions
# queue on the busy timeout instead of failing a read-to-write lock upgrade.
# Tests use a file so threaded tests share one database across connections.
SQLITE_TIMEOUT_SECONDS: int = int(os.getenv("SQLITE_TIMEOUT_SECONDS", "20"))
_SQLITE_OPTIONS: dict[str, object] = {"transaction_mode": "IMMEDIATE", "timeout": SQLITE_TIMEOUT_SECONDS}
_SQLITE_TEST: dict[str, str] = {
    "NAME": os.getenv("DATABASE_TEST_PATH", str(Path(tempfile.gettempdir()) / "urna_test.sqlite3")),
}


if os.getenv("DATABASE_URL"):
    database_url: str = os.environ["DATABASE_URL"]
    parsed = urlparse(database_url)

    if parsed.scheme in {"postgres", "postgresql"}:
        DATABASES = {
            "default": {
                "ENGINE": "django.db.backends.postgresql",
                "NAME": parsed.path.lstrip("/"),
                "USER": parsed.username,
                "PASSWORD": parsed.password,
                "HOST": parsed.hostname,
                "PORT": parsed.port or "5432",
            }
        }
    elif parsed.scheme == "sqlite":
        DATABASES = {
            "default": {
                "ENGINE": "django.db.backends.sqlite3",
                "NAME": parsed.path or str(BASE_DIR / "db.sqlite3"),
                "OPTIONS": _SQLITE_OPTIONS,
                "TEST": _SQLITE_TEST,
            }
        }
    else:
        raise ValueError(f"For DATABASE_URL, only postgres and sqlite are supported, not {parsed.scheme!r}.")
elif os.getenv("DATABASE_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DATABASE_NAME", "urna"),
            "USER": os.getenv("DATABASE_USER", "urna"),
            "PASSWORD": os.getenv("DATABASE_PASSWORD", ""),
            "HOST": os.getenv("DATABASE_HOST"),
            "PORT": os.getenv("DATABASE_PORT", "5432"),
        }
    }
else:
    # sqlite fallback: useful for local development and tests.
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("DATABASE_PATH", str(BASE_DIR / "db.sqlite3")),
            "OPTIONS": _SQLITE_OPTIONS,
            "TEST": _SQLITE_TEST,
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "es"
TIME_ZONE: str = os.getenv("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SECURE: bool = _env_bool("SESSION_COOKIE_SECURE")
CSRF_COOKIE_SECURE: bool = _env_bool("CSRF_COOKIE_SECURE")

# Cadence hint handed to the results page; delivery itself is a transport concern.
VOTING_RESULTS_REFRESH_SECONDS: int = int(os.getenv("VOTING_RESULTS_REFRESH_SECONDS", "5"))


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "health_endpoint": {
            "()": "config.logging_filters.HealthEndpointFilter",
        },
    },
    "formatters": {
        "default": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "django.server": {
            "handlers": ["stderr"],
            "level": "INFO",
            "filters": ["health_endpoint"],
            "propagate": False,
        },
        "voting": {
            "handlers": ["stderr"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["stderr"],
        "level": LOG_LEVEL,
    },
}


SENTRY_DSN: str = os.getenv("SENTRY_DSN", "").strip()
if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0")),
        # Ballot submissions must never ship voter identity to a third party.
        send_default_pii=False,
        send_client_reports=False,
        auto_session_tracking=False,
    )
