"""Application logging configuration.

This module sets up a structured logging configuration using
``logging.config.dictConfig`` and a filter that stamps every log record with
the form session (response) id and the slug of the form being filled in. Log
output uses key-value formatting to facilitate downstream parsing.
"""

from __future__ import annotations

import logging
import logging.config
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from formflow.settings import get_settings, is_development_mode

# ---------------------------------------------------------------------------
# Context variables used to propagate the active form session to log records
# ---------------------------------------------------------------------------
session_id_ctx_var: ContextVar[str | None] = ContextVar("session_id", default=None)
form_slug_ctx_var: ContextVar[str | None] = ContextVar("form_slug", default=None)

# Transport libraries that log every request; kept quiet outside DEBUG
_CHATTY_LOGGERS = ("urllib3", "requests")


class FormSessionFilter(logging.Filter):
    """Inject the session id and form slug from contextvars into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = session_id_ctx_var.get() or "-"
        record.form = form_slug_ctx_var.get() or "-"
        return True


def _build_config(log_level: str) -> dict[str, Any]:
    """Build logging configuration dictionary."""

    transport_level = "DEBUG" if log_level == "DEBUG" else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"form_session": {"()": FormSessionFilter}},
        "formatters": {
            "kv": {
                "format": (
                    "level=%(levelname)s logger=%(name)s form=%(form)s "
                    "session_id=%(session_id)s message=%(message)s"
                )
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "kv",
                "filters": ["form_session"],
                "level": log_level,
            }
        },
        "loggers": {name: {"level": transport_level} for name in _CHATTY_LOGGERS},
        "root": {"handlers": ["default"], "level": log_level},
    }


def setup_logging(log_level: str | None = None) -> None:
    """Configure root logging using key-value formatting.

    The level defaults to the ``LOG_LEVEL`` setting, or DEBUG when
    ``DEVELOPMENT_MODE`` is enabled so rule evaluation traces show up.
    """

    if log_level is None:
        log_level = "DEBUG" if is_development_mode() else get_settings().log_level
    logging.config.dictConfig(_build_config(log_level.upper()))


@contextmanager
def session_log_context(session_id: str, form_slug: str | None = None) -> Iterator[None]:
    """Bind ``session_id`` (and optionally ``form_slug``) to every log record
    emitted inside the block.

    Tasks created inside the block, such as the autosave loop, inherit the
    binding.
    """
    session_token = session_id_ctx_var.set(session_id)
    form_token = form_slug_ctx_var.set(form_slug)
    try:
        yield
    finally:
        form_slug_ctx_var.reset(form_token)
        session_id_ctx_var.reset(session_token)


__all__ = [
    "FormSessionFilter",
    "form_slug_ctx_var",
    "session_id_ctx_var",
    "session_log_context",
    "setup_logging",
]
