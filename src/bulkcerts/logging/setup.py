"""Structured logging configuration for bulkcerts.

Provides JSON and text formatters, a context filter that guarantees
every record carries ``domain`` and ``account`` attributes, and a
one-call ``configure_logging`` function driven by config settings.

Library code logs issuance context through ``extra``::

    log.info("Certificate saved", extra={"domain": "example.com"})
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from bulkcerts.logging.audit_events import AUDIT_LOGGER

if TYPE_CHECKING:
    from bulkcerts.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Context attributes (handled explicitly):
        "domain",
        "account",
    }
)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        domain = getattr(record, "domain", None)
        if domain not in (None, "-"):
            data["domain"] = domain

        account = getattr(record, "account", None)
        if account not in (None, "-"):
            data["account"] = account

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(domain)s] %(name)s - %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class IssuanceContextFilter(logging.Filter):
    """Give every record ``domain`` and ``account`` attributes.

    Records logged without them get ``"-"`` so format strings that
    reference them never fail.
    """

    CONTEXT_ATTRS = frozenset({"domain", "account"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for attr in self.CONTEXT_ATTRS:
            if not hasattr(record, attr):
                setattr(record, attr, "-")
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``bulkcerts`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output.
    Sets up the audit logger if ``settings.audit.enabled``.

    Returns the root ``bulkcerts`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    # ── Root bulkcerts logger ───────────────────────────────────────
    root = logging.getLogger("bulkcerts")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = IssuanceContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    # ── Audit logger ────────────────────────────────────────────────
    audit = logging.getLogger(AUDIT_LOGGER)
    audit.handlers.clear()
    if settings.audit.enabled:
        audit.setLevel(logging.INFO)

        if settings.audit.file:
            try:
                from logging.handlers import RotatingFileHandler

                fh = RotatingFileHandler(
                    settings.audit.file,
                    maxBytes=settings.audit.max_file_size_bytes,
                    backupCount=settings.audit.backup_count,
                )
                # Audit logs are always structured JSON
                fh.setFormatter(StructuredFormatter())
                fh.addFilter(ctx_filter)
                audit.addHandler(fh)
            except OSError as exc:
                root.warning(
                    "Could not open audit log file %s: %s",
                    settings.audit.file,
                    exc,
                )
    else:
        audit.setLevel(logging.CRITICAL + 1)

    # ── Quieten noisy third-party loggers ───────────────────────────
    for lib in ("urllib3", "requests", "acme", "acmeow"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
