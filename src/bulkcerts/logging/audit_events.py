"""Structured issuance audit events.

Every event goes to the ``bulkcerts.audit`` logger with an ``event``
field for filtering.  When auditing is enabled in the logging settings
that logger writes JSON lines to a rotating file.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

AUDIT_LOGGER = "bulkcerts.audit"

audit_log = logging.getLogger(AUDIT_LOGGER)


def _emit(
    event: str,
    message: str,
    *args: Any,  # noqa: ANN401
    domain: str | None = None,
    account: str | None = None,
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    data: dict[str, object] = {"event": event}
    if domain is not None:
        data["domain"] = domain
    if account is not None:
        data["account"] = account
    data.update(extra)
    level = getattr(logging, severity.upper(), logging.INFO)
    audit_log.log(level, message, *args, extra=data)


def certificate_issued(domain: str, domains: tuple[str, ...], account: str) -> None:
    """Log a certificate that was obtained and stored."""
    _emit(
        "certificate_issued",
        "Certificate issued for %s",
        domain,
        domain=domain,
        account=account,
        names=list(domains),
    )


def bundle_skipped(domain: str, account: str) -> None:
    """Log a bundle whose certificate and key are already stored."""
    _emit(
        "bundle_skipped",
        "Certificate for %s already stored; skipped",
        domain,
        domain=domain,
        account=account,
    )


def rate_limited(domain: str, account: str, interval: timedelta, count: int) -> None:
    """Log a CA rate limit and the wait it caused."""
    _emit(
        "rate_limited",
        "Rate limited while obtaining %s; waiting %s",
        domain,
        interval,
        domain=domain,
        account=account,
        severity="WARNING",
        wait_seconds=interval.total_seconds(),
        attempt=count,
    )


def terms_reagreed(domain: str, account: str) -> None:
    """Log re-agreement to changed terms of service."""
    _emit(
        "terms_reagreed",
        "Re-agreed to the CA's terms of service while obtaining %s",
        domain,
        domain=domain,
        account=account,
    )


def account_registered(account: str, uri: str) -> None:
    """Log a newly registered and saved account."""
    _emit(
        "account_registered",
        "Account %s registered at %s",
        account,
        uri,
        account=account,
        registration_uri=uri,
    )
