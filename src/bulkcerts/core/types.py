"""Enumerated types and ACME error URNs."""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# RFC 8555 §6.7 error types the orchestrator reacts to
# ---------------------------------------------------------------------------
_P = "urn:ietf:params:acme:error:"

RATE_LIMITED = _P + "rateLimited"
USER_ACTION_REQUIRED = _P + "userActionRequired"


class FailureKind(StrEnum):
    """How the orchestrator should react to a per-domain failure.

    Members are declared in tie-break order: when one attempt reports
    several kinds at once, the earliest member wins.
    """

    RATE_LIMITED = "rate_limited"
    TERMS_OUTDATED = "terms_outdated"
    OTHER = "other"
