"""Abstract base class for CA clients.

All CA clients (built-in and custom) must inherit from :class:`CAClient`
and implement :meth:`register`, :meth:`agree_to_current_terms` and
:meth:`obtain`.

A client is bound to one :class:`~bulkcerts.models.Account` for its
whole life.  ``obtain`` never raises for per-domain problems reported
by the CA; those come back in :attr:`ObtainResult.failures`, classified
with :func:`classify_failure` so the orchestrator can decide whether to
back off, re-agree to the terms, or give up.
"""

from __future__ import annotations

import abc
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bulkcerts.core.types import RATE_LIMITED, USER_ACTION_REQUIRED, FailureKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bulkcerts.config.settings import CASettings
    from bulkcerts.models import Account, CertificateAsset, Registration

log = logging.getLogger(__name__)

_HTTP_TOO_MANY_REQUESTS = 429

_RATE_LIMIT_RE = re.compile(
    r"\bratelimited"
    r"|(?<![\w.-])rate[- ]limit"
    r"|\btoo many (?:certificates|requests|new orders|failed authorizations)\b"
    r"|\b(?:http|status) 429\b",
    re.IGNORECASE,
)

_TERMS_RE = re.compile(
    r"\buseractionrequired|\bterms of service\b",
    re.IGNORECASE,
)


class CAError(Exception):
    """Raised by CA clients when the CA cannot be reached or used.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


@dataclass(frozen=True)
class ObtainFailure:
    """Why one domain of a bundle could not be certified."""

    kind: FailureKind
    detail: str

    def __str__(self) -> str:
        return self.detail


@dataclass(frozen=True)
class ObtainResult:
    """Outcome of a single :meth:`CAClient.obtain` attempt.

    Exactly one of :attr:`asset` and :attr:`failures` is meaningful: a
    successful attempt carries the asset and an empty failure map.
    """

    asset: CertificateAsset | None = None
    failures: dict[str, ObtainFailure] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.asset is not None and not self.failures


class CAClient(abc.ABC):
    """Base class for all CA client implementations.

    Parameters
    ----------
    settings:
        The ``ca`` configuration section.
    account:
        The signing identity every request is made with.

    """

    def __init__(self, settings: CASettings, account: Account) -> None:
        self._settings = settings
        self._account = account

    @property
    def account(self) -> Account:
        return self._account

    @abc.abstractmethod
    def register(self) -> Registration:
        """Register the bound account with the CA.

        Returns
        -------
        Registration
            The account record returned by the CA.

        Raises
        ------
        CAError
            If the CA rejects the registration or cannot be reached.

        """

    @abc.abstractmethod
    def agree_to_current_terms(self) -> None:
        """Record consent to the CA's current terms of service.

        Raises
        ------
        CAError
            If the agreement could not be submitted.

        """

    @abc.abstractmethod
    def obtain(self, domains: Sequence[str]) -> ObtainResult:
        """Request one certificate covering every name in *domains*.

        Parameters
        ----------
        domains:
            The bundle; ``domains[0]`` is the primary name.

        Returns
        -------
        ObtainResult
            Either the issued asset or a per-domain failure map.

        """


def classify_failure(error: BaseException | str) -> ObtainFailure:
    """Map an exception (or its message) onto a :class:`FailureKind`.

    Structured information wins: an ACME problem ``typ`` (as carried by
    ``acme.messages.Error``) or an HTTP status of 429 decides on its
    own.  Otherwise the message is matched against whole-word patterns
    for rate limiting and outdated terms; rate limiting wins when both
    appear.
    """
    detail = str(error)
    if isinstance(error, BaseException) and not detail:
        detail = type(error).__name__

    if isinstance(error, BaseException):
        kind = _structured_kind(error)
        if kind is not None:
            return ObtainFailure(kind=kind, detail=detail)
        text = f"{type(error).__name__} {detail}"
    else:
        text = detail

    if _RATE_LIMIT_RE.search(text):
        kind = FailureKind.RATE_LIMITED
    elif _TERMS_RE.search(text):
        kind = FailureKind.TERMS_OUTDATED
    else:
        kind = FailureKind.OTHER
    return ObtainFailure(kind=kind, detail=detail)


def _structured_kind(error: BaseException) -> FailureKind | None:
    typ = getattr(error, "typ", None)
    if isinstance(typ, str) and typ.startswith("urn:"):
        if typ == RATE_LIMITED:
            return FailureKind.RATE_LIMITED
        if typ == USER_ACTION_REQUIRED:
            return FailureKind.TERMS_OUTDATED
        return FailureKind.OTHER

    response = getattr(error, "response", None)
    for status in (
        getattr(error, "status_code", None),
        getattr(error, "status", None),
        getattr(response, "status_code", None),
    ):
        if isinstance(status, int) and status == _HTTP_TOO_MANY_REQUESTS:
            return FailureKind.RATE_LIMITED
    return None
