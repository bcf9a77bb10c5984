"""Exception hierarchy for bulkcerts.

Every error the orchestrator lets escape derives from
:class:`BulkcertsError` so the CLI can report it uniformly.  Rate
limiting and outdated terms are *not* exceptions: they are failure
kinds handled inside the retry loop (see
:class:`bulkcerts.core.types.FailureKind`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from bulkcerts.ca.base import ObtainFailure


class BulkcertsError(Exception):
    """Base class for all bulkcerts errors."""


class ConfigurationError(BulkcertsError):
    """Raised before any network interaction when required settings are missing."""


class InputError(BulkcertsError):
    """Raised when the domain input file or its delimiter is unusable."""


class StorageError(BulkcertsError):
    """Raised when reading or writing a workspace artifact fails.

    Parameters
    ----------
    operation:
        Short description of what was attempted (e.g. ``"write key"``).
    path:
        The file or directory involved.
    detail:
        Underlying cause, usually the ``str()`` of an :class:`OSError`.

    """

    def __init__(self, operation: str, path: Path | str, detail: str) -> None:
        self.operation = operation
        self.path = str(path)
        self.detail = detail
        super().__init__(f"{operation} failed for {self.path}: {detail}")


class RegistrationError(BulkcertsError):
    """Raised when the CA rejects account registration."""


class TermsAgreementError(BulkcertsError):
    """Raised when agreeing to the CA's current terms fails or does not take."""


class ObtainError(BulkcertsError):
    """Aggregate of per-domain failures from a single CA attempt.

    Attributes
    ----------
    failures:
        Mapping of domain name to the failure reported for it.

    """

    def __init__(self, failures: Mapping[str, ObtainFailure]) -> None:
        self.failures = dict(failures)
        lines = [
            f"[{domain}] failed to get certificate: {failure.detail}"
            for domain, failure in self.failures.items()
        ]
        super().__init__("\n".join(lines))
