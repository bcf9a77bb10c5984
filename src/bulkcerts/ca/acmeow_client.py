"""ACME CA client backed by ACMEOW.

Runs the order, challenge, finalize and download steps against an
ACME directory for every bundle.  A fresh RSA key and CSR are built
per bundle so each certificate has its own private key.

ACMEOW generates and keeps its own ACME account key below
``storage_path``; it offers no way to sign with a caller-supplied key.
The account key persisted by :class:`~bulkcerts.storage.CredentialStore`
only sizes the per-bundle certificate keys here.  Use the default
``acme`` client (:mod:`bulkcerts.ca.acme_client`) when the stored
account key must be the one the CA knows.

Requires ACMEOW >= 1.1.0 for external CSR support via
``finalize_order(csr=<bytes>)``.  Install with ``pip install bulkcerts[acmeow]``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from bulkcerts.ca.base import CAClient, CAError, ObtainResult, classify_failure
from bulkcerts.ca.cert_utils import build_csr, is_retryable, parse_leaf
from bulkcerts.ca.handlers import load_challenge_handler
from bulkcerts.models import CertificateAsset, Registration
from bulkcerts.storage.keys import generate_rsa_key, private_key_bytes

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bulkcerts.config.settings import CASettings
    from bulkcerts.models import Account

log = logging.getLogger(__name__)


class AcmeowClient(CAClient):
    """CA client that drives an ACME server through ACMEOW.

    The ACMEOW client and the challenge handler are created on first
    use, so constructing this class never touches the network.

    Parameters
    ----------
    settings:
        The ``ca`` configuration section.
    account:
        The signing identity.
    storage_path:
        Directory for ACMEOW's own state, used when
        ``settings.storage_path`` is unset.

    """

    def __init__(
        self,
        settings: CASettings,
        account: Account,
        storage_path: str | Path | None = None,
    ) -> None:
        super().__init__(settings, account)
        self._storage = Path(settings.storage_path or storage_path or "acmeow")
        self._client: Any = None
        self._handler: Any = None

    # -- CAClient -----------------------------------------------------------

    def register(self) -> Registration:
        """Create (or fetch) the ACME account for the bound email."""
        client = self._acme()
        try:
            result = client.create_account()
        except Exception as exc:  # noqa: BLE001
            msg = f"ACME account registration failed ({type(exc).__name__}): {exc}"
            raise CAError(msg, retryable=is_retryable(exc)) from exc

        log.info(
            "Registered ACME account with %s",
            self._settings.directory_url,
            extra={"account": self._account.identity},
        )
        return _registration_from(result, self._account.email)

    def agree_to_current_terms(self) -> None:
        """Re-submit the account so the CA records agreement to its current terms."""
        client = self._acme()
        try:
            client.create_account()
        except Exception as exc:  # noqa: BLE001
            msg = f"Agreeing to the CA's terms failed ({type(exc).__name__}): {exc}"
            raise CAError(msg, retryable=is_retryable(exc)) from exc
        log.info(
            "Agreed to current terms of service",
            extra={"account": self._account.identity},
        )

    def obtain(self, domains: Sequence[str]) -> ObtainResult:
        """Run one full issuance attempt for *domains*.

        Any exception raised by ACMEOW during the attempt is classified
        and reported against the primary domain; ACMEOW does not say
        which name of a multi-name order failed.
        """
        primary = domains[0]
        client = self._acme()
        key = generate_rsa_key(self._account.key.key_size)

        try:
            cert_pem = self._run_order(client, list(domains), build_csr(key, domains))
            metadata = parse_leaf(cert_pem, domains)
        except Exception as exc:  # noqa: BLE001
            failure = classify_failure(exc)
            log.warning(
                "Issuance attempt failed (%s): %s",
                failure.kind,
                failure.detail,
                extra={"domain": primary},
            )
            return ObtainResult(failures={primary: failure})

        return ObtainResult(
            asset=CertificateAsset(
                certificate=cert_pem.encode("ascii"),
                private_key=private_key_bytes(key),
                metadata=metadata,
            ),
        )

    # -- internals ----------------------------------------------------------

    def _acme(self) -> Any:  # noqa: ANN401
        if self._client is not None:
            return self._client

        if not self._settings.directory_url:
            msg = "ca.directory_url is required"
            raise CAError(msg)

        try:
            self._storage.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create ACMEOW storage directory '{self._storage}': {exc}"
            raise CAError(msg) from exc

        self._handler = load_challenge_handler(
            self._settings.challenge_handler,
            self._settings.challenge_handler_config,
        )

        try:
            from acmeow import AcmeClient  # noqa: PLC0415
        except ImportError as exc:
            msg = "ACMEOW is not installed. Install with: pip install 'bulkcerts[acmeow]'"
            raise CAError(msg) from exc

        kwargs: dict[str, Any] = {
            "server_url": self._settings.directory_url,
            "email": self._account.email,
            "storage_path": str(self._storage),
            "timeout": self._settings.timeout_seconds,
        }
        if self._settings.proxy_url:
            kwargs["proxy_url"] = self._settings.proxy_url
        if not self._settings.verify_ssl:
            kwargs["verify_ssl"] = False

        try:
            self._client = AcmeClient(**kwargs)
        except Exception as exc:  # noqa: BLE001
            msg = f"Failed to initialise ACMEOW client: {exc}"
            raise CAError(msg, retryable=True) from exc
        return self._client

    def _run_order(
        self,
        client: Any,  # noqa: ANN401
        identifiers: list[str],
        csr_der: bytes,
    ) -> str:
        log.info(
            "Creating order for %d name(s)",
            len(identifiers),
            extra={"domain": identifiers[0]},
        )
        client.create_order(identifiers)
        client.complete_challenges(self._handler, challenge_type=self._settings.challenge_type)
        client.finalize_order(csr=csr_der)
        cert_pem, _ = client.get_certificate()
        if isinstance(cert_pem, bytes):
            cert_pem = cert_pem.decode("ascii")
        return cert_pem


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _registration_from(result: Any, email: str) -> Registration:  # noqa: ANN401
    uri = getattr(result, "uri", None) or getattr(result, "url", None) or ""
    status = getattr(result, "status", None) or "valid"
    return Registration(
        uri=str(uri),
        status=str(status),
        contact=(f"mailto:{email}",) if email else (),
    )

