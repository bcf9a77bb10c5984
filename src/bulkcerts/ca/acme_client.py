"""ACME CA client backed by certbot's ``acme`` library.

Every request is signed with the account key held by
:class:`~bulkcerts.storage.CredentialStore`, so the key on disk is the
key the CA knows.  A stored registration URI is reused as the JWS
``kid``; a fresh account is only created by :meth:`AcmeV2Client.register`.

Challenges are published through a
:class:`~bulkcerts.ca.challenges.ChallengeProvisioner` chosen by
``ca.challenge_handler``.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import josepy as jose
from acme import challenges, client, errors, messages
from cryptography.hazmat.primitives.serialization import Encoding

from bulkcerts import __version__
from bulkcerts.ca.base import CAClient, CAError, ObtainFailure, ObtainResult, classify_failure
from bulkcerts.ca.cert_utils import build_csr, is_retryable, parse_leaf
from bulkcerts.ca.challenges import DNS_01, HTTP_01, load_provisioner
from bulkcerts.models import CertificateAsset, Registration
from bulkcerts.storage.keys import generate_rsa_key, private_key_bytes

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bulkcerts.ca.challenges import ChallengeProvisioner
    from bulkcerts.config.settings import CASettings
    from bulkcerts.models import Account

log = logging.getLogger(__name__)

_USER_AGENT = f"bulkcerts/{__version__}"

_CHALLENGE_CLASSES: dict[str, type] = {
    HTTP_01: challenges.HTTP01,
    DNS_01: challenges.DNS01,
}


class AcmeV2Client(CAClient):
    """CA client speaking ACME v2 with the stored account key.

    The network client and the challenge provisioner are created on
    first use, so constructing this class never touches the network.

    Parameters
    ----------
    settings:
        The ``ca`` configuration section.
    account:
        The signing identity; ``account.key`` signs every request.

    """

    def __init__(self, settings: CASettings, account: Account) -> None:
        super().__init__(settings, account)
        self._jwk = jose.JWKRSA(key=account.key)
        self._client: Any = None
        self._provisioner: ChallengeProvisioner | None = None

    # -- CAClient -----------------------------------------------------------

    def register(self) -> Registration:
        """Create the ACME account for the stored key, or look up the existing one."""
        acme = self._acme()
        email = self._account.email or None
        try:
            try:
                regr = acme.new_account(
                    messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True),
                )
            except errors.ConflictError as exc:
                log.info("Account key already registered at %s", exc.location)
                regr = acme.query_registration(
                    messages.RegistrationResource(uri=exc.location, body=messages.Registration()),
                )
        except Exception as exc:  # noqa: BLE001
            msg = f"ACME account registration failed ({type(exc).__name__}): {exc}"
            raise CAError(msg, retryable=is_retryable(exc)) from exc

        log.info(
            "Registered ACME account %s with %s",
            regr.uri,
            self._settings.directory_url,
            extra={"account": self._account.identity},
        )
        return Registration(
            uri=regr.uri,
            status=str(regr.body.status or "valid"),
            contact=tuple(regr.body.contact or ()),
        )

    def agree_to_current_terms(self) -> None:
        """Update the registration so the CA records agreement to its current terms."""
        acme = self._acme()
        regr = acme.net.account
        if regr is None:
            msg = f"Account {self._account.identity} is not registered with the CA"
            raise CAError(msg)
        try:
            acme.update_registration(regr, regr.body.update(terms_of_service_agreed=True))
        except Exception as exc:  # noqa: BLE001
            msg = f"Agreeing to the CA's terms failed ({type(exc).__name__}): {exc}"
            raise CAError(msg, retryable=is_retryable(exc)) from exc
        log.info(
            "Agreed to current terms of service",
            extra={"account": self._account.identity},
        )

    def obtain(self, domains: Sequence[str]) -> ObtainResult:
        """Run one full issuance attempt for *domains*.

        Failed authorizations are reported against the name they were
        for; any other error is reported against the primary domain.
        """
        primary = domains[0]
        acme = self._acme()
        key = generate_rsa_key(self._account.key.key_size)

        try:
            cert_pem = self._run_order(acme, domains, build_csr(key, domains, Encoding.PEM))
            metadata = parse_leaf(cert_pem, domains)
        except errors.ValidationError as exc:
            failures = _authorization_failures(exc) or {primary: classify_failure(exc)}
            for domain, failure in failures.items():
                log.warning(
                    "Validation failed (%s): %s",
                    failure.kind,
                    failure.detail,
                    extra={"domain": domain},
                )
            return ObtainResult(failures=failures)
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

        provisioner = load_provisioner(
            self._settings.challenge_handler,
            self._settings.challenge_handler_config,
        )
        if provisioner.challenge_type != self._settings.challenge_type:
            msg = (
                f"Challenge handler '{self._settings.challenge_handler}' solves "
                f"{provisioner.challenge_type}, but ca.challenge_type is "
                f"{self._settings.challenge_type}"
            )
            raise CAError(msg)

        net = client.ClientNetwork(
            self._jwk,
            user_agent=_USER_AGENT,
            verify_ssl=self._settings.verify_ssl,
            timeout=self._settings.timeout_seconds,
        )
        if self._settings.proxy_url:
            net.session.proxies.update(
                {"http": self._settings.proxy_url, "https": self._settings.proxy_url},
            )

        try:
            directory = client.ClientV2.get_directory(self._settings.directory_url, net)
        except Exception as exc:  # noqa: BLE001
            msg = f"Failed to fetch ACME directory {self._settings.directory_url}: {exc}"
            raise CAError(msg, retryable=is_retryable(exc)) from exc

        registration = self._account.registration
        if registration is not None:
            net.account = messages.RegistrationResource(
                uri=registration.uri,
                body=messages.Registration.from_data(email=self._account.email or None),
            )

        self._provisioner = provisioner
        self._client = client.ClientV2(directory, net=net)
        return self._client

    def _run_order(
        self,
        acme: Any,  # noqa: ANN401
        domains: Sequence[str],
        csr_pem: bytes,
    ) -> str:
        orderr = acme.new_order(csr_pem)
        pending = []
        for authzr in orderr.authorizations:
            if authzr.body.status == messages.STATUS_VALID:
                continue
            domain = authzr.body.identifier.value
            challb = self._select_challenge(authzr, domain)
            response, validation = challb.response_and_validation(self._jwk)
            name = self._challenge_name(challb, domain)
            pending.append((domain, name, validation, challb, response))

        log.info(
            "Order created with %d pending authorization(s)",
            len(pending),
            extra={"domain": domains[0]},
        )

        published: list[tuple[str, str]] = []
        try:
            for domain, name, validation, _, _ in pending:
                self._provisioner.publish(domain, name, validation)
                published.append((domain, name))

            delay = self._provisioner.propagation_delay
            if pending and delay:
                log.info("Waiting %ds for challenge propagation", delay)
                time.sleep(delay)

            for _, _, _, challb, response in pending:
                acme.answer_challenge(challb, response)

            timeout = timedelta(seconds=self._settings.timeout_seconds)
            deadline = datetime.now() + timeout  # noqa: DTZ005
            orderr = acme.poll_and_finalize(orderr, deadline=deadline)
        finally:
            for domain, name in published:
                try:
                    self._provisioner.withdraw(domain, name)
                except CAError as exc:
                    log.warning("Challenge cleanup failed: %s", exc, extra={"domain": domain})

        return orderr.fullchain_pem

    def _select_challenge(self, authzr: Any, domain: str) -> Any:  # noqa: ANN401
        wanted = _CHALLENGE_CLASSES.get(self._settings.challenge_type)
        for challb in authzr.body.challenges:
            if wanted is not None and isinstance(challb.chall, wanted):
                return challb
        msg = f"CA offered no {self._settings.challenge_type} challenge for {domain}"
        raise CAError(msg)

    @staticmethod
    def _challenge_name(challb: Any, domain: str) -> str:  # noqa: ANN401
        if isinstance(challb.chall, challenges.DNS01):
            return challb.chall.validation_domain_name(domain)
        return challb.chall.encode("token")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _authorization_failures(exc: errors.ValidationError) -> dict[str, ObtainFailure]:
    failures: dict[str, ObtainFailure] = {}
    for authzr in exc.failed_authzrs:
        domain = authzr.body.identifier.value
        problems = [c.error for c in authzr.body.challenges if c.error is not None]
        failures[domain] = classify_failure(problems[0] if problems else exc)
    return failures
