"""Issuance orchestrator: obtain certificates for an ordered list of bundles.

Bundles are processed one at a time, in input order.  For each bundle
the orchestrator

1. skips it when a certificate and key are already stored for the
   primary name (checked again before every retry),
2. asks the CA client for a certificate covering the whole bundle,
3. reacts to failures: a rate limit waits on the backoff schedule and
   retries, outdated terms trigger one re-agreement and a retry, and
   anything else aborts the batch with every reported failure,
4. stores the asset immediately on success and resets the backoff.

Everything stored before an abort stays stored, so re-running the same
batch picks up where the last run stopped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from bulkcerts.ca.base import CAError, ObtainFailure
from bulkcerts.ca.registry import load_ca_client
from bulkcerts.core.backoff import Backoff
from bulkcerts.core.errors import (
    ConfigurationError,
    ObtainError,
    RegistrationError,
    TermsAgreementError,
)
from bulkcerts.core.types import FailureKind
from bulkcerts.logging import audit_events

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from bulkcerts.ca.base import CAClient, ObtainResult
    from bulkcerts.config.settings import BulkcertsSettings
    from bulkcerts.models import Account, CertificateAsset
    from bulkcerts.storage import CredentialStore

log = logging.getLogger(__name__)

_PRIORITY = {kind: rank for rank, kind in enumerate(FailureKind)}


class _Next(Enum):
    """What the bundle loop does after one attempt."""

    DONE = "done"
    RETRY = "retry"
    RETRY_AFTER_REAGREE = "retry_after_reagree"


@dataclass
class IssuanceReport:
    """Outcome of one :meth:`IssuanceOrchestrator.obtain_certs` call.

    Attributes
    ----------
    issued:
        Primary names whose certificate was obtained and stored.
    skipped:
        Primary names that already had a stored certificate and key.
    account:
        The account as it stands after the run; carries the
        registration when one was created during the run.

    """

    issued: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    account: Account | None = None


@dataclass
class _Session:
    account: Account
    client: CAClient | None = None


class IssuanceOrchestrator:
    """Drive certificate issuance for a batch of domain bundles.

    Parameters
    ----------
    settings:
        Complete settings tree; ``ca.directory_url`` and
        ``account.agree_terms`` are consulted here.
    store:
        Where accounts and certificate assets are persisted.
    client_factory:
        Builds the CA client for an account.  Defaults to the client
        named by ``ca.client``.
    sleep:
        Blocking sleep used by the backoff; ``time.sleep`` when ``None``.

    """

    def __init__(
        self,
        settings: BulkcertsSettings,
        store: CredentialStore,
        client_factory: Callable[[Account], CAClient] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._backoff = Backoff(sleep=sleep)

    @property
    def backoff(self) -> Backoff:
        """Backoff state used by the most recent :meth:`obtain_certs` call."""
        return self._backoff

    def obtain_certs(
        self,
        account: Account,
        bundles: Iterable[Sequence[str]],
    ) -> IssuanceReport:
        """Obtain and store a certificate for every bundle not yet issued.

        Parameters
        ----------
        account:
            Signing identity; registered with the CA on first need if it
            has no registration yet.
        bundles:
            Ordered domain bundles; the first name of each is its primary.

        Returns
        -------
        IssuanceReport
            Issued and skipped primaries, and the (possibly newly
            registered) account.

        Raises
        ------
        ConfigurationError
            If no CA directory is configured, or the account must be
            registered but terms agreement was not given.
        RegistrationError
            If the CA rejects the registration.
        TermsAgreementError
            If agreeing to the terms fails or does not take effect.
        ObtainError
            On any failure other than a rate limit or outdated terms.
        StorageError
            If an account or asset cannot be written.

        """
        if not self._settings.ca.directory_url:
            msg = "ca.directory_url is not configured; cannot contact a CA"
            raise ConfigurationError(msg)

        self._backoff = Backoff(sleep=self._sleep)
        session = _Session(account=account)
        report = IssuanceReport()

        for bundle in bundles:
            names = tuple(bundle)
            if not names:
                log.info("Skipping empty bundle")
                continue

            step = self._attempt(session, names, report, after_reagree=False)
            while step is not _Next.DONE:
                step = self._attempt(
                    session,
                    names,
                    report,
                    after_reagree=step is _Next.RETRY_AFTER_REAGREE,
                )

        report.account = session.account
        return report

    # ------------------------------------------------------------------
    # One attempt for one bundle
    # ------------------------------------------------------------------

    def _attempt(
        self,
        session: _Session,
        names: tuple[str, ...],
        report: IssuanceReport,
        *,
        after_reagree: bool,
    ) -> _Next:
        primary = names[0]
        identity = session.account.identity

        if self._store.exists(primary):
            log.info("Certificate already stored; skipping", extra={"domain": primary})
            report.skipped.append(primary)
            audit_events.bundle_skipped(primary, identity)
            return _Next.DONE

        client = self._ensure_client(session)
        result = client.obtain(names)

        if result.ok:
            self._store.save_certificate_asset(_keyed_on(result.asset, names))
            self._backoff.resume()
            log.info("Certificate obtained and stored", extra={"domain": primary})
            report.issued.append(primary)
            audit_events.certificate_issued(primary, names, identity)
            return _Next.DONE

        domain, failure = _first_failure(names, result)

        if failure.kind is FailureKind.RATE_LIMITED:
            self._backoff.back_off()
            log.warning(
                "Rate limited by the CA (%s); retrying in %s",
                failure.detail,
                self._backoff.interval,
                extra={"domain": domain},
            )
            audit_events.rate_limited(
                primary,
                identity,
                self._backoff.interval,
                self._backoff.count,
            )
            self._backoff.wait()
            return _Next.RETRY

        if failure.kind is FailureKind.TERMS_OUTDATED:
            if after_reagree:
                msg = (
                    f"CA still reports outdated terms for account {identity} "
                    f"after re-agreeing: {failure.detail}"
                )
                raise TermsAgreementError(msg)
            log.info("CA terms of service changed; re-agreeing", extra={"domain": domain})
            try:
                client.agree_to_current_terms()
            except CAError as exc:
                msg = f"Failed to agree to the CA's current terms for account {identity}: {exc}"
                raise TermsAgreementError(msg) from exc
            audit_events.terms_reagreed(primary, identity)
            return _Next.RETRY_AFTER_REAGREE

        raise ObtainError(result.failures or {primary: failure})

    # ------------------------------------------------------------------
    # Client and registration
    # ------------------------------------------------------------------

    def _ensure_client(self, session: _Session) -> CAClient:
        """Build the CA client once per run, registering the account if needed."""
        if session.client is not None:
            return session.client

        account = session.account
        if not account.registered and not self._settings.account.agree_terms:
            msg = (
                f"Account {account.identity} is not registered and the CA's terms "
                "of service have not been agreed to (set account.agree_terms or "
                "pass --agree)"
            )
            raise ConfigurationError(msg)

        client = self._client_factory(account)

        if not account.registered:
            try:
                registration = client.register()
            except CAError as exc:
                msg = f"Failed to register account {account.identity}: {exc}"
                raise RegistrationError(msg) from exc
            try:
                client.agree_to_current_terms()
            except CAError as exc:
                msg = f"Failed to agree to the CA's terms for account {account.identity}: {exc}"
                raise TermsAgreementError(msg) from exc

            account = replace(account, registration=registration)
            self._store.save(account)
            audit_events.account_registered(account.identity, registration.uri)

        session.account = account
        session.client = client
        return client

    def _default_client(self, account: Account) -> CAClient:
        storage = self._store.workspace.user(account.email) / "acmeow"
        return load_ca_client(self._settings.ca, account, storage_path=storage)


def _keyed_on(asset: CertificateAsset, names: tuple[str, ...]) -> CertificateAsset:
    """Return *asset* keyed on the bundle's primary name, whatever the client reported."""
    primary = names[0]
    if asset.metadata.domain == primary:
        return asset
    log.warning(
        "CA client reported the certificate as %s; storing it under the primary name",
        asset.metadata.domain,
        extra={"domain": primary},
    )
    return replace(asset, metadata=replace(asset.metadata, domain=primary))


def _first_failure(
    names: tuple[str, ...],
    result: ObtainResult,
) -> tuple[str, ObtainFailure]:
    """Pick the failure to react to.

    Rate limits win over outdated terms, which win over anything else;
    among failures of the same kind the earliest name in the bundle wins.
    """
    if not result.failures:
        detail = "CA returned neither a certificate nor a failure"
        return names[0], ObtainFailure(kind=FailureKind.OTHER, detail=detail)

    position = {name: idx for idx, name in enumerate(names)}
    return min(
        result.failures.items(),
        key=lambda item: (_PRIORITY[item[1].kind], position.get(item[0], len(names))),
    )
