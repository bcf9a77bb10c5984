"""Tests for the issuance orchestrator."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from bulkcerts.ca.base import CAClient, CAError, ObtainFailure, ObtainResult
from bulkcerts.config.settings import build_settings
from bulkcerts.core.errors import (
    ConfigurationError,
    ObtainError,
    RegistrationError,
    TermsAgreementError,
)
from bulkcerts.core.types import FailureKind
from bulkcerts.models import Account, CertificateAsset, CertificateMetadata, Registration
from bulkcerts.services.issuance import IssuanceOrchestrator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

RATE = ObtainFailure(FailureKind.RATE_LIMITED, "urn:ietf:params:acme:error:rateLimited")
TERMS = ObtainFailure(FailureKind.TERMS_OUTDATED, "urn:ietf:params:acme:error:userActionRequired")


def _other(detail: str) -> ObtainFailure:
    return ObtainFailure(FailureKind.OTHER, detail)


def _asset(names) -> CertificateAsset:
    return CertificateAsset(
        certificate=f"CERT {names[0]}".encode(),
        private_key=f"KEY {names[0]}".encode(),
        metadata=CertificateMetadata(domain=names[0], domains=tuple(names)),
    )


class ScriptedClient(CAClient):
    """CA client that replays a script of obtain outcomes.

    Each script entry is either ``"ok"`` or a failure map.  Once the
    script runs out every attempt succeeds.
    """

    def __init__(self, script=(), *, register_error=None, agree_errors=()):
        super().__init__(None, None)
        self.script = list(script)
        self.register_error = register_error
        self.agree_errors = list(agree_errors)
        self.obtain_calls: list[tuple[str, ...]] = []
        self.register_calls = 0
        self.agree_calls = 0

    def register(self):
        self.register_calls += 1
        if self.register_error is not None:
            raise self.register_error
        return Registration(uri="https://ca.test/acct/1")

    def agree_to_current_terms(self):
        self.agree_calls += 1
        if self.agree_errors:
            err = self.agree_errors.pop(0)
            if err is not None:
                raise err

    def obtain(self, domains):
        self.obtain_calls.append(tuple(domains))
        step = self.script.pop(0) if self.script else "ok"
        if step == "ok":
            return ObtainResult(asset=_asset(domains))
        return ObtainResult(failures=step)


def _settings(tmp_path, *, directory_url="https://acme.example.test/directory", agree=True):
    return build_settings(
        {
            "ca": {"directory_url": directory_url},
            "account": {"email": "admin@example.com", "agree_terms": agree},
            "workspace": {"path": str(tmp_path / "certs_data")},
        },
    )


@pytest.fixture()
def registered(rsa_key):
    return Account(
        email="admin@example.com",
        key=rsa_key,
        registration=Registration(uri="https://ca.test/acct/1"),
    )


@pytest.fixture()
def unregistered(rsa_key):
    return Account(email="admin@example.com", key=rsa_key)


@pytest.fixture()
def sleep():
    return MagicMock()


def _orchestrator(tmp_path, store, client, sleep, **kw):
    factory = MagicMock(return_value=client)
    orch = IssuanceOrchestrator(
        _settings(tmp_path, **kw),
        store,
        client_factory=factory,
        sleep=sleep,
    )
    return orch, factory


def _store_existing(workspace, domain):
    workspace.site(domain).mkdir(parents=True)
    workspace.site_cert(domain).write_bytes(b"old cert")
    workspace.site_key(domain).write_bytes(b"old key")


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestSkipAndRateLimit:
    def test_skip_existing_then_rate_limited_once(
        self,
        tmp_path,
        store,
        workspace,
        registered,
        sleep,
    ):
        _store_existing(workspace, "a.com")
        client = ScriptedClient([{"b.com": RATE}, "ok"])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        report = orch.obtain_certs(registered, [["a.com"], ["b.com", "www.b.com"]])

        assert client.obtain_calls == [("b.com", "www.b.com"), ("b.com", "www.b.com")]
        assert report.skipped == ["a.com"]
        assert report.issued == ["b.com"]
        assert store.exists("b.com")
        assert workspace.site_cert("b.com").read_bytes() == b"CERT b.com"
        sleep.assert_called_once_with(10.0)
        assert orch.backoff.interval == timedelta(0)
        assert orch.backoff.count == 0
        # The existing asset was left untouched
        assert workspace.site_cert("a.com").read_bytes() == b"old cert"

    def test_rate_limit_escalates_across_retries(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"b.com": RATE}] * 5)
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        orch.obtain_certs(registered, [["b.com"]])

        waits = [c.args[0] for c in sleep.call_args_list]
        assert waits == [10.0, 10.0, 10.0, 30.0, 30.0]
        assert len(client.obtain_calls) == 6

    def test_backoff_reset_between_bundles(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"a.com": RATE}, {"a.com": RATE}, "ok", {"b.com": RATE}, "ok"])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        orch.obtain_certs(registered, [["a.com"], ["b.com"]])

        assert [c.args[0] for c in sleep.call_args_list] == [10.0, 10.0, 10.0]
        assert orch.backoff.throttled is False

    def test_skip_rechecked_after_wait(self, tmp_path, store, workspace, registered):
        client = ScriptedClient([{"b.com": RATE}])

        def other_run_finishes(seconds):
            _store_existing(workspace, "b.com")

        orch, _ = _orchestrator(tmp_path, store, client, other_run_finishes)
        report = orch.obtain_certs(registered, [["b.com"]])

        assert len(client.obtain_calls) == 1
        assert report.skipped == ["b.com"]
        assert report.issued == []

    def test_empty_bundle_skipped(self, tmp_path, store, registered, sleep, caplog):
        client = ScriptedClient()
        orch, _ = _orchestrator(tmp_path, store, client, sleep)
        with caplog.at_level(logging.INFO, logger="bulkcerts.services.issuance"):
            report = orch.obtain_certs(registered, [[], ["c.com"]])
        assert client.obtain_calls == [("c.com",)]
        assert report.issued == ["c.com"]
        assert "empty bundle" in caplog.text


class MisnamingClient(ScriptedClient):
    """Reports each certificate under the last name of its bundle."""

    def obtain(self, domains):
        self.obtain_calls.append(tuple(domains))
        return ObtainResult(asset=_asset(tuple(reversed(domains))))


class TestStorageKey:
    def test_asset_stored_under_primary(self, tmp_path, store, registered, sleep, caplog):
        client = MisnamingClient()
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with caplog.at_level(logging.WARNING, logger="bulkcerts.services.issuance"):
            report = orch.obtain_certs(registered, [["b.com", "www.b.com"]])

        assert report.issued == ["b.com"]
        assert store.exists("b.com")
        assert not store.exists("www.b.com")
        assert store.load_certificate_asset("b.com").metadata.domain == "b.com"
        assert "storing it under the primary name" in caplog.text

    def test_rerun_skips_misnamed_bundle(self, tmp_path, store, registered, sleep):
        client = MisnamingClient()
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        orch.obtain_certs(registered, [["b.com", "www.b.com"]])
        report = orch.obtain_certs(registered, [["b.com", "www.b.com"]])

        assert report.skipped == ["b.com"]
        assert client.obtain_calls == [("b.com", "www.b.com")]


class TestTermsOutdated:
    def test_reagree_once_then_retry(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"b.com": TERMS}, "ok"])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        report = orch.obtain_certs(registered, [["b.com"]])

        assert client.agree_calls == 1
        assert client.obtain_calls == [("b.com",), ("b.com",)]
        assert report.issued == ["b.com"]
        sleep.assert_not_called()

    def test_reagree_failure_aborts_without_writing(
        self,
        tmp_path,
        store,
        workspace,
        registered,
        sleep,
    ):
        client = ScriptedClient([{"b.com": TERMS}], agree_errors=[CAError("tos endpoint down")])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with pytest.raises(TermsAgreementError, match="tos endpoint down"):
            orch.obtain_certs(registered, [["b.com"], ["c.com"]])

        assert client.agree_calls == 1
        assert client.obtain_calls == [("b.com",)]
        assert not workspace.site("b.com").exists()
        assert not store.exists("c.com")

    def test_terms_still_outdated_after_reagree(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"b.com": TERMS}, {"b.com": TERMS}])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with pytest.raises(TermsAgreementError, match="after re-agreeing"):
            orch.obtain_certs(registered, [["b.com"]])
        assert client.agree_calls == 1
        assert not store.exists("b.com")

    def test_terms_then_rate_limit_then_terms(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"b.com": TERMS}, {"b.com": RATE}, {"b.com": TERMS}, "ok"])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        report = orch.obtain_certs(registered, [["b.com"]])

        assert client.agree_calls == 2
        assert report.issued == ["b.com"]


class TestFatalFailures:
    def test_aggregate_failure_map(self, tmp_path, store, workspace, registered, sleep):
        failures = {
            "b.com": _other("unauthorized"),
            "www.b.com": _other("NXDOMAIN looking up A for www.b.com"),
        }
        client = ScriptedClient(["ok", failures])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with pytest.raises(ObtainError) as exc_info:
            orch.obtain_certs(registered, [["a.com"], ["b.com", "www.b.com"], ["c.com"]])

        assert exc_info.value.failures == failures
        assert "[www.b.com] failed to get certificate" in str(exc_info.value)
        # Work done before the failure stays durable; later bundles untouched
        assert store.exists("a.com")
        assert not workspace.site("b.com").exists()
        assert ("c.com",) not in client.obtain_calls

    def test_empty_result_is_fatal(self, tmp_path, store, registered, sleep):
        client = MagicMock(spec=CAClient)
        client.obtain.return_value = ObtainResult()
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with pytest.raises(ObtainError) as exc_info:
            orch.obtain_certs(registered, [["b.com"]])
        assert list(exc_info.value.failures) == ["b.com"]

    def test_storage_error_propagates(self, tmp_path, store, registered, sleep):
        from bulkcerts.core.errors import StorageError

        client = ScriptedClient()
        orch, _ = _orchestrator(tmp_path, store, client, sleep)
        err = StorageError("write certificate", "/x", "disk full")
        with (
            patch.object(store, "save_certificate_asset", side_effect=err),
            pytest.raises(StorageError, match="disk full"),
        ):
            orch.obtain_certs(registered, [["b.com"]])


class TestTieBreak:
    def test_rate_limit_wins(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"b.com": _other("boom"), "www.b.com": RATE, "x.b.com": TERMS}])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        report = orch.obtain_certs(registered, [["b.com", "www.b.com", "x.b.com"]])

        sleep.assert_called_once()
        assert client.agree_calls == 0
        assert report.issued == ["b.com"]

    def test_terms_win_over_other(self, tmp_path, store, registered, sleep):
        client = ScriptedClient([{"b.com": _other("boom"), "www.b.com": TERMS}])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        orch.obtain_certs(registered, [["b.com", "www.b.com"]])

        assert client.agree_calls == 1
        sleep.assert_not_called()


class TestRegistration:
    def test_unregistered_account_registers_once_and_is_saved(
        self,
        tmp_path,
        store,
        workspace,
        unregistered,
        sleep,
    ):
        client = ScriptedClient()
        orch, factory = _orchestrator(tmp_path, store, client, sleep)

        report = orch.obtain_certs(unregistered, [["a.com"], ["b.com"]])

        factory.assert_called_once_with(unregistered)
        assert client.register_calls == 1
        assert client.agree_calls == 1
        assert report.account.registration == Registration(uri="https://ca.test/acct/1")

        record = json.loads(workspace.user_reg("admin@example.com").read_text(encoding="utf-8"))
        assert record["registration"]["uri"] == "https://ca.test/acct/1"
        assert workspace.user_key("admin@example.com").is_file()

    def test_registered_account_skips_registration(self, tmp_path, store, registered, sleep):
        client = ScriptedClient()
        orch, _ = _orchestrator(tmp_path, store, client, sleep, agree=False)

        orch.obtain_certs(registered, [["a.com"]])

        assert client.register_calls == 0
        assert client.agree_calls == 0

    def test_missing_consent(self, tmp_path, store, workspace, rsa_key, sleep):
        account = Account(email="", key=rsa_key)
        client = ScriptedClient()
        orch, factory = _orchestrator(tmp_path, store, client, sleep, agree=False)

        with pytest.raises(ConfigurationError, match="default"):
            orch.obtain_certs(account, [["a.com"]])

        factory.assert_not_called()
        assert not workspace.users().exists()

    def test_registration_failure(self, tmp_path, store, workspace, unregistered, sleep):
        client = ScriptedClient(register_error=CAError("invalid contact"))
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with pytest.raises(RegistrationError, match="invalid contact"):
            orch.obtain_certs(unregistered, [["a.com"]])

        assert client.obtain_calls == []
        assert not workspace.user_reg("admin@example.com").exists()

    def test_initial_agreement_failure(self, tmp_path, store, workspace, unregistered, sleep):
        client = ScriptedClient(agree_errors=[CAError("nope")])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with pytest.raises(TermsAgreementError):
            orch.obtain_certs(unregistered, [["a.com"]])
        assert not workspace.user_reg("admin@example.com").exists()


class TestPreconditions:
    def test_missing_directory_url(self, tmp_path, sleep, registered):
        store = MagicMock()
        client = MagicMock()
        orch, factory = _orchestrator(tmp_path, store, client, sleep, directory_url="")

        with pytest.raises(ConfigurationError, match="directory_url"):
            orch.obtain_certs(registered, [["a.com"]])

        store.exists.assert_not_called()
        factory.assert_not_called()

    def test_client_not_built_when_everything_is_issued(
        self,
        tmp_path,
        store,
        workspace,
        unregistered,
        sleep,
    ):
        _store_existing(workspace, "a.com")
        _store_existing(workspace, "b.com")
        orch, factory = _orchestrator(tmp_path, store, ScriptedClient(), sleep, agree=False)

        report = orch.obtain_certs(unregistered, [["a.com"], ["b.com"]])

        factory.assert_not_called()
        assert report.skipped == ["a.com", "b.com"]
        assert report.account is unregistered

    def test_default_client_factory(self, tmp_path, store, registered, sleep):
        orch = IssuanceOrchestrator(_settings(tmp_path), store, sleep=sleep)
        with patch("bulkcerts.services.issuance.load_ca_client") as load:
            load.return_value = ScriptedClient()
            orch.obtain_certs(registered, [["a.com"]])

        args, kwargs = load.call_args
        assert args[1] is registered
        assert kwargs["storage_path"] == store.workspace.user("admin@example.com") / "acmeow"


class TestAuditEvents:
    def test_events_emitted(self, tmp_path, store, workspace, registered, sleep, caplog):
        _store_existing(workspace, "a.com")
        client = ScriptedClient([{"b.com": RATE}, {"b.com": TERMS}, "ok"])
        orch, _ = _orchestrator(tmp_path, store, client, sleep)

        with caplog.at_level(logging.INFO, logger="bulkcerts.audit"):
            orch.obtain_certs(registered, [["a.com"], ["b.com"]])

        events = [r.event for r in caplog.records if r.name == "bulkcerts.audit"]
        assert events == ["bundle_skipped", "rate_limited", "terms_reagreed", "certificate_issued"]
