"""Root conftest for the bulkcerts test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)


# ---------------------------------------------------------------------------
# Logger cleanup: autouse so configure_logging() in one test cannot
# hide records from caplog in the next
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_loggers():
    """Restore the ``bulkcerts`` logger hierarchy after every test."""
    import logging

    yield
    for name in ("bulkcerts", "bulkcerts.audit"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


# ---------------------------------------------------------------------------
# Keys are slow to generate: one per session is enough
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_key():
    """A 2048-bit RSA private key shared by the whole session."""
    from cryptography.hazmat.primitives.asymmetric import rsa

    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def fast_keys(monkeypatch, rsa_key):
    """Make every key generation return the shared session key."""
    monkeypatch.setattr(
        "bulkcerts.storage.credentials.generate_rsa_key",
        lambda bits: rsa_key,
    )
    return rsa_key


# ---------------------------------------------------------------------------
# Workspace and store
# ---------------------------------------------------------------------------


@pytest.fixture()
def workspace(tmp_path: Path):
    from bulkcerts.core.paths import Workspace

    return Workspace(tmp_path / "certs_data")


@pytest.fixture()
def store(workspace, fast_keys):
    from bulkcerts.storage import CredentialStore

    return CredentialStore(workspace, key_size=2048)


# ---------------------------------------------------------------------------
# Config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a small but complete configuration mapping."""
    return {
        "ca": {"directory_url": "https://acme.example.test/directory"},
        "account": {"email": "admin@example.com", "agree_terms": True},
        "workspace": {"path": str(tmp_path / "certs_data")},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture()
def self_signed_pem(rsa_key):
    """Factory for a PEM certificate covering the given names."""
    from datetime import UTC, datetime, timedelta

    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.x509.oid import NameOID

    def build(*names: str) -> str:
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
        now = datetime.now(UTC)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(rsa_key.public_key())
            .serial_number(0x1234ABCD)
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=90))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
                critical=False,
            )
            .sign(rsa_key, hashes.SHA256())
        )
        return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    return build
