"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from bulkcerts.config import load_config

    settings = load_config("bulkcerts.yaml").settings
    print(settings.ca.directory_url, settings.workspace.path)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# CA
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CASettings:
    """Upstream ACME CA and the client used to talk to it."""

    directory_url: str
    client: str
    storage_path: str | None
    challenge_type: str
    challenge_handler: str
    challenge_handler_config: dict[str, Any]
    proxy_url: str | None
    verify_ssl: bool
    timeout_seconds: int


def _build_ca(data: dict | None) -> CASettings:
    d = data or {}
    return CASettings(
        directory_url=d.get("directory_url", LETSENCRYPT_STAGING),
        client=d.get("client", "acme"),
        storage_path=d.get("storage_path"),
        challenge_type=d.get("challenge_type", "http-01"),
        challenge_handler=d.get("challenge_handler", "file_http"),
        challenge_handler_config=d.get("challenge_handler_config") or {},
        proxy_url=d.get("proxy_url"),
        verify_ssl=d.get("verify_ssl", True),
        timeout_seconds=d.get("timeout_seconds", 300),
    )


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSettings:
    """Identity used to register with the CA and sign requests."""

    email: str
    agree_terms: bool
    key_size: int


def _build_account(data: dict | None) -> AccountSettings:
    d = data or {}
    return AccountSettings(
        email=(d.get("email") or "").strip(),
        agree_terms=d.get("agree_terms", False),
        key_size=d.get("key_size", 2048),
    )


# ---------------------------------------------------------------------------
# Workspace / input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkspaceSettings:
    """Root directory for accounts and certificate assets."""

    path: str


def _build_workspace(data: dict | None) -> WorkspaceSettings:
    d = data or {}
    return WorkspaceSettings(path=d.get("path", "./certs_data"))


@dataclass(frozen=True)
class InputSettings:
    """How the domain list file is split into fields."""

    delimiter: str


def _build_input(data: dict | None) -> InputSettings:
    d = data or {}
    return InputSettings(delimiter=d.get("delimiter", ","))


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Issuance audit trail (JSON lines, rotating file)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", False),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 10485760),
            backup_count=a.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BulkcertsSettings:
    ca: CASettings
    account: AccountSettings
    workspace: WorkspaceSettings
    input: InputSettings
    logging: LoggingSettings


def build_settings(data: dict) -> BulkcertsSettings:
    """Build the full typed settings tree from raw config data.

    Called by :func:`bulkcerts.config.load_config` after schema
    validation and environment-variable resolution.  Tests may call it
    directly with a partial dict; every missing key gets its default.
    """
    return BulkcertsSettings(
        ca=_build_ca(data.get("ca")),
        account=_build_account(data.get("account")),
        workspace=_build_workspace(data.get("workspace")),
        input=_build_input(data.get("input")),
        logging=_build_logging(data.get("logging")),
    )
