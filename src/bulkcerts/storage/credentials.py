"""Durable storage for accounts and issued certificates.

The workspace layout comes from :class:`bulkcerts.core.paths.Workspace`;
this module performs all of the reading and writing.  Every file it
creates is owner-only (0600) inside owner-only directories (0700).

Records are written as tab-indented JSON with sorted keys so that they
diff cleanly and stay stable across runs.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from bulkcerts.core.errors import StorageError
from bulkcerts.models.account import Account, Registration
from bulkcerts.models.certificate import CertificateAsset, CertificateMetadata
from bulkcerts.storage.keys import (
    ensure_private_dir,
    generate_rsa_key,
    load_private_key,
    save_private_key,
    write_private_file,
)

if TYPE_CHECKING:
    from pathlib import Path

    from bulkcerts.core.paths import Workspace

log = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048


def dump_record(data: dict[str, Any]) -> bytes:
    """Serialise a record the way every workspace JSON file is written."""
    return (json.dumps(data, indent="\t", sort_keys=True, ensure_ascii=False) + "\n").encode(
        "utf-8",
    )


class CredentialStore:
    """Read/write lifecycle of accounts and certificate assets.

    Parameters
    ----------
    workspace:
        Path layout of the workspace root.
    key_size:
        RSA modulus size, in bits, for newly created account keys.

    """

    def __init__(self, workspace: Workspace, key_size: int = DEFAULT_KEY_SIZE) -> None:
        self._workspace = workspace
        self._key_size = key_size

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    # -- accounts ------------------------------------------------------------

    def load(self, email: str) -> Account:
        """Load the account for *email*, or create a fresh in-memory one.

        A missing registration file is not an error: it means this
        identity has never registered, so a new unregistered account
        is returned.  It is *not* saved.

        Raises
        ------
        StorageError
            If the stored registration or key cannot be read or decoded.

        """
        reg_path = self._workspace.user_reg(email)
        try:
            raw = reg_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            log.debug("No stored account for %s; creating a new one", email or "default")
            return self.create(email)
        except OSError as exc:
            raise StorageError("read registration", reg_path, str(exc)) from exc

        record = _decode_json(raw, reg_path, "decode registration")
        try:
            reg_data = record.get("registration")
            registration = Registration.from_dict(reg_data) if reg_data else None
            stored_email = record.get("email", email)
        except (AttributeError, KeyError, TypeError) as exc:
            raise StorageError("decode registration", reg_path, str(exc)) from exc

        key = load_private_key(self._workspace.user_key(email))
        log.debug("Loaded account %s from %s", email or "default", reg_path)
        return Account(email=stored_email, key=key, registration=registration)

    def create(self, email: str) -> Account:
        """Return a new, unregistered and unpersisted account for *email*."""
        key = generate_rsa_key(self._key_size)
        return Account(email=email, key=key)

    def save(self, account: Account) -> None:
        """Persist *account*'s key and registration record.

        Only registered accounts are saved; call this after the CA has
        accepted the registration.
        """
        if account.registration is None:
            raise StorageError(
                "save account",
                self._workspace.user_reg(account.email),
                "account has no registration",
            )
        ensure_private_dir(self._workspace.user(account.email))
        save_private_key(account.key, self._workspace.user_key(account.email))
        write_private_file(
            self._workspace.user_reg(account.email),
            dump_record(account.to_record()),
            operation="write registration",
        )
        log.info("Saved account %s", account.identity)

    # -- certificate assets --------------------------------------------------

    def exists(self, domain: str) -> bool:
        """Return ``True`` if both a certificate and a key are stored for *domain*.

        The metadata file is deliberately not consulted.
        """
        return (
            self._workspace.site_cert(domain).is_file()
            and self._workspace.site_key(domain).is_file()
        )

    def save_certificate_asset(self, asset: CertificateAsset) -> None:
        """Write certificate, key and metadata for *asset*'s primary domain."""
        domain = asset.domain
        ensure_private_dir(self._workspace.site(domain))
        write_private_file(
            self._workspace.site_cert(domain),
            asset.certificate,
            operation="write certificate",
        )
        write_private_file(
            self._workspace.site_key(domain),
            asset.private_key,
            operation="write certificate key",
        )
        write_private_file(
            self._workspace.site_meta(domain),
            dump_record(asset.metadata.to_dict()),
            operation="write certificate metadata",
        )

    def load_certificate_asset(self, domain: str) -> CertificateAsset:
        """Read back the stored asset for *domain*.

        Raises
        ------
        StorageError
            If any of the three files is missing or unreadable.

        """
        cert = _read_bytes(self._workspace.site_cert(domain), "read certificate")
        key = _read_bytes(self._workspace.site_key(domain), "read certificate key")
        meta_path = self._workspace.site_meta(domain)
        raw = _read_bytes(meta_path, "read certificate metadata")
        data = _decode_json(
            raw.decode("utf-8", errors="replace"),
            meta_path,
            "decode certificate metadata",
        )
        try:
            metadata = CertificateMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("decode certificate metadata", meta_path, str(exc)) from exc
        return CertificateAsset(certificate=cert, private_key=key, metadata=metadata)


def _read_bytes(path: Path, operation: str) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise StorageError(operation, path, str(exc)) from exc


def _decode_json(raw: str, path: Path, operation: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageError(operation, path, str(exc)) from exc
    if not isinstance(data, dict):
        raise StorageError(operation, path, "expected a JSON object")
    return data
