"""RSA key generation and owner-only file helpers."""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from bulkcerts.core.errors import StorageError

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

log = logging.getLogger(__name__)

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


def generate_rsa_key(key_size: int) -> RSAPrivateKey:
    return rsa.generate_private_key(
        public_exponent=65537,  # noqa: PLR2004
        key_size=key_size,
    )


def private_key_bytes(key: RSAPrivateKey) -> bytes:
    """PEM-encode *key* as an unencrypted PKCS#1 ``RSA PRIVATE KEY`` block."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def save_private_key(key: RSAPrivateKey, path: str | Path) -> None:
    """Write *key* to *path* readable and writable by the owner only."""
    write_private_file(path, private_key_bytes(key), operation="write private key")


def load_private_key(path: str | Path) -> RSAPrivateKey:
    """Load a PEM-encoded RSA private key from *path*.

    Raises
    ------
    StorageError
        If the file cannot be read or does not hold an RSA key.

    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise StorageError("read private key", path, str(exc)) from exc

    check_key_permissions(path)

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise StorageError("decode private key", path, str(exc)) from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise StorageError("decode private key", path, "not an RSA private key")
    return key


def ensure_private_dir(path: str | Path) -> None:
    """Create *path* (and parents) with owner-only permissions."""
    try:
        Path(path).mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageError("create directory", path, str(exc)) from exc


def write_private_file(path: str | Path, data: bytes, *, operation: str = "write") -> None:
    """Write *data* to *path* with mode 0600, replacing any previous content.

    The mode is applied on creation and re-applied afterwards so an
    existing, more permissive file is tightened too.
    """
    path = Path(path)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_FILE_MODE)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(path, PRIVATE_FILE_MODE)  # noqa: PTH101
    except OSError as exc:
        raise StorageError(operation, path, str(exc)) from exc


def check_key_permissions(path: str | Path) -> None:
    """Warn if a private key file is readable or writable by group or others."""
    try:
        mode = os.stat(path).st_mode  # noqa: PTH116
    except OSError:
        return
    if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
        log.warning(
            "Private key file '%s' has overly permissive permissions (mode=%o). "
            "Recommend chmod 600.",
            path,
            stat.S_IMODE(mode),
        )
