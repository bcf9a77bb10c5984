"""CSR construction and certificate parsing shared by the CA clients."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from bulkcerts.models import CertificateMetadata

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

_TRANSIENT_MARKERS = ("timeout", "timed out", "connection", "network", "503")


def build_csr(
    key: RSAPrivateKey,
    domains: Sequence[str],
    encoding: Encoding = Encoding.DER,
) -> bytes:
    """Build a CSR naming ``domains[0]`` as CN and every domain as a SAN.

    Parameters
    ----------
    key:
        Private key of the certificate being requested.
    domains:
        The bundle; the first name is the primary.
    encoding:
        ``Encoding.DER`` (default) or ``Encoding.PEM``.

    Returns
    -------
    bytes
        The signed request in the requested encoding.

    """
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(encoding)


def parse_leaf(cert_pem: str, domains: Sequence[str]) -> CertificateMetadata:
    """Extract serial, fingerprint and validity from the first PEM block."""
    leaf = x509.load_pem_x509_certificate(cert_pem.encode("ascii"))
    return CertificateMetadata(
        domain=domains[0],
        domains=tuple(domains),
        serial_number=format(leaf.serial_number, "x"),
        fingerprint=hashlib.sha256(leaf.public_bytes(Encoding.DER)).hexdigest(),
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
    )


def is_retryable(exc: BaseException) -> bool:
    """Guess whether a CA error is transient from its type name and message."""
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)
