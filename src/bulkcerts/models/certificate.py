"""Issued certificate asset and its metadata record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CertificateMetadata:
    """Human-readable facts about an issued certificate.

    Attributes
    ----------
    domain:
        Primary (subject) name; the storage key of the asset.
    domains:
        Every name on the certificate, primary first.
    cert_url:
        Where the CA serves this certificate, if known.
    cert_stable_url:
        Long-lived URL for the certificate, if the CA provides one.
    serial_number:
        Hex-encoded serial number.
    fingerprint:
        SHA-256 hex digest of the leaf certificate's DER encoding.
    not_before / not_after:
        Validity window of the leaf certificate.

    """

    domain: str
    domains: tuple[str, ...] = ()
    cert_url: str | None = None
    cert_stable_url: str | None = None
    serial_number: str | None = None
    fingerprint: str | None = None
    not_before: datetime | None = None
    not_after: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "domains": list(self.domains),
            "cert_url": self.cert_url,
            "cert_stable_url": self.cert_stable_url,
            "serial_number": self.serial_number,
            "fingerprint": self.fingerprint,
            "not_before": _iso(self.not_before),
            "not_after": _iso(self.not_after),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CertificateMetadata:
        return cls(
            domain=data["domain"],
            domains=tuple(data.get("domains") or ()),
            cert_url=data.get("cert_url"),
            cert_stable_url=data.get("cert_stable_url"),
            serial_number=data.get("serial_number"),
            fingerprint=data.get("fingerprint"),
            not_before=_parse_iso(data.get("not_before")),
            not_after=_parse_iso(data.get("not_after")),
        )


@dataclass(frozen=True)
class CertificateAsset:
    """Certificate bytes, private key bytes and metadata for one bundle."""

    certificate: bytes
    private_key: bytes
    metadata: CertificateMetadata

    @property
    def domain(self) -> str:
        return self.metadata.domain


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
