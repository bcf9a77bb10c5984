"""Account and Registration entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey


@dataclass(frozen=True)
class Registration:
    """Account record returned by the CA when registering."""

    uri: str
    status: str = "valid"
    contact: tuple[str, ...] = ()
    terms_of_service: str | None = None
    body: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "status": self.status,
            "contact": list(self.contact),
            "terms_of_service": self.terms_of_service,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Registration:
        return cls(
            uri=data["uri"],
            status=data.get("status", "valid"),
            contact=tuple(data.get("contact", ())),
            terms_of_service=data.get("terms_of_service"),
            body=dict(data.get("body") or {}),
        )


@dataclass(frozen=True)
class Account:
    """A signing identity used to authorise issuance requests.

    An account with a non-``None`` :attr:`registration` has agreed to
    the CA's terms at registration time.  The private key is never part
    of ``repr()`` or equality.
    """

    email: str
    key: RSAPrivateKey = field(repr=False, compare=False)
    registration: Registration | None = None

    @property
    def registered(self) -> bool:
        return self.registration is not None

    @property
    def identity(self) -> str:
        """Human-readable identity used in log and error messages."""
        return self.email or "default"

    def to_record(self) -> dict[str, Any]:
        """Registration record persisted next to the key file."""
        return {
            "email": self.email,
            "registration": self.registration.to_dict() if self.registration else None,
        }
