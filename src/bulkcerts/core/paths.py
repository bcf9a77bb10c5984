"""On-disk layout of a bulkcerts workspace.

All durable artifacts live under a single root directory::

    <root>/sites/<domain>/<domain>.crt
    <root>/sites/<domain>/<domain>.key
    <root>/sites/<domain>/<domain>.json
    <root>/users/<local-part>/<local-part>.json
    <root>/users/<local-part>/<local-part>.key

Domain names and email addresses are lower-cased before they become
path components because CA identities are case-insensitive.  Nothing
in this module touches the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_WORKSPACE = "./certs_data"

# Account folder name used when no email address was provided.
EMPTY_EMAIL = "default"

_FALLBACK_REG_NAME = "registration"
_FALLBACK_KEY_NAME = "private"


def email_local_part(email: str) -> str:
    """Return the part of *email* before the first ``@``.

    A leading ``@`` yields everything after it, and a string without
    ``@`` is returned unchanged.
    """
    at = email.find("@")
    if at == -1:
        return email
    if at == 0:
        return email[1:]
    return email[:at]


@dataclass(frozen=True, init=False)
class Workspace:
    """Derive artifact paths from a workspace root directory."""

    root: Path

    def __init__(self, root: str | Path = DEFAULT_WORKSPACE) -> None:
        object.__setattr__(self, "root", Path(root))

    # -- sites ---------------------------------------------------------------

    def sites(self) -> Path:
        return self.root / "sites"

    def site(self, domain: str) -> Path:
        """Folder holding the certificate assets for *domain*."""
        return self.sites() / domain.lower()

    def site_cert(self, domain: str) -> Path:
        return self.site(domain) / f"{domain.lower()}.crt"

    def site_key(self, domain: str) -> Path:
        return self.site(domain) / f"{domain.lower()}.key"

    def site_meta(self, domain: str) -> Path:
        return self.site(domain) / f"{domain.lower()}.json"

    # -- users ---------------------------------------------------------------

    def users(self) -> Path:
        return self.root / "users"

    def user(self, email: str) -> Path:
        """Account folder for the user identified by *email*."""
        return self.users() / _account_name(email, EMPTY_EMAIL)

    def user_reg(self, email: str) -> Path:
        """Registration record for the user identified by *email*."""
        name = _account_name(email, _FALLBACK_REG_NAME)
        return self.user(email) / f"{name}.json"

    def user_key(self, email: str) -> Path:
        """Private key file for the user identified by *email*."""
        name = _account_name(email, _FALLBACK_KEY_NAME)
        return self.user(email) / f"{name}.key"


def _account_name(email: str, fallback: str) -> str:
    if not email:
        email = EMPTY_EMAIL
    name = email_local_part(email.lower())
    return name or fallback
