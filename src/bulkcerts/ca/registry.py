"""CA client registry.

Resolves ``ca.client`` to a :class:`CAClient` subclass and binds it to
an account.  Supports the built-in ``acme`` (default) and ``acmeow`` clients and
custom clients via the ``ext:`` prefix.

Usage::

    from bulkcerts.ca.registry import load_ca_client

    client = load_ca_client(settings.ca, account)
    result = client.obtain(["example.com", "www.example.com"])
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from bulkcerts.ca.base import CAClient, CAError

if TYPE_CHECKING:
    from pathlib import Path

    from bulkcerts.config.settings import CASettings
    from bulkcerts.models import Account

log = logging.getLogger(__name__)

# Maps config string → (module_path, class_name)
_BUILTIN_CLIENTS: dict[str, tuple[str, str]] = {
    "acme": ("bulkcerts.ca.acme_client", "AcmeV2Client"),
    "acmeow": ("bulkcerts.ca.acmeow_client", "AcmeowClient"),
}

# Built-ins that keep protocol state on disk and take a storage_path
_STATEFUL_CLIENTS = frozenset({"acmeow"})

_REQUIRED_METHODS = ("register", "agree_to_current_terms", "obtain")


def load_ca_client(
    settings: CASettings,
    account: Account,
    storage_path: str | Path | None = None,
) -> CAClient:
    """Instantiate the configured CA client for *account*.

    Parameters
    ----------
    settings:
        The ``ca`` configuration section.
    account:
        The signing identity the client acts for.
    storage_path:
        Fallback state directory for the built-in ``acmeow`` client.

    Raises
    ------
    CAError
        If the client cannot be imported or is not a usable
        :class:`CAClient` subclass.

    """
    name = settings.client

    if name in _BUILTIN_CLIENTS:
        cls = _import_class(*_BUILTIN_CLIENTS[name], label=name)
        _validate_class(cls, name)
        log.debug("Loaded CA client: %s", name)
        if name in _STATEFUL_CLIENTS:
            return cls(settings, account, storage_path=storage_path)
        return cls(settings, account)

    if name.startswith("ext:"):
        module_path, _, cls_name = name[4:].rpartition(".")
        if not module_path:
            msg = (
                f"Invalid external CA client '{name[4:]}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise CAError(msg)
        cls = _import_class(module_path, cls_name, label=name)
        _validate_class(cls, name)
        log.info("Loaded external CA client: %s", name[4:])
        return cls(settings, account)

    msg = (
        f"Unknown CA client '{name}'; built-in options: {sorted(_BUILTIN_CLIENTS)}. "
        "Use 'ext:mypackage.module.ClassName' for custom clients."
    )
    raise CAError(msg)


def _import_class(module_path: str, cls_name: str, *, label: str) -> type:
    try:
        module = importlib.import_module(module_path)
        return getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load CA client '{label}': {exc}"
        raise CAError(msg) from exc


def _validate_class(cls: object, label: str) -> None:
    """Verify that *cls* is a concrete CAClient subclass."""
    if not (isinstance(cls, type) and issubclass(cls, CAClient)):
        msg = f"CA client '{label}' is not a subclass of CAClient"
        raise CAError(msg)

    for method_name in _REQUIRED_METHODS:
        method = getattr(cls, method_name, None)
        if method is None or getattr(method, "__isabstractmethod__", False):
            msg = f"CA client '{label}' does not implement '{method_name}()'"
            raise CAError(msg)
