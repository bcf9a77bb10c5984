"""Challenge handler factories for the acmeow client.

Each factory turns the ``ca.challenge_handler_config`` mapping into a
ready acmeow challenge handler.  The script-driven handlers reuse the
provisioners from :mod:`bulkcerts.ca.challenges` as their callbacks, so
both CA clients run the operator's scripts the same way.

Built-in factories:

- ``file_http``     -- write HTTP-01 tokens below a webroot directory
- ``callback_dns``  -- run operator scripts to publish DNS-01 records
- ``callback_http`` -- run operator scripts to publish HTTP-01 tokens

Custom factories are loaded with the ``ext:`` prefix
(e.g. ``ext:mypackage.handlers.MyFactory``).
"""

from __future__ import annotations

import abc
import importlib
from typing import Any

from bulkcerts.ca.base import CAError
from bulkcerts.ca.challenges import (
    ScriptDnsProvisioner,
    ScriptHttpProvisioner,
    WebrootProvisioner,
)


class ChallengeHandlerFactory(abc.ABC):
    """Build an acmeow ``ChallengeHandler`` from configuration."""

    name: str = ""

    @abc.abstractmethod
    def create(self, config: dict[str, Any]) -> Any:  # noqa: ANN401
        """Return a challenge handler configured from *config*.

        Raises
        ------
        CAError
            If a required key is missing.

        """


class FileHttpFactory(ChallengeHandlerFactory):
    """HTTP-01 tokens written by acmeow to ``<webroot>/.well-known/acme-challenge/``."""

    name = "file_http"

    def create(self, config: dict[str, Any]) -> Any:  # noqa: ANN401
        webroot = WebrootProvisioner(config).webroot

        from acmeow.handlers import FileHttpHandler  # noqa: PLC0415

        return FileHttpHandler(webroot=str(webroot))


class CallbackDnsFactory(ChallengeHandlerFactory):
    """DNS-01 records published by operator scripts (see :class:`ScriptDnsProvisioner`)."""

    name = "callback_dns"

    def create(self, config: dict[str, Any]) -> Any:  # noqa: ANN401
        provisioner = ScriptDnsProvisioner(config)

        from acmeow.handlers import CallbackDnsHandler  # noqa: PLC0415

        return CallbackDnsHandler(
            create_record=provisioner.publish,
            delete_record=provisioner.withdraw,
            propagation_delay=provisioner.propagation_delay,
        )


class CallbackHttpFactory(ChallengeHandlerFactory):
    """HTTP-01 tokens published by operator scripts (see :class:`ScriptHttpProvisioner`)."""

    name = "callback_http"

    def create(self, config: dict[str, Any]) -> Any:  # noqa: ANN401
        provisioner = ScriptHttpProvisioner(config)

        from acmeow.handlers import CallbackHttpHandler  # noqa: PLC0415

        return CallbackHttpHandler(
            deploy=provisioner.publish,
            cleanup=provisioner.withdraw,
        )


_FACTORIES: dict[str, ChallengeHandlerFactory] = {
    f.name: f for f in (FileHttpFactory(), CallbackDnsFactory(), CallbackHttpFactory())
}


def load_challenge_handler(name: str, config: dict[str, Any]) -> Any:  # noqa: ANN401
    """Create the challenge handler called *name*.

    Parameters
    ----------
    name:
        ``file_http``, ``callback_dns``, ``callback_http`` or
        ``ext:package.module.FactoryClass``.
    config:
        The ``ca.challenge_handler_config`` mapping.

    Raises
    ------
    CAError
        If the handler is unknown, cannot be imported, or is
        misconfigured.

    """
    if name in _FACTORIES:
        return _FACTORIES[name].create(config)
    if name.startswith("ext:"):
        return _external_factory(name[4:]).create(config)

    msg = (
        f"Unknown challenge handler '{name}'; built-in options: {sorted(_FACTORIES)}. "
        "Use 'ext:mypackage.module.FactoryClass' for custom handlers."
    )
    raise CAError(msg)


def _external_factory(fqn: str) -> ChallengeHandlerFactory:
    module_path, _, cls_name = fqn.rpartition(".")
    if not module_path:
        msg = f"Invalid challenge handler factory '{fqn}': expected 'package.module.Class'"
        raise CAError(msg)
    try:
        cls = getattr(importlib.import_module(module_path), cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load challenge handler factory '{fqn}': {exc}"
        raise CAError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, ChallengeHandlerFactory)):
        msg = f"Challenge handler factory '{fqn}' must subclass ChallengeHandlerFactory"
        raise CAError(msg)
    return cls()
