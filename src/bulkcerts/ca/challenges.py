"""Challenge provisioners: publish and withdraw ACME challenge responses.

A provisioner knows one challenge type and two operations:

- ``publish(domain, name, value)``: make the response visible to the CA
- ``withdraw(domain, name)``: remove it again

For ``http-01`` *name* is the token and *value* the key authorization;
for ``dns-01`` *name* is the TXT record name and *value* its content.
These are the same shapes ACMEOW's callback handlers take, so the
ACMEOW handler factories wrap the provisioners below.

Built-in provisioners:

- ``file_http``     -- write HTTP-01 tokens below a webroot directory
- ``callback_dns``  -- run operator scripts to publish DNS-01 records
- ``callback_http`` -- run operator scripts to publish HTTP-01 tokens

Custom provisioners are loaded with the ``ext:`` prefix
(e.g. ``ext:mypackage.challenges.MyProvisioner``).
"""

from __future__ import annotations

import abc
import importlib
import logging
import subprocess
from pathlib import Path
from typing import Any

from bulkcerts.ca.base import CAError

log = logging.getLogger(__name__)

HTTP_01 = "http-01"
DNS_01 = "dns-01"

DEFAULT_SCRIPT_TIMEOUT = 60
DEFAULT_PROPAGATION_DELAY = 10

WELL_KNOWN = Path(".well-known") / "acme-challenge"


class ChallengeProvisioner(abc.ABC):
    """Publish challenge responses for one challenge type.

    Parameters
    ----------
    config:
        The ``ca.challenge_handler_config`` mapping.

    Raises
    ------
    CAError
        If a required key is missing from *config*.

    """

    name: str = ""
    challenge_type: str = HTTP_01

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config

    @property
    def propagation_delay(self) -> int:
        """Seconds to wait after publishing before asking the CA to validate."""
        return 0

    @abc.abstractmethod
    def publish(self, domain: str, name: str, value: str) -> None:
        """Make the response *value* for *domain* visible to the CA."""

    @abc.abstractmethod
    def withdraw(self, domain: str, name: str) -> None:
        """Remove a response published by :meth:`publish`."""

    def _require(self, key: str) -> str:
        value = self._config.get(key)
        if not value:
            msg = f"{self.name} handler requires '{key}' in challenge_handler_config"
            raise CAError(msg)
        return str(value)


def _script_runner(script: str, timeout: int, action: str):  # noqa: ANN202
    """Wrap *script* in a callable that passes its arguments on the command line."""

    def run(*args: str) -> None:
        log.info("%s via %s: %s", action, script, " ".join(args))
        try:
            subprocess.run(  # noqa: S603
                [script, *args],
                check=True,
                timeout=timeout,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            msg = f"{action} script {script} exited with status {exc.returncode}: {exc.stderr}"
            raise CAError(msg) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            msg = f"{action} script {script} failed: {exc}"
            raise CAError(msg, retryable=True) from exc

    return run


class WebrootProvisioner(ChallengeProvisioner):
    """HTTP-01 tokens written to ``<webroot>/.well-known/acme-challenge/``.

    Required config keys: ``webroot``.
    """

    name = "file_http"
    challenge_type = HTTP_01

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        self.webroot = Path(self._require("webroot"))

    def publish(self, domain: str, name: str, value: str) -> None:
        path = self.webroot / WELL_KNOWN / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(value, encoding="ascii")
        except OSError as exc:
            msg = f"Failed to write HTTP-01 token for {domain} to '{path}': {exc}"
            raise CAError(msg) from exc
        log.debug("Published HTTP-01 token at %s", path, extra={"domain": domain})

    def withdraw(self, domain: str, name: str) -> None:
        path = self.webroot / WELL_KNOWN / name
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to remove HTTP-01 token for {domain} at '{path}': {exc}"
            raise CAError(msg) from exc


class ScriptDnsProvisioner(ChallengeProvisioner):
    """DNS-01 records published by operator scripts.

    Required config keys:

    - ``create_script``: called as ``script <domain> <record_name> <record_value>``
    - ``delete_script``: called as ``script <domain> <record_name>``

    Optional: ``propagation_delay`` (seconds, default 10) and
    ``script_timeout`` (seconds, default 60).
    """

    name = "callback_dns"
    challenge_type = DNS_01

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        timeout = config.get("script_timeout", DEFAULT_SCRIPT_TIMEOUT)
        self._create = _script_runner(self._require("create_script"), timeout, "DNS create")
        self._delete = _script_runner(self._require("delete_script"), timeout, "DNS delete")

    @property
    def propagation_delay(self) -> int:
        return self._config.get("propagation_delay", DEFAULT_PROPAGATION_DELAY)

    def publish(self, domain: str, name: str, value: str) -> None:
        self._create(domain, name, value)

    def withdraw(self, domain: str, name: str) -> None:
        self._delete(domain, name)


class ScriptHttpProvisioner(ChallengeProvisioner):
    """HTTP-01 tokens published by operator scripts.

    Required config keys:

    - ``deploy_script``: called as ``script <domain> <token> <key_authorization>``
    - ``cleanup_script``: called as ``script <domain> <token>``
    """

    name = "callback_http"
    challenge_type = HTTP_01

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        timeout = config.get("script_timeout", DEFAULT_SCRIPT_TIMEOUT)
        self._deploy = _script_runner(self._require("deploy_script"), timeout, "HTTP deploy")
        self._cleanup = _script_runner(self._require("cleanup_script"), timeout, "HTTP cleanup")

    def publish(self, domain: str, name: str, value: str) -> None:
        self._deploy(domain, name, value)

    def withdraw(self, domain: str, name: str) -> None:
        self._cleanup(domain, name)


_PROVISIONERS: dict[str, type[ChallengeProvisioner]] = {
    cls.name: cls for cls in (WebrootProvisioner, ScriptDnsProvisioner, ScriptHttpProvisioner)
}


def builtin_challenge_type(name: str) -> str | None:
    """Challenge type solved by the built-in provisioner *name*, if there is one."""
    cls = _PROVISIONERS.get(name)
    return cls.challenge_type if cls is not None else None


def load_provisioner(name: str, config: dict[str, Any]) -> ChallengeProvisioner:
    """Create the challenge provisioner called *name*.

    Parameters
    ----------
    name:
        ``file_http``, ``callback_dns``, ``callback_http`` or
        ``ext:package.module.ProvisionerClass``.
    config:
        The ``ca.challenge_handler_config`` mapping.

    Raises
    ------
    CAError
        If the provisioner is unknown, cannot be imported, or is
        misconfigured.

    """
    if name in _PROVISIONERS:
        return _PROVISIONERS[name](config)
    if name.startswith("ext:"):
        return _external_provisioner(name[4:])(config)

    msg = (
        f"Unknown challenge handler '{name}'; built-in options: {sorted(_PROVISIONERS)}. "
        "Use 'ext:mypackage.module.ProvisionerClass' for custom handlers."
    )
    raise CAError(msg)


def _external_provisioner(fqn: str) -> type[ChallengeProvisioner]:
    module_path, _, cls_name = fqn.rpartition(".")
    if not module_path:
        msg = f"Invalid challenge provisioner '{fqn}': expected 'package.module.Class'"
        raise CAError(msg)
    try:
        cls = getattr(importlib.import_module(module_path), cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load challenge provisioner '{fqn}': {exc}"
        raise CAError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, ChallengeProvisioner)):
        msg = f"Challenge provisioner '{fqn}' must subclass ChallengeProvisioner"
        raise CAError(msg)
    return cls
