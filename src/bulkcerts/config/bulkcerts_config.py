"""bulkcerts configuration loader.

Lifecycle::

    # 1. The CLI builds one config value from a file plus flag overrides
    config = load_config("bulkcerts.yaml", overrides={"account": {"agree_terms": True}})

    # 2. The typed settings are handed explicitly to whoever needs them
    orchestrator = IssuanceOrchestrator(config.settings, store)

There is no process-wide singleton: two configs can coexist, which is
what the tests rely on.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from bulkcerts.ca.challenges import builtin_challenge_type
from bulkcerts.config.settings import BulkcertsSettings, build_settings
from bulkcerts.core.domains import standard_delimiter
from bulkcerts.core.errors import ConfigurationError, InputError

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_CLASS_PATH_RE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$",
)

_BUILTIN_CLIENTS = frozenset({"acme", "acmeow"})

_MIN_RSA_KEY_SIZE = 2048

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(ConfigurationError):
    """Raised when schema or cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge *overrides* into a copy of *base*.  ``None`` values are ignored."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _read_file(config_file: Path) -> dict[str, Any]:
    try:
        with config_file.open(encoding="utf-8") as f:
            if config_file.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as exc:
        msg = f"cannot read configuration file {config_file}: {exc}"
        raise ConfigValidationError([msg]) from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"cannot parse configuration file {config_file}: {exc}"
        raise ConfigValidationError([msg]) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"configuration file {config_file} must contain a mapping at the top level"
        raise ConfigValidationError([msg])
    return data


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class BulkcertsConfig:
    """Validated configuration value.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data`.
    """

    def __init__(self, data: dict[str, Any], source: Path | None = None) -> None:
        self._data = data
        self._source = source
        self._validate_schema()
        self.additional_checks()
        self._settings: BulkcertsSettings = build_settings(self._data)

    # -- access -------------------------------------------------------------

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    @property
    def source(self) -> Path | None:
        return self._source

    @property
    def settings(self) -> BulkcertsSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    # -- validation ---------------------------------------------------------

    def _validate_schema(self) -> None:
        schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
        validator = Draft202012Validator(schema)
        found = sorted(
            validator.iter_errors(self._data),
            key=lambda e: [str(p) for p in e.path],
        )
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in found
        ]
        if errors:
            raise ConfigValidationError(errors)

    def additional_checks(self) -> None:
        """Semantic & cross-field validation.

        Runs after schema validation passes.  Collects every problem
        before raising so the user can fix them all at once.
        """
        errors: list[str] = []
        warnings: list[str] = []

        ca = self._data.get("ca") or {}
        account = self._data.get("account") or {}
        input_cfg = self._data.get("input") or {}

        # -- CA --
        client = ca.get("client", "acme")
        if client not in _BUILTIN_CLIENTS:
            if not client.startswith("ext:"):
                errors.append(
                    f"ca.client '{client}' is unknown; built-in options: "
                    f"{sorted(_BUILTIN_CLIENTS)}. "
                    "Use 'ext:mypackage.module.ClassName' for custom clients.",
                )
            elif not _CLASS_PATH_RE.match(client[4:]):
                errors.append(
                    f"ca.client '{client}' is not a valid fully qualified Python "
                    "class path (expected 'ext:package.module.ClassName')",
                )
        directory_url = ca.get("directory_url")
        if directory_url and not directory_url.startswith(("https://", "http://")):
            errors.append(
                f"ca.directory_url must be an http(s) URL (got '{directory_url}')",
            )
        handler = ca.get("challenge_handler", "file_http")
        challenge_type = ca.get("challenge_type", "http-01")
        solves = builtin_challenge_type(handler)
        if solves is not None and solves != challenge_type:
            errors.append(
                f"ca.challenge_handler '{handler}' solves {solves}, "
                f"but ca.challenge_type is {challenge_type}",
            )
        if ca.get("verify_ssl") is False:
            warnings.append(
                "ca.verify_ssl is false; TLS certificates of the CA will not be verified",
            )

        # -- Account --
        key_size = account.get("key_size", _MIN_RSA_KEY_SIZE)
        if key_size < _MIN_RSA_KEY_SIZE:
            errors.append(
                f"account.key_size ({key_size}) must be >= {_MIN_RSA_KEY_SIZE}",
            )

        # -- Input --
        delimiter = input_cfg.get("delimiter")
        if delimiter is not None:
            try:
                standard_delimiter(delimiter)
            except InputError as exc:
                errors.append(f"input.delimiter: {exc}")

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        source = self._source or "<defaults>"
        return f"<BulkcertsConfig config_file={source}>"


def load_config(
    config_file: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> BulkcertsConfig:
    """Build a :class:`BulkcertsConfig` from a file and/or overrides.

    Parameters
    ----------
    config_file:
        Optional YAML (``.yaml``/``.yml``) or JSON configuration file.
    overrides:
        Nested dict merged over the file contents, typically built from
        command-line flags.  ``None`` leaves are skipped so unset flags
        do not mask file values.

    Raises
    ------
    ConfigValidationError
        If the file cannot be read, an environment reference cannot be
        resolved, or validation fails.

    """
    source = Path(config_file) if config_file else None
    data = _read_file(source) if source is not None else {}
    if overrides:
        data = _merge(data, overrides)
    _resolve_env_vars(data)
    return BulkcertsConfig(data, source=source)
