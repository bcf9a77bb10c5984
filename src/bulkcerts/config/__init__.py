"""Configuration subsystem for bulkcerts.

Public API::

    from bulkcerts.config import load_config

    config = load_config("bulkcerts.yaml", overrides={...})
    url = config.settings.ca.directory_url     # typed access
"""

from bulkcerts.config.bulkcerts_config import (
    BulkcertsConfig,
    ConfigValidationError,
    load_config,
)
from bulkcerts.config.settings import (
    AccountSettings,
    AuditLogSettings,
    BulkcertsSettings,
    CASettings,
    InputSettings,
    LoggingSettings,
    WorkspaceSettings,
    build_settings,
)

__all__ = [
    "AccountSettings",
    "AuditLogSettings",
    # Core
    "BulkcertsConfig",
    # Root
    "BulkcertsSettings",
    # Sections
    "CASettings",
    "ConfigValidationError",
    "InputSettings",
    "LoggingSettings",
    "WorkspaceSettings",
    "build_settings",
    "load_config",
]
