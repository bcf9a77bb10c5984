"""Logging subsystem for bulkcerts.

Public API::

    from bulkcerts.logging import configure_logging

    configure_logging(settings.logging)
"""

from bulkcerts.logging.setup import AUDIT_LOGGER, configure_logging

__all__ = ["AUDIT_LOGGER", "configure_logging"]
