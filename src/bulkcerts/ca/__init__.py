"""Certificate authority clients.

The orchestrator only sees :class:`CAClient`; concrete clients are
picked by :func:`load_ca_client` from ``ca.client``.
"""

from bulkcerts.ca.base import CAClient, CAError, ObtainFailure, ObtainResult, classify_failure
from bulkcerts.ca.registry import load_ca_client

__all__ = [
    "CAClient",
    "CAError",
    "ObtainFailure",
    "ObtainResult",
    "classify_failure",
    "load_ca_client",
]
