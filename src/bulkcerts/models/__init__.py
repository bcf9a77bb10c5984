"""Entity models.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from bulkcerts.models.account import Account, Registration
from bulkcerts.models.certificate import CertificateAsset, CertificateMetadata

__all__ = [
    "Account",
    "CertificateAsset",
    "CertificateMetadata",
    "Registration",
]
