"""bulkcerts -- bulk issuance of ACME certificates from domain lists."""

__version__ = "1.0.0"
