"""Service layer for bulkcerts."""

from bulkcerts.services.issuance import IssuanceOrchestrator, IssuanceReport

__all__ = ["IssuanceOrchestrator", "IssuanceReport"]
