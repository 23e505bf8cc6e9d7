"""
Puits d'audit: événements structurés (falsification, écarts de montant, issues de réconciliation).
- LoggingAuditSink: logger 'marketplace.audit', niveau selon la gravité de l'événement.
- MemoryAuditSink: conserve les événements en mémoire (dev/tests).
"""
import logging
from typing import Any, Dict, List

TAMPERING_DETECTED = "tampering_detected"
VALIDATION_FAILED = "validation_failed"
AMOUNT_MISMATCH = "amount_mismatch"
SNAPSHOT_MISSING = "snapshot_missing"
RECONCILIATION_SUCCEEDED = "reconciliation_succeeded"
RECONCILIATION_FAILED = "reconciliation_failed"
PAYMENT_FAILED = "payment_failed"

_LEVELS = {
    TAMPERING_DETECTED: logging.WARNING,
    VALIDATION_FAILED: logging.WARNING,
    AMOUNT_MISMATCH: logging.ERROR,
    SNAPSHOT_MISSING: logging.ERROR,
    RECONCILIATION_FAILED: logging.ERROR,
    PAYMENT_FAILED: logging.WARNING,
    RECONCILIATION_SUCCEEDED: logging.INFO,
}


class LoggingAuditSink:
    def __init__(self, logger_name: str = "marketplace.audit"):
        self.logger = logging.getLogger(logger_name)

    def record(self, event: str, **fields: Any) -> None:
        level = _LEVELS.get(event, logging.INFO)
        self.logger.log(level, "audit event=%s fields=%s", event, fields, extra={"audit_event": event, "audit_fields": fields})


class MemoryAuditSink:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def record(self, event: str, **fields: Any) -> None:
        self.events.append({"event": event, **fields})

    def of_type(self, event: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == event]
