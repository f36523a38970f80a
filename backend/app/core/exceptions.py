"""Error taxonomy for the commission & penalty settlement engine.

Services raise these; ``app.main`` maps them onto HTTP responses.
Every error carries a machine-readable ``code`` and optional context
(e.g. current vs. requested settlement state) for the UI message.
"""
from typing import Optional


class CommissionEngineError(Exception):
    code = "commission_error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"detail": self.message, "error": self.code}
        payload.update(self.context)
        return payload


class ValidationError(CommissionEngineError):
    """Missing or malformed required input (empty reject comment, no salesperson...)."""
    code = "validation_error"
    status_code = 400


class InvalidRuleConfig(CommissionEngineError):
    """Rule is inactive or lacks the fields its type requires."""
    code = "invalid_rule_config"
    status_code = 400


class NotFoundError(CommissionEngineError):
    code = "not_found"
    status_code = 404


class InvalidStateTransition(CommissionEngineError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, current: Optional[str], requested: str, message: Optional[str] = None, **context):
        message = message or f"Cannot {requested} a settlement in '{current}' state"
        super().__init__(message, current=current, requested=requested, **context)
        self.current = current
        self.requested = requested


class DuplicateSettlement(CommissionEngineError):
    code = "duplicate_settlement"
    status_code = 409


class DocumentNumberConflict(CommissionEngineError):
    """Concurrent writers kept taking the same document number."""
    code = "document_number_conflict"
    status_code = 409


class NoQualifyingRecords(CommissionEngineError):
    code = "no_qualifying_records"
    status_code = 400


class ExternalServiceError(CommissionEngineError):
    """Voucher linkage or another collaborator failed."""
    code = "external_service_error"
    status_code = 502
