"""
Error taxonomy for summary requests.

Every failure that can reach a caller is one of these kinds. The service
layer turns them into payloads; nothing else crosses the interface.
"""

from typing import Optional


class SummaryGuardError(Exception):
    """Base class for all classified failures."""
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception

    def to_payload(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class InvalidInput(SummaryGuardError):
    """Missing or malformed resource id."""
    status_code = 400
    error_code = "invalid_input"


class QuotaExceeded(SummaryGuardError):
    """Identified actor is over its plan ceiling for the current period."""
    status_code = 429
    error_code = "quota_exceeded"

    def __init__(self, message: str, plan: str, remaining: int = 0):
        super().__init__(message)
        self.plan = plan
        self.remaining = remaining

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload.update(remaining=self.remaining, plan=self.plan)
        return payload


class SignInRequired(SummaryGuardError):
    """Anonymous actor is over the anonymous ceiling; authenticating lifts it."""
    status_code = 401
    error_code = "sign_in_required"


class NoInputData(SummaryGuardError):
    """The resource has no documents to summarize."""
    status_code = 404
    error_code = "no_input_data"


class GenerationFailed(SummaryGuardError):
    """The generator errored or timed out. Safe to retry; quota is already spent."""
    status_code = 502
    error_code = "generation_failed"


class StoreUnavailable(SummaryGuardError):
    """Ledger or cache I/O failed."""
    status_code = 503
    error_code = "store_unavailable"


class Unauthorized(SummaryGuardError):
    """Privileged operation called without the shared secret."""
    status_code = 401
    error_code = "unauthorized"


class GeneratorBusy(SummaryGuardError):
    """No generator worker is free. Raised before any quota is consumed."""
    status_code = 503
    error_code = "generator_busy"
