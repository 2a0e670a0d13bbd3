"""
Error taxonomy for the contract analysis core.

Every error carries the HTTP status the transport layer should answer with.
Parse degradation is deliberately absent: a degraded parse is a flag on the
record, never an exception.
"""

from enum import Enum
from typing import Optional


class LLMErrorType(str, Enum):
    """Types of generation provider errors"""
    RATE_LIMIT = "rate_limit"
    TOKEN_LIMIT = "token_limit"
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ContractAnalysisError(Exception):
    """Base error for the contract analysis core"""
    status_code: int = 500
    error_type: str = "internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ExtractionFailure(ContractAnalysisError):
    """Text could not be extracted from the uploaded document"""
    status_code = 422
    error_type = "extraction_failure"


class GenerationFailure(ContractAnalysisError):
    """The external model was unreachable, failed or timed out"""
    status_code = 502
    error_type = "generation_failure"

    def __init__(self, message: str, llm_error_type: LLMErrorType = LLMErrorType.UNKNOWN):
        self.llm_error_type = llm_error_type
        super().__init__(message)


class ValidationFailure(ContractAnalysisError):
    """A required request field is missing or invalid"""
    status_code = 400
    error_type = "validation_failure"


class QuotaExceeded(ContractAnalysisError):
    """The owner reached the stored-analysis limit of their tier"""
    status_code = 403
    error_type = "quota_exceeded"


class RateLimited(ContractAnalysisError):
    """Too many operations for this client identity in the current window"""
    status_code = 429
    error_type = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class NotFoundOrUnauthorized(ContractAnalysisError):
    """Record does not exist or belongs to someone else (indistinguishable)"""
    status_code = 404
    error_type = "not_found"

    def __init__(self, message: str = "Contract analysis not found"):
        super().__init__(message)


class CacheUnavailable(ContractAnalysisError):
    """A cache invalidation could not be completed"""
    status_code = 503
    error_type = "cache_unavailable"
