from typing import Optional, Dict, Any


class SandboxPoolError(Exception):
    """Base exception for all sandbox pool errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ConfigurationError(SandboxPoolError):
    """Raised when configuration or an update-expression request is invalid."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ValidationError(SandboxPoolError):
    """Raised when a record fails required-field checks before any write."""
    def __init__(self, message: str, code: str = "validation_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=400, details=details)


class LeaseNotFoundError(SandboxPoolError):
    """Raised when a lookup with exactly-one semantics matched nothing."""
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)


class AmbiguousResultError(SandboxPoolError):
    """Raised when a lookup expected to be unique matched more than one record."""
    def __init__(self, message: str, code: str = "ambiguous_result", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class StatusTransitionError(SandboxPoolError):
    """
    Raised when a conditional status write was rejected because the stored
    status no longer matched the expected source status.
    Usually a benign race; the caller decides whether to retry.
    """
    def __init__(
        self,
        message: str,
        record_id: str,
        prev_status: str,
        next_status: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {
            "record_id": record_id,
            "prev_status": prev_status,
            "next_status": next_status,
        }
        merged.update(details or {})
        super().__init__(message, code="status_transition_conflict", status_code=409, details=merged)
        self.record_id = record_id
        self.prev_status = prev_status
        self.next_status = next_status


class ConflictError(SandboxPoolError):
    """Raised when a guarded full-record write lost against a concurrent writer."""
    def __init__(self, message: str, code: str = "conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=409, details=details)


class BackingStoreError(SandboxPoolError):
    """Raised when the DynamoDB call itself failed (network, throttling, IAM)."""
    def __init__(
        self,
        message: str,
        code: str = "backing_store_error",
        aws_error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=502, details=details)
        self.aws_error_code = aws_error_code


class RecordMappingError(BackingStoreError):
    """Raised when a stored item cannot be translated into a record."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="record_mapping_error", details=details)
