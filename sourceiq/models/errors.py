from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    invalid_credential = "InvalidCredential"
    quota_exceeded = "QuotaExceeded"
    service_overloaded = "ServiceOverloaded"
    network_error = "NetworkError"
    timeout = "Timeout"
    empty_response = "EmptyResponse"
    unknown = "Unknown"

    @property
    def is_credential_failure(self) -> bool:
        return self in (ErrorKind.invalid_credential, ErrorKind.quota_exceeded)


class SourceIQError(RuntimeError):
    pass


class ModelInvocationError(SourceIQError):
    def __init__(self, kind: ErrorKind, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.status = status


class InsufficientResultsError(SourceIQError):
    def __init__(self, success_count: int, required: int, total: int) -> None:
        super().__init__(
            f"Insufficient successful responses: {success_count}/{total} dimensions completed, {required} required"
        )
        self.success_count = success_count
        self.required = required
        self.total = total


class InvalidRepoUrlError(SourceIQError):
    pass


class UpstreamFetchError(SourceIQError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class AnalysisAbortedError(SourceIQError):
    """Raised before any model call when the repository cannot be fetched."""


class AnalysisFailedError(SourceIQError):
    """Raised when both the dynamic analysis and the fallback report fail."""
