"""Error taxonomy for the audit pipeline."""

from enum import Enum
from typing import Optional


class AuditError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(AuditError):
    """Required configuration is missing or invalid. Raised at startup."""


class ValidationError(AuditError, ValueError):
    """Malformed caller input or a malformed AI reply."""


class ExtractionReason(str, Enum):
    """Why a page could not be turned into a snapshot."""
    DNS_FAILURE = "dns_failure"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    HTTP_STATUS = "http_status"
    NAVIGATION_FAILED = "navigation_failed"
    EMPTY_DOCUMENT = "empty_document"


class ExtractionError(AuditError):
    """Page load failed. Fatal to the whole job."""

    def __init__(
        self,
        reason: ExtractionReason,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{self.reason.value}: {base} (status={self.status_code})"
        return f"{self.reason.value}: {base}"


class BrowserLaunchError(AuditError, ConnectionError):
    """The browser runtime could not be started or a context not created."""


class WorkerAcquireTimeout(AuditError, TimeoutError):
    """No browser worker became free before the acquire timeout."""


class TransientLLMError(AuditError, ConnectionError):
    """Retry budget for an LLM call was exhausted on transient failures."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class PersistenceError(AuditError, ConnectionError):
    """The job store could not be written after all attempts."""


class JobNotFoundError(AuditError, LookupError):
    """No job with the given id is running or persisted."""
