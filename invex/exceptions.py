"""
InvEX Exceptions

Error taxonomy for the invoice pipeline. Every error is scoped to a single
invoice run; none of them is fatal to the host process.

Each class carries a ``retryable`` flag read by the stage executor:
transient failures (network, timeouts, database hiccups) are retried per
stage policy, deterministic failures are not.
"""

from typing import Optional


class InvexError(Exception):
    """Base class for all InvEX errors"""

    retryable: bool = False

    def __init__(self, message: str, invoice_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.invoice_id = invoice_id


class DuplicateRunError(InvexError):
    """A run lease is already held for the invoice"""


class InvalidTransitionError(InvexError):
    """Invoice status change not allowed by the lifecycle"""


class RenderingError(InvexError):
    """PDF missing, empty, zero pages, or conversion failed"""


class ManifestError(InvexError):
    """Stage-handoff manifest is missing, corrupt or empty"""


class MissingArtifactError(InvexError):
    """A page image referenced by the run is not on disk"""


class ExtractionError(InvexError):
    """Transport or service failure while calling the extraction service"""

    retryable = True


class CircuitOpenError(ExtractionError):
    """Extraction short-circuited because the breaker is open"""

    def __init__(self, message: str, retry_after: float = 0.0, invoice_id: Optional[int] = None):
        super().__init__(message, invoice_id=invoice_id)
        self.retry_after = retry_after


class StageTimeoutError(InvexError):
    """A stage attempt exceeded its hard timeout"""

    retryable = True


class DecodeError(InvexError):
    """Extraction response could not be parsed as the declared schema"""


class ValidationError(InvexError):
    """Structural violation in the extraction candidate"""

    def __init__(self, message: str, field: Optional[str] = None, violations=None):
        super().__init__(message)
        self.field = field
        self.violations = list(violations or [])


class ReconciliationError(InvexError):
    """Line item totals do not reconcile with the invoice total"""


class PersistenceError(InvexError):
    """Transactional commit of the extracted data failed"""

    retryable = True


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate used by stage policies"""
    if isinstance(error, InvexError):
        return error.retryable
    # Unknown errors from third-party code: treat timeouts and I/O as transient
    return isinstance(error, (TimeoutError, ConnectionError, OSError))
