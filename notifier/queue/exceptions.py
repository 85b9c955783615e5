"""Job queue exceptions.

JobValidationError is raised to callers before anything is persisted.
JobProcessingError and its subclasses are raised by lane processors and
decide whether the queue schedules another attempt.
"""

from typing import Any, Dict, Optional


class QueueError(Exception):
    """Base exception for all job queue errors."""

    pass


class JobValidationError(QueueError):
    """Raised when a job cannot be enqueued.

    Examples:
    - Unknown lane
    - Job type the lane does not handle
    - Invalid delay or attempt count
    """

    pass


class JobProcessingError(QueueError):
    """Raised by a processor when a job attempt fails.

    Attributes:
        retryable: Whether another attempt could succeed
    """

    retryable = True

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class NonRetryableJobError(JobProcessingError):
    """Raised when retrying cannot help (bad payload, invalid recipient)."""

    retryable = False


class JobDeliveryError(JobProcessingError):
    """Raised when a send returned an unsuccessful delivery result.

    Attributes:
        result: The DeliveryResult as a dict
    """

    def __init__(self, message: str, retryable: bool = True, result: Optional[Dict[str, Any]] = None):
        super().__init__(message, retryable=retryable)
        self.result = result or {}
