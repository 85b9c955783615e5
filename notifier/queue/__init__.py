"""Durable multi-lane job queue.

Public API:
    - JobQueueEngine: enqueue, process, cancel, inspect and clean up jobs
    - JobStore: thread-safe job storage
    - JobHandlers: job type dispatch to the notification service
    - BulkProcessor / BulkResult: chunked fan-out to many recipients
    - QueueError and subclasses
"""

from .bulk import BulkProcessor, BulkResult
from .engine import (
    CancelResult,
    CleanupResult,
    EnqueueResult,
    JobOutcome,
    JobQueueEngine,
    JobStatusResult,
    LaneStats,
    StallRecovery,
    backoff_delay_ms,
    new_job_id,
)
from .exceptions import (
    JobDeliveryError,
    JobProcessingError,
    JobValidationError,
    NonRetryableJobError,
    QueueError,
)
from .handlers import JobHandlers
from .store import JobStore

__all__ = [
    "JobQueueEngine",
    "JobStore",
    "JobHandlers",
    "BulkProcessor",
    "BulkResult",
    # Results
    "EnqueueResult",
    "JobOutcome",
    "JobStatusResult",
    "CancelResult",
    "LaneStats",
    "CleanupResult",
    "StallRecovery",
    "backoff_delay_ms",
    "new_job_id",
    # Exceptions
    "QueueError",
    "JobValidationError",
    "JobProcessingError",
    "NonRetryableJobError",
    "JobDeliveryError",
]
