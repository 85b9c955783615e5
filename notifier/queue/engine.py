"""Multi-lane job queue with retries, backoff and stalled-job recovery.

Lifecycle of a job:

    waiting --claim--> active --success--> completed
                         |
                         +--failure, attempts left, retryable--> waiting (run_at = now + backoff)
                         +--failure otherwise--> failed
                         +--lock older than stall_timeout--> waiting (or failed)

A cancelled job is deleted in whatever state it is in. Finishing an
attempt is conditional on the lock token handed out at claim time, so a
worker whose job was cancelled or reclaimed meanwhile changes nothing.
"""

import secrets
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from notifier.config.models import QueueConfig
from notifier.domain.models import LANE_JOB_TYPES, Job, JobState, JobType, Lane
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence import PersistenceError
from notifier.utils.timestamps import add_ms, format_timestamp, to_epoch_ms, utc_now

from .exceptions import JobProcessingError, JobValidationError
from .store import JobStore

logger = get_logger(__name__, component="queue")

Processor = Callable[[Job], Optional[Dict[str, Any]]]
Listener = Callable[[Dict[str, Any]], None]

EVENTS = ("completed", "failed", "stalled")
STALLED_REASON = "job stalled more than allowable limit"


@dataclass
class EnqueueResult:
    job_id: str
    lane: str
    job_type: str
    run_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "lane": self.lane,
            "job_type": self.job_type,
            "run_at": format_timestamp(self.run_at),
        }


@dataclass
class JobOutcome:
    """What happened to the job a process_next call claimed.

    ``outcome`` is completed, retry_scheduled, failed or finalize_skipped.
    """

    job_id: str
    lane: str
    outcome: str
    attempts_made: int
    duration_ms: int
    error: Optional[str] = None
    run_at: Optional[datetime] = None


@dataclass
class JobStatusResult:
    found: bool
    job: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.found:
            return {"found": True, "job": self.job}
        return {"found": False, "error": self.error}


@dataclass
class CancelResult:
    job_id: str
    found: bool
    cancelled: bool
    was_active: bool = False
    state: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class LaneStats:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.completed + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {**asdict(self), "total": self.total}


@dataclass
class CleanupResult:
    removed: int
    by_lane: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StallRecovery:
    requeued: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_job_id(now: datetime) -> str:
    """Job id of the form ``job_<epoch-ms>_<16 hex>``."""
    return f"job_{to_epoch_ms(now)}_{secrets.token_hex(8)}"


def backoff_delay_ms(base_ms: int, attempts_made: int) -> int:
    """Delay before the next attempt after ``attempts_made`` failures.

    Example:
        >>> [backoff_delay_ms(2000, n) for n in (1, 2, 3)]
        [2000, 4000, 8000]
    """
    return base_ms * 2 ** max(attempts_made - 1, 0)


class JobQueueEngine:
    """Durable job queue with one processor and a worker pool per lane.

    Attributes:
        store: JobStore holding the jobs
        processors: Lane name -> callable taking the claimed Job
        config: QueueConfig with attempts, backoff, stall and retention settings
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        store: JobStore,
        processors: Mapping[str, Processor],
        queue_config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        valid_lanes = {lane.value for lane in Lane}
        unknown = set(processors) - valid_lanes
        if unknown:
            raise ValueError(f"Unknown lanes: {', '.join(sorted(unknown))}")

        self.store = store
        self.processors = dict(processors)
        self.config = queue_config or QueueConfig()
        self.clock = clock
        self.lanes = tuple(lane.value for lane in Lane if lane.value in self.processors)

        self._listeners: Dict[str, List[Listener]] = {event: [] for event in EVENTS}
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    # Submission

    def enqueue(
        self,
        lane: str,
        job_type: str,
        payload: Optional[Mapping[str, Any]] = None,
        delay_ms: int = 0,
        max_attempts: Optional[int] = None,
        backoff_base_ms: Optional[int] = None,
    ) -> EnqueueResult:
        """Persist a new waiting job.

        Args:
            lane: email, sms or bulk
            job_type: A JobType value handled by the lane
            payload: JSON-serializable job data
            delay_ms: Do not run before now + delay_ms
            max_attempts: Attempt budget (default from config)
            backoff_base_ms: Base retry delay (default from config)

        Raises:
            JobValidationError: On unknown lane, unsupported type or bad options
        """
        self._require_lane(lane)
        try:
            job_type_enum = JobType(job_type)
        except ValueError:
            raise JobValidationError(f"Unknown job type: {job_type}")
        if job_type_enum not in LANE_JOB_TYPES[Lane(lane)]:
            raise JobValidationError(f"Lane {lane} does not handle job type {job_type}")
        if delay_ms < 0:
            raise JobValidationError(f"delay_ms must be >= 0, got {delay_ms}")
        if max_attempts is not None and max_attempts < 1:
            raise JobValidationError(f"max_attempts must be >= 1, got {max_attempts}")

        now = self.clock()
        job = Job(
            id=new_job_id(now),
            lane=lane,
            type=job_type_enum,
            payload=dict(payload or {}),
            max_attempts=max_attempts or self.config.default_attempts,
            backoff_base_ms=self.config.backoff_base_ms if backoff_base_ms is None else backoff_base_ms,
            created_at=now,
            run_at=add_ms(now, delay_ms),
        )
        self.store.add(job)

        logger.info(
            f"Enqueued {job.type} job {job.id} on lane {lane}",
            extra={
                "event": "queue.job.enqueued",
                "job_id": job.id,
                "lane": lane,
                "job_type": job.type,
                "delay_ms": delay_ms,
                "max_attempts": job.max_attempts,
            },
        )
        return EnqueueResult(job_id=job.id, lane=lane, job_type=job.type, run_at=job.run_at)

    # Processing

    def process_next(self, lane: str) -> Optional[JobOutcome]:
        """Claim and run the oldest eligible job of a lane.

        Returns:
            JobOutcome, or None when no job was eligible
        """
        self._require_lane(lane)
        lock_token = secrets.token_hex(16)
        job = self.store.claim_next(lane, self.clock(), lock_token)
        if job is None:
            return None

        with log_context(job_id=job.id, lane=lane, job_type=job.type):
            logger.debug(
                f"Claimed job {job.id} (attempt {job.attempts_made + 1}/{job.max_attempts})",
                extra={"event": "queue.job.claimed", "attempt": job.attempts_made + 1},
            )
            started = time.monotonic()
            try:
                result = self.processors[lane](job)
            except Exception as e:
                return self._finish_failure(job, lock_token, e, _elapsed_ms(started))
            return self._finish_success(job, lock_token, result, _elapsed_ms(started))

    def _finish_success(self, job: Job, lock_token: str, result: Any, duration_ms: int) -> JobOutcome:
        if result is not None and not isinstance(result, dict):
            result = {"value": result}

        if not self.store.complete(job.id, lock_token, self.clock(), result):
            return self._finalize_skipped(job, "completed", duration_ms)

        logger.info(
            f"Job {job.id} completed in {duration_ms}ms",
            extra={"event": "queue.job.completed", "duration_ms": duration_ms},
        )
        self._emit(
            "completed",
            {
                "job_id": job.id,
                "lane": job.lane,
                "type": job.type,
                "duration_ms": duration_ms,
                "result": result,
            },
        )
        self._apply_retention(job.lane)
        return JobOutcome(job.id, job.lane, "completed", job.attempts_made, duration_ms)

    def _finish_failure(self, job: Job, lock_token: str, error: Exception, duration_ms: int) -> JobOutcome:
        attempts_made = job.attempts_made + 1
        retryable = error.retryable if isinstance(error, JobProcessingError) else True
        reason = str(error) or type(error).__name__
        unexpected = not isinstance(error, JobProcessingError)

        if retryable and attempts_made < job.max_attempts:
            delay_ms = backoff_delay_ms(job.backoff_base_ms, attempts_made)
            run_at = add_ms(self.clock(), delay_ms)
            if not self.store.retry(job.id, lock_token, run_at, attempts_made, reason):
                return self._finalize_skipped(job, "retry_scheduled", duration_ms, reason)

            logger.warning(
                f"Job {job.id} failed (attempt {attempts_made}/{job.max_attempts}), retrying in {delay_ms}ms: {reason}",
                extra={
                    "event": "queue.job.retry_scheduled",
                    "attempts_made": attempts_made,
                    "delay_ms": delay_ms,
                    "error_type": type(error).__name__,
                },
                exc_info=unexpected,
            )
            return JobOutcome(
                job.id, job.lane, "retry_scheduled", attempts_made, duration_ms, error=reason, run_at=run_at
            )

        if not self.store.fail(job.id, lock_token, self.clock(), attempts_made, reason):
            return self._finalize_skipped(job, "failed", duration_ms, reason)

        logger.error(
            f"Job {job.id} failed after {attempts_made} attempt(s): {reason}",
            extra={
                "event": "queue.job.failed",
                "attempts_made": attempts_made,
                "retryable": retryable,
                "error_type": type(error).__name__,
            },
            exc_info=unexpected,
        )
        self._emit(
            "failed",
            {
                "job_id": job.id,
                "lane": job.lane,
                "type": job.type,
                "attempts_made": attempts_made,
                "error": reason,
            },
        )
        self._apply_retention(job.lane)
        return JobOutcome(job.id, job.lane, "failed", attempts_made, duration_ms, error=reason)

    def _finalize_skipped(
        self, job: Job, outcome: str, duration_ms: int, error: Optional[str] = None
    ) -> JobOutcome:
        logger.warning(
            f"Job {job.id} was cancelled or reclaimed while running; dropping its {outcome} outcome",
            extra={"event": "queue.job.finalize_skipped", "outcome": outcome, "error": error},
        )
        return JobOutcome(job.id, job.lane, "finalize_skipped", job.attempts_made, duration_ms, error=error)

    def _apply_retention(self, lane: str) -> None:
        try:
            removed = self.store.prune(lane, self.config.keep_completed, self.config.keep_failed)
        except PersistenceError as e:
            logger.warning(
                f"Retention pruning failed for lane {lane}: {e}",
                extra={"event": "queue.retention.failed", "lane": lane},
            )
            return
        if removed:
            logger.debug(
                f"Pruned {removed} finished job(s) from lane {lane}",
                extra={"event": "queue.retention.pruned", "lane": lane, "removed": removed},
            )

    # Workers

    def start(self) -> None:
        """Start ``concurrency`` worker threads per lane."""
        if self._threads:
            return
        self._stop.clear()
        for lane in self.lanes:
            for index in range(self.config.concurrency_for(lane)):
                thread = threading.Thread(
                    target=self._worker_loop,
                    args=(lane,),
                    name=f"queue-{lane}-{index + 1}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)

        logger.info(
            f"Queue workers started ({len(self._threads)} threads)",
            extra={
                "event": "queue.started",
                "concurrency": {lane: self.config.concurrency_for(lane) for lane in self.lanes},
            },
        )

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop the workers; with ``wait`` let running jobs finish first."""
        self._stop.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout)
        self._threads = []
        logger.info("Queue workers stopped", extra={"event": "queue.stopped"})

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stop.is_set()

    def _worker_loop(self, lane: str) -> None:
        while not self._stop.is_set():
            try:
                outcome = self.process_next(lane)
            except Exception as e:
                logger.error(
                    f"Worker error on lane {lane}: {e}",
                    extra={"event": "queue.worker.error", "lane": lane, "error_type": type(e).__name__},
                    exc_info=True,
                )
                outcome = None
            if outcome is None:
                self._stop.wait(self.config.poll_interval_seconds)

    # Maintenance

    def recover_stalled(self) -> StallRecovery:
        """Return jobs whose lock outlived ``stall_timeout`` to waiting, or fail them."""
        now = self.clock()
        cutoff = now - timedelta(seconds=self.config.stall_timeout_seconds)
        recovery = StallRecovery()
        failed_lanes = set()

        for job in self.store.find_stalled(cutoff):
            if job.lane not in self.lanes:
                continue
            stalled_count = job.stalled_count + 1
            with log_context(job_id=job.id, lane=job.lane, job_type=job.type):
                if stalled_count > self.config.max_stalled_count:
                    if self.store.fail_stalled(job.id, job.lock_token, now, stalled_count, STALLED_REASON):
                        recovery.failed.append(job.id)
                        failed_lanes.add(job.lane)
                        logger.error(
                            f"Job {job.id} {STALLED_REASON}",
                            extra={"event": "queue.job.failed", "stalled_count": stalled_count},
                        )
                        self._emit(
                            "failed",
                            {
                                "job_id": job.id,
                                "lane": job.lane,
                                "type": job.type,
                                "attempts_made": job.attempts_made,
                                "error": STALLED_REASON,
                            },
                        )
                elif self.store.release_stalled(job.id, job.lock_token, stalled_count):
                    recovery.requeued.append(job.id)
                    logger.warning(
                        f"Job {job.id} stalled, returned to waiting",
                        extra={"event": "queue.job.stalled", "stalled_count": stalled_count},
                    )
                    self._emit("stalled", {"job_id": job.id, "lane": job.lane, "type": job.type})

        for lane in sorted(failed_lanes):
            self._apply_retention(lane)
        return recovery

    def cleanup(self, lane: Optional[str] = None, older_than: Optional[timedelta] = None) -> CleanupResult:
        """Delete completed and failed jobs, optionally only those finished before now - older_than."""
        lanes = (lane,) if lane is not None else self.lanes
        for name in lanes:
            self._require_lane(name)
        cutoff = self.clock() - older_than if older_than is not None else None

        by_lane = {name: self.store.delete_finished(name, cutoff) for name in lanes}
        removed = sum(by_lane.values())
        logger.info(
            f"Cleaned up {removed} finished job(s)",
            extra={"event": "queue.cleanup", "removed": removed, "by_lane": by_lane},
        )
        return CleanupResult(removed=removed, by_lane=by_lane)

    # Queries

    def status(self, job_id: str, lane: Optional[str] = None) -> JobStatusResult:
        if lane is not None:
            self._require_lane(lane)
        job = self.store.get(job_id, lane)
        if job is None:
            return JobStatusResult(found=False, error="Job not found")
        return JobStatusResult(found=True, job=job.snapshot())

    def cancel(self, job_id: str, lane: Optional[str] = None) -> CancelResult:
        """Delete a job in any state.

        A job that is running keeps running; its outcome is discarded when
        the worker tries to record it.
        """
        if lane is not None:
            self._require_lane(lane)
        job = self.store.delete(job_id, lane)
        if job is None:
            return CancelResult(job_id=job_id, found=False, cancelled=False, error="Job not found")

        was_active = job.state == JobState.ACTIVE.value
        logger.info(
            f"Cancelled job {job_id} (state {job.state})",
            extra={
                "event": "queue.job.cancelled",
                "job_id": job_id,
                "lane": job.lane,
                "state": job.state,
                "was_active": was_active,
            },
        )
        return CancelResult(job_id=job_id, found=True, cancelled=True, was_active=was_active, state=job.state)

    def stats(self) -> Dict[str, LaneStats]:
        return {lane: LaneStats(**self.store.counts(lane)) for lane in self.lanes}

    # Events

    def subscribe(self, event: str, callback: Listener) -> None:
        """Register a callback for completed, failed or stalled events."""
        if event not in self._listeners:
            raise ValueError(f"Unknown queue event: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception as e:
                logger.error(
                    f"Queue {event} listener raised: {e}",
                    extra={"event": "queue.listener.error", "queue_event": event},
                    exc_info=True,
                )

    def _require_lane(self, lane: str) -> None:
        if lane not in self.lanes:
            raise JobValidationError(f"Unknown lane: {lane}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
