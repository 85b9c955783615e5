"""Durable job storage for the queue engine.

Each operation runs in its own short transaction. Operations are
serialised behind a process-wide lock, which SQLite needs for concurrent
writers and which costs little on other databases.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from notifier.domain.models import Job
from notifier.persistence import Database, JobRepository


class JobStore:
    """Thread-safe facade over JobRepository.

    Methods mirror the repository; see JobRepository for semantics. State
    transitions out of ``active`` take the lock token issued at claim time
    and return False when the job was cancelled or reclaimed meanwhile.
    """

    def __init__(self, database: Database):
        self.database = database
        self._lock = threading.RLock()

    def add(self, job: Job) -> Job:
        with self._lock, self.database.session() as session:
            return JobRepository(session).add(job)

    def get(self, job_id: str, lane: Optional[str] = None) -> Optional[Job]:
        with self._lock, self.database.session() as session:
            return JobRepository(session).get(job_id, lane)

    def claim_next(self, lane: str, now: datetime, lock_token: str) -> Optional[Job]:
        with self._lock, self.database.session() as session:
            return JobRepository(session).claim_next(lane, now, lock_token)

    def complete(self, job_id: str, lock_token: str, finished_at: datetime, result: Optional[Dict[str, Any]]) -> bool:
        with self._lock, self.database.session() as session:
            return JobRepository(session).mark_completed(job_id, lock_token, finished_at, result)

    def fail(self, job_id: str, lock_token: str, finished_at: datetime, attempts_made: int, reason: str) -> bool:
        with self._lock, self.database.session() as session:
            return JobRepository(session).mark_failed(job_id, lock_token, finished_at, attempts_made, reason)

    def retry(self, job_id: str, lock_token: str, run_at: datetime, attempts_made: int, reason: str) -> bool:
        with self._lock, self.database.session() as session:
            return JobRepository(session).schedule_retry(job_id, lock_token, run_at, attempts_made, reason)

    def delete(self, job_id: str, lane: Optional[str] = None) -> Optional[Job]:
        with self._lock, self.database.session() as session:
            return JobRepository(session).delete(job_id, lane)

    def counts(self, lane: str) -> Dict[str, int]:
        with self._lock, self.database.session() as session:
            return JobRepository(session).count_by_state(lane)

    def find_stalled(self, locked_before: datetime) -> List[Job]:
        with self._lock, self.database.session() as session:
            return JobRepository(session).find_stalled(locked_before)

    def release_stalled(self, job_id: str, lock_token: str, stalled_count: int) -> bool:
        with self._lock, self.database.session() as session:
            return JobRepository(session).release_stalled(job_id, lock_token, stalled_count)

    def fail_stalled(
        self, job_id: str, lock_token: str, finished_at: datetime, stalled_count: int, reason: str
    ) -> bool:
        with self._lock, self.database.session() as session:
            return JobRepository(session).fail_stalled(job_id, lock_token, finished_at, stalled_count, reason)

    def delete_finished(self, lane: str, finished_before: Optional[datetime] = None) -> int:
        with self._lock, self.database.session() as session:
            return JobRepository(session).delete_finished(lane, finished_before)

    def prune(self, lane: str, keep_completed: int, keep_failed: int) -> int:
        """Apply retention for both finished states in one transaction."""
        with self._lock, self.database.session() as session:
            repo = JobRepository(session)
            return repo.prune(lane, "completed", keep_completed) + repo.prune(lane, "failed", keep_failed)
