"""Unit tests for persistence layer."""

from datetime import datetime, timedelta, timezone

import pytest

from notifier.domain.models import Job, Notification, NotificationLog, Template
from notifier.persistence import (
    Database,
    DatabaseConnectionError,
    DataIntegrityError,
    JobRepository,
    NotificationRepository,
    PreferenceRepository,
    RecordNotFoundError,
    TemplateRepository,
)
from notifier.persistence.database import _redact_url

NOW = datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def database(tmp_path):
    """File-backed database, closed after the test."""
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    yield db
    db.close()


def make_job(job_id, lane="email", run_at=NOW, **overrides):
    return Job(
        id=job_id,
        lane=lane,
        type="transactional" if lane != "bulk" else "bulk-email",
        payload={"recipient": "a@example.com", "template": "welcome"},
        created_at=NOW,
        run_at=run_at,
        **overrides,
    )


class TestDatabase:
    """Tests for database initialization and sessions."""

    def test_creates_file_and_parent_directories(self, tmp_path):
        """Test initialization creates the file and missing directories."""
        db_file = tmp_path / "nested" / "dir" / "test.db"

        db = Database(f"sqlite:///{db_file}")

        assert db_file.exists()
        db.close()

    def test_in_memory_database_is_shared(self):
        """Test that sessions of an in-memory database see the same data."""
        db = Database("sqlite:///:memory:")
        with db.session() as session:
            JobRepository(session).add(make_job("job_1"))
        with db.session() as session:
            assert JobRepository(session).get("job_1") is not None
        db.close()

    def test_rejects_empty_url(self):
        """Test that an empty URL is refused."""
        with pytest.raises(DatabaseConnectionError):
            Database("")

    def test_session_after_close(self, tmp_path):
        """Test that a closed database refuses new sessions."""
        db = Database(f"sqlite:///{tmp_path / 'closed.db'}")
        db.close()
        db.close()  # second close is a no-op

        with pytest.raises(DatabaseConnectionError):
            with db.session():
                pass

    def test_session_rolls_back_on_error(self, database):
        """Test that an exception inside the session discards its writes."""
        with pytest.raises(RuntimeError):
            with database.session() as session:
                JobRepository(session).add(make_job("job_1"))
                raise RuntimeError("boom")

        with database.session() as session:
            assert JobRepository(session).get("job_1") is None

    def test_redact_url(self):
        """Test that passwords are hidden in logged URLs."""
        assert _redact_url("postgresql://app:secret@db:5432/notifier") == "postgresql://app:***@db:5432/notifier"
        assert _redact_url("sqlite:///./data/notifier.db") == "sqlite:///./data/notifier.db"


class TestJobRepository:
    """Tests for JobRepository."""

    def test_add_and_get(self, database):
        """Test inserting and reading back a job."""
        with database.session() as session:
            JobRepository(session).add(make_job("job_1"))

        with database.session() as session:
            job = JobRepository(session).get("job_1")

        assert job.id == "job_1"
        assert job.state == "waiting"
        assert job.run_at == NOW
        assert job.payload["template"] == "welcome"

    def test_get_restricted_to_lane(self, database):
        """Test that a lane filter hides jobs of other lanes."""
        with database.session() as session:
            JobRepository(session).add(make_job("job_1", lane="sms"))

        with database.session() as session:
            repo = JobRepository(session)
            assert repo.get("job_1", lane="email") is None
            assert repo.get("job_1", lane="sms") is not None

    def test_duplicate_id(self, database):
        """Test that job ids are unique."""
        with database.session() as session:
            JobRepository(session).add(make_job("job_1"))

        with pytest.raises(DataIntegrityError):
            with database.session() as session:
                JobRepository(session).add(make_job("job_1"))

    def test_claim_next_fifo_and_eligibility(self, database):
        """Test that claims follow run_at then insertion, and skip future jobs."""
        with database.session() as session:
            repo = JobRepository(session)
            repo.add(make_job("job_future", run_at=NOW + timedelta(seconds=10)))
            repo.add(make_job("job_a"))
            repo.add(make_job("job_b"))

        with database.session() as session:
            repo = JobRepository(session)
            first = repo.claim_next("email", NOW, "lock-1")
            second = repo.claim_next("email", NOW, "lock-2")
            third = repo.claim_next("email", NOW, "lock-3")

        assert first.id == "job_a"
        assert first.state == "active"
        assert first.lock_token == "lock-1"
        assert first.processed_at == NOW
        assert second.id == "job_b"
        assert third is None

    def test_claim_next_ignores_other_lanes(self, database):
        """Test that lanes are isolated."""
        with database.session() as session:
            JobRepository(session).add(make_job("job_1", lane="sms"))

        with database.session() as session:
            assert JobRepository(session).claim_next("email", NOW, "lock") is None

    def test_finish_requires_matching_lock(self, database):
        """Test that only the lock holder can finish an attempt."""
        with database.session() as session:
            repo = JobRepository(session)
            repo.add(make_job("job_1"))
            repo.claim_next("email", NOW, "lock-1")

        with database.session() as session:
            repo = JobRepository(session)
            assert repo.mark_completed("job_1", "wrong", NOW, {"ok": True}) is False
            assert repo.mark_completed("job_1", "lock-1", NOW, {"ok": True}) is True
            # Already completed: the lock is gone
            assert repo.mark_failed("job_1", "lock-1", NOW, 1, "late") is False

        with database.session() as session:
            job = JobRepository(session).get("job_1")
        assert job.state == "completed"
        assert job.result == {"ok": True}
        assert job.lock_token is None
        assert job.finished_at == NOW

    def test_schedule_retry(self, database):
        """Test that a retry returns the job to waiting with a later run_at."""
        later = NOW + timedelta(seconds=2)
        with database.session() as session:
            repo = JobRepository(session)
            repo.add(make_job("job_1"))
            repo.claim_next("email", NOW, "lock-1")
            assert repo.schedule_retry("job_1", "lock-1", later, 1, "ECONNREFUSED") is True

        with database.session() as session:
            repo = JobRepository(session)
            job = repo.get("job_1")
            assert repo.claim_next("email", NOW, "lock-2") is None
            assert repo.claim_next("email", later, "lock-2").id == "job_1"

        assert job.state == "waiting"
        assert job.attempts_made == 1
        assert job.failed_reason == "ECONNREFUSED"

    def test_delete_any_state(self, database):
        """Test that delete returns the job as it was."""
        with database.session() as session:
            repo = JobRepository(session)
            repo.add(make_job("job_1"))
            repo.claim_next("email", NOW, "lock-1")

        with database.session() as session:
            repo = JobRepository(session)
            deleted = repo.delete("job_1")
            assert repo.delete("job_1") is None

        assert deleted.state == "active"

    def test_count_by_state_zero_filled(self, database):
        """Test that every state is present in counts."""
        with database.session() as session:
            repo = JobRepository(session)
            repo.add(make_job("job_1"))
            repo.add(make_job("job_2"))
            repo.claim_next("email", NOW, "lock-1")

        with database.session() as session:
            counts = JobRepository(session).count_by_state("email")

        assert counts == {"waiting": 1, "active": 1, "completed": 0, "failed": 0}

    def test_find_and_release_stalled(self, database):
        """Test stalled detection by lock age."""
        with database.session() as session:
            repo = JobRepository(session)
            repo.add(make_job("job_1"))
            repo.claim_next("email", NOW, "lock-1")

        with database.session() as session:
            repo = JobRepository(session)
            assert repo.find_stalled(NOW) == []
            stalled = repo.find_stalled(NOW + timedelta(seconds=31))
            assert [job.id for job in stalled] == ["job_1"]
            assert repo.release_stalled("job_1", "lock-1", 1) is True

        with database.session() as session:
            job = JobRepository(session).get("job_1")
        assert job.state == "waiting"
        assert job.stalled_count == 1
        assert job.locked_at is None

    def test_delete_finished_with_cutoff(self, database):
        """Test that cleanup only removes finished jobs older than the cutoff."""
        with database.session() as session:
            repo = JobRepository(session)
            for job_id in ("job_old", "job_new", "job_waiting"):
                repo.add(make_job(job_id))
            repo.claim_next("email", NOW, "l1")
            repo.mark_completed("job_old", "l1", NOW - timedelta(days=10), None)
            repo.claim_next("email", NOW, "l2")
            repo.mark_failed("job_new", "l2", NOW, 3, "boom")

        with database.session() as session:
            removed = JobRepository(session).delete_finished("email", NOW - timedelta(days=7))

        with database.session() as session:
            repo = JobRepository(session)
            assert removed == 1
            assert repo.get("job_old") is None
            assert repo.get("job_new") is not None
            assert repo.get("job_waiting") is not None

    def test_prune_keeps_newest(self, database):
        """Test retention keeps the most recently finished jobs."""
        with database.session() as session:
            repo = JobRepository(session)
            for index in range(4):
                repo.add(make_job(f"job_{index}"))
            for index in range(4):
                repo.claim_next("email", NOW, f"lock-{index}")
                repo.mark_completed(f"job_{index}", f"lock-{index}", NOW + timedelta(seconds=index), None)

        with database.session() as session:
            removed = JobRepository(session).prune("email", "completed", 2)

        with database.session() as session:
            repo = JobRepository(session)
            assert removed == 2
            assert repo.get("job_0") is None
            assert repo.get("job_1") is None
            assert repo.get("job_3") is not None


class TestNotificationRepository:
    """Tests for NotificationRepository."""

    def test_create_update_and_logs(self, database):
        """Test the lifecycle of a notification record."""
        with database.session() as session:
            repo = NotificationRepository(session)
            created = repo.create(
                Notification(user_id=7, template_name="event-reminder", channel="sms", job_id="job_1"),
                created_at=NOW,
            )
            repo.update_status(created.id, "sent", updated_at=NOW, sent_at=NOW)
            repo.add_log(NotificationLog(notification_id=created.id, provider="twilio", response={"sid": "SM1"}), NOW)

        with database.session() as session:
            repo = NotificationRepository(session)
            notification = repo.get_by_job_id("job_1")
            logs = repo.get_logs(created.id)

        assert notification.status == "sent"
        assert notification.sent_at == NOW
        assert [log.provider for log in logs] == ["twilio"]
        assert logs[0].response == {"sid": "SM1"}

    def test_update_missing_notification(self, database):
        """Test that updating an unknown id raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            with database.session() as session:
                NotificationRepository(session).update_status(999, "sent", updated_at=NOW)

    def test_log_for_missing_notification(self, database):
        """Test that logs must reference an existing notification."""
        with pytest.raises(DataIntegrityError):
            with database.session() as session:
                NotificationRepository(session).add_log(NotificationLog(notification_id=999), NOW)


class TestTemplateRepository:
    """Tests for TemplateRepository."""

    def test_upsert_bumps_version(self, database):
        """Test that replacing a template increments its version."""
        with database.session() as session:
            repo = TemplateRepository(session)
            repo.upsert(Template(name="welcome", channel="email", body_template="v1"), NOW)
            updated = repo.upsert(Template(name="welcome", channel="email", body_template="v2"), NOW)

        assert updated.version == 2
        assert updated.body_template == "v2"

    def test_lookup_is_per_channel(self, database):
        """Test that (name, channel) is the key."""
        with database.session() as session:
            TemplateRepository(session).upsert(Template(name="welcome", channel="sms", body_template="Hi"), NOW)

        with database.session() as session:
            repo = TemplateRepository(session)
            assert repo.get_by_name("welcome", "email") is None
            assert repo.get_by_name("welcome", "sms").body_template == "Hi"


class TestPreferenceRepository:
    """Tests for PreferenceRepository."""

    def test_set_and_get(self, database):
        """Test creating and updating a preference row."""
        with database.session() as session:
            repo = PreferenceRepository(session)
            assert repo.get(1, "sms") is None
            repo.set(1, "sms", True, NOW)
            repo.set(1, "sms", False, NOW)

        with database.session() as session:
            preference = PreferenceRepository(session).get(1, "sms")

        assert preference.is_enabled is False
