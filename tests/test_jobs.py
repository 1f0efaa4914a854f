"""Tests for background jobs and the APScheduler task queue."""

from unittest.mock import MagicMock

import pytest

from attio_sync.api.base import APIError, AuthenticationError, RateLimitError, ServerError, ValidationError
from attio_sync.db.database import get_db_session
from attio_sync.db.syncable import skip_attio_sync
from attio_sync.exceptions import RecordNotFound
from attio_sync.jobs.queue import SchedulerTaskQueue
from attio_sync.jobs.sync_job import perform_sync_job, server_error_backoff
from attio_sync.sync.models import SyncStatus


@pytest.fixture
def user(db, user_model):
    """A stored user that has not been synced yet."""
    skip_attio_sync(user_model)
    with get_db_session() as session:
        user = user_model(email="a@b.com", name="Ada")
        session.add(user)
    skip_attio_sync(user_model, False)
    return user


def _run(registry, user, action="sync", **options):
    return perform_sync_job("User", user.id, action, registry=registry, **options)


class TestActions:
    def test_sync_loads_and_syncs_record(self, registry, fake_client, user):
        result = _run(registry, user)

        assert result.status == SyncStatus.CREATED
        assert fake_client.calls_to("create_record")[0].args[0] == "people"

    def test_sync_rechecks_condition(self, registry, fake_client, user):
        with get_db_session() as session:
            session.merge(user).active = False
        fake_client.calls.clear()

        assert _run(registry, user) is None
        assert fake_client.calls == []

    def test_sync_disabled_does_nothing(self, registry, fake_client, user):
        registry.configure(sync_enabled=False)

        assert _run(registry, user) is None
        assert fake_client.calls == []

    def test_delete_uses_remote_id(self, registry, fake_client, user):
        result = _run(registry, user, action="delete", remote_id="rec-9")

        assert result.status == SyncStatus.DELETED
        assert fake_client.calls_to("delete_record")[0].args == ("people", "rec-9")

    def test_delete_without_remote_id_is_noop(self, registry, fake_client, user):
        assert _run(registry, user, action="delete") is None
        assert fake_client.calls == []

    def test_batch_action_runs_bulk_sync(self, registry, fake_client, user):
        results = _run(registry, user, action="batch_create", object_type="people", batch_size=None)

        assert len(results.successful) == 1
        assert fake_client.calls_to("create_record")[0].args[0] == "people"

    def test_unknown_model_is_discarded(self, registry, fake_client, db):
        assert perform_sync_job("Nope", 1, "sync", registry=registry) is None
        assert fake_client.calls == []

    def test_unknown_action_is_logged(self, registry, fake_client, user):
        assert _run(registry, user, action="explode") is None

    def test_missing_record_is_skipped(self, registry, fake_client, db):
        assert perform_sync_job("User", 999, "sync", registry=registry) is None

    def test_missing_record_raises_when_configured(self, registry, db):
        registry.configure(raise_on_missing_record=True)

        with pytest.raises(RecordNotFound):
            perform_sync_job("User", 999, "sync", registry=registry)


class TestRetryPolicy:
    def test_rate_limit_resubmits_after_retry_after(self, registry, fake_client, task_queue, user):
        fake_client.fail("create_record", RateLimitError("slow", status_code=429, retry_after=30))

        _run(registry, user)

        task = task_queue.submitted[0]
        assert task.action == "sync"
        assert task.delay == 30
        assert task.payload["attempt"] == 2
        assert task.payload["model_id"] == user.id

    def test_rate_limit_default_delay(self, registry, fake_client, task_queue, user):
        fake_client.fail("create_record", RateLimitError("slow", status_code=429))

        _run(registry, user)

        assert task_queue.submitted[0].delay == 60

    def test_rate_limit_gives_up_after_three_attempts(self, registry, fake_client, task_queue, user):
        fake_client.fail("create_record", RateLimitError("slow", status_code=429))

        with pytest.raises(RateLimitError):
            _run(registry, user, attempt=3)

        assert task_queue.submitted == []

    def test_server_error_backoff(self, registry, fake_client, task_queue, user):
        fake_client.fail("create_record", ServerError("down", status_code=503))

        _run(registry, user, attempt=2)

        assert task_queue.submitted[0].delay == server_error_backoff(2) == 18
        assert task_queue.submitted[0].payload["attempt"] == 3

    def test_server_error_gives_up_after_five_attempts(self, registry, fake_client, task_queue, user):
        fake_client.fail("create_record", ServerError("down", status_code=503))

        with pytest.raises(ServerError):
            _run(registry, user, attempt=5)

    def test_validation_error_is_not_retried(self, registry, fake_client, task_queue, user):
        fake_client.fail("create_record", ValidationError("bad", status_code=422))

        assert _run(registry, user) is None
        assert task_queue.submitted == []

    def test_authentication_error_fails_job(self, registry, fake_client, user):
        fake_client.fail("create_record", AuthenticationError("bad key", status_code=401))

        with pytest.raises(AuthenticationError):
            _run(registry, user)

    def test_unexpected_error_fails_job(self, registry, fake_client, user):
        fake_client.fail("create_record", APIError("boom"))

        with pytest.raises(APIError):
            _run(registry, user)


class TestSchedulerTaskQueue:
    def test_submit_adds_date_job(self):
        scheduler = MagicMock()
        scheduler.running = True
        job_func = MagicMock()
        queue = SchedulerTaskQueue(scheduler=scheduler, executor="attio", job_func=job_func)

        queue.submit("sync", {"model_name": "User", "model_id": 1}, delay=30)

        kwargs = scheduler.add_job.call_args.kwargs
        assert scheduler.add_job.call_args.args == (job_func,)
        assert kwargs["trigger"] == "date"
        assert kwargs["run_date"] is not None
        assert kwargs["executor"] == "attio"
        assert kwargs["kwargs"] == {"model_name": "User", "model_id": 1, "action": "sync"}

    def test_submit_without_delay_runs_now(self):
        scheduler = MagicMock()
        scheduler.running = True
        queue = SchedulerTaskQueue(scheduler=scheduler, job_func=MagicMock())

        queue.submit("delete", {"model_name": "User", "model_id": 1})

        assert scheduler.add_job.call_args.kwargs["run_date"] is None

    def test_starts_scheduler_on_first_submit(self):
        scheduler = MagicMock()
        scheduler.running = False
        queue = SchedulerTaskQueue(scheduler=scheduler, job_func=MagicMock())

        queue.submit("sync", {"model_name": "User", "model_id": 1})

        scheduler.start.assert_called_once()
