"""Tests for single-record sync and removal."""

import pytest

from attio_sync.api.base import APIError, AuthenticationError, NotFoundError
from attio_sync.sync.executor import SyncExecutor
from attio_sync.sync.models import SyncSpec, SyncStatus


@pytest.fixture
def executor(registry, fake_client):
    return SyncExecutor(registry)


@pytest.fixture
def spec():
    return SyncSpec("people", {"email_addresses": "email", "name": "name"})


class TestSync:
    def test_create_stores_remote_id(self, executor, fake_client, spec, person_factory):
        person = person_factory(email="a@b.com", name="Ada")

        result = executor.sync(person, spec)

        assert result.status == SyncStatus.CREATED
        assert result.remote_id == "attio-test-id"
        assert person.attio_record_id == "attio-test-id"
        call = fake_client.calls_to("create_record")[0]
        assert call.args == ("people", {"email_addresses": "a@b.com", "name": "Ada"})

    def test_sync_after_create_updates(self, executor, fake_client, spec, person_factory):
        person = person_factory()

        executor.sync(person, spec)
        result = executor.sync(person, spec)

        assert result.status == SyncStatus.UPDATED
        assert len(fake_client.calls_to("create_record")) == 1
        assert fake_client.calls_to("update_record")[0].args[:2] == ("people", "attio-test-id")

    def test_update_existing_record(self, executor, fake_client, spec, person_factory):
        result = executor.sync(person_factory(attio_record_id="rec-1"), spec)

        assert result.status == SyncStatus.UPDATED
        assert result.remote_id == "rec-1"
        assert fake_client.calls_to("create_record") == []

    def test_hooks_run_around_remote_call(self, executor, fake_client, person_factory):
        events = []
        spec = SyncSpec(
            "people",
            {"email_addresses": "email"},
            before_sync=lambda entity: events.append(("before", len(fake_client.calls))),
            after_sync=lambda result, entity: events.append(("after", result.status, entity.id)),
        )

        executor.sync(person_factory(id=3), spec)

        assert events == [("before", 0), ("after", SyncStatus.CREATED, 3)]

    def test_transform_is_applied(self, executor, fake_client, person_factory):
        spec = SyncSpec(
            "people",
            {"email_addresses": "email"},
            transform=lambda payload: {**payload, "source": "app"},
        )

        executor.sync(person_factory(), spec)

        assert fake_client.calls_to("create_record")[0].args[1] == {
            "email_addresses": "a@b.com",
            "source": "app",
        }


class TestSyncErrors:
    def test_strict_mode_raises_after_logging(self, executor, fake_client, registry, spec, person_factory):
        registry.configure(raise_errors=True)
        fake_client.fail("create_record", APIError("boom"))

        with pytest.raises(APIError):
            executor.sync(person_factory(), spec)

    def test_lenient_mode_returns_failed_result(self, executor, fake_client, spec, person_factory):
        fake_client.fail("create_record", APIError("boom"))

        result = executor.sync(person_factory(), spec)

        assert result.status == SyncStatus.FAILED
        assert result.error.kind == "APIError"
        assert "boom" in result.error.message

    def test_error_handler_owns_the_error(self, executor, fake_client, registry, person_factory):
        registry.configure(raise_errors=True)
        handled = []
        spec = SyncSpec(
            "people",
            {"email_addresses": "email"},
            error_handler=lambda error, entity: handled.append((str(error), entity.id)),
        )
        fake_client.fail("create_record", APIError("boom"))

        result = executor.sync(person_factory(id=5), spec)

        assert result.status == SyncStatus.FAILED
        assert handled == [("API Error: boom", 5)]

    def test_error_handler_exception_propagates(self, executor, fake_client, person_factory):
        def handler(error):
            raise RuntimeError("handler failed")

        spec = SyncSpec("people", {"email_addresses": "email"}, error_handler=handler)
        fake_client.fail("create_record", APIError("boom"))

        with pytest.raises(RuntimeError, match="handler failed"):
            executor.sync(person_factory(), spec)

    def test_authentication_errors_always_raise(self, executor, fake_client, spec, person_factory):
        fake_client.fail("create_record", AuthenticationError("bad key", status_code=401))

        with pytest.raises(AuthenticationError):
            executor.sync(person_factory(), spec)

    def test_explicit_raise_errors_overrides_settings(self, executor, fake_client, spec, person_factory):
        fake_client.fail("update_record", APIError("boom"))

        with pytest.raises(APIError):
            executor.sync(person_factory(attio_record_id="rec-1"), spec, raise_errors=True)


class TestDispatch:
    def test_inline_when_background_disabled(self, executor, fake_client, task_queue, spec, person_factory):
        result = executor.dispatch_sync(person_factory(), spec)

        assert result.status == SyncStatus.CREATED
        assert task_queue.submitted == []

    def test_background_enqueues_job(self, executor, fake_client, registry, task_queue, spec, person_factory):
        registry.configure(background_sync=True)

        result = executor.dispatch_sync(person_factory(id=4), spec)

        assert result.status == SyncStatus.ENQUEUED
        assert fake_client.calls == []
        task = task_queue.submitted[0]
        assert task.action == "sync"
        assert task.payload == {"model_name": "Person", "model_id": 4}

    def test_background_remove_carries_remote_id(self, executor, registry, task_queue, spec, person_factory):
        registry.configure(background_sync=True)

        result = executor.dispatch_remove(person_factory(id=4, attio_record_id="rec-9"), spec)

        assert result.status == SyncStatus.ENQUEUED
        assert task_queue.submitted[0].action == "delete"
        assert task_queue.submitted[0].payload["remote_id"] == "rec-9"


class TestRemove:
    def test_deletes_remote_record(self, executor, fake_client, spec, person_factory):
        result = executor.remove(person_factory(attio_record_id="rec-1"), spec)

        assert result.status == SyncStatus.DELETED
        assert fake_client.calls_to("delete_record")[0].args == ("people", "rec-1")

    def test_skips_without_remote_id(self, executor, fake_client, spec, person_factory):
        assert executor.remove(person_factory(), spec).status == SyncStatus.SKIPPED
        assert fake_client.calls == []

    def test_not_found_counts_as_deleted(self, executor, fake_client, spec, person_factory):
        fake_client.fail("delete_record", NotFoundError("gone", status_code=404))

        result = executor.remove(person_factory(attio_record_id="rec-1"), spec)

        assert result.status == SyncStatus.DELETED

    def test_other_errors_follow_error_routing(self, executor, fake_client, spec, person_factory):
        fake_client.fail("delete_record", APIError("boom"))

        result = executor.remove(person_factory(attio_record_id="rec-1"), spec)

        assert result.status == SyncStatus.FAILED
