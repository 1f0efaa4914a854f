"""Tests for the model decorators and session commit hooks."""

from attio_sync.db.database import get_db_session, get_session
from attio_sync.db.syncable import (
    bulk_sync_model,
    bulk_upsert_model,
    get_model,
    get_sync_spec,
    skip_attio_sync,
)
from attio_sync.sync.policy import attio_identifier


def _create_user(user_model, **fields):
    with get_db_session() as session:
        user = user_model(**{"email": "a@b.com", "name": "Ada", **fields})
        session.add(user)
    return user


class TestDecorator:
    def test_registers_model_and_spec(self, user_model):
        spec = get_sync_spec(user_model)

        assert get_model("User") is user_model
        assert spec.object_type == "people"
        assert spec.remote_id_field == "attio_record_id"

    def test_to_attio_uses_mapping(self, user_model):
        user = user_model(email="a@b.com", name=None, active=True)

        assert user.to_attio() == {"email_addresses": "a@b.com"}

    def test_attio_identifier(self, user_model):
        user = user_model(id=3, email="a@b.com")

        assert attio_identifier(user, get_sync_spec(user)) == 3


class TestCommitHooks:
    def test_create_syncs_and_stores_remote_id(self, db, fake_client, user_model):
        user = _create_user(user_model)

        call = fake_client.calls_to("create_record")[0]
        assert call.args == ("people", {"email_addresses": "a@b.com", "name": "Ada"})
        assert user.attio_record_id == "attio-test-id"

        with get_db_session() as session:
            assert session.get(user_model, user.id).attio_record_id == "attio-test-id"

    def test_storing_remote_id_does_not_trigger_another_sync(self, db, fake_client, user_model):
        _create_user(user_model)

        assert len(fake_client.calls) == 1

    def test_update_syncs_existing_record(self, db, fake_client, user_model):
        user = _create_user(user_model)
        fake_client.calls.clear()

        with get_db_session() as session:
            session.merge(user).name = "Ada Lovelace"

        call = fake_client.calls_to("update_record")[0]
        assert call.args == ("people", "attio-test-id", {"email_addresses": "a@b.com", "name": "Ada Lovelace"})

    def test_condition_blocks_sync(self, db, fake_client, user_model):
        _create_user(user_model, active=False)

        assert fake_client.calls == []

    def test_delete_removes_remote_record(self, db, fake_client, user_model):
        user = _create_user(user_model)

        with get_db_session() as session:
            session.delete(session.get(user_model, user.id))

        assert fake_client.calls_to("delete_record")[0].args == ("people", "attio-test-id")

    def test_rollback_discards_pending_syncs(self, db, fake_client, user_model):
        session = get_session()
        session.add(user_model(email="a@b.com"))
        session.flush()
        session.rollback()
        session.close()

        assert fake_client.calls == []

    def test_skip_attio_sync(self, db, fake_client, user_model):
        skip_attio_sync(user_model)

        _create_user(user_model)

        assert fake_client.calls == []

    def test_background_mode_enqueues(self, db, fake_client, registry, task_queue, user_model):
        registry.configure(background_sync=True)

        user = _create_user(user_model)

        assert fake_client.calls == []
        assert task_queue.submitted[0].action == "sync"
        assert task_queue.submitted[0].payload == {"model_name": "User", "model_id": user.id}

    def test_disabled_sync_skips_hooks(self, db, fake_client, registry, user_model):
        registry.configure(sync_enabled=False)

        _create_user(user_model)

        assert fake_client.calls == []


class TestBulkHelpers:
    def test_bulk_sync_model_defaults_to_all_rows(self, db, fake_client, registry, user_model):
        skip_attio_sync(user_model)
        for index in range(3):
            _create_user(user_model, email=f"user{index}@example.com")

        results = bulk_sync_model(user_model, registry=registry)

        assert len(results.successful) == 3
        assert fake_client.calls_to("create_record")[0].args[1] == {
            "email_addresses": "user0@example.com",
            "name": "Ada",
        }

    def test_bulk_upsert_model_matches_on_attribute(self, db, fake_client, registry, user_model):
        skip_attio_sync(user_model)
        user = _create_user(user_model)

        bulk_upsert_model(user_model, [user], registry=registry, match_attribute="email_addresses")

        assert fake_client.calls_to("list_records")[0].kwargs["filter"] == {"email_addresses": "a@b.com"}

    def test_default_query_session_is_closed(self, db, fake_client, registry, user_model):
        skip_attio_sync(user_model)
        _create_user(user_model)

        bulk_sync_model(user_model, registry=registry)

        assert len(get_session().identity_map) == 0
