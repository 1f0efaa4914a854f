"""Shared fixtures: test settings and registry, fake Attio client, in-memory database and syncable models."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import Boolean, Column, DateTime, Integer, String

from attio_sync.config import AttioSettings, ConfigurationRegistry
from attio_sync.db import database
from attio_sync.db.models import AttioDealMixin, AttioRecordMixin, Base
from attio_sync.db.syncable import deal_syncs_with_attio, install_session_hooks, skip_attio_sync, syncs_with_attio
from attio_sync.sync.deals import DealSpec
from attio_sync.testing import FakeAttioClient, RecordingTaskQueue


# ── Models ────────────────────────────────────────────────────────────────


@syncs_with_attio(
    "people",
    {"email_addresses": "email", "name": "name"},
    condition=lambda user: user.active,
)
class User(AttioRecordMixin, Base):
    __tablename__ = "test_users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255))
    name = Column(String(255))
    active = Column(Boolean, default=True)


@deal_syncs_with_attio(DealSpec(pipeline_id="sales", stage_field="current_stage_id"))
class Deal(AttioDealMixin, Base):
    __tablename__ = "test_deals"

    id = Column(Integer, primary_key=True)
    name = Column(String(255))
    value = Column(Integer, default=0)
    current_stage_id = Column(String(50))
    status = Column(String(20))
    closed_date = Column(DateTime)
    lost_reason = Column(String(255))


class Person:
    """Plain (unmapped) entity."""

    def __init__(self, id=1, email="a@b.com", name=None, attio_record_id=None, **extra):
        self.id = id
        self.email = email
        self.name = name
        self.attio_record_id = attio_record_id
        for key, value in extra.items():
            setattr(self, key, value)


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def settings():
    return AttioSettings(
        api_key="test-key",
        background_sync=False,
        enable_rate_limiting=False,
    )


@pytest.fixture
def task_queue():
    return RecordingTaskQueue()


@pytest.fixture
def registry(settings, task_queue):
    return ConfigurationRegistry(settings=settings, task_queue=task_queue)


@pytest.fixture
def fake_client(registry):
    client = FakeAttioClient()
    registry.set_client(client)
    return client


@pytest.fixture(autouse=True)
def hook_registry(registry):
    """Route commit hooks through the test registry."""
    install_session_hooks(registry)
    yield registry
    skip_attio_sync(User, False)


@pytest.fixture
def db(fake_client):
    """In-memory database; commits sync through the fake client."""
    database.init_db("sqlite://")
    yield database
    database.close_db()


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def person_factory():
    return Person


@pytest.fixture
def user_model():
    return User


@pytest.fixture
def deal_model():
    return Deal
