"""
Test helpers for applications using Attio Sync.

Example:
    def test_user_is_synced():
        with expect_attio_sync("people", {"email_addresses": "a@example.com"}):
            session.add(User(email="a@example.com"))
            session.commit()
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.db.syncable import get_sync_spec
from attio_sync.sync.rules import Field, Static

TEST_RECORD_ID = "attio-test-id"

_UNSET = object()


@dataclass
class RecordedCall:
    method: str
    args: Tuple[Any, ...]
    kwargs: Dict[str, Any]


class FakeAttioClient:
    """
    In-memory stand-in for AttioClient.

    Every call is recorded in ``calls``. Responses can be replaced per
    method with respond(); failures are scripted with fail().
    """

    def __init__(self, supports_bulk: bool = False, record_id: str = TEST_RECORD_ID):
        self.supports_bulk = supports_bulk
        self.record_id = record_id
        self.calls: List[RecordedCall] = []
        self._responses: Dict[str, Any] = {}
        self._errors: Dict[str, List[Exception]] = {}
        self._sticky_errors: Dict[str, Exception] = {}

    def respond(self, method: str, response: Any) -> "FakeAttioClient":
        """Return ``response`` from ``method`` (a callable is called with the call's arguments)."""
        self._responses[method] = response
        return self

    def fail(self, method: str, error: Exception, times: Optional[int] = None) -> "FakeAttioClient":
        """Raise ``error`` from ``method``, every time or for the next ``times`` calls."""
        if times is None:
            self._sticky_errors[method] = error
        else:
            self._errors.setdefault(method, []).extend([error] * times)
        return self

    def calls_to(self, method: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.method == method]

    def supports(self, operation: str) -> bool:
        return hasattr(self, operation)

    def _call(self, method: str, default: Any, *args: Any, **kwargs: Any) -> Any:
        self.calls.append(RecordedCall(method, args, kwargs))

        queued = self._errors.get(method)
        if queued:
            raise queued.pop(0)
        if method in self._sticky_errors:
            raise self._sticky_errors[method]

        response = self._responses.get(method, default)
        if callable(response):
            return response(*args, **kwargs)
        return response

    def _record_response(self, record_id: str) -> Dict[str, Any]:
        return {"data": {"id": {"record_id": record_id}}}

    # Records

    def create_record(self, object_type: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("create_record", self._record_response(self.record_id), object_type, values)

    def update_record(self, object_type: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("update_record", self._record_response(record_id), object_type, record_id, values)

    def delete_record(self, object_type: str, record_id: str) -> Dict[str, Any]:
        return self._call("delete_record", {}, object_type, record_id)

    def get_record(self, object_type: str, record_id: str) -> Dict[str, Any]:
        return self._call("get_record", self._record_response(record_id), object_type, record_id)

    def list_records(self, object_type: str, filter: Optional[Dict[str, Any]] = None, limit: Optional[int] = None):
        return self._call("list_records", [], object_type, filter=filter, limit=limit)

    # Bulk

    def bulk_create_records(self, object_type: str, records: List[Dict[str, Any]], partial_success: bool = True):
        return self._call("bulk_create_records", {"success": True}, object_type, records, partial_success=partial_success)

    def bulk_update_records(self, object_type: str, updates: List[Dict[str, Any]], partial_success: bool = True):
        return self._call("bulk_update_records", {"success": True}, object_type, updates, partial_success=partial_success)

    def bulk_upsert_records(
        self,
        object_type: str,
        records: List[Dict[str, Any]],
        match_attribute: str,
        partial_success: bool = True,
    ):
        return self._call(
            "bulk_upsert_records",
            {"success": True},
            object_type,
            records,
            match_attribute=match_attribute,
            partial_success=partial_success,
        )

    def bulk_delete_records(self, object_type: str, ids: List[str]):
        return self._call("bulk_delete_records", {"success": True}, object_type, ids)

    # Meta and workspace

    def identify(self) -> Dict[str, Any]:
        return self._call("identify", {"active": True, "workspace_id": "test-workspace"})

    def list_workspace_members(self) -> List[Dict[str, Any]]:
        return self._call("list_workspace_members", [])

    def get_workspace_member(self, member_id: str) -> Dict[str, Any]:
        return self._call("get_workspace_member", {}, member_id)

    def invite_workspace_member(self, email: str, role: str = "member") -> Dict[str, Any]:
        return self._call(
            "invite_workspace_member",
            {"id": {"workspace_member_id": "member-test-id"}, "email_address": email, "access_level": role},
            email,
            role=role,
        )

    def update_workspace_member(self, member_id: str, role: str) -> Dict[str, Any]:
        return self._call("update_workspace_member", {}, member_id, role=role)

    def remove_workspace_member(self, member_id: str) -> Dict[str, Any]:
        return self._call("remove_workspace_member", {}, member_id)

    def close(self) -> None:
        pass


@dataclass
class SubmittedTask:
    action: str
    payload: Dict[str, Any]
    delay: Optional[float]


class RecordingTaskQueue:
    """Task queue that records submissions instead of scheduling them."""

    def __init__(self):
        self.submitted: List[SubmittedTask] = []

    def submit(self, action: str, payload: Dict[str, Any], delay: Optional[float] = None) -> SubmittedTask:
        task = SubmittedTask(action, dict(payload), delay)
        self.submitted.append(task)
        return task

    def tasks_for(self, action: str) -> List[SubmittedTask]:
        return [task for task in self.submitted if task.action == action]

    def run_all(self, job_func: Optional[Callable[..., Any]] = None) -> List[Any]:
        """Run and clear every submitted task, including tasks submitted while running."""
        if job_func is None:
            from attio_sync.jobs.sync_job import perform_sync_job
            job_func = perform_sync_job

        results = []
        while self.submitted:
            task = self.submitted.pop(0)
            results.append(job_func(action=task.action, **task.payload))
        return results


def stub_attio_client(registry: Optional[ConfigurationRegistry] = None, **client_options: Any) -> FakeAttioClient:
    """Install a FakeAttioClient on the registry and return it."""
    registry = registry or default_registry
    client = FakeAttioClient(**client_options)
    registry.set_client(client)
    return client


def stub_attio_create(response: Optional[Dict[str, Any]] = None, registry: Optional[ConfigurationRegistry] = None):
    client = stub_attio_client(registry)
    if response is not None:
        client.respond("create_record", response)
    return client


def stub_attio_update(response: Optional[Dict[str, Any]] = None, registry: Optional[ConfigurationRegistry] = None):
    client = stub_attio_client(registry)
    if response is not None:
        client.respond("update_record", response)
    return client


def stub_attio_delete(response: Optional[Dict[str, Any]] = None, registry: Optional[ConfigurationRegistry] = None):
    client = stub_attio_client(registry)
    client.respond("delete_record", response if response is not None else {"data": {"deleted": True}})
    return client


@contextmanager
def expect_attio_sync(
    object_type: str,
    attributes: Optional[Dict[str, Any]] = None,
    registry: Optional[ConfigurationRegistry] = None,
) -> Iterator[FakeAttioClient]:
    """
    Assert that the block creates an Attio record of ``object_type``.

    With ``attributes`` the created values must match exactly.
    """
    registry = registry or default_registry
    pinned = registry.pinned_client
    client = stub_attio_client(registry)
    try:
        yield client
    finally:
        registry.set_client(pinned)

    creates = [call for call in client.calls_to("create_record") if call.args[0] == object_type]
    if not creates:
        raise AssertionError(f"Expected an Attio {object_type} record to be created")
    if attributes is not None and not any(call.args[1] == attributes for call in creates):
        raise AssertionError(
            f"Expected Attio {object_type} record with {attributes!r}, got {[call.args[1] for call in creates]!r}"
        )


@contextmanager
def expect_no_attio_sync(registry: Optional[ConfigurationRegistry] = None) -> Iterator[FakeAttioClient]:
    """Assert that the block neither creates nor updates Attio records."""
    registry = registry or default_registry
    pinned = registry.pinned_client
    client = stub_attio_client(registry)
    try:
        yield client
    finally:
        registry.set_client(pinned)

    writes = client.calls_to("create_record") + client.calls_to("update_record")
    if writes:
        raise AssertionError(f"Expected no Attio sync, got {[call.method for call in writes]!r}")


def _rule_target(rule: Any) -> Any:
    if isinstance(rule, Field):
        return rule.name
    if isinstance(rule, Static):
        return rule.value
    return rule.fn


def assert_syncs_to_attio(model: Any, object_type: Optional[str] = None) -> None:
    """
    Assert that a model (or instance) is declared syncable, optionally to
    a given Attio object. Checks the declaration only; no client is called.
    """
    spec = get_sync_spec(model)
    name = getattr(model, "__name__", type(model).__name__)

    if spec is None:
        raise AssertionError(f"Expected {name} to be declared with syncs_with_attio")
    if object_type is not None and spec.object_type != object_type:
        raise AssertionError(
            f"Expected {name} to sync to Attio object '{object_type}' but syncs to '{spec.object_type}'"
        )


def assert_attio_attribute(model: Any, attio_key: str, mapped_to: Any = _UNSET) -> None:
    """
    Assert that a syncable model maps ``attio_key``, optionally from a given
    local field name, literal or callable.
    """
    spec = get_sync_spec(model)
    name = getattr(model, "__name__", type(model).__name__)

    if spec is None:
        raise AssertionError(f"Expected {name} to be declared with syncs_with_attio")

    mapping = spec.attribute_mapping
    if attio_key not in mapping:
        raise AssertionError(
            f"Expected {name} to have Attio attribute '{attio_key}' but has {', '.join(mapping)}"
        )

    if mapped_to is not _UNSET:
        actual = _rule_target(mapping[attio_key])
        if actual != mapped_to:
            raise AssertionError(
                f"Expected {name} to map Attio attribute '{attio_key}' to {mapped_to!r} but it maps to {actual!r}"
            )


@contextmanager
def attio_sync_disabled(registry: Optional[ConfigurationRegistry] = None) -> Iterator[None]:
    registry = registry or default_registry
    previous = registry.settings.sync_enabled
    registry.configure(sync_enabled=False)
    try:
        yield
    finally:
        registry.configure(sync_enabled=previous)


@contextmanager
def attio_background_sync(registry: Optional[ConfigurationRegistry] = None) -> Iterator[RecordingTaskQueue]:
    """Enable background sync with a RecordingTaskQueue for the block."""
    registry = registry or default_registry
    previous_mode = registry.settings.background_sync
    previous_queue = registry.task_queue

    queue = RecordingTaskQueue()
    registry.configure(background_sync=True)
    registry.task_queue = queue
    try:
        yield queue
    finally:
        registry.task_queue = previous_queue
        registry.configure(background_sync=previous_mode)
