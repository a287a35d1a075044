import json

from clinic_portal.internal_core.config import DraftStoreConfig
from clinic_portal.internal_core.ports import InMemoryKeyValueStore, ManualClock, StorageError
from clinic_portal.note.draft_store import DoctorNotesDraftStore
from clinic_portal.note.registry import DraftRegistry


class FailingWriteStore(InMemoryKeyValueStore):
    def set_item(self, key: str, value: str) -> None:
        raise StorageError("WRITE_FAILED", "quota exceeded", key)


class FailingRemoveStore(InMemoryKeyValueStore):
    def remove_item(self, key: str) -> None:
        raise StorageError("REMOVE_FAILED", "locked", key)


def _registry(ttl_seconds: int = 60, storage=None, **kwargs):
    storage = storage if storage is not None else InMemoryKeyValueStore()
    clock = ManualClock()

    def factory(appointment_id, initial_data):
        return DoctorNotesDraftStore.mount(
            appointment_id,
            initial_data,
            storage=storage,
            clock=clock,
            config=DraftStoreConfig(),
        )

    return DraftRegistry(ttl_seconds, factory, clock, **kwargs), storage, clock


def test_mount_reuses_store_and_ignores_later_initial_data() -> None:
    registry, _, _ = _registry()
    first, created = registry.mount("apt-1", {"a": 1})
    second, created_again = registry.mount("apt-1", {"a": 2})

    assert created is True
    assert created_again is False
    assert first is second
    assert second.form_data == {"a": 1}


def test_unmount_flushes_dirty_store() -> None:
    registry, storage, _ = _registry()
    store, _ = registry.mount("apt-1")
    store.update_form_data(["notes"], "unsaved")

    assert registry.unmount("apt-1") is True

    assert json.loads(storage.get_item("doctor_notes_draft_apt-1"))["notes"] == "unsaved"
    assert store.closed is True
    assert registry.is_mounted("apt-1") is False
    assert registry.unmount("apt-1") is False


def test_cleanup_expired_unmounts_idle_stores() -> None:
    registry, storage, clock = _registry(ttl_seconds=10)
    idle, _ = registry.mount("apt-idle")
    idle.update_form_data(["a"], 1)
    clock.advance(1)
    registry.mount("apt-busy")

    clock.advance(9.5)
    registry.get("apt-busy")
    assert registry.cleanup_expired() == 1

    assert registry.is_mounted("apt-idle") is False
    assert registry.is_mounted("apt-busy") is True
    assert storage.get_item("doctor_notes_draft_apt-idle") is not None
    types = [event.type for event in registry.audit_events("apt-idle")]
    assert types == ["DRAFT_MOUNTED", "DRAFT_EXPIRED"]


def test_clear_and_flush_record_audit_events() -> None:
    registry, _, _ = _registry()
    store, _ = registry.mount("apt-1")
    store.update_form_data(["a"], 1)

    assert registry.flush("apt-1") is True
    assert registry.flush("apt-1") is False
    assert registry.clear("apt-1") is True

    events = registry.audit_events("apt-1")
    assert [(e.type, e.code) for e in events] == [
        ("DRAFT_MOUNTED", "OK"),
        ("DRAFT_FLUSHED", "OK"),
        ("DRAFT_FLUSHED", "NOOP"),
        ("DRAFT_CLEARED", "OK"),
    ]
    assert "unsaved" not in events[0].detail


def test_close_all_unmounts_everything() -> None:
    registry, _, _ = _registry()
    registry.mount("apt-1")
    registry.mount("apt-2")
    registry.close_all()
    assert not registry.is_mounted("apt-1")
    assert not registry.is_mounted("apt-2")


def test_clear_failure_records_error_and_keeps_state() -> None:
    registry, storage, _ = _registry(storage=FailingRemoveStore())
    store, _ = registry.mount("apt-1", {"a": 1})

    assert registry.clear("apt-1") is False

    assert store.form_data == {"a": 1}
    assert registry.is_mounted("apt-1") is True
    assert [(e.type, e.code) for e in registry.audit_events("apt-1")] == [
        ("DRAFT_MOUNTED", "OK"),
        ("ERROR", "CLEAR_FAILED"),
    ]


def test_failed_flush_is_recorded_as_error() -> None:
    registry, storage, _ = _registry(storage=FailingWriteStore())
    store, _ = registry.mount("apt-1")
    store.update_form_data(["notes"], "unsaved")

    assert registry.flush("apt-1") is False

    assert store.has_unsaved_changes is True
    assert registry.audit_events("apt-1")[-1].code == "FLUSH_FAILED"


def test_unmount_with_failing_write_still_unmounts() -> None:
    registry, storage, _ = _registry(storage=FailingWriteStore())
    store, _ = registry.mount("apt-1")
    store.update_form_data(["notes"], "unsaved")

    assert registry.unmount("apt-1") is True

    assert store.closed is True
    assert registry.is_mounted("apt-1") is False
    assert storage.get_item("doctor_notes_draft_apt-1") is None
    assert [(e.type, e.code) for e in registry.audit_events("apt-1")] == [
        ("DRAFT_MOUNTED", "OK"),
        ("ERROR", "FLUSH_FAILED"),
        ("DRAFT_UNMOUNTED", "OK"),
    ]


def test_audit_logs_are_bounded_by_appointment_count() -> None:
    registry, _, _ = _registry(max_audit_appointments=50)
    for index in range(1000):
        registry.mount(f"apt-{index}")
        registry.unmount(f"apt-{index}")

    assert registry.audit_events("apt-0") == []
    assert [e.type for e in registry.audit_events("apt-999")] == ["DRAFT_MOUNTED", "DRAFT_UNMOUNTED"]
    assert len(registry._audit) == 50


def test_audit_eviction_prefers_unmounted_appointments() -> None:
    registry, _, _ = _registry(max_audit_appointments=2)
    registry.mount("apt-live")
    registry.mount("apt-gone")
    registry.unmount("apt-gone")

    registry.mount("apt-new")

    assert registry.audit_events("apt-live") != []
    assert registry.audit_events("apt-gone") == []
    assert registry.audit_events("apt-new") != []
