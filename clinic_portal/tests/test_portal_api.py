import json

import pytest
from fastapi.testclient import TestClient

from clinic_portal.api.main import app
from clinic_portal.booking.form import BookingFormStore
from clinic_portal.internal_core.config import load_config
from clinic_portal.internal_core.ports import InMemoryKeyValueStore, ManualClock, StorageError

_STATE_KEYS = ("portal_config", "portal_storage", "portal_clock", "draft_registry", "booking_form_store")


class FailingRemoveStore(InMemoryKeyValueStore):
    def remove_item(self, key: str) -> None:
        raise StorageError("REMOVE_FAILED", "locked", key)


def _clear_app_state() -> None:
    for key in _STATE_KEYS:
        if hasattr(app.state, key):
            delattr(app.state, key)


@pytest.fixture()
def portal(monkeypatch):
    monkeypatch.setenv("PORTAL_STORAGE_BACKEND", "memory")
    _clear_app_state()
    storage = InMemoryKeyValueStore()
    clock = ManualClock()
    app.state.portal_config = load_config()
    app.state.portal_storage = storage
    app.state.portal_clock = clock
    try:
        yield TestClient(app), storage, clock
    finally:
        _clear_app_state()


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_mount_update_and_autosave_flow(portal) -> None:
    client, storage, clock = portal

    mounted = client.post("/doctor-notes/apt-1/draft", json={"initial_data": {"notes": "server"}})
    assert mounted.status_code == 200
    assert mounted.json()["created"] is True
    assert mounted.json()["form_data"] == {"notes": "server"}
    assert mounted.json()["has_unsaved_changes"] is False

    updated = client.patch(
        "/doctor-notes/apt-1/draft",
        json={"path": ["patient", "weight"], "value": 70},
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["form_data"]["patient"] == {"weight": 70}
    assert body["has_unsaved_changes"] is True
    assert body["is_auto_saving"] is True
    assert storage.get_item("doctor_notes_draft_apt-1") is None

    clock.advance(2)

    state = client.get("/doctor-notes/apt-1/draft").json()
    assert state["has_unsaved_changes"] is False
    assert state["is_auto_saving"] is False
    assert state["last_saved"] is not None
    persisted = json.loads(storage.get_item("doctor_notes_draft_apt-1"))
    assert persisted["patient"] == {"weight": 70}
    assert persisted["notes"] == "server"


def test_remount_keeps_existing_state(portal) -> None:
    client, _, _ = portal
    client.post("/doctor-notes/apt-1/draft", json={"initial_data": {"a": 1}})
    again = client.post("/doctor-notes/apt-1/draft", json={"initial_data": {"a": 2}})
    assert again.json()["created"] is False
    assert again.json()["form_data"] == {"a": 1}


def test_read_value_found_and_missing(portal) -> None:
    client, _, _ = portal
    client.post("/doctor-notes/apt-1/draft", json={"initial_data": {"patient": {"weight": 70}}})

    found = client.post("/doctor-notes/apt-1/draft/value", json={"path": ["patient", "weight"]})
    missing = client.post("/doctor-notes/apt-1/draft/value", json={"path": ["patient", "missing"]})

    assert found.json()["found"] is True
    assert found.json()["value"] == 70
    assert missing.json()["found"] is False
    assert missing.json()["value"] is None


def test_flush_persists_without_waiting_for_debounce(portal) -> None:
    client, storage, _ = portal
    client.post("/doctor-notes/apt-1/draft", json={})
    client.patch("/doctor-notes/apt-1/draft", json={"path": ["notes"], "value": "typed"})

    flushed = client.post("/doctor-notes/apt-1/draft/flush")

    assert flushed.status_code == 200
    assert flushed.json()["written"] is True
    assert json.loads(storage.get_item("doctor_notes_draft_apt-1"))["notes"] == "typed"


def test_clear_removes_draft_and_remount_is_empty(portal) -> None:
    client, storage, _ = portal
    client.post("/doctor-notes/apt-1/draft", json={})
    client.patch("/doctor-notes/apt-1/draft", json={"path": ["notes"], "value": "typed"})
    client.post("/doctor-notes/apt-1/draft/flush")

    cleared = client.delete("/doctor-notes/apt-1/draft")
    assert cleared.status_code == 200
    assert cleared.json()["cleared"] is True
    assert storage.get_item("doctor_notes_draft_apt-1") is None

    assert client.post("/doctor-notes/apt-1/draft/unmount").json()["unmounted"] is True
    remounted = client.post("/doctor-notes/apt-1/draft", json={})
    assert remounted.json()["form_data"] == {}

    audit = client.get("/doctor-notes/apt-1/draft/audit").json()
    assert [event["type"] for event in audit["events"]] == [
        "DRAFT_MOUNTED",
        "DRAFT_FLUSHED",
        "DRAFT_CLEARED",
        "DRAFT_UNMOUNTED",
        "DRAFT_MOUNTED",
    ]


def test_unmount_flushes_dirty_draft(portal) -> None:
    client, storage, _ = portal
    client.post("/doctor-notes/apt-1/draft", json={})
    client.patch("/doctor-notes/apt-1/draft", json={"path": ["notes"], "value": "last edit"})

    client.post("/doctor-notes/apt-1/draft/unmount")

    assert json.loads(storage.get_item("doctor_notes_draft_apt-1"))["notes"] == "last edit"
    assert client.get("/doctor-notes/apt-1/draft").status_code == 404


def test_clear_failure_returns_500_and_keeps_draft(portal) -> None:
    client, _, _ = portal
    storage = FailingRemoveStore()
    app.state.portal_storage = storage
    client.post("/doctor-notes/apt-1/draft", json={})
    client.patch("/doctor-notes/apt-1/draft", json={"path": ["notes"], "value": "typed"})
    client.post("/doctor-notes/apt-1/draft/flush")

    response = client.delete("/doctor-notes/apt-1/draft")

    assert response.status_code == 500
    assert json.loads(storage.get_item("doctor_notes_draft_apt-1"))["notes"] == "typed"
    assert client.get("/doctor-notes/apt-1/draft").json()["form_data"] == {"notes": "typed"}
    audit = client.get("/doctor-notes/apt-1/draft/audit").json()
    assert (audit["events"][-1]["type"], audit["events"][-1]["code"]) == ("ERROR", "CLEAR_FAILED")


def test_shutdown_flushes_mounted_drafts(portal) -> None:
    _, storage, _ = portal
    with TestClient(app) as client:
        client.post("/doctor-notes/apt-1/draft", json={})
        client.patch("/doctor-notes/apt-1/draft", json={"path": ["notes"], "value": "pending"})
        assert storage.get_item("doctor_notes_draft_apt-1") is None

    assert json.loads(storage.get_item("doctor_notes_draft_apt-1"))["notes"] == "pending"
    assert app.state.draft_registry.is_mounted("apt-1") is False


def test_draft_error_paths(portal) -> None:
    client, _, _ = portal
    assert client.get("/doctor-notes/unknown/draft").status_code == 404
    assert client.post("/doctor-notes/unknown/draft/unmount").status_code == 404
    assert client.post("/doctor-notes/%20/draft", json={}).status_code == 400

    client.post("/doctor-notes/apt-1/draft", json={})
    empty_path = client.patch("/doctor-notes/apt-1/draft", json={"path": [], "value": 1})
    assert empty_path.status_code == 422


def test_booking_form_update_validate_and_reset(portal) -> None:
    client, storage, _ = portal

    initial = client.get("/booking/form")
    assert initial.status_code == 200
    assert initial.json()["form"]["fullName"] is None

    updated = client.patch("/booking/form", json={"fields": {"weight": "70", "height": "175"}})
    assert updated.status_code == 200
    assert json.loads(storage.get_item("bookingForm"))["weight"] == "70"

    measurements = client.get("/booking/steps/measurements/validation").json()
    assert measurements["valid"] is True

    user = client.get("/booking/steps/user-details/validation").json()
    assert user["valid"] is False
    assert user["first_missing_field"] == "fullName"
    assert user["field_errors"]["fullName"] == "Full name is required"

    reset = client.delete("/booking/form")
    assert reset.json()["form"]["weight"] is None
    assert storage.get_item("bookingForm") is None


def test_booking_form_restores_saved_record(portal) -> None:
    client, storage, _ = portal
    storage.set_item("bookingForm", json.dumps({"fullName": "Asha Rao"}))
    app.state.booking_form_store = BookingFormStore(storage)
    app.state.booking_form_store.load()

    assert client.get("/booking/form").json()["form"]["fullName"] == "Asha Rao"


def test_booking_error_paths(portal) -> None:
    client, _, _ = portal
    assert client.patch("/booking/form", json={"fields": {"nope": 1}}).status_code == 400
    assert client.patch("/booking/form", json={"fields": {"age": "not a number"}}).status_code == 400
    assert client.get("/booking/steps/checkout/validation").status_code == 404
    assert client.get("/booking/stepper", params={"target": "checkout"}).status_code == 404


def test_booking_stepper(portal) -> None:
    client, _, _ = portal
    response = client.get("/booking/stepper", params={"path": "/book/slot", "target": "payment"})
    body = response.json()
    assert body["active_index"] == 2
    assert body["total"] == 4
    assert [step["is_locked"] for step in body["steps"]] == [False, False, False, True]
    assert body["can_navigate_to"] is False
