from __future__ import annotations

"""
HTTP surface for the clinic portal draft stores.

Design intent:
- Play the page role: mount a draft per appointment, forward field edits,
  flush on unload, clear after a confirmed submission.
- Keep handlers thin; all state rules live in note/ and booking/.
"""

import datetime as _dt
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from clinic_portal.booking.form import BookingFormStore
from clinic_portal.booking.steps import (
    STEPS,
    StepValidator,
    active_step_index,
    can_navigate,
    step_statuses,
)
from clinic_portal.internal_core.config import PortalConfig, load_config
from clinic_portal.internal_core.contracts import AuditEvent
from clinic_portal.internal_core.ports import (
    Clock,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    ThreadingClock,
)
from clinic_portal.note.draft_store import DoctorNotesDraftStore, DraftState, DraftStoreClosedError
from clinic_portal.note.paths import UNDEFINED
from clinic_portal.note.registry import DraftRegistry


class DraftMountRequest(BaseModel):
    initial_data: Optional[dict[str, Any]] = None


class DraftUpdateRequest(BaseModel):
    path: list[str] = Field(min_length=1, max_length=32)
    value: Any = None


class DraftValueRequest(BaseModel):
    path: list[str] = Field(min_length=1, max_length=32)


class DraftStateResponse(BaseModel):
    appointment_id: str
    form_data: dict[str, Any] = Field(default_factory=dict)
    has_unsaved_changes: bool
    last_saved: Optional[str] = None
    is_auto_saving: bool
    created: bool = False


class DraftValueResponse(BaseModel):
    appointment_id: str
    path: list[str]
    found: bool
    value: Any = None


class DraftFlushResponse(BaseModel):
    appointment_id: str
    written: bool
    last_saved: Optional[str] = None


class DraftClearResponse(BaseModel):
    appointment_id: str
    cleared: bool


class DraftUnmountResponse(BaseModel):
    appointment_id: str
    unmounted: bool


class DraftAuditResponse(BaseModel):
    appointment_id: str
    events: list[AuditEvent] = Field(default_factory=list)


class BookingFormResponse(BaseModel):
    form: dict[str, Any]


class BookingFormUpdateRequest(BaseModel):
    fields: dict[str, Any] = Field(default_factory=dict)


class StepValidationResponse(BaseModel):
    step_id: str
    valid: bool
    first_missing_field: Optional[str] = None
    missing_fields: list[str] = Field(default_factory=list)
    field_errors: dict[str, str] = Field(default_factory=dict)


class StepperItem(BaseModel):
    id: str
    label: str
    href: str
    index: int
    is_completed: bool
    is_locked: bool
    is_active: bool


class StepperResponse(BaseModel):
    path: str
    active_index: int
    total: int
    steps: list[StepperItem]
    can_navigate_to: Optional[bool] = None


logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Unload flush for every draft still mounted.
    registry = getattr(app.state, "draft_registry", None)
    if isinstance(registry, DraftRegistry):
        registry.close_all()


app = FastAPI(title="clinic portal draft service", lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> PortalConfig:
    existing = getattr(app.state, "portal_config", None)
    if isinstance(existing, PortalConfig):
        return existing
    created = load_config()
    logging.getLogger("clinic_portal").setLevel(created.PORTAL_LOG_LEVEL.upper())
    setattr(app.state, "portal_config", created)
    return created


def _get_storage() -> KeyValueStore:
    existing = getattr(app.state, "portal_storage", None)
    if isinstance(existing, KeyValueStore):
        return existing
    config = _get_config()
    created: KeyValueStore
    if config.PORTAL_STORAGE_BACKEND == "file":
        created = JsonFileKeyValueStore(config.storage_dir_path())
    else:
        created = InMemoryKeyValueStore()
    logger.info("portal_storage_ready backend=%s", created.name())
    setattr(app.state, "portal_storage", created)
    return created


def _get_clock() -> Clock:
    existing = getattr(app.state, "portal_clock", None)
    if isinstance(existing, Clock):
        return existing
    created = ThreadingClock()
    setattr(app.state, "portal_clock", created)
    return created


def _get_draft_registry() -> DraftRegistry:
    existing = getattr(app.state, "draft_registry", None)
    if isinstance(existing, DraftRegistry):
        return existing
    config = _get_config()
    storage = _get_storage()
    clock = _get_clock()
    store_config = config.draft_store_config()

    def _factory(appointment_id: str, initial_data: Optional[dict[str, Any]]) -> DoctorNotesDraftStore:
        return DoctorNotesDraftStore.mount(
            appointment_id,
            initial_data,
            storage=storage,
            clock=clock,
            config=store_config,
        )

    created = DraftRegistry(config.PORTAL_DRAFT_TTL_SECONDS, _factory, clock)
    setattr(app.state, "draft_registry", created)
    return created


def _get_booking_store() -> BookingFormStore:
    existing = getattr(app.state, "booking_form_store", None)
    if isinstance(existing, BookingFormStore):
        return existing
    created = BookingFormStore(_get_storage(), _get_config().PORTAL_BOOKING_STORAGE_KEY)
    created.load()
    setattr(app.state, "booking_form_store", created)
    return created


def _iso_or_none(value: Optional[_dt.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _normalize_appointment_id(raw: str) -> str:
    appointment_id = (raw or "").strip()
    if not appointment_id:
        raise HTTPException(status_code=400, detail="appointment_id is required.")
    return appointment_id


def _mounted_store(appointment_id: str) -> DoctorNotesDraftStore:
    registry = _get_draft_registry()
    registry.cleanup_expired()
    try:
        return registry.get(appointment_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"No draft mounted for appointment: {appointment_id}") from exc


def _state_response(state: DraftState, *, created: bool = False) -> DraftStateResponse:
    return DraftStateResponse(
        appointment_id=state.appointment_id,
        form_data=dict(state.form_data),
        has_unsaved_changes=state.has_unsaved_changes,
        last_saved=_iso_or_none(state.last_saved),
        is_auto_saving=state.is_auto_saving,
        created=created,
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/doctor-notes/{appointment_id}/draft", response_model=DraftStateResponse)
def mount_draft(appointment_id: str, payload: DraftMountRequest) -> DraftStateResponse:
    normalized_id = _normalize_appointment_id(appointment_id)
    registry = _get_draft_registry()
    registry.cleanup_expired()
    store, created = registry.mount(normalized_id, payload.initial_data)
    if not created and payload.initial_data:
        logger.info("draft_mount_reused appointment_id=%s initial_data_ignored=true", normalized_id)
    return _state_response(store.state(), created=created)


@app.get("/doctor-notes/{appointment_id}/draft", response_model=DraftStateResponse)
def get_draft(appointment_id: str) -> DraftStateResponse:
    store = _mounted_store(_normalize_appointment_id(appointment_id))
    return _state_response(store.state())


@app.patch("/doctor-notes/{appointment_id}/draft", response_model=DraftStateResponse)
def update_draft(appointment_id: str, payload: DraftUpdateRequest) -> DraftStateResponse:
    store = _mounted_store(_normalize_appointment_id(appointment_id))
    try:
        store.update_form_data(payload.path, payload.value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DraftStoreClosedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _state_response(store.state())


@app.post("/doctor-notes/{appointment_id}/draft/value", response_model=DraftValueResponse)
def read_draft_value(appointment_id: str, payload: DraftValueRequest) -> DraftValueResponse:
    normalized_id = _normalize_appointment_id(appointment_id)
    value = _mounted_store(normalized_id).get_form_value(payload.path)
    found = value is not UNDEFINED
    return DraftValueResponse(
        appointment_id=normalized_id,
        path=payload.path,
        found=found,
        value=value if found else None,
    )


@app.post("/doctor-notes/{appointment_id}/draft/flush", response_model=DraftFlushResponse)
def flush_draft(appointment_id: str) -> DraftFlushResponse:
    normalized_id = _normalize_appointment_id(appointment_id)
    store = _mounted_store(normalized_id)
    written = _get_draft_registry().flush(normalized_id)
    return DraftFlushResponse(
        appointment_id=normalized_id,
        written=written,
        last_saved=_iso_or_none(store.last_saved),
    )


@app.delete("/doctor-notes/{appointment_id}/draft", response_model=DraftClearResponse)
def clear_draft(appointment_id: str) -> DraftClearResponse:
    normalized_id = _normalize_appointment_id(appointment_id)
    _mounted_store(normalized_id)
    cleared = _get_draft_registry().clear(normalized_id)
    if not cleared:
        raise HTTPException(status_code=500, detail="Failed to remove the persisted draft.")
    return DraftClearResponse(appointment_id=normalized_id, cleared=True)


@app.post("/doctor-notes/{appointment_id}/draft/unmount", response_model=DraftUnmountResponse)
def unmount_draft(appointment_id: str) -> DraftUnmountResponse:
    normalized_id = _normalize_appointment_id(appointment_id)
    if not _get_draft_registry().unmount(normalized_id, reason="unmount"):
        raise HTTPException(status_code=404, detail=f"No draft mounted for appointment: {normalized_id}")
    return DraftUnmountResponse(appointment_id=normalized_id, unmounted=True)


@app.get("/doctor-notes/{appointment_id}/draft/audit", response_model=DraftAuditResponse)
def draft_audit(appointment_id: str) -> DraftAuditResponse:
    normalized_id = _normalize_appointment_id(appointment_id)
    return DraftAuditResponse(
        appointment_id=normalized_id,
        events=_get_draft_registry().audit_events(normalized_id),
    )


@app.get("/booking/form", response_model=BookingFormResponse)
def get_booking_form() -> BookingFormResponse:
    return BookingFormResponse(form=_get_booking_store().form.to_record())


@app.patch("/booking/form", response_model=BookingFormResponse)
def update_booking_form(payload: BookingFormUpdateRequest) -> BookingFormResponse:
    try:
        form = _get_booking_store().set_form(payload.fields)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid booking form fields: {exc}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BookingFormResponse(form=form.to_record())


@app.delete("/booking/form", response_model=BookingFormResponse)
def reset_booking_form() -> BookingFormResponse:
    return BookingFormResponse(form=_get_booking_store().reset_form().to_record())


@app.get("/booking/steps/{step_id}/validation", response_model=StepValidationResponse)
def validate_booking_step(step_id: str) -> StepValidationResponse:
    try:
        validator = StepValidator(step_id, _get_booking_store().form)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown booking step: {step_id}") from exc
    return StepValidationResponse(
        step_id=step_id,
        valid=validator.validate(),
        first_missing_field=validator.get_first_missing_field(),
        missing_fields=validator.get_missing_fields(),
        field_errors=validator.get_field_errors(),
    )


@app.get("/booking/stepper", response_model=StepperResponse)
def booking_stepper(
    path: str = Query(default="/book/user-details"),
    target: Optional[str] = Query(default=None),
) -> StepperResponse:
    can_go: Optional[bool] = None
    if target is not None:
        try:
            can_go = can_navigate(path, target)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown booking step: {target}") from exc
    return StepperResponse(
        path=path,
        active_index=active_step_index(path),
        total=len(STEPS),
        steps=[
            StepperItem(
                id=status.step.id,
                label=status.step.label,
                href=status.step.href,
                index=status.index,
                is_completed=status.is_completed,
                is_locked=status.is_locked,
                is_active=status.is_active,
            )
            for status in step_statuses(path)
        ],
        can_navigate_to=can_go,
    )

