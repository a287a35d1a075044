from __future__ import annotations

"""
Persisted multi-step booking form.

Design intent:
- Saved fields are merged over a fully-null initial form, so records written by
  older builds with fewer fields still load.
- Every change is written through once the saved record has been loaded.
"""

import json
import logging
from threading import RLock
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clinic_portal.internal_core.config import DEFAULT_BOOKING_STORAGE_KEY
from clinic_portal.internal_core.ports import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


class RecallEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    id: str
    meal_type: str
    food_item: str
    quantity: str
    time: str
    notes: Optional[str] = None


class BookingForm(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)

    full_name: Optional[str] = None
    mobile: Optional[str] = None
    email: Optional[str] = None
    dob: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    address: Optional[str] = None

    weight: Optional[str] = None
    height: Optional[str] = None
    neck: Optional[str] = None
    waist: Optional[str] = None
    hip: Optional[str] = None

    medical_history: Optional[str] = None
    appointment_concerns: Optional[str] = None
    reports: list[str] = Field(default_factory=list)

    bowel: Optional[str] = None
    daily_food: Optional[str] = None
    water_intake: Optional[str] = None
    wake_up_time: Optional[str] = None
    sleep_time: Optional[str] = None
    sleep_quality: Optional[str] = None
    food_preference: Optional[str] = None
    allergies_intolerance: Optional[str] = None

    plan_slug: Optional[str] = None
    plan_name: Optional[str] = None
    plan_price: Optional[str] = None
    plan_price_raw: Optional[float] = None
    plan_package_name: Optional[str] = None
    plan_package_duration: Optional[str] = None

    appointment_mode: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None

    slot_id: Optional[str] = None
    patient_id: Optional[str] = None
    appointment_id: Optional[str] = None

    recall_entries: list[RecallEntry] = Field(default_factory=list)
    recall_notes: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def _field_aliases() -> dict[str, str]:
    aliases: dict[str, str] = {}
    for name, info in BookingForm.model_fields.items():
        alias = info.alias or name
        aliases[name] = alias
        aliases[alias] = alias
    return aliases


_ALIASES = _field_aliases()


def normalize_form_fields(partial: Mapping[str, Any]) -> dict[str, Any]:
    """Map snake_case or camelCase keys to the persisted camelCase names."""
    normalized: dict[str, Any] = {}
    unknown: list[str] = []
    for key, value in partial.items():
        alias = _ALIASES.get(str(key))
        if alias is None:
            unknown.append(str(key))
            continue
        normalized[alias] = value
    if unknown:
        raise ValueError(f"Unknown booking form fields: {', '.join(sorted(unknown))}")
    return normalized


class BookingFormStore:
    def __init__(self, storage: KeyValueStore, storage_key: str = DEFAULT_BOOKING_STORAGE_KEY):
        self._storage = storage
        self._storage_key = storage_key
        self._lock = RLock()
        self._form = BookingForm()
        self._loaded = False

    @property
    def form(self) -> BookingForm:
        with self._lock:
            return self._form

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> BookingForm:
        with self._lock:
            try:
                saved = self._storage.get_item(self._storage_key)
                if saved:
                    parsed = json.loads(saved)
                    if not isinstance(parsed, dict):
                        raise ValueError(f"expected object, got {type(parsed).__name__}")
                    self._form = BookingForm.model_validate({**BookingForm().to_record(), **parsed})
            except (StorageError, ValueError) as exc:
                # ValidationError and JSONDecodeError are both ValueErrors.
                logger.warning("booking_form_restore_failed key=%s error=%s", self._storage_key, exc)
            self._loaded = True
            return self._form

    def set_form(self, partial: Optional[Mapping[str, Any]] = None, **fields: Any) -> BookingForm:
        updates = normalize_form_fields({**dict(partial or {}), **fields})
        with self._lock:
            self._form = BookingForm.model_validate({**self._form.to_record(), **updates})
            self._save()
            return self._form

    def reset_form(self) -> BookingForm:
        with self._lock:
            self._form = BookingForm()
            try:
                self._storage.remove_item(self._storage_key)
            except StorageError:
                logger.exception("booking_form_reset_failed key=%s", self._storage_key)
            return self._form

    def _save(self) -> None:
        if not self._loaded:
            return
        try:
            self._storage.set_item(self._storage_key, json.dumps(self._form.to_record()))
        except StorageError:
            logger.exception("booking_form_save_failed key=%s", self._storage_key)


__all__ = ["BookingForm", "BookingFormStore", "RecallEntry", "normalize_form_fields"]
