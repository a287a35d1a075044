from __future__ import annotations

"""
Auto-saving draft store for one appointment's doctor-notes form.

Design intent:
- Merge a locally persisted draft with server data exactly once, at mount.
- Coalesce bursts of edits into one debounced write carrying the latest state.
- Treat storage as best effort: failures are logged, never raised to callers.
"""

import copy
import datetime as _dt
import json
import logging
from dataclasses import dataclass
from threading import RLock
from types import MappingProxyType
from typing import Any, Mapping, Optional

from clinic_portal.internal_core.config import DraftStoreConfig
from clinic_portal.internal_core.ports import Clock, KeyValueStore, StorageError, TimerHandle
from clinic_portal.note.paths import UNDEFINED, FormData, FormPath, get_in, set_in

logger = logging.getLogger(__name__)

LAST_SAVED_FIELD = "_lastSaved"


class DraftStoreClosedError(RuntimeError):
    """Raised when a store is used after it was unmounted."""


@dataclass(frozen=True)
class DraftState:
    appointment_id: str
    form_data: Mapping[str, Any]
    has_unsaved_changes: bool
    last_saved: Optional[_dt.datetime]
    is_auto_saving: bool


def _parse_iso(raw: Any) -> Optional[_dt.datetime]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = _dt.datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed


def _iso(ts: _dt.datetime) -> str:
    return ts.astimezone(_dt.timezone.utc).isoformat().replace("+00:00", "Z")


class DoctorNotesDraftStore:
    def __init__(
        self,
        appointment_id: str,
        *,
        storage: KeyValueStore,
        clock: Clock,
        config: Optional[DraftStoreConfig] = None,
    ):
        self._appointment_id = str(appointment_id or "")
        self._storage = storage
        self._clock = clock
        self._config = config or DraftStoreConfig()
        self._lock = RLock()
        self._form_data: FormData = {}
        self._dirty = False
        self._last_saved: Optional[_dt.datetime] = None
        self._is_auto_saving = False
        self._timer: Optional[TimerHandle] = None
        self._generation = 0
        self._initialized = False
        self._closed = False

    @classmethod
    def mount(
        cls,
        appointment_id: str,
        initial_data: Optional[Mapping[str, Any]] = None,
        *,
        storage: KeyValueStore,
        clock: Clock,
        config: Optional[DraftStoreConfig] = None,
    ) -> "DoctorNotesDraftStore":
        store = cls(appointment_id, storage=storage, clock=clock, config=config)
        store.initialize(initial_data)
        return store

    @property
    def appointment_id(self) -> str:
        return self._appointment_id

    @property
    def storage_key(self) -> str:
        return self._config.storage_key(self._appointment_id)

    @property
    def form_data(self) -> Mapping[str, Any]:
        """Read-only view of the current snapshot.

        Nested sections are shared with the store and must not be mutated;
        edits go through update_form_data so the dirty flag is set.
        """
        with self._lock:
            return MappingProxyType(self._form_data)

    @property
    def has_unsaved_changes(self) -> bool:
        with self._lock:
            return self._dirty

    @property
    def last_saved(self) -> Optional[_dt.datetime]:
        with self._lock:
            return self._last_saved

    @property
    def is_auto_saving(self) -> bool:
        with self._lock:
            return self._is_auto_saving

    @property
    def closed(self) -> bool:
        return self._closed

    def state(self) -> DraftState:
        with self._lock:
            return DraftState(
                appointment_id=self._appointment_id,
                form_data=MappingProxyType(self._form_data),
                has_unsaved_changes=self._dirty,
                last_saved=self._last_saved,
                is_auto_saving=self._is_auto_saving,
            )

    def initialize(self, initial_data: Optional[Mapping[str, Any]] = None) -> FormData:
        """Load the persisted draft and merge ``initial_data`` over it.

        Runs once per store. Server fields win on key conflicts; the merge is
        shallow, so a conflicting top-level section replaces the draft's
        section wholesale. Later calls are ignored: data arriving after mount
        never overrides a restored draft.
        """
        with self._lock:
            if self._initialized:
                logger.debug("draft_initialize_skipped appointment_id=%s", self._appointment_id)
                return self._form_data
            self._initialized = True

            seed: FormData = copy.deepcopy(dict(initial_data)) if initial_data else {}
            self._form_data = seed
            self._dirty = False

            if not self._appointment_id:
                return self._form_data

            restored = self._read_draft()
            if restored is None:
                if seed:
                    logger.info(
                        "draft_seeded_from_server appointment_id=%s keys=%s",
                        self._appointment_id,
                        sorted(seed),
                    )
                return self._form_data

            last_saved_raw = restored.pop(LAST_SAVED_FIELD, None)
            merged = {**restored, **seed} if seed else restored
            self._form_data = merged
            self._last_saved = _parse_iso(last_saved_raw)
            logger.info(
                "draft_restored appointment_id=%s keys=%s last_saved=%s",
                self._appointment_id,
                sorted(restored),
                last_saved_raw,
            )
            return self._form_data

    def _read_draft(self) -> Optional[FormData]:
        try:
            raw = self._storage.get_item(self.storage_key)
        except StorageError as exc:
            logger.warning("draft_read_failed appointment_id=%s error=%s", self._appointment_id, exc)
            return None
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("draft_corrupt appointment_id=%s error=%s", self._appointment_id, exc)
            return None
        if not isinstance(parsed, dict):
            logger.warning(
                "draft_corrupt appointment_id=%s error=expected object, got %s",
                self._appointment_id,
                type(parsed).__name__,
            )
            return None
        return parsed

    def update_form_data(self, path: FormPath, value: Any) -> None:
        with self._lock:
            self._ensure_open()
            self._form_data = set_in(self._form_data, path, value)
            self._dirty = True
            if not self._appointment_id:
                return
            self._arm_timer()
            self._is_auto_saving = True

    def get_form_value(self, path: FormPath) -> Any:
        with self._lock:
            return get_in(self._form_data, path)

    def has_form_value(self, path: FormPath) -> bool:
        return self.get_form_value(path) is not UNDEFINED

    def clear_form_data(self) -> bool:
        """Drop the persisted draft and reset to an empty form.

        Call only after the server has confirmed the submission. Returns
        ``False`` when the draft could not be removed; in that case in-memory
        state is left untouched so the edit is not lost.
        """
        with self._lock:
            if self._appointment_id:
                try:
                    self._storage.remove_item(self.storage_key)
                except StorageError:
                    logger.exception("draft_clear_failed appointment_id=%s", self._appointment_id)
                    return False
            self._cancel_timer()
            self._form_data = {}
            self._dirty = False
            self._last_saved = None
            self._is_auto_saving = False
            logger.info("draft_cleared appointment_id=%s", self._appointment_id)
            return True

    def flush(self) -> bool:
        """Persist now if dirty, bypassing the debounce (page-unload path)."""
        with self._lock:
            if not self._dirty or not self._appointment_id:
                return False
            self._cancel_timer()
            return self._persist()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush()
            self._cancel_timer()
            self._is_auto_saving = False
            self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise DraftStoreClosedError(f"Draft store for appointment {self._appointment_id!r} is closed.")

    def _arm_timer(self) -> None:
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        self._timer = self._clock.call_later(
            self._config.debounce_seconds,
            lambda: self._on_timer(generation),
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            # A threaded timer can fire just as a newer edit cancels it.
            if generation != self._generation or self._timer is None or self._closed:
                return
            self._timer = None
            self._persist()

    def _persist(self) -> bool:
        now = _dt.datetime.fromtimestamp(self._clock.now(), tz=_dt.timezone.utc)
        try:
            payload = json.dumps({**self._form_data, LAST_SAVED_FIELD: _iso(now)})
            self._storage.set_item(self.storage_key, payload)
        except (StorageError, TypeError, ValueError):
            logger.exception("draft_save_failed appointment_id=%s", self._appointment_id)
            self._is_auto_saving = False
            return False
        self._dirty = False
        self._is_auto_saving = False
        self._last_saved = now
        logger.debug(
            "draft_saved appointment_id=%s keys=%s",
            self._appointment_id,
            sorted(self._form_data),
        )
        return True
