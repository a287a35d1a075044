from __future__ import annotations

from collections import OrderedDict
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from clinic_portal.internal_core import audit
from clinic_portal.internal_core.contracts import AuditEvent
from clinic_portal.internal_core.ports import Clock
from clinic_portal.note.draft_store import DoctorNotesDraftStore

StoreFactory = Callable[[str, Optional[Mapping[str, Any]]], DoctorNotesDraftStore]

_MAX_AUDIT_EVENTS = 200
_MAX_AUDIT_APPOINTMENTS = 256


class DraftRegistry:
    """One mounted draft store per appointment, expired after an idle TTL."""

    def __init__(
        self,
        ttl_seconds: int,
        store_factory: StoreFactory,
        clock: Clock,
        max_audit_appointments: int = _MAX_AUDIT_APPOINTMENTS,
    ):
        self._ttl_seconds = ttl_seconds
        self._store_factory = store_factory
        self._clock = clock
        self._lock = RLock()
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._max_audit_appointments = max(1, int(max_audit_appointments))
        # Least recently audited first; logs outlive their store until evicted.
        self._audit: "OrderedDict[str, List[AuditEvent]]" = OrderedDict()

    def _touch(self, appointment_id: str) -> None:
        now = self._clock.now()
        entry = self._entries[appointment_id]
        entry["updated_at"] = now
        entry["expires_at"] = now + self._ttl_seconds

    def mount(
        self, appointment_id: str, initial_data: Optional[Mapping[str, Any]] = None
    ) -> Tuple[DoctorNotesDraftStore, bool]:
        """Return the mounted store, creating it on first use.

        ``initial_data`` is only consulted when the store is created.
        """
        with self._lock:
            entry = self._entries.get(appointment_id)
            if entry is not None:
                self._touch(appointment_id)
                return entry["store"], False
            store = self._store_factory(appointment_id, initial_data)
            now = self._clock.now()
            self._entries[appointment_id] = {
                "store": store,
                "created_at": now,
                "updated_at": now,
                "expires_at": now + self._ttl_seconds,
            }
        audit.log_event(
            self,
            appointment_id,
            "DRAFT_MOUNTED",
            "OK",
            f"keys={sorted(store.form_data)} last_saved={store.last_saved}",
        )
        return store, True

    def get(self, appointment_id: str) -> DoctorNotesDraftStore:
        with self._lock:
            entry = self._entries.get(appointment_id)
            if entry is None:
                raise KeyError(f"No draft mounted for appointment: {appointment_id}")
            self._touch(appointment_id)
            return entry["store"]

    def is_mounted(self, appointment_id: str) -> bool:
        with self._lock:
            return appointment_id in self._entries

    def flush(self, appointment_id: str) -> bool:
        store = self.get(appointment_id)
        written = store.flush()
        if written:
            audit.log_event(self, appointment_id, "DRAFT_FLUSHED", "OK")
        elif store.has_unsaved_changes and store.appointment_id:
            audit.log_event(self, appointment_id, "ERROR", "FLUSH_FAILED")
        else:
            audit.log_event(self, appointment_id, "DRAFT_FLUSHED", "NOOP")
        return written

    def clear(self, appointment_id: str) -> bool:
        cleared = self.get(appointment_id).clear_form_data()
        audit.log_event(
            self,
            appointment_id,
            "DRAFT_CLEARED" if cleared else "ERROR",
            "OK" if cleared else "CLEAR_FAILED",
        )
        return cleared

    def unmount(self, appointment_id: str, reason: str = "unmount") -> bool:
        with self._lock:
            entry = self._entries.pop(appointment_id, None)
        if entry is None:
            return False
        store: DoctorNotesDraftStore = entry["store"]
        # Teardown flush: close() persists synchronously when dirty.
        store.close()
        if store.has_unsaved_changes and store.appointment_id:
            audit.log_event(self, appointment_id, "ERROR", "FLUSH_FAILED", f"reason={reason}")
        event_type = "DRAFT_EXPIRED" if reason == "ttl_expired" else "DRAFT_UNMOUNTED"
        audit.log_event(self, appointment_id, event_type, "OK", f"reason={reason}")
        return True

    def cleanup_expired(self) -> int:
        now = self._clock.now()
        with self._lock:
            expired = [
                appointment_id
                for appointment_id, entry in self._entries.items()
                if entry["expires_at"] <= now
            ]
        for appointment_id in expired:
            self.unmount(appointment_id, reason="ttl_expired")
        return len(expired)

    def close_all(self) -> None:
        with self._lock:
            appointment_ids = list(self._entries)
        for appointment_id in appointment_ids:
            self.unmount(appointment_id, reason="shutdown")

    def append_audit_event(self, appointment_id: str, event: AuditEvent) -> None:
        with self._lock:
            events = self._audit.setdefault(appointment_id, [])
            events.append(event)
            if len(events) > _MAX_AUDIT_EVENTS:
                del events[: len(events) - _MAX_AUDIT_EVENTS]
            self._audit.move_to_end(appointment_id)
            self._evict_audit_logs()

    def _evict_audit_logs(self) -> None:
        overflow = len(self._audit) - self._max_audit_appointments
        if overflow <= 0:
            return
        # Unmounted appointments go first; mounted ones only when nothing else is left.
        victims = [key for key in self._audit if key not in self._entries][:overflow]
        if len(victims) < overflow:
            victims += [key for key in self._audit if key not in victims][: overflow - len(victims)]
        for key in victims:
            del self._audit[key]

    def audit_events(self, appointment_id: str) -> List[AuditEvent]:
        with self._lock:
            return list(self._audit.get(appointment_id, []))
