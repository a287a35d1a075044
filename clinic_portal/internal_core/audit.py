from __future__ import annotations

import datetime as _dt
from typing import TYPE_CHECKING

from .contracts import AuditEvent, AuditEventType

if TYPE_CHECKING:
    from clinic_portal.note.registry import DraftRegistry


def _ts_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sanitize_detail(detail: str) -> str:
    # IMPORTANT: Never include form values in detail; keys and codes only.
    detail = (detail or "").replace("\n", " ").strip()
    if len(detail) > 200:
        detail = detail[:200] + "..."
    return detail


def log_event(
    registry: "DraftRegistry",
    appointment_id: str,
    event_type: AuditEventType,
    code: str,
    detail: str = "",
) -> None:
    event = AuditEvent(
        ts_iso=_ts_iso(),
        appointment_id=appointment_id,
        type=event_type,
        code=code,
        detail=_sanitize_detail(detail),
    )
    registry.append_audit_event(appointment_id, event)
