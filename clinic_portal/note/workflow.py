from __future__ import annotations

"""
Page-level glue between a mounted draft store and the clinic REST API.

Design intent:
- Seed stores from the server once, at page load.
- Send only changed sections when the notes already exist server-side.
- Drop the local draft only after the server confirmed a final submission.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from clinic_portal.clients.doctor_notes_api import DoctorNotesClient
from clinic_portal.internal_core.contracts import GetDoctorNotesResponse, SaveDoctorNotesResponse
from clinic_portal.note.draft_store import DoctorNotesDraftStore
from clinic_portal.note.paths import changed_fields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    response: SaveDoctorNotesResponse
    partial: bool
    changed_keys: list[str]
    draft_cleared: bool


def initial_data_from_response(response: GetDoctorNotesResponse) -> Optional[dict[str, Any]]:
    if not response.success or response.doctor_notes is None:
        return None
    return dict(response.doctor_notes.form_data or {}) or None


def fetch_initial_data(client: DoctorNotesClient, appointment_id: str) -> Optional[dict[str, Any]]:
    """Page-load fetch used to seed a store; the store never calls this itself."""
    return initial_data_from_response(client.get_doctor_notes(appointment_id))


def submit_doctor_notes(
    store: DoctorNotesDraftStore,
    client: DoctorNotesClient,
    *,
    original_form_data: Optional[Mapping[str, Any]] = None,
    is_draft: bool = False,
) -> SubmitResult:
    """Submit the store's current snapshot.

    With ``original_form_data`` (the notes as last loaded from the server) a
    PATCH carrying only the changed top-level sections is sent when some, but
    not all, sections changed. Otherwise the full form is POSTed. Final
    (non-draft) submissions that the server accepts clear the local draft.
    """
    snapshot = store.form_data
    changes = changed_fields(original_form_data, snapshot) if original_form_data is not None else {}
    partial = original_form_data is not None and 0 < len(changes) < len(snapshot)

    if partial:
        response = client.update_doctor_notes(store.appointment_id, changes, is_draft=is_draft)
    else:
        response = client.save_doctor_notes(store.appointment_id, snapshot, is_draft=is_draft)

    cleared = False
    if not response.success:
        logger.warning(
            "doctor_notes_submit_rejected appointment_id=%s message=%s",
            store.appointment_id,
            response.message,
        )
    elif not is_draft:
        cleared = store.clear_form_data()

    return SubmitResult(
        response=response,
        partial=partial,
        changed_keys=sorted(changes),
        draft_cleared=cleared,
    )
