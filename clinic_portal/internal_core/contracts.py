from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


class DoctorNoteAttachment(_CamelModel):
    id: str
    file_name: str
    file_url: Optional[str] = None
    mime_type: str = ""
    size_in_bytes: int = 0
    file_category: str = ""
    section: Optional[str] = None
    created_at: str = ""


class DoctorNotesRecord(_CamelModel):
    id: str = ""
    appointment_id: str = ""
    form_data: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    is_draft: bool = False
    is_completed: bool = False
    created_at: str = ""
    updated_at: str = ""
    attachments: List[DoctorNoteAttachment] = Field(default_factory=list)


class GetDoctorNotesResponse(_CamelModel):
    success: bool
    doctor_notes: Optional[DoctorNotesRecord] = None


class SavedDoctorNotesRef(_CamelModel):
    id: str
    appointment_id: str


class SaveDoctorNotesResponse(_CamelModel):
    success: bool
    message: Optional[str] = None
    doctor_notes: Optional[SavedDoctorNotesRef] = None


class DeleteAttachmentResponse(_CamelModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


AuditEventType = Literal[
    "DRAFT_MOUNTED",
    "DRAFT_FLUSHED",
    "DRAFT_CLEARED",
    "DRAFT_UNMOUNTED",
    "DRAFT_EXPIRED",
    "ERROR",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    appointment_id: str
    type: AuditEventType
    code: str
    detail: str
