from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError

from clinic_portal.internal_core.contracts import (
    DeleteAttachmentResponse,
    GetDoctorNotesResponse,
    SaveDoctorNotesResponse,
)

logger = logging.getLogger(__name__)

# (filename, content, mime type)
UploadFile = Tuple[str, bytes, str]


class DoctorNotesApiError(RuntimeError):
    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.message = message
        self.status_code = status_code


def _multipart_fields(
    appointment_id: str,
    form_data: Mapping[str, Any],
    is_draft: bool,
    diet_charts: Sequence[UploadFile],
) -> list[tuple[str, tuple[Optional[str], Any] | tuple[str, bytes, str]]]:
    fields: list[Any] = [
        ("appointmentId", (None, appointment_id)),
        ("formData", (None, json.dumps(dict(form_data)))),
        ("isDraft", (None, "true" if is_draft else "false")),
    ]
    for file_name, content, mime_type in diet_charts:
        fields.append(("dietCharts", (file_name, content, mime_type)))
    return fields


class DoctorNotesClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 15.0,
        client: Optional[httpx.Client] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_sec)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "DoctorNotesClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> Any:
        started = time.perf_counter()
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            status = exc.response.status_code
            logger.error(
                "doctor_notes_api_failed op=%s status=%s duration_ms=%s body=%s",
                operation,
                status,
                duration_ms,
                exc.response.text[:500],
            )
            raise DoctorNotesApiError(operation, f"{operation} failed with HTTP {status}", status) from exc
        except httpx.HTTPError as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.error(
                "doctor_notes_api_failed op=%s duration_ms=%s error=%s",
                operation,
                duration_ms,
                exc,
            )
            raise DoctorNotesApiError(operation, f"{operation} failed: {exc}") from exc
        except ValueError as exc:
            raise DoctorNotesApiError(operation, f"{operation} returned invalid JSON: {exc}") from exc
        logger.info(
            "doctor_notes_api_ok op=%s duration_ms=%s",
            operation,
            int((time.perf_counter() - started) * 1000),
        )
        return payload

    def get_doctor_notes(self, appointment_id: str) -> GetDoctorNotesResponse:
        payload = self._request("get_doctor_notes", "GET", f"admin/doctor-notes/{appointment_id}")
        try:
            return GetDoctorNotesResponse.model_validate(payload)
        except ValidationError as exc:
            raise DoctorNotesApiError("get_doctor_notes", f"Unexpected response shape: {exc}") from exc

    def save_doctor_notes(
        self,
        appointment_id: str,
        form_data: Mapping[str, Any],
        *,
        is_draft: bool = False,
        diet_charts: Sequence[UploadFile] = (),
    ) -> SaveDoctorNotesResponse:
        """Full form submission."""
        logger.info(
            "doctor_notes_save appointment_id=%s is_draft=%s keys=%s",
            appointment_id,
            is_draft,
            sorted(form_data),
        )
        payload = self._request(
            "save_doctor_notes",
            "POST",
            "admin/doctor-notes",
            files=_multipart_fields(appointment_id, form_data, is_draft, diet_charts),
        )
        return self._parse_save("save_doctor_notes", payload)

    def update_doctor_notes(
        self,
        appointment_id: str,
        partial_data: Mapping[str, Any],
        *,
        is_draft: bool = False,
        diet_charts: Sequence[UploadFile] = (),
    ) -> SaveDoctorNotesResponse:
        """Partial update of the changed sections only."""
        logger.info(
            "doctor_notes_update appointment_id=%s is_draft=%s keys=%s",
            appointment_id,
            is_draft,
            sorted(partial_data),
        )
        payload = self._request(
            "update_doctor_notes",
            "PATCH",
            f"admin/doctor-notes/{appointment_id}",
            files=_multipart_fields(appointment_id, partial_data, is_draft, diet_charts),
        )
        return self._parse_save("update_doctor_notes", payload)

    def delete_attachment(self, attachment_id: str) -> DeleteAttachmentResponse:
        payload = self._request(
            "delete_attachment",
            "DELETE",
            f"admin/doctor-notes/attachment/{attachment_id}",
        )
        try:
            return DeleteAttachmentResponse.model_validate(payload)
        except ValidationError as exc:
            raise DoctorNotesApiError("delete_attachment", f"Unexpected response shape: {exc}") from exc

    @staticmethod
    def _parse_save(operation: str, payload: Any) -> SaveDoctorNotesResponse:
        try:
            return SaveDoctorNotesResponse.model_validate(payload)
        except ValidationError as exc:
            raise DoctorNotesApiError(operation, f"Unexpected response shape: {exc}") from exc
