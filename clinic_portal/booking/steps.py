from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from clinic_portal.booking.form import BookingForm

VALIDATION_CONFIG: dict[str, tuple[str, ...]] = {
    "user-details": ("fullName", "mobile", "email", "dob", "gender", "address"),
    "measurements": ("weight", "height"),
    "medical": ("medicalHistory",),
    "lifestyle": (
        "bowel",
        "dailyFood",
        "waterIntake",
        "wakeUpTime",
        "sleepTime",
        "sleepQuality",
    ),
}

HUMAN_LABELS: dict[str, str] = {
    "fullName": "Full name",
    "mobile": "Mobile number",
    "email": "Email",
    "dob": "Date of birth",
    "gender": "Gender",
    "address": "Address",
    "weight": "Weight",
    "height": "Height",
    "medicalHistory": "Medical history",
    "bowel": "Bowel movement",
    "dailyFood": "Daily food intake",
    "waterIntake": "Water intake",
    "wakeUpTime": "Wake up time",
    "sleepTime": "Sleep time",
    "sleepQuality": "Sleep quality",
}


def to_human_label(key: str) -> str:
    return HUMAN_LABELS.get(key) or key


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


class StepValidator:
    def __init__(self, step_id: str, form: Union[BookingForm, Mapping[str, Any]]):
        if step_id not in VALIDATION_CONFIG:
            raise KeyError(f"Unknown booking step: {step_id}")
        self.step_id = step_id
        self.required_fields = VALIDATION_CONFIG[step_id]
        self._values = form.to_record() if isinstance(form, BookingForm) else dict(form)

    def validate(self) -> bool:
        return not self.get_missing_fields()

    def get_first_missing_field(self) -> Optional[str]:
        missing = self.get_missing_fields()
        return missing[0] if missing else None

    def get_missing_fields(self) -> list[str]:
        return [field for field in self.required_fields if _is_missing(self._values.get(field))]

    def get_field_errors(self) -> dict[str, str]:
        return {field: f"{to_human_label(field)} is required" for field in self.get_missing_fields()}


@dataclass(frozen=True)
class BookingStep:
    id: str
    label: str
    href: str


STEPS: tuple[BookingStep, ...] = (
    BookingStep(id="user-details", label="User", href="/book/user-details"),
    BookingStep(id="recall", label="Recall", href="/book/recall"),
    BookingStep(id="slot", label="Slot", href="/book/slot"),
    BookingStep(id="payment", label="Payment", href="/book/payment"),
)


@dataclass(frozen=True)
class StepStatus:
    step: BookingStep
    index: int
    is_completed: bool
    is_locked: bool
    is_active: bool


def active_step_index(pathname: str) -> int:
    path = (pathname or "").rstrip("/")
    for index, step in enumerate(STEPS):
        if path == step.href or path.startswith(step.href + "/"):
            return index
    return 0


def step_statuses(pathname: str) -> list[StepStatus]:
    active = active_step_index(pathname)
    return [
        StepStatus(
            step=step,
            index=i,
            is_completed=i <= active,
            is_locked=i > active,
            is_active=i == active,
        )
        for i, step in enumerate(STEPS)
    ]


def can_navigate(pathname: str, target_step_id: str) -> bool:
    """Steps behind or at the current one are reachable; later ones are locked."""
    for status in step_statuses(pathname):
        if status.step.id == target_step_id:
            return not status.is_locked
    raise KeyError(f"Unknown booking step: {target_step_id}")
