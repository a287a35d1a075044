from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

StorageBackend = Literal["memory", "file"]

DEFAULT_STORAGE_PREFIX = "doctor_notes_draft_"
DEFAULT_DEBOUNCE_MS = 2000
DEFAULT_BOOKING_STORAGE_KEY = "bookingForm"


def _project_root() -> Path:
    # clinic_portal/internal_core/config.py -> clinic_portal -> repo root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_backend(name: str, default: StorageBackend) -> StorageBackend:
    value = _getenv_str(name, default).strip().lower()
    if value not in {"memory", "file"}:
        raise ValueError(f"{name} must be 'memory' or 'file', got: {value!r}")
    return value  # type: ignore[return-value]


@dataclass(frozen=True)
class DraftStoreConfig:
    storage_prefix: str = DEFAULT_STORAGE_PREFIX
    debounce_ms: int = DEFAULT_DEBOUNCE_MS

    def __post_init__(self) -> None:
        if self.debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    def storage_key(self, appointment_id: str) -> str:
        return f"{self.storage_prefix}{appointment_id}"


@dataclass(frozen=True)
class PortalConfig:
    PORTAL_DRAFT_STORAGE_PREFIX: str
    PORTAL_DRAFT_DEBOUNCE_MS: int
    PORTAL_STORAGE_BACKEND: StorageBackend
    PORTAL_STORAGE_DIR: str
    PORTAL_BOOKING_STORAGE_KEY: str
    PORTAL_DRAFT_TTL_SECONDS: int
    PORTAL_API_BASE_URL: str
    PORTAL_API_TIMEOUT_SECONDS: float
    PORTAL_LOG_LEVEL: str

    def draft_store_config(self) -> DraftStoreConfig:
        return DraftStoreConfig(
            storage_prefix=self.PORTAL_DRAFT_STORAGE_PREFIX,
            debounce_ms=self.PORTAL_DRAFT_DEBOUNCE_MS,
        )

    def storage_dir_path(self, repo_root: Path | None = None) -> Path:
        root = repo_root if repo_root is not None else _project_root()
        return (root / self.PORTAL_STORAGE_DIR).resolve()


def load_config() -> PortalConfig:
    return PortalConfig(
        PORTAL_DRAFT_STORAGE_PREFIX=_getenv_str("PORTAL_DRAFT_STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX),
        PORTAL_DRAFT_DEBOUNCE_MS=_getenv_int("PORTAL_DRAFT_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS),
        PORTAL_STORAGE_BACKEND=_getenv_backend("PORTAL_STORAGE_BACKEND", "memory"),
        PORTAL_STORAGE_DIR=_getenv_str("PORTAL_STORAGE_DIR", "./tmp/drafts"),
        PORTAL_BOOKING_STORAGE_KEY=_getenv_str("PORTAL_BOOKING_STORAGE_KEY", DEFAULT_BOOKING_STORAGE_KEY),
        PORTAL_DRAFT_TTL_SECONDS=_getenv_int("PORTAL_DRAFT_TTL_SECONDS", 14400),
        PORTAL_API_BASE_URL=_getenv_str("PORTAL_API_BASE_URL", "http://localhost:5000/api/"),
        PORTAL_API_TIMEOUT_SECONDS=_getenv_float("PORTAL_API_TIMEOUT_SECONDS", 15.0),
        PORTAL_LOG_LEVEL=_getenv_str("PORTAL_LOG_LEVEL", "INFO"),
    )
