from __future__ import annotations

"""
Directory-backed key/value store.

Design intent:
- One file per key so a corrupt value never takes down its neighbours.
- Writes go through a temp file + replace so readers never see half a payload.
"""

import hashlib
import os
import re
import tempfile
from pathlib import Path
from threading import RLock
from typing import Optional

from .base import KeyValueStore, StorageError

_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def _safe_unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except Exception:
        pass


class JsonFileKeyValueStore(KeyValueStore):
    def __init__(self, root_dir: Path | str):
        self._root = Path(root_dir).expanduser().resolve()
        self._lock = RLock()

    @property
    def root_dir(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        stem = _SAFE_KEY_RE.sub("_", key).strip("._") or "key"
        # Sanitizing can collide ("a/b" vs "a_b"); the digest keeps keys distinct.
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:10]
        return self._root / f"{stem[:80]}.{digest}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        with self._lock:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise StorageError("READ_FAILED", f"Failed to read {path}: {exc}", key) from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        with self._lock:
            tmp_name = ""
            try:
                self._root.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=self._root)
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(str(value))
                os.replace(tmp_name, path)
            except OSError as exc:
                if tmp_name:
                    _safe_unlink(Path(tmp_name))
                raise StorageError("WRITE_FAILED", f"Failed to write {path}: {exc}", key) from exc

    def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError("REMOVE_FAILED", f"Failed to remove {path}: {exc}", key) from exc

    def name(self) -> str:
        return "json_file"
