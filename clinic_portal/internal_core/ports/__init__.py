from __future__ import annotations

from .base import Clock, KeyValueStore, StorageError, TimerHandle
from .clock import ManualClock, ThreadingClock
from .json_file import JsonFileKeyValueStore
from .memory import InMemoryKeyValueStore

__all__ = [
    "Clock",
    "KeyValueStore",
    "StorageError",
    "TimerHandle",
    "ManualClock",
    "ThreadingClock",
    "JsonFileKeyValueStore",
    "InMemoryKeyValueStore",
]
