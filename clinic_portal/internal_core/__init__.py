from .config import DraftStoreConfig, PortalConfig, load_config
from .ports import (
    Clock,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    ManualClock,
    StorageError,
    ThreadingClock,
)

__all__ = [
    "DraftStoreConfig",
    "PortalConfig",
    "load_config",
    "Clock",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "ManualClock",
    "StorageError",
    "ThreadingClock",
]
