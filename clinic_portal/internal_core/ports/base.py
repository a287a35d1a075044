from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional


class StorageError(RuntimeError):
    def __init__(self, code: str, message: str, key: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.key = key


class KeyValueStore(ABC):
    """String-keyed, string-valued persistence (the localStorage shape)."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove_item(self, key: str) -> None: ...

    @abstractmethod
    def name(self) -> str: ...


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None: ...

    @property
    @abstractmethod
    def pending(self) -> bool: ...


class Clock(ABC):
    """Wall-clock reads plus one-shot delayed callbacks."""

    @abstractmethod
    def now(self) -> float:
        """Epoch seconds."""

    @abstractmethod
    def call_later(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle: ...
