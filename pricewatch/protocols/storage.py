"""
Key/Value Store Protocol
Best-effort persistence for the three cross-session settings.
"""

from typing import Protocol, Any
from abc import abstractmethod


class KeyValueStore(Protocol):
    """Protocol for opaque settings persistence. Implementations never raise."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get the stored value, or ``default`` when absent or unreadable."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> bool:
        """Store a JSON-serialisable value; False when the write failed."""
        ...
