from abc import ABC, abstractmethod
from typing import Dict, Optional


class StorageBackend(ABC):
    """
    Abstract key/value storage the taxonomy core persists through.

    The core only ever reads and writes whole JSON blobs under a few fixed
    keys, so any backend that can store a string per key will do. These two
    coroutines are the only points where the core suspends.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """
        Read the blob stored under a key.

        Args:
            key: Storage key (e.g. 'categories')

        Returns:
            The stored string, or None if nothing was saved yet

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """
        Store a blob under a key, replacing any previous value.

        Args:
            key: Storage key
            value: Serialized blob

        Raises:
            StorageError: If the write fails
        """
        pass


class InMemoryStorage(StorageBackend):
    """Dict-backed storage for tests and embedding."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def __repr__(self) -> str:
        return f"InMemoryStorage({len(self.items)} keys)"
