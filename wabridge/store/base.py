"""Abstract base class for the shared hierarchical store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


# Returned from a transaction update function to leave the value untouched.
ABORT: Any = _Abort()


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of an atomic read-modify-write."""

    committed: bool
    value: Any = None


def split_path(path: str) -> list[str]:
    """Split a slash-separated path into its non-empty segments."""
    return [part for part in path.split("/") if part]


def join_path(*parts: str) -> str:
    return "/".join(segment for part in parts for segment in split_path(part))


class SharedStore(ABC):
    """Path-addressed store shared by every running wabridge process.

    Values are JSON-compatible. Writing ``None`` is equivalent to deleting,
    and empty containers are not kept.
    """

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Read the value (or subtree) at ``path``; ``None`` when absent."""
        ...

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at ``path``."""
        ...

    @abstractmethod
    async def update(self, path: str, values: dict[str, Any]) -> None:
        """Merge ``values`` into the children of ``path``."""
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the value at ``path``. Removing a missing path is a no-op."""
        ...

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """Append ``value`` under a new, time-ordered child key and return it."""
        ...

    @abstractmethod
    async def transaction(
        self, path: str, update: Callable[[Any], Any]
    ) -> TransactionResult:
        """Atomically replace the value at ``path`` with ``update(current)``.

        If ``update`` returns ``ABORT`` nothing is written and the result is
        not committed. The update function may run more than once.
        """
        ...

    async def close(self) -> None:
        """Release any underlying resources."""
        return None
