"""In-process store for local runs and tests."""

from __future__ import annotations

import asyncio
import copy
import itertools
import time
from typing import Any, Callable

from .base import ABORT, SharedStore, TransactionResult, split_path


class MemoryStore(SharedStore):
    """Nested-dict store. Atomic within a single event loop."""

    def __init__(
        self,
        data: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root: dict[str, Any] = copy.deepcopy(data) if data else {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._seq = itertools.count()

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the whole tree."""
        return copy.deepcopy(self._root)

    async def get(self, path: str) -> Any:
        async with self._lock:
            return copy.deepcopy(self._read(split_path(path)))

    async def set(self, path: str, value: Any) -> None:
        async with self._lock:
            self._write(split_path(path), copy.deepcopy(value))

    async def update(self, path: str, values: dict[str, Any]) -> None:
        parts = split_path(path)
        async with self._lock:
            for key, value in values.items():
                self._write(parts + split_path(key), copy.deepcopy(value))

    async def delete(self, path: str) -> None:
        async with self._lock:
            self._write(split_path(path), None)

    async def push(self, path: str, value: Any) -> str:
        key = f"{int(self._clock() * 1000):013d}-{next(self._seq):06d}"
        async with self._lock:
            self._write(split_path(path) + [key], copy.deepcopy(value))
        return key

    async def transaction(
        self, path: str, update: Callable[[Any], Any]
    ) -> TransactionResult:
        parts = split_path(path)
        async with self._lock:
            current = copy.deepcopy(self._read(parts))
            new_value = update(current)
            if new_value is ABORT:
                return TransactionResult(committed=False, value=current)
            self._write(parts, copy.deepcopy(new_value))
            return TransactionResult(committed=True, value=new_value)

    def _read(self, parts: list[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _write(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        if value is None or value == {}:
            self._remove(self._root, parts)
            return

        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def _remove(self, node: dict[str, Any], parts: list[str]) -> None:
        """Delete a leaf and prune parents left empty."""
        head, rest = parts[0], parts[1:]
        if head not in node:
            return
        if not rest:
            del node[head]
            return
        child = node[head]
        if not isinstance(child, dict):
            return
        self._remove(child, rest)
        if not child:
            del node[head]
