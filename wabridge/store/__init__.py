"""Shared store adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import ABORT, SharedStore, TransactionResult
from .memory import MemoryStore

if TYPE_CHECKING:
    from ..config.schema import StoreConfig

__all__ = ["ABORT", "MemoryStore", "SharedStore", "TransactionResult", "build_store"]


def build_store(config: StoreConfig) -> SharedStore:
    """Create the store backend selected in configuration."""
    if config.backend == "rtdb":
        from .rtdb import RealtimeDatabaseStore

        return RealtimeDatabaseStore(
            url=config.url,
            auth=config.auth,
            timeout=config.timeout,
            max_transaction_retries=config.max_transaction_retries,
        )
    return MemoryStore()
