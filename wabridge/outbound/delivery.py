"""Outbound delivery loop: pending responses → gateway."""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator

from loguru import logger

from ..errors import RoutingFailure
from ..events import PendingResponse
from ..gateway.client import GatewayClient
from ..store import paths
from ..store.base import ABORT, SharedStore
from ..tenants.directory import TenantDirectory
from .retry import retry_with_backoff


HEARTBEAT_EVERY = 30  # ticks between heartbeat log lines


class DeliveryOutcome(str, Enum):
    """What happened to one pending response during a tick."""

    SENT = "sent"
    FAILED = "failed"  # send failed after retries; entry discarded
    UNROUTABLE = "unroutable"  # no channel/credential; entry discarded
    CLAIM_LOST = "claim_lost"  # another process owns it
    ALREADY_SENT = "already_sent"  # leftover sent marker, deleted
    MALFORMED = "malformed"  # no usable text, deleted
    STALE = "stale"  # created before this process started, deleted
    DUPLICATE = "duplicate"  # already being processed here


def _claim(current: Any) -> Any:
    if not isinstance(current, dict) or current.get("sent") is True:
        return ABORT
    return {**current, "sent": True}


class DeliveryLoop:
    """Polls the pending-responses tree and delivers each entry once.

    Several processes may run this loop against the same store. An entry is
    only sent by the process whose claim transaction commits, and every
    claimed entry is deleted when its send attempt ends, whatever the result.
    Ticks run back to back with ``interval`` seconds between them; a tick
    never starts while the previous one is still running.
    """

    def __init__(
        self,
        store: SharedStore,
        directory: TenantDirectory,
        gateway: GatewayClient,
        interval: float = 2.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        conversation_prefix: str = "web_",
        started_at: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._directory = directory
        self._gateway = gateway
        self._interval = interval
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._prefix = conversation_prefix
        self._sleep = sleep
        # Entries created before this instant are leftovers from a previous run
        self.started_at = started_at if started_at is not None else int(time.time() * 1000)
        self._processing: set[str] = set()
        self._ticks = 0
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the polling loop."""
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"Delivery loop started (interval: {self._interval}s, "
            f"startup cutoff: {self.started_at})"
        )

    async def stop(self) -> None:
        """Stop the polling loop, letting an in-progress tick be cancelled."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Delivery loop stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in delivery loop: {e}")
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    async def tick(self) -> dict[str, DeliveryOutcome]:
        """Scan pending responses once and process every entry found."""
        self._ticks += 1
        if self._ticks % HEARTBEAT_EVERY == 0:
            logger.debug(f"Polling {paths.RESPONSES} (tick {self._ticks})")

        outcomes: dict[str, DeliveryOutcome] = {}
        tree = await self._store.get(paths.RESPONSES)
        for slug, chat_id, response_id, raw in self._entries(tree):
            if not chat_id.startswith(self._prefix):
                continue
            path = paths.response(slug, chat_id, response_id)
            try:
                outcomes[path] = await self._process(slug, chat_id, path, raw)
            except Exception as e:
                logger.error(f"Failed to process {path}: {e}")
                outcomes[path] = DeliveryOutcome.FAILED
        return outcomes

    async def try_claim(self, path: str) -> bool:
        """Atomically flip the entry's ``sent`` flag. True if this process won."""
        result = await self._store.transaction(path, _claim)
        return result.committed

    async def sweep(self) -> int:
        """Delete sent markers and malformed entries without sending anything."""
        removed = 0
        tree = await self._store.get(paths.RESPONSES)
        for slug, chat_id, response_id, raw in self._entries(tree):
            entry = PendingResponse.from_value(raw)
            if entry.sent or not entry.is_valid:
                path = paths.response(slug, chat_id, response_id)
                logger.info(f"Sweeping {'sent' if entry.sent else 'invalid'} entry {path}")
                await self._store.delete(path)
                removed += 1
        return removed

    @staticmethod
    def _entries(tree: Any) -> Iterator[tuple[str, str, str, Any]]:
        if not isinstance(tree, dict):
            return
        for slug, chats in tree.items():
            if not isinstance(chats, dict):
                continue
            for chat_id, entries in chats.items():
                if not isinstance(entries, dict):
                    continue
                for response_id, raw in entries.items():
                    yield slug, chat_id, response_id, raw

    async def _process(
        self, slug: str, chat_id: str, path: str, raw: Any
    ) -> DeliveryOutcome:
        entry = PendingResponse.from_value(raw)

        # Sent but never deleted: crash between send and delete, or a stale copy
        if entry.sent:
            logger.warning(f"Deleting leftover sent entry {path}")
            await self._store.delete(path)
            self._processing.discard(path)
            return DeliveryOutcome.ALREADY_SENT

        if path in self._processing:
            return DeliveryOutcome.DUPLICATE
        self._processing.add(path)

        try:
            if not entry.is_valid:
                logger.warning(f"Deleting {path}: no text")
                await self._store.delete(path)
                return DeliveryOutcome.MALFORMED

            if entry.ts < self.started_at:
                logger.warning(f"Deleting {path}: created before startup")
                await self._store.delete(path)
                return DeliveryOutcome.STALE

            if not await self.try_claim(path):
                logger.debug(f"{path} claimed by another process")
                return DeliveryOutcome.CLAIM_LOST

            return await self._deliver(slug, chat_id, path, entry.text)
        finally:
            self._processing.discard(path)

    async def _deliver(
        self, slug: str, chat_id: str, path: str, text: str
    ) -> DeliveryOutcome:
        """Send a claimed entry, then delete it no matter what happened."""
        try:
            route = await self._directory.resolve_route(slug, chat_id)
            if route is None:
                raise RoutingFailure(f"No channel found for {slug}/{chat_id}")

            number = chat_id[len(self._prefix):]
            logger.info(f"Sending {path} via {route.instance}")
            await retry_with_backoff(
                lambda: self._gateway.send_text(route.instance, route.api_key, number, text),
                attempts=self._max_attempts,
                base_delay=self._backoff_base,
                sleep=self._sleep,
            )
            logger.info(f"Sent {path}")
            return DeliveryOutcome.SENT
        except RoutingFailure as e:
            logger.error(f"{e}; discarding {path}")
            return DeliveryOutcome.UNROUTABLE
        except Exception as e:
            logger.error(f"Send failed for {path}, discarding: {e}")
            return DeliveryOutcome.FAILED
        finally:
            try:
                await self._store.delete(path)
            except Exception as e:
                # The sent marker stays behind and is removed on a later tick
                logger.error(f"Failed to delete {path}: {e}")
