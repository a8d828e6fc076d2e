"""Short-lived identity cache for inbound conversations."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from ..tenants.directory import TenantDirectory


@dataclass(frozen=True)
class Identity:
    """Resolved tenant/user identity for one inbound message."""

    tenant_id: str | None
    user_id: str | None
    session_start_ts: int
    first_in_session: bool
    profile_ready: bool


@dataclass(frozen=True)
class IdentityCacheEntry:
    tenant_id: str | None
    user_id: str | None
    slug: str
    session_start_ts: int
    expires_at: float  # absolute, seconds


class IdentityCache:
    """Memoizes conversation → tenant/user/session lookups for ``ttl`` seconds.

    Entries are replaced wholesale after expiry and never refreshed in place.
    Expiry is checked on lookup only; the cache holds one entry per
    conversation seen by this process.
    """

    def __init__(
        self,
        directory: TenantDirectory,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._directory = directory
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, IdentityCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, conversation_id: str) -> IdentityCacheEntry | None:
        """Live entry for a conversation, if any."""
        entry = self._entries.get(conversation_id)
        if entry and entry.expires_at > self._clock():
            return entry
        return None

    def invalidate(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)

    def clear(self) -> None:
        self._entries.clear()

    async def resolve(
        self, conversation_id: str, tenant_slug: str, phone: str | None = None
    ) -> Identity:
        entry = self.get(conversation_id)
        if entry:
            # A conversation seen within the TTL is never "first" again
            return Identity(
                tenant_id=entry.tenant_id,
                user_id=entry.user_id,
                session_start_ts=entry.session_start_ts,
                first_in_session=False,
                profile_ready=True,
            )

        now = self._clock()
        tenant_id, user_id = await asyncio.gather(
            self._directory.tenant_id_for_slug(tenant_slug),
            self._directory.user_for_identity(conversation_id),
        )

        # Cross-channel reconciliation: the user may be known by phone only
        if not user_id and phone:
            user_id = await self._directory.user_for_phone(phone)

        session_start_ts = int(now * 1000)
        first_in_session = True
        if user_id:
            started = await self._directory.session_start(tenant_id, user_id)
            if started is not None:
                first_in_session = False
                session_start_ts = started or session_start_ts
                logger.debug(f"Session found for {user_id}: sessionStartTs={session_start_ts}")
            else:
                logger.debug(f"No session found for {user_id}: first message in session")
        else:
            logger.debug(f"No user for {conversation_id}: profile not ready")

        self._entries[conversation_id] = IdentityCacheEntry(
            tenant_id=tenant_id,
            user_id=user_id,
            slug=tenant_slug,
            session_start_ts=session_start_ts,
            expires_at=now + self._ttl,
        )

        return Identity(
            tenant_id=tenant_id,
            user_id=user_id,
            session_start_ts=session_start_ts,
            first_in_session=first_in_session,
            profile_ready=user_id is not None,
        )
