"""Tenant, channel and user lookups against the shared store."""

from __future__ import annotations

import re
from typing import Any

from loguru import logger

from ..events import ChannelBinding, Route
from ..store import paths
from ..store.base import SharedStore


def normalize_phone(phone: str | None) -> str | None:
    """Normalize a phone number to the stored format: ``+`` followed by digits."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    return f"+{digits}"


class TenantDirectory:
    """Read-mostly index of tenants, their channels and their users.

    Nothing here is cached: channel bindings may be re-pointed at any time by
    the provisioning side, and every caller wants the current value.
    """

    def __init__(self, store: SharedStore) -> None:
        self._store = store

    async def channel_binding(self, instance: str) -> ChannelBinding | None:
        """Reverse lookup from a channel name to its tenant and credential."""
        if not instance:
            return None
        raw = await self._store.get(paths.channel_instance(instance))
        if not isinstance(raw, dict):
            return None
        return ChannelBinding.from_value(instance, raw)

    async def tenant_id_for_slug(self, slug: str) -> str | None:
        value = await self._store.get(paths.tenant_by_slug(slug))
        return str(value) if value else None

    async def user_for_identity(self, chat_id: str) -> str | None:
        value = await self._store.get(paths.user_by_identity(chat_id))
        return str(value) if value else None

    async def user_for_phone(self, phone: str) -> str | None:
        normalized = normalize_phone(phone)
        if not normalized:
            return None
        value = await self._store.get(paths.user_by_phone(normalized))
        return str(value) if value else None

    async def session_start(self, tenant_id: str | None, user_id: str) -> int | None:
        """Start of the user's open session, or None when no session exists.

        An index entry without a usable timestamp still marks an open session
        and yields 0.
        """
        if not tenant_id:
            return None
        value: Any = await self._store.get(paths.session_index(tenant_id, user_id))
        if value is None:
            return None
        if isinstance(value, dict):
            ts = value.get("sessionStartTs")
            if isinstance(ts, (int, float)) and not isinstance(ts, bool):
                return int(ts)
        return 0

    async def bind_conversation(
        self, slug: str, chat_id: str, instance: str, ts: int
    ) -> None:
        """Remember which channel a conversation last arrived on."""
        await self._store.set(
            paths.chat_instance(slug, chat_id),
            {"instanceName": instance, "lastMessageAt": ts},
        )

    async def conversation_instance(self, slug: str, chat_id: str) -> str | None:
        value = await self._store.get(paths.chat_instance(slug, chat_id))
        if isinstance(value, dict):
            return value.get("instanceName") or None
        return None

    async def primary_binding(self, tenant_id: str) -> ChannelBinding | None:
        raw = await self._store.get(paths.tenant_channel(tenant_id))
        if not isinstance(raw, dict) or not raw.get("instanceName"):
            return None
        return ChannelBinding.from_value(raw["instanceName"], raw)

    async def resolve_route(self, slug: str, chat_id: str) -> Route | None:
        """Channel to answer a conversation on.

        Prefers the channel the conversation last arrived on and falls back
        to the tenant's primary channel.
        """
        instance = await self.conversation_instance(slug, chat_id)
        if instance:
            binding = await self.channel_binding(instance)
            if binding and binding.api_key:
                return Route(instance=instance, api_key=binding.api_key)
            logger.debug(f"Conversation {slug}/{chat_id} bound to unknown channel {instance}")

        tenant_id = await self.tenant_id_for_slug(slug)
        if not tenant_id:
            return None
        primary = await self.primary_binding(tenant_id)
        if primary and primary.api_key:
            return Route(instance=primary.instance, api_key=primary.api_key)
        return None
