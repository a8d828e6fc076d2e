"""Inbound enrichment: gateway webhook event → message log record."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ..errors import ValidationFailure
from ..events import AudioPayload, ChannelBinding, ChatEvent, EnrichedMessage
from ..gateway.client import GatewayClient, slug_from_instance
from ..identity.cache import IdentityCache
from ..store import paths
from ..store.base import SharedStore
from ..tenants.directory import TenantDirectory


UPSERT_EVENT = "messages.upsert"
CONVERSATION_PREFIX = "web_"


def is_upsert(event: str) -> bool:
    """Match ``messages.upsert`` however the gateway spells it."""
    return event.lower().replace("_", ".") == UPSERT_EVENT


@dataclass(frozen=True)
class Dropped:
    """An event that was deliberately ignored."""

    reason: str


@dataclass(frozen=True)
class Accepted:
    """An event that passed validation and awaits enrichment."""

    event: ChatEvent
    conversation_id: str
    phone_number: str  # digits as reported by the gateway
    text: str
    message_type: str
    ts: int  # milliseconds

    @property
    def phone(self) -> str:
        return f"+{self.phone_number}"


class InboundPipeline:
    """Turns gateway chat events into enriched message-log records.

    ``accept`` is cheap and runs while the webhook caller waits; ``enrich``
    does the store and gateway round-trips and normally runs in the
    background via ``dispatch`` once the caller has been answered.
    """

    def __init__(
        self,
        store: SharedStore,
        directory: TenantDirectory,
        gateway: GatewayClient,
        cache: IdentityCache,
        conversation_prefix: str = CONVERSATION_PREFIX,
    ) -> None:
        self._store = store
        self._directory = directory
        self._gateway = gateway
        self._cache = cache
        self._prefix = conversation_prefix
        self._tasks: set[asyncio.Task] = set()

    async def accept(self, payload: dict[str, Any] | ChatEvent) -> Accepted | Dropped:
        """Validate and classify an event. Raises ValidationFailure when unusable."""
        event = payload if isinstance(payload, ChatEvent) else ChatEvent.from_webhook(payload)

        if not is_upsert(event.event):
            logger.debug(f"Ignoring non-message event: {event.event}")
            return Dropped("Event ignored (not messages.upsert)")

        if event.from_me:
            logger.debug("Ignoring own message")
            return Dropped("Own message ignored")

        phone_number = event.phone_number
        if not phone_number:
            raise ValidationFailure("Missing remoteJid")

        if event.audio is not None:
            message_type = "audio"
            text = f"[Audio message - {event.audio.get('seconds') or 0}s]"
        else:
            message_type = "text"
            text = event.text
            if not text.strip():
                logger.debug("Ignoring empty message")
                return Dropped("Empty message ignored")

        if event.timestamp is not None:
            ts = event.timestamp * 1000
        else:
            ts = int(time.time() * 1000)

        return Accepted(
            event=event,
            conversation_id=f"{self._prefix}{phone_number}",
            phone_number=phone_number,
            text=text,
            message_type=message_type,
            ts=ts,
        )

    async def enrich(self, accepted: Accepted) -> EnrichedMessage:
        """Resolve tenant and identity, then append the message to the log."""
        event = accepted.event
        binding = await self._lookup_binding(event.instance)

        audio = None
        if event.audio is not None:
            audio = AudioPayload.from_descriptor(event.audio)
            audio.base64 = await self._download_audio(event, binding)

        if binding and binding.slug:
            slug = binding.slug
        else:
            slug = slug_from_instance(event.instance)
            logger.warning(
                f"Channel {event.instance!r} not registered, using parsed slug {slug!r}"
            )

        await self._directory.bind_conversation(
            slug, accepted.conversation_id, event.instance, accepted.ts
        )

        identity = await self._cache.resolve(
            accepted.conversation_id, slug, phone=accepted.phone
        )

        message = EnrichedMessage(
            text=accepted.text,
            message_type=accepted.message_type,
            ts=accepted.ts,
            conversation_id=accepted.conversation_id,
            phone=accepted.phone,
            tenant_slug=slug,
            instance=event.instance,
            remote_jid=event.remote_jid or "",
            tenant_id=identity.tenant_id,
            user_id=identity.user_id,
            profile_ready=identity.profile_ready,
            first_in_session=identity.first_in_session,
            session_start_ts=identity.session_start_ts,
            message_id=event.message_id or "",
            push_name=event.push_name or "Cliente",
            audio=audio,
        )
        message.key = await self._store.push(
            paths.message_log(slug, accepted.conversation_id), message.to_record()
        )

        logger.info(
            f"Logged {message.message_type} message {message.key} for {slug}/{message.conversation_id} "
            f"(tenant={message.tenant_id}, profileReady={message.profile_ready}, "
            f"firstInSession={message.first_in_session})"
        )
        return message

    async def handle(self, payload: dict[str, Any] | ChatEvent) -> EnrichedMessage | Dropped:
        """Accept and enrich inline."""
        accepted = await self.accept(payload)
        if isinstance(accepted, Dropped):
            return accepted
        return await self.enrich(accepted)

    def dispatch(self, accepted: Accepted) -> asyncio.Task:
        """Enrich in the background. Failures are logged, never raised."""
        task = asyncio.create_task(self._enrich_logged(accepted))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight background enrichments."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _enrich_logged(self, accepted: Accepted) -> None:
        try:
            await self.enrich(accepted)
        except Exception as e:
            logger.error(
                f"Failed to enrich message for {accepted.conversation_id} "
                f"(instance {accepted.event.instance}): {e}"
            )

    async def _lookup_binding(self, instance: str) -> ChannelBinding | None:
        try:
            return await self._directory.channel_binding(instance)
        except Exception as e:
            logger.error(f"Failed to look up channel {instance}: {e}")
            return None

    async def _download_audio(
        self, event: ChatEvent, binding: ChannelBinding | None
    ) -> str | None:
        """Fetch the audio body. Best effort: a failure leaves it empty."""
        if not (binding and binding.api_key and event.message_id):
            logger.warning(
                f"Cannot download audio from {event.instance}: missing api key or message id"
            )
            return None
        try:
            data = await self._gateway.fetch_media_base64(
                event.instance, binding.api_key, event.message_id
            )
            logger.info(f"Audio download for {event.message_id} completed (found={data is not None})")
            return data
        except Exception as e:
            logger.error(f"Failed to download audio {event.message_id} from {event.instance}: {e}")
            return None
