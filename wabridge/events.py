"""Message and event record types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


WHATSAPP_JID_SUFFIX = "@s.whatsapp.net"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_seconds(value: Any) -> int | None:
    """Coerce a provider timestamp (int, float or numeric string) to seconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass(frozen=True)
class ChatEvent:
    """An inbound event reported by the messaging gateway."""

    event: str
    instance: str  # gateway channel that received the event
    remote_jid: str | None = None
    from_me: bool = False
    message_id: str | None = None
    message: dict[str, Any] = field(default_factory=dict)
    timestamp: int | None = None  # provider timestamp, seconds
    push_name: str | None = None

    @classmethod
    def from_webhook(cls, payload: dict[str, Any]) -> ChatEvent:
        """Build an event from a raw webhook body. Missing fields stay empty."""
        data = _as_dict(payload.get("data"))
        key = _as_dict(data.get("key"))
        return cls(
            event=str(payload.get("event") or ""),
            instance=str(payload.get("instance") or ""),
            remote_jid=key.get("remoteJid") or None,
            from_me=key.get("fromMe") is True,
            message_id=key.get("id") or None,
            message=_as_dict(data.get("message")),
            timestamp=_as_seconds(data.get("messageTimestamp")),
            push_name=data.get("pushName") or None,
        )

    @property
    def text(self) -> str:
        extended = _as_dict(self.message.get("extendedTextMessage"))
        text = self.message.get("conversation") or extended.get("text") or ""
        return text if isinstance(text, str) else ""

    @property
    def audio(self) -> dict[str, Any] | None:
        audio = self.message.get("audioMessage")
        return audio if isinstance(audio, dict) else None

    @property
    def phone_number(self) -> str | None:
        """Sender number without the JID suffix."""
        if not self.remote_jid:
            return None
        return self.remote_jid.replace(WHATSAPP_JID_SUFFIX, "")


@dataclass
class AudioPayload:
    """Audio or voice-note descriptor attached to an inbound message."""

    url: str | None = None
    base64: str | None = None
    mimetype: str = "audio/ogg"
    seconds: int = 0
    ptt: bool = False  # push-to-talk (voice note)
    file_length: Any = None
    media_key: str | None = None
    file_sha256: str | None = None

    @classmethod
    def from_descriptor(cls, descriptor: dict[str, Any]) -> AudioPayload:
        return cls(
            url=descriptor.get("url") or None,
            mimetype=descriptor.get("mimetype") or "audio/ogg",
            seconds=descriptor.get("seconds") or 0,
            ptt=bool(descriptor.get("ptt")),
            file_length=descriptor.get("fileLength"),
            media_key=descriptor.get("mediaKey") or None,
            file_sha256=descriptor.get("fileSha256") or None,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "base64": self.base64,
            "mimetype": self.mimetype,
            "seconds": self.seconds,
            "ptt": self.ptt,
            "fileLength": self.file_length,
            "mediaKey": self.media_key,
            "fileSha256": self.file_sha256,
        }


@dataclass
class EnrichedMessage:
    """A canonical inbound message appended to a tenant's message log."""

    text: str
    message_type: str  # "text" or "audio"
    ts: int  # milliseconds
    conversation_id: str
    phone: str
    tenant_slug: str
    instance: str
    remote_jid: str
    tenant_id: str | None = None
    user_id: str | None = None
    profile_ready: bool = False
    first_in_session: bool = False
    session_start_ts: int | None = None
    message_id: str = ""
    push_name: str = "Cliente"
    audio: AudioPayload | None = None
    order_id: str | None = None
    role: str = "user"
    key: str | None = None  # store key, set once appended

    def to_record(self) -> dict[str, Any]:
        """Render the record written to the message log."""
        audio = self.audio.to_record() if self.audio else None
        meta: dict[str, Any] = {
            "chatId": self.conversation_id,
            "slug": self.tenant_slug,
            "source": "whatsapp",
            "tenantId": self.tenant_id,
            "userId": self.user_id,
            "pushName": self.push_name,
            "remoteJid": self.remote_jid,
            "messageId": self.message_id,
            "instanceName": self.instance,
            "firstInSession": self.first_in_session,
            "sessionStartTs": self.session_start_ts,
            "profileReady": self.profile_ready,
            "messageType": self.message_type,
        }
        record: dict[str, Any] = {
            "role": self.role,
            "text": self.text,
            "messageType": self.message_type,
            "ts": self.ts,
            "chatId": self.conversation_id,
            "tenantSlug": self.tenant_slug,
            "tenantId": self.tenant_id,
            "phone": self.phone,
            "instanceName": self.instance,
            "orderId": self.order_id,
            "profileReady": self.profile_ready,
            "firstInSession": self.first_in_session,
            "sessionStartTs": self.session_start_ts,
            "meta": meta,
        }
        if audio is not None:
            record["audio"] = audio
            meta["audio"] = audio
        return record


@dataclass(frozen=True)
class PendingResponse:
    """A queued outbound text awaiting delivery."""

    text: Any
    ts: int = 0  # creation time, milliseconds
    sent: bool = False

    @classmethod
    def from_value(cls, raw: Any) -> PendingResponse:
        """Parse a raw store value without rejecting malformed entries."""
        data = _as_dict(raw)
        ts = data.get("ts")
        return cls(
            text=data.get("text"),
            ts=ts if isinstance(ts, (int, float)) and not isinstance(ts, bool) else 0,
            sent=data.get("sent") is True,
        )

    @property
    def is_valid(self) -> bool:
        return isinstance(self.text, str) and bool(self.text)


@dataclass(frozen=True)
class ChannelBinding:
    """A tenant's gateway channel and the credential used to drive it."""

    instance: str
    api_key: str | None
    tenant_id: str | None = None
    slug: str | None = None
    number_id: str | None = None

    @classmethod
    def from_value(cls, instance: str, raw: Any) -> ChannelBinding:
        data = _as_dict(raw)
        return cls(
            instance=data.get("instanceName") or instance,
            api_key=data.get("apiKey") or None,
            tenant_id=data.get("tenantId") or None,
            slug=data.get("slug") or None,
            number_id=data.get("numberId") or None,
        )


@dataclass(frozen=True)
class Route:
    """Destination channel and credential for an outbound send."""

    instance: str
    api_key: str
