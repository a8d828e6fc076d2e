"""Evolution API client for the WhatsApp gateway."""

from __future__ import annotations

import re
import secrets
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from ..errors import WabridgeError


INSTANCE_PREFIX = "colmado_"
WEBHOOK_EVENTS = ["MESSAGES_UPSERT", "QRCODE_UPDATED", "CONNECTION_UPDATE"]

_SUFFIX_PATTERN = re.compile(r"_\d+$")


class GatewayError(WabridgeError):
    """A gateway call failed. ``status`` follows HTTP semantics."""

    def __init__(
        self,
        message: str,
        status: int = 500,
        code: str = "evolution_error",
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.data = data


def normalize_slug(slug: str) -> str:
    """Lowercase a slug and collapse anything unsafe into single dashes."""
    slug = re.sub(r"[^a-z0-9_-]", "-", slug.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def instance_name_for(slug: str, suffix: int | None = None) -> str:
    """Channel name for a tenant; additional numbers carry a ``_{n}`` suffix."""
    name = f"{INSTANCE_PREFIX}{normalize_slug(slug)}"
    return f"{name}_{suffix}" if suffix else name


def slug_from_instance(instance: str) -> str:
    """Best-effort inverse of :func:`instance_name_for`."""
    if not instance:
        return "unknown"
    slug = instance[len(INSTANCE_PREFIX):] if instance.startswith(INSTANCE_PREFIX) else instance
    return _SUFFIX_PATTERN.sub("", slug) or "unknown"


def api_key_from_create_response(data: Any, token: str) -> str:
    """Pick the instance api key out of an ``/instance/create`` response."""
    if isinstance(data, dict):
        instance = data.get("instance")
        if isinstance(instance, dict) and instance.get("apikey"):
            return instance["apikey"]
        hash_ = data.get("hash")
        if isinstance(hash_, dict) and hash_.get("apikey"):
            return hash_["apikey"]
        if isinstance(hash_, str) and hash_:
            return hash_
    return token


def as_data_url(image: str) -> str:
    return image if image.startswith("data:") else f"data:image/png;base64,{image}"


def _error_from_exception(exc: Exception, context: str) -> GatewayError:
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        try:
            data = response.json()
        except ValueError:
            data = None
        reason = None
        if isinstance(data, dict):
            nested = data.get("response")
            if isinstance(nested, dict):
                reason = nested.get("message")
            reason = reason or data.get("message")
            code = data.get("error") or "evolution_error"
        else:
            code = "evolution_error"
        if isinstance(reason, list):
            reason = "; ".join(str(r) for r in reason)
        return GatewayError(
            f"[Evolution] {context}: {reason or exc}",
            status=response.status_code,
            code=str(code),
            data=data,
        )
    if isinstance(exc, httpx.TimeoutException):
        return GatewayError(f"[Evolution] {context}: timed out", status=504, code="timeout")
    return GatewayError(f"[Evolution] {context}: {exc}")


class GatewayClient:
    """Typed calls against the Evolution API."""

    def __init__(
        self,
        base_url: str,
        master_key: str = "",
        timeout: float = 45.0,
        media_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._master_key = master_key
        self._media_timeout = media_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        api_key: str,
        context: str,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        kwargs: dict[str, Any] = {"json": payload, "headers": {"apikey": api_key}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise _error_from_exception(e, context) from e
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def create_instance(
        self, instance_name: str, webhook_url: str
    ) -> tuple[Any, str]:
        """Provision a channel. Returns the raw response and the generated token."""
        token = secrets.token_hex(32)
        logger.info(f"Creating gateway instance {instance_name} (webhook: {webhook_url})")
        data = await self._request(
            "POST",
            "/instance/create",
            api_key=self._master_key,
            context="Failed to create instance",
            payload={
                "instanceName": instance_name,
                "token": token,
                "integration": "WHATSAPP-BAILEYS",
                "qrcode": True,
                "webhook": {
                    "enabled": True,
                    "url": webhook_url,
                    "webhookByEvents": True,
                    "events": WEBHOOK_EVENTS,
                },
            },
        )
        return data, token

    async def delete_instance(self, instance_name: str) -> Any:
        return await self._request(
            "DELETE",
            f"/instance/delete/{quote(instance_name, safe='')}",
            api_key=self._master_key,
            context=f"Failed to delete instance {instance_name}",
        )

    async def connection_state(self, instance_name: str, api_key: str) -> Any:
        return await self._request(
            "GET",
            f"/instance/connectionState/{quote(instance_name, safe='')}",
            api_key=api_key,
            context=f"Failed to fetch connection state for {instance_name}",
        )

    async def fetch_qr(self, instance_name: str, api_key: str) -> str | None:
        """Pairing artifact: a PNG data URL when available, else the pairing code."""
        data = await self._request(
            "GET",
            f"/instance/connect/{quote(instance_name, safe='')}",
            api_key=api_key,
            context=f"Failed to fetch QR code for {instance_name}",
        )
        if not isinstance(data, dict):
            return None
        if data.get("base64"):
            return as_data_url(data["base64"])
        return data.get("code")

    async def send_text(
        self, instance_name: str, api_key: str, number: str, text: str
    ) -> Any:
        return await self._request(
            "POST",
            f"/message/sendText/{quote(instance_name, safe='')}",
            api_key=api_key,
            context=f"Failed to send text via {instance_name}",
            payload={"number": number, "text": text},
        )

    async def fetch_media_base64(
        self, instance_name: str, api_key: str, message_id: str
    ) -> str | None:
        data = await self._request(
            "POST",
            f"/chat/getBase64FromMediaMessage/{quote(instance_name, safe='')}",
            api_key=api_key,
            context=f"Failed to download media {message_id}",
            payload={"message": {"key": {"id": message_id}}},
            timeout=self._media_timeout,
        )
        if isinstance(data, dict):
            return data.get("base64") or None
        return None
