"""Shared fixtures for wabridge tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from wabridge.gateway.client import GatewayClient
from wabridge.store.memory import MemoryStore
from wabridge.tenants.directory import TenantDirectory


NOW = 1_700_000_100.0  # seconds
SESSION_START = 1_700_000_000_000  # milliseconds


def seed_data() -> dict[str, Any]:
    """A tenant 'donpepe' with two channels and two known users."""
    return {
        "channel_instances": {
            "colmado_donpepe": {"tenantId": "t1", "apiKey": "key-1", "slug": "donpepe"},
            "colmado_donpepe_2": {
                "tenantId": "t1",
                "apiKey": "key-2",
                "slug": "donpepe",
                "numberId": "number_2",
            },
        },
        "tenants": {
            "t1": {
                "channel": {
                    "instanceName": "colmado_donpepe",
                    "apiKey": "key-1",
                    "slug": "donpepe",
                }
            }
        },
        "tenants_by_slug": {"donpepe": "t1"},
        "users_by_identity": {"web_18091234567": "u1"},
        "users_by_phone": {"+18097654321": "u2"},
        "session_index": {"t1": {"u1": {"sessionStartTs": SESSION_START}}},
    }


class FakeClock:
    """Manually advanced wall clock, in seconds."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(seed_data(), clock=clock)


@pytest.fixture
def directory(store: MemoryStore) -> TenantDirectory:
    return TenantDirectory(store)


@pytest.fixture
def gateway() -> MagicMock:
    """Gateway client double; every call succeeds by default."""
    mock = MagicMock(spec=GatewayClient)
    mock.send_text = AsyncMock(return_value={"key": {"id": "SENT1"}})
    mock.fetch_media_base64 = AsyncMock(return_value="T2dnUw==")
    return mock


def webhook_payload(
    text: str = "Hola, quiero 2 refrescos",
    instance: str = "colmado_donpepe",
    remote_jid: str | None = "18091234567@s.whatsapp.net",
    from_me: bool = False,
    event: str = "messages.upsert",
    message: dict[str, Any] | None = None,
    timestamp: Any = 1_700_000_050,
) -> dict[str, Any]:
    key: dict[str, Any] = {"fromMe": from_me, "id": "MSG1"}
    if remote_jid is not None:
        key["remoteJid"] = remote_jid
    return {
        "event": event,
        "instance": instance,
        "data": {
            "key": key,
            "message": message if message is not None else {"conversation": text},
            "messageTimestamp": timestamp,
            "pushName": "Maria",
        },
    }
