"""Tests for the Evolution API client."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from wabridge.gateway.client import (
    GatewayClient,
    GatewayError,
    api_key_from_create_response,
    instance_name_for,
    normalize_slug,
    slug_from_instance,
)


def make_client(handler) -> GatewayClient:
    return GatewayClient(
        base_url="https://evo.example.com/",
        master_key="master",
        transport=httpx.MockTransport(handler),
    )


class TestNaming:
    """Test channel naming helpers."""

    def test_normalize_slug(self) -> None:
        assert normalize_slug("Don Pepe!!") == "don-pepe"
        assert normalize_slug("--abc__1--") == "abc__1"

    def test_instance_name(self) -> None:
        assert instance_name_for("donpepe") == "colmado_donpepe"
        assert instance_name_for("donpepe", 2) == "colmado_donpepe_2"

    @pytest.mark.parametrize(
        "instance,slug",
        [
            ("colmado_donpepe", "donpepe"),
            ("colmado_donpepe_2", "donpepe"),
            ("other", "other"),
            ("colmado_", "unknown"),
            ("", "unknown"),
        ],
    )
    def test_slug_from_instance(self, instance: str, slug: str) -> None:
        assert slug_from_instance(instance) == slug

    def test_api_key_from_create_response(self) -> None:
        assert api_key_from_create_response({"instance": {"apikey": "a"}}, "t") == "a"
        assert api_key_from_create_response({"hash": {"apikey": "b"}}, "t") == "b"
        assert api_key_from_create_response({"hash": "c"}, "t") == "c"
        assert api_key_from_create_response(None, "t") == "t"


class TestSendText:
    """Test message sends."""

    @pytest.mark.asyncio
    async def test_request_shape(self) -> None:
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["apikey"] = request.headers["apikey"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"key": {"id": "SENT1"}})

        async with make_client(handler) as client:
            data = await client.send_text("colmado_donpepe", "key-1", "18091234567", "Hola")

        assert data == {"key": {"id": "SENT1"}}
        assert seen == {
            "method": "POST",
            "path": "/message/sendText/colmado_donpepe",
            "apikey": "key-1",
            "body": {"number": "18091234567", "text": "Hola"},
        }

    @pytest.mark.asyncio
    async def test_server_error_mapping(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                500,
                json={"error": "Internal Server Error", "response": {"message": ["Connection Closed"]}},
            )

        async with make_client(handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_text("colmado_donpepe", "key-1", "1", "x")

        err = exc_info.value
        assert err.status == 500
        assert err.code == "Internal Server Error"
        assert "Connection Closed" in str(err)

    @pytest.mark.asyncio
    async def test_not_found_mapping(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="not here")

        async with make_client(handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_text("colmado_gone", "key-1", "1", "x")

        assert exc_info.value.status == 404
        assert exc_info.value.data is None

    @pytest.mark.asyncio
    async def test_rate_limit_mapping(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"message": "slow down"})

        async with make_client(handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_text("colmado_donpepe", "key-1", "1", "x")

        assert exc_info.value.status == 429
        assert "slow down" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_maps_to_504(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_client(handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_text("colmado_donpepe", "key-1", "1", "x")

        assert exc_info.value.status == 504
        assert exc_info.value.code == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_500(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(GatewayError) as exc_info:
                await client.send_text("colmado_donpepe", "key-1", "1", "x")

        assert exc_info.value.status == 500


class TestInstances:
    """Test channel management calls."""

    @pytest.mark.asyncio
    async def test_create_instance_uses_master_key(self) -> None:
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["apikey"] = request.headers["apikey"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"hash": "generated"})

        async with make_client(handler) as client:
            data, token = await client.create_instance(
                "colmado_donpepe", "https://relay.example.com/webhook/evolution"
            )

        assert seen["apikey"] == "master"
        assert seen["body"]["instanceName"] == "colmado_donpepe"
        assert seen["body"]["token"] == token
        assert len(token) == 64
        assert seen["body"]["webhook"]["url"] == "https://relay.example.com/webhook/evolution"
        assert "MESSAGES_UPSERT" in seen["body"]["webhook"]["events"]
        assert api_key_from_create_response(data, token) == "generated"

    @pytest.mark.asyncio
    async def test_fetch_qr_prefers_image(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/instance/connect/colmado_donpepe"
            return httpx.Response(200, json={"base64": "iVBORw0KGgo=", "code": "2@abc"})

        async with make_client(handler) as client:
            qr = await client.fetch_qr("colmado_donpepe", "key-1")

        assert qr == "data:image/png;base64,iVBORw0KGgo="

    @pytest.mark.asyncio
    async def test_fetch_qr_falls_back_to_code(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": "2@abc"})

        async with make_client(handler) as client:
            assert await client.fetch_qr("colmado_donpepe", "key-1") == "2@abc"

    @pytest.mark.asyncio
    async def test_connection_state(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/instance/connectionState/colmado_donpepe"
            return httpx.Response(200, json={"instance": {"state": "open"}})

        async with make_client(handler) as client:
            state = await client.connection_state("colmado_donpepe", "key-1")

        assert state == {"instance": {"state": "open"}}


class TestMedia:
    """Test media downloads."""

    @pytest.mark.asyncio
    async def test_fetch_media_base64(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/chat/getBase64FromMediaMessage/colmado_donpepe"
            assert json.loads(request.content) == {"message": {"key": {"id": "MSG1"}}}
            return httpx.Response(200, json={"base64": "T2dnUw==", "mimetype": "audio/ogg"})

        async with make_client(handler) as client:
            assert await client.fetch_media_base64("colmado_donpepe", "key-1", "MSG1") == "T2dnUw=="

    @pytest.mark.asyncio
    async def test_fetch_media_without_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        async with make_client(handler) as client:
            assert await client.fetch_media_base64("colmado_donpepe", "key-1", "MSG1") is None
