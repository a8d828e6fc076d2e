"""Tests for the wabridge CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from wabridge import __version__
from wabridge.config.schema import Config
from wabridge.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def default_config():
    with patch("wabridge.config.loader.load_config", return_value=Config()):
        yield


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_status():
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "https://evo.onrpa.com" in result.output


def test_send_queues_response():
    result = runner.invoke(app, ["send", "donpepe", "web_18091234567", "Hola"])
    assert result.exit_code == 0
    assert "Queued response" in result.output


def test_cleanup_on_empty_store():
    result = runner.invoke(app, ["cleanup"])
    assert result.exit_code == 0
    assert "Removed 0 entries" in result.output


def test_channel_status_without_channel():
    result = runner.invoke(app, ["channel-status", "t1"])
    assert result.exit_code == 1
    assert "No channel configured" in result.output


def test_channel_status_reports_connection():
    store = MagicMock()
    store.update = AsyncMock()
    store.close = AsyncMock()
    gateway = MagicMock()
    gateway.connection_state = AsyncMock(return_value={"instance": {"state": "open"}})
    gateway.close = AsyncMock()
    binding = MagicMock(instance="colmado_donpepe", api_key="key-1")

    with (
        patch("wabridge.store.build_store", return_value=store),
        patch("wabridge.main._build_gateway", return_value=gateway),
        patch(
            "wabridge.tenants.directory.TenantDirectory.primary_binding",
            AsyncMock(return_value=binding),
        ),
    ):
        result = runner.invoke(app, ["channel-status", "t1"])

    assert result.exit_code == 0
    assert "connected" in result.output
    path, values = store.update.await_args.args
    assert path == "tenants/t1/channel"
    assert values["status"] == "connected"
    assert values["connectionStatus"] == "open"
