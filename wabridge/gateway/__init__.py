"""Messaging gateway client."""

from .client import GatewayClient, GatewayError

__all__ = ["GatewayClient", "GatewayError"]
