"""Exception types shared across wabridge."""

from __future__ import annotations


class WabridgeError(Exception):
    """Base class for wabridge errors."""


class ValidationFailure(WabridgeError):
    """An inbound event is malformed and cannot be processed."""

    status = 400


class RoutingFailure(WabridgeError):
    """No channel or credential could be resolved for a conversation."""


class StoreError(WabridgeError):
    """The shared store rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
