"""Outbound response delivery."""

from .delivery import DeliveryLoop, DeliveryOutcome
from .retry import retry_with_backoff

__all__ = ["DeliveryLoop", "DeliveryOutcome", "retry_with_backoff"]
