"""Inbound message enrichment."""

from .pipeline import Accepted, Dropped, InboundPipeline

__all__ = ["Accepted", "Dropped", "InboundPipeline"]
