"""Tenant and channel directory."""

from .directory import TenantDirectory, normalize_phone

__all__ = ["TenantDirectory", "normalize_phone"]
