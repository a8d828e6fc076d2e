"""Path layout of the shared store."""

from __future__ import annotations

from .base import join_path

MESSAGES = "messages"
RESPONSES = "responses"
CHAT_INSTANCES = "chat_instances"
CHANNEL_INSTANCES = "channel_instances"
TENANTS = "tenants"
TENANTS_BY_SLUG = "tenants_by_slug"
USERS_BY_IDENTITY = "users_by_identity"
USERS_BY_PHONE = "users_by_phone"
SESSION_INDEX = "session_index"


def message_log(slug: str, chat_id: str) -> str:
    return join_path(MESSAGES, slug, chat_id)


def conversation_responses(slug: str, chat_id: str) -> str:
    return join_path(RESPONSES, slug, chat_id)


def response(slug: str, chat_id: str, response_id: str) -> str:
    return join_path(RESPONSES, slug, chat_id, response_id)


def chat_instance(slug: str, chat_id: str) -> str:
    return join_path(CHAT_INSTANCES, slug, chat_id)


def channel_instance(instance: str) -> str:
    return join_path(CHANNEL_INSTANCES, instance)


def tenant_channel(tenant_id: str) -> str:
    """Primary channel binding of a tenant."""
    return join_path(TENANTS, tenant_id, "channel")


def tenant_by_slug(slug: str) -> str:
    return join_path(TENANTS_BY_SLUG, slug)


def user_by_identity(chat_id: str) -> str:
    return join_path(USERS_BY_IDENTITY, chat_id)


def user_by_phone(phone: str) -> str:
    return join_path(USERS_BY_PHONE, phone)


def session_index(tenant_id: str, user_id: str) -> str:
    return join_path(SESSION_INDEX, tenant_id, user_id)
