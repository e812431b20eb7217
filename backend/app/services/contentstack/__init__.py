"""Content management integration.

Entry point: management_client_for(credentials). Every persistent record
(bots, knowledge, chat history, analytics) lives in the stack behind it.
"""
from services.contentstack.client import (
    ContentstackAuthError,
    ContentstackError,
    EntryNotFoundError,
    ManagementClient,
    StackCredentials,
    management_client_for,
)

__all__ = [
    "ContentstackAuthError",
    "ContentstackError",
    "EntryNotFoundError",
    "ManagementClient",
    "StackCredentials",
    "management_client_for",
]
