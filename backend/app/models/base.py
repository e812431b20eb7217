"""Shared record plumbing: reference helpers and the repository dependency.

Records live in the content management stack, not in a local database.
Routes get a client through get_repository() the same way they would get a
DB session.
"""
from collections.abc import AsyncIterator, Callable

from pydantic import BaseModel

from config import settings
from services.contentstack import ManagementClient, StackCredentials, management_client_for
from services.contentstack.config import BOT_REFERENCE_FIELD


class EntryReference(BaseModel):
    """Weak reference to another entry: {uid, _content_type_uid}."""
    uid: str
    content_type_uid: str = ""

    @classmethod
    def from_raw(cls, raw) -> "EntryReference | None":
        if isinstance(raw, str):
            return cls(uid=raw) if raw else None
        if isinstance(raw, dict) and raw.get("uid"):
            return cls(uid=raw["uid"], content_type_uid=raw.get("_content_type_uid", ""))
        return None

    def to_raw(self) -> dict:
        return {"uid": self.uid, "_content_type_uid": self.content_type_uid}


def bot_reference(bot_id: str) -> list[dict]:
    """Reference field value pointing at a bot entry."""
    return [{"uid": bot_id, "_content_type_uid": settings.BOT_CONTENT_TYPE_UID}]


def owning_bot_id(entry: dict) -> str | None:
    """Extract the owning bot uid from an entry's reference field."""
    refs = entry.get(BOT_REFERENCE_FIELD) or []
    if isinstance(refs, dict):
        refs = [refs]
    for raw in refs:
        ref = EntryReference.from_raw(raw)
        if ref:
            return ref.uid
    return None


def platform_credentials() -> StackCredentials:
    return StackCredentials(
        api_key=settings.CONTENTSTACK_API_KEY,
        management_token=settings.CONTENTSTACK_MANAGEMENT_TOKEN,
        host=settings.CONTENTSTACK_API_HOST,
    )


def new_repository() -> ManagementClient:
    return management_client_for(platform_credentials())


def get_repository_factory() -> Callable[[], ManagementClient]:
    """For routes whose client must outlive the response (streaming chat)."""
    return new_repository


async def get_repository() -> AsyncIterator[ManagementClient]:
    client = new_repository()
    try:
        yield client
    finally:
        await client.close()
