"""Shared fixtures.

Provides the in-memory stack, a bot seeding helper and a TestClient wired
to the fake stack through dependency overrides.
"""

import base64
import os

# Settings are read at import time; the vault key must exist before that.
os.environ.setdefault("CREDENTIAL_KEY", base64.b64encode(b"0" * 32).decode("ascii"))
os.environ.setdefault("CONTENTSTACK_API_KEY", "blt-test-stack")
os.environ.setdefault("CONTENTSTACK_MANAGEMENT_TOKEN", "cs-test-token")

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from config import settings
from helpers.fake_stack import FakeStack
from models import get_repository, get_repository_factory
from services.credential_vault import encrypt


@pytest.fixture
def stack() -> FakeStack:
    return FakeStack()


@pytest.fixture
def make_bot(stack: FakeStack):
    """Seed a bot entry; keyword arguments override the stored fields."""

    def _make(uid: str = "bot_a", api_key: str = "sk-test", **fields) -> dict:
        entry = {
            "uid": uid,
            "title": f"Bot {uid}",
            "bot_name": f"Bot {uid}",
            "domain_bot": "E-commerce",
            "llm_provider": "gemini",
            "api_key_encrypted": encrypt(api_key) if api_key else "",
            "free_prompt_system_message": "",
            "active_knowledge_sources": [],
        }
        entry.update(fields)
        return stack.add(settings.BOT_CONTENT_TYPE_UID, entry)

    return _make


@pytest.fixture
def make_knowledge(stack: FakeStack):
    """Seed a knowledge entry owned by `bot_id`."""

    def _make(uid: str, bot_id: str, text: str, source_name: str = "Manual") -> dict:
        return stack.add(settings.KNOWLEDGE_CONTENT_TYPE_UID, {
            "uid": uid,
            "title": f"[{source_name}] {uid}",
            "source_text": text,
            "source_id": f"knowledge_{uid}",
            "source_name": source_name,
            "chatbot_config_reference": [
                {"uid": bot_id, "_content_type_uid": settings.BOT_CONTENT_TYPE_UID},
            ],
        })

    return _make


@pytest.fixture
def client(stack: FakeStack) -> Generator[TestClient, None, None]:
    """TestClient whose repository dependencies resolve to the fake stack."""
    from main import app

    async def override_get_repository():
        yield stack

    app.dependency_overrides[get_repository] = override_get_repository
    app.dependency_overrides[get_repository_factory] = lambda: (lambda: stack)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
