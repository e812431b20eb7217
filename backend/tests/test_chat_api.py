"""Tests for the streaming chat endpoint and transcript read-back."""

import asyncio
from unittest.mock import patch

import pytest
from starlette.requests import ClientDisconnect

from api.chat import ChatRequest, chat
from config import settings
from helpers.fake_provider import FakeProvider, parse_sse
from services.contentstack import ContentstackError
from services.llm_providers import ProviderStreamError
from services.persona import PERSONAS
from services.prompt_builder import KNOWLEDGE_START

HT = settings.CHAT_HISTORY_CONTENT_TYPE_UID
KT = settings.KNOWLEDGE_CONTENT_TYPE_UID


@pytest.fixture
def provider():
    return FakeProvider(["Hel", "lo", " world"])


@pytest.fixture
def use_provider(provider):
    with patch("api.chat.get_provider", return_value=provider) as get_provider:
        yield get_provider


class TestChatStreaming:
    """Tests for POST /api/chat/{bot_id}."""

    def test_streams_reply_and_terminal_event(self, client, make_bot, use_provider):
        make_bot("bot_a")

        resp = client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(resp.text)
        assert [e["content"] for e in events[:-1]] == ["Hel", "lo", " world"]
        assert events[-1] == {
            "finished": True,
            "metadata": {"suggestedQuestions": PERSONAS["E-commerce"].suggested_questions},
        }

    def test_provider_gets_decrypted_key(self, client, make_bot, use_provider):
        make_bot("bot_a", api_key="sk-live-abc", llm_provider="OpenAI")

        client.post("/api/chat/bot_a", json={"message": "Hi"})

        use_provider.assert_called_once_with("OpenAI", "sk-live-abc")

    def test_prompt_carries_persona_and_own_knowledge(
        self, client, make_bot, make_knowledge, use_provider, provider,
    ):
        make_knowledge("a1", "bot_a", "Question: Hours?\nAnswer: 9-5")
        make_knowledge("b1", "bot_b", "Question: Secret?\nAnswer: 42")
        make_bot("bot_b", active_knowledge_sources=[{"uid": "b1", "_content_type_uid": KT}])
        make_bot("bot_a", domain_bot="Travel", active_knowledge_sources=[{"uid": "a1", "_content_type_uid": KT}])

        client.post("/api/chat/bot_a", json={
            "message": "When are you open?",
            "history": [{"sender": "user", "text": "hi"}, {"sender": "bot", "text": "hello"}],
        })

        (call,) = provider.calls
        assert PERSONAS["Travel"].text in call["system_prompt"]
        assert KNOWLEDGE_START in call["system_prompt"]
        assert "Answer: 9-5" in call["system_prompt"]
        assert "Answer: 42" not in call["system_prompt"]
        assert [t.sender for t in call["history"]] == ["user", "bot"]
        assert call["message"] == "When are you open?"

    def test_bot_without_knowledge_gets_plain_prompt(self, client, make_bot, use_provider, provider):
        make_bot("bot_a")

        client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert KNOWLEDGE_START not in provider.calls[0]["system_prompt"]

    def test_unsupported_provider_streams_error(self, client, make_bot):
        make_bot("bot_a", llm_provider="claude")

        resp = client.post("/api/chat/bot_a", json={"message": "Hi", "sessionId": "s1"})

        assert resp.status_code == 200
        events = parse_sse(resp.text)
        assert events[0] == {"content": "Error: Provider 'claude' not supported."}
        assert events[-1]["error"] is True
        assert events[-1]["finished"] is True

    def test_stack_client_closed_after_stream(self, client, stack, make_bot, use_provider):
        make_bot("bot_a")

        client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert stack.closed

    @pytest.mark.asyncio
    async def test_client_disconnect_still_closes_stack_client(self, stack, make_bot, use_provider):
        """A reader that goes away mid-stream skips persistence but not cleanup."""
        make_bot("bot_a")
        sent = []

        async def receive():
            await asyncio.Event().wait()

        async def send(message):
            if message["type"] == "http.response.body":
                raise OSError("connection reset by peer")
            sent.append(message)

        response = await chat(
            "bot_a", ChatRequest(message="Hi", sessionId="s1"), repository_factory=lambda: stack,
        )
        scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}}
        with pytest.raises((ClientDisconnect, OSError)):
            await response(scope, receive, send)

        assert sent[0]["type"] == "http.response.start"
        assert stack.closed
        assert stack.all(HT) == []
        assert stack.calls_for("query", HT) == []

    def test_unsupported_provider_never_reads_key(self, client, make_bot):
        make_bot("bot_a", llm_provider="claude", api_key=None, api_key_encrypted="not-a-ciphertext")

        resp = client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert resp.status_code == 200
        assert parse_sse(resp.text)[0] == {"content": "Error: Provider 'claude' not supported."}


class TestChatValidation:
    """Tests for errors raised before streaming starts."""

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "   "}])
    def test_missing_message_is_rejected_without_provider_call(self, client, stack, make_bot, use_provider, body):
        make_bot("bot_a")

        resp = client.post("/api/chat/bot_a", json=body)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Message is required."
        use_provider.assert_not_called()
        assert stack.calls == []

    def test_unknown_bot_is_404(self, client, use_provider):
        resp = client.post("/api/chat/nope", json={"message": "Hi"})

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Bot configuration not found."
        use_provider.assert_not_called()

    def test_knowledge_store_failure_is_500(self, client, stack, make_bot, make_knowledge, use_provider):
        make_knowledge("k1", "bot_a", "text")
        make_bot("bot_a", active_knowledge_sources=[{"uid": "k1", "_content_type_uid": KT}])
        stack.fail("query", ContentstackError("unreachable", "down"), KT)

        resp = client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert resp.status_code == 500
        use_provider.assert_not_called()
        assert stack.closed

    def test_undecryptable_key_is_500(self, client, make_bot, use_provider):
        make_bot("bot_a", api_key=None, api_key_encrypted="bm90LWEtcmVhbC1jaXBoZXJ0ZXh0LWF0LWFsbA==")

        resp = client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert resp.status_code == 500
        use_provider.assert_not_called()


class TestChatPersistence:
    """Tests for transcript persistence after the stream."""

    def test_transcript_upserted_across_turns(self, client, stack, make_bot, use_provider):
        make_bot("bot_a")

        client.post("/api/chat/bot_a", json={"message": "Hi", "sessionId": "s1"})
        client.post("/api/chat/bot_a", json={
            "message": "And then?",
            "sessionId": "s1",
            "history": [{"sender": "user", "text": "Hi"}, {"sender": "bot", "text": "Hello world"}],
        })

        (entry,) = stack.all(HT)
        assert entry["session_id"] == "s1"
        assert [b["message"]["text"] for b in entry["messages"]] == [
            "Hi", "Hello world", "And then?", "Hello world",
        ]

    def test_no_session_no_transcript(self, client, stack, make_bot, use_provider):
        make_bot("bot_a")

        client.post("/api/chat/bot_a", json={"message": "Hi"})

        assert stack.all(HT) == []
        assert stack.calls_for("query", HT) == []

    def test_provider_error_skips_transcript(self, client, stack, make_bot):
        make_bot("bot_a")
        failing = FakeProvider(["par"], error=ProviderStreamError("gemini", "Error: boom"))

        with patch("api.chat.get_provider", return_value=failing):
            resp = client.post("/api/chat/bot_a", json={"message": "Hi", "sessionId": "s1"})

        assert parse_sse(resp.text)[-1]["error"] is True
        assert stack.all(HT) == []

    def test_transcript_failure_does_not_affect_reply(self, client, stack, make_bot, use_provider):
        make_bot("bot_a")
        stack.fail("query", ContentstackError("unreachable", "down"), HT)

        resp = client.post("/api/chat/bot_a", json={"message": "Hi", "sessionId": "s1"})

        assert resp.status_code == 200
        assert parse_sse(resp.text)[-1] == {
            "finished": True,
            "metadata": {"suggestedQuestions": PERSONAS["E-commerce"].suggested_questions},
        }


class TestChatHistory:
    """Tests for GET /api/chat/history/{session_id}."""

    def test_returns_stored_turns(self, client, make_bot, use_provider):
        make_bot("bot_a")
        client.post("/api/chat/bot_a", json={"message": "Hi", "sessionId": "s9"})

        resp = client.get("/api/chat/history/s9")

        assert resp.status_code == 200
        assert resp.json() == {
            "session_id": "s9",
            "bot_id": "bot_a",
            "messages": [{"sender": "user", "text": "Hi"}, {"sender": "bot", "text": "Hello world"}],
        }

    def test_unknown_session_is_404(self, client):
        assert client.get("/api/chat/history/nope").status_code == 404
