"""Tests for bot knowledge endpoints."""

from unittest.mock import patch

from config import settings
from helpers.fake_provider import FakeProvider
from services.contentstack import ContentstackError
from services.llm_providers import ProviderStreamError

BT = settings.BOT_CONTENT_TYPE_UID
KT = settings.KNOWLEDGE_CONTENT_TYPE_UID

CSV = b"question,answer\nWhat are your hours?,9 to 5\nDo you ship abroad?,Yes\n,skipped\n"


def _upload(client, data: bytes, name: str = "faq.csv", bot_id: str = "bot_a"):
    return client.post(
        f"/api/chatbots/{bot_id}/upload",
        files={"knowledgeFile": (name, data, "text/csv")},
    )


class TestUpload:
    """Tests for CSV upload."""

    def test_upload_creates_entries_and_activates_them(self, client, stack, make_bot):
        make_bot("bot_a")

        resp = _upload(client, CSV)

        assert resp.status_code == 200
        body = resp.json()
        assert body["items_added"] == 2
        assert body["source_name"] == "CSV: faq.csv"
        assert body["active_sources"] == 2
        texts = sorted(e["source_text"] for e in stack.all(KT))
        assert texts == ["Question: Do you ship abroad?\nAnswer: Yes", "Question: What are your hours?\nAnswer: 9 to 5"]
        assert stack.entries[BT]["bot_a"]["last_trained_at"]

    def test_upload_is_additive(self, client, stack, make_bot):
        make_bot("bot_a")

        _upload(client, CSV, "one.csv")
        body = _upload(client, b"question,answer\nQ,A\n", "two.csv").json()

        assert body["active_sources"] == 3
        assert len(stack.all(KT)) == 3

    def test_upload_without_columns_is_400(self, client, stack, make_bot):
        make_bot("bot_a")

        resp = _upload(client, b"title,body\nx,y\n")

        assert resp.status_code == 400
        assert "'question' and 'answer'" in resp.json()["detail"]
        assert stack.all(KT) == []

    def test_upload_to_unknown_bot_is_404(self, client, stack):
        resp = _upload(client, CSV, bot_id="missing")

        assert resp.status_code == 404
        assert stack.all(KT) == []

    def test_upload_failing_midway_is_500_without_orphans(self, client, stack, make_bot):
        make_bot("bot_a")
        stack.fail("create", ContentstackError("unreachable", "down"), KT, after=1)

        resp = _upload(client, CSV)

        assert resp.status_code == 500
        assert stack.all(KT) == []
        assert stack.entries[BT]["bot_a"]["active_knowledge_sources"] == []

    def test_upload_without_file_is_422(self, client, make_bot):
        make_bot("bot_a")
        assert client.post("/api/chatbots/bot_a/upload").status_code == 422


class TestManageKnowledge:
    """Tests for listing, clearing and detaching sources."""

    def test_list_groups_sources(self, client, make_bot):
        make_bot("bot_a")
        _upload(client, CSV, "faq.csv")
        _upload(client, b"question,answer\nQ,A\n", "more.csv")

        body = client.get("/api/chatbots/bot_a/knowledge").json()

        assert body == [
            {"source_name": "CSV: faq.csv", "item_count": 2, "active_count": 2},
            {"source_name": "CSV: more.csv", "item_count": 1, "active_count": 1},
        ]

    def test_clear(self, client, stack, make_bot, make_knowledge):
        make_bot("bot_a")
        make_knowledge("x1", "bot_b", "other bot")
        _upload(client, CSV)

        body = client.delete("/api/chatbots/bot_a/knowledge").json()

        assert body["items_deleted"] == 2
        assert [e["uid"] for e in stack.all(KT)] == ["x1"]
        assert stack.entries[BT]["bot_a"]["active_knowledge_sources"] == []

    def test_clear_when_empty(self, client, make_bot):
        make_bot("bot_a")

        body = client.delete("/api/chatbots/bot_a/knowledge").json()

        assert body == {"message": "No knowledge items to clear.", "items_deleted": 0}

    def test_detach_one_source(self, client, stack, make_bot):
        make_bot("bot_a")
        _upload(client, CSV, "faq.csv")
        _upload(client, b"question,answer\nQ,A\n", "more.csv")

        resp = client.delete("/api/chatbots/bot_a/knowledge/CSV: faq.csv")

        assert resp.status_code == 200
        assert resp.json()["items_deleted"] == 2
        assert {e["source_name"] for e in stack.all(KT)} == {"CSV: more.csv"}
        assert len(stack.entries[BT]["bot_a"]["active_knowledge_sources"]) == 1


class TestAssistantEndpoints:
    """Tests for generate-questions and refine-and-add."""

    def test_generate_questions(self, client, stack, make_bot, make_knowledge):
        make_bot("bot_a")
        make_knowledge("k1", "bot_a", "Question: Hours?\nAnswer: 9-5")
        provider = FakeProvider(['["When are you open?", "Do you ship?"]'])

        with patch("services.knowledge_assistant.get_provider", return_value=provider):
            resp = client.post("/api/chatbots/bot_a/generate-questions")

        assert resp.status_code == 200
        assert resp.json()["questions"] == ["When are you open?", "Do you ship?"]
        assert client.get("/api/chatbots/bot_a").json()["ai_generated_questions"] == [
            "When are you open?", "Do you ship?",
        ]

    def test_generate_questions_without_knowledge_is_400(self, client, make_bot):
        make_bot("bot_a")

        resp = client.post("/api/chatbots/bot_a/generate-questions")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "No knowledge base found to analyze. Please upload knowledge first."

    def test_generate_questions_provider_failure_is_502(self, client, make_bot, make_knowledge):
        make_bot("bot_a")
        make_knowledge("k1", "bot_a", "text")
        failing = FakeProvider([], error=ProviderStreamError("gemini", "Error: Gemini is rate limiting requests."))

        with patch("services.knowledge_assistant.get_provider", return_value=failing):
            resp = client.post("/api/chatbots/bot_a/generate-questions")

        assert resp.status_code == 502
        assert "rate limiting" in resp.json()["detail"]

    def test_generate_questions_unknown_bot_is_404(self, client):
        assert client.post("/api/chatbots/missing/generate-questions").status_code == 404

    def test_refine_and_add(self, client, stack, make_bot):
        make_bot("bot_a")
        provider = FakeProvider(["We ship to 40 countries."])

        with patch("services.knowledge_assistant.get_provider", return_value=provider):
            resp = client.post("/api/chatbots/bot_a/refine-and-add", json={"user_query": "Do you ship abroad?"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Successfully added 'Do you ship abroad?' to the knowledge base."
        assert body["answer"] == "We ship to 40 countries."
        assert body["active_sources"] == 1
        assert [e["source_text"] for e in stack.all(KT)] == [
            "Question: Do you ship abroad?\nAnswer: We ship to 40 countries.",
        ]

    def test_refine_without_query_is_400(self, client, stack, make_bot):
        make_bot("bot_a")

        resp = client.post("/api/chatbots/bot_a/refine-and-add", json={"user_query": "  "})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "User query is required."
        assert stack.calls == []

    def test_refine_with_unsupported_provider_is_400(self, client, stack, make_bot):
        make_bot("bot_a", llm_provider="claude")

        resp = client.post("/api/chatbots/bot_a/refine-and-add", json={"user_query": "Hi?"})

        assert resp.status_code == 400
        assert "'claude' not supported" in resp.json()["detail"]
        assert stack.all(KT) == []
