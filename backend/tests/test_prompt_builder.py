"""Tests for system prompt composition."""

from services.prompt_builder import KNOWLEDGE_END, KNOWLEDGE_START, compose_system_prompt


class TestComposeSystemPrompt:
    """Tests for compose_system_prompt."""

    def test_with_knowledge_wraps_blob_in_markers(self):
        prompt = compose_system_prompt("You are Bob.", "Question: A\nAnswer: B")
        start = prompt.index(KNOWLEDGE_START)
        end = prompt.index(KNOWLEDGE_END)
        assert start < prompt.index("Question: A\nAnswer: B") < end

    def test_with_knowledge_has_three_rules(self):
        prompt = compose_system_prompt("You are Bob.", "facts")
        assert '"You are Bob."' in prompt
        assert "Rule #1" in prompt and "Rule #2" in prompt and "Rule #3" in prompt
        assert "primary source" in prompt
        assert "Never refuse" in prompt

    def test_without_knowledge_has_no_markers(self):
        prompt = compose_system_prompt("You are Bob.", "")
        assert KNOWLEDGE_START not in prompt
        assert KNOWLEDGE_END not in prompt
        assert "Rule #3" not in prompt
        assert "do not have a specialized knowledge base" in prompt

    def test_persona_always_first(self):
        for knowledge in ("", "facts"):
            prompt = compose_system_prompt("You are Bob.", knowledge)
            assert prompt.startswith('Rule #1: You MUST strictly follow your persona: "You are Bob."')
