"""System prompt composition: persona + optional knowledge base.

Precedence is fixed: persona always binds; knowledge, when present, is the
primary source; otherwise general model knowledge. The model never refuses.
"""

KNOWLEDGE_START = "--- KNOWLEDGE BASE ---"
KNOWLEDGE_END = "--- END KNOWLEDGE BASE ---"

PROMPT_WITH_KNOWLEDGE = """Rule #1: You MUST strictly follow your persona: "{persona}".
Rule #2: You have a specialized Knowledge Base. If the user's question can be answered using the Knowledge Base below, you MUST use it as your primary source.
Rule #3: If the question is outside your Knowledge Base, use your general AI knowledge to answer, but ALWAYS remain in your persona. Never refuse to answer a general question.

{start}
{knowledge}
{end}"""

PROMPT_WITHOUT_KNOWLEDGE = """Rule #1: You MUST strictly follow your persona: "{persona}".
Rule #2: You do not have a specialized knowledge base. Use your general AI knowledge to answer all questions to the best of your ability, while always remaining in your persona. Never refuse to answer."""


def compose_system_prompt(persona_text: str, knowledge: str) -> str:
    if knowledge:
        return PROMPT_WITH_KNOWLEDGE.format(
            persona=persona_text,
            start=KNOWLEDGE_START,
            knowledge=knowledge,
            end=KNOWLEDGE_END,
        )
    return PROMPT_WITHOUT_KNOWLEDGE.format(persona=persona_text)
