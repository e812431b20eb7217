"""Knowledge assistant — LLM helpers for curating a bot's knowledge.

generate_questions(): read the bot's knowledge, ask the model for short
user-facing questions it can answer, store them as the bot's
ai_generated_questions.
refine_and_add(): answer one user question in the bot's persona and store
the pair as a new active knowledge source.

The model is the platform assistant (ASSISTANT_PROVIDER / ASSISTANT_API_KEY)
when a key is configured, otherwise the bot's own provider and key.
"""
from __future__ import annotations

import json
import logging
import re

from config import settings
from models import BotConfig, KnowledgeEntry, questions_to_blocks
from services.contentstack import ManagementClient
from services.contentstack.config import BOT_REFERENCE_FIELD
from services.credential_vault import decrypt
from services.knowledge_base import KNOWLEDGE_SEPARATOR, add_knowledge_source
from services.llm_providers import ChatProvider, get_provider, is_supported_provider
from services.persona import resolve_persona

logger = logging.getLogger("botdesk.knowledge_assistant")

QUESTION_COUNT = 3
MAX_ANALYSIS_CHARS = 10000
REFINED_SOURCE_NAME = "Refined"

ANALYST_SYSTEM_PROMPT = "You are a knowledge base analyst. You answer with raw JSON only."

QUESTIONS_PROMPT = (
    "Read the following knowledge base text. Based ONLY on this text, generate a JSON "
    "array of {count} concise, user-facing questions that the text can answer. The "
    "questions should be varied and interesting. Respond ONLY with the raw JSON array."
    "\n\nKNOWLEDGE:\n{knowledge}"
)

REFINE_PROMPT = (
    "A user has asked the following question. Provide a clear, concise, and helpful "
    'answer for it. QUESTION: "{question}"'
)

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


class AssistantError(Exception):
    """The assistant could not produce a usable result."""
    pass


class NoKnowledgeError(AssistantError):
    """The bot has no knowledge to analyze."""
    pass


class UnsupportedProviderError(AssistantError):
    """Neither the platform assistant nor the bot has a usable provider."""
    pass


def assistant_provider(bot: BotConfig) -> ChatProvider:
    """Platform assistant if configured, else the bot's own provider.

    Raises:
        UnsupportedProviderError: no provider for the resolved tag.
        CredentialDecryptionError: the bot's stored key is unreadable.
    """
    if settings.ASSISTANT_API_KEY:
        tag, api_key = settings.ASSISTANT_PROVIDER, settings.ASSISTANT_API_KEY
    else:
        tag, api_key = bot.llm_provider, None

    if not is_supported_provider(tag):
        raise UnsupportedProviderError(f"Provider '{tag}' not supported.")
    return get_provider(tag, api_key if api_key is not None else decrypt(bot.api_key_encrypted))


def parse_question_list(text: str) -> list[str]:
    """Extract the JSON array of questions from a model reply.

    Non-string and blank items are dropped; at most QUESTION_COUNT are kept.

    Raises:
        AssistantError: no JSON array of strings in the reply.
    """
    match = _JSON_ARRAY.search(text or "")
    if match is None:
        raise AssistantError("The model did not return a list of questions.")
    try:
        items = json.loads(match.group(0))
    except ValueError as exc:
        raise AssistantError("The model returned malformed JSON.") from exc
    if not isinstance(items, list):
        raise AssistantError("The model did not return a list of questions.")

    questions = [q.strip() for q in items if isinstance(q, str) and q.strip()]
    if not questions:
        raise AssistantError("The model did not return a list of questions.")
    return questions[:QUESTION_COUNT]


async def generate_questions(client: ManagementClient, bot_id: str) -> list[str]:
    """Generate suggested questions from all of the bot's knowledge and save them.

    Returns:
        The stored questions.

    Raises:
        NoKnowledgeError: the bot owns no knowledge entries.
        UnsupportedProviderError, AssistantError, ProviderStreamError.
    """
    bot_entry = await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)
    bot = BotConfig.from_entry(bot_entry)

    raw_entries = await client.query_entries(
        settings.KNOWLEDGE_CONTENT_TYPE_UID,
        {f"{BOT_REFERENCE_FIELD}.uid": bot_id},
    )
    texts = [KnowledgeEntry.from_entry(raw).source_text for raw in raw_entries]
    texts = [t for t in texts if t]
    if not texts:
        raise NoKnowledgeError("No knowledge base found to analyze. Please upload knowledge first.")

    provider = assistant_provider(bot)
    knowledge = KNOWLEDGE_SEPARATOR.join(texts)[:MAX_ANALYSIS_CHARS]
    reply = await provider.complete(
        ANALYST_SYSTEM_PROMPT,
        QUESTIONS_PROMPT.format(count=QUESTION_COUNT, knowledge=knowledge),
    )
    questions = parse_question_list(reply)

    bot_entry["ai_generated_questions"] = questions_to_blocks(questions)
    await client.update_entry(settings.BOT_CONTENT_TYPE_UID, bot_entry)

    logger.info(
        "Bot %s: generated %d suggested questions from %d knowledge items via %s",
        bot_id, len(questions), len(texts), provider.name,
    )
    return questions


async def refine_and_add(client: ManagementClient, bot_id: str, user_query: str) -> tuple[str, dict]:
    """Answer a user question in the bot's persona and add the pair as knowledge.

    Returns:
        (answer, updated bot entry)

    Raises:
        UnsupportedProviderError, AssistantError, ProviderStreamError.
    """
    bot = BotConfig.from_entry(await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id))
    persona = resolve_persona(bot.domain, bot.free_prompt_system_message)
    provider = assistant_provider(bot)

    answer = (await provider.complete(persona.text, REFINE_PROMPT.format(question=user_query))).strip()
    if not answer:
        raise AssistantError("The model returned an empty answer.")

    updated = await add_knowledge_source(
        client, bot_id, [{"question": user_query, "answer": answer}], REFINED_SOURCE_NAME,
    )
    logger.info("Bot %s: refined answer added for query '%s'", bot_id, user_query[:40])
    return answer, updated
