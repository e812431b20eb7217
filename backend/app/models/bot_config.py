"""Chatbot configuration. One entry per configured bot.

Holds persona tag, provider tag, encrypted provider key and the list of
knowledge entries currently active for the bot. Read-only input to chat.
"""
import json
import logging

from pydantic import BaseModel, Field

from models.base import EntryReference

logger = logging.getLogger("botdesk.models.bot_config")

DEFAULT_UI_SETTINGS = {
    "position": "bottom-right",
    "themeColor": "#4f46e5",
    "historyEnabled": True,
}


def _parse_ui_settings(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("Unparseable ui_settings on bot entry, using defaults")
            return dict(DEFAULT_UI_SETTINGS)
        if isinstance(value, dict):
            return value
    return dict(DEFAULT_UI_SETTINGS)


def _parse_questions(raw) -> list[str]:
    """Suggested questions are stored as modular blocks:
    [{"suggested_question": {"question": "..."}}]. Plain strings are accepted too.
    """
    questions = []
    for item in raw or []:
        if isinstance(item, str):
            text = item
        elif isinstance(item, dict):
            text = (item.get("suggested_question") or {}).get("question", "")
        else:
            continue
        if text:
            questions.append(text)
    return questions


def questions_to_blocks(questions: list[str]) -> list[dict]:
    return [{"suggested_question": {"question": q}} for q in questions]


class BotConfig(BaseModel):
    id: str
    title: str = ""
    domain: str = ""
    llm_provider: str = ""
    api_key_encrypted: str = Field(default="", repr=False)
    free_prompt_system_message: str = ""
    ui_settings: dict = Field(default_factory=lambda: dict(DEFAULT_UI_SETTINGS))
    active_knowledge_sources: list[EntryReference] = []
    ai_generated_questions: list[str] = []
    last_trained_at: str | None = None

    @classmethod
    def from_entry(cls, entry: dict) -> "BotConfig":
        refs = []
        for raw in entry.get("active_knowledge_sources") or []:
            ref = EntryReference.from_raw(raw)
            if ref:
                refs.append(ref)
        return cls(
            id=entry["uid"],
            title=entry.get("bot_name") or entry.get("title", ""),
            domain=entry.get("domain_bot") or "",
            llm_provider=entry.get("llm_provider") or "",
            api_key_encrypted=entry.get("api_key_encrypted") or "",
            free_prompt_system_message=entry.get("free_prompt_system_message") or "",
            ui_settings=_parse_ui_settings(entry.get("ui_settings")),
            active_knowledge_sources=refs,
            ai_generated_questions=_parse_questions(entry.get("ai_generated_questions")),
            last_trained_at=entry.get("last_trained_at"),
        )

    @property
    def active_source_uids(self) -> list[str]:
        return [ref.uid for ref in self.active_knowledge_sources]
