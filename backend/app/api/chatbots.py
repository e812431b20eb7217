import json
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from config import settings
from models import BotConfig, EntryReference, get_repository, questions_to_blocks
from models.bot_config import DEFAULT_UI_SETTINGS
from services.contentstack import ManagementClient
from services.credential_vault import encrypt
from services.knowledge_base import delete_owned_entries

router = APIRouter(prefix="/api/chatbots", tags=["chatbots"])
logger = logging.getLogger("botdesk.api.chatbots")


# --- Schemas ---

class ChatbotCreate(BaseModel):
    bot_name: str = Field(min_length=1)
    domain: str = Field(min_length=1)
    llm_provider: str = Field(min_length=1)
    api_key: str = Field(min_length=1, repr=False)
    free_prompt_system_message: str = ""


class ChatbotUpdate(BaseModel):
    bot_name: str = Field(min_length=1)
    domain: str = Field(min_length=1)
    llm_provider: str = Field(min_length=1)
    api_key: str | None = Field(default=None, repr=False)
    ui_settings: dict | None = None
    free_prompt_system_message: str | None = None
    ai_generated_questions: list[str] | None = None


class ChatbotOut(BaseModel):
    id: str
    title: str
    domain: str
    llm_provider: str
    has_api_key: bool
    free_prompt_system_message: str
    ui_settings: dict
    active_knowledge_sources: list[EntryReference]
    ai_generated_questions: list[str]
    last_trained_at: str | None

    @classmethod
    def from_bot(cls, bot: BotConfig) -> "ChatbotOut":
        return cls(
            id=bot.id,
            title=bot.title,
            domain=bot.domain,
            llm_provider=bot.llm_provider,
            has_api_key=bool(bot.api_key_encrypted),
            free_prompt_system_message=bot.free_prompt_system_message,
            ui_settings=bot.ui_settings,
            active_knowledge_sources=bot.active_knowledge_sources,
            ai_generated_questions=bot.ai_generated_questions,
            last_trained_at=bot.last_trained_at,
        )


# --- Endpoints ---

@router.get("", response_model=list[ChatbotOut])
async def list_chatbots(client: ManagementClient = Depends(get_repository)):
    entries = await client.query_entries(settings.BOT_CONTENT_TYPE_UID, {})
    return [ChatbotOut.from_bot(BotConfig.from_entry(e)) for e in entries]


@router.get("/{bot_id}", response_model=ChatbotOut)
async def get_chatbot(bot_id: str, client: ManagementClient = Depends(get_repository)):
    entry = await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)
    return ChatbotOut.from_bot(BotConfig.from_entry(entry))


@router.post("", response_model=ChatbotOut, status_code=201)
async def create_chatbot(data: ChatbotCreate, client: ManagementClient = Depends(get_repository)):
    entry = await client.create_entry(settings.BOT_CONTENT_TYPE_UID, {
        "title": data.bot_name,
        "bot_name": data.bot_name,
        "domain_bot": data.domain,
        "llm_provider": data.llm_provider,
        "api_key_encrypted": encrypt(data.api_key),
        "free_prompt_system_message": data.free_prompt_system_message,
        "ui_settings": json.dumps(DEFAULT_UI_SETTINGS),
    })
    logger.info("Created bot %s (%s, %s)", entry.get("uid"), data.domain, data.llm_provider)
    return ChatbotOut.from_bot(BotConfig.from_entry(entry))


@router.put("/{bot_id}", response_model=ChatbotOut)
async def update_chatbot(
    bot_id: str,
    data: ChatbotUpdate,
    client: ManagementClient = Depends(get_repository),
):
    entry = await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)
    entry["title"] = data.bot_name
    entry["bot_name"] = data.bot_name
    entry["domain_bot"] = data.domain
    entry["llm_provider"] = data.llm_provider
    if data.api_key:
        entry["api_key_encrypted"] = encrypt(data.api_key)
    if data.ui_settings:
        entry["ui_settings"] = json.dumps(data.ui_settings)
    if data.free_prompt_system_message is not None:
        entry["free_prompt_system_message"] = data.free_prompt_system_message
    if data.ai_generated_questions is not None:
        entry["ai_generated_questions"] = questions_to_blocks(data.ai_generated_questions)

    updated = await client.update_entry(settings.BOT_CONTENT_TYPE_UID, entry)
    return ChatbotOut.from_bot(BotConfig.from_entry(updated))


@router.delete("/{bot_id}")
async def delete_chatbot(bot_id: str, client: ManagementClient = Depends(get_repository)):
    """Delete the bot with its knowledge entries and analytics logs."""
    await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)

    knowledge = await delete_owned_entries(client, settings.KNOWLEDGE_CONTENT_TYPE_UID, bot_id)
    logs = await delete_owned_entries(client, settings.ANALYTICS_CONTENT_TYPE_UID, bot_id)
    await client.delete_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)

    logger.info("Deleted bot %s (%d knowledge, %d analytics)", bot_id, len(knowledge), len(logs))
    return {
        "message": "Chatbot and all associated data deleted successfully.",
        "deleted_knowledge": len(knowledge),
        "deleted_analytics": len(logs),
    }
