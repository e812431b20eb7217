"""Chat widget API — streaming replies + transcript read-back.

POST /api/chat/{bot_id}               — SSE stream of the bot's reply
GET  /api/chat/history/{session_id}   — stored turns of a widget session

Anything that fails before the stream opens is an ordinary HTTP error;
after that, errors travel in the stream's terminal event.
"""
import logging
from collections.abc import Callable

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask
from starlette.types import Receive, Scope, Send

from config import settings
from models import (
    BotConfig,
    ChatHistoryRecord,
    ChatTurn,
    get_repository,
    get_repository_factory,
)
from services.chat_stream import ChatStream
from services.contentstack import ContentstackError, EntryNotFoundError, ManagementClient
from services.credential_vault import CredentialDecryptionError, decrypt
from services.knowledge_base import assemble_knowledge
from services.llm_providers import get_provider, is_supported_provider
from services.persona import resolve_persona
from services.prompt_builder import compose_system_prompt
from services.transcript import save_transcript

router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = logging.getLogger("botdesk.api.chat")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    message: str = ""
    history: list[ChatTurn] = []
    sessionId: str | None = None


class ChatHistoryOut(BaseModel):
    session_id: str
    bot_id: str | None = None
    messages: list[ChatTurn] = []


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

async def prepare_stream(client: ManagementClient, bot_id: str, req: ChatRequest) -> ChatStream:
    """Load the bot, build its prompt and pick its provider.

    Raises:
        EntryNotFoundError: unknown bot.
        ContentstackError: store unreachable / malformed.
        CredentialDecryptionError: stored key unreadable (supported providers only).
    """
    bot = BotConfig.from_entry(
        await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)
    )
    knowledge = await assemble_knowledge(client, bot)
    persona = resolve_persona(bot.domain, bot.free_prompt_system_message)
    system_prompt = compose_system_prompt(persona.text, knowledge)

    # The key is only decrypted for a provider that will use it
    provider = None
    if is_supported_provider(bot.llm_provider):
        provider = get_provider(bot.llm_provider, decrypt(bot.api_key_encrypted))

    logger.info(
        "Chat bot=%s provider=%s domain=%s knowledge_chars=%d history=%d",
        bot_id, bot.llm_provider or "-", bot.domain or "-", len(knowledge), len(req.history),
    )
    return ChatStream(
        provider=provider,
        provider_tag=bot.llm_provider,
        system_prompt=system_prompt,
        history=req.history,
        message=req.message,
        suggested_questions=persona.suggested_questions,
    )


class ChatEventStreamResponse(StreamingResponse):
    """SSE response that owns the request's store client.

    The client is closed once the response is over, whether the stream ran
    to the end (after the background hooks) or the client went away, in
    which case Starlette skips the background task.
    """

    def __init__(self, content, client: ManagementClient, **kwargs):
        super().__init__(content, **kwargs)
        self._client = client

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            try:
                await self.body_iterator.aclose()
            finally:
                await self._client.close()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/{bot_id}")
async def chat(
    bot_id: str,
    req: ChatRequest,
    repository_factory: Callable[[], ManagementClient] = Depends(get_repository_factory),
):
    """Stream a reply as server-sent events."""
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required.")

    client = repository_factory()
    try:
        stream = await prepare_stream(client, bot_id, req)
    except EntryNotFoundError:
        await client.close()
        raise HTTPException(status_code=404, detail="Bot configuration not found.")
    except ContentstackError as e:
        await client.close()
        logger.error("Chat setup failed for bot %s: %s", bot_id, e)
        raise HTTPException(status_code=500, detail="An error occurred during chat processing.")
    except CredentialDecryptionError as e:
        await client.close()
        logger.error("Chat setup failed for bot %s: %s", bot_id, e)
        raise HTTPException(status_code=500, detail="The bot's provider key could not be read.")

    if req.sessionId:
        session_id = req.sessionId

        async def persist_transcript(s: ChatStream) -> None:
            await save_transcript(client, bot_id, session_id, s.history, s.message, s.full_response)

        stream.add_completion_hook(persist_transcript)

    return ChatEventStreamResponse(
        stream.events(),
        client=client,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        background=BackgroundTask(stream.run_completion_hooks),
    )


@router.get("/history/{session_id}", response_model=ChatHistoryOut)
async def get_chat_history(
    session_id: str,
    client: ManagementClient = Depends(get_repository),
) -> ChatHistoryOut:
    """Stored turn sequence of one widget session."""
    found = await client.query_entries(
        settings.CHAT_HISTORY_CONTENT_TYPE_UID, {"session_id": session_id},
    )
    if not found:
        raise HTTPException(status_code=404, detail=f"No chat history for session '{session_id}'")
    record = ChatHistoryRecord.from_entry(found[0])
    return ChatHistoryOut(session_id=record.session_id, bot_id=record.bot_id, messages=record.messages)
