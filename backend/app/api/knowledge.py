"""Bot knowledge API — CSV upload, list, clear, detach, assistant helpers.

POST   /api/chatbots/{bot_id}/upload                    — CSV question/answer → knowledge entries
POST   /api/chatbots/{bot_id}/generate-questions        — suggested questions from the knowledge
POST   /api/chatbots/{bot_id}/refine-and-add            — answer a user query, store as knowledge
GET    /api/chatbots/{bot_id}/knowledge                 — sources grouped by name
DELETE /api/chatbots/{bot_id}/knowledge                 — delete all of the bot's knowledge
DELETE /api/chatbots/{bot_id}/knowledge/{source_name}   — delete one source
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from models import BotConfig, get_repository
from services.contentstack import ManagementClient
from services.credential_vault import CredentialDecryptionError
from services.knowledge_assistant import (
    AssistantError,
    NoKnowledgeError,
    UnsupportedProviderError,
    generate_questions,
    refine_and_add,
)
from services.knowledge_base import (
    KnowledgeIngestError,
    add_knowledge_source,
    clear_knowledge,
    detach_source,
    get_sources,
    parse_qa_csv,
)
from services.llm_providers import ProviderStreamError

router = APIRouter(prefix="/api/chatbots/{bot_id}", tags=["knowledge"])
logger = logging.getLogger("botdesk.api.knowledge")

# Max upload size ~5 MB
MAX_UPLOAD_SIZE = 5 * 1024 * 1024


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class SourceOut(BaseModel):
    source_name: str
    item_count: int
    active_count: int


class UploadResult(BaseModel):
    message: str
    source_name: str
    items_added: int
    active_sources: int


class DeleteResult(BaseModel):
    message: str
    items_deleted: int


class GeneratedQuestions(BaseModel):
    message: str
    questions: list[str]


class RefineRequest(BaseModel):
    user_query: str = ""


class RefineResult(BaseModel):
    message: str
    answer: str
    active_sources: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/upload", response_model=UploadResult)
async def upload_knowledge(
    bot_id: str,
    knowledgeFile: UploadFile = File(...),
    client: ManagementClient = Depends(get_repository),
) -> UploadResult:
    """Upload a CSV with 'question' and 'answer' columns. Ingestion is additive."""
    filename = knowledgeFile.filename or "upload.csv"
    logger.info("Knowledge upload for bot %s: %s", bot_id, filename)

    file_bytes = await knowledgeFile.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large ({len(file_bytes) // 1024 // 1024} MB). Maximum is 5 MB.",
        )

    try:
        pairs = parse_qa_csv(file_bytes)
    except KnowledgeIngestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    source_name = f"CSV: {filename}"
    bot_entry = await add_knowledge_source(client, bot_id, pairs, source_name)
    bot = BotConfig.from_entry(bot_entry)

    return UploadResult(
        message=f"Success! Added {len(pairs)} items from source '{filename}'.",
        source_name=source_name,
        items_added=len(pairs),
        active_sources=len(bot.active_knowledge_sources),
    )


@router.get("/knowledge", response_model=list[SourceOut])
async def list_knowledge(
    bot_id: str,
    client: ManagementClient = Depends(get_repository),
) -> list[SourceOut]:
    """List the bot's knowledge grouped by source name."""
    return [SourceOut(**s) for s in await get_sources(client, bot_id)]


@router.delete("/knowledge", response_model=DeleteResult)
async def remove_all_knowledge(
    bot_id: str,
    client: ManagementClient = Depends(get_repository),
) -> DeleteResult:
    deleted = await clear_knowledge(client, bot_id)
    if deleted == 0:
        return DeleteResult(message="No knowledge items to clear.", items_deleted=0)
    return DeleteResult(message=f"Cleared {deleted} knowledge items.", items_deleted=deleted)


@router.delete("/knowledge/{source_name:path}", response_model=DeleteResult)
async def remove_source(
    bot_id: str,
    source_name: str,
    client: ManagementClient = Depends(get_repository),
) -> DeleteResult:
    deleted = await detach_source(client, bot_id, source_name)
    return DeleteResult(
        message=f"Detached '{source_name}' and deleted {deleted} knowledge items.",
        items_deleted=deleted,
    )


def _assistant_failure(bot_id: str, e: Exception) -> HTTPException:
    """Map a knowledge assistant failure to an HTTP error."""
    if isinstance(e, (NoKnowledgeError, UnsupportedProviderError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ProviderStreamError):
        logger.warning("Assistant provider failed for bot %s: %s", bot_id, e.message)
        return HTTPException(status_code=502, detail=e.message)
    if isinstance(e, CredentialDecryptionError):
        logger.error("Assistant setup failed for bot %s: %s", bot_id, e)
        return HTTPException(status_code=500, detail="The bot's provider key could not be read.")
    logger.warning("Assistant returned no usable result for bot %s: %s", bot_id, e)
    return HTTPException(status_code=502, detail=str(e))


@router.post("/generate-questions", response_model=GeneratedQuestions)
async def generate_suggested_questions(
    bot_id: str,
    client: ManagementClient = Depends(get_repository),
) -> GeneratedQuestions:
    """Analyze the bot's knowledge and save AI-generated suggested questions."""
    logger.info("Generating suggested questions for bot %s", bot_id)
    try:
        questions = await generate_questions(client, bot_id)
    except (AssistantError, ProviderStreamError, CredentialDecryptionError) as e:
        raise _assistant_failure(bot_id, e)
    return GeneratedQuestions(
        message="Successfully generated and saved new suggested questions!",
        questions=questions,
    )


@router.post("/refine-and-add", response_model=RefineResult)
async def refine_query_into_knowledge(
    bot_id: str,
    req: RefineRequest,
    client: ManagementClient = Depends(get_repository),
) -> RefineResult:
    """Answer a user query in the bot's persona and add it to the knowledge base."""
    user_query = req.user_query.strip()
    if not user_query:
        raise HTTPException(status_code=400, detail="User query is required.")

    try:
        answer, bot_entry = await refine_and_add(client, bot_id, user_query)
    except (AssistantError, ProviderStreamError, CredentialDecryptionError) as e:
        raise _assistant_failure(bot_id, e)
    bot = BotConfig.from_entry(bot_entry)
    return RefineResult(
        message=f"Successfully added '{user_query}' to the knowledge base.",
        answer=answer,
        active_sources=len(bot.active_knowledge_sources),
    )
