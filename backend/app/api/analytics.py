import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from config import settings
from models import AnalyticsLog, get_repository
from services.contentstack import ManagementClient
from services.contentstack.config import BOT_REFERENCE_FIELD
from services.transcript import log_analytics

router = APIRouter(prefix="/api/analytics", tags=["analytics"])
logger = logging.getLogger("botdesk.api.analytics")


# --- Schemas ---

class AnalyticsLogCreate(BaseModel):
    botId: str = Field(min_length=1)
    user_query: str = Field(min_length=1)
    response_text: str = ""
    response_time_ms: int = 0


class AnalyticsLogCreated(BaseModel):
    logId: str


class FeedbackUpdate(BaseModel):
    feedback: Literal[-1, 0, 1]


# --- Endpoints ---

@router.post("/log", response_model=AnalyticsLogCreated, status_code=201)
async def create_log(data: AnalyticsLogCreate, client: ManagementClient = Depends(get_repository)):
    log_id = await log_analytics(
        client, data.botId, data.user_query, data.response_text, data.response_time_ms,
    )
    return AnalyticsLogCreated(logId=log_id)


@router.get("/{bot_id}", response_model=list[AnalyticsLog])
async def list_logs(bot_id: str, client: ManagementClient = Depends(get_repository)):
    entries = await client.query_entries(
        settings.ANALYTICS_CONTENT_TYPE_UID, {f"{BOT_REFERENCE_FIELD}.uid": bot_id},
    )
    return [AnalyticsLog.from_entry(e) for e in entries if AnalyticsLog.is_log_entry(e)]


@router.put("/feedback/{log_id}", response_model=AnalyticsLog)
async def set_feedback(
    log_id: str,
    data: FeedbackUpdate,
    client: ManagementClient = Depends(get_repository),
):
    entry = await client.fetch_entry(settings.ANALYTICS_CONTENT_TYPE_UID, log_id)
    if not AnalyticsLog.is_log_entry(entry):
        raise HTTPException(400, "The specified entry is not an analytics log.")

    entry["user_feedback"] = data.feedback
    updated = await client.update_entry(settings.ANALYTICS_CONTENT_TYPE_UID, entry)
    logger.info("Feedback %d recorded on log %s", data.feedback, log_id)
    return AnalyticsLog.from_entry(updated)
