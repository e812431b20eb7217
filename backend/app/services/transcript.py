"""Chat transcript + analytics persistence.

save_transcript() runs after the chat response has ended; it never raises.
log_analytics() backs the analytics endpoint and does raise.
"""
import logging
import time

import httpx

from config import settings
from models import ChatTurn, bot_reference, turns_to_blocks
from services.contentstack import ContentstackError, ManagementClient
from services.contentstack.config import BOT_REFERENCE_FIELD

logger = logging.getLogger("botdesk.transcript")


def build_transcript(history: list[ChatTurn], message: str, reply: str) -> list[ChatTurn]:
    return [*history, ChatTurn(sender="user", text=message), ChatTurn(sender="bot", text=reply)]


async def upsert_transcript(
    client: ManagementClient,
    bot_id: str,
    session_id: str,
    turns: list[ChatTurn],
) -> dict:
    """Replace the session's stored turns, creating the record if needed."""
    ct = settings.CHAT_HISTORY_CONTENT_TYPE_UID
    blocks = turns_to_blocks(turns)

    found = await client.query_entries(ct, {"session_id": session_id})
    if found:
        entry = await client.fetch_entry(ct, found[0]["uid"])
        entry["messages"] = blocks
        return await client.update_entry(ct, entry)

    return await client.create_entry(ct, {
        "title": f"Session: {session_id}",
        "session_id": session_id,
        "messages": blocks,
        BOT_REFERENCE_FIELD: bot_reference(bot_id),
    })


async def save_transcript(
    client: ManagementClient,
    bot_id: str,
    session_id: str,
    history: list[ChatTurn],
    message: str,
    reply: str,
) -> bool:
    """Persist the finished exchange. Failures are logged, never raised."""
    turns = build_transcript(history, message, reply)
    try:
        await upsert_transcript(client, bot_id, session_id, turns)
    except (ContentstackError, httpx.HTTPError) as e:
        logger.error("Error saving chat history for session %s: %s", session_id, e)
        return False
    logger.info("Saved %d turns for session %s (bot %s)", len(turns), session_id, bot_id)
    return True


async def log_analytics(
    client: ManagementClient,
    bot_id: str,
    user_query: str,
    response_text: str = "",
    response_time_ms: int = 0,
) -> str:
    """Create one analytics log row. Returns the new entry uid."""
    payload = {
        "title": f"[bot:{bot_id}] Query at {int(time.time() * 1000)}: {user_query[:20]}...",
        "user_query": user_query,
        "response_text": response_text,
        "response_time_ms": response_time_ms or 0,
        "user_feedback": 0,
        BOT_REFERENCE_FIELD: bot_reference(bot_id),
    }
    entry = await client.create_entry(settings.ANALYTICS_CONTENT_TYPE_UID, payload)
    return entry.get("uid", "")
