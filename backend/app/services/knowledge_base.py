"""Knowledge Base service — context assembly + ingestion helpers.

Used to build the knowledge blob injected into a bot's system prompt and to
add/remove knowledge sources. A bot only ever reads the entries listed in its
own active_knowledge_sources.
"""
from __future__ import annotations

import asyncio
import csv
import io
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone

from config import settings
from models import BotConfig, KnowledgeEntry, bot_reference
from services.contentstack import ManagementClient
from services.contentstack.config import BOT_REFERENCE_FIELD

logger = logging.getLogger("botdesk.knowledge_base")

KNOWLEDGE_SEPARATOR = "\n\n"


class KnowledgeIngestError(Exception):
    """Uploaded knowledge could not be parsed into question/answer pairs."""
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def fetch_active_entries(client: ManagementClient, bot: BotConfig) -> list[KnowledgeEntry]:
    """Fetch the knowledge entries referenced by the bot's active sources.

    Store errors propagate: an unreachable store is not the same as a bot
    without knowledge.
    """
    uids = bot.active_source_uids
    if not uids:
        return []

    raw_entries = await client.query_entries(
        settings.KNOWLEDGE_CONTENT_TYPE_UID,
        {"uid": {"$in": uids}},
    )
    entries = []
    for raw in raw_entries:
        entry = KnowledgeEntry.from_entry(raw)
        if entry.bot_id and entry.bot_id != bot.id:
            logger.warning(
                "Dropping knowledge entry %s: owned by bot %s, referenced by bot %s",
                entry.id, entry.bot_id, bot.id,
            )
            continue
        entries.append(entry)
    return entries


async def assemble_knowledge(client: ManagementClient, bot: BotConfig) -> str:
    """Concatenate source_text of the bot's active knowledge entries.

    Returns "" when the bot has no active sources.
    """
    if not bot.active_knowledge_sources:
        logger.info("Bot %s has no active knowledge sources", bot.id)
        return ""

    entries = await fetch_active_entries(client, bot)
    texts = [e.source_text for e in entries if e.source_text]
    logger.info(
        "Bot %s: loaded %d/%d active knowledge items",
        bot.id, len(texts), len(bot.active_knowledge_sources),
    )
    return KNOWLEDGE_SEPARATOR.join(texts)


def parse_qa_csv(data: bytes) -> list[dict]:
    """Parse CSV bytes with 'question' and 'answer' columns.

    Rows missing either value are skipped.

    Raises:
        KnowledgeIngestError: missing columns or no usable rows.
    """
    text = data.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    fields = [f.strip() for f in (reader.fieldnames or [])]
    if "question" not in fields or "answer" not in fields:
        raise KnowledgeIngestError(
            "Parsing failed. Please ensure your CSV contains 'question' and 'answer' columns."
        )
    reader.fieldnames = fields

    pairs = []
    for row in reader:
        question = (row.get("question") or "").strip()
        answer = (row.get("answer") or "").strip()
        if question and answer:
            pairs.append({"question": question, "answer": answer})

    if not pairs:
        raise KnowledgeIngestError("The CSV file contains no rows with both a question and an answer.")
    return pairs


async def add_knowledge_source(
    client: ManagementClient,
    bot_id: str,
    qa_pairs: list[dict],
    source_name: str,
) -> dict:
    """Create knowledge entries and append them to the bot's active sources.

    Returns:
        The updated bot entry.
    """
    bot_entry = await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)

    source_id = f"knowledge_{uuid.uuid4().hex[:12]}"
    ct = settings.KNOWLEDGE_CONTENT_TYPE_UID

    payloads = [
        {
            "title": f"[{source_name}] Q: {pair['question'][:20]}... [{uuid.uuid4().hex[:8]}]",
            "source_text": f"Question: {pair['question']}\nAnswer: {pair['answer']}",
            "source_id": source_id,
            "source_name": source_name,
            BOT_REFERENCE_FIELD: bot_reference(bot_id),
        }
        for pair in qa_pairs
    ]
    results = await asyncio.gather(
        *(client.create_entry(ct, p) for p in payloads),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        logger.error(
            "Bot %s: %d/%d knowledge creates failed for '%s', removing %d created entries",
            bot_id, len(failures), len(payloads), source_name, len(created),
        )
        await _discard_entries(client, ct, [e["uid"] for e in created])
        raise failures[0]

    existing = bot_entry.get("active_knowledge_sources")
    bot_entry["active_knowledge_sources"] = (existing if isinstance(existing, list) else []) + [
        {"uid": e["uid"], "_content_type_uid": ct} for e in created
    ]
    bot_entry["last_trained_at"] = _now_iso()
    updated = await client.update_entry(settings.BOT_CONTENT_TYPE_UID, bot_entry)

    logger.info("Bot %s: added %d knowledge items from '%s'", bot_id, len(created), source_name)
    return updated


async def _discard_entries(client: ManagementClient, content_type: str, uids: list[str]) -> None:
    """Delete entries left behind by a failed ingestion. Failures are logged only."""
    results = await asyncio.gather(
        *(client.delete_entry(content_type, uid) for uid in uids),
        return_exceptions=True,
    )
    for uid, result in zip(uids, results):
        if isinstance(result, Exception):
            logger.error("Could not remove orphaned knowledge entry %s: %s", uid, result)


async def get_sources(client: ManagementClient, bot_id: str) -> list[dict]:
    """List the bot's knowledge grouped by source_name.

    Returns:
        List of dicts with source_name, item_count, active_count.
    """
    raw_entries = await client.query_entries(
        settings.KNOWLEDGE_CONTENT_TYPE_UID,
        {f"{BOT_REFERENCE_FIELD}.uid": bot_id},
    )
    bot = BotConfig.from_entry(await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id))
    active = set(bot.active_source_uids)

    groups: OrderedDict[str, dict] = OrderedDict()
    for raw in raw_entries:
        entry = KnowledgeEntry.from_entry(raw)
        name = entry.source_name or "Manual"
        group = groups.setdefault(name, {"source_name": name, "item_count": 0, "active_count": 0})
        group["item_count"] += 1
        if entry.id in active:
            group["active_count"] += 1
    return list(groups.values())


async def delete_owned_entries(
    client: ManagementClient,
    content_type: str,
    bot_id: str,
    extra_filter: dict | None = None,
) -> list[str]:
    """Delete every entry of content_type owned by the bot. Returns deleted uids."""
    query = {f"{BOT_REFERENCE_FIELD}.uid": bot_id}
    if extra_filter:
        query.update(extra_filter)
    entries = await client.query_entries(content_type, query)
    uids = [e["uid"] for e in entries]
    await asyncio.gather(*(client.delete_entry(content_type, uid) for uid in uids))
    return uids


async def clear_knowledge(client: ManagementClient, bot_id: str) -> int:
    """Delete all of the bot's knowledge and empty its active source list."""
    deleted = await delete_owned_entries(client, settings.KNOWLEDGE_CONTENT_TYPE_UID, bot_id)

    bot_entry = await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)
    if bot_entry.get("active_knowledge_sources"):
        bot_entry["active_knowledge_sources"] = []
        await client.update_entry(settings.BOT_CONTENT_TYPE_UID, bot_entry)

    logger.info("Bot %s: cleared %d knowledge items", bot_id, len(deleted))
    return len(deleted)


async def detach_source(client: ManagementClient, bot_id: str, source_name: str) -> int:
    """Delete one source's entries and drop their references from the bot."""
    deleted = await delete_owned_entries(
        client, settings.KNOWLEDGE_CONTENT_TYPE_UID, bot_id, {"source_name": source_name},
    )

    bot_entry = await client.fetch_entry(settings.BOT_CONTENT_TYPE_UID, bot_id)
    refs = bot_entry.get("active_knowledge_sources")
    if isinstance(refs, list) and refs:
        gone = set(deleted)
        bot_entry["active_knowledge_sources"] = [
            ref for ref in refs
            if not (isinstance(ref, dict) and ref.get("uid") in gone)
        ]
        await client.update_entry(settings.BOT_CONTENT_TYPE_UID, bot_entry)

    logger.info("Bot %s: detached '%s' (%d items)", bot_id, source_name, len(deleted))
    return len(deleted)
