"""Knowledge entry: one retrievable text unit usable as chat context.

Created by ingestion flows (CSV upload, manual add), never mutated after
creation. source_name groups entries from one ingestion batch.
"""
from pydantic import BaseModel

from models.base import owning_bot_id


class KnowledgeEntry(BaseModel):
    id: str
    title: str = ""
    source_text: str = ""
    source_id: str = ""
    source_name: str = ""
    bot_id: str | None = None

    @classmethod
    def from_entry(cls, entry: dict) -> "KnowledgeEntry":
        return cls(
            id=entry["uid"],
            title=entry.get("title", ""),
            source_text=entry.get("source_text") or "",
            source_id=entry.get("source_id") or "",
            source_name=entry.get("source_name") or "",
            bot_id=owning_bot_id(entry),
        )
