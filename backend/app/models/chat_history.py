"""Chat history: the full turn sequence of one widget session.

Keyed by session_id (one entry per session, upserted after each turn).
Turns are stored as modular blocks: [{"message": {"sender", "text"}}].
"""
from typing import Literal

from pydantic import BaseModel

from models.base import owning_bot_id


class ChatTurn(BaseModel):
    sender: Literal["user", "bot"]
    text: str = ""


def turns_to_blocks(turns: list[ChatTurn]) -> list[dict]:
    return [{"message": {"sender": t.sender, "text": t.text}} for t in turns]


def blocks_to_turns(blocks) -> list[ChatTurn]:
    turns = []
    for block in blocks or []:
        msg = block.get("message") if isinstance(block, dict) else None
        if isinstance(msg, dict) and msg.get("sender") in ("user", "bot"):
            turns.append(ChatTurn(sender=msg["sender"], text=msg.get("text") or ""))
    return turns


class ChatHistoryRecord(BaseModel):
    id: str
    session_id: str
    bot_id: str | None = None
    messages: list[ChatTurn] = []

    @classmethod
    def from_entry(cls, entry: dict) -> "ChatHistoryRecord":
        return cls(
            id=entry["uid"],
            session_id=entry.get("session_id", ""),
            bot_id=owning_bot_id(entry),
            messages=blocks_to_turns(entry.get("messages")),
        )
