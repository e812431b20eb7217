"""Analytics log. One row per user query.

user_feedback: -1 (down), 0 (none), 1 (up); set later by the feedback endpoint.
"""
from pydantic import BaseModel

from models.base import owning_bot_id


class AnalyticsLog(BaseModel):
    id: str
    user_query: str
    response_text: str = ""
    response_time_ms: int = 0
    user_feedback: int = 0
    bot_id: str | None = None
    created_at: str | None = None

    @classmethod
    def from_entry(cls, entry: dict) -> "AnalyticsLog":
        return cls(
            id=entry["uid"],
            user_query=entry.get("user_query") or "",
            response_text=entry.get("response_text") or "",
            response_time_ms=int(entry.get("response_time_ms") or 0),
            user_feedback=int(entry.get("user_feedback") or 0),
            bot_id=owning_bot_id(entry),
            created_at=entry.get("created_at"),
        )

    @staticmethod
    def is_log_entry(entry: dict) -> bool:
        query = entry.get("user_query")
        return isinstance(query, str) and bool(query.strip())
