from models.base import (
    EntryReference,
    bot_reference,
    get_repository,
    get_repository_factory,
    new_repository,
    owning_bot_id,
    platform_credentials,
)
from models.bot_config import BotConfig, questions_to_blocks
from models.knowledge_entry import KnowledgeEntry
from models.chat_history import ChatHistoryRecord, ChatTurn, turns_to_blocks
from models.analytics_log import AnalyticsLog

__all__ = [
    "EntryReference",
    "bot_reference",
    "get_repository",
    "get_repository_factory",
    "new_repository",
    "owning_bot_id",
    "platform_credentials",
    "BotConfig",
    "questions_to_blocks",
    "KnowledgeEntry",
    "ChatHistoryRecord",
    "ChatTurn",
    "turns_to_blocks",
    "AnalyticsLog",
]
