from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]

    # Content management API (bots, knowledge, chat history, analytics)
    CONTENTSTACK_API_HOST: str = "api.contentstack.io"
    CONTENTSTACK_API_KEY: str = ""
    CONTENTSTACK_MANAGEMENT_TOKEN: str = ""
    CMS_TIMEOUT: float = 15.0
    CMS_RETRY_LIMIT: int = 5
    CMS_PAGE_SIZE: int = 100
    CMS_MAX_CONCURRENCY: int = 5
    CMS_RATE_LIMIT: float = 10.0  # requests per second, 0 = unlimited

    # Content type UIDs
    BOT_CONTENT_TYPE_UID: str = "chatbot_config"
    KNOWLEDGE_CONTENT_TYPE_UID: str = "customknowledge"
    CHAT_HISTORY_CONTENT_TYPE_UID: str = "chat_history"
    ANALYTICS_CONTENT_TYPE_UID: str = "chatanalyticslog"

    # Credential vault: base64-encoded 32-byte AES key
    CREDENTIAL_KEY: str = ""

    # LLM providers (model ids are fixed per provider)
    AI_TIMEOUT: float = 120.0
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_MODEL: str = "gpt-4o-mini"
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"

    # Knowledge assistant (question generation, refine-and-add).
    # Empty key: each bot's own provider and key are used.
    ASSISTANT_PROVIDER: str = "gemini"
    ASSISTANT_API_KEY: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
