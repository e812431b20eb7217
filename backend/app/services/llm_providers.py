"""
Streaming LLM providers behind one interface.

Every provider exposes stream_completion(system_prompt, history, message),
an async iterator of non-empty text fragments in provider order.
get_provider() is the only place that looks at the provider tag.

OpenAI and Groq go through the openai SDK (Groq via its OpenAI-compatible
endpoint); Gemini through its REST streaming endpoint (httpx).
"""
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI

from config import settings
from models import ChatTurn

logger = logging.getLogger("botdesk.llm_providers")

PROVIDER_LABELS = {"gemini": "Gemini", "openai": "OpenAI", "groq": "Groq"}


class ProviderStreamError(Exception):
    """Provider failed before or during streaming.

    `message` is safe to show to the end user.
    """
    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(message)


def format_llm_error(provider: str, error, status_code: int = 0) -> str:
    """
    Turn a provider failure into a short, human-readable message.
    Classifies by status code / error text.
    """
    label = PROVIDER_LABELS.get(provider, provider)
    err_str = str(error).lower()

    if status_code in (401, 403) or any(kw in err_str for kw in (
        "unauthorized", "authentication", "invalid api key", "incorrect api key",
        "api key not valid", "permission denied",
    )):
        return f"Error: the {label} API key for this bot is invalid or has been revoked."

    if status_code == 429 or any(kw in err_str for kw in (
        "rate limit", "rate_limit", "too many requests", "quota",
    )):
        return f"Error: {label} is rate limiting requests. Please try again in a moment."

    if any(kw in err_str for kw in ("timeout", "timed out")):
        return f"Error: {label} did not respond in time. Please try again."

    if any(kw in err_str for kw in (
        "connecterror", "connection error", "connection refused",
        "name resolution", "unreachable", "failed to establish",
    )):
        return f"Error: could not connect to the {label} API."

    if status_code >= 500 or any(kw in err_str for kw in (
        "internal server error", "bad gateway", "service unavailable",
    )):
        return f"Error: {label} is temporarily unavailable (HTTP {status_code or '5xx'})."

    if any(kw in err_str for kw in ("model not found", "model_not_found", "does not exist")):
        return f"Error: the configured {label} model is not available."

    return f"Error from {label}: {str(error)[:200]}"


class ChatProvider(ABC):
    name: str = ""

    def __init__(self, api_key: str, model: str, timeout: float):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @abstractmethod
    def stream_completion(
        self,
        system_prompt: str,
        history: list[ChatTurn],
        message: str,
    ) -> AsyncIterator[str]:
        """Yield text fragments of the reply. Raises ProviderStreamError."""

    async def complete(self, system_prompt: str, message: str) -> str:
        """Whole reply to a single message without history."""
        parts = []
        async for fragment in self.stream_completion(system_prompt, [], message):
            parts.append(fragment)
        return "".join(parts)


# ---------------------------------------------------------------------------
# OpenAI / Groq
# ---------------------------------------------------------------------------
class OpenAIChatProvider(ChatProvider):
    name = "openai"
    base_url: str | None = None

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float,
        client: AsyncOpenAI | None = None,
    ):
        super().__init__(api_key, model, timeout)
        self._client = client

    @staticmethod
    def build_messages(system_prompt: str, history: list[ChatTurn], message: str) -> list[dict]:
        return (
            [{"role": "system", "content": system_prompt}]
            + [
                {"role": "assistant" if t.sender == "bot" else "user", "content": t.text}
                for t in history
            ]
            + [{"role": "user", "content": message}]
        )

    async def stream_completion(self, system_prompt, history, message):
        messages = self.build_messages(system_prompt, history, message)
        client = self._client or AsyncOpenAI(
            api_key=self.api_key,
            timeout=self.timeout,
            base_url=self.base_url,
        )
        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content or ""
                if content:
                    yield content
        except openai.APIError as e:
            logger.error("%s stream error: %s", self.name, e)
            raise ProviderStreamError(
                self.name,
                format_llm_error(self.name, e, status_code=getattr(e, "status_code", 0) or 0),
            ) from e
        finally:
            if self._client is None:
                await client.close()


class GroqChatProvider(OpenAIChatProvider):
    name = "groq"

    @property
    def base_url(self) -> str:
        return settings.GROQ_BASE_URL


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------
class GeminiChatSession:
    """
    Multi-turn Gemini chat over the REST streaming endpoint.

    Usage:
        chat = GeminiChatSession(http, model, api_key, system_instruction, history)
        async for text in chat.send_message_stream("hi"): ...
    The exchange is appended to chat.history once the reply is complete.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        model: str,
        api_key: str,
        system_instruction: str,
        history: list[dict],
    ):
        self._http = http
        self.url = f"{settings.GEMINI_API_BASE}/models/{model}:streamGenerateContent"
        self._api_key = api_key
        self.system_instruction = system_instruction
        self.history = list(history)

    async def send_message_stream(self, text: str) -> AsyncIterator[str]:
        user_turn = {"role": "user", "parts": [{"text": text}]}
        body = {
            "contents": self.history + [user_turn],
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
        }
        reply: list[str] = []

        async with self._http.stream(
            "POST",
            self.url,
            params={"alt": "sse"},
            headers={"x-goog-api-key": self._api_key},
            json=body,
        ) as resp:
            if resp.status_code != 200:
                raw = await resp.aread()
                try:
                    data = json.loads(raw)
                except ValueError:
                    data = None
                err = data.get("error") if isinstance(data, dict) else None
                if isinstance(err, dict):
                    err = err.get("message")
                err = err or raw[:200].decode("utf-8", errors="replace")
                raise ProviderStreamError(
                    "gemini", format_llm_error("gemini", err, status_code=resp.status_code),
                )

            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if not payload:
                    continue
                try:
                    data = json.loads(payload)
                except ValueError:
                    logger.warning("Gemini: skipping unparseable stream line")
                    continue
                if not isinstance(data, dict):
                    continue
                if "error" in data:
                    err = data["error"]
                    if not isinstance(err, dict):
                        err = {"message": str(err)}
                    raise ProviderStreamError(
                        "gemini",
                        format_llm_error("gemini", err.get("message", ""), err.get("code") or 0),
                    )
                for candidate in (data.get("candidates") or [])[:1]:
                    for part in (candidate.get("content") or {}).get("parts") or []:
                        fragment = part.get("text") or ""
                        if fragment:
                            reply.append(fragment)
                            yield fragment

        self.history += [user_turn, {"role": "model", "parts": [{"text": "".join(reply)}]}]


class GeminiChatProvider(ChatProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, model, timeout)
        self._transport = transport

    @staticmethod
    def build_history(history: list[ChatTurn]) -> list[dict]:
        return [
            {"role": "model" if t.sender == "bot" else "user", "parts": [{"text": t.text}]}
            for t in history
        ]

    async def stream_completion(self, system_prompt, history, message):
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
            chat = GeminiChatSession(
                http, self.model, self.api_key, system_prompt, self.build_history(history),
            )
            try:
                async for fragment in chat.send_message_stream(message):
                    yield fragment
            except httpx.HTTPError as e:
                logger.error("Gemini stream error: %s", e)
                raise ProviderStreamError("gemini", format_llm_error("gemini", e)) from e


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------
PROVIDERS: dict[str, tuple[type[ChatProvider], str]] = {
    "gemini": (GeminiChatProvider, "GEMINI_MODEL"),
    "openai": (OpenAIChatProvider, "OPENAI_MODEL"),
    "groq": (GroqChatProvider, "GROQ_MODEL"),
}


def is_supported_provider(tag: str | None) -> bool:
    return (tag or "").strip().lower() in PROVIDERS


def get_provider(tag: str | None, api_key: str) -> ChatProvider | None:
    """Provider for a bot's llm_provider tag (case-insensitive), None if unsupported.

    Building a provider opens no connection.
    """
    entry = PROVIDERS.get((tag or "").strip().lower())
    if entry is None:
        return None
    cls, model_setting = entry
    return cls(
        api_key=api_key,
        model=getattr(settings, model_setting),
        timeout=settings.AI_TIMEOUT,
    )
