"""Server-sent-event relay for one chat turn.

Wire format: one `data: <json>\\n\\n` line per event.
    {"content": "<fragment>"}                              per fragment
    {"finished": true, "metadata": {...}[, "error": true]}  exactly once, last

Post-completion hooks (transcript persistence) run only after the terminal
event has actually been handed to the client and the reply was not an
error. A stream abandoned by a disconnecting client never completes, so
its hooks are skipped.
"""
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from models import ChatTurn
from services.llm_providers import ChatProvider, ProviderStreamError

logger = logging.getLogger("botdesk.chat_stream")

CompletionHook = Callable[["ChatStream"], Awaitable[None]]


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class ChatStream:

    def __init__(
        self,
        provider: ChatProvider | None,
        provider_tag: str,
        system_prompt: str,
        history: list[ChatTurn],
        message: str,
        suggested_questions: list[str],
    ):
        self.provider = provider
        self.provider_tag = provider_tag
        self.system_prompt = system_prompt
        self.history = history
        self.message = message
        self.metadata = {"suggestedQuestions": list(suggested_questions)}

        self.full_response = ""
        self.fragment_count = 0
        self.completed = False
        self.failed = False
        self._hooks: list[CompletionHook] = []

    def add_completion_hook(self, hook: CompletionHook) -> None:
        self._hooks.append(hook)

    def _terminal_event(self) -> str:
        payload = {"finished": True, "metadata": self.metadata}
        if self.failed:
            payload["error"] = True
        return sse_event(payload)

    async def events(self) -> AsyncIterator[str]:
        """Relay provider fragments as SSE events, then the terminal event."""
        if self.provider is None:
            logger.warning("Unsupported provider '%s', closing stream", self.provider_tag)
            self.failed = True
            yield sse_event({"content": f"Error: Provider '{self.provider_tag}' not supported."})
            yield self._terminal_event()
            self.completed = True
            return

        try:
            async for fragment in self.provider.stream_completion(
                self.system_prompt, self.history, self.message,
            ):
                if not fragment:
                    continue
                self.full_response += fragment
                self.fragment_count += 1
                yield sse_event({"content": fragment})
        except ProviderStreamError as e:
            logger.warning(
                "Provider %s failed after %d fragments: %s",
                e.provider, self.fragment_count, e.message,
            )
            self.failed = True
            yield sse_event({"content": e.message})
        except Exception as e:
            logger.error("Unexpected error while streaming from %s: %s", self.provider.name, e, exc_info=True)
            self.failed = True
            yield sse_event({"content": "Error: the assistant could not complete this reply."})

        yield self._terminal_event()
        self.completed = True

    async def run_completion_hooks(self) -> None:
        """Run hooks in order; each failure is logged and isolated."""
        if not self.completed:
            logger.info("Chat stream aborted before completion, skipping persistence")
            return
        if self.failed:
            logger.info("Chat stream ended with an error, skipping persistence")
            return

        for hook in self._hooks:
            try:
                await hook(self)
            except Exception as e:
                logger.error("Post-completion hook %s failed: %s", getattr(hook, "__name__", hook), e, exc_info=True)
