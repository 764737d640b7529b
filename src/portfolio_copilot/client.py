"""Chat client: send a question, consume SSE frames, rebuild the answer.

The session moves through::

    IDLE -> SENDING -> STREAMING_ANSWER -> SETTLED_SUCCESS | SETTLED_ERROR

and is ready for the next question once settled.
"""

import enum
import json
import logging
from collections.abc import Callable
from typing import Protocol

import httpx

from portfolio_copilot.models import ChatMessage, PageSuggestion, Role

logger = logging.getLogger(__name__)

EVENT_PREFIX = "data: "

NO_RESPONSE_MESSAGE = (
    "I apologize, but I could not generate a response. "
    "Please try rephrasing your question."
)
ERROR_MESSAGE = (
    "I apologize, but I encountered an error while processing your request. "
    "Please try again, or feel free to explore the portfolio pages for more "
    "information."
)

WELCOME_MESSAGE = (
    "Hey! 👋 I'm **{owner} Buddy**, your friendly guide to {owner}'s portfolio.\n\n"
    "I know all about:\n"
    "- **Skills** & technologies\n"
    "- **Experience** & roles\n"
    "- **Projects** & achievements\n\n"
    "Ask me anything!"
)

QUICK_QUESTIONS = (
    ("Key skills", "What are {owner}'s key skills?"),
    ("Experience", "Tell me about {owner}'s experience"),
    ("Projects", "What projects has {owner} worked on?"),
    ("Technologies", "What technologies does {owner} specialize in?"),
)

# Distance from the bottom, in pixels, within which the view keeps following.
SCROLL_THRESHOLD = 100


class ChatState(enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING_ANSWER = "streaming_answer"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_ERROR = "settled_error"


_BUSY = (ChatState.SENDING, ChatState.STREAMING_ANSWER)


class Viewport(Protocol):
    """A scrollable message list."""

    scroll_height: float
    scroll_top: float
    client_height: float

    def scroll_to_bottom(self) -> None: ...


def is_near_bottom(viewport: Viewport | None, threshold: float = SCROLL_THRESHOLD) -> bool:
    if viewport is None:
        return True
    distance = viewport.scroll_height - viewport.scroll_top - viewport.client_height
    return distance < threshold


class _StreamAborted(Exception):
    """The server reported an error frame or the stream ended early."""


def parse_frame(line: str) -> dict | None:
    """Return the JSON payload of an event line, or None to skip it."""
    if not line.startswith(EVENT_PREFIX):
        return None
    try:
        data = json.loads(line[len(EVENT_PREFIX):])
    except ValueError:
        logger.debug("Skipping malformed frame: %r", line[:80])
        return None
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    return data


def _parse_pages(raw: object) -> list[PageSuggestion]:
    pages = []
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, dict) and item.get("title") and item.get("href"):
            pages.append(
                PageSuggestion(
                    title=str(item["title"]),
                    href=str(item["href"]),
                    description=item.get("description"),
                )
            )
    return pages


class ChatSession:
    """Stateful chat against the ``/rag-stream`` endpoint.

    Args:
        base_url: Server root, e.g. ``http://127.0.0.1:8000``.
        http_client: Optional preconfigured httpx client (used in tests).
        viewport: Optional scroll state of the rendered message list.
        on_update: Called with the assistant message after every change.
        owner: Name shown in the welcome message.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        *,
        http_client: httpx.Client | None = None,
        viewport: Viewport | None = None,
        on_update: Callable[[ChatMessage], None] | None = None,
        owner: str = "Amine",
        timeout: float | None = None,
    ) -> None:
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self.viewport = viewport
        self.on_update = on_update
        self.state = ChatState.IDLE
        self.messages: list[ChatMessage] = [
            ChatMessage(role=Role.ASSISTANT, content=WELCOME_MESSAGE.format(owner=owner))
        ]

    @property
    def busy(self) -> bool:
        return self.state in _BUSY

    def _changed(self, message: ChatMessage) -> None:
        follow = is_near_bottom(self.viewport)
        if self.on_update is not None:
            self.on_update(message)
        if follow and self.viewport is not None:
            self.viewport.scroll_to_bottom()

    def _settle(
        self,
        message: ChatMessage,
        content: str,
        state: ChatState,
        suggestions: list[PageSuggestion] | None = None,
    ) -> None:
        message.content = content
        message.suggestions = suggestions or None
        message.streaming = False
        self.state = state
        self._changed(message)

    def submit(self, question: str) -> ChatMessage | None:
        """Send a question and consume the streamed answer.

        Returns the settled assistant message, or None when the question is
        blank or another request is still in flight. An exception raised by
        ``on_update`` or the viewport propagates after the reply is settled
        as an error.
        """
        question = (question or "").strip()
        if not question or self.busy:
            return None

        self.messages.append(ChatMessage(role=Role.USER, content=question))
        reply = ChatMessage(role=Role.ASSISTANT, streaming=True)
        self.messages.append(reply)
        self.state = ChatState.SENDING

        try:
            self._changed(reply)
            self._consume(question, reply)
        except (httpx.HTTPError, _StreamAborted) as exc:
            logger.warning("Chat request failed: %s", exc)
            self._settle(reply, ERROR_MESSAGE, ChatState.SETTLED_ERROR)
        finally:
            if self.busy:
                # A callback raised mid-stream; settle quietly so the next
                # question is accepted.
                reply.content = ERROR_MESSAGE
                reply.suggestions = None
                reply.streaming = False
                self.state = ChatState.SETTLED_ERROR
        return reply

    def _consume(self, question: str, reply: ChatMessage) -> None:
        suggestions: list[PageSuggestion] = []
        with self.http.stream("POST", "/rag-stream", json={"question": question}) as response:
            response.raise_for_status()
            for line in response.iter_lines():
                frame = parse_frame(line)
                if frame is None:
                    continue
                kind = frame["type"]
                if kind == "chunk" and isinstance(frame.get("content"), str):
                    if self.state is ChatState.SENDING:
                        self.state = ChatState.STREAMING_ANSWER
                    reply.content += frame["content"]
                    self._changed(reply)
                elif kind == "suggestions":
                    suggestions = _parse_pages(frame.get("pages"))
                elif kind == "done":
                    self._settle(
                        reply,
                        reply.content or NO_RESPONSE_MESSAGE,
                        ChatState.SETTLED_SUCCESS,
                        suggestions,
                    )
                    return
                elif kind == "error":
                    raise _StreamAborted(frame.get("message") or "stream error")
        raise _StreamAborted("stream ended without a terminal frame")

    def reset(self) -> None:
        """Return to IDLE after a settled answer."""
        if not self.busy:
            self.state = ChatState.IDLE

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
