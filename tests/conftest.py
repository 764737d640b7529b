"""Shared fixtures for the test suite."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sse_starlette.sse import AppStatus

from portfolio_copilot.agent import AgentProvider, RAGAgent, reset_agent
from portfolio_copilot.config import AppConfig
from portfolio_copilot.retrieval import RetrievalTool


def _make_part(content: str = "", tool_calls=None, done: bool = False):
    """Build an object shaped like an ollama ChatResponse."""
    return SimpleNamespace(
        message=SimpleNamespace(content=content, tool_calls=tool_calls),
        done=done,
    )


def _make_tool_call(query: str, name: str = "search_knowledge_base"):
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments={"query": query}))


class _FakeChatClient:
    """Scripted stand-in for ``ollama.AsyncClient``.

    ``turns`` holds one list per model call. Items are text fragments,
    tool calls (from ``tool_call``) or exceptions to raise at that point.
    The last turn repeats if the agent calls more often than scripted.
    ``delay`` pauses before each streamed part.
    """

    def __init__(self, turns: list[list], delay: float = 0.0) -> None:
        self.turns = turns
        self.delay = delay
        self.calls: list[dict] = []
        self.closed_streams = 0
        self.parts_pulled = 0

    def _next_turn(self, kwargs: dict) -> list:
        self.calls.append(kwargs)
        return self.turns[min(len(self.calls), len(self.turns)) - 1]

    async def chat(self, *, stream: bool = False, **kwargs):
        turn = self._next_turn(kwargs)
        if stream:
            return self._stream(turn)
        for item in turn:
            if isinstance(item, Exception):
                raise item
        content = "".join(item for item in turn if isinstance(item, str))
        tool_calls = [item for item in turn if isinstance(item, SimpleNamespace)]
        return _make_part(content, tool_calls or None, done=True)

    async def _stream(self, turn: list):
        try:
            for item in turn:
                if self.delay:
                    await asyncio.sleep(self.delay)
                if isinstance(item, Exception):
                    raise item
                self.parts_pulled += 1
                if isinstance(item, str):
                    yield _make_part(item)
                else:
                    yield _make_part("", [item])
            yield _make_part("", done=True)
        finally:
            self.closed_streams += 1


def _chroma_result(documents: list[str], distances: list[float] | None = None) -> dict:
    return {
        "documents": [documents],
        "metadatas": [[{"source": f"doc{i}.md"} for i in range(len(documents))]],
        "distances": [distances or [0.2] * len(documents)],
    }


@pytest.fixture
def fake_chat_client():
    """Factory for scripted ollama clients."""
    return _FakeChatClient


@pytest.fixture
def chat_part():
    """Factory for ollama-shaped chat responses."""
    return _make_part


@pytest.fixture
def tool_call():
    """Factory for model tool calls."""
    return _make_tool_call


@pytest.fixture
def chroma_result():
    """Factory for raw chromadb query results."""
    return _chroma_result


@pytest.fixture(autouse=True)
def _reset_default_agent():
    reset_agent()
    yield
    reset_agent()


@pytest.fixture(autouse=True)
def _reset_sse_exit_event():
    # The shutdown event binds to the first event loop that waits on it.
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture
def collection():
    mock = MagicMock()
    mock.query.return_value = _chroma_result(
        ["Amine is a Tech Lead at Intelswift.", "Amine builds RAG systems."]
    )
    mock.count.return_value = 2
    return mock


@pytest.fixture
def answer_turns() -> list[list]:
    """Model searches once, then answers in three fragments."""
    return [
        [_make_tool_call("Amine projects")],
        ["Amine has ", "built **RAG** ", "systems."],
    ]


@pytest.fixture
def chat_client(answer_turns) -> _FakeChatClient:
    return _FakeChatClient(answer_turns)


@pytest.fixture
def agent(chat_client, collection) -> RAGAgent:
    return RAGAgent(
        chat_client,
        RetrievalTool(collection, top_k=3),
        model="test-model",
        temperature=0.0,
    )


@pytest.fixture
def provider(agent) -> AgentProvider:
    return AgentProvider(settings=AppConfig(), factory=lambda settings, config: agent)
