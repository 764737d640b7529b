"""RAG agent: an ollama chat model bound to the knowledge-base search tool.

A run alternates between asking the model whether it wants to search
and executing those searches, then lets the model generate its answer::

    AWAITING_TOOL_DECISION -> (TOOL_INVOKED -> result)* -> GENERATING -> DONE

Each run is its own ``AgentRun`` so timings never leak between requests.
The process shares one ``RAGAgent`` through an ``AgentProvider``.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

import ollama

from portfolio_copilot import vector_store as vs
from portfolio_copilot.config import AgentConfig, AppConfig
from portfolio_copilot.errors import ConfigurationError
from portfolio_copilot.models import (
    AgentEvent,
    AgentPhase,
    RetrievedPassage,
    TextDelta,
    ToolCompleted,
    ToolInvoked,
)
from portfolio_copilot.retrieval import RetrievalTool

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are {owner} Buddy, a friendly assistant on {owner}'s portfolio "
    "site. You answer visitors' questions about {owner}'s background, "
    "skills, experience, projects and education.\n\n"
    "When answering questions:\n"
    "1. Use the search_knowledge_base tool to find relevant information.\n"
    "2. Base your answers strictly on the retrieved information.\n"
    "3. If the retrieved information doesn't contain the answer, say so "
    "clearly and suggest exploring the portfolio pages.\n"
    "4. Be concise and accurate.\n\n"
    "Formatting:\n"
    "- Use Markdown: short ## headers for longer answers, **bold** for key "
    "terms, bullet lists for enumerations.\n"
    "- Wrap technology, library and tool names in `code spans`.\n"
    "- Keep paragraphs short."
)


def build_system_prompt(owner: str) -> str:
    return _SYSTEM_PROMPT.format(owner=owner)


def _tool_call_dict(call) -> dict:
    return {
        "function": {
            "name": call.function.name,
            "arguments": dict(call.function.arguments or {}),
        }
    }


class AgentRun:
    """One question answered by the agent.

    Holds the phase, the searches made and their accumulated duration, and
    the generated text. ``answer`` always equals the concatenation of the
    ``TextDelta`` events yielded by ``events``.
    """

    def __init__(self, agent: "RAGAgent", question: str) -> None:
        self.agent = agent
        self.question = question
        self.phase = AgentPhase.AWAITING_TOOL_DECISION
        self.tool_calls: list[ToolInvoked] = []
        self.sources: list[RetrievedPassage] = []
        self.retrieval_s = 0.0
        self._parts: list[str] = []

    @property
    def answer(self) -> str:
        return "".join(self._parts)

    def _set_phase(self, phase: AgentPhase) -> None:
        if phase is not self.phase:
            logger.debug("Agent run phase %s -> %s", self.phase.value, phase.value)
            self.phase = phase

    async def events(self, stream: bool = True) -> AsyncIterator[AgentEvent]:
        """Drive the run, yielding tool and text events in order.

        With ``stream=False`` each model turn is one blocking call and its
        text arrives as a single ``TextDelta``.
        """
        messages: list[dict] = [
            {"role": "system", "content": self.agent.system_prompt},
            {"role": "user", "content": self.question},
        ]
        rounds = 0

        while True:
            offer_tools = rounds < self.agent.max_tool_rounds
            self._set_phase(
                AgentPhase.AWAITING_TOOL_DECISION if offer_tools else AgentPhase.GENERATING
            )
            kwargs = self.agent.chat_kwargs(messages, offer_tools)
            content: list[str] = []
            tool_calls: list = []

            if stream:
                response = await self.agent.client.chat(**kwargs, stream=True)
                async with aclosing(response) as parts:
                    async for part in parts:
                        if part.message.tool_calls:
                            tool_calls.extend(part.message.tool_calls)
                        if part.message.content:
                            self._set_phase(AgentPhase.GENERATING)
                            content.append(part.message.content)
                            self._parts.append(part.message.content)
                            yield TextDelta(part.message.content)
            else:
                response = await self.agent.client.chat(**kwargs, stream=False)
                tool_calls.extend(response.message.tool_calls or [])
                if response.message.content:
                    self._set_phase(AgentPhase.GENERATING)
                    content.append(response.message.content)
                    self._parts.append(response.message.content)
                    yield TextDelta(response.message.content)

            if tool_calls and not offer_tools:
                logger.warning("Ignoring %d tool call(s) past the round limit", len(tool_calls))
            if not tool_calls or not offer_tools:
                self._set_phase(AgentPhase.DONE)
                return

            messages.append(
                {
                    "role": "assistant",
                    "content": "".join(content),
                    "tool_calls": [_tool_call_dict(c) for c in tool_calls],
                }
            )
            for call in tool_calls:
                name = call.function.name
                args = call.function.arguments or {}
                query = str(args.get("query") or self.question)

                self._set_phase(AgentPhase.TOOL_INVOKED)
                invoked = ToolInvoked(name=name, query=query)
                self.tool_calls.append(invoked)
                yield invoked

                if name != self.agent.retrieval_tool.name:
                    logger.warning("Model requested unknown tool %r", name)
                    messages.append(
                        {"role": "tool", "content": f"Unknown tool: {name}", "tool_name": name}
                    )
                    continue

                outcome = await asyncio.to_thread(self.agent.retrieval_tool, query)
                self.retrieval_s += outcome.duration_s
                self.sources.extend(outcome.passages)
                yield ToolCompleted(
                    name=name,
                    duration_s=outcome.duration_s,
                    passage_count=len(outcome.passages),
                    failed=outcome.failed,
                )
                messages.append({"role": "tool", "content": outcome.text, "tool_name": name})
            rounds += 1


class RAGAgent:
    """Language model, retrieval tool and system instruction, bound once."""

    def __init__(
        self,
        client: ollama.AsyncClient,
        retrieval_tool: RetrievalTool,
        *,
        model: str,
        temperature: float,
        max_tokens: int = 1024,
        max_tool_rounds: int = 3,
        system_prompt: str | None = None,
    ) -> None:
        self.client = client
        self.retrieval_tool = retrieval_tool
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_tool_rounds = max_tool_rounds
        self.system_prompt = system_prompt or build_system_prompt("the site owner")

    def chat_kwargs(self, messages: list[dict], offer_tools: bool) -> dict:
        kwargs = {
            "model": self.model,
            "messages": messages,
            "options": {"temperature": self.temperature, "num_predict": self.max_tokens},
        }
        if offer_tools:
            kwargs["tools"] = [self.retrieval_tool.schema]
        return kwargs

    def start(self, question: str) -> AgentRun:
        return AgentRun(self, question)

    async def invoke(self, question: str) -> AgentRun:
        """Answer with blocking model calls and return the finished run."""
        run = self.start(question)
        async for _ in run.events(stream=False):
            pass
        return run


def build_agent(settings: AppConfig, overrides: AgentConfig | None = None) -> RAGAgent:
    """Construct a RAGAgent from settings plus optional per-call overrides.

    Credentials are checked before the vector index is touched.

    Raises:
        ConfigurationError: If a required credential or setting is missing.
    """
    llm = settings.llm
    vs_cfg = settings.vector_store
    overrides = overrides or AgentConfig()

    if llm.requires_api_key and not llm.api_key:
        raise ConfigurationError(
            f"LLM_API_KEY is not set but the model host {llm.host} is remote"
        )
    if not vs_cfg.collection_name:
        raise ConfigurationError("VS_COLLECTION_NAME is not set")
    if not vs_cfg.db_path:
        raise ConfigurationError("VS_DB_PATH is not set")

    headers = {"Authorization": f"Bearer {llm.api_key}"} if llm.api_key else None
    client = ollama.AsyncClient(host=llm.host, headers=headers, timeout=llm.timeout)

    collection = vs.get_collection(vs.get_client(vs_cfg), vs_cfg)
    top_k = overrides.top_k or vs_cfg.top_k

    return RAGAgent(
        client,
        RetrievalTool(collection, top_k=top_k),
        model=overrides.model or llm.model,
        temperature=(
            overrides.temperature if overrides.temperature is not None else llm.temperature
        ),
        max_tokens=llm.max_tokens,
        max_tool_rounds=llm.max_tool_rounds,
        system_prompt=build_system_prompt(settings.site_owner),
    )


class AgentProvider:
    """Builds the agent on first use and hands out the cached instance.

    First construction is serialized by a lock, so concurrent callers
    (threads or coroutines) always receive the same instance. A config
    passed after the agent exists is ignored.
    """

    def __init__(
        self,
        settings: AppConfig | None = None,
        factory: Callable[[AppConfig, AgentConfig | None], RAGAgent] = build_agent,
    ) -> None:
        self._settings = settings
        self._factory = factory
        self._agent: RAGAgent | None = None
        self._config: AgentConfig | None = None
        self._lock = threading.Lock()

    @property
    def settings(self) -> AppConfig:
        if self._settings is None:
            self._settings = AppConfig()
        return self._settings

    @property
    def ready(self) -> bool:
        return self._agent is not None

    @property
    def agent(self) -> RAGAgent | None:
        return self._agent

    def _warn_if_ignored(self, config: AgentConfig | None) -> None:
        if config is not None and config != self._config:
            logger.warning("Agent already initialized; ignoring config %s", config)

    def initialize(self, config: AgentConfig | None = None) -> RAGAgent:
        """Return the agent, building it on the first call."""
        agent = self._agent
        if agent is not None:
            self._warn_if_ignored(config)
            return agent
        with self._lock:
            if self._agent is None:
                self._agent = self._factory(self.settings, config)
                self._config = config
                logger.info(
                    "RAG agent initialized (model=%s, top_k=%d)",
                    self._agent.model,
                    self._agent.retrieval_tool.top_k,
                )
            else:
                self._warn_if_ignored(config)
            return self._agent

    async def get(self, config: AgentConfig | None = None) -> RAGAgent:
        """Async ``initialize``; a cold start runs off the event loop."""
        if self._agent is not None:
            self._warn_if_ignored(config)
            return self._agent
        return await asyncio.to_thread(self.initialize, config)

    def reset(self) -> None:
        with self._lock:
            self._agent = None
            self._config = None


_default_provider = AgentProvider()


def get_provider() -> AgentProvider:
    """Return the process-wide provider."""
    return _default_provider


def initialize_agent(config: AgentConfig | None = None) -> RAGAgent:
    return _default_provider.initialize(config)


def reset_agent() -> None:
    """Drop the cached agent (for tests or reconfiguration)."""
    _default_provider.reset()
