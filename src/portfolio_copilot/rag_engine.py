"""Query orchestration: drive the agent, add suggestions and timings."""

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterator

from portfolio_copilot.agent import AgentProvider, AgentRun, get_provider
from portfolio_copilot.config import AgentConfig
from portfolio_copilot.errors import (
    ConfigurationError,
    InvalidQuestionError,
    QueryError,
    StreamError,
)
from portfolio_copilot.models import PerformanceMetrics, QueryResult, TextDelta
from portfolio_copilot.suggestions import suggest_pages

logger = logging.getLogger(__name__)

# Fragments buffered between the provider and a slow consumer.
_CHANNEL_SIZE = 32

_END = object()

_sync_loop: asyncio.AbstractEventLoop | None = None
_sync_lock = threading.Lock()


def validate_question(question: object) -> str:
    """Return the question if it is a non-blank string.

    Raises:
        InvalidQuestionError: Otherwise.
    """
    if not isinstance(question, str) or not question.strip():
        raise InvalidQuestionError("Question is required")
    return question


async def query_once(
    question: str,
    config: AgentConfig | None = None,
    provider: AgentProvider | None = None,
) -> QueryResult:
    """Answer a question in one blocking pass.

    Total time includes agent construction on a cold start. Retrieval time
    comes from this run only, and model time is the remainder.

    Args:
        question: The visitor's question.
        config: Agent overrides; only honoured by the first initialization.
        provider: Agent provider. Uses the process-wide one if not provided.

    Returns:
        A QueryResult with the answer, suggested pages and metrics.

    Raises:
        InvalidQuestionError: If the question is blank.
        QueryError: If initialization or generation fails.
    """
    validate_question(question)
    provider = provider or get_provider()
    start = time.perf_counter()

    try:
        agent = await provider.get(config)
        run = await agent.invoke(question)
    except Exception as exc:
        logger.exception("RAG query failed")
        raise QueryError(f"Failed to query RAG agent: {exc}") from exc

    suggestions = suggest_pages(question)
    metrics = PerformanceMetrics.from_timings(
        time.perf_counter() - start, run.retrieval_s
    )
    logger.info(
        "Answered in %.0f ms (retrieval %.0f ms, model %.0f ms)",
        metrics.total_ms,
        metrics.retrieval_ms,
        metrics.model_ms,
    )
    return QueryResult(
        answer=run.answer,
        suggestions=suggestions or None,
        metrics=metrics,
        sources=list(run.sources),
    )


def ask(question: str, config: AgentConfig | None = None) -> QueryResult:
    """Synchronous entry point for scripts and the CLI.

    Every call runs on one private event loop, the loop the cached agent's
    async client is bound to after its first request.
    """
    global _sync_loop
    with _sync_lock:
        if _sync_loop is None or _sync_loop.is_closed():
            _sync_loop = asyncio.new_event_loop()
        return _sync_loop.run_until_complete(query_once(question, config))


async def _produce(run: AgentRun, channel: asyncio.Queue) -> None:
    try:
        async for event in run.events(stream=True):
            if isinstance(event, TextDelta) and event.text:
                await channel.put(event.text)
    except Exception as exc:
        await channel.put(exc)
    else:
        await channel.put(_END)


async def stream_query(
    question: str,
    config: AgentConfig | None = None,
    provider: AgentProvider | None = None,
) -> AsyncIterator[str]:
    """Yield answer fragments as the model produces them.

    A producer task pulls provider events into a bounded queue. When the
    consumer stops iterating, the producer is cancelled and the provider
    stream is closed.

    Raises:
        InvalidQuestionError: If the question is blank.
        ConfigurationError: If the agent cannot be built.
        StreamError: If generation fails after the stream started.
    """
    validate_question(question)
    provider = provider or get_provider()
    start = time.perf_counter()

    try:
        agent = await provider.get(config)
    except ConfigurationError:
        raise
    except Exception as exc:
        raise StreamError(f"Failed to initialize RAG agent: {exc}") from exc

    run = agent.start(question)
    channel: asyncio.Queue = asyncio.Queue(maxsize=_CHANNEL_SIZE)
    producer = asyncio.create_task(_produce(run, channel))
    try:
        while True:
            item = await channel.get()
            if item is _END:
                break
            if isinstance(item, BaseException):
                logger.error("RAG agent stream error: %s", item)
                raise StreamError(f"Failed to stream RAG agent: {item}") from item
            yield item
    finally:
        if not producer.done():
            producer.cancel()
            logger.info("Stream consumer went away; generation cancelled")
        try:
            await producer
        except asyncio.CancelledError:
            pass

    metrics = PerformanceMetrics.from_timings(time.perf_counter() - start, run.retrieval_s)
    logger.info(
        "Streamed answer in %.0f ms (retrieval %.0f ms, model %.0f ms)",
        metrics.total_ms,
        metrics.retrieval_ms,
        metrics.model_ms,
    )
