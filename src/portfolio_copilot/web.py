"""FastAPI web interface: streaming chat endpoint and JSON API."""

import logging
from contextlib import aclosing, asynccontextmanager
from typing import Literal

import ollama
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from portfolio_copilot import rag_engine
from portfolio_copilot.agent import AgentProvider, get_provider
from portfolio_copilot.config import AgentConfig
from portfolio_copilot.errors import InvalidQuestionError, QueryError
from portfolio_copilot.models import PageSuggestion
from portfolio_copilot.suggestions import suggest_pages

logger = logging.getLogger(__name__)

_SSE_HEADERS = {"Cache-Control": "no-cache"}


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Attach the process-wide agent provider; the agent itself is built lazily."""
    application.state.agent_provider = get_provider()
    logger.info("Agent provider attached (model=%s)", get_provider().settings.llm.model)
    yield


app = FastAPI(
    title="Portfolio Copilot",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

router = APIRouter(prefix="/api/v1")


def get_agent_provider(request: Request) -> AgentProvider:
    """FastAPI dependency: return the agent provider from app state."""
    return getattr(request.app.state, "agent_provider", None) or get_provider()


class PageResponse(BaseModel):
    title: str
    href: str
    description: str | None = None

    @classmethod
    def from_suggestion(cls, page: PageSuggestion) -> "PageResponse":
        return cls(title=page.title, href=page.href, description=page.description)


class StreamFrame(BaseModel):
    """One server-sent event on the ``/rag-stream`` response.

    Each frame is sent as a single ``data:`` line holding the JSON object.
    """

    type: Literal["chunk", "suggestions", "done", "error"]
    content: str | None = None
    pages: list[PageResponse] | None = None
    message: str | None = None

    def event(self) -> dict:
        return {"data": self.model_dump_json(exclude_none=True)}


class AskRequest(BaseModel):
    question: str
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_k: int | None = Field(default=None, gt=0)


class SourceResponse(BaseModel):
    content: str
    metadata: dict
    relevance: float | None = None


class MetricsResponse(BaseModel):
    total_ms: float
    retrieval_ms: float
    model_ms: float


class AskResponse(BaseModel):
    answer: str
    suggestions: list[PageResponse] | None = None
    metrics: MetricsResponse | None = None
    sources: list[SourceResponse]


class HealthResponse(BaseModel):
    status: str
    ollama_connected: bool
    agent_ready: bool
    documents: int | None = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _event_stream(request: Request, question: str, provider: AgentProvider):
    """Forward answer fragments as SSE frames, ending with done or error.

    Headers are already sent by the time this runs, so failures can only
    be reported in-band.
    """
    try:
        async with aclosing(rag_engine.stream_query(question, provider=provider)) as fragments:
            async for fragment in fragments:
                if await request.is_disconnected():
                    logger.info("Client disconnected; stopping stream")
                    return
                yield StreamFrame(type="chunk", content=fragment).event()

        pages = suggest_pages(question)
        if pages:
            yield StreamFrame(
                type="suggestions",
                pages=[PageResponse.from_suggestion(p) for p in pages],
            ).event()

        yield StreamFrame(type="done").event()
    except Exception as exc:
        logger.exception("Streaming error")
        yield StreamFrame(type="error", message=str(exc) or "Unknown error").event()


@app.post("/rag-stream")
async def rag_stream(request: Request, provider: AgentProvider = Depends(get_agent_provider)):
    try:
        body = await request.json()
    except ValueError:
        logger.exception("RAG stream API error: unreadable body")
        return _error(500, "Failed to process request")

    question = body.get("question") if isinstance(body, dict) else None
    try:
        rag_engine.validate_question(question)
    except InvalidQuestionError:
        return _error(400, "Question is required")

    try:
        await provider.get()
    except Exception:
        logger.exception("RAG stream API error: agent unavailable")
        return _error(500, "Failed to process request")

    return EventSourceResponse(
        _event_stream(request, question, provider),
        headers=_SSE_HEADERS,
        sep="\n",
    )


@router.post("/ask", response_model=AskResponse)
async def api_ask(body: AskRequest, provider: AgentProvider = Depends(get_agent_provider)):
    config = None
    if body.model or body.temperature is not None or body.top_k:
        config = AgentConfig(model=body.model, temperature=body.temperature, top_k=body.top_k)

    try:
        result = await rag_engine.query_once(body.question, config, provider=provider)
    except InvalidQuestionError:
        raise HTTPException(status_code=400, detail="Question is required")
    except QueryError:
        raise HTTPException(status_code=500, detail="Failed to process request")

    metrics = None
    if result.metrics is not None:
        metrics = MetricsResponse(
            total_ms=result.metrics.total_ms,
            retrieval_ms=result.metrics.retrieval_ms,
            model_ms=result.metrics.model_ms,
        )
    return AskResponse(
        answer=result.answer,
        suggestions=(
            [PageResponse.from_suggestion(p) for p in result.suggestions]
            if result.suggestions
            else None
        ),
        metrics=metrics,
        sources=[
            SourceResponse(content=s.content, metadata=s.metadata, relevance=s.relevance)
            for s in result.sources
        ],
    )


@router.get("/suggestions", response_model=list[PageResponse])
async def api_suggestions(question: str = ""):
    return [PageResponse.from_suggestion(p) for p in suggest_pages(question)]


@router.get("/health", response_model=HealthResponse)
def api_health(provider: AgentProvider = Depends(get_agent_provider)):
    connected = True
    try:
        ollama.Client(host=provider.settings.llm.host).list()
    except Exception:
        connected = False

    documents = None
    agent = provider.agent
    if agent is not None:
        try:
            documents = agent.retrieval_tool.collection.count()
        except Exception:
            logger.warning("Could not count indexed passages", exc_info=True)

    return HealthResponse(
        status="healthy" if connected else "degraded",
        ollama_connected=connected,
        agent_ready=agent is not None,
        documents=documents,
    )


app.include_router(router)
