"""Domain models for the portfolio copilot."""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class RetrievedPassage:
    """A passage returned by the vector index."""

    content: str
    metadata: dict = field(default_factory=dict)
    relevance: float | None = None


@dataclass(frozen=True)
class PageSuggestion:
    """A link to a site section related to the question."""

    title: str
    href: str
    description: str | None = None

    def to_dict(self) -> dict:
        data = {"title": self.title, "href": self.href}
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass(frozen=True)
class PerformanceMetrics:
    """Timing breakdown of a single query, in milliseconds."""

    total_ms: float
    retrieval_ms: float
    model_ms: float

    @classmethod
    def from_timings(cls, total_s: float, retrieval_s: float) -> "PerformanceMetrics":
        """Build metrics from wall-clock seconds.

        Model time is whatever was not spent in retrieval, clamped at zero
        so a retrieval measurement that overshoots the wall clock never
        produces a negative value.
        """
        total_ms = max(0.0, total_s * 1000)
        retrieval_ms = max(0.0, retrieval_s * 1000)
        return cls(
            total_ms=round(total_ms, 2),
            retrieval_ms=round(retrieval_ms, 2),
            model_ms=round(max(0.0, total_ms - retrieval_ms), 2),
        )


@dataclass(frozen=True)
class QueryResult:
    """The final response of a non-streaming query."""

    answer: str
    suggestions: list[PageSuggestion] | None = None
    metrics: PerformanceMetrics | None = None
    sources: list[RetrievedPassage] = field(default_factory=list)


@dataclass(frozen=True)
class RetrievalOutcome:
    """What the retrieval tool hands back to the model, plus telemetry."""

    text: str
    passages: list[RetrievedPassage] = field(default_factory=list)
    duration_s: float = 0.0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class AgentPhase(enum.Enum):
    """Where an agent run is in its tool-then-generate cycle."""

    AWAITING_TOOL_DECISION = "awaiting_tool_decision"
    TOOL_INVOKED = "tool_invoked"
    GENERATING = "generating"
    DONE = "done"


@dataclass(frozen=True)
class ToolInvoked:
    name: str
    query: str


@dataclass(frozen=True)
class ToolCompleted:
    name: str
    duration_s: float
    passage_count: int
    failed: bool = False


@dataclass(frozen=True)
class TextDelta:
    text: str


AgentEvent = ToolInvoked | ToolCompleted | TextDelta


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """A message in the client-side conversation.

    Assistant messages are filled in place while ``streaming`` is True and
    must not change afterwards.
    """

    role: Role
    content: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    suggestions: list[PageSuggestion] | None = None
    streaming: bool = False
