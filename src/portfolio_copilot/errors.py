"""Exception hierarchy for the query pipeline."""


class CopilotError(Exception):
    """Base class for all portfolio copilot errors."""


class ConfigurationError(CopilotError):
    """A required credential or setting is missing."""


class InvalidQuestionError(CopilotError, ValueError):
    """The question is missing, not a string, or blank."""


class RetrievalFailure(CopilotError):
    """The vector index call failed."""


class QueryError(CopilotError):
    """A non-streaming query failed; the cause is chained."""


class StreamError(CopilotError):
    """Incremental generation failed after the stream started."""
