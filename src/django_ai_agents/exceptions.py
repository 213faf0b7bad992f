from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .contrib.index.embedding import EmbeddingReport


class AIAgentsError(Exception):
    """Base class for all errors raised by django_ai_agents.

    `context` collects diagnostic details (iteration, state, call site) as the
    error travels up through the orchestrator.
    """

    code = "error"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message)
        self.context: dict[str, Any] = dict(context)

    def __str__(self):
        message = super().__str__()
        if not self.context:
            return message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{message} ({details})"


# Provider errors


class ProviderError(AIAgentsError):
    code = "provider_error"


class TransportError(ProviderError):
    """The provider could not be reached or did not answer in time. Retryable."""

    code = "transport_error"


class RateLimitError(TransportError):
    code = "rate_limited"


class MalformedResponseError(ProviderError):
    """The provider answered with something that breaks the adapter contract."""

    code = "malformed_response"


class ProviderRefusalError(ProviderError):
    """The provider understood the request and declined to fulfil it."""

    code = "provider_refusal"


# Embedding and index errors


class EmbeddingError(AIAgentsError):
    code = "embedding_error"

    def __init__(self, message: str = "", *, report: "EmbeddingReport | None" = None):
        super().__init__(message)
        self.report = report


class EmptyDocumentError(EmbeddingError):
    code = "empty_document"


class DimensionMismatchError(AIAgentsError):
    code = "dimension_mismatch"


class IndexPreconditionError(AIAgentsError):
    code = "index_precondition"


# Tool errors


class ToolError(AIAgentsError):
    code = "tool_error"


class UnknownToolError(ToolError):
    code = "unknown_tool"


class ToolSchemaError(ToolError):
    code = "tool_schema"


# Validation and orchestration errors


class SchemaValidationError(AIAgentsError):
    code = "schema_validation"


class ExtractionError(SchemaValidationError):
    code = "extraction_failed"

    def __init__(self, message: str = "", *, raw_text: str = "", attempts: int = 0):
        super().__init__(message)
        self.raw_text = raw_text
        self.attempts = attempts


class IterationLimitExceeded(AIAgentsError):
    code = "iteration_limit_exceeded"
