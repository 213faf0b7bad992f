from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from django.core.exceptions import ImproperlyConfigured

from django_ai_agents.contrib.tools import Tool, ToolRegistry

if TYPE_CHECKING:
    from django_ai_agents.contrib.index import Document, VectorIndex
    from django_ai_agents.llm import Provider


@dataclass(frozen=True)
class Retrieval:
    """Retrieve the `count` items most similar to the latest user input from `index`."""

    index: "VectorIndex"
    count: int = 3

    def __post_init__(self):
        if self.count < 1:
            raise ImproperlyConfigured("Retrieval count must be at least 1")


@dataclass(frozen=True)
class ToolRetrieval(Retrieval):
    """Tools offered to the model only when retrieved from `index` by similarity.

    The index is populated from the tools' `embedding_docs`, see `Agent.index_tools`.
    """

    tools: tuple[Tool, ...] = ()


@dataclass(frozen=True)
class AgentConfig:
    """Everything an invocation needs. Shared read-only between invocations."""

    provider: "Provider"
    preamble: str = ""
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    #: Names of the tools always offered to the model
    static_tools: tuple[str, ...] = ()
    retrieval: Retrieval | None = None
    dynamic_tools: ToolRetrieval | None = None
    context_documents: tuple["Document", ...] = ()
    max_tool_iterations: int = 10
    temperature: float | None = None
    max_tokens: int | None = None
    additional_params: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )
    provider_max_retries: int | None = None
    provider_timeout: float | None = None
    tool_timeout: float | None = None

    def __post_init__(self):
        if self.max_tool_iterations < 0:
            raise ImproperlyConfigured("max_tool_iterations cannot be negative")
        for name in self.static_tools:
            if name not in self.tools:
                raise ImproperlyConfigured(f"Static tool '{name}' is not registered")

    def completion_params(self) -> dict[str, Any]:
        params = dict(self.additional_params)
        if self.temperature is not None:
            params["temperature"] = self.temperature
        if self.max_tokens is not None:
            params["max_tokens"] = self.max_tokens
        return params
