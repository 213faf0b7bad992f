"""
Message types exchanged with completion providers.

These are the provider-agnostic shapes of a chat transcript: turns, tool call
requests and tool definitions. Providers translate them to and from their own wire
formats.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolDefinition:
    """What the model is told about a tool: its name, purpose and argument schema."""

    name: str
    description: str
    parameters: dict[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(frozen=True)
class ToolCallRequest:
    """A request from the model to run a tool with the given arguments."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str
    tool_calls: tuple[ToolCallRequest, ...] = ()
    # Only set on tool result turns
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: str, tool_calls: tuple[ToolCallRequest, ...] = ()
    ) -> "Turn":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, call: ToolCallRequest, content: str) -> "Turn":
        return cls(
            role=Role.TOOL, content=content, tool_call_id=call.id, name=call.name
        )


@dataclass(frozen=True)
class CompletionResponse:
    """Normalised provider answer: text plus zero or more tool call requests."""

    text: str
    tool_calls: tuple[ToolCallRequest, ...] = ()
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)
