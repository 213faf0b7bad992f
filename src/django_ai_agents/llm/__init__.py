from .base import LLMService, Provider
from .messages import CompletionResponse, Role, ToolCallRequest, ToolDefinition, Turn
from .prompt import Prompt

__all__ = [
    "CompletionResponse",
    "LLMService",
    "Prompt",
    "Provider",
    "Role",
    "ToolCallRequest",
    "ToolDefinition",
    "Turn",
]
