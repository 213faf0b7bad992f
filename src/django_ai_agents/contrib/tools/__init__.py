from .base import (
    FunctionTool,
    Tool,
    ToolParameter,
    ToolRegistry,
    ToolResult,
    tool,
)

__all__ = [
    "FunctionTool",
    "Tool",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "tool",
]
