from .base import Agent, AgentRegistry, registry
from .config import AgentConfig, Retrieval, ToolRetrieval
from .conversation import Conversation
from .orchestrator import AgentResponse, AgentRun, AgentState

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentRegistry",
    "AgentResponse",
    "AgentRun",
    "AgentState",
    "Conversation",
    "Retrieval",
    "ToolRetrieval",
    "registry",
]
