import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Iterable, TypeVar

from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.core.validators import validate_slug

from django_ai_agents.conf import get_setting
from django_ai_agents.contrib.index.embedding import EmbeddingReport
from django_ai_agents.contrib.tools import Tool, ToolRegistry

from .config import AgentConfig, Retrieval, ToolRetrieval
from .conversation import Conversation
from .orchestrator import AgentResponse, AgentRun

if TYPE_CHECKING:
    from django_ai_agents.contrib.index import Document
    from django_ai_agents.llm import Provider

logger = logging.getLogger(__name__)

AgentT = TypeVar("AgentT", bound="Agent")

CONFIG_OPTIONS = (
    "provider",
    "preamble",
    "tools",
    "retrieval",
    "dynamic_tools",
    "context_documents",
    "max_tool_iterations",
    "temperature",
    "max_tokens",
    "additional_params",
    "provider_max_retries",
    "provider_timeout",
    "tool_timeout",
)


class Agent:
    """Base class for agents.

    Declare an agent by subclassing:

        class TravelAgent(Agent):
            slug = "travel"
            preamble = "You are a travel agent."
            provider = LLMService.create(provider="openai", model="gpt-4o-mini")
            tools = [search_flights]

    Any attribute can also be passed to the constructor. The resulting `config` is
    built once and shared by every invocation.
    """

    slug: str
    name: str = ""
    description: str = ""

    provider: ClassVar["Provider"]
    preamble: ClassVar[str] = ""
    tools: ClassVar[Iterable[Tool | Callable]] = ()
    retrieval: ClassVar[Retrieval | None] = None
    dynamic_tools: ClassVar[ToolRetrieval | None] = None
    context_documents: ClassVar[Iterable["Document"]] = ()
    max_tool_iterations: ClassVar[int | None] = None
    temperature: ClassVar[float | None] = None
    max_tokens: ClassVar[int | None] = None
    additional_params: ClassVar[dict[str, Any] | None] = None
    provider_max_retries: ClassVar[int | None] = None
    provider_timeout: ClassVar[float | None] = None
    tool_timeout: ClassVar[float | None] = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        if hasattr(cls, "slug"):
            try:
                validate_slug(cls.slug)
            except ValidationError as e:
                raise ValueError(
                    f"Agent {cls.__name__} has an invalid slug: {cls.slug}. Use a valid “slug” consisting of letters, numbers, underscores or hyphens."
                ) from e

    def __init__(self, **options: Any):
        unknown = set(options) - set(CONFIG_OPTIONS)
        if unknown:
            raise TypeError(
                f"{self.__class__.__name__} got unexpected option(s): "
                f"{', '.join(sorted(unknown))}"
            )
        for option, value in options.items():
            setattr(self, option, value)

        if getattr(self, "provider", None) is None:
            raise ImproperlyConfigured(f"{self.__class__.__name__} requires a provider")

        self.config = self.build_config()

    def build_config(self) -> AgentConfig:
        registry = ToolRegistry(self.tools)
        static_tools = tuple(registry.names())
        if self.dynamic_tools is not None:
            for item in self.dynamic_tools.tools:
                registry.register(item)

        max_tool_iterations = self.max_tool_iterations
        if max_tool_iterations is None:
            max_tool_iterations = get_setting("MAX_TOOL_ITERATIONS")

        return AgentConfig(
            provider=self.provider,
            preamble=self.preamble,
            tools=registry,
            static_tools=static_tools,
            retrieval=self.retrieval,
            dynamic_tools=self.dynamic_tools,
            context_documents=tuple(self.context_documents),
            max_tool_iterations=max_tool_iterations,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            additional_params=MappingProxyType(dict(self.additional_params or {})),
            provider_max_retries=self.provider_max_retries,
            provider_timeout=self.provider_timeout,
            tool_timeout=self.tool_timeout,
        )

    async def index_tools(self) -> EmbeddingReport:
        """Embed the dynamic tools into their retrieval index."""
        if self.config.dynamic_tools is None:
            raise ImproperlyConfigured(
                f"{self.__class__.__name__} does not have dynamic tools"
            )
        documents = self.config.tools.documents(
            name
            for name in self.config.tools.names()
            if name not in self.config.static_tools
        )
        logger.info(f"Indexing {len(documents)} dynamic tools for {self.__class__.__name__}")
        return await self.config.dynamic_tools.index.update(documents)

    async def invoke(
        self, conversation: Conversation, user_input: str
    ) -> AgentResponse:
        """Answer `user_input` in the context of `conversation`.

        On success the user input, any tool exchanges and the answer are appended to
        the conversation. On failure the conversation is left untouched.
        """
        run = AgentRun(self.config, conversation.turns, user_input)
        response = await run.execute()
        conversation.extend(response.new_turns)
        return response

    async def prompt(self, user_input: str) -> str:
        """One-shot invocation on an empty conversation."""
        response = await self.invoke(Conversation(), user_input)
        return response.text


class AgentRegistry:
    def __init__(self):
        self._agents: dict[str, type[Agent]] = {}

    def register(
        self, cls: type[AgentT] | None = None
    ) -> type[AgentT] | Callable[[type[AgentT]], type[AgentT]]:
        def decorator(agent_cls: type[AgentT]) -> type[AgentT]:
            agent_slug = agent_cls.slug
            self._agents[agent_slug] = agent_cls
            return agent_cls

        if cls is None:
            # Called with parentheses: @registry.register()
            return decorator
        else:
            # Called without parentheses: @registry.register
            return decorator(cls)

    def get(self, slug: str) -> type[Agent]:
        if slug not in self._agents:
            raise KeyError(f"Agent '{slug}' not found")
        return self._agents[slug]

    def list(self) -> dict[str, type[Agent]]:
        return self._agents.copy()


registry = AgentRegistry()
