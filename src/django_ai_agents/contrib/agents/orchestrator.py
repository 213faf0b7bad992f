"""
The agent control loop.

An invocation is an `AgentRun` moving through explicit states:

    IDLE -> DRAFTING -> AWAITING_PROVIDER -> (TOOL_DISPATCH -> AWAITING_PROVIDER)*
         -> RESPONDING -> IDLE

Any error moves the run to FAILED and is re-raised with the iteration, state and
call site recorded in its `context`. The caller's conversation is only extended by
`Agent.invoke` once a run reaches RESPONDING.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from django_ai_agents.exceptions import AIAgentsError, IterationLimitExceeded
from django_ai_agents.llm.messages import CompletionResponse, ToolDefinition, Turn
from django_ai_agents.llm.prompt import with_context
from django_ai_agents.llm.retry import call_with_retry

if TYPE_CHECKING:
    from django_ai_agents.contrib.index import Document

    from .config import AgentConfig

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    DRAFTING = "drafting"
    AWAITING_PROVIDER = "awaiting_provider"
    TOOL_DISPATCH = "tool_dispatch"
    RESPONDING = "responding"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentResponse:
    text: str
    #: Turns produced by this invocation, starting with the user's input
    new_turns: tuple[Turn, ...]
    transitions: tuple[AgentState, ...]
    tool_iterations: int
    #: Documents rendered into this invocation's preamble
    context: tuple["Document", ...] = ()

    def __str__(self):
        return self.text


class AgentRun:
    """A single invocation of an agent over a snapshot of conversation history."""

    def __init__(self, config: "AgentConfig", history: Sequence[Turn], user_input: str):
        self.config = config
        self.history = tuple(history)
        self.user_input = user_input
        self.new_turns: list[Turn] = [Turn.user(user_input)]
        self.state = AgentState.IDLE
        self.transitions: list[AgentState] = [AgentState.IDLE]
        self.tool_iterations = 0
        self.call_site = "draft"

    @property
    def transcript(self) -> list[Turn]:
        return [*self.history, *self.new_turns]

    def transition(self, state: AgentState):
        logger.debug(f"Agent run {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    async def execute(self) -> AgentResponse:
        try:
            return await self._execute()
        except AIAgentsError as e:
            e.context.setdefault("state", self.state.value)
            e.context.setdefault("iteration", self.tool_iterations)
            e.context.setdefault("turn", len(self.history))
            e.context.setdefault("call_site", self.call_site)
            self.transition(AgentState.FAILED)
            logger.error(f"Agent run failed: {e}")
            raise

    async def _execute(self) -> AgentResponse:
        self.transition(AgentState.DRAFTING)
        context = await self.retrieve_context()
        preamble = with_context(self.config.preamble, context)
        tools = await self.select_tools()

        while True:
            self.transition(AgentState.AWAITING_PROVIDER)
            response = await self.call_provider(preamble, tools)

            if not response.wants_tools:
                self.new_turns.append(Turn.assistant(response.text))
                self.transition(AgentState.RESPONDING)
                logger.info(
                    f"Agent run responded after {self.tool_iterations} tool iteration(s)"
                )
                result = AgentResponse(
                    text=response.text,
                    new_turns=tuple(self.new_turns),
                    transitions=tuple(self.transitions),
                    tool_iterations=self.tool_iterations,
                    context=tuple(context),
                )
                self.transition(AgentState.IDLE)
                return result

            if self.tool_iterations >= self.config.max_tool_iterations:
                raise IterationLimitExceeded(
                    f"Model requested tools after {self.tool_iterations} tool "
                    f"iteration(s), the limit is {self.config.max_tool_iterations}"
                )

            self.transition(AgentState.TOOL_DISPATCH)
            await self.dispatch_tools(response)

    async def retrieve_context(self) -> list["Document"]:
        context = list(self.config.context_documents)
        retrieval = self.config.retrieval
        if retrieval is None or not self.user_input.strip():
            return context

        self.call_site = "retrieval"
        results = await retrieval.index.search(self.user_input, n=retrieval.count)
        logger.debug(f"Retrieved {len(results)} context item(s)")
        context.extend(result.item.as_document() for result in results)
        return context

    async def select_tools(self) -> list[ToolDefinition]:
        names = list(self.config.static_tools)
        dynamic_tools = self.config.dynamic_tools
        if dynamic_tools is not None and self.user_input.strip():
            self.call_site = "tool_retrieval"
            results = await dynamic_tools.index.search(
                self.user_input, n=dynamic_tools.count
            )
            for result in results:
                name = result.item.metadata.get("tool", result.item.document_id)
                if name not in self.config.tools:
                    logger.warning(f"Ignoring retrieved tool '{name}', it is not registered")
                    continue
                if name not in names:
                    names.append(name)
        return self.config.tools.definitions(names)

    async def call_provider(
        self, preamble: str, tools: list[ToolDefinition]
    ) -> CompletionResponse:
        self.call_site = "complete"
        return await call_with_retry(
            self.config.provider.complete,
            self.transcript,
            preamble=preamble,
            tools=tools,
            max_retries=self.config.provider_max_retries,
            timeout=self.config.provider_timeout,
            call_site=self.call_site,
            **self.config.completion_params(),
        )

    async def dispatch_tools(self, response: CompletionResponse):
        self.call_site = "tool_dispatch"
        calls = response.tool_calls
        logger.info(
            f"Dispatching {len(calls)} tool call(s): {', '.join(call.name for call in calls)}"
        )
        results = await self.config.tools.dispatch(
            calls, timeout=self.config.tool_timeout
        )
        self.new_turns.append(Turn.assistant(response.text, calls))
        self.new_turns.extend(
            Turn.tool_result(result.call, result.as_text()) for result in results
        )
        self.tool_iterations += 1
