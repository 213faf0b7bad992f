"""Deterministic providers and helpers shared by the test suite."""

import re
from typing import Any

from django_ai_agents.llm import CompletionResponse, Provider, ToolCallRequest

KEYWORDS = (
    "flight",
    "hotel",
    "weather",
    "paris",
    "london",
    "train",
    "price",
    "book",
)


def keyword_vector(text: str, keywords=KEYWORDS) -> list[float]:
    """Count keyword occurrences. The trailing constant keeps vectors non-zero."""
    words = re.findall(r"[a-z]+", text.lower())
    return [float(sum(word.startswith(keyword) for word in words)) for keyword in keywords] + [
        0.1
    ]


def tool_call(name: str, call_id: str = "call_0", **arguments: Any) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name=name, arguments=arguments)


def wants(*calls: ToolCallRequest, text: str = "") -> CompletionResponse:
    return CompletionResponse(text=text, tool_calls=tuple(calls))


class ScriptedProvider(Provider):
    """Provider replaying queued completions and embedding by keyword counts.

    Queued items may be strings, CompletionResponses, exceptions (raised) or callables
    taking the history and returning one of those.
    """

    keywords = KEYWORDS
    embedding_dimensions = len(KEYWORDS) + 1

    def __init__(self, responses=(), *, supports_structured_output=False):
        self.responses = list(responses)
        self.supports_structured_output = supports_structured_output
        self.complete_calls: list[dict[str, Any]] = []
        self.embed_calls: list[list[str]] = []

    @property
    def provider_id(self) -> str:
        return "scripted"

    async def complete(self, history, *, preamble="", tools=(), **params):
        self.complete_calls.append(
            {
                "history": list(history),
                "preamble": preamble,
                "tools": list(tools),
                "params": params,
            }
        )
        if not self.responses:
            raise AssertionError("No scripted response left")
        response = self.responses.pop(0)
        if callable(response) and not isinstance(response, CompletionResponse):
            response = response(history)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return CompletionResponse(text=response)
        return response

    async def embed(self, inputs):
        inputs = list(inputs)
        self.embed_calls.append(inputs)
        return [keyword_vector(text, self.keywords) for text in inputs]


class RepeatingProvider(ScriptedProvider):
    """Provider that answers every completion with the same response."""

    def __init__(self, response, **kwargs):
        super().__init__(**kwargs)
        self.response = response

    async def complete(self, history, *, preamble="", tools=(), **params):
        self.responses = [self.response]
        return await super().complete(history, preamble=preamble, tools=tools, **params)
