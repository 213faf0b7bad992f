import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Sequence

from any_llm import AnyLLM

from ..exceptions import (
    DimensionMismatchError,
    MalformedResponseError,
    ProviderError,
    ProviderRefusalError,
    RateLimitError,
    TransportError,
)
from .messages import CompletionResponse, Role, ToolCallRequest, ToolDefinition, Turn

logger = logging.getLogger(__name__)

# Exception class names used by the HTTP clients underneath provider SDKs for
# connection level failures.
TRANSPORT_ERROR_NAMES = frozenset(
    {
        "APIConnectionError",
        "APITimeoutError",
        "ConnectError",
        "ConnectTimeout",
        "ReadTimeout",
        "RemoteProtocolError",
        "ServiceUnavailableError",
    }
)


class Provider(ABC):
    """A remote model service exposing completion and embedding.

    Implementations must not keep state between calls; the same provider
    instance is shared by every agent invocation that uses it.
    """

    #: Length of every vector returned by `embed`, if known up front.
    embedding_dimensions: int | None = None
    #: Whether `complete` honours a json_schema `response_format`.
    supports_structured_output: bool = False

    @property
    def provider_id(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    async def complete(
        self,
        history: Sequence[Turn],
        *,
        preamble: str = "",
        tools: Iterable[ToolDefinition] = (),
        **params: Any,
    ) -> CompletionResponse:
        """Ask the model for the next assistant turn."""

    @abstractmethod
    async def embed(self, inputs: Sequence[str]) -> list[list[float]]:
        """Return one vector per input, in input order."""


def translate_provider_error(exc: Exception) -> ProviderError | None:
    """Map an SDK exception onto the provider error taxonomy.

    Returns None for exceptions that are not recognisably provider failures.
    """
    if isinstance(exc, ProviderError):
        return exc

    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)

    if status == 429:
        return RateLimitError(str(exc), status=status)
    if isinstance(status, int) and status >= 500:
        return TransportError(str(exc), status=status)
    if isinstance(status, int) and 400 <= status < 500:
        return ProviderRefusalError(str(exc), status=status)

    if isinstance(exc, (ConnectionError, TimeoutError)) or any(
        cls.__name__ in TRANSPORT_ERROR_NAMES for cls in type(exc).__mro__
    ):
        return TransportError(str(exc))
    return None


class LLMService(Provider):
    """Provider backed by any-llm"""

    def __init__(
        self,
        *,
        client: AnyLLM,
        model: str,
        embedding_dimensions: int | None = None,
        supports_structured_output: bool = True,
    ):
        self.client = client
        self.model = model
        self.embedding_dimensions = embedding_dimensions
        self.supports_structured_output = supports_structured_output

    @classmethod
    def create(
        cls,
        *,
        provider: str,
        model: str,
        embedding_dimensions: int | None = None,
        **kwargs,
    ) -> "LLMService":
        client = AnyLLM.create(provider=provider, **kwargs)
        return cls(
            client=client, model=model, embedding_dimensions=embedding_dimensions
        )

    @property
    def provider_id(self) -> str:
        return f"{self.__class__.__name__}:{self.client.PROVIDER_NAME}:{self.model}"

    def embedding(self, inputs, **kwargs):
        return self.client._embedding(model=self.model, inputs=inputs, **kwargs)

    async def complete(
        self,
        history: Sequence[Turn],
        *,
        preamble: str = "",
        tools: Iterable[ToolDefinition] = (),
        **params: Any,
    ) -> CompletionResponse:
        messages = build_messages(history, preamble=preamble)
        tool_payload = [
            {"type": "function", "function": tool.as_dict()} for tool in tools
        ]
        if tool_payload:
            params["tools"] = tool_payload

        try:
            response = await self.client.acompletion(
                model=self.model, messages=messages, **params
            )
        except Exception as e:
            translated = translate_provider_error(e)
            if translated is None or translated is e:
                raise
            raise translated from e

        return parse_completion(response)

    async def embed(self, inputs: Sequence[str]) -> list[list[float]]:
        inputs = list(inputs)
        if not inputs:
            return []

        try:
            response = await asyncio.to_thread(self.embedding, inputs)
        except Exception as e:
            translated = translate_provider_error(e)
            if translated is None or translated is e:
                raise
            raise translated from e

        data = list(getattr(response, "data", None) or [])
        if len(data) != len(inputs):
            raise MalformedResponseError(
                f"Embedding response contained {len(data)} vectors for {len(inputs)} inputs"
            )
        # Providers report the input position; restore input order from it.
        if all(getattr(item, "index", None) is not None for item in data):
            data.sort(key=lambda item: item.index)

        vectors = [list(item.embedding) for item in data]
        if self.embedding_dimensions is not None:
            for vector in vectors:
                if len(vector) != self.embedding_dimensions:
                    raise DimensionMismatchError(
                        f"Embedding of dimension {len(vector)} returned by {self.provider_id}, "
                        f"expected {self.embedding_dimensions}"
                    )
        return vectors


def build_messages(history: Sequence[Turn], *, preamble: str = "") -> list[dict]:
    """Convert turns into OpenAI-style chat messages."""
    messages: list[dict[str, Any]] = []
    if preamble:
        messages.append({"role": "system", "content": preamble})

    for turn in history:
        if turn.role is Role.TOOL:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": turn.tool_call_id,
                    "content": turn.content,
                }
            )
            continue

        message: dict[str, Any] = {"role": turn.role.value, "content": turn.content}
        if turn.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments),
                    },
                }
                for call in turn.tool_calls
            ]
        messages.append(message)
    return messages


def parse_completion(response: Any) -> CompletionResponse:
    """Normalise an OpenAI-style ChatCompletion."""
    choices = getattr(response, "choices", None)
    if not choices:
        raise MalformedResponseError("Response did not contain any choices")

    choice = choices[0]
    message = getattr(choice, "message", None)
    if message is None:
        raise MalformedResponseError("Response choice did not contain a message")

    refusal = getattr(message, "refusal", None)
    if getattr(choice, "finish_reason", None) == "content_filter" or refusal:
        raise ProviderRefusalError(refusal or "Response was blocked by content filter")

    tool_calls = []
    for position, call in enumerate(getattr(message, "tool_calls", None) or []):
        function = call.function
        try:
            arguments = json.loads(function.arguments or "{}")
        except (TypeError, json.JSONDecodeError) as e:
            raise MalformedResponseError(
                f"Arguments for tool call '{function.name}' are not valid JSON"
            ) from e
        if not isinstance(arguments, dict):
            raise MalformedResponseError(
                f"Arguments for tool call '{function.name}' must be a JSON object"
            )
        tool_calls.append(
            ToolCallRequest(
                id=getattr(call, "id", None) or f"call_{position}",
                name=function.name,
                arguments=arguments,
            )
        )

    content = getattr(message, "content", None) or ""
    if not content and not tool_calls:
        raise MalformedResponseError("Response did not contain a message or tool call")

    return CompletionResponse(text=content, tool_calls=tuple(tool_calls), raw=response)
