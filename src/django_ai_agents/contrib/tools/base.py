import asyncio
import inspect
import json
import logging
import types
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    Annotated,
    Any,
    Callable,
    Iterable,
    Literal,
    Sequence,
    Union,
    get_args,
    get_origin,
)

from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError
from django.core.validators import validate_slug
from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from django_ai_agents.conf import get_setting
from django_ai_agents.contrib.index.schema import Document
from django_ai_agents.exceptions import ToolSchemaError, UnknownToolError
from django_ai_agents.llm.messages import ToolCallRequest, ToolDefinition

logger = logging.getLogger(__name__)

JSON_TYPES: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}


def annotation_schema(annotation: Any) -> dict[str, Any]:
    """JSON schema for a Python type annotation. Unknown types accept anything."""
    origin = get_origin(annotation)
    if origin is Annotated:
        return annotation_schema(get_args(annotation)[0])
    if origin in (Union, types.UnionType):
        options = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(options) == 1:
            return annotation_schema(options[0])
        return {"anyOf": [annotation_schema(option) for option in options]}
    if origin is Literal:
        return {"enum": list(get_args(annotation))}
    if origin in (list, tuple, set):
        schema: dict[str, Any] = {"type": "array"}
        args = get_args(annotation)
        if origin is list and args:
            schema["items"] = annotation_schema(args[0])
        return schema
    if origin is dict:
        return {"type": "object"}
    if annotation in JSON_TYPES:
        return {"type": JSON_TYPES[annotation]}
    return {}


@dataclass
class ToolParameter:
    name: str
    type: Any
    description: str
    required: bool = True

    def as_dict(self):
        return {
            "name": self.name,
            "type": getattr(self.type, "__name__", str(self.type)),
            "description": self.description,
        }

    def as_schema(self) -> dict[str, Any]:
        schema = annotation_schema(self.type)
        if self.description:
            schema["description"] = self.description
        return schema


def accepts_extra_arguments(func: Callable) -> bool:
    return any(
        parameter.kind is parameter.VAR_KEYWORD
        for parameter in inspect.signature(func).parameters.values()
    )


def derive_parameters(func: Callable) -> list[ToolParameter]:
    """Derive parameters from a function's type signature.

    `Annotated[type, "description"]` supplies the parameter description.
    """
    parameters = []
    signature = inspect.signature(func)
    annotations = inspect.get_annotations(func, eval_str=True)
    for name, parameter in signature.parameters.items():
        if name == "self" or parameter.kind in (
            parameter.VAR_POSITIONAL,
            parameter.VAR_KEYWORD,
        ):
            continue
        base_type = annotations.get(name, Any)
        description = ""
        if get_origin(base_type) is Annotated:
            base_type, *metadata = get_args(base_type)
            if metadata and isinstance(metadata[0], str):
                description = metadata[0]
        parameters.append(
            ToolParameter(
                name=name,
                type=base_type,
                description=description,
                required=parameter.default is parameter.empty,
            )
        )
    return parameters


class Tool(ABC):
    """Base class for tools an agent can ask the model to call.

    Arguments are described either by an explicit JSON `schema`, or by the
    `parameters` list, which defaults to the annotated keyword arguments of `call`:

        class SearchFlights(Tool):
            name = "search_flights"
            description = "Search for flights between two airports"

            async def call(
                self,
                *,
                source: Annotated[str, "IATA code of the departure airport"],
                destination: Annotated[str, "IATA code of the arrival airport"],
            ):
                ...

    Tool implementations are responsible for the safety of their own side effects:
    a call may be cancelled at any await point, or time out.
    """

    name: str
    description: str = ""
    parameters: list[ToolParameter] | None = None
    schema: dict[str, Any] | None = None
    #: Texts used to find this tool by similarity when it is retrieved dynamically.
    embedding_docs: list[str] | None = None
    #: Per-call timeout in seconds, overriding the agent's tool timeout.
    timeout: float | None = None
    #: Whether arguments beyond `parameters` are accepted, true when `call` takes **kwargs.
    extra_arguments: bool = False

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "call" in cls.__dict__ and "extra_arguments" not in cls.__dict__:
            cls.extra_arguments = accepts_extra_arguments(cls.call)
        if "parameters" not in cls.__dict__ and "call" in cls.__dict__:
            cls.parameters = derive_parameters(cls.call)

    @abstractmethod
    async def call(self, **kwargs) -> Any:
        """Run the tool"""

    @property
    def input_schema(self) -> dict[str, Any]:
        if self.schema is not None:
            return self.schema
        parameters = self.parameters or []
        return {
            "type": "object",
            "properties": {
                parameter.name: parameter.as_schema() for parameter in parameters
            },
            "required": [
                parameter.name for parameter in parameters if parameter.required
            ],
            "additionalProperties": self.extra_arguments,
        }

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.input_schema
        )

    def as_document(self) -> Document:
        """Document used to index the tool for dynamic retrieval."""
        texts = self.embedding_docs or [self.description or self.name]
        return Document(id=self.name, content="\n".join(texts), metadata={"tool": self.name})


class FunctionTool(Tool):
    """Tool wrapping a plain function or coroutine function."""

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        embedding_docs: list[str] | None = None,
        timeout: float | None = None,
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = description or inspect.getdoc(func) or ""
        self.parameters = derive_parameters(func)
        self.extra_arguments = accepts_extra_arguments(func)
        self.embedding_docs = embedding_docs
        self.timeout = timeout

    async def call(self, **kwargs) -> Any:
        if inspect.iscoroutinefunction(self.func):
            return await self.func(**kwargs)
        return await sync_to_async(self.func, thread_sensitive=False)(**kwargs)


def tool(func: Callable | None = None, **options):
    """Turn a function into a FunctionTool.

    Usable bare (`@tool`) or with options (`@tool(name="lookup")`).
    """

    def decorator(f: Callable) -> FunctionTool:
        return FunctionTool(f, **options)

    if func is None:
        return decorator
    return decorator(func)


@dataclass(frozen=True)
class ToolResult:
    call: ToolCallRequest
    output: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_text(self) -> str:
        if self.error is not None:
            return json.dumps({"error": self.error})
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, default=str)


def format_validation_errors(errors) -> str:
    messages = []
    for error in errors:
        location = "/".join(str(part) for part in error.path) or "arguments"
        messages.append(f"{location}: {error.message}")
    return "; ".join(messages)


class ToolRegistry:
    """Name keyed set of tools with argument validation and execution."""

    def __init__(self, tools: Iterable[Tool | Callable] = ()):
        self._tools: dict[str, Tool] = {}
        self._validators: dict[str, Draft7Validator] = {}
        for item in tools:
            self.register(item)

    def register(self, item: Tool | type[Tool] | Callable) -> Tool:
        if isinstance(item, type) and issubclass(item, Tool):
            item = item()
        elif not isinstance(item, Tool):
            item = FunctionTool(item)

        try:
            validate_slug(item.name)
        except ValidationError as e:
            raise ToolSchemaError(
                f"Tool {item.__class__.__name__} has an invalid name: {item.name}. Use a "
                "valid “slug” consisting of letters, numbers, underscores or hyphens."
            ) from e
        if item.name in self._tools:
            raise ToolSchemaError(f"A tool named '{item.name}' is already registered")

        schema = item.input_schema
        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as e:
            raise ToolSchemaError(
                f"Tool '{item.name}' has an invalid parameter schema: {e.message}"
            ) from e

        self._tools[item.name] = item
        self._validators[item.name] = Draft7Validator(schema)
        return item

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise UnknownToolError(f"Tool '{name}' is not registered", tool=name)
        return self._tools[name]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self):
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self, names: Iterable[str] | None = None) -> list[ToolDefinition]:
        """Definitions in registration order, optionally limited to `names`."""
        if names is None:
            return [item.definition() for item in self._tools.values()]
        return [self.get(name).definition() for name in names]

    def documents(self, names: Iterable[str] | None = None) -> list[Document]:
        """Retrieval documents in registration order, optionally limited to `names`."""
        if names is None:
            return [item.as_document() for item in self._tools.values()]
        return [self.get(name).as_document() for name in names]

    def validate_arguments(self, name: str, arguments: dict[str, Any]) -> str | None:
        """Describe what is wrong with `arguments`, or return None when they are valid."""
        validator = self._validators[self.get(name).name]
        errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
        if not errors:
            return None
        return format_validation_errors(errors)

    async def execute(
        self, call: ToolCallRequest, *, timeout: float | None = None
    ) -> ToolResult:
        """Run a single tool call.

        Unknown tools raise UnknownToolError. Invalid arguments, failures and timeouts
        are returned as error results so the model can correct itself.
        """
        item = self.get(call.name)

        problem = self.validate_arguments(call.name, call.arguments)
        if problem is not None:
            logger.warning(f"Rejected arguments for tool {call.name}: {problem}")
            return ToolResult(
                call=call, error=f"Invalid arguments for tool '{call.name}': {problem}"
            )

        if item.timeout is not None:
            timeout = item.timeout
        elif timeout is None:
            timeout = get_setting("TOOL_TIMEOUT")

        logger.debug(f"Calling tool {call.name} with {call.arguments}")
        try:
            output = await asyncio.wait_for(item.call(**call.arguments), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {call.name} timed out after {timeout}s")
            return ToolResult(
                call=call, error=f"Tool '{call.name}' timed out after {timeout}s"
            )
        except (UnknownToolError, ToolSchemaError):
            raise
        except Exception as e:
            logger.warning(f"Tool {call.name} failed: {e!r}")
            return ToolResult(call=call, error=f"{e.__class__.__name__}: {e}")

        return ToolResult(call=call, output=output)

    async def dispatch(
        self, calls: Sequence[ToolCallRequest], *, timeout: float | None = None
    ) -> list[ToolResult]:
        """Run tool calls concurrently. Results are returned in request order.

        If any call raises, the remaining calls are cancelled and awaited before the
        first error is re-raised.
        """
        for call in calls:
            self.get(call.name)
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(self.execute(call, timeout=timeout))
                    for call in calls
                ]
        except ExceptionGroup as e:
            raise e.exceptions[0]
        return [task.result() for task in tasks]
