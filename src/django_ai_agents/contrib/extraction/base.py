import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Sequence, TypeVar

from pydantic import TypeAdapter, ValidationError

from django_ai_agents.conf import get_setting
from django_ai_agents.exceptions import ExtractionError
from django_ai_agents.llm.base import Provider
from django_ai_agents.llm.messages import Turn
from django_ai_agents.llm.prompt import EXTRACTION_RETRY, extraction_preamble
from django_ai_agents.llm.retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

FENCE_RE = re.compile(r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class ExtractionMode(str, Enum):
    FAIL_FAST = "fail_fast"
    RESILIENT = "resilient"


@dataclass(frozen=True)
class ExtractionResult(Generic[T]):
    value: T
    raw_text: str
    attempts: int


def strip_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    match = FENCE_RE.match(text)
    if match:
        return match.group(1)
    return text.strip()


def schema_name(target: Any) -> str:
    name = getattr(target, "__name__", None) or "output"
    return re.sub(r"[^a-zA-Z0-9_-]", "_", name)


class Extractor(Generic[T]):
    """Turn free text into a value of `target` type using a completion provider.

    In resilient mode, an answer that fails validation is sent back to the model with
    the validation error, up to `max_retries` times. In fail-fast mode the first
    invalid answer raises ExtractionError.

        extractor = Extractor(provider, Person, preamble="Extract the person.")
        result = await extractor.extract("Alice is 34 years old")
        result.value  # Person(name="Alice", age=34)
    """

    def __init__(
        self,
        provider: Provider,
        target: type[T],
        *,
        preamble: str = "",
        mode: ExtractionMode | str = ExtractionMode.RESILIENT,
        max_retries: int | None = None,
        provider_max_retries: int | None = None,
        timeout: float | None = None,
        **params: Any,
    ):
        self.provider = provider
        self.target = target
        self.adapter = TypeAdapter(target)
        self.schema = self.adapter.json_schema()
        self.preamble = preamble
        self.mode = ExtractionMode(mode)
        self.max_retries = (
            max_retries
            if max_retries is not None
            else get_setting("EXTRACTION_MAX_RETRIES")
        )
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.provider_max_retries = provider_max_retries
        self.timeout = timeout
        self.params = params

    @property
    def retry_budget(self) -> int:
        if self.mode is ExtractionMode.FAIL_FAST:
            return 0
        return self.max_retries

    def build_request(self) -> tuple[str, dict[str, Any]]:
        params = dict(self.params)
        if self.provider.supports_structured_output:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": schema_name(self.target),
                    "schema": self.schema,
                },
            }
            return self.preamble, params
        return extraction_preamble(self.preamble, self.schema), params

    def parse(self, text: str) -> T:
        return self.adapter.validate_json(strip_fences(text))

    async def extract(
        self, text: str, history: Sequence[Turn] = ()
    ) -> ExtractionResult[T]:
        preamble, params = self.build_request()
        transcript = [*history, Turn.user(text)]

        attempts = 0
        while True:
            attempts += 1
            response = await call_with_retry(
                self.provider.complete,
                list(transcript),
                preamble=preamble,
                max_retries=self.provider_max_retries,
                timeout=self.timeout,
                call_site="extraction",
                **params,
            )
            raw_text = response.text
            try:
                value = self.parse(raw_text)
            except ValidationError as e:
                logger.warning(
                    f"Extraction attempt {attempts} for {schema_name(self.target)} "
                    f"failed validation: {e.error_count()} error(s)"
                )
                if attempts > self.retry_budget:
                    raise ExtractionError(
                        f"Could not extract {schema_name(self.target)} after "
                        f"{attempts} attempt(s): {e}",
                        raw_text=raw_text,
                        attempts=attempts,
                    ) from e
                transcript.append(Turn.assistant(raw_text))
                transcript.append(Turn.user(EXTRACTION_RETRY.render(error=str(e))))
                continue

            logger.debug(f"Extracted {schema_name(self.target)} in {attempts} attempt(s)")
            return ExtractionResult(value=value, raw_text=raw_text, attempts=attempts)
