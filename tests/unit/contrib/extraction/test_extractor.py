import pytest
from pydantic import BaseModel

from django_ai_agents.contrib.extraction import ExtractionMode, Extractor
from django_ai_agents.contrib.extraction.base import strip_fences
from django_ai_agents.exceptions import (
    ExtractionError,
    ProviderRefusalError,
    SchemaValidationError,
    TransportError,
)
from django_ai_agents.llm import Role

from testapp.fakes import ScriptedProvider

VALID = '{"name": "Alice", "age": 34}'


class Person(BaseModel):
    name: str
    age: int


@pytest.mark.asyncio
async def test_extract_valid_answer():
    provider = ScriptedProvider([VALID])
    extractor = Extractor(provider, Person, preamble="Extract the person.")

    result = await extractor.extract("Alice is 34 years old")

    assert result.value == Person(name="Alice", age=34)
    assert result.attempts == 1
    assert result.raw_text == VALID


@pytest.mark.asyncio
async def test_extract_puts_schema_in_preamble_without_structured_output():
    provider = ScriptedProvider([VALID])
    extractor = Extractor(provider, Person, preamble="Extract the person.")

    await extractor.extract("Alice is 34 years old")

    call = provider.complete_calls[0]
    assert call["preamble"].startswith("Extract the person.")
    assert '"title": "Person"' in call["preamble"]
    assert "response_format" not in call["params"]


@pytest.mark.asyncio
async def test_extract_requests_structured_output_when_supported():
    provider = ScriptedProvider([VALID], supports_structured_output=True)
    extractor = Extractor(provider, Person, preamble="Extract the person.", temperature=0)

    await extractor.extract("Alice is 34 years old")

    call = provider.complete_calls[0]
    assert call["preamble"] == "Extract the person."
    assert call["params"]["temperature"] == 0
    assert call["params"]["response_format"] == {
        "type": "json_schema",
        "json_schema": {"name": "Person", "schema": Person.model_json_schema()},
    }


@pytest.mark.asyncio
async def test_resilient_mode_reprompts_with_validation_error():
    provider = ScriptedProvider(
        [
            '{"name": "Alice", "age": "thirty-four"}',
            f"```json\n{VALID}\n```",
        ]
    )
    extractor = Extractor(provider, Person, mode=ExtractionMode.RESILIENT)

    result = await extractor.extract("Alice is thirty-four")

    assert result.value == Person(name="Alice", age=34)
    assert result.attempts == 2

    retry_history = provider.complete_calls[1]["history"]
    assert [turn.role for turn in retry_history] == [Role.USER, Role.ASSISTANT, Role.USER]
    assert retry_history[1].content == '{"name": "Alice", "age": "thirty-four"}'
    assert "age" in retry_history[2].content


@pytest.mark.asyncio
async def test_resilient_mode_gives_up_after_budget():
    provider = ScriptedProvider(["not json", "still not json", "never"])
    extractor = Extractor(provider, Person, max_retries=1)

    with pytest.raises(ExtractionError) as excinfo:
        await extractor.extract("Alice is 34 years old")

    assert excinfo.value.attempts == 2
    assert excinfo.value.raw_text == "still not json"
    assert len(provider.complete_calls) == 2


@pytest.mark.asyncio
async def test_fail_fast_mode_raises_on_first_invalid_answer():
    provider = ScriptedProvider(["not json", VALID])
    extractor = Extractor(provider, Person, mode="fail_fast")

    with pytest.raises(SchemaValidationError) as excinfo:
        await extractor.extract("Alice is 34 years old")

    assert excinfo.value.attempts == 1
    assert excinfo.value.raw_text == "not json"
    assert len(provider.complete_calls) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried_without_counting_attempts():
    provider = ScriptedProvider([TransportError("reset"), VALID])
    extractor = Extractor(provider, Person, mode="fail_fast")

    result = await extractor.extract("Alice is 34 years old")

    assert result.attempts == 1
    assert len(provider.complete_calls) == 2


@pytest.mark.asyncio
async def test_refusal_is_not_reprompted():
    provider = ScriptedProvider([ProviderRefusalError("no"), VALID])
    extractor = Extractor(provider, Person)

    with pytest.raises(ProviderRefusalError):
        await extractor.extract("Alice is 34 years old")
    assert len(provider.complete_calls) == 1


@pytest.mark.asyncio
async def test_extract_non_model_target():
    provider = ScriptedProvider(["[1, 2, 3]"])
    extractor = Extractor(provider, list[int])

    result = await extractor.extract("one two three")

    assert result.value == [1, 2, 3]


def test_max_retries_defaults_to_setting(settings):
    settings.AI_AGENTS = {"EXTRACTION_MAX_RETRIES": 5}
    assert Extractor(ScriptedProvider(), Person).max_retries == 5


def test_strip_fences():
    assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_fences('```\n[1]\n```') == "[1]"
    assert strip_fences('  {"a": 1} ') == '{"a": 1}'
