import asyncio
import warnings

import pytest

from django_ai_agents.exceptions import MalformedResponseError, RateLimitError, TransportError
from django_ai_agents.llm.retry import call_with_retry


class FlakyCall:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.mark.asyncio
async def test_call_with_retry_returns_first_success():
    call = FlakyCall([])
    assert await call_with_retry(call) == "ok"
    assert call.calls == 1


@pytest.mark.asyncio
async def test_call_with_retry_retries_transport_errors():
    call = FlakyCall([TransportError("reset"), RateLimitError("slow down")])
    assert await call_with_retry(call, max_retries=2) == "ok"
    assert call.calls == 3


@pytest.mark.asyncio
async def test_call_with_retry_gives_up_after_budget():
    call = FlakyCall([TransportError("down")] * 5)
    with pytest.raises(TransportError):
        await call_with_retry(call, max_retries=2)
    assert call.calls == 3


@pytest.mark.asyncio
async def test_call_with_retry_does_not_retry_other_errors():
    call = FlakyCall([MalformedResponseError("garbage")])
    with pytest.raises(MalformedResponseError):
        await call_with_retry(call, max_retries=3)
    assert call.calls == 1


@pytest.mark.asyncio
async def test_call_with_retry_times_out_each_attempt():
    calls = 0

    async def hang():
        nonlocal calls
        calls += 1
        await asyncio.sleep(10)

    with pytest.raises(TransportError) as excinfo:
        await call_with_retry(hang, max_retries=1, timeout=0.01, call_site="complete")

    assert calls == 2
    assert excinfo.value.context["call_site"] == "complete"


@pytest.mark.asyncio
async def test_call_with_retry_passes_arguments():
    received = {}

    async def echo(*args, **kwargs):
        received.update(args=args, kwargs=kwargs)
        return "done"

    await call_with_retry(echo, 1, 2, preamble="hi", max_retries=0)
    assert received == {"args": (1, 2), "kwargs": {"preamble": "hi"}}


@pytest.mark.asyncio
async def test_call_with_retry_backoff_emits_no_warnings():
    call = FlakyCall([TransportError("reset")])
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert await call_with_retry(call) == "ok"
    assert call.calls == 2
