import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from ..conf import get_setting
from ..exceptions import TransportError

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


def _log_retry(retry_state: RetryCallState):
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Provider call failed with {exc!r}, retry {retry_state.attempt_number}"
    )


async def call_with_retry(
    func: Callable[..., Awaitable[ResultT]],
    *args: Any,
    max_retries: int | None = None,
    timeout: float | None = None,
    call_site: str = "provider",
    **kwargs: Any,
) -> ResultT:
    """Await `func` with a per-attempt timeout, retrying transport failures.

    Timeouts count as transport failures. Any other error is raised immediately.
    """
    if max_retries is None:
        max_retries = get_setting("PROVIDER_MAX_RETRIES")
    if timeout is None:
        timeout = get_setting("PROVIDER_TIMEOUT")

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(TransportError),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_random_exponential(
            multiplier=get_setting("PROVIDER_RETRY_INITIAL_WAIT"),
            max=get_setting("PROVIDER_RETRY_MAX_WAIT"),
        ),
        before_sleep=_log_retry,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            try:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout)
            except asyncio.TimeoutError as e:
                raise TransportError(
                    f"Timed out after {timeout}s", call_site=call_site
                ) from e
    return result
