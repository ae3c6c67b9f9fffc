import asyncio
import inspect
import random
import uuid
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger
from supermodel_client.errors import (
    JobFailedError,
    PollingAbortedError,
    PollingTimeoutError,
    ProtocolViolationError,
)
from supermodel_client.models import (
    AsyncClientConfig,
    AsyncEnvelope,
    JobStatus,
    PollingProgress,
)

T = TypeVar("T")


def generate_idempotency_key() -> str:
    """Returns a random version 4 UUID, falling back to a non-cryptographic source"""
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        logger.warning(
            "No secure random source available, using degraded idempotency key generator"
        )
        return str(uuid.UUID(int=random.getrandbits(128), version=4))


async def sleep_with_abort(delay_ms: int, signal: Optional[asyncio.Event] = None) -> None:
    """Sleeps for delay_ms unless the signal fires first, in which case raises PollingAbortedError"""
    if signal is None:
        await asyncio.sleep(delay_ms / 1000)
        return

    if signal.is_set():
        raise PollingAbortedError()

    # wait_for cancels the inner wait() on timeout, which drops its waiter from the event
    try:
        await asyncio.wait_for(signal.wait(), timeout=delay_ms / 1000)
    except asyncio.TimeoutError:
        return

    raise PollingAbortedError()


def _retry_delay_ms(envelope: AsyncEnvelope, default_retry_interval_ms: int) -> int:
    if envelope.retry_after is not None and envelope.retry_after > 0:
        return max(1, round(envelope.retry_after * 1000))
    return default_retry_interval_ms


async def _report_progress(
    callback: Callable[[PollingProgress], object], progress: PollingProgress
) -> None:
    outcome = callback(progress)
    if inspect.isawaitable(outcome):
        await outcome


async def poll_until_complete(
    api_call: Callable[[], Awaitable[AsyncEnvelope[T]]],
    config: AsyncClientConfig,
) -> T:
    """Re-issue api_call until the job reaches a terminal status and return its result"""
    loop = asyncio.get_event_loop()
    start_time = loop.time()
    attempt = 0
    job_id = ""
    signal = config.signal

    while True:
        if signal is not None and signal.is_set():
            raise PollingAbortedError()

        if attempt >= config.max_polling_attempts:
            raise PollingTimeoutError(job_id or "unknown", config.timeout_ms, attempt)

        attempt += 1
        elapsed_ms = int((loop.time() - start_time) * 1000)

        if elapsed_ms >= config.timeout_ms:
            raise PollingTimeoutError(job_id or "unknown", config.timeout_ms, attempt - 1)

        envelope = await api_call()
        job_id = envelope.job_id
        status = envelope.status
        logger.debug(
            f"Job {job_id} is {status.value} "
            f"(attempt {attempt}/{config.max_polling_attempts}, {elapsed_ms}ms elapsed)"
        )

        if config.on_polling_progress is not None:
            next_retry_ms = (
                None
                if status.is_terminal
                else _retry_delay_ms(envelope, config.default_retry_interval_ms)
            )
            await _report_progress(
                config.on_polling_progress,
                PollingProgress(
                    job_id=job_id,
                    status=status,
                    attempt=attempt,
                    max_attempts=config.max_polling_attempts,
                    elapsed_ms=elapsed_ms,
                    next_retry_ms=next_retry_ms,
                ),
            )

        if status is JobStatus.completed:
            if envelope.result is not None:
                return envelope.result
            raise ProtocolViolationError(
                job_id, f"Job {job_id} completed but result is missing"
            )

        if status is JobStatus.failed:
            raise JobFailedError(job_id, envelope.error or "Unknown error")

        delay_ms = _retry_delay_ms(envelope, config.default_retry_interval_ms)
        logger.debug(f"Job {job_id} still {status.value}, waiting {delay_ms}ms before next attempt")
        await sleep_with_abort(delay_ms, signal)
