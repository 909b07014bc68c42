"""
Request lifecycle: cancellation, wall-clock deadline and bounded retry for the
single in-flight request of one agent surface.

    idle -> armed -> in-flight -> completed | aborted | timed-out | failed

Arming a new request aborts the previous one. Aborting, whether by the user or
by the deadline, rewrites the still-pending tool invocations of the bound event
log to the errored phase with the cancellation message. A failed request
rewrites them with its error text instead, so it never reads as a user stop.
"""

from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Optional, TypeVar
from contextlib import asynccontextmanager
from enum import Enum
import asyncio
import time
import structlog
from tenacity import (
    AsyncRetrying, RetryCallState, RetryError, retry_if_not_exception_type,
    stop_after_attempt, wait_incrementing
)

from axiomloop.domain.lifecycle.errors import (
    RequestCancelledError, RetriesExhaustedError, describe_transport_error
)
from axiomloop.domain.models.conversation import CANCELLED_MESSAGE
from axiomloop.domain.streaming.event_log import EventLog
from axiomloop.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RequestState(str, Enum):
    """Lifecycle state of a surface's request"""
    IDLE = "idle"
    ARMED = "armed"
    IN_FLIGHT = "in-flight"
    COMPLETED = "completed"
    ABORTED = "aborted"
    TIMED_OUT = "timed-out"
    FAILED = "failed"


LIVE_STATES = (RequestState.ARMED, RequestState.IN_FLIGHT)
TERMINAL_STATES = (RequestState.COMPLETED, RequestState.ABORTED, RequestState.TIMED_OUT, RequestState.FAILED)


class CancellationToken:
    """Cooperative abort signal shared by the controller and the outbound request"""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = CANCELLED_MESSAGE) -> bool:
        """Signal cancellation; returns False when already cancelled"""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise RequestCancelledError(self.reason or CANCELLED_MESSAGE)


class RequestLifecycleController:
    """Governs one surface's in-flight request"""

    def __init__(
        self,
        surface: str,
        timeout_ms: int = 60000,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        event_log: Optional[EventLog] = None
    ):
        self.surface = surface
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.event_log = event_log

        self.state = RequestState.IDLE
        self.token: Optional[CancellationToken] = None
        self.retry_count = 0
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._started_at: Optional[float] = None

    @property
    def in_flight(self) -> bool:
        return self.state in LIVE_STATES

    @property
    def timed_out(self) -> bool:
        return self.state == RequestState.TIMED_OUT

    def arm(self) -> CancellationToken:
        """Allocate a fresh token, aborting whatever request is still live"""

        if self.in_flight:
            self.abort("superseded by a newer request")
        self._clear_timeout()
        self.retry_count = 0
        self.token = CancellationToken()
        self._started_at = None
        self._transition(RequestState.ARMED)
        return self.token

    def begin(self):
        if self.state != RequestState.ARMED:
            self.arm()
        self._started_at = time.monotonic()
        self._transition(RequestState.IN_FLIGHT)

    def start_timeout(
        self,
        ms: Optional[float] = None,
        on_timeout: Optional[Callable[[], Any]] = None
    ) -> Callable[[], None]:
        """Schedule the deadline of the current request; returns its disposer"""

        token = self.token if self.in_flight and self.token is not None else self.arm()
        duration_ms = self.timeout_ms if ms is None else ms

        self._clear_timeout()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(duration_ms / 1000, self._expire, token, duration_ms, on_timeout)
        self._timeout_handle = handle

        def dispose():
            handle.cancel()
            if self._timeout_handle is handle:
                self._timeout_handle = None

        return dispose

    def abort(self, reason: str = CANCELLED_MESSAGE) -> bool:
        """Stop the live request; safe to call any number of times"""
        return self._finish_aborted(RequestState.ABORTED, reason)

    def fail(self, error: str) -> bool:
        """End the live request on a transport or agent error"""
        return self._finish_aborted(RequestState.FAILED, error or "unknown error")

    def complete(self):
        self._clear_timeout()
        self.retry_count = 0
        if self.in_flight:
            self._record_latency(RequestState.COMPLETED)
            self._transition(RequestState.COMPLETED)

    def close(self):
        """Teardown: abort anything live and release the deadline"""
        self.abort("surface closed")
        self._clear_timeout()

    async def retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation`, retrying failures with linear backoff until the retries run out"""

        token = self.token
        try:
            async for attempt in self._retrying(token):
                with attempt:
                    if token is not None:
                        token.raise_if_cancelled()
                    result = await operation()
        except RetryError as exhausted:
            last = exhausted.last_attempt
            error = last.exception()
            logger.error("Retries exhausted", surface=self.surface, attempts=last.attempt_number, error=str(error))
            raise RetriesExhaustedError(last.attempt_number, error) from error
        finally:
            self.retry_count = 0
        return result

    def _retrying(self, token: Optional[CancellationToken]) -> AsyncRetrying:
        delay_s = self.retry_delay_ms / 1000

        async def sleep(seconds: float):
            await self._sleep(seconds, token)

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=delay_s, increment=delay_s),
            retry=retry_if_not_exception_type(RequestCancelledError),
            sleep=sleep,
            before_sleep=self._before_retry,
        )

    def _before_retry(self, retry_state: RetryCallState):
        self.retry_count = retry_state.attempt_number
        metrics.increment_counter("requests.retries", tags={"surface": self.surface})
        logger.warning(
            "Request failed, retrying",
            surface=self.surface,
            attempt=retry_state.attempt_number,
            delay_ms=retry_state.next_action.sleep * 1000 if retry_state.next_action else None,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None
        )

    @asynccontextmanager
    async def request(
        self,
        timeout_ms: Optional[float] = None,
        on_timeout: Optional[Callable[[], Any]] = None
    ) -> AsyncIterator[CancellationToken]:
        """Scope one request: arm, schedule the deadline, begin; always release on exit"""

        token = self.arm()
        dispose = self.start_timeout(timeout_ms, on_timeout)
        self.begin()
        try:
            yield token
        except RequestCancelledError as error:
            if self.in_flight:
                self.abort(error.reason or CANCELLED_MESSAGE)
            raise
        except Exception as error:
            if self.in_flight:
                self.fail(describe_transport_error(error).message)
            raise
        except BaseException:
            if self.in_flight:
                self.abort()
            raise
        else:
            if self.in_flight and not token.cancelled:
                self.complete()
        finally:
            dispose()

    def _expire(self, token: CancellationToken, duration_ms: float, on_timeout: Optional[Callable[[], Any]]):
        self._timeout_handle = None
        if token is not self.token or not self.in_flight:
            return

        metrics.increment_counter("requests.timed_out", tags={"surface": self.surface})
        self._finish_aborted(RequestState.TIMED_OUT, f"request timed out after {duration_ms:g} ms")
        if on_timeout is not None:
            on_timeout()

    def _finish_aborted(self, state: RequestState, reason: str) -> bool:
        self._clear_timeout()
        self.retry_count = 0
        if not self.in_flight or self.token is None:
            return False

        self.token.cancel(reason)
        if self.event_log is not None:
            self.event_log.cancel_pending(reason if state == RequestState.FAILED else CANCELLED_MESSAGE)
        if state == RequestState.ABORTED:
            metrics.increment_counter("requests.aborted", tags={"surface": self.surface})
        elif state == RequestState.FAILED:
            metrics.increment_counter("requests.failed", tags={"surface": self.surface})
        self._record_latency(state)
        self._transition(state, reason)
        return True

    def _clear_timeout(self):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _transition(self, state: RequestState, reason: Optional[str] = None):
        previous = self.state
        self.state = state
        agent_logger.log_request_transition(self.surface, previous.value, state.value, reason)

    def _record_latency(self, state: RequestState):
        if self._started_at is None:
            return
        duration_ms = (time.monotonic() - self._started_at) * 1000
        metrics.record_latency(f"request.{self.surface}", duration_ms, tags={"outcome": state.value})

    @staticmethod
    async def _sleep(seconds: float, token: Optional[CancellationToken]):
        if token is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RequestCancelledError(token.reason or CANCELLED_MESSAGE)


async def iterate_with_cancellation(
    aiterable: AsyncIterable[T],
    token: CancellationToken
) -> AsyncIterator[T]:
    """Yield from `aiterable` until exhausted; a cancelled token interrupts even a stalled stream.

    The source is always closed on exit, including when the consuming task is
    itself cancelled while a read is outstanding.
    """

    iterator = aiterable.__aiter__()

    async def next_item():
        return await iterator.__anext__()

    waiter = asyncio.ensure_future(token.wait())
    pending: Optional[asyncio.Future] = None
    try:
        while True:
            token.raise_if_cancelled()
            pending = asyncio.ensure_future(next_item())
            done, _ = await asyncio.wait({pending, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if pending not in done:
                raise RequestCancelledError(token.reason or CANCELLED_MESSAGE)
            read, pending = pending, None
            try:
                item = read.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        waiter.cancel()
        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
