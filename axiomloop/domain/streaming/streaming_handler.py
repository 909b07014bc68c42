from typing import AsyncIterator, Optional, Sequence
import structlog

from axiomloop.application.schema.events import (
    ErrorCode, ErrorEvent, FinishEvent, StreamEventType, encode_event
)
from axiomloop.domain.lifecycle.controller import RequestLifecycleController, iterate_with_cancellation
from axiomloop.domain.lifecycle.errors import RequestCancelledError
from axiomloop.domain.models.conversation import Turn
from axiomloop.domain.orchestration.core.agent_runner import AgentRunner
from axiomloop.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Runs one agent request and renders it as NDJSON stream lines"""

    def __init__(self, runner: AgentRunner, surface: str, max_duration_s: float):
        self.runner = runner
        self.surface = surface
        self.max_duration_s = max_duration_s
        self.controller = RequestLifecycleController(surface, timeout_ms=int(max_duration_s * 1000))

    async def stream(self, turns: Sequence[Turn]) -> AsyncIterator[str]:
        token = self.controller.arm()
        dispose = self.controller.start_timeout()
        self.controller.begin()
        finished = False
        events = iterate_with_cancellation(self.runner.stream(turns, self.surface, token), token)

        try:
            async for event in events:
                if event.type == StreamEventType.FINISH:
                    finished = True
                    agent_logger.log_stream_event(self.surface, event.type.value, {"reason": event.reason.value})
                yield encode_event(event)
                if finished:
                    break

            if not finished:
                yield encode_event(FinishEvent())
            self.controller.complete()

        except RequestCancelledError as error:
            if self.controller.timed_out:
                message = f"Request timed out after {self.max_duration_s:g} seconds"
                agent_logger.log_stream_event(self.surface, "error", {"code": ErrorCode.TIMEOUT.value})
                yield encode_event(ErrorEvent(error_text=message, error_code=ErrorCode.TIMEOUT))
            else:
                logger.info("Agent stream cancelled", surface=self.surface, reason=error.reason)

        except Exception as error:
            logger.error("Agent stream failed", surface=self.surface, error=str(error), exc_info=True)
            self.controller.fail(str(error) or "unknown error")
            yield encode_event(ErrorEvent(error_text=str(error) or "unknown error", error_code=ErrorCode.AGENT_ERROR))

        finally:
            dispose()
            await events.aclose()
            if self.controller.in_flight:
                self.controller.abort("client disconnected")

    def cancel(self, reason: Optional[str] = None):
        self.controller.abort(reason or "client disconnected")
