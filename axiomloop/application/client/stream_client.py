"""
Client for the agent endpoints.

``SurfaceClient`` owns the event log of one surface. ``send`` appends the user
turn, posts the log and upserts every streamed turn snapshot into the log; the
progress and research views are rebuilt from the log on demand. The request is
governed by a lifecycle controller bound to the same log, so stopping or timing
out rewrites still-pending tool invocations.
"""

from typing import Dict, Any, List, Optional
from uuid import uuid4
import httpx
import structlog

from axiomloop.application.schema.events import (
    ErrorEvent, FinishEvent, StreamEvent, TurnEvent, decode_event
)
from axiomloop.domain.lifecycle.controller import (
    CancellationToken, RequestLifecycleController, iterate_with_cancellation
)
from axiomloop.domain.lifecycle.errors import (
    ErrorBanner, RequestCancelledError, RetriesExhaustedError, TransportError,
    describe_transport_error
)
from axiomloop.domain.models.conversation import ChatStatus, user_turn
from axiomloop.domain.models.view_models import ConceptTree, ProgressStep, Session
from axiomloop.domain.orchestration.surfaces import get_surface
from axiomloop.domain.progress.progress_builder import (
    build_sessions, extract_website_result, latest_progress_step
)
from axiomloop.domain.research.tree_builder import build_concept_tree
from axiomloop.domain.streaming.event_log import EventLog
from axiomloop.domain.streaming.tool_decoder import decode_turn, encode_turn
from axiomloop.infrastructure.config.settings import Settings, get_settings
from axiomloop.infrastructure.observability.logging import request_context

logger = structlog.get_logger(__name__)


class SurfaceClient:
    """One agent surface as seen from the front end"""

    def __init__(
        self,
        surface: str,
        base_url: str = "http://localhost:8000",
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.surface = get_surface(surface)
        self.settings = settings or get_settings()
        self.event_log = EventLog()
        self.status = ChatStatus.IDLE
        self.error: Optional[ErrorBanner] = None
        self.controller = RequestLifecycleController(
            surface,
            timeout_ms=self.settings.request_timeout_ms,
            max_retries=self.settings.max_retries,
            retry_delay_ms=self.settings.retry_delay_ms,
            event_log=self.event_log,
        )
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=None)

    async def send(self, text: str) -> ChatStatus:
        """Submit a prompt and fold the streamed response into the event log"""

        self.error = None
        try:
            with request_context(self.surface.name, uuid4().hex):
                async with self.controller.request() as token:
                    self.event_log.append(user_turn(text, turn_id=f"user-{uuid4().hex}"))
                    self.status = ChatStatus.SUBMITTED
                    payload = {"messages": [encode_turn(turn) for turn in self.event_log.turns]}
                    mark = len(self.event_log)

                    terminal = await self.controller.retry(lambda: self._stream_once(payload, token, mark))
                    if isinstance(terminal, ErrorEvent):
                        raise TransportError(terminal.error_text)

            self.status = ChatStatus.READY

        except RequestCancelledError as error:
            if self.controller.timed_out:
                self._fail(TransportError(error.reason))
            else:
                self.status = ChatStatus.READY

        except (TransportError, RetriesExhaustedError) as error:
            self._fail(error)

        return self.status

    def stop(self):
        """User stop; pending invocations of the in-flight request end as cancelled"""

        if self.controller.abort():
            self.status = ChatStatus.READY

    async def aclose(self):
        self.controller.close()
        await self._client.aclose()

    def progress(self) -> List[Session]:
        return build_sessions(self.event_log.turns, self.status, self.surface.milestone)

    def latest_step(self) -> Optional[ProgressStep]:
        return latest_progress_step(self.progress())

    def research_tree(self, freeze_structure: bool = True) -> ConceptTree:
        return build_concept_tree(self.event_log.turns, freeze_structure=freeze_structure)

    def website(self) -> Optional[Dict[str, Any]]:
        return extract_website_result(self.event_log.turns)

    async def _stream_once(
        self,
        payload: Dict[str, Any],
        token: CancellationToken,
        mark: int
    ) -> Optional[StreamEvent]:
        """Run one attempt; returns the terminal event, raises TransportError on failure.

        Turns streamed by an earlier failed attempt are dropped first, so a retry
        starts from the log as it was when the prompt was submitted.
        """

        self.event_log.truncate(mark)
        try:
            async with self._client.stream("POST", f"/api/{self.surface.name}", json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(body or f"HTTP {response.status_code}", status_code=response.status_code)

                self.status = ChatStatus.STREAMING
                async for line in iterate_with_cancellation(response.aiter_lines(), token):
                    event = decode_event(line)
                    if isinstance(event, TurnEvent):
                        turn = decode_turn(event.turn)
                        if turn is not None:
                            self.event_log.upsert(turn)
                    elif isinstance(event, (ErrorEvent, FinishEvent)):
                        return event
                return None

        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

    def _fail(self, error: BaseException):
        self.error = describe_transport_error(error)
        self.status = ChatStatus.ERROR
        logger.warning("Request failed", surface=self.surface.name, error=self.error.message)
