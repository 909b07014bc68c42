from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
import structlog

from axiomloop.domain.orchestration.core.agent_runner import AgentRunner, LangGraphAgentRunner
from axiomloop.domain.streaming.streaming_handler import StreamingHandler
from axiomloop.domain.streaming.tool_decoder import decode_turns

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api")

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def get_runner(app: FastAPI) -> AgentRunner:
    """The injected runner, or a LangGraph runner built on first use"""

    if app.state.runner is None:
        app.state.runner = LangGraphAgentRunner(settings=app.state.settings)
    return app.state.runner


async def stream_surface(surface: str, request: Request) -> Response:
    try:
        body = await request.json()
        messages = body.get("messages") if isinstance(body, dict) else None
        if not isinstance(messages, list):
            return PlainTextResponse("Invalid messages format", status_code=400)

        turns = decode_turns(messages)
        settings = request.app.state.settings
        handler = StreamingHandler(get_runner(request.app), surface, settings.max_duration_s(surface))
        logger.info("Agent request accepted", surface=surface, turns=len(turns))
        return StreamingResponse(handler.stream(turns), media_type=NDJSON_MEDIA_TYPE)

    except Exception as error:
        logger.error("Agent request failed", surface=surface, error=str(error))
        return PlainTextResponse(str(error) or "unknown error", status_code=500)


@router.post("/chat")
async def chat_endpoint(request: Request):
    return await stream_surface("chat", request)


@router.post("/dev")
async def dev_endpoint(request: Request):
    return await stream_surface("dev", request)


@router.post("/research")
async def research_endpoint(request: Request):
    return await stream_surface("research", request)
