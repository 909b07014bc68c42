"""Tests for the surface client using an in-process transport."""

import asyncio
import json

import httpx
import pytest

from axiomloop.application.client.stream_client import SurfaceClient
from axiomloop.domain.models.conversation import CANCELLED_MESSAGE, ChatStatus, ToolPhase
from axiomloop.domain.models.view_models import NodeStatus, StepStatus

from helpers import tool, upsert


def _turn_line(*parts, turn_id="a1"):
    return json.dumps({"type": "turn", "turn": {"id": turn_id, "role": "assistant", "parts": list(parts)}}) + "\n"


FINISH = json.dumps({"type": "finish", "reason": "completed"}) + "\n"


def _ndjson(*lines):
    return httpx.Response(200, content="".join(lines).encode(), headers={"content-type": "application/x-ndjson"})


class TestSend:
    @pytest.mark.asyncio
    async def test_snapshots_are_folded_into_one_turn(self, settings):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return _ndjson(
                _turn_line(tool("searchWeb", "c1", "input-available", input={"query": "x"})),
                _turn_line(tool("searchWeb", "c1", "output-available", input={"query": "x"}, output="r"),
                           {"type": "text", "text": "answer"}),
                FINISH,
            )

        client = SurfaceClient("chat", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        status = await client.send("hello")
        await client.aclose()

        assert status == ChatStatus.READY
        assert client.error is None
        assert len(client.event_log) == 2
        assert requests[0]["messages"][0]["parts"] == [{"type": "text", "text": "hello"}]

        session = client.progress()[0]
        assert [step.id for step in session.steps] == [
            "init-0", "toolcall-searchWeb-0-0", "toolresult-searchWeb-0-0", "milestone-0"
        ]
        assert client.latest_step().label == "Response ready"

    @pytest.mark.asyncio
    async def test_research_tree_is_rebuilt_from_stream(self, settings):
        def handler(request):
            return _ndjson(
                _turn_line(tool("upsertConceptNode", "u0", "input-available", input=upsert("n0", "X", status="loading"))),
                FINISH,
            )

        client = SurfaceClient("research", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        await client.send("research X")
        await client.aclose()

        tree = client.research_tree()
        assert tree.root.node_id == "n0"
        assert tree.root.status == NodeStatus.LOADING

    @pytest.mark.asyncio
    async def test_error_event_sets_banner_and_fails_pending(self, settings):
        def handler(request):
            return _ndjson(
                _turn_line(tool("searchWeb", "c1", "input-available")),
                json.dumps({"type": "error", "errorText": "Request timed out after 30 seconds", "errorCode": "timeout"}) + "\n",
            )

        client = SurfaceClient("chat", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        status = await client.send("hello")
        await client.aclose()

        assert status == ChatStatus.ERROR
        assert client.error.message == "Request timed out after 30 seconds"
        assert client.error.hint is not None
        invocation = client.event_log.turns[-1].tool_invocations()[0]
        assert invocation.phase == ToolPhase.ERRORED
        assert invocation.error_text == "Request timed out after 30 seconds"
        assert client.latest_step().label == "`searchWeb` failed"

    @pytest.mark.asyncio
    async def test_http_failure_is_retried_then_reported(self, settings):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(500, text="upstream exploded")

        client = SurfaceClient("dev", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        status = await client.send("build a page")
        await client.aclose()

        assert status == ChatStatus.ERROR
        assert len(calls) == settings.max_retries + 1
        assert client.error.message == "upstream exploded"
        assert client.error.hint is None

    @pytest.mark.asyncio
    async def test_retry_recovers_from_transient_failure(self, settings):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused")
            return _ndjson(_turn_line({"type": "text", "text": "ok"}), FINISH)

        client = SurfaceClient("chat", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        status = await client.send("hello")
        await client.aclose()

        assert status == ChatStatus.READY
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_retry_after_mid_stream_failure_drops_partial_turns(self, settings):
        calls = []

        async def broken():
            yield _turn_line(tool("searchWeb", "c1", "input-available"), turn_id="attempt-1").encode()
            raise httpx.ReadError("connection reset")

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(200, content=broken(), headers={"content-type": "application/x-ndjson"})
            return _ndjson(
                _turn_line(tool("searchWeb", "c2", "output-available", output="r"), turn_id="attempt-2"),
                FINISH,
            )

        client = SurfaceClient("chat", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        status = await client.send("hello")
        await client.aclose()

        assert status == ChatStatus.READY
        assert len(calls) == 2
        assert [turn.id for turn in client.event_log.turns][1:] == ["attempt-2"]
        steps = client.progress()[0].steps
        assert all(step.status != StepStatus.CANCELLED for step in steps)
        assert [step.label for step in steps if step.tool_name] == ["invoked `searchWeb`", "result from `searchWeb`"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_mark_pending_calls_failed(self, settings):
        async def broken():
            yield _turn_line(tool("searchWeb", "c1", "input-available")).encode()
            raise httpx.ReadError("connection reset")

        def handler(request):
            return httpx.Response(200, content=broken(), headers={"content-type": "application/x-ndjson"})

        client = SurfaceClient("chat", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        status = await client.send("hello")
        await client.aclose()

        assert status == ChatStatus.ERROR
        assert len(client.event_log) == 2
        invocation = client.event_log.turns[-1].tool_invocations()[0]
        assert invocation.error_text == "connection reset"
        assert invocation.error_text != CANCELLED_MESSAGE
        assert client.latest_step().label == "`searchWeb` failed"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_cancels_pending_invocations(self, settings):
        async def body():
            yield _turn_line(
                tool("searchWeb", "c1", "output-available", output="r"),
                tool("extractWebContent", "c2", "input-available"),
            ).encode()
            await asyncio.sleep(10)

        def handler(request):
            return httpx.Response(200, content=body(), headers={"content-type": "application/x-ndjson"})

        client = SurfaceClient("chat", base_url="http://test", settings=settings, transport=httpx.MockTransport(handler))
        task = asyncio.create_task(client.send("hello"))
        for _ in range(100):
            await asyncio.sleep(0.01)
            if len(client.event_log) == 2:
                break

        steps = client.progress()[0].steps
        assert steps[-1].status == StepStatus.ACTIVE

        client.stop()
        status = await asyncio.wait_for(task, timeout=2)
        await client.aclose()

        assert status == ChatStatus.READY
        assert client.error is None
        steps = client.progress()[0].steps
        assert steps[-1].status == StepStatus.CANCELLED
        assert steps[1].status == StepStatus.COMPLETED


def test_client_is_exported_from_package():
    import axiomloop

    assert axiomloop.SurfaceClient is SurfaceClient
    assert "SurfaceClient" in axiomloop.__all__
