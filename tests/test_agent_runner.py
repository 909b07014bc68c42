"""Tests for the LangGraph agent loop with a scripted chat model."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from axiomloop.application.schema.events import FinishEvent, FinishReason, TurnEvent
from axiomloop.domain.lifecycle.controller import CancellationToken
from axiomloop.domain.models.conversation import ToolPhase
from axiomloop.domain.orchestration.core.agent_runner import LangGraphAgentRunner
from axiomloop.domain.orchestration.surfaces import RESEARCH_PROMPT
from axiomloop.domain.research.tree_builder import build_concept_tree
from axiomloop.domain.streaming.tool_decoder import decode_turn
from axiomloop.domain.tool.tool_registry import ToolRegistry

from helpers import upsert, user


class ScriptedModel:
    """Chat model stand-in; replays responses and repeats the last one"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.bound_tools = []
        self.prompts = []

    def bind_tools(self, tools):
        self.bound_tools = [tool.name for tool in tools]
        return self

    async def ainvoke(self, messages):
        self.prompts.append(messages)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return response.model_copy(update={"id": None})


def _upsert_call(call_id="c1"):
    return AIMessage(
        content="",
        tool_calls=[{"name": "upsertConceptNode", "args": upsert("n0", "X", status="loading"), "id": call_id}],
    )


async def _collect(runner, turns, surface="research"):
    return [event async for event in runner.stream(turns, surface, CancellationToken())]


class TestLangGraphAgentRunner:
    @pytest.mark.asyncio
    async def test_tool_round_trip_streams_snapshots(self, settings):
        model = ScriptedModel(_upsert_call(), AIMessage(content="Research started"))
        runner = LangGraphAgentRunner(settings=settings, registry=ToolRegistry(), model_factory=lambda: model)

        events = await _collect(runner, [user("research X")])

        assert isinstance(events[-1], FinishEvent)
        assert events[-1].reason == FinishReason.COMPLETED
        snapshots = [decode_turn(event.turn) for event in events if isinstance(event, TurnEvent)]
        assert len(snapshots) == 3
        assert len({snapshot.id for snapshot in snapshots}) == 1
        assert snapshots[0].parts[0].phase == ToolPhase.REQUESTED
        assert snapshots[1].parts[0].phase == ToolPhase.COMPLETED
        assert snapshots[-1].text == "Research started"

        tree = build_concept_tree([user("research X"), snapshots[-1]])
        assert tree.root.node_id == "n0"

    @pytest.mark.asyncio
    async def test_prompt_and_tools_follow_surface(self, settings):
        model = ScriptedModel(AIMessage(content="hello"))
        runner = LangGraphAgentRunner(settings=settings, registry=ToolRegistry(), model_factory=lambda: model)

        await _collect(runner, [user("hi")], surface="research")

        prompt = model.prompts[0]
        assert isinstance(prompt[0], SystemMessage)
        assert prompt[0].content == RESEARCH_PROMPT
        assert isinstance(prompt[1], HumanMessage)
        assert "upsertConceptNode" in model.bound_tools

    @pytest.mark.asyncio
    async def test_step_limit_finishes_with_max_steps(self, settings):
        settings = settings.model_copy(update={"max_steps": 1})
        model = ScriptedModel(_upsert_call())
        runner = LangGraphAgentRunner(settings=settings, registry=ToolRegistry(), model_factory=lambda: model)

        events = await _collect(runner, [user("research X")])

        assert events[-1] == FinishEvent(reason=FinishReason.MAX_STEPS)

    @pytest.mark.asyncio
    async def test_tool_failure_becomes_errored_invocation(self, settings):
        search = AIMessage(content="", tool_calls=[{"name": "searchWeb", "args": {"query": "x"}, "id": "s1"}])
        model = ScriptedModel(search, AIMessage(content="no search available"))
        runner = LangGraphAgentRunner(settings=settings, registry=ToolRegistry(), model_factory=lambda: model)

        events = await _collect(runner, [user("hi")], surface="chat")

        final = decode_turn([event for event in events if isinstance(event, TurnEvent)][-1].turn)
        invocation = final.tool_invocations()[0]
        assert invocation.tool_name == "searchWeb"
        assert invocation.phase == ToolPhase.ERRORED
        assert "not available" in invocation.error_text
