"""Tests for the linear progress builder."""

import json

from axiomloop.domain.models.conversation import ChatStatus, Role, Turn, UnclassifiedPart
from axiomloop.domain.models.view_models import StepKind, StepStatus
from axiomloop.domain.progress.progress_builder import (
    WEBSITE_MILESTONE, build_sessions, extract_website_result, latest_progress_step
)
from axiomloop.domain.streaming.event_log import EventLog

from helpers import agent, reasoning, text, tool, upsert, user


def _ids(session):
    return [step.id for step in session.steps]


class TestSessions:
    def test_turns_are_grouped_by_user_turn(self):
        turns = [
            agent(text("orphan")),
            user("first"),
            agent(text("one")),
            Turn(role=Role.SYSTEM, parts=[]),
            user("second"),
            agent(text("two")),
            agent(text("three")),
        ]

        sessions = build_sessions(turns, ChatStatus.READY)

        assert [session.user_message for session in sessions] == ["first", "second"]
        assert sessions[0].agent_turn_indices == [2]
        assert sessions[1].agent_turn_indices == [5, 6]
        assert all(session.completed for session in sessions)

    def test_user_turn_without_parts_starts_no_session(self):
        turns = [Turn(role=Role.USER, parts=[]), user("real")]

        assert len(build_sessions(turns)) == 1

    def test_missing_user_text_falls_back(self):
        turns = [Turn(role=Role.USER, parts=[UnclassifiedPart(raw={"type": "file"})])]

        assert build_sessions(turns)[0].user_message == "New request"

    def test_streaming_request_is_initializing(self):
        sessions = build_sessions([user("hi")], ChatStatus.STREAMING)

        assert sessions[0].is_active
        assert sessions[0].steps[0].kind == StepKind.INITIALIZING
        assert sessions[0].steps[0].status == StepStatus.ACTIVE

    def test_submitted_request_is_not_active_yet(self):
        sessions = build_sessions([user("hi")], ChatStatus.SUBMITTED)

        assert not sessions[0].is_active
        assert sessions[0].steps[0].kind == StepKind.INITIALIZING
        assert sessions[0].steps[0].status == StepStatus.COMPLETED

    def test_only_the_last_session_is_active(self):
        turns = [user("a"), agent(text("x")), user("b")]

        sessions = build_sessions(turns, ChatStatus.STREAMING)

        assert [session.is_active for session in sessions] == [False, True]
        assert sessions[0].steps[0].status == StepStatus.COMPLETED


class TestSteps:
    def test_completed_run_yields_stable_ids(self):
        turns = [
            user("hi"),
            agent(
                reasoning("look it up"),
                tool("searchWeb", "c1", "output-available", input={"query": "x"}, output="r"),
                text("answer"),
            ),
        ]

        session = build_sessions(turns, ChatStatus.READY)[0]

        assert _ids(session) == [
            "init-0",
            "thinking-0-0",
            "toolcall-searchWeb-0-0",
            "toolresult-searchWeb-0-0",
            "milestone-0",
        ]
        call = session.steps[2]
        assert call.label == "invoked `searchWeb`"
        assert call.status == StepStatus.COMPLETED
        assert session.steps[3].label == "result from `searchWeb`"
        assert session.steps[4].label == "Response ready"
        assert session.findings == 1
        assert session.sources == 1

    def test_requested_call_is_active_while_streaming(self):
        turns = [user("hi"), agent(tool("searchWeb", "c1", "input-available"))]

        session = build_sessions(turns, ChatStatus.STREAMING)[0]

        call = session.steps[-1]
        assert call.kind == StepKind.TOOL_CALL
        assert call.label == "invoking `searchWeb`"
        assert call.status == StepStatus.ACTIVE
        assert session.steps[0].status == StepStatus.COMPLETED

    def test_call_in_earlier_turn_is_not_active(self):
        turns = [
            user("hi"),
            agent(tool("searchWeb", "c1", "input-available")),
            agent(reasoning("still going")),
        ]

        session = build_sessions(turns, ChatStatus.STREAMING)[0]

        assert session.steps[1].status == StepStatus.COMPLETED
        assert session.steps[2].status == StepStatus.ACTIVE

    def test_result_resolves_call_across_turns(self):
        turns = [
            user("hi"),
            agent(tool("searchWeb", None, "input-available")),
            agent(tool("searchWeb", None, "output-available", output="r")),
        ]

        session = build_sessions(turns, ChatStatus.READY)[0]

        kinds = [step.kind for step in session.steps]
        assert kinds == [StepKind.INITIALIZING, StepKind.TOOL_CALL, StepKind.TOOL_RESULT]
        assert session.steps[1].label == "invoked `searchWeb`"

    def test_result_with_new_id_does_not_resolve_another_call(self):
        turns = [
            user("hi"),
            agent(
                tool("searchWeb", "a", "input-available"),
                tool("searchWeb", "b", "output-available", output="r"),
            ),
        ]

        session = build_sessions(turns, ChatStatus.STREAMING)[0]

        calls = [step for step in session.steps if step.kind == StepKind.TOOL_CALL]
        assert [(step.label, step.status) for step in calls] == [
            ("invoking `searchWeb`", StepStatus.ACTIVE),
            ("invoked `searchWeb`", StepStatus.COMPLETED),
        ]

    def test_reasoning_label_is_truncated(self):
        long_reasoning = "r" * 250
        turns = [user("hi"), agent(reasoning(long_reasoning))]

        step = build_sessions(turns, ChatStatus.READY)[0].steps[1]

        assert step.label == "r" * 100 + "..."
        assert step.detail == long_reasoning

    def test_short_reasoning_is_not_truncated(self):
        turns = [user("hi"), agent(reasoning("brief"))]

        assert build_sessions(turns)[0].steps[1].label == "brief"

    def test_failed_tool_is_distinct_from_cancelled(self):
        turns = [
            user("hi"),
            agent(
                tool("searchWeb", "c1", "output-error", error_text="quota exceeded"),
                tool("extractWebContent", "c2", "output-error", error_text="execution was cancelled"),
            ),
        ]

        steps = build_sessions(turns, ChatStatus.READY)[0].steps

        assert steps[1].label == "`searchWeb` failed"
        assert steps[1].status == StepStatus.COMPLETED
        assert steps[1].detail == "quota exceeded"
        assert steps[2].label == "cancelled `extractWebContent`"
        assert steps[2].status == StepStatus.CANCELLED
        assert not any(step.kind == StepKind.TOOL_RESULT for step in steps)

    def test_unknown_parts_are_skipped(self):
        turns = [
            user("hi"),
            agent({"type": "step-start"}, {"type": "dynamic-tool", "state": "input-available"}, text("ok")),
        ]

        session = build_sessions(turns, ChatStatus.READY)[0]

        assert _ids(session) == ["init-0", "milestone-0"]

    def test_milestone_follows_streaming_status(self):
        turns = [user("hi"), agent(text("partial answer"))]

        streaming = build_sessions(turns, ChatStatus.STREAMING, WEBSITE_MILESTONE)[0].steps[-1]
        ready = build_sessions(turns, ChatStatus.READY, WEBSITE_MILESTONE)[0].steps[-1]

        assert (streaming.label, streaming.status) == ("Creating website...", StepStatus.ACTIVE)
        assert (ready.label, ready.status) == ("Website created!", StepStatus.COMPLETED)

    def test_axioms_are_counted_per_session(self):
        turns = [
            user("research"),
            agent(
                tool("upsertConceptNode", "u1", "input-available", input=upsert("n1", "Bit", "n0", 1, is_axiom=True)),
                tool("upsertConceptNode", "u2", "output-available", input=upsert("n1", "Bit", "n0", 1, is_axiom=True),
                     output=upsert("n1", "Bit", "n0", 1, is_axiom=True)),
            ),
        ]

        assert build_sessions(turns, ChatStatus.READY)[0].axioms == 1


class TestProperties:
    def test_rebuild_is_deterministic(self):
        turns = [
            user("hi"),
            agent(reasoning("a"), tool("searchWeb", "c1", "input-available"), turn_id="a1"),
            user("again"),
            agent(tool("searchWeb", None, "output-available", output="r"), text("done")),
        ]

        assert build_sessions(turns, ChatStatus.STREAMING) == build_sessions(turns, ChatStatus.STREAMING)

    def test_abort_cancels_active_call_and_keeps_completed_steps(self):
        log = EventLog([
            user("hi"),
            agent(
                tool("searchWeb", "c1", "output-available", output="r"),
                tool("extractWebContent", "c2", "input-available"),
                turn_id="a1",
            ),
        ])
        before = build_sessions(log.turns, ChatStatus.STREAMING)[0]
        assert before.steps[-1].status == StepStatus.ACTIVE

        log.cancel_pending()
        after = build_sessions(log.turns, ChatStatus.READY)[0]

        assert after.steps[:-1] == before.steps[:-1]
        assert after.steps[-1].id == before.steps[-1].id
        assert after.steps[-1].status == StepStatus.CANCELLED


class TestQueries:
    def test_latest_progress_step_prefers_active_step(self):
        turns = [user("hi"), agent(reasoning("a"), tool("searchWeb", "c1", "input-available"))]

        step = latest_progress_step(build_sessions(turns, ChatStatus.STREAMING))

        assert step.kind == StepKind.TOOL_CALL

    def test_latest_progress_step_falls_back_to_last(self):
        turns = [user("hi"), agent(text("done"))]

        assert latest_progress_step(build_sessions(turns, ChatStatus.READY)).id == "milestone-0"
        assert latest_progress_step([]) is None

    def test_extract_website_result(self):
        page = json.dumps({"html": "<html></html>"})
        turns = [user("make a page"), agent(text("not json")), agent(text(page)), agent(text("{\"other\": 1}"))]

        assert extract_website_result(turns) == {"html": "<html></html>"}
        assert extract_website_result([user("nothing")]) is None
