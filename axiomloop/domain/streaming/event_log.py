from typing import Dict, List, Optional, Sequence, Tuple
import structlog

from axiomloop.domain.models.conversation import (
    CANCELLED_MESSAGE, Part, ToolInvocationPart, ToolPhase, Turn
)

logger = structlog.get_logger(__name__)


class EventLog:
    """Append-only log of turns owned by the transport layer.

    Turns are only appended, except that the latest snapshot of a streamed turn
    replaces the previous snapshot carrying the same id. Builders read
    ``turns`` and never mutate the log.
    """

    def __init__(self, turns: Optional[Sequence[Turn]] = None):
        self._turns: List[Turn] = list(turns or [])
        self.version = 0

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def append(self, turn: Turn):
        """Append a new turn"""
        self._turns.append(turn)
        self.version += 1

    def upsert(self, turn: Turn):
        """Apply a streamed turn snapshot, merging with an earlier snapshot of the same id"""

        if turn.id is not None:
            for index, existing in enumerate(self._turns):
                if existing.id == turn.id:
                    self._turns[index] = merge_turn_snapshot(existing, turn)
                    self.version += 1
                    return
        self.append(turn)

    def truncate(self, length: int) -> int:
        """Drop every turn after the first ``length``; returns how many were dropped"""

        dropped = max(len(self._turns) - length, 0)
        if dropped:
            del self._turns[length:]
            self.version += 1
            logger.info("Dropped turns of a failed attempt", count=dropped)
        return dropped

    def cancel_pending(self, message: str = CANCELLED_MESSAGE) -> int:
        """Rewrite every still-pending invocation of the in-flight request to errored"""

        turns, rewritten = cancel_pending_invocations(self._turns, message)
        if rewritten:
            self._turns = list(turns)
            self.version += 1
            logger.info("Cancelled pending tool invocations", count=rewritten)
        return rewritten


def merge_turn_snapshot(previous: Turn, latest: Turn) -> Turn:
    """Merge two snapshots of one streamed turn without regressing any invocation phase"""

    previous_calls: Dict[str, ToolInvocationPart] = {
        part.tool_call_id: part
        for part in previous.parts
        if isinstance(part, ToolInvocationPart) and part.tool_call_id
    }

    merged: List[Part] = []
    for part in latest.parts:
        if isinstance(part, ToolInvocationPart) and part.tool_call_id in previous_calls:
            earlier = previous_calls[part.tool_call_id]
            merged.append(earlier.advance(
                part.phase,
                input=part.input,
                output=part.output,
                error_text=part.error_text,
            ) if part.phase != ToolPhase.UNKNOWN else earlier)
        else:
            merged.append(part)

    return latest.with_parts(merged)


def cancel_pending_invocations(
    turns: Sequence[Turn],
    message: str = CANCELLED_MESSAGE
) -> Tuple[Tuple[Turn, ...], int]:
    """Return the log with pending invocations of the latest request rewritten to errored.

    Only agent turns after the last user turn can hold the in-flight request's
    invocations. Completed or errored invocations are left untouched.
    """

    last_user = -1
    for index, turn in enumerate(turns):
        if turn.is_user:
            last_user = index

    rewritten = 0
    result: List[Turn] = []
    for index, turn in enumerate(turns):
        if index <= last_user or not turn.is_agent:
            result.append(turn)
            continue

        parts: List[Part] = []
        changed = False
        for part in turn.parts:
            if isinstance(part, ToolInvocationPart) and part.is_pending:
                parts.append(part.advance(ToolPhase.ERRORED, error_text=message))
                rewritten += 1
                changed = True
            else:
                parts.append(part)
        result.append(turn.with_parts(parts) if changed else turn)

    return tuple(result), rewritten
