"""Builders for wire parts and decoded turns used across the test-suite."""

from typing import Any, Dict, List, Optional

from axiomloop.domain.models.conversation import Turn
from axiomloop.domain.streaming.tool_decoder import decode_turn


def text(value: str) -> Dict[str, Any]:
    return {"type": "text", "text": value}


def reasoning(value: str) -> Dict[str, Any]:
    return {"type": "reasoning", "text": value}


def tool(
    name: str,
    call_id: Optional[str],
    state: str,
    input: Any = None,
    output: Any = None,
    error_text: Optional[str] = None,
) -> Dict[str, Any]:
    part: Dict[str, Any] = {"type": f"tool-{name}", "state": state, "input": input}
    if call_id is not None:
        part["toolCallId"] = call_id
    if output is not None:
        part["output"] = output
    if error_text is not None:
        part["errorText"] = error_text
    return part


def user(value: str, turn_id: Optional[str] = None) -> Turn:
    return decode_turn({"id": turn_id, "role": "user", "parts": [text(value)]})


def agent(*parts: Dict[str, Any], turn_id: Optional[str] = None) -> Turn:
    return decode_turn({"id": turn_id, "role": "assistant", "parts": list(parts)})


def upsert(
    node_id: str,
    concept: str,
    parent_id: Optional[str] = None,
    depth: int = 0,
    status: str = "idle",
    is_axiom: bool = False,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "nodeId": node_id,
        "concept": concept,
        "parentId": parent_id,
        "depth": depth,
        "status": status,
        "isAxiom": is_axiom,
        "notes": notes,
    }


def breakdown(parent_id: str, concept: str, children: List[Dict[str, Any]], summary: str = "") -> Dict[str, Any]:
    return {
        "parentNodeId": parent_id,
        "concept": concept,
        "summary": summary,
        "children": children,
    }


def child(node_id: str, concept: str, is_axiom: bool = False, reasoning: str = "") -> Dict[str, Any]:
    return {"nodeId": node_id, "concept": concept, "isAxiom": is_axiom, "reasoning": reasoning}
