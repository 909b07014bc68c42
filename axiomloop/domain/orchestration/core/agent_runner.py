from typing import TypedDict, Annotated, Any, AsyncIterator, Callable, Dict, List, Optional, Sequence
from abc import ABC, abstractmethod
from langgraph.graph import StateGraph, END
from langgraph.graph.message import add_messages
from langgraph.errors import GraphRecursionError
from langgraph.prebuilt import ToolNode
from langchain_core.messages import BaseMessage, SystemMessage
from langchain.chat_models import init_chat_model
import structlog

from axiomloop.application.schema.events import FinishEvent, FinishReason, StreamEvent, TurnEvent
from axiomloop.domain.lifecycle.controller import CancellationToken
from axiomloop.domain.models.conversation import Turn
from axiomloop.domain.orchestration.core.message_converter import TurnAssembler, turns_to_messages
from axiomloop.domain.orchestration.surfaces import SurfaceConfig, get_surface
from axiomloop.domain.streaming.tool_decoder import encode_turn
from axiomloop.domain.tool.tool_registry import ToolRegistry
from axiomloop.infrastructure.config.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class AgentGraphState(TypedDict):
    """State for the agent graph"""
    messages: Annotated[List[BaseMessage], add_messages]


class AgentRunner(ABC):
    """Streaming agent loop behind the HTTP surface"""

    @abstractmethod
    def stream(
        self,
        turns: Sequence[Turn],
        surface: str,
        cancellation_token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        """Yield turn snapshots and a terminal finish event"""


class LangGraphAgentRunner(AgentRunner):
    """Tool-calling loop: an agent node bound to the surface's tools and a ToolNode"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
        model_factory: Optional[Callable[[], Any]] = None
    ):
        self.settings = settings or get_settings()
        self.registry = registry or ToolRegistry(tavily_api_key=self.settings.tavily_api_key)
        self.model_factory = model_factory or self._create_model
        self._workflows: Dict[str, Any] = {}

    def _create_model(self):
        return init_chat_model(self.settings.openai_model, model_provider=self.settings.model_provider)

    def _workflow_for(self, surface: SurfaceConfig):
        if surface.name not in self._workflows:
            self._workflows[surface.name] = self._create_workflow(surface)
        return self._workflows[surface.name]

    def _create_workflow(self, surface: SurfaceConfig):
        tools = self.registry.toolset_for(surface.name)
        model = self.model_factory().bind_tools(tools)
        system_message = SystemMessage(content=surface.system_prompt)

        async def agent_node(state: AgentGraphState) -> Dict[str, Any]:
            response = await model.ainvoke([system_message] + list(state["messages"]))
            return {"messages": [response]}

        def route_after_agent(state: AgentGraphState) -> str:
            last_message = state["messages"][-1]
            return "tools" if getattr(last_message, "tool_calls", None) else END

        workflow = StateGraph(AgentGraphState)
        workflow.add_node("agent", agent_node)
        workflow.add_node("tools", ToolNode(tools, handle_tool_errors=True))
        workflow.set_entry_point("agent")
        workflow.add_conditional_edges("agent", route_after_agent, {"tools": "tools", END: END})
        workflow.add_edge("tools", "agent")
        return workflow.compile()

    async def stream(
        self,
        turns: Sequence[Turn],
        surface: str,
        cancellation_token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        config = get_surface(surface)
        workflow = self._workflow_for(config)
        assembler = TurnAssembler()
        # one agent step is an agent superstep plus a tools superstep
        run_config = {"recursion_limit": self.settings.max_steps * 2 + 1}

        logger.info("Starting agent run", surface=surface, turns=len(turns))
        try:
            async for update in workflow.astream(
                {"messages": turns_to_messages(turns)},
                config=run_config,
                stream_mode="updates"
            ):
                cancellation_token.raise_if_cancelled()
                changed = False
                for node_output in update.values():
                    if not isinstance(node_output, dict):
                        continue
                    for message in node_output.get("messages", []):
                        changed = assembler.add_message(message) or changed
                if changed:
                    yield TurnEvent(turn=encode_turn(assembler.snapshot()))
        except GraphRecursionError:
            logger.warning("Agent run hit the step limit", surface=surface, max_steps=self.settings.max_steps)
            yield FinishEvent(reason=FinishReason.MAX_STEPS)
            return

        yield FinishEvent(reason=FinishReason.COMPLETED)
