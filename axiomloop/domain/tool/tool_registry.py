from typing import Dict, List, Optional
from langchain_core.tools import BaseTool
import structlog

from axiomloop.domain.tool.research_tools import build_research_tools
from axiomloop.domain.tool.web_tools import (
    SearchProvider, TavilySearchProvider, build_datetime_tool, build_web_tools
)

logger = structlog.get_logger(__name__)

SURFACE_CATEGORIES: Dict[str, List[str]] = {
    "chat": ["web", "utility"],
    "dev": ["web", "utility"],
    "research": ["research", "web"],
}


class ToolRegistry:
    """Registry of the tools each agent surface may call"""

    def __init__(
        self,
        search_provider: Optional[SearchProvider] = None,
        tavily_api_key: Optional[str] = None
    ):
        if search_provider is None and tavily_api_key:
            search_provider = TavilySearchProvider(tavily_api_key)
        self.search_provider = search_provider
        self.tools: Dict[str, BaseTool] = {}
        self.tool_categories: Dict[str, List[str]] = {}
        self._initialize_default_tools()

    def _initialize_default_tools(self):
        for tool in build_research_tools():
            self.register_tool(tool, "research")
        for tool in build_web_tools(self.search_provider):
            self.register_tool(tool, "web")
        self.register_tool(build_datetime_tool(), "utility")

        if self.search_provider is None:
            logger.info("Web tools registered without a search provider")

    def register_tool(self, tool: BaseTool, category: str = "general"):
        """Register a new tool"""

        self.tools[tool.name] = tool
        names = self.tool_categories.setdefault(category, [])
        if tool.name not in names:
            names.append(tool.name)

    def get_tool(self, name: str) -> Optional[BaseTool]:
        return self.tools.get(name)

    def get_tools_by_category(self, category: str) -> List[BaseTool]:
        names = self.tool_categories.get(category, [])
        return [self.tools[name] for name in names if name in self.tools]

    def toolset_for(self, surface: str) -> List[BaseTool]:
        """Tools bound to the model of a surface"""

        if surface not in SURFACE_CATEGORIES:
            raise ValueError(f"Unknown surface: {surface}")
        toolset: List[BaseTool] = []
        for category in SURFACE_CATEGORIES[surface]:
            toolset.extend(self.get_tools_by_category(category))
        return toolset
