from typing import Dict, Any, List, Optional, Literal
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import time
import httpx
import structlog
from pydantic import BaseModel, Field
from langchain_core.tools import BaseTool, StructuredTool, ToolException

from axiomloop.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

TAVILY_BASE_URL = "https://api.tavily.com"


class SearchWebInput(BaseModel):
    query: str = Field(description="The search query")
    topic: Optional[Literal["general", "news"]] = Field(None, description="'news' for real-time updates, 'general' otherwise")
    searchDepth: Optional[Literal["basic", "advanced"]] = Field(None, description="basic or advanced search")
    maxResults: Optional[int] = Field(None, ge=0, le=20, description="Maximum number of results")
    timeRange: Optional[Literal["day", "week", "month", "year"]] = Field(None, description="Only results from this period")
    includeDomains: Optional[List[str]] = Field(None, description="Domains to restrict the search to")
    excludeDomains: Optional[List[str]] = Field(None, description="Domains to leave out")


class ExtractWebContentInput(BaseModel):
    urls: List[str] = Field(description="URLs to extract content from")
    extractDepth: Optional[Literal["basic", "advanced"]] = Field(None, description="basic or advanced extraction")
    format: Optional[Literal["markdown", "text"]] = Field(None, description="Output format")


class CurrentDateTimeInput(BaseModel):
    timezone: Optional[str] = Field(None, description="IANA timezone such as Europe/London; server time when omitted")
    format: Optional[Literal["full", "date", "time", "iso"]] = Field(None, description="Output format, default full")


class SearchProvider(ABC):
    """Backend of the web search and content extraction tools"""

    @abstractmethod
    async def search(self, query: str, **options) -> List[Dict[str, Any]]:
        """Return results with title, url and content"""

    @abstractmethod
    async def extract(self, urls: List[str], **options) -> List[Dict[str, Any]]:
        """Return results with url and raw_content"""


class TavilySearchProvider(SearchProvider):
    """Tavily HTTP API client"""

    def __init__(
        self,
        api_key: str,
        base_url: str = TAVILY_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def search(self, query: str, **options) -> List[Dict[str, Any]]:
        payload = {"query": query, "max_results": 5, "search_depth": "basic"}
        payload.update({key: value for key, value in options.items() if value is not None})
        data = await self._post("/search", payload)
        return data.get("results") or []

    async def extract(self, urls: List[str], **options) -> List[Dict[str, Any]]:
        payload = {"urls": urls, "extract_depth": "basic", "format": "markdown"}
        payload.update({key: value for key, value in options.items() if value is not None})
        data = await self._post("/extract", payload)
        return data.get("results") or []

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport
        ) as client:
            try:
                response = await client.post(
                    path,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise ToolException(f"Search provider returned {exc.response.status_code}") from exc
            except httpx.RequestError as exc:
                raise ToolException(f"Search provider unreachable: {exc}") from exc
            return response.json()


def format_search_results(query: str, results: List[Dict[str, Any]]) -> str:
    lines = [
        f"{index}. **{result.get('title', '')}**\n   URL: {result.get('url', '')}\n   {result.get('content', '')}\n"
        for index, result in enumerate(results, start=1)
    ]
    body = "\n".join(lines) or "No results found."
    return (
        f'Search Results for "{query}":\n\n{body}\n\n'
        "Use extractWebContent with specific URLs for more detail."
    )


def format_extracted_content(results: List[Dict[str, Any]]) -> str:
    sections = [
        f"## Content from {result.get('url', '')}\n\n"
        f"{result.get('raw_content') or result.get('content') or 'No content extracted'}\n\n---\n"
        for result in results
    ]
    return "Extracted Content:\n\n" + ("\n".join(sections) or "No content could be extracted.")


def current_datetime(tz_name: Optional[str] = None, output_format: Optional[str] = None) -> str:
    output_format = output_format or "full"
    if tz_name:
        try:
            now = datetime.now(ZoneInfo(tz_name))
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ToolException(f"Unknown timezone: {tz_name}") from exc
        zone_label = f" ({tz_name})"
    else:
        now = datetime.now().astimezone()
        zone_label = " (server local time)"

    if output_format == "date":
        return f"Current date: {now.strftime('%Y-%m-%d')}{zone_label}"
    if output_format == "time":
        return f"Current time: {now.strftime('%H:%M:%S')}{zone_label}"
    if output_format == "iso":
        return f"Current date and time (ISO): {datetime.now(timezone.utc).isoformat()}"
    return f"Current date and time: {now.strftime('%Y-%m-%d %H:%M:%S')}{zone_label}"


def build_web_tools(provider: Optional[SearchProvider] = None) -> List[BaseTool]:
    """searchWeb and extractWebContent; both fail as tool errors when no provider is configured"""

    def require_provider(feature: str) -> SearchProvider:
        if provider is None:
            raise ToolException(f"{feature} is not available. Set TAVILY_API_KEY to enable it.")
        return provider

    async def search_web(
        query: str,
        topic: Optional[str] = None,
        searchDepth: Optional[str] = None,
        maxResults: Optional[int] = None,
        timeRange: Optional[str] = None,
        includeDomains: Optional[List[str]] = None,
        excludeDomains: Optional[List[str]] = None
    ) -> str:
        backend = require_provider("Web search")
        started = time.monotonic()
        results = await backend.search(
            query,
            topic=topic,
            search_depth=searchDepth,
            max_results=maxResults,
            time_range=timeRange,
            include_domains=includeDomains,
            exclude_domains=excludeDomains,
        )
        agent_logger.log_tool_execution(
            "searchWeb", "web", {"query": query},
            duration_ms=(time.monotonic() - started) * 1000
        )
        return format_search_results(query, results)

    async def extract_web_content(
        urls: List[str],
        extractDepth: Optional[str] = None,
        format: Optional[str] = None
    ) -> str:
        backend = require_provider("Content extraction")
        started = time.monotonic()
        results = await backend.extract(urls, extract_depth=extractDepth, format=format)
        agent_logger.log_tool_execution(
            "extractWebContent", "web", {"urls": urls},
            duration_ms=(time.monotonic() - started) * 1000
        )
        return format_extracted_content(results)

    return [
        StructuredTool.from_function(
            coroutine=search_web,
            name="searchWeb",
            description=(
                "Search the web for current information, news or any topic that needs up-to-date data. "
                "Follow up with extractWebContent for detail from specific URLs."
            ),
            args_schema=SearchWebInput,
            handle_tool_error=True,
        ),
        StructuredTool.from_function(
            coroutine=extract_web_content,
            name="extractWebContent",
            description="Extract detailed content from specific web pages, usually after searchWeb",
            args_schema=ExtractWebContentInput,
            handle_tool_error=True,
        ),
    ]


def build_datetime_tool() -> BaseTool:
    def get_current_datetime(timezone: Optional[str] = None, format: Optional[str] = None) -> str:
        return current_datetime(timezone, format)

    return StructuredTool.from_function(
        func=get_current_datetime,
        name="getCurrentDateTime",
        description="Get the current date and time, optionally in a given timezone",
        args_schema=CurrentDateTimeInput,
        handle_tool_error=True,
    )
