"""
Web Search Client

Normalized web search used when local recall is insufficient.

Providers are registered by name and resolved explicitly:
- "exa": Exa search REST API (httpx)
- "mcp": a named search tool on an MCP server (fastmcp Client)
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, asdict

import httpx
from fastmcp import Client

from .config import WebSearchConfig, DEFAULT_EXA_ENDPOINT
from .errors import CollaboratorUnavailable, TransientIOError

logger = logging.getLogger("entity_rag.common.web_search")


@dataclass
class WebResult:
    """A single normalized web search hit"""
    title: str
    url: str
    snippet: str
    content: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "WebResult":
        """Normalize a provider-specific result dict"""
        content = raw.get("content") or raw.get("text")
        return cls(
            title=raw.get("title") or raw.get("name") or "No title",
            url=raw.get("url") or raw.get("link") or "#",
            snippet=raw.get("snippet") or raw.get("description") or content or "No description",
            content=content,
        )

    @property
    def document_text(self) -> str:
        """Text to embed when this result is persisted"""
        return self.content or self.snippet or ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WebSearchProvider(ABC):
    """Capability interface for a web search backend"""

    name: str = ""

    @abstractmethod
    async def search(self, query: str, num_results: int) -> List[WebResult]:
        """Run a search and return normalized results"""


class ExaSearchProvider(WebSearchProvider):
    """Exa search over its REST API"""

    name = "exa"

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_EXA_ENDPOINT,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Exa provider.

        Args:
            api_key: Exa API key
            endpoint: Search endpoint URL
            timeout: Request timeout in seconds
            http_client: Shared AsyncClient (one per call if omitted)
        """
        self._api_key = api_key
        self._endpoint = endpoint
        self._timeout = timeout
        self._http = http_client

    async def search(self, query: str, num_results: int) -> List[WebResult]:
        if not self._api_key:
            raise CollaboratorUnavailable("Exa search is not configured (EXA_API_KEY missing)")

        payload = {
            "query": query,
            "numResults": num_results,
            "contents": {"text": True},
        }
        headers = {"x-api-key": self._api_key, "Content-Type": "application/json"}

        try:
            if self._http is not None:
                response = await self._http.post(
                    self._endpoint, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientIOError(f"Exa search failed: {e}") from e

        raw_results = data.get("results", []) if isinstance(data, dict) else []
        return [WebResult.from_raw(r) for r in raw_results if isinstance(r, dict)][:num_results]


class McpToolSearchProvider(WebSearchProvider):
    """
    Web search through a named tool on an MCP server.

    The tool is resolved by its exact name; a server that does not offer
    it is reported as unavailable.
    """

    name = "mcp"

    def __init__(self, transport: Any, tool_name: str, timeout: float = 30.0):
        """
        Initialize MCP provider.

        Args:
            transport: Anything fastmcp.Client accepts (MCP config dict,
                server script path, URL or in-process FastMCP server)
            tool_name: Name of the search tool on that server
            timeout: Per-request timeout in seconds
        """
        self._transport = transport
        self._tool_name = tool_name
        self._timeout = timeout

    @classmethod
    def from_command(
        cls,
        command: str,
        args: List[str],
        tool_name: str,
        env: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
    ) -> "McpToolSearchProvider":
        """Build a provider that launches a stdio MCP server"""
        server = {"command": command, "args": list(args)}
        if env:
            server["env"] = env
        return cls({"mcpServers": {"web": server}}, tool_name=tool_name, timeout=timeout)

    async def search(self, query: str, num_results: int) -> List[WebResult]:
        client = Client(self._transport, timeout=self._timeout)
        try:
            async with client:
                tools = await client.list_tools()
                tool_names = [t.name for t in tools]
                if self._tool_name not in tool_names:
                    raise CollaboratorUnavailable(
                        f"MCP server does not offer tool '{self._tool_name}' "
                        f"(available: {', '.join(tool_names) or 'none'})"
                    )
                result = await client.call_tool(
                    self._tool_name,
                    {"query": query, "numResults": num_results},
                )
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            raise TransientIOError(f"MCP web search failed: {e}") from e

        return parse_tool_results(result)[:num_results]


def parse_tool_results(result: Any) -> List[WebResult]:
    """
    Extract web results from an MCP tool call result.

    Accepts structured content ({"results": [...]}, or {"result": [...]}
    for tools returning a bare list) and JSON text content blocks.
    """
    payloads = []
    structured = getattr(result, "structured_content", None)
    if structured:
        payloads.append(structured)
    else:
        blocks = getattr(result, "content", result)
        for block in blocks or []:
            text = getattr(block, "text", None)
            if not text:
                continue
            try:
                payloads.append(json.loads(text))
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON tool output: %.80s", text)

    raw_results = []
    for payload in payloads:
        items = payload
        if isinstance(payload, dict):
            items = payload.get("results", payload.get("result"))
            if isinstance(items, dict):
                items = items.get("results")
        if isinstance(items, list):
            raw_results.extend(item for item in items if isinstance(item, dict))

    return [WebResult.from_raw(r) for r in raw_results]


class WebSearchClient:
    """
    Registry of web search providers with one active provider.

    Usage:
        client = WebSearchClient([ExaSearchProvider(api_key)], provider_name="exa")
        results = await client.search("riverdale heights population", 5)
    """

    def __init__(
        self,
        providers: Optional[List[WebSearchProvider]] = None,
        provider_name: str = "exa",
    ):
        self._providers: Dict[str, WebSearchProvider] = {}
        self._provider_name = provider_name
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: WebSearchProvider) -> None:
        """Register a provider under its name (replaces an existing one)"""
        self._providers[provider.name] = provider

    def resolve(self, name: Optional[str] = None) -> WebSearchProvider:
        """Look up a provider by name (default: the configured one)"""
        name = name or self._provider_name
        provider = self._providers.get(name)
        if provider is None:
            raise CollaboratorUnavailable(f"Web search provider '{name}' is not registered")
        return provider

    async def search(self, query: str, num_results: int = 5) -> List[WebResult]:
        """
        Search the web with the active provider.

        Raises:
            CollaboratorUnavailable: provider missing or not configured
            TransientIOError: the provider call failed
        """
        provider = self.resolve()
        results = await provider.search(query, num_results)
        logger.info("Web search via %s returned %d result(s)", provider.name, len(results))
        return results[:num_results]

    @classmethod
    def from_config(cls, config: WebSearchConfig) -> Optional["WebSearchClient"]:
        """Build the registry from config; None when web search is disabled"""
        if config.provider == "none":
            return None

        env = {"EXA_API_KEY": config.exa_api_key} if config.exa_api_key else None
        providers = [
            ExaSearchProvider(
                api_key=config.exa_api_key,
                endpoint=config.exa_endpoint,
                timeout=config.timeout,
            ),
            McpToolSearchProvider.from_command(
                command=config.mcp_command,
                args=config.mcp_args,
                tool_name=config.mcp_tool_name,
                env=env,
                timeout=config.timeout,
            ),
        ]
        return cls(providers, provider_name=config.provider)
