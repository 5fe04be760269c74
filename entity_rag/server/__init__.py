"""
MCP server exposing entity-aware retrieval and ingestion as tools.
"""

from .server import MCPServerApp, main

__all__ = ["MCPServerApp", "main"]
