"""
MCP (Model Context Protocol) module for factgraph.

Exposes the knowledge engine to AI applications such as chat front-ends
and coding agents.

Usage:
    ```python
    from factgraph import FactGraph
    from factgraph.mcp import MCPServer

    server = MCPServer(FactGraph())
    tools = server.list_tools()
    result = server.execute_tool("answer", {"query": "what calls the ledger?"})
    ```
"""

from factgraph.mcp.server import MCPServer
from factgraph.mcp.tools import MCPToolGenerator

__all__ = [
    "MCPServer",
    "MCPToolGenerator",
]
