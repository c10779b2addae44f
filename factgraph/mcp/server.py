"""
MCP Server implementation for factgraph.

Exposes the knowledge engine to AI applications through the Model Context
Protocol tool interface.

Design Philosophy:
    The server translates tool calls into engine operations and returns
    JSON-serializable dicts. Engine errors never escape: they come back as
    ``{"error": ..., "error_type": ...}`` so an agent can react to them.

Usage:
    ```python
    from factgraph import FactGraph
    from factgraph.mcp import MCPServer

    server = MCPServer(FactGraph())
    server.execute_tool("submit_facts", {"facts": [...]})
    server.execute_tool("answer", {"query": "what does billing depend on"})
    ```
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TYPE_CHECKING

from factgraph.core.models import Entity, Fact
from factgraph.errors import FactGraphError
from factgraph.mcp.tools import MCPToolGenerator
from factgraph.query.results import QueryFilters

if TYPE_CHECKING:
    from factgraph.interface.client import FactGraph


logger = logging.getLogger(__name__)


class MCPServer:
    """
    MCP Server for factgraph.

    Thread Safety:
        Tool calls are not serialized here; the engine itself allows
        concurrent reads and serializes mutations.

    Example:
        ```python
        server = MCPServer(kg)
        for tool in server.list_tools():
            print(f"Tool: {tool['name']}")
        ```
    """

    def __init__(self, kg: "FactGraph"):
        self._kg = kg
        self._tool_generator = MCPToolGenerator(kg)
        self._handlers: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "submit_facts": self._handle_submit_facts,
            "answer": self._handle_answer,
            "neighbors": self._handle_neighbors,
            "dependency_path": self._handle_dependency_path,
            "get_entity": self._handle_get_entity,
            "unlearn": self._handle_unlearn,
            "snapshot": self._handle_snapshot,
        }

    @property
    def kg(self) -> "FactGraph":
        return self._kg

    def list_tools(self) -> list[dict[str, Any]]:
        """List all available MCP tools."""
        self._tool_generator.refresh()
        return self._tool_generator.get_tools()

    def get_tool_schema(self, tool_name: str) -> Optional[dict[str, Any]]:
        for tool in self._tool_generator.get_tools():
            if tool["name"] == tool_name:
                return tool
        return None

    def execute_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Execute an MCP tool with the given arguments.

        Returns:
            Tool execution result (JSON-serializable dict)
        """
        handler = self._handlers.get(tool_name)
        if handler is None:
            return {"error": f"Tool not found: {tool_name}", "error_type": "unknown_tool"}

        try:
            return handler(arguments or {})
        except FactGraphError as e:
            return {"error": str(e), "error_type": e.code}
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Bad arguments for %s: %s", tool_name, e)
            return {"error": f"invalid arguments: {e}", "error_type": "invalid_arguments"}

    # =========================================================================
    # Tool Handlers
    # =========================================================================

    def _handle_submit_facts(self, args: dict[str, Any]) -> dict[str, Any]:
        result = self._kg.submit(args["facts"])
        return {
            "version": result.version,
            "noop": result.noop,
            "fact_ids": result.fact_ids,
            "superseded_fact_ids": result.superseded_fact_ids,
            "decisions": [d.value for d in result.decisions],
            "stubs": [stub.model_dump(mode="json") for stub in result.stubs],
        }

    def _handle_answer(self, args: dict[str, Any]) -> dict[str, Any]:
        filters = QueryFilters(
            entities=args.get("entities", []),
            predicates=args.get("predicates"),
            entity_kinds=args.get("entity_kinds"),
            depth=args.get("depth"),
            top_k=args.get("top_k"),
        )
        answer = self._kg.answer(args["query"], filters, timeout=args.get("timeout"))
        return answer.summary()

    def _handle_neighbors(self, args: dict[str, Any]) -> dict[str, Any]:
        traversal = self._kg.neighbors(
            args["entity_id"],
            edge_types=args.get("edge_types"),
            direction=args.get("direction", "out"),
            depth=args.get("depth", 1),
        )
        return {
            "entity_id": traversal.root_id,
            "version": self._kg.version,
            "neighbors": [
                {"entity_id": e, "hops": traversal.hops[e]} for e in traversal.entities
            ],
            "fact_ids": traversal.fact_ids,
        }

    def _handle_dependency_path(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._kg.shortest_dependency_path(args["source"], args["target"])
        if path is None:
            return {"source": args["source"], "target": args["target"], "path": None}
        return {
            "source": args["source"],
            "target": args["target"],
            "path": path.model_dump(),
            "length": path.length,
        }

    def _handle_get_entity(self, args: dict[str, Any]) -> dict[str, Any]:
        entity_id = args["entity_id"]
        entity = self._kg.get_entity(entity_id)
        if entity is None:
            return {"error": f"Unknown entity: {entity_id}", "error_type": "unknown_entity"}
        return {
            "entity": self._serialize_entity(entity),
            "facts": [self._serialize_fact(f) for f in self._kg.facts_about(entity_id)],
        }

    def _handle_unlearn(self, args: dict[str, Any]) -> dict[str, Any]:
        result = self._kg.unlearning.unlearn(
            args["target"],
            args.get("cascade", "none"),
            requested_by=args["requested_by"],
        )
        return result.model_dump(mode="json")

    def _handle_snapshot(self, args: dict[str, Any]) -> dict[str, Any]:
        snapshot = self._kg.snapshot(args.get("version"))
        return {
            "version": snapshot.version,
            "timestamp": snapshot.timestamp.isoformat(),
            "fact_count": snapshot.fact_count,
            "fact_ids": snapshot.fact_ids,
        }

    # =========================================================================
    # Serialization Helpers
    # =========================================================================

    def _serialize_entity(self, entity: Entity) -> dict[str, Any]:
        return {
            "id": entity.id,
            "kind": entity.kind.value,
            "name": entity.name,
            "attributes": entity.attributes,
            "created_version": entity.created_version,
            "modified_version": entity.modified_version,
        }

    def _serialize_fact(self, fact: Fact) -> dict[str, Any]:
        return {
            "id": fact.id,
            "subject": fact.subject,
            "predicate": fact.predicate,
            "object": fact.object_entity if fact.is_edge else fact.object_value,
            "object_is_entity": fact.is_edge,
            "confidence": fact.confidence,
            "sensitivity": fact.sensitivity.value,
            "source": fact.source,
            "created_version": fact.created_version,
        }
