"""
MCP tool definitions for factgraph.

Tool schemas are generated from the running engine: the predicate and
entity-kind enums follow the configured privacy policy, so an agent is
never offered a predicate the filter would redact.

Tool Categories:
    1. Ingestion: submit_facts
    2. Retrieval: answer, neighbors, dependency_path, get_entity
    3. Administration: unlearn, snapshot

Tool Schema Format (MCP Standard):
    ```json
    {
        "name": "tool_name",
        "description": "What this tool does",
        "inputSchema": {
            "type": "object",
            "properties": {...},
            "required": [...]
        }
    }
    ```
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

from factgraph.core.graph import Direction
from factgraph.core.models import EntityKind, Sensitivity
from factgraph.runtime.unlearning import CascadePolicy

if TYPE_CHECKING:
    from factgraph.interface.client import FactGraph


class MCPToolGenerator:
    """
    Generates MCP tool definitions for a FactGraph instance.

    Example:
        ```python
        generator = MCPToolGenerator(kg)
        names = [tool["name"] for tool in generator.get_tools()]

        # After widening the privacy policy:
        generator.refresh()
        ```
    """

    def __init__(self, kg: "FactGraph"):
        self._kg = kg
        self._tools: list[dict[str, Any]] = []
        self._generate_tools()

    def get_tools(self) -> list[dict[str, Any]]:
        """All tool definitions in MCP format."""
        return list(self._tools)

    def refresh(self) -> None:
        """Regenerate the definitions from the current policy."""
        self._generate_tools()

    def _generate_tools(self) -> None:
        predicates = sorted(self._kg.privacy.policy.allowed_predicates)
        kinds = [k.value for k in EntityKind]
        self._tools = [
            *self._generate_ingestion_tools(predicates, kinds),
            *self._generate_retrieval_tools(predicates, kinds),
            *self._generate_admin_tools(),
        ]

    def _generate_ingestion_tools(self, predicates: list[str], kinds: list[str]) -> list[dict[str, Any]]:
        fact_schema = {
            "type": "object",
            "properties": {
                "subject": {"type": "string", "description": "Subject entity id"},
                "predicate": {
                    "type": "string",
                    "description": "Predicate; unknown predicates are redacted",
                    "examples": predicates,
                },
                "object": {"description": "Object entity id, or a literal value"},
                "object_kind": {
                    "type": "string",
                    "enum": kinds,
                    "description": "Set when the object is an entity"
                },
                "subject_kind": {"type": "string", "enum": kinds, "default": "service"},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1, "default": 1.0},
                "source": {"type": "string", "description": "Repository, file or API the fact came from"},
                "sensitivity_hint": {"type": "string", "enum": [s.value for s in Sensitivity]},
                "attributes": {"type": "object", "description": "Attributes of the subject entity"},
            },
            "required": ["subject", "predicate", "object", "source"],
        }
        return [
            {
                "name": "submit_facts",
                "description": (
                    "Submit a batch of facts about services, configs, API endpoints and "
                    "external dependencies. Facts pass a privacy filter first; withheld "
                    "facts are reported as audit stubs."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "facts": {"type": "array", "items": fact_schema},
                    },
                    "required": ["facts"]
                }
            }
        ]

    def _generate_retrieval_tools(self, predicates: list[str], kinds: list[str]) -> list[dict[str, Any]]:
        directions = [d.value for d in Direction]
        return [
            {
                "name": "answer",
                "description": (
                    "Ask a question about the system architecture. Combines semantic "
                    "search with graph traversal from any named entities."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "Question text"},
                        "entities": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Entity ids to seed the graph traversal"
                        },
                        "predicates": {"type": "array", "items": {"type": "string", "enum": predicates}},
                        "entity_kinds": {"type": "array", "items": {"type": "string", "enum": kinds}},
                        "depth": {"type": "integer", "minimum": 0},
                        "top_k": {"type": "integer", "minimum": 1},
                        "timeout": {"type": "number", "description": "Seconds before the query is abandoned"},
                    },
                    "required": ["query"]
                }
            },
            {
                "name": "neighbors",
                "description": "List entities reachable from an entity within a number of hops",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "entity_id": {"type": "string"},
                        "edge_types": {"type": "array", "items": {"type": "string"}},
                        "direction": {"type": "string", "enum": directions, "default": "out"},
                        "depth": {"type": "integer", "minimum": 0, "default": 1},
                    },
                    "required": ["entity_id"]
                }
            },
            {
                "name": "dependency_path",
                "description": "Find the shortest dependency path from one entity to another",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "source": {"type": "string"},
                        "target": {"type": "string"},
                    },
                    "required": ["source", "target"]
                }
            },
            {
                "name": "get_entity",
                "description": "Get an entity and its active facts",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "entity_id": {"type": "string"},
                    },
                    "required": ["entity_id"]
                }
            },
        ]

    def _generate_admin_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": "unlearn",
                "description": (
                    "Permanently remove a fact, or every fact about an entity, from the "
                    "graph, the vector index and the query cache. Audited."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "target": {"type": "string", "description": "Fact id or entity id"},
                        "cascade": {
                            "type": "string",
                            "enum": [c.value for c in CascadePolicy],
                            "default": "none"
                        },
                        "requested_by": {"type": "string", "description": "Who asked for the removal"},
                    },
                    "required": ["target", "requested_by"]
                }
            },
            {
                "name": "snapshot",
                "description": "Show which facts were active at the current or a past version",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "version": {"type": "integer", "minimum": 0},
                    },
                    "required": []
                }
            },
        ]
