from __future__ import annotations

import threading
from typing import Dict, List, Optional

from nodeflow.executors.base import NodeExecutor
from nodeflow.logging import get_logger
from nodeflow.service.errors import DuplicateNodeTypeError
from nodeflow.service.models import NodeSchema, RegistryReport


class NodeRegistry:
    """In-memory directory mapping node type identifiers to executors.

    Schemas are snapshotted at registration. Registering an identifier twice
    replaces the earlier executor (last write wins); the replaced executor is
    returned and a warning is logged. With ``strict=True`` a duplicate raises
    ``DuplicateNodeTypeError`` instead.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict
        self.logger = get_logger(__name__)
        self._executors: Dict[str, NodeExecutor] = {}
        self._schemas: Dict[str, NodeSchema] = {}
        self._lock = threading.Lock()

    def register(self, node_type: str, executor: NodeExecutor) -> Optional[NodeExecutor]:
        if not node_type:
            raise ValueError("node_type must be a non-empty string")
        schema = executor.get_schema()
        with self._lock:
            previous = self._executors.get(node_type)
            if previous is not None and self.strict:
                raise DuplicateNodeTypeError(
                    f"Node type already registered: {node_type}",
                    detail={"node_type": node_type},
                )
            self._executors[node_type] = executor
            self._schemas[node_type] = schema
        if previous is not None:
            self.logger.warning(
                "node_executor_overridden",
                node_type=node_type,
                previous=type(previous).__name__,
                replacement=type(executor).__name__,
            )
        else:
            self.logger.info(
                "node_executor_registered",
                node_type=node_type,
                executor=type(executor).__name__,
            )
        return previous

    def unregister(self, node_type: str) -> Optional[NodeExecutor]:
        with self._lock:
            self._schemas.pop(node_type, None)
            return self._executors.pop(node_type, None)

    def get(self, node_type: str) -> Optional[NodeExecutor]:
        return self._executors.get(node_type)

    def get_all_executors(self) -> Dict[str, NodeExecutor]:
        return dict(self._executors)

    def get_schema(self, node_type: str) -> Optional[NodeSchema]:
        return self._schemas.get(node_type)

    def get_all_schemas(self) -> Dict[str, List[NodeSchema]]:
        """Schemas bucketed by group; a schema appears once per group it declares."""
        grouped: Dict[str, List[NodeSchema]] = {}
        for schema in list(self._schemas.values()):
            for group in schema.group:
                grouped.setdefault(group, []).append(schema)
        return grouped

    def is_supported(self, node_type: str) -> bool:
        return node_type in self._executors

    def list_types(self) -> List[str]:
        return list(self._executors)

    def search(self, query: str) -> List[NodeSchema]:
        needle = (query or "").lower()
        results: List[NodeSchema] = []
        for schema in list(self._schemas.values()):
            haystacks = (schema.name, schema.display_name, schema.description)
            if any(needle in (text or "").lower() for text in haystacks):
                results.append(schema)
        return results

    def validate_all(self) -> RegistryReport:
        """Re-read every executor's schema and classify it.

        Only checks that ``get_schema`` succeeds and returns a named schema
        with a properties list; it says nothing about ``execute``.
        """
        report = RegistryReport()
        for node_type, executor in list(self._executors.items()):
            try:
                schema = executor.get_schema()
            except Exception as exc:
                self.logger.error(
                    "node_registry_invalid_executor",
                    node_type=node_type,
                    error=str(exc),
                )
                report.invalid.append(node_type)
                continue
            if (
                schema is not None
                and getattr(schema, "name", None)
                and getattr(schema, "properties", None) is not None
            ):
                report.valid.append(node_type)
            else:
                self.logger.error(
                    "node_registry_invalid_executor",
                    node_type=node_type,
                    error="schema missing name or properties",
                )
                report.invalid.append(node_type)
        return report

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)
