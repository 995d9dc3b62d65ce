"""
Relationship engine.

Creates, reads and deletes directed typed edges between entities of one
organization, and walks hierarchies built from them.

Invariants:
    - Both endpoints exist in the edge's organization
    - Hierarchical relationship types stay acyclic (self-loops included)
    - At most one active edge per (organization, from, to, type)
    - Traversals are iterative with an explicit queue and visited set

How to change safely:
    - New hierarchical types are configuration, not code
    - Keep the cycle check and the insert in the same unit of work
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from ..deadline import Deadline
from ..errors import CycleError, DuplicateCodeError, ReferentialError, ValidationError
from ..schema.types import Entity, Relationship, json_object, normalize_type_tag, now_ms
from .base import EngineBase, read_window

logger = logging.getLogger(__name__)


@dataclass
class HierarchyNode:
    """One node of a rollup tree."""

    entity: Entity
    depth: int
    relationship_id: str | None = None
    children: list[HierarchyNode] = field(default_factory=list)

    def descendant_ids(self) -> list[str]:
        ids: list[str] = []
        queue = deque(self.children)
        while queue:
            node = queue.popleft()
            ids.append(node.entity.id)
            queue.extend(node.children)
        return ids

    def to_dict(self) -> dict[str, Any]:
        # Built bottom-up so deep trees never recurse
        order: list[HierarchyNode] = []
        queue = deque([self])
        while queue:
            node = queue.popleft()
            order.append(node)
            queue.extend(node.children)
        rendered: dict[int, dict[str, Any]] = {}
        for node in reversed(order):
            rendered[id(node)] = {
                "entity": node.entity.to_dict(include_dynamic=False),
                "depth": node.depth,
                "relationship_id": node.relationship_id,
                "children": [rendered[id(child)] for child in node.children],
            }
        return rendered[id(self)]


class RelationshipEngine(EngineBase):
    """Relationship CRUD and hierarchy traversal.

    Example:
        >>> engine = RelationshipEngine(store)
        >>> rel = await engine.create_relationship(
        ...     org_id, parent.id, child.id, "PARENT_OF",
        ...     "HERA.FURNITURE.CATEGORY.REL.PARENT.v1",
        ... )
        >>> tree = await engine.rollup(org_id, parent.id, "PARENT_OF")
    """

    def is_hierarchical(self, relationship_type: str) -> bool:
        return relationship_type in self.config.engine.hierarchical_relationship_types

    def parse_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate a relationship payload without touching the store.

        Raises:
            ValidationError: On missing ids, type or malformed smart code
        """
        if not isinstance(payload, dict):
            raise ValidationError("relationship must be an object", field_name="relationship")
        relationship_type = normalize_type_tag(
            payload.get("relationship_type"), "relationship_type"
        )
        self._smart_code(payload.get("smart_code"), "relationship.smart_code")
        data = json_object(payload.get("relationship_data"), "relationship_data")
        return {
            "id": payload.get("id"),
            "from_entity_id": payload.get("from_entity_id"),
            "to_entity_id": payload.get("to_entity_id"),
            "relationship_type": relationship_type,
            "smart_code": payload["smart_code"],
            "relationship_data": data,
            "is_active": bool(payload.get("is_active", True)),
            "effective_date": payload.get("effective_date"),
        }

    def create_in_unit(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        parsed: dict[str, Any],
        actor_id: str | None,
    ) -> Relationship:
        """Insert a parsed relationship inside an open unit of work.

        Raises:
            ReferentialError: If an endpoint does not exist
            CrossOrgAccessError: If an endpoint belongs to another organization
            CycleError: If a hierarchical edge would close a cycle
            DuplicateCodeError: If the same active edge already exists
        """
        from_id = parsed["from_entity_id"]
        to_id = parsed["to_entity_id"]
        relationship_type = parsed["relationship_type"]

        self._require_entity(conn, org_id, from_id, "from_entity_id")
        self._require_entity(conn, org_id, to_id, "to_entity_id")

        if parsed["is_active"]:
            existing = self.store.query_relationships(
                conn,
                org_id,
                from_entity_id=from_id,
                to_entity_id=to_id,
                relationship_type=relationship_type,
                is_active=True,
            )
            if existing:
                raise DuplicateCodeError(
                    "relationship",
                    f"{relationship_type}:{from_id}->{to_id}",
                    organization_id=org_id,
                    existing_id=existing[0].id,
                )
            if self.is_hierarchical(relationship_type):
                path = self._find_path(conn, org_id, to_id, from_id, relationship_type)
                if path is not None:
                    raise CycleError(relationship_type, from_id, to_id, path=path)

        rel = Relationship(
            id=parsed.get("id") or str(uuid.uuid4()),
            organization_id=org_id,
            from_entity_id=from_id,
            to_entity_id=to_id,
            relationship_type=relationship_type,
            smart_code=parsed["smart_code"],
            relationship_data=parsed["relationship_data"],
            is_active=parsed["is_active"],
            effective_date=parsed["effective_date"],
            created_by=actor_id,
            created_at=now_ms(),
        )
        self.store.insert_relationship(conn, rel)
        return rel

    def find_identical(
        self, conn: sqlite3.Connection, org_id: str, parsed: dict[str, Any]
    ) -> Relationship | None:
        """An active edge with the same endpoints, type, smart code and data."""
        if not parsed["is_active"]:
            return None
        for rel in self.store.query_relationships(
            conn,
            org_id,
            from_entity_id=parsed["from_entity_id"],
            to_entity_id=parsed["to_entity_id"],
            relationship_type=parsed["relationship_type"],
            is_active=True,
        ):
            if (
                rel.smart_code == parsed["smart_code"]
                and rel.relationship_data == parsed["relationship_data"]
            ):
                return rel
        return None

    def _find_path(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        start_id: str,
        target_id: str,
        relationship_type: str,
    ) -> list[str] | None:
        """BFS along active same-type edges; the path start..target or None."""
        if start_id == target_id:
            return [start_id]
        parents: dict[str, str | None] = {start_id: None}
        queue = deque([start_id])
        while queue:
            current = queue.popleft()
            for edge in self.store.query_relationships(
                conn,
                org_id,
                from_entity_id=current,
                relationship_type=relationship_type,
                is_active=True,
            ):
                nxt = edge.to_entity_id
                if nxt in parents:
                    continue
                parents[nxt] = current
                if nxt == target_id:
                    path = [nxt]
                    step = parents[nxt]
                    while step is not None:
                        path.append(step)
                        step = parents[step]
                    return list(reversed(path))
                queue.append(nxt)
        return None

    async def create_relationship(
        self,
        org_id: str,
        from_entity_id: str,
        to_entity_id: str,
        relationship_type: str,
        smart_code: str,
        relationship_data: dict[str, Any] | None = None,
        actor_id: str | None = None,
        effective_date: str | None = None,
        deadline: Deadline | None = None,
    ) -> Relationship:
        """Create a directed typed edge.

        Returns:
            Created Relationship

        Raises:
            ValidationError: If the smart code or type is malformed
            ReferentialError: If an endpoint does not exist
            CrossOrgAccessError: If an endpoint belongs to another organization
            CycleError: If a hierarchical edge would close a cycle
            DuplicateCodeError: If the same active edge already exists
        """
        parsed = self.parse_payload(
            {
                "from_entity_id": from_entity_id,
                "to_entity_id": to_entity_id,
                "relationship_type": relationship_type,
                "smart_code": smart_code,
                "relationship_data": relationship_data,
                "effective_date": effective_date,
            }
        )
        with self.store.unit_of_work("create_relationship", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            rel = self.create_in_unit(conn, org_id, parsed, actor_id)

        logger.debug(
            "Created relationship",
            extra={
                "organization_id": org_id,
                "relationship_id": rel.id,
                "relationship_type": rel.relationship_type,
            },
        )
        return rel

    async def get_relationship(
        self, org_id: str, relationship_id: str, deadline: Deadline | None = None
    ) -> Relationship:
        with self.store.read_snapshot("get_relationship", self._deadline(deadline)) as conn:
            rel = self.store.fetch_relationship(conn, org_id, relationship_id)
            if rel is None:
                self._check_owner(conn, org_id, "relationship", relationship_id)
                raise ReferentialError(
                    f"Relationship not found: {relationship_id}",
                    resource_type="relationship",
                    resource_id=relationship_id,
                )
        return rel

    async def read_relationships(
        self,
        org_id: str,
        filters: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> list[Relationship]:
        """Read edges filtered by from_entity_id, to_entity_id, relationship_type, is_active.

        limit defaults to 100 and is capped at 1000.
        """
        filters = filters or {}
        relationship_type = filters.get("relationship_type")
        if relationship_type is not None:
            relationship_type = normalize_type_tag(relationship_type, "relationship_type")
        limit, offset = read_window(filters)
        with self.store.read_snapshot("read_relationships", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            return self.store.query_relationships(
                conn,
                org_id,
                from_entity_id=filters.get("from_entity_id"),
                to_entity_id=filters.get("to_entity_id"),
                relationship_type=relationship_type,
                is_active=filters.get("is_active"),
                limit=limit,
                offset=offset,
            )

    async def delete_relationship(
        self, org_id: str, relationship_id: str, deadline: Deadline | None = None
    ) -> bool:
        """Hard-delete an edge.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            CrossOrgAccessError: If the edge belongs to another organization
        """
        with self.store.unit_of_work("delete_relationship", self._deadline(deadline)) as conn:
            if not self._check_owner(conn, org_id, "relationship", relationship_id):
                return False
            deleted = self.store.delete_relationship_row(conn, org_id, relationship_id)

        logger.debug(
            "Deleted relationship",
            extra={"organization_id": org_id, "relationship_id": relationship_id},
        )
        return deleted

    async def rollup(
        self,
        org_id: str,
        root_id: str,
        relationship_type: str,
        max_depth: int | None = None,
        deadline: Deadline | None = None,
    ) -> HierarchyNode:
        """Descendant tree of root_id along outgoing active edges of one type.

        Each entity appears once, at its shallowest depth.

        Raises:
            ReferentialError: If root does not exist
            CrossOrgAccessError: If root belongs to another organization
        """
        relationship_type = normalize_type_tag(relationship_type, "relationship_type")
        with self.store.read_snapshot("rollup", self._deadline(deadline)) as conn:
            root_entity = self._require_entity(conn, org_id, root_id, "root_id")
            root = HierarchyNode(entity=root_entity, depth=0)
            visited = {root_id}
            queue = deque([root])
            while queue:
                node = queue.popleft()
                if max_depth is not None and node.depth >= max_depth:
                    continue
                edges = [
                    e
                    for e in self.store.query_relationships(
                        conn,
                        org_id,
                        from_entity_id=node.entity.id,
                        relationship_type=relationship_type,
                        is_active=True,
                    )
                    if e.to_entity_id not in visited
                ]
                children = {
                    e.id: e
                    for e in self.store.query_entities(
                        conn,
                        org_id,
                        entity_ids=[edge.to_entity_id for edge in edges],
                        limit=len(edges) or 1,
                    )
                }
                for edge in edges:
                    child_entity = children.get(edge.to_entity_id)
                    if child_entity is None or edge.to_entity_id in visited:
                        continue
                    visited.add(edge.to_entity_id)
                    child = HierarchyNode(
                        entity=child_entity, depth=node.depth + 1, relationship_id=edge.id
                    )
                    node.children.append(child)
                    queue.append(child)
        return root

    async def ancestors(
        self,
        org_id: str,
        entity_id: str,
        relationship_type: str,
        deadline: Deadline | None = None,
    ) -> list[Entity]:
        """Entities reachable by walking incoming active edges of one type, nearest first."""
        relationship_type = normalize_type_tag(relationship_type, "relationship_type")
        with self.store.read_snapshot("ancestors", self._deadline(deadline)) as conn:
            self._require_entity(conn, org_id, entity_id, "entity_id")
            visited = {entity_id}
            order: list[str] = []
            queue = deque([entity_id])
            while queue:
                current = queue.popleft()
                for edge in self.store.query_relationships(
                    conn,
                    org_id,
                    to_entity_id=current,
                    relationship_type=relationship_type,
                    is_active=True,
                ):
                    if edge.from_entity_id in visited:
                        continue
                    visited.add(edge.from_entity_id)
                    order.append(edge.from_entity_id)
                    queue.append(edge.from_entity_id)
            if not order:
                return []
            by_id = {
                e.id: e
                for e in self.store.query_entities(
                    conn, org_id, entity_ids=order, limit=len(order)
                )
            }
        return [by_id[i] for i in order if i in by_id]
