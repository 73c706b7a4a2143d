"""Annotation graph: highlights, purposes, nodes and the two edge families."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from .config import get_settings
from .geometry import ViewerMetrics, document_position
from .models import (
    EDGE_CHRONOLOGICAL,
    EDGE_KINDS,
    EDGE_RELATIONAL,
    HIGHLIGHT_AREA,
    NODE_GROUP,
    NODE_HIGHLIGHT,
    NODE_OVERVIEW,
    BoundingRect,
    Canvas,
    Edge,
    EdgeKind,
    GroupNodeData,
    Highlight,
    HighlightNodeData,
    HighlightType,
    Node,
    Position,
    Purpose,
    PurposeNodeData,
    PurposeTemplate,
    ReadtraceError,
    new_id,
    pair_key,
)
from .session import Clock, wall_clock_ms

logger = logging.getLogger(__name__)

LABEL_WORD_LIMIT = 10
_CHAINED_KINDS = (NODE_HIGHLIGHT, NODE_GROUP)


class NoActivePurposeError(ReadtraceError):
    """Raised when highlighting without a current purpose."""


class UnknownNodeError(ReadtraceError):
    """Raised when an operation names a node that is not in the graph."""


class UnknownPurposeError(ReadtraceError):
    """Raised when an operation names a purpose that is not in the graph."""


@dataclass(slots=True, frozen=True)
class RawHighlight:
    """Selection event emitted by the document rendering surface."""

    type: HighlightType
    content: str
    bounding_rect: BoundingRect


def highlight_label(raw: RawHighlight) -> str:
    if raw.type == HIGHLIGHT_AREA:
        return "Image"
    words = raw.content.strip().split()
    if len(words) > LABEL_WORD_LIMIT:
        return " ".join(words[:LABEL_WORD_LIMIT]) + "..."
    return " ".join(words)


class AnnotationGraph:
    """Keeps highlights, nodes and edges consistent for one (owner, document) pair.

    The chronological edges form a single chain across every purpose: each new
    highlight or group node is linked from the node added just before it.
    """

    def __init__(
        self,
        owner_id: str,
        document_id: str,
        *,
        node_offset_x: float | None = None,
        node_offset_y: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        settings = get_settings()
        self.owner_id = owner_id
        self.document_id = document_id
        self.node_offset_x = settings.node_offset_x if node_offset_x is None else node_offset_x
        self.node_offset_y = settings.node_offset_y if node_offset_y is None else node_offset_y
        self.clock = clock or wall_clock_ms

        self.highlights: dict[str, Highlight] = {}
        self.nodes: dict[str, Node] = {}
        self.edges: dict[str, Edge] = {}
        self.purposes: dict[str, Purpose] = {}
        self.current_purpose_id = ""
        self._selected: list[str] = []
        self._displayed_purposes: list[str] = []
        self._visible_edge_kinds: set[str] = set(EDGE_KINDS)

    @property
    def key(self) -> str:
        return pair_key(self.owner_id, self.document_id)

    # Purposes ----------------------------------------------------------
    def create_purpose(
        self,
        title: str,
        color: str,
        description: str | None = None,
        *,
        purpose_id: str | None = None,
    ) -> Purpose:
        """Register a purpose and make it the current one."""

        purpose = Purpose(
            id=purpose_id or new_id(),
            document_id=self.document_id,
            owner_id=self.owner_id,
            title=title,
            color=color,
            description=description,
        )
        self.purposes[purpose.id] = purpose
        self.current_purpose_id = purpose.id
        self.show_purpose(purpose.id)
        return purpose

    def apply_template(self, template: PurposeTemplate) -> list[Purpose]:
        created = [self.create_purpose(title, color) for title, color in template.purposes]
        if created:
            self.current_purpose_id = created[0].id
        return created

    def set_current_purpose(self, purpose_id: str) -> Purpose:
        purpose = self._require_purpose(purpose_id)
        self.current_purpose_id = purpose.id
        return purpose

    def update_purpose(
        self,
        purpose_id: str,
        *,
        title: str | None = None,
        color: str | None = None,
        description: str | None = None,
    ) -> Purpose:
        purpose = self._require_purpose(purpose_id)
        if title is not None:
            purpose.title = title
        if color is not None:
            purpose.color = color
        if description is not None:
            purpose.description = description
        overview = self._overview_node(purpose_id)
        if overview is not None and title is not None:
            overview.data = PurposeNodeData(label=title)
        return purpose

    def remove_purpose(self, purpose_id: str) -> Purpose:
        """Drop a purpose; its highlights are kept and still reference it."""

        purpose = self._require_purpose(purpose_id)
        del self.purposes[purpose_id]
        if self.current_purpose_id == purpose_id:
            self.current_purpose_id = ""
        self.hide_purpose(purpose_id)
        overview = self._overview_node(purpose_id)
        if overview is not None:
            self._excise(overview.id)
        return purpose

    def show_purpose(self, purpose_id: str) -> None:
        if purpose_id not in self._displayed_purposes:
            self._displayed_purposes.append(purpose_id)

    def hide_purpose(self, purpose_id: str) -> None:
        if purpose_id in self._displayed_purposes:
            self._displayed_purposes.remove(purpose_id)

    @property
    def displayed_purposes(self) -> list[str]:
        return list(self._displayed_purposes)

    def add_overview_node(self, purpose_id: str) -> Node:
        """Column header node for a purpose; it never joins the chronological chain."""

        purpose = self._require_purpose(purpose_id)
        existing = self._overview_node(purpose_id)
        if existing is not None:
            return existing
        node_id = self._overview_id(purpose_id)
        node = Node(
            id=node_id,
            kind=NODE_OVERVIEW,
            data=PurposeNodeData(label=purpose.title),
            position=Position(self._purpose_index(purpose_id) * self.node_offset_x, 0.0),
            purpose_id=purpose_id,
        )
        self.nodes[node_id] = node
        return node

    # Highlights ----------------------------------------------------------
    def add_highlight(
        self,
        raw: RawHighlight,
        active_purpose_id: str,
        active_session_id: str,
        metrics: ViewerMetrics,
    ) -> Highlight:
        """Record a highlight, its node, and the chronological link to the previous node."""

        if not active_purpose_id:
            raise NoActivePurposeError("Create or select a purpose before highlighting")
        if active_purpose_id not in self.purposes:
            raise NoActivePurposeError(f"Purpose {active_purpose_id} is not part of this graph")

        highlight = Highlight(
            id=new_id(),
            type=raw.type,
            document_id=self.document_id,
            owner_id=self.owner_id,
            purpose_id=active_purpose_id,
            session_id=active_session_id,
            content=raw.content,
            bounding_rect=raw.bounding_rect,
            timestamp=self.clock(),
            pos_percentage=document_position(raw.bounding_rect, metrics),
        )

        previous = self._latest_chained_node()
        if previous is not None and self._has_chained_node(active_purpose_id):
            position = Position(previous.position.x, previous.position.y + self.node_offset_y)
        else:
            position = self._first_position(active_purpose_id)

        node = Node(
            id=highlight.id,
            kind=NODE_HIGHLIGHT,
            data=HighlightNodeData(label=highlight_label(raw), content=raw.content, type=raw.type),
            position=position,
            purpose_id=active_purpose_id,
        )
        self.highlights[highlight.id] = highlight
        self.nodes[node.id] = node
        if previous is not None:
            self._add_edge(previous.id, node.id, EDGE_CHRONOLOGICAL)
        self._selected = [highlight.id]
        logger.debug("Added highlight %s under purpose %s", highlight.id, active_purpose_id)
        return highlight

    def remove_highlight(self, node_id: str) -> None:
        """Remove a node and reconnect its chronological neighbours."""

        self._require_node(node_id)
        predecessor = self._chronological_neighbour(node_id, incoming=True)
        successor = self._chronological_neighbour(node_id, incoming=False)
        if predecessor is not None and successor is not None:
            self._add_edge(predecessor, successor, EDGE_CHRONOLOGICAL)
        self._excise(node_id)

    def delete_highlight(self, node_id: str) -> None:
        """Remove a node without relinking; the chronological chain is left broken."""

        self._require_node(node_id)
        self._excise(node_id)

    def reset(self) -> None:
        self.highlights.clear()
        self.nodes.clear()
        self.edges.clear()
        self._selected = []

    # Groups and links ----------------------------------------------------
    def create_group_node(self, child_ids: Sequence[str], label: str) -> Node | None:
        """Group two or more nodes under a theme node; returns ``None`` otherwise."""

        children = [child for child in dict.fromkeys(child_ids) if child in self.nodes]
        if len(children) < 2:
            logger.debug("Ignoring group request with %d usable children", len(children))
            return None

        child_nodes = [self.nodes[child] for child in children]
        centroid_x = sum(node.position.x for node in child_nodes) / len(child_nodes)
        centroid_y = sum(node.position.y for node in child_nodes) / len(child_nodes)
        purpose_id = self.current_purpose_id or child_nodes[0].purpose_id

        previous = self._latest_chained_node()
        group = Node(
            id=new_id(),
            kind=NODE_GROUP,
            data=GroupNodeData(label=label, children=children),
            position=Position(centroid_x + self.node_offset_x, centroid_y),
            purpose_id=purpose_id,
        )
        self.nodes[group.id] = group
        if previous is not None:
            self._add_edge(previous.id, group.id, EDGE_CHRONOLOGICAL)
        for child in children:
            self._add_edge(group.id, child, EDGE_RELATIONAL)
        return group

    def connect(self, selected_ids: Iterable[str] | None, target_id: str) -> list[Edge]:
        """Fan-in relational edges from every selected node to ``target_id``.

        Self links, unknown sources and already-existing links are skipped.
        The selection is cleared afterwards.
        """

        self._require_node(target_id)
        sources = self._selected if selected_ids is None else list(selected_ids)
        created: list[Edge] = []
        for source in dict.fromkeys(sources):
            if source == target_id or source not in self.nodes:
                continue
            if self._find_edge(source, target_id, EDGE_RELATIONAL) is not None:
                continue
            created.append(self._add_edge(source, target_id, EDGE_RELATIONAL))
        self.clear_selection()
        return created

    def update_node_data(self, node_id: str, **fields: str) -> Node:
        node = self._require_node(node_id)
        unknown = set(fields) - node.data.editable
        if unknown:
            raise ValueError(f"Cannot edit {sorted(unknown)} on a {node.kind} node")
        node.data = replace(node.data, **fields)
        return node

    # Selection -----------------------------------------------------------
    @property
    def selected_ids(self) -> list[str]:
        return list(self._selected)

    def select(self, node_ids: Iterable[str]) -> None:
        self._selected = [node_id for node_id in dict.fromkeys(node_ids) if node_id in self.nodes]

    def toggle_selection(self, node_id: str) -> None:
        if node_id in self._selected:
            self._selected.remove(node_id)
        elif node_id in self.nodes:
            self._selected.append(node_id)

    def clear_selection(self) -> None:
        self._selected = []

    # Edge visibility -----------------------------------------------------
    @property
    def visible_edge_kinds(self) -> set[str]:
        return set(self._visible_edge_kinds)

    def set_visible_edge_kinds(self, kinds: Iterable[str]) -> None:
        requested = set(kinds)
        unknown = requested - set(EDGE_KINDS)
        if unknown:
            raise ValueError(f"Unknown edge kinds: {sorted(unknown)}")
        self._visible_edge_kinds = requested
        for edge in self.edges.values():
            edge.hidden = edge.kind not in requested

    # Queries -------------------------------------------------------------
    def chronological_path(self) -> list[str]:
        """Node ids along the chronological chain, starting at its earliest head."""

        successors: dict[str, str] = {}
        has_incoming: set[str] = set()
        for edge in self.edges.values():
            if edge.kind == EDGE_CHRONOLOGICAL:
                successors[edge.source] = edge.target
                has_incoming.add(edge.target)
        heads = [
            node.id
            for node in self.nodes.values()
            if node.kind in _CHAINED_KINDS and node.id not in has_incoming
        ]
        if not heads:
            return []
        path = [heads[0]]
        seen = {heads[0]}
        while path[-1] in successors:
            nxt = successors[path[-1]]
            if nxt in seen:
                break
            path.append(nxt)
            seen.add(nxt)
        return path

    def edges_touching(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges.values() if node_id in (edge.source, edge.target)]

    # Snapshots -----------------------------------------------------------
    def snapshot(self) -> Canvas:
        return Canvas(
            id=self.key,
            owner_id=self.owner_id,
            document_id=self.document_id,
            nodes=list(self.nodes.values()),
            edges=list(self.edges.values()),
        )

    def load_state(
        self,
        *,
        highlights: Iterable[Highlight] = (),
        nodes: Iterable[Node] = (),
        edges: Iterable[Edge] = (),
        purposes: Iterable[Purpose] = (),
    ) -> None:
        """Replace every collection, e.g. after loading from storage or an archive."""

        self.highlights = {item.id: item for item in highlights}
        self.nodes = {item.id: item for item in nodes}
        self.edges = {item.id: item for item in edges}
        self.purposes = {item.id: item for item in purposes}
        self._displayed_purposes = list(self.purposes)
        self._selected = []
        if self.current_purpose_id not in self.purposes:
            self.current_purpose_id = ""
        for edge in self.edges.values():
            edge.hidden = edge.kind not in self._visible_edge_kinds
        orphans = [hid for hid in self.highlights if hid not in self.nodes]
        if orphans:
            logger.warning("Loaded %d highlights without a graph node", len(orphans))

    # Internals -----------------------------------------------------------
    def _require_node(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(f"Node {node_id} is not in the graph")
        return node

    def _require_purpose(self, purpose_id: str) -> Purpose:
        purpose = self.purposes.get(purpose_id)
        if purpose is None:
            raise UnknownPurposeError(f"Purpose {purpose_id} is not in the graph")
        return purpose

    def _purpose_index(self, purpose_id: str) -> int:
        return list(self.purposes).index(purpose_id)

    @staticmethod
    def _overview_id(purpose_id: str) -> str:
        return f"overview-{purpose_id}"

    def _overview_node(self, purpose_id: str) -> Node | None:
        for node in self.nodes.values():
            if node.kind == NODE_OVERVIEW and node.purpose_id == purpose_id:
                return node
        return None

    def _first_position(self, purpose_id: str) -> Position:
        return Position(self._purpose_index(purpose_id) * self.node_offset_x, self.node_offset_y)

    def _has_chained_node(self, purpose_id: str) -> bool:
        return any(
            node.purpose_id == purpose_id and node.kind in _CHAINED_KINDS
            for node in self.nodes.values()
        )

    def _latest_chained_node(self) -> Node | None:
        for node in reversed(list(self.nodes.values())):
            if node.kind in _CHAINED_KINDS:
                return node
        return None

    def _chronological_neighbour(self, node_id: str, *, incoming: bool) -> str | None:
        for edge in self.edges.values():
            if edge.kind != EDGE_CHRONOLOGICAL:
                continue
            if incoming and edge.target == node_id:
                return edge.source
            if not incoming and edge.source == node_id:
                return edge.target
        return None

    def _find_edge(self, source: str, target: str, kind: EdgeKind) -> Edge | None:
        for edge in self.edges.values():
            if edge.source == source and edge.target == target and edge.kind == kind:
                return edge
        return None

    def _add_edge(self, source: str, target: str, kind: EdgeKind) -> Edge:
        edge = Edge(
            id=new_id(),
            source=source,
            target=target,
            kind=kind,
            hidden=kind not in self._visible_edge_kinds,
        )
        self.edges[edge.id] = edge
        return edge

    def _excise(self, node_id: str) -> None:
        self.highlights.pop(node_id, None)
        self.nodes.pop(node_id, None)
        self.edges = {
            edge_id: edge
            for edge_id, edge in self.edges.items()
            if node_id not in (edge.source, edge.target)
        }
        if node_id in self._selected:
            self._selected.remove(node_id)
        for node in self.nodes.values():
            if isinstance(node.data, GroupNodeData) and node_id in node.data.children:
                node.data.children.remove(node_id)


__all__ = [
    "AnnotationGraph",
    "LABEL_WORD_LIMIT",
    "NoActivePurposeError",
    "RawHighlight",
    "UnknownNodeError",
    "UnknownPurposeError",
    "highlight_label",
]
