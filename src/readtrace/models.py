"""Domain models shared by the session tracker, graph, analytics and archive layers."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Mapping, Union

HighlightType = Literal["text", "area"]
NodeKind = Literal["highlight", "group", "overview"]
EdgeKind = Literal["chronological", "relational"]

HIGHLIGHT_TEXT: HighlightType = "text"
HIGHLIGHT_AREA: HighlightType = "area"

NODE_HIGHLIGHT: NodeKind = "highlight"
NODE_GROUP: NodeKind = "group"
NODE_OVERVIEW: NodeKind = "overview"

EDGE_CHRONOLOGICAL: EdgeKind = "chronological"
EDGE_RELATIONAL: EdgeKind = "relational"
EDGE_KINDS: tuple[EdgeKind, ...] = (EDGE_CHRONOLOGICAL, EDGE_RELATIONAL)


class ReadtraceError(RuntimeError):
    """Base class for failures surfaced by readtrace components."""


def new_id() -> str:
    return uuid.uuid4().hex


def pair_key(owner_id: str, document_id: str) -> str:
    """Key used by the storage contract for one (owner, document) pair."""

    return f"{owner_id}_{document_id}"


@dataclass(slots=True)
class Position:
    """Visualization-space coordinates of a graph node."""

    x: float
    y: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Position:
        return cls(x=float(payload.get("x", 0.0)), y=float(payload.get("y", 0.0)))


@dataclass(slots=True, frozen=True)
class BoundingRect:
    """Page-local geometry of a highlight, in viewer pixels.

    ``width`` and ``height`` are the size of the page in the same coordinate
    space as ``x1..y2``, so the rect can be normalized without knowing the
    zoom level it was captured at.
    """

    page_number: int
    x1: float
    y1: float
    x2: float
    y2: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "pageNumber": self.page_number,
            "x1": self.x1,
            "y1": self.y1,
            "x2": self.x2,
            "y2": self.y2,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> BoundingRect:
        return cls(
            page_number=int(payload.get("pageNumber", 1)),
            x1=float(payload.get("x1", 0.0)),
            y1=float(payload.get("y1", 0.0)),
            x2=float(payload.get("x2", 0.0)),
            y2=float(payload.get("y2", 0.0)),
            width=float(payload.get("width", 0.0)),
            height=float(payload.get("height", 0.0)),
        )


@dataclass(slots=True)
class Purpose:
    """A named reading intent declared before highlighting."""

    id: str
    document_id: str
    owner_id: str
    title: str
    color: str
    description: str | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "documentId": self.document_id,
            "ownerId": self.owner_id,
            "title": self.title,
            "color": self.color,
        }
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Purpose:
        return cls(
            id=str(payload["id"]),
            document_id=str(payload.get("documentId", "")),
            owner_id=str(payload.get("ownerId", "")),
            title=str(payload.get("title", "")),
            color=str(payload.get("color", "")),
            description=payload.get("description"),
        )


@dataclass(slots=True, frozen=True)
class Highlight:
    """A user-marked span or region, tagged with the purpose active when made."""

    id: str
    type: HighlightType
    document_id: str
    owner_id: str
    purpose_id: str
    session_id: str
    content: str
    bounding_rect: BoundingRect
    timestamp: int
    pos_percentage: float

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": self.type,
            "documentId": self.document_id,
            "ownerId": self.owner_id,
            "purposeId": self.purpose_id,
            "sessionId": self.session_id,
            "content": self.content,
            "boundingRect": self.bounding_rect.to_dict(),
            "timestamp": self.timestamp,
            "posPercentage": self.pos_percentage,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Highlight:
        kind = payload.get("type", HIGHLIGHT_TEXT)
        if kind not in (HIGHLIGHT_TEXT, HIGHLIGHT_AREA):
            raise ValueError(f"Unknown highlight type: {kind!r}")
        return cls(
            id=str(payload["id"]),
            type=kind,
            document_id=str(payload.get("documentId", "")),
            owner_id=str(payload.get("ownerId", "")),
            purpose_id=str(payload.get("purposeId", "")),
            session_id=str(payload.get("sessionId", "")),
            content=str(payload.get("content", "")),
            bounding_rect=BoundingRect.from_dict(payload.get("boundingRect") or {}),
            timestamp=int(payload.get("timestamp", 0)),
            pos_percentage=float(payload.get("posPercentage", 0.0)),
        )


@dataclass(slots=True, frozen=True)
class Session:
    """One continuous interval of reading under a single purpose.

    Instances are immutable; the tracker publishes a new record on every tick
    so readers never observe a half-updated session.
    """

    id: str
    owner_id: str
    document_id: str
    purpose_id: str
    start_time: int
    duration: int = 0
    scroll_sequence: tuple[float, ...] = ()

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "documentId": self.document_id,
            "purposeId": self.purpose_id,
            "startTime": self.start_time,
            "duration": self.duration,
            "scrollSequence": list(self.scroll_sequence),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Session:
        return cls(
            id=str(payload["id"]),
            owner_id=str(payload.get("ownerId", "")),
            document_id=str(payload.get("documentId", "")),
            purpose_id=str(payload.get("purposeId", "")),
            start_time=int(payload.get("startTime", 0)),
            duration=int(payload.get("duration", 0)),
            scroll_sequence=tuple(float(v) for v in payload.get("scrollSequence", ())),
        )


# Node payloads ------------------------------------------------------------


@dataclass(slots=True)
class HighlightNodeData:
    label: str
    content: str
    type: HighlightType
    summary: str = ""
    notes: str = ""

    kind: ClassVar[str] = "highlight"
    editable: ClassVar[frozenset[str]] = frozenset({"label", "summary", "notes"})

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "label": self.label,
            "content": self.content,
            "type": self.type,
            "summary": self.summary,
            "notes": self.notes,
        }


@dataclass(slots=True)
class GroupNodeData:
    label: str
    notes: str = ""
    children: list[str] = field(default_factory=list)

    kind: ClassVar[str] = "group"
    editable: ClassVar[frozenset[str]] = frozenset({"label", "notes"})

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "label": self.label,
            "notes": self.notes,
            "children": list(self.children),
        }


@dataclass(slots=True)
class PurposeNodeData:
    label: str

    kind: ClassVar[str] = "purpose"
    editable: ClassVar[frozenset[str]] = frozenset({"label"})

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "label": self.label}


NodeData = Union[HighlightNodeData, GroupNodeData, PurposeNodeData]

_DATA_KIND_FOR_NODE: dict[str, str] = {
    NODE_HIGHLIGHT: HighlightNodeData.kind,
    NODE_GROUP: GroupNodeData.kind,
    NODE_OVERVIEW: PurposeNodeData.kind,
}


def node_data_from_dict(payload: Mapping[str, Any]) -> NodeData:
    """Rebuild a node payload, dispatching on its ``kind`` tag."""

    kind = payload.get("kind")
    if kind == HighlightNodeData.kind:
        highlight_type = payload.get("type", HIGHLIGHT_TEXT)
        if highlight_type not in (HIGHLIGHT_TEXT, HIGHLIGHT_AREA):
            raise ValueError(f"Unknown highlight type: {highlight_type!r}")
        return HighlightNodeData(
            label=str(payload.get("label", "")),
            content=str(payload.get("content", "")),
            type=highlight_type,
            summary=str(payload.get("summary", "")),
            notes=str(payload.get("notes", "")),
        )
    if kind == GroupNodeData.kind:
        return GroupNodeData(
            label=str(payload.get("label", "")),
            notes=str(payload.get("notes", "")),
            children=[str(child) for child in payload.get("children", [])],
        )
    if kind == PurposeNodeData.kind:
        return PurposeNodeData(label=str(payload.get("label", "")))
    raise ValueError(f"Unknown node data kind: {kind!r}")


@dataclass(slots=True)
class Node:
    """Graph vertex; ``highlight`` nodes share their id with a Highlight."""

    id: str
    kind: NodeKind
    data: NodeData
    position: Position
    purpose_id: str = ""

    def __post_init__(self) -> None:
        expected = _DATA_KIND_FOR_NODE.get(self.kind)
        if expected is None:
            raise ValueError(f"Unknown node kind: {self.kind!r}")
        if self.data.kind != expected:
            raise ValueError(f"{self.kind} node cannot carry {self.data.kind} data")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind,
            "purposeId": self.purpose_id,
            "data": self.data.to_dict(),
            "position": self.position.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Node:
        return cls(
            id=str(payload["id"]),
            kind=payload.get("kind", NODE_HIGHLIGHT),
            data=node_data_from_dict(payload.get("data") or {}),
            position=Position.from_dict(payload.get("position") or {}),
            purpose_id=str(payload.get("purposeId", "")),
        )


@dataclass(slots=True)
class Edge:
    """Directed arc; ``hidden`` is a display projection, not structure."""

    id: str
    source: str
    target: str
    kind: EdgeKind
    hidden: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "kind": self.kind,
            "hidden": self.hidden,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Edge:
        kind = payload.get("kind", EDGE_RELATIONAL)
        if kind not in EDGE_KINDS:
            raise ValueError(f"Unknown edge kind: {kind!r}")
        return cls(
            id=str(payload["id"]),
            source=str(payload["source"]),
            target=str(payload["target"]),
            kind=kind,
            hidden=bool(payload.get("hidden", False)),
        )


@dataclass(slots=True)
class Canvas:
    """Persisted snapshot of nodes and edges for one (owner, document) pair."""

    id: str
    owner_id: str
    document_id: str
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    @property
    def serialized_graph(self) -> str:
        return json.dumps(
            {
                "nodes": [node.to_dict() for node in self.nodes],
                "edges": [edge.to_dict() for edge in self.edges],
            }
        )

    @classmethod
    def from_serialized(cls, canvas_id: str, owner_id: str, document_id: str, text: str) -> Canvas:
        payload = json.loads(text) if text else {}
        return cls(
            id=canvas_id,
            owner_id=owner_id,
            document_id=document_id,
            nodes=[Node.from_dict(item) for item in payload.get("nodes", [])],
            edges=[Edge.from_dict(item) for item in payload.get("edges", [])],
        )


@dataclass(slots=True, frozen=True)
class PurposeTemplate:
    """A named set of purposes created together (e.g. the three-pass method)."""

    name: str
    purposes: tuple[tuple[str, str], ...]


@dataclass(slots=True, frozen=True)
class ReadingGoal:
    goal_name: str
    goal_description: str

    def to_dict(self) -> dict[str, str]:
        return {"goalName": self.goal_name, "goalDescription": self.goal_description}


@dataclass(slots=True, frozen=True)
class ReadingSuggestion:
    """Reading-progress assessment plus proposed goals from the suggestion service."""

    reading_progress: str
    reading_goals: tuple[ReadingGoal, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "readingProgress": self.reading_progress,
            "readingGoals": [goal.to_dict() for goal in self.reading_goals],
        }
