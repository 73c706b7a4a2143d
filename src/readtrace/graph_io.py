"""Zip archive export/import for annotation graphs.

An archive holds one JSON manifest and, optionally, the document it was made
against. Importing several archives merges them into one graph; every id is
prefixed with the exporting owner's id so graphs from different readers never
collide.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import IO, Any, Iterable, Mapping, Sequence, Union

from .models import (
    Edge,
    GroupNodeData,
    NODE_OVERVIEW,
    Highlight,
    Node,
    Purpose,
    ReadtraceError,
    Session,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "readtrace-graph.json"
DOCUMENT_NAME = "document.pdf"
UNKNOWN_OWNER = "unknown"

ArchiveSource = Union[str, Path, bytes, IO[bytes]]


class ArchiveError(ReadtraceError):
    """Raised when one archive cannot be read; other archives are unaffected."""


@dataclass(slots=True)
class ImportResult:
    highlights: list[Highlight] = field(default_factory=list)
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    purposes: list[Purpose] = field(default_factory=list)
    sessions: list[Session] = field(default_factory=list)
    document_bytes: bytes | None = None
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def owner_ids(self) -> list[str]:
        return list(dict.fromkeys(item.owner_id for item in self.purposes + self.highlights))

    def rehome(self, owner_id: str, document_id: str) -> ImportResult:
        """Move every record under (``owner_id``, ``document_id``).

        Ids keep their ``<ownerId>-`` prefix, so the exporter stays visible in
        them while the records belong to the canvas they were merged into.
        """

        return ImportResult(
            highlights=[replace(h, owner_id=owner_id, document_id=document_id) for h in self.highlights],
            nodes=list(self.nodes),
            edges=list(self.edges),
            purposes=[replace(p, owner_id=owner_id, document_id=document_id) for p in self.purposes],
            sessions=[replace(s, owner_id=owner_id, document_id=document_id) for s in self.sessions],
            document_bytes=self.document_bytes,
            failures=list(self.failures),
        )


@dataclass(slots=True)
class RemapTable:
    """Old id to ``<ownerId>-<oldId>`` for one archive."""

    owner_id: str
    mapping: dict[str, str] = field(default_factory=dict)

    def register(self, old_id: str) -> str:
        new_id = f"{self.owner_id}-{old_id}"
        self.mapping[old_id] = new_id
        return new_id

    def __call__(self, old_id: str) -> str:
        if not old_id:
            return old_id
        return self.mapping.get(old_id) or f"{self.owner_id}-{old_id}"


# Export ---------------------------------------------------------------------


def build_manifest(
    *,
    owner_id: str,
    highlights: Iterable[Highlight],
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    purposes: Iterable[Purpose],
    sessions: Iterable[Session] = (),
) -> dict[str, Any]:
    return {
        "ownerId": owner_id,
        "highlights": [item.to_dict() for item in highlights],
        "nodes": [item.to_dict() for item in nodes],
        "edges": [item.to_dict() for item in edges],
        "purposes": [item.to_dict() for item in purposes],
        "sessions": [item.to_dict() for item in sessions],
    }


def export_archive(
    target: str | Path | IO[bytes] | None = None,
    *,
    owner_id: str,
    highlights: Iterable[Highlight],
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    purposes: Iterable[Purpose],
    sessions: Iterable[Session] = (),
    document_bytes: bytes | None = None,
) -> bytes:
    """Write the archive to ``target`` (path or binary stream) and return its bytes."""

    manifest = build_manifest(
        owner_id=owner_id,
        highlights=highlights,
        nodes=nodes,
        edges=edges,
        purposes=purposes,
        sessions=sessions,
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(MANIFEST_NAME, json.dumps(manifest, indent=2))
        if document_bytes:
            archive.writestr(DOCUMENT_NAME, document_bytes)
    payload = buffer.getvalue()

    if isinstance(target, (str, Path)):
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
    elif target is not None:
        target.write(payload)
    logger.info(
        "Exported %d nodes and %d edges for %s",
        len(manifest["nodes"]),
        len(manifest["edges"]),
        owner_id,
    )
    return payload


# Import ---------------------------------------------------------------------


def _source_name(source: ArchiveSource, index: int) -> str:
    if isinstance(source, (str, Path)):
        return str(source)
    name = getattr(source, "name", None)
    return str(name) if name else f"archive-{index}"


def _open_zip(source: ArchiveSource) -> zipfile.ZipFile:
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        return zipfile.ZipFile(source)
    except zipfile.BadZipFile as exc:
        raise ArchiveError("not a zip archive") from exc
    except OSError as exc:
        raise ArchiveError(f"cannot open archive: {exc}") from exc


def _manifest_name(names: Sequence[str]) -> str:
    if MANIFEST_NAME in names:
        return MANIFEST_NAME
    for name in names:
        if name.endswith(".json"):
            return name
    raise ArchiveError("no JSON manifest in archive")


def _document_name(names: Sequence[str]) -> str | None:
    if DOCUMENT_NAME in names:
        return DOCUMENT_NAME
    return next((name for name in names if name.lower().endswith(".pdf")), None)


def read_archive(source: ArchiveSource) -> tuple[dict[str, Any], bytes | None]:
    """Return the raw manifest and embedded document of one archive."""

    with _open_zip(source) as archive:
        names = archive.namelist()
        manifest_name = _manifest_name(names)
        try:
            manifest = json.loads(archive.read(manifest_name).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ArchiveError(f"malformed manifest: {exc}") from exc
        if not isinstance(manifest, dict):
            raise ArchiveError("manifest is not a JSON object")
        document_name = _document_name(names)
        document = archive.read(document_name) if document_name else None
    return manifest, document


def remap_manifest(manifest: Mapping[str, Any]) -> ImportResult:
    """Rebuild the records of one manifest with owner-prefixed ids."""

    owner_id = str(manifest.get("ownerId") or UNKNOWN_OWNER)
    table = RemapTable(owner_id)
    try:
        purposes = [Purpose.from_dict(item) for item in manifest.get("purposes", [])]
        sessions = [Session.from_dict(item) for item in manifest.get("sessions", [])]
        highlights = [Highlight.from_dict(item) for item in manifest.get("highlights", [])]
        nodes = [Node.from_dict(item) for item in manifest.get("nodes", [])]
        edges = [Edge.from_dict(item) for item in manifest.get("edges", [])]
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ArchiveError(f"malformed records: {exc}") from exc

    for record in [*purposes, *sessions, *highlights, *nodes, *edges]:
        table.register(record.id)
    for node in nodes:
        if node.kind == NODE_OVERVIEW:
            table.mapping[node.id] = f"overview-{table(node.purpose_id)}"

    result = ImportResult()
    result.purposes = [replace(p, id=table(p.id), owner_id=owner_id) for p in purposes]
    result.sessions = [
        replace(s, id=table(s.id), owner_id=owner_id, purpose_id=table(s.purpose_id)) for s in sessions
    ]
    result.highlights = [
        replace(
            h,
            id=table(h.id),
            owner_id=owner_id,
            purpose_id=table(h.purpose_id),
            session_id=table(h.session_id),
        )
        for h in highlights
    ]
    for node in nodes:
        data = node.data
        if isinstance(data, GroupNodeData):
            data = replace(data, children=[table(child) for child in data.children])
        result.nodes.append(replace(node, id=table(node.id), purpose_id=table(node.purpose_id), data=data))
    result.edges = [
        replace(e, id=table(e.id), source=table(e.source), target=table(e.target)) for e in edges
    ]
    return result


def import_archives(sources: Iterable[ArchiveSource]) -> ImportResult:
    """Merge every readable archive; unreadable ones are listed in ``failures``."""

    combined = ImportResult()
    for index, source in enumerate(sources):
        name = _source_name(source, index)
        try:
            manifest, document = read_archive(source)
            result = remap_manifest(manifest)
        except ArchiveError as exc:
            logger.warning("Skipping archive %s: %s", name, exc)
            combined.failures.append((name, str(exc)))
            continue
        combined.highlights.extend(result.highlights)
        combined.nodes.extend(result.nodes)
        combined.edges.extend(result.edges)
        combined.purposes.extend(result.purposes)
        combined.sessions.extend(result.sessions)
        if document is not None and combined.document_bytes is None:
            combined.document_bytes = document
        logger.info("Imported %d highlights from %s", len(result.highlights), name)
    return combined


def import_archive(source: ArchiveSource) -> ImportResult:
    return import_archives([source])


__all__ = [
    "ArchiveError",
    "DOCUMENT_NAME",
    "ImportResult",
    "MANIFEST_NAME",
    "RemapTable",
    "build_manifest",
    "export_archive",
    "import_archive",
    "import_archives",
    "read_archive",
    "remap_manifest",
]
