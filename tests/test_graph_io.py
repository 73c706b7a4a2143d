from __future__ import annotations

import io
import json
import zipfile
from dataclasses import replace

from conftest import make_rect
from readtrace.geometry import ViewerMetrics
from readtrace.graph import AnnotationGraph, RawHighlight
from readtrace.graph_io import (
    DOCUMENT_NAME,
    MANIFEST_NAME,
    export_archive,
    import_archive,
    import_archives,
)
from readtrace.models import Session

METRICS = ViewerMetrics(page_height=1000.0, page_count=4)


def build_graph(owner: str = "alice") -> AnnotationGraph:
    graph = AnnotationGraph(owner, "doc-1", node_offset_x=150, node_offset_y=150, clock=lambda: 1000)
    graph.create_purpose("Skim", "#FFADAD", purpose_id="p1")
    for text in ("alpha", "beta", "gamma"):
        raw = RawHighlight(type="text", content=text, bounding_rect=make_rect())
        graph.add_highlight(raw, "p1", "s1", METRICS)
    first, second = list(graph.highlights)[:2]
    graph.create_group_node([first, second], "Theme")
    return graph


def export_graph(graph: AnnotationGraph, target=None, owner_id=None, document_bytes=None) -> bytes:
    return export_archive(
        target,
        owner_id=owner_id or graph.owner_id,
        highlights=graph.highlights.values(),
        nodes=graph.nodes.values(),
        edges=graph.edges.values(),
        purposes=graph.purposes.values(),
        sessions=[Session(id="s1", owner_id=graph.owner_id, document_id="doc-1", purpose_id="p1", start_time=0, duration=5000)],
        document_bytes=document_bytes,
    )


def zip_bytes(entries: dict[str, bytes | str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def test_export_writes_manifest_and_document(tmp_path):
    graph = build_graph()
    target = tmp_path / "out" / "graph.zip"

    payload = export_graph(graph, target, document_bytes=b"%PDF-1.7")

    assert target.read_bytes() == payload
    with zipfile.ZipFile(target) as archive:
        assert set(archive.namelist()) == {MANIFEST_NAME, DOCUMENT_NAME}
        manifest = json.loads(archive.read(MANIFEST_NAME))
    assert manifest["ownerId"] == "alice"
    assert len(manifest["highlights"]) == 3
    assert len(manifest["nodes"]) == 4
    assert manifest["purposes"][0]["title"] == "Skim"


def test_import_prefixes_every_reference(tmp_path):
    graph = build_graph()
    path = tmp_path / "alice.zip"
    export_graph(graph, path)

    result = import_archive(path)

    assert result.failures == []
    assert [purpose.id for purpose in result.purposes] == ["alice-p1"]
    assert all(h.id.startswith("alice-") for h in result.highlights)
    assert {h.purpose_id for h in result.highlights} == {"alice-p1"}
    assert {h.session_id for h in result.highlights} == {"alice-s1"}
    assert [s.id for s in result.sessions] == ["alice-s1"]

    node_ids = {node.id for node in result.nodes}
    assert {h.id for h in result.highlights} <= node_ids
    for edge in result.edges:
        assert edge.id.startswith("alice-")
        assert edge.source in node_ids and edge.target in node_ids
    group = next(node for node in result.nodes if node.kind == "group")
    assert all(child in node_ids for child in group.data.children)
    assert group.purpose_id == "alice-p1"


def test_archives_from_two_owners_never_collide(tmp_path):
    graph = build_graph()
    alice, bob = tmp_path / "alice.zip", tmp_path / "bob.zip"
    export_graph(graph, alice, owner_id="alice")
    export_graph(graph, bob, owner_id="bob")

    result = import_archives([alice, bob])

    ids = [node.id for node in result.nodes]
    assert len(ids) == 2 * len(graph.nodes)
    assert len(set(ids)) == len(ids)
    assert len({edge.id for edge in result.edges}) == 2 * len(graph.edges)
    assert result.owner_ids == ["alice", "bob"]


def test_unreadable_archives_are_skipped(tmp_path):
    good = tmp_path / "good.zip"
    export_graph(build_graph(), good)
    not_zip = tmp_path / "notes.txt"
    not_zip.write_text("plain text")
    no_manifest = tmp_path / "empty.zip"
    no_manifest.write_bytes(zip_bytes({"readme.md": "hello"}))
    broken = tmp_path / "broken.zip"
    broken.write_bytes(zip_bytes({MANIFEST_NAME: "{not json"}))

    result = import_archives([not_zip, good, no_manifest, broken])

    assert [name for name, _ in result.failures] == [str(not_zip), str(no_manifest), str(broken)]
    assert len(result.highlights) == 3


def test_first_embedded_document_wins():
    graph = build_graph()
    first = export_graph(graph, owner_id="alice", document_bytes=b"%PDF-first")
    second = export_graph(graph, owner_id="bob", document_bytes=b"%PDF-second")

    result = import_archives([first, second])

    assert result.document_bytes == b"%PDF-first"


def test_any_json_entry_is_accepted_and_owner_defaults():
    manifest = {
        "highlights": [],
        "nodes": [
            {
                "id": "n1",
                "kind": "highlight",
                "purposeId": "p1",
                "data": {"kind": "highlight", "label": "x", "content": "x", "type": "text"},
                "position": {"x": 0, "y": 150},
            }
        ],
        "edges": [],
        "purposes": [],
    }
    payload = zip_bytes({"custom-export.json": json.dumps(manifest)})

    result = import_archive(payload)

    assert [node.id for node in result.nodes] == ["unknown-n1"]
    assert result.nodes[0].purpose_id == "unknown-p1"


def test_export_to_stream():
    buffer = io.BytesIO()
    payload = export_graph(build_graph(), buffer)
    assert buffer.getvalue() == payload
    assert zipfile.is_zipfile(io.BytesIO(payload))


def test_import_keeps_every_field_but_ids():
    graph = build_graph()
    graph.update_purpose("p1", description="first pass")
    result = import_archive(export_graph(graph))

    originals = list(graph.highlights.values())
    assert len(result.highlights) == len(originals)
    for original, imported in zip(originals, result.highlights):
        assert imported.id == f"alice-{original.id}"
        restored = replace(imported, id=original.id, purpose_id=original.purpose_id, session_id=original.session_id)
        assert restored == original

    for original, imported in zip(graph.nodes.values(), result.nodes):
        assert imported.position == original.position
        assert imported.kind == original.kind
        if original.kind == "highlight":
            assert imported.data == original.data
        else:
            assert imported.data.label == original.data.label

    [purpose] = result.purposes
    assert replace(purpose, id="p1") == graph.purposes["p1"]
    assert purpose.color == "#FFADAD"
    assert purpose.description == "first pass"


def test_imported_overview_node_stays_attached_to_its_purpose():
    graph = build_graph()
    graph.add_overview_node("p1")
    result = import_archive(export_graph(graph))

    assert "overview-alice-p1" in {node.id for node in result.nodes}

    merged = AnnotationGraph("reviewer", "doc-1", node_offset_x=150, node_offset_y=150)
    merged.load_state(
        highlights=result.highlights, nodes=result.nodes, edges=result.edges, purposes=result.purposes
    )
    assert merged.add_overview_node("alice-p1").id == "overview-alice-p1"
    assert sum(1 for node in merged.nodes.values() if node.kind == "overview") == 1

    merged.update_purpose("alice-p1", title="Skim again")
    assert merged.nodes["overview-alice-p1"].data.label == "Skim again"

    merged.remove_purpose("alice-p1")
    assert all(node.kind != "overview" for node in merged.nodes.values())


def test_rehome_moves_records_to_the_importing_pair():
    result = import_archive(export_graph(build_graph())).rehome("reviewer", "doc-9")

    assert {h.owner_id for h in result.highlights} == {"reviewer"}
    assert {p.document_id for p in result.purposes} == {"doc-9"}
    assert {(s.owner_id, s.document_id) for s in result.sessions} == {("reviewer", "doc-9")}
    assert all(h.id.startswith("alice-") for h in result.highlights)
