from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import make_rect
from readtrace.analytics import AnalyticsAggregator
from readtrace.models import Canvas, Edge, Highlight, HighlightNodeData, Node, Position, Purpose, Session
from readtrace.storage import MIGRATIONS, FileBlobStore, SQLiteRecordStore, StorageError, apply_migrations


def make_highlight(hid: str, owner: str = "alice", doc: str = "doc-1") -> Highlight:
    return Highlight(
        id=hid,
        type="text",
        document_id=doc,
        owner_id=owner,
        purpose_id="p1",
        session_id="s1",
        content="quoted text",
        bounding_rect=make_rect(),
        timestamp=1000,
        pos_percentage=0.25,
    )


def make_session(sid: str, owner: str = "alice", doc: str = "doc-1", duration: int = 1000) -> Session:
    return Session(
        id=sid,
        owner_id=owner,
        document_id=doc,
        purpose_id="p1",
        start_time=0,
        duration=duration,
        scroll_sequence=(0.0, 0.5),
    )


@pytest.fixture
def store(tmp_path):
    store = SQLiteRecordStore(tmp_path / "nested" / "records.sqlite")
    yield store
    store.close()


def test_records_are_grouped_by_pair(store):
    store.save_purposes([Purpose(id="p1", document_id="doc-1", owner_id="alice", title="Skim", color="#FFADAD")])
    store.save_highlights([make_highlight("h1"), make_highlight("h2", owner="bob"), make_highlight("h3", doc="doc-2")])

    loaded = store.load_highlights(["alice", "bob"], ["doc-1"])

    assert set(loaded) == {"alice_doc-1", "bob_doc-1"}
    assert loaded["alice_doc-1"] == [make_highlight("h1")]
    assert store.load_purposes(["alice"], ["doc-1"])["alice_doc-1"][0].title == "Skim"
    assert store.load_highlights([], ["doc-1"]) == {}


def test_saving_twice_upserts(store):
    store.save_sessions([make_session("s1", duration=1000)])
    store.save_sessions([make_session("s1", duration=4000)])

    sessions = store.load_sessions(["alice"], ["doc-1"])["alice_doc-1"]

    assert len(sessions) == 1
    assert sessions[0].duration == 4000
    assert sessions[0].scroll_sequence == (0.0, 0.5)


def test_delete_highlights(store):
    store.save_highlights([make_highlight("h1"), make_highlight("h2")])
    store.delete_highlights(["h1", "missing"])

    remaining = store.load_highlights(["alice"], ["doc-1"])["alice_doc-1"]
    assert [h.id for h in remaining] == ["h2"]


def test_canvas_round_trip_and_overwrite(store):
    assert store.load_canvas("alice", "doc-1") is None
    node = Node(
        id="h1",
        kind="highlight",
        data=HighlightNodeData(label="quoted", content="quoted text", type="text"),
        position=Position(0.0, 150.0),
        purpose_id="p1",
    )
    canvas = Canvas(id="alice_doc-1", owner_id="alice", document_id="doc-1", nodes=[node], edges=[])
    store.save_canvas(canvas)

    edge = Edge(id="e1", source="h1", target="h1", kind="relational")
    store.save_canvas(replace(canvas, edges=[edge]))

    loaded = store.load_canvas("alice", "doc-1")
    assert loaded.nodes == [node]
    assert loaded.edges == [edge]


def test_migrations_run_once(tmp_path):
    path = tmp_path / "records.sqlite"
    SQLiteRecordStore(path).close()
    reopened = SQLiteRecordStore(path)
    assert apply_migrations(reopened.connection, MIGRATIONS) == []
    reopened.close()


def test_closed_store_raises_storage_error(tmp_path):
    store = SQLiteRecordStore(tmp_path / "records.sqlite")
    store.close()
    with pytest.raises(StorageError):
        store.save_highlights([make_highlight("h1")])
    with pytest.raises(StorageError):
        store.load_sessions(["alice"], ["doc-1"])


def test_aggregator_from_store(store):
    store.save_sessions([make_session("s1", duration=3000), make_session("s2", owner="bob", duration=1000)])
    store.save_highlights([make_highlight("h1")])

    aggregator = AnalyticsAggregator.from_store(store, ["alice", "bob"], ["doc-1"], update_interval_ms=500)

    row = aggregator.document_rows()[0]
    assert row.total_duration == 4000
    assert row.user_count == 2
    assert row.total_highlights == 1


def test_file_blob_store(tmp_path):
    blobs = FileBlobStore(tmp_path / "blobs")

    url = blobs.store_document_blob("doc-1", b"%PDF-1.7")

    assert url.startswith("file://")
    assert blobs.fetch_document_blob("doc-1") == url
    assert blobs.read_document_blob("doc-1") == b"%PDF-1.7"
    with pytest.raises(StorageError):
        blobs.fetch_document_blob("doc-2")
    with pytest.raises(StorageError):
        blobs.read_document_blob("doc-2")
    with pytest.raises(StorageError):
        blobs.store_document_blob("../escape", b"")
