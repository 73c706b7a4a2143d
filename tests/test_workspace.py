from __future__ import annotations

import fitz
import pytest

from conftest import FakeViewer, make_rect
from readtrace.analytics import AnalyticsAggregator
from readtrace.graph import RawHighlight
from readtrace.graph_io import read_archive
from readtrace.session import ManualScheduler, NoViewerAttachedError, SessionState
from readtrace.storage import FileBlobStore, SQLiteRecordStore
from readtrace.suggestions import SuggestionClient
from readtrace.workspace import ReadingWorkspace


def raw(text: str = "an important sentence") -> RawHighlight:
    return RawHighlight(type="text", content=text, bounding_rect=make_rect(2, 500.0))


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler(epoch_ms=1_000_000)


@pytest.fixture
def records(tmp_path):
    store = SQLiteRecordStore(tmp_path / "records.sqlite")
    yield store
    store.close()


@pytest.fixture
def blobs(tmp_path) -> FileBlobStore:
    return FileBlobStore(tmp_path / "blobs")


def make_workspace(scheduler, records, blobs, owner="alice", document="doc-1") -> ReadingWorkspace:
    return ReadingWorkspace(
        owner,
        document,
        records=records,
        blobs=blobs,
        scheduler=scheduler,
        clock=scheduler.clock,
        suggestions=SuggestionClient(),
    )


def test_highlight_requires_viewer(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.create_purpose("Skim", "#FFADAD")
    with pytest.raises(NoViewerAttachedError):
        workspace.add_highlight(raw())


def test_attaching_viewer_starts_pending_purpose(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    purpose = workspace.create_purpose("Skim", "#FFADAD")
    assert workspace.tracker.state is SessionState.IDLE

    workspace.attach_viewer(FakeViewer())

    assert workspace.tracker.state is SessionState.RUNNING
    assert workspace.tracker.current_session.purpose_id == purpose.id


def test_highlights_carry_session_and_position(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")
    scheduler.advance(2.0)

    highlight = workspace.add_highlight(raw())

    assert highlight.session_id == workspace.tracker.current_session_id
    assert highlight.timestamp == 1_002_000
    assert highlight.pos_percentage == pytest.approx((1 + 0.5) / 4)


def test_switching_purpose_buffers_closed_session(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    first = workspace.create_purpose("Skim", "#FFADAD")
    workspace.create_purpose("Methods", "#FFD6A5")
    scheduler.advance(1.0)
    workspace.select_purpose(first.id)

    pending = workspace.pending_sessions
    assert len(pending) == 2
    assert pending[-1].duration == 1000
    assert scheduler.active_timers == 1


def test_save_and_reopen_restores_graph(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")
    first = workspace.add_highlight(raw("first"))
    second = workspace.add_highlight(raw("second"))
    scheduler.advance(1.0)

    assert workspace.save() is True
    assert workspace.pending_sessions == []

    other = make_workspace(scheduler, records, blobs, document="doc-2")
    assert other.open_document("alice", "doc-1") is True
    assert set(other.graph.highlights) == {first.id, second.id}
    assert set(other.graph.nodes) == {first.id, second.id}
    assert len(other.graph.edges) == 1
    assert [p.title for p in other.graph.purposes.values()] == ["Skim"]
    sessions = records.load_sessions(["alice"], ["doc-1"])["alice_doc-1"]
    assert sessions[0].duration == 1000


def test_open_document_closes_live_session(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")

    workspace.open_document("alice", "doc-2")

    assert workspace.tracker.state is SessionState.IDLE
    assert scheduler.active_timers == 0
    assert [s.document_id for s in workspace.pending_sessions] == ["doc-1"]
    assert workspace.graph.purposes == {}


def test_delete_highlight_removes_stored_record(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")
    highlight = workspace.add_highlight(raw())
    workspace.save()

    assert workspace.delete_highlight(highlight.id) is True
    assert records.load_highlights(["alice"], ["doc-1"]) == {}


def test_save_failure_is_reported_not_raised(scheduler, tmp_path, blobs):
    broken = SQLiteRecordStore(tmp_path / "broken.sqlite")
    workspace = make_workspace(scheduler, broken, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")
    workspace.create_purpose("Methods", "#FFD6A5")
    broken.close()

    assert workspace.save() is False
    assert len(workspace.pending_sessions) == 1


def test_export_then_import_into_another_workspace(tmp_path, scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")
    highlight = workspace.add_highlight(raw())
    blobs.store_document_blob("doc-1", b"%PDF-1.7")
    archive = tmp_path / "alice.zip"
    workspace.export(archive, with_document=True)

    other_blobs = FileBlobStore(tmp_path / "other-blobs")
    reviewer = make_workspace(scheduler, records, other_blobs, owner="reviewer", document="doc-1")
    result = reviewer.import_archives([archive])

    assert result.failures == []
    assert f"alice-{highlight.id}" in reviewer.graph.nodes
    assert other_blobs.read_document_blob("doc-1") == b"%PDF-1.7"


def test_generate_reading_goals(scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    assert workspace.generate_reading_goals() is None

    doc = fitz.open()
    doc.new_page().insert_text((72, 72), "Graph neural networks survey")
    blobs.store_document_blob("doc-1", doc.tobytes())
    doc.close()

    suggestion = workspace.generate_reading_goals()

    assert suggestion is not None
    assert len(suggestion.reading_goals) == 3


def test_imported_graph_is_saved_under_the_importing_reader(tmp_path, scheduler, records, blobs):
    alice = make_workspace(scheduler, records, blobs)
    alice.attach_viewer(FakeViewer())
    alice.create_purpose("Skim", "#FFADAD")
    highlight = alice.add_highlight(raw())
    scheduler.advance(3.0)
    alice.save()
    before = AnalyticsAggregator.from_store(records, ["alice"], ["doc-1"]).document_rows()
    archive = tmp_path / "alice.zip"
    alice.export(archive)

    reviewer = make_workspace(scheduler, records, blobs, owner="reviewer")
    reviewer.import_archives([archive])
    assert reviewer.save() is True

    after = AnalyticsAggregator.from_store(records, ["alice"], ["doc-1"]).document_rows()
    assert after == before
    assert before[0].total_highlights == 1

    reopened = make_workspace(scheduler, records, blobs, owner="reviewer")
    assert reopened.open_document("reviewer", "doc-1") is True
    highlight_nodes = {node.id for node in reopened.graph.nodes.values() if node.kind == "highlight"}
    assert set(reopened.graph.highlights) == highlight_nodes == {f"alice-{highlight.id}"}
    assert {h.owner_id for h in reopened.graph.highlights.values()} == {"reviewer"}

    reviewer_rows = AnalyticsAggregator.from_store(records, ["reviewer"], ["doc-1"]).document_rows()
    assert reviewer_rows[0].total_highlights == 1


def test_export_after_save_carries_stored_sessions(tmp_path, scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    first = workspace.create_purpose("Skim", "#FFADAD")
    workspace.create_purpose("Methods", "#FFD6A5")
    scheduler.advance(1.0)
    workspace.select_purpose(first.id)
    workspace.save()
    assert workspace.pending_sessions == []

    manifest, _ = read_archive(workspace.export(tmp_path / "alice.zip"))

    ids = [session["id"] for session in manifest["sessions"]]
    assert len(ids) == 3
    assert len(set(ids)) == len(ids)
    assert workspace.tracker.current_session_id in ids


def test_save_drops_stored_highlights_the_graph_no_longer_holds(tmp_path, scheduler, records, blobs):
    workspace = make_workspace(scheduler, records, blobs)
    workspace.attach_viewer(FakeViewer())
    workspace.create_purpose("Skim", "#FFADAD")
    workspace.add_highlight(raw())
    workspace.save()
    archive = tmp_path / "bob.zip"
    make_workspace(scheduler, records, blobs, owner="bob").export(archive)

    workspace.import_archives([archive])
    workspace.save()

    assert records.load_highlights(["alice"], ["doc-1"]) == {}
