"""Reading workspace: wires the tracker, the graph and the stores for one reader."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .config import Settings, get_settings
from .geometry import DocumentViewer
from .graph import AnnotationGraph, RawHighlight
from .graph_io import ArchiveSource, ImportResult, export_archive, import_archives
from .models import Highlight, Purpose, PurposeTemplate, ReadingSuggestion, Session
from .session import Clock, NoViewerAttachedError, Scheduler, SessionTracker
from .storage import BlobStore, RecordStore, StorageError
from .suggestions import SuggestionClient, SuggestionError, build_reading_goal_prompt, extract_document_text

logger = logging.getLogger(__name__)


class ReadingWorkspace:
    """Everything one reader needs while working on one document.

    Collaborators are injected; nothing is looked up globally except the
    default ``Settings``. Closed sessions are buffered until ``save``.
    """

    def __init__(
        self,
        owner_id: str,
        document_id: str,
        *,
        records: RecordStore,
        blobs: BlobStore,
        scheduler: Scheduler,
        settings: Settings | None = None,
        clock: Clock | None = None,
        suggestions: SuggestionClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.records = records
        self.blobs = blobs
        self.suggestions = suggestions
        self.clock = clock
        self.tracker = SessionTracker(
            owner_id,
            document_id,
            scheduler=scheduler,
            clock=clock,
            update_interval_ms=self.settings.update_interval_ms,
            on_session_closed=self._collect_session,
        )
        self.graph = self._new_graph(owner_id, document_id)
        self._closed_sessions: list[Session] = []

    @property
    def owner_id(self) -> str:
        return self.graph.owner_id

    @property
    def document_id(self) -> str:
        return self.graph.document_id

    @property
    def pending_sessions(self) -> list[Session]:
        return list(self._closed_sessions)

    def _new_graph(self, owner_id: str, document_id: str) -> AnnotationGraph:
        return AnnotationGraph(
            owner_id,
            document_id,
            node_offset_x=self.settings.node_offset_x,
            node_offset_y=self.settings.node_offset_y,
            clock=self.clock,
        )

    def _collect_session(self, session: Session) -> None:
        self._closed_sessions.append(session)

    # Document lifecycle --------------------------------------------------
    def open_document(self, owner_id: str, document_id: str) -> bool:
        """Switch to another (owner, document) pair and load its saved state.

        The live session is closed before anything else changes. Returns
        ``False`` when saved state could not be loaded; the graph is then empty.
        """

        self.tracker.switch_document(owner_id, document_id)
        self.graph = self._new_graph(owner_id, document_id)
        key = self.graph.key
        try:
            purposes = self.records.load_purposes([owner_id], [document_id]).get(key, [])
            highlights = self.records.load_highlights([owner_id], [document_id]).get(key, [])
            canvas = self.records.load_canvas(owner_id, document_id)
        except StorageError:
            logger.exception("Could not load saved state for %s", key)
            return False
        self.graph.load_state(
            highlights=highlights,
            nodes=canvas.nodes if canvas else (),
            edges=canvas.edges if canvas else (),
            purposes=purposes,
        )
        logger.info("Opened %s with %d purposes and %d highlights", key, len(purposes), len(highlights))
        return True

    def attach_viewer(self, viewer: DocumentViewer) -> None:
        """Attach the viewer; a session starts if a purpose is already current."""

        self.tracker.attach_viewer(viewer)
        if self.graph.current_purpose_id and self.tracker.current_session is None:
            self.tracker.start_session(self.graph.current_purpose_id)

    def handle_visibility_change(self, hidden: bool) -> None:
        self.tracker.handle_visibility_change(hidden)

    def close(self) -> bool:
        self.tracker.stop_session()
        return self.save()

    # Purposes ------------------------------------------------------------
    def _restart_session(self, purpose_id: str) -> None:
        if self.tracker.viewer is None:
            logger.debug("No viewer attached; session for %s starts later", purpose_id)
            return
        self.tracker.start_session(purpose_id)

    def create_purpose(self, title: str, color: str, description: str | None = None) -> Purpose:
        purpose = self.graph.create_purpose(title, color, description)
        self._restart_session(purpose.id)
        return purpose

    def apply_template(self, template: PurposeTemplate) -> list[Purpose]:
        created = self.graph.apply_template(template)
        if created:
            self._restart_session(created[0].id)
        return created

    def select_purpose(self, purpose_id: str) -> Purpose:
        """Make ``purpose_id`` current; a new session starts under it."""

        purpose = self.graph.set_current_purpose(purpose_id)
        self._restart_session(purpose.id)
        return purpose

    # Highlights ----------------------------------------------------------
    def add_highlight(self, raw: RawHighlight) -> Highlight:
        viewer = self.tracker.viewer
        if viewer is None:
            raise NoViewerAttachedError("Attach a document viewer before highlighting")
        return self.graph.add_highlight(
            raw,
            self.graph.current_purpose_id,
            self.tracker.current_session_id,
            viewer.metrics(),
        )

    def remove_highlight(self, node_id: str) -> bool:
        was_highlight = node_id in self.graph.highlights
        self.graph.remove_highlight(node_id)
        return self._forget(node_id) if was_highlight else True

    def delete_highlight(self, node_id: str) -> bool:
        was_highlight = node_id in self.graph.highlights
        self.graph.delete_highlight(node_id)
        return self._forget(node_id) if was_highlight else True

    def _forget(self, highlight_id: str) -> bool:
        try:
            self.records.delete_highlights([highlight_id])
        except StorageError:
            logger.exception("Could not delete stored highlight %s", highlight_id)
            return False
        return True

    # Persistence ---------------------------------------------------------
    def save(self) -> bool:
        """Persist purposes, highlights, sessions and the canvas.

        Stored highlights of this pair that the graph no longer holds are
        deleted, so every saved highlight keeps its node.

        The live session is saved as it currently stands. Returns ``False``
        (after logging) when the store fails; buffered sessions are kept for
        the next attempt.
        """

        sessions = list(self._closed_sessions)
        if self.tracker.current_session is not None:
            sessions.append(self.tracker.current_session)
        try:
            stored = self.records.load_highlights([self.owner_id], [self.document_id]).get(self.graph.key, [])
            stale = [item.id for item in stored if item.id not in self.graph.highlights]
            if stale:
                self.records.delete_highlights(stale)
            self.records.save_purposes(self.graph.purposes.values())
            self.records.save_highlights(self.graph.highlights.values())
            self.records.save_sessions(sessions)
            self.records.save_canvas(self.graph.snapshot())
        except StorageError:
            logger.exception("Could not save %s", self.graph.key)
            return False
        self._closed_sessions.clear()
        logger.info("Saved %s (%d sessions)", self.graph.key, len(sessions))
        return True

    # Archives ------------------------------------------------------------
    def export(self, target: str | Path, *, with_document: bool = False) -> bytes:
        document: bytes | None = None
        if with_document:
            try:
                document = self.blobs.read_document_blob(self.document_id)
            except StorageError as exc:
                logger.warning("Exporting without the document: %s", exc)
        return export_archive(
            target,
            owner_id=self.owner_id,
            highlights=self.graph.highlights.values(),
            nodes=self.graph.nodes.values(),
            edges=self.graph.edges.values(),
            purposes=self.graph.purposes.values(),
            sessions=self._sessions_for_export(),
            document_bytes=document,
        )

    def _sessions_for_export(self) -> list[Session]:
        sessions: dict[str, Session] = {}
        try:
            stored = self.records.load_sessions([self.owner_id], [self.document_id]).get(self.graph.key, [])
        except StorageError as exc:
            logger.warning("Exporting without stored sessions: %s", exc)
            stored = []
        for session in [*stored, *self._closed_sessions]:
            sessions[session.id] = session
        if self.tracker.current_session is not None:
            live = self.tracker.current_session
            sessions[live.id] = live
        return list(sessions.values())

    def import_archives(self, sources: Iterable[ArchiveSource]) -> ImportResult:
        """Replace the graph with the merged contents of ``sources``.

        Imported records are re-owned by this workspace's (owner, document)
        pair and are persisted by the next ``save``.
        """

        result = import_archives(sources).rehome(self.owner_id, self.document_id)
        self.tracker.stop_session()
        self.graph.load_state(
            highlights=result.highlights,
            nodes=result.nodes,
            edges=result.edges,
            purposes=result.purposes,
        )
        self._closed_sessions.extend(result.sessions)
        if result.document_bytes is not None:
            try:
                self.blobs.store_document_blob(self.document_id, result.document_bytes)
            except StorageError:
                logger.exception("Could not store imported document for %s", self.document_id)
        return result

    # Suggestions ---------------------------------------------------------
    def generate_reading_goals(self) -> ReadingSuggestion | None:
        if self.suggestions is None:
            logger.warning("No suggestion client configured")
            return None
        try:
            text = extract_document_text(self.blobs.read_document_blob(self.document_id))
            prompt = build_reading_goal_prompt(self.graph.purposes.values(), text)
            return self.suggestions.suggest(prompt, text)
        except (StorageError, SuggestionError) as exc:
            logger.warning("Reading goal generation failed: %s", exc)
            return None


__all__ = ["ReadingWorkspace"]
