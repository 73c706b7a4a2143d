"""Cross-user, cross-document reading analytics and timeline coordinates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

import numpy as np

from .config import get_settings
from .models import HIGHLIGHT_AREA, HIGHLIGHT_TEXT, Highlight, Purpose, Session, pair_key

if TYPE_CHECKING:  # pragma: no cover
    from .storage import RecordStore

logger = logging.getLogger(__name__)

UNASSIGNED_TITLE = "Unassigned"
UNASSIGNED_COLOR = "#e6e6e6"
GREYED_COLOR = "grey"


class AnalyticsLevel(str, Enum):
    DOCUMENTS = "documents"
    USERS = "users"
    PURPOSES = "purposes"


class Emphasis(str, Enum):
    FULL = "full"
    GREYED = "greyed"
    HIDDEN = "hidden"


@dataclass(slots=True, frozen=True)
class DocumentStats:
    document_id: str
    title: str
    total_duration: int
    average_duration_per_user: float
    total_highlights: int
    average_highlights_per_user: float
    user_count: int


@dataclass(slots=True, frozen=True)
class UserStats:
    user_id: str
    name: str
    duration: int
    highlight_count: int
    text_highlight_count: int
    image_highlight_count: int
    purpose_count: int
    last_read_time: int


@dataclass(slots=True, frozen=True)
class PurposeStats:
    purpose_id: str
    title: str
    color: str
    duration: int
    highlight_count: int
    text_highlight_count: int
    image_highlight_count: int
    last_read_time: int


@dataclass(slots=True, frozen=True)
class SessionTrace:
    session_id: str
    purpose_id: str
    points: tuple[tuple[float, float], ...]


@dataclass(slots=True, frozen=True)
class HighlightMarker:
    highlight_id: str
    purpose_id: str
    session_id: str
    x: float
    y: float


@dataclass(slots=True, frozen=True)
class PairTimeline:
    """One continuous timeline for an (owner, document) pair, stitched from its sessions."""

    owner_id: str
    document_id: str
    sessions: tuple[SessionTrace, ...]
    markers: tuple[HighlightMarker, ...]
    total_duration: int


def total_duration(sessions: Iterable[Session]) -> int:
    return sum(session.duration for session in sessions)


def last_read_time(sessions: Iterable[Session]) -> int:
    return max((session.end_time for session in sessions), default=0)


def _type_counts(highlights: Sequence[Highlight]) -> tuple[int, int]:
    text = sum(1 for item in highlights if item.type == HIGHLIGHT_TEXT)
    image = sum(1 for item in highlights if item.type == HIGHLIGHT_AREA)
    return text, image


def build_timeline(
    owner_id: str,
    document_id: str,
    sessions: Sequence[Session],
    highlights: Sequence[Highlight],
    update_interval_ms: int,
) -> PairTimeline:
    """Place every scroll sample and highlight of a pair on one elapsed-time axis.

    Sessions are ordered by start time; each one is shifted right by the summed
    durations of the sessions before it (its ``durationIntercept``). Scroll
    sample ``i`` sits at ``i * update_interval_ms``; a highlight sits at its
    offset from its own session's start. Y values are percentages.
    """

    ordered = sorted(sessions, key=lambda session: session.start_time)
    if ordered:
        durations = np.fromiter((s.duration for s in ordered), dtype=np.int64, count=len(ordered))
        intercepts = np.concatenate(([0], np.cumsum(durations)[:-1])).tolist()
    else:
        intercepts = []

    by_session: dict[str, list[Highlight]] = {}
    for highlight in highlights:
        by_session.setdefault(highlight.session_id, []).append(highlight)

    traces: list[SessionTrace] = []
    markers: list[HighlightMarker] = []
    for session, intercept in zip(ordered, intercepts):
        points = tuple(
            (float(index * update_interval_ms + intercept), value * 100.0)
            for index, value in enumerate(session.scroll_sequence)
        )
        traces.append(SessionTrace(session_id=session.id, purpose_id=session.purpose_id, points=points))
        for highlight in sorted(by_session.pop(session.id, []), key=lambda h: h.timestamp):
            markers.append(
                HighlightMarker(
                    highlight_id=highlight.id,
                    purpose_id=highlight.purpose_id,
                    session_id=session.id,
                    x=float(highlight.timestamp - session.start_time + intercept),
                    y=highlight.pos_percentage * 100.0,
                )
            )
    skipped = sum(len(items) for items in by_session.values())
    if skipped:
        logger.debug("%d highlights of %s have no known session", skipped, pair_key(owner_id, document_id))

    return PairTimeline(
        owner_id=owner_id,
        document_id=document_id,
        sessions=tuple(traces),
        markers=tuple(markers),
        total_duration=total_duration(ordered),
    )


class AnalyticsAggregator:
    """Three-level drill-down (documents → users → purposes) over fetched records.

    Inputs are keyed by ``"<ownerId>_<documentId>"`` and are never mutated.
    ``document_ids``/``user_ids`` form the loaded universe; all of it starts
    selected.
    """

    def __init__(
        self,
        sessions: Mapping[str, Sequence[Session]],
        highlights: Mapping[str, Sequence[Highlight]],
        purposes: Mapping[str, Sequence[Purpose]],
        *,
        document_ids: Sequence[str],
        user_ids: Sequence[str],
        document_titles: Mapping[str, str] | None = None,
        user_names: Mapping[str, str] | None = None,
        update_interval_ms: int | None = None,
    ) -> None:
        self._sessions = sessions
        self._highlights = highlights
        self._purposes = purposes
        self.document_ids = list(dict.fromkeys(document_ids))
        self.user_ids = list(dict.fromkeys(user_ids))
        self.document_titles = dict(document_titles or {})
        self.user_names = dict(user_names or {})
        if update_interval_ms is None:
            update_interval_ms = get_settings().update_interval_ms
        self.update_interval_ms = update_interval_ms

        self.selected_documents: list[str] = list(self.document_ids)
        self.selected_users: list[str] = list(self.user_ids)
        self.level = AnalyticsLevel.DOCUMENTS
        self.pinned_document: str | None = None
        self.pinned_user: str | None = None

    @classmethod
    def from_store(
        cls,
        store: RecordStore,
        user_ids: Sequence[str],
        document_ids: Sequence[str],
        **kwargs,
    ) -> AnalyticsAggregator:
        return cls(
            store.load_sessions(user_ids, document_ids),
            store.load_highlights(user_ids, document_ids),
            store.load_purposes(user_ids, document_ids),
            document_ids=document_ids,
            user_ids=user_ids,
            **kwargs,
        )

    # Record access -------------------------------------------------------
    def sessions_for(self, user_id: str, document_id: str) -> list[Session]:
        return list(self._sessions.get(pair_key(user_id, document_id), ()))

    def highlights_for(self, user_id: str, document_id: str) -> list[Highlight]:
        return list(self._highlights.get(pair_key(user_id, document_id), ()))

    def purposes_for(self, user_id: str, document_id: str) -> list[Purpose]:
        return list(self._purposes.get(pair_key(user_id, document_id), ()))

    def _contributes(self, user_id: str, document_id: str) -> bool:
        return bool(self.sessions_for(user_id, document_id) or self.highlights_for(user_id, document_id))

    # Selection and navigation --------------------------------------------
    def toggle_document(self, document_id: str) -> None:
        if document_id in self.selected_documents:
            self.selected_documents.remove(document_id)
            if self.pinned_document == document_id:
                self.navigate_to(AnalyticsLevel.DOCUMENTS)
            return
        if document_id not in self.document_ids:
            self.document_ids.append(document_id)
        self.selected_documents.append(document_id)

    def toggle_user(self, user_id: str) -> None:
        if user_id in self.selected_users:
            self.selected_users.remove(user_id)
            if self.pinned_user == user_id:
                self.navigate_to(AnalyticsLevel.USERS)
            return
        if user_id not in self.user_ids:
            self.user_ids.append(user_id)
        self.selected_users.append(user_id)

    def select_document(self, document_id: str) -> None:
        if document_id not in self.selected_documents:
            raise ValueError(f"Document {document_id} is not selected")
        self.pinned_document = document_id
        self.pinned_user = None
        self.level = AnalyticsLevel.USERS

    def select_user(self, user_id: str) -> None:
        if self.pinned_document is None:
            raise ValueError("Pin a document before drilling into a user")
        if user_id not in self.selected_users:
            raise ValueError(f"User {user_id} is not selected")
        self.pinned_user = user_id
        self.level = AnalyticsLevel.PURPOSES

    def navigate_to(self, level: AnalyticsLevel) -> None:
        """Breadcrumb jump; everything pinned below ``level`` is released."""

        level = AnalyticsLevel(level)
        if level is AnalyticsLevel.DOCUMENTS:
            self.pinned_document = None
            self.pinned_user = None
        elif level is AnalyticsLevel.USERS:
            if self.pinned_document is None:
                raise ValueError("No document pinned")
            self.pinned_user = None
        elif self.pinned_document is None or self.pinned_user is None:
            raise ValueError("No user pinned")
        self.level = level

    def breadcrumbs(self) -> list[tuple[AnalyticsLevel, str | None]]:
        crumbs: list[tuple[AnalyticsLevel, str | None]] = [(AnalyticsLevel.DOCUMENTS, None)]
        if self.pinned_document is not None:
            crumbs.append((AnalyticsLevel.USERS, self.pinned_document))
        if self.pinned_user is not None:
            crumbs.append((AnalyticsLevel.PURPOSES, self.pinned_user))
        return crumbs

    # Rollups -------------------------------------------------------------
    def document_rows(self) -> list[DocumentStats]:
        rows: list[DocumentStats] = []
        for document_id in self.selected_documents:
            users = [u for u in self.selected_users if self._contributes(u, document_id)]
            if not users:
                continue
            duration = sum(total_duration(self.sessions_for(u, document_id)) for u in users)
            highlights = sum(len(self.highlights_for(u, document_id)) for u in users)
            rows.append(
                DocumentStats(
                    document_id=document_id,
                    title=self.document_titles.get(document_id, "Unknown Document"),
                    total_duration=duration,
                    average_duration_per_user=duration / len(users),
                    total_highlights=highlights,
                    average_highlights_per_user=highlights / len(users),
                    user_count=len(users),
                )
            )
        rows.sort(key=lambda row: row.total_duration, reverse=True)
        return rows

    def user_rows(self) -> list[UserStats]:
        document_id = self.pinned_document
        if document_id is None:
            return []
        rows: list[UserStats] = []
        for user_id in self.selected_users:
            sessions = self.sessions_for(user_id, document_id)
            highlights = self.highlights_for(user_id, document_id)
            if not sessions and not highlights:
                continue
            text, image = _type_counts(highlights)
            rows.append(
                UserStats(
                    user_id=user_id,
                    name=self.user_names.get(user_id, "Unknown User"),
                    duration=total_duration(sessions),
                    highlight_count=len(highlights),
                    text_highlight_count=text,
                    image_highlight_count=image,
                    purpose_count=len(self.purposes_for(user_id, document_id)),
                    last_read_time=last_read_time(sessions),
                )
            )
        rows.sort(key=lambda row: row.duration, reverse=True)
        return rows

    def purpose_rows(self) -> list[PurposeStats]:
        """Per-purpose rows for the pinned pair.

        Sessions or highlights whose purpose was removed are gathered into one
        ``Unassigned`` row so the rows always add up to the user's totals.
        """

        if self.pinned_document is None or self.pinned_user is None:
            return []
        sessions = self.sessions_for(self.pinned_user, self.pinned_document)
        highlights = self.highlights_for(self.pinned_user, self.pinned_document)
        purposes = self.purposes_for(self.pinned_user, self.pinned_document)

        rows = [
            self._purpose_row(purpose.id, purpose.title, purpose.color, sessions, highlights)
            for purpose in purposes
        ]
        known = {purpose.id for purpose in purposes}
        orphan_sessions = [s for s in sessions if s.purpose_id not in known]
        orphan_highlights = [h for h in highlights if h.purpose_id not in known]
        if orphan_sessions or orphan_highlights:
            rows.append(
                PurposeStats(
                    purpose_id="",
                    title=UNASSIGNED_TITLE,
                    color=UNASSIGNED_COLOR,
                    duration=total_duration(orphan_sessions),
                    highlight_count=len(orphan_highlights),
                    text_highlight_count=_type_counts(orphan_highlights)[0],
                    image_highlight_count=_type_counts(orphan_highlights)[1],
                    last_read_time=last_read_time(orphan_sessions),
                )
            )
        rows.sort(key=lambda row: row.duration, reverse=True)
        return rows

    @staticmethod
    def _purpose_row(
        purpose_id: str,
        title: str,
        color: str,
        sessions: Sequence[Session],
        highlights: Sequence[Highlight],
    ) -> PurposeStats:
        own_sessions = [s for s in sessions if s.purpose_id == purpose_id]
        own_highlights = [h for h in highlights if h.purpose_id == purpose_id]
        text, image = _type_counts(own_highlights)
        return PurposeStats(
            purpose_id=purpose_id,
            title=title,
            color=color,
            duration=total_duration(own_sessions),
            highlight_count=len(own_highlights),
            text_highlight_count=text,
            image_highlight_count=image,
            last_read_time=last_read_time(own_sessions),
        )

    def rows(self) -> list[DocumentStats] | list[UserStats] | list[PurposeStats]:
        if self.level is AnalyticsLevel.USERS:
            return self.user_rows()
        if self.level is AnalyticsLevel.PURPOSES:
            return self.purpose_rows()
        return self.document_rows()

    def total_time(self) -> int:
        return sum(
            total_duration(self.sessions_for(user_id, document_id))
            for user_id in self.selected_users
            for document_id in self.selected_documents
        )

    def max_duration(self) -> int:
        """Longest stitched timeline among loaded pairs; the x-axis domain."""

        return max(
            (
                total_duration(self.sessions_for(user_id, document_id))
                for user_id in self.user_ids
                for document_id in self.document_ids
            ),
            default=0,
        )

    # Timelines -----------------------------------------------------------
    def timelines(self) -> list[PairTimeline]:
        timelines: list[PairTimeline] = []
        for user_id in self.user_ids:
            for document_id in self.document_ids:
                sessions = self.sessions_for(user_id, document_id)
                if not sessions:
                    continue
                timelines.append(
                    build_timeline(
                        user_id,
                        document_id,
                        sessions,
                        self.highlights_for(user_id, document_id),
                        self.update_interval_ms,
                    )
                )
        return timelines

    def emphasis(self, owner_id: str, document_id: str) -> Emphasis:
        if owner_id not in self.selected_users or document_id not in self.selected_documents:
            return Emphasis.HIDDEN
        if self.level is AnalyticsLevel.DOCUMENTS:
            return Emphasis.FULL
        if document_id != self.pinned_document:
            return Emphasis.GREYED
        if self.level is AnalyticsLevel.USERS or owner_id == self.pinned_user:
            return Emphasis.FULL
        return Emphasis.GREYED

    def marker_color(self, owner_id: str, document_id: str, purpose_id: str) -> str | None:
        """Colour for a highlight marker, ``None`` when the pair is hidden.

        Purpose colours are only shown once a user is pinned; above that level
        every visible marker uses the neutral colour.
        """

        emphasis = self.emphasis(owner_id, document_id)
        if emphasis is Emphasis.HIDDEN:
            return None
        if emphasis is Emphasis.FULL and self.level is AnalyticsLevel.PURPOSES:
            for purpose in self.purposes_for(owner_id, document_id):
                if purpose.id == purpose_id:
                    return purpose.color
            return UNASSIGNED_COLOR
        return GREYED_COLOR


__all__ = [
    "AnalyticsAggregator",
    "AnalyticsLevel",
    "DocumentStats",
    "Emphasis",
    "HighlightMarker",
    "PairTimeline",
    "PurposeStats",
    "SessionTrace",
    "UserStats",
    "build_timeline",
    "last_read_time",
    "total_duration",
]
