"""Viewer metrics and document-position normalization.

Page height is assumed uniform across the document; documents mixing page
sizes get approximate positions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .models import BoundingRect


def clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))


@dataclass(slots=True, frozen=True)
class ViewerMetrics:
    """Snapshot of the document viewer's layout at the current zoom level."""

    page_height: float
    page_count: int
    scroll_top: float = 0.0
    scale: float = 1.0

    @property
    def total_height(self) -> float:
        return self.page_height * self.page_count


class DocumentViewer(Protocol):
    """Anything able to report the live viewer layout."""

    def metrics(self) -> ViewerMetrics: ...


def document_position(rect: BoundingRect, metrics: ViewerMetrics) -> float:
    """Vertical offset of ``rect`` within the whole document, in ``[0, 1]``."""

    if metrics.page_count <= 0:
        raise ValueError("Document has no pages")
    page_height = rect.height if rect.height > 0 else metrics.page_height
    if page_height <= 0:
        raise ValueError("Page height must be positive")
    within_page = clamp(rect.y1 / page_height)
    page_index = max(rect.page_number - 1, 0)
    return clamp((page_index + within_page) / metrics.page_count)


def scroll_fraction(metrics: ViewerMetrics) -> float:
    """Current scroll offset normalized by the document height."""

    total = metrics.total_height
    if total <= 0:
        raise ValueError("Document height must be positive")
    return clamp(metrics.scroll_top / total)


__all__ = ["DocumentViewer", "ViewerMetrics", "clamp", "document_position", "scroll_fraction"]
