from __future__ import annotations

import pytest

from readtrace.config import get_settings
from readtrace.geometry import ViewerMetrics
from readtrace.models import BoundingRect


class FakeViewer:
    """Stands in for the document rendering surface."""

    def __init__(self, page_height: float = 1000.0, page_count: int = 4, scroll_top: float = 0.0) -> None:
        self.page_height = page_height
        self.page_count = page_count
        self.scroll_top = scroll_top

    def metrics(self) -> ViewerMetrics:
        return ViewerMetrics(page_height=self.page_height, page_count=self.page_count, scroll_top=self.scroll_top)


def make_rect(page: int = 1, y1: float = 100.0) -> BoundingRect:
    return BoundingRect(page_number=page, x1=10.0, y1=y1, x2=200.0, y2=y1 + 20.0, width=800.0, height=1000.0)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("MOCK_LLM", "1")
    monkeypatch.setenv("READTRACE_DB_PATH", str(tmp_path / "readtrace.sqlite"))
    monkeypatch.setenv("READTRACE_BLOB_DIR", str(tmp_path / "blobs"))
    for name in (
        "OPENAI_API_KEY",
        "READTRACE_UPDATE_INTERVAL_MS",
        "READTRACE_NODE_OFFSET_X",
        "READTRACE_NODE_OFFSET_Y",
        "READTRACE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def viewer() -> FakeViewer:
    return FakeViewer()
