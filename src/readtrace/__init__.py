"""readtrace package exports."""

from .analytics import AnalyticsAggregator, AnalyticsLevel, Emphasis
from .config import get_settings
from .graph import AnnotationGraph, NoActivePurposeError, RawHighlight, UnknownNodeError
from .graph_io import ImportResult, export_archive, import_archive, import_archives
from .models import ReadtraceError
from .session import AsyncioScheduler, ManualScheduler, NoViewerAttachedError, SessionTracker
from .storage import FileBlobStore, SQLiteRecordStore, StorageError
from .suggestions import SuggestionClient, SuggestionError
from .workspace import ReadingWorkspace

__all__ = [
    "AnalyticsAggregator",
    "AnalyticsLevel",
    "AnnotationGraph",
    "AsyncioScheduler",
    "Emphasis",
    "FileBlobStore",
    "ImportResult",
    "ManualScheduler",
    "NoActivePurposeError",
    "NoViewerAttachedError",
    "RawHighlight",
    "ReadingWorkspace",
    "ReadtraceError",
    "SQLiteRecordStore",
    "SessionTracker",
    "StorageError",
    "SuggestionClient",
    "SuggestionError",
    "UnknownNodeError",
    "export_archive",
    "get_settings",
    "import_archive",
    "import_archives",
]
