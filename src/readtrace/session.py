"""Reading-session tracking: lifecycle, timer ownership and scroll sampling."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Protocol

from .config import get_settings
from .geometry import DocumentViewer, scroll_fraction
from .models import ReadtraceError, Session, new_id

logger = logging.getLogger(__name__)

UPDATE_INTERVAL_MS = 500

Clock = Callable[[], int]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class NoViewerAttachedError(ReadtraceError):
    """Raised when a session is started without a live document viewer."""


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUSPENDED = "suspended"


# Schedulers -----------------------------------------------------------------


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Source of repeating timers; implementations must be single-threaded."""

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle: ...


class _RepeatingCall:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: Callable[[], None]) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self.cancelled = False
        self._handle = loop.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        self._callback()
        # the callback may have cancelled us
        if not self.cancelled:
            self._handle = self._loop.call_later(self._interval, self._fire)

    def cancel(self) -> None:
        self.cancelled = True
        self._handle.cancel()


class AsyncioScheduler:
    """Runs ticks on an asyncio event loop via ``call_later``."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _RepeatingCall(loop, interval, callback)


@dataclass(slots=True)
class _ManualTimer:
    interval: float
    callback: Callable[[], None]
    due: float
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(slots=True)
class ManualScheduler:
    """Deterministic scheduler advanced explicitly; drives tests and replays."""

    now: float = 0.0
    epoch_ms: int = 0
    _timers: list[_ManualTimer] = field(default_factory=list)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(interval=interval, callback=callback, due=self.now + interval)
        self._timers.append(timer)
        return timer

    def clock(self) -> int:
        return self.epoch_ms + int(round(self.now * 1000))

    @property
    def active_timers(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            pending = [t for t in self._timers if not t.cancelled and t.due <= target + 1e-9]
            if not pending:
                break
            timer = min(pending, key=lambda t: t.due)
            self.now = timer.due
            timer.due += timer.interval
            timer.callback()
        self._timers = [t for t in self._timers if not t.cancelled]
        self.now = target


# Tracker --------------------------------------------------------------------


class SessionTracker:
    """Owns the single live session and the timer that samples it.

    ``on_session_closed`` receives every session frozen by ``stop_session``
    (directly or through ``start_session`` replacing it); it is the hand-off
    point to persistence and must not block.
    """

    def __init__(
        self,
        owner_id: str,
        document_id: str,
        *,
        scheduler: Scheduler,
        clock: Clock | None = None,
        update_interval_ms: int | None = None,
        on_session_closed: Callable[[Session], None] | None = None,
    ) -> None:
        self.owner_id = owner_id
        self.document_id = document_id
        self.scheduler = scheduler
        self.clock = clock or wall_clock_ms
        if update_interval_ms is None:
            update_interval_ms = get_settings().update_interval_ms
        self.update_interval_ms = update_interval_ms
        self.on_session_closed = on_session_closed
        self._viewer: DocumentViewer | None = None
        self._session: Session | None = None
        self._state = SessionState.IDLE
        self._timer: TimerHandle | None = None
        self.last_closed: Session | None = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_session(self) -> Session | None:
        return self._session

    @property
    def current_session_id(self) -> str:
        return self._session.id if self._session else ""

    @property
    def viewer(self) -> DocumentViewer | None:
        return self._viewer

    def attach_viewer(self, viewer: DocumentViewer) -> None:
        self._viewer = viewer

    def detach_viewer(self) -> None:
        self._viewer = None

    # ------------------------------------------------------------------
    def start_session(self, purpose_id: str) -> Session:
        """Begin sampling under ``purpose_id``, closing any live session first."""

        if self._viewer is None:
            raise NoViewerAttachedError("Attach a document viewer before starting a session")
        if not purpose_id:
            raise ValueError("purpose_id must be non-empty")
        self.stop_session()

        first_sample = self._sample()
        now = self.clock()
        self._session = Session(
            id=new_id(),
            owner_id=self.owner_id,
            document_id=self.document_id,
            purpose_id=purpose_id,
            start_time=now,
            duration=0,
            scroll_sequence=(first_sample,) if first_sample is not None else (),
        )
        self._state = SessionState.RUNNING
        self._arm_timer()
        logger.info("Started session %s for purpose %s", self._session.id, purpose_id)
        return self._session

    def sample_tick(self) -> None:
        if self._state is not SessionState.RUNNING or self._session is None:
            return
        sample = self._sample()
        if sample is None:
            return
        session = self._session
        elapsed = max(self.clock() - session.start_time, session.duration)
        self._session = replace(
            session,
            duration=elapsed,
            scroll_sequence=session.scroll_sequence + (sample,),
        )

    def suspend(self) -> None:
        if self._state is not SessionState.RUNNING:
            return
        self._cancel_timer()
        self._state = SessionState.SUSPENDED
        logger.info("Suspended session %s", self.current_session_id)

    def resume(self) -> None:
        if self._state is not SessionState.SUSPENDED:
            return
        self._state = SessionState.RUNNING
        self._arm_timer()
        logger.info("Resumed session %s", self.current_session_id)

    def handle_visibility_change(self, hidden: bool) -> None:
        if hidden:
            self.suspend()
        else:
            self.resume()

    def stop_session(self) -> Session | None:
        """Freeze and release the live session; safe to call when idle."""

        self._cancel_timer()
        session = self._session
        self._session = None
        self._state = SessionState.IDLE
        if session is None:
            return None
        self.last_closed = session
        logger.info("Stopped session %s after %d ms", session.id, session.duration)
        if self.on_session_closed is not None:
            self.on_session_closed(session)
        return session

    def switch_document(self, owner_id: str, document_id: str) -> Session | None:
        """Close the live session, then retarget the tracker at another document."""

        closed = self.stop_session()
        self.owner_id = owner_id
        self.document_id = document_id
        return closed

    # ------------------------------------------------------------------
    def _arm_timer(self) -> None:
        self._cancel_timer()
        self._timer = self.scheduler.call_every(self.update_interval_ms / 1000.0, self.sample_tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _sample(self) -> float | None:
        viewer = self._viewer
        if viewer is None:
            logger.debug("Skipping sample: no viewer attached")
            return None
        try:
            return scroll_fraction(viewer.metrics())
        except Exception as exc:  # a failed sample is a skipped tick
            logger.debug("Skipping sample: %s", exc)
            return None


__all__ = [
    "AsyncioScheduler",
    "ManualScheduler",
    "NoViewerAttachedError",
    "Scheduler",
    "SessionState",
    "SessionTracker",
    "TimerHandle",
    "UPDATE_INTERVAL_MS",
    "wall_clock_ms",
]
