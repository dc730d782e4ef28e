"""File watching for per-project session state artifacts.

Watches the state artifact written by the assistant's status hook and
publishes the latest successfully parsed snapshot.

Two channels run side by side while watching:
- A poll task that re-reads the artifact every ``poll_interval`` seconds.
- A watchfiles event task that reacts to writes and atomic renames faster
  than the poll, when the platform delivers events for them.

Notification backends do not report every attribute and rename class
consistently, so the poll channel is what guarantees convergence; the event
channel only shortens latency.

All publication happens on the event loop. File reads run in worker threads
via ``asyncio.to_thread`` and hand their result back to the loop before the
snapshot is swapped in, so consumers never see an update interleaved with a
coordinator mutation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from watchfiles import Change, awatch

from .events import SnapshotUpdated, StateEvent, WatcherStateChanged
from .exceptions import InvalidProjectPathError, StateParseError, record_error
from .models import DEFAULT_STATE_DIR, SessionStateSnapshot
from .state_artifact import artifact_path, read_state_file

if TYPE_CHECKING:
    from .events import EventDispatcher
    from .models import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_REWATCH_DELAY = 0.05


class WatcherState(Enum):
    """Lifecycle state of a StateWatcher."""

    IDLE = "idle"  # Not watching anything
    SEARCHING = "searching"  # Waiting for the artifact to appear
    WATCHING = "watching"  # Artifact found, both channels running


@dataclass
class StateWatcher:
    """Watches one project's state artifact and publishes parsed snapshots.

    Provides:
    - Discovery of the artifact, polling for it until it exists
    - Dual-channel change detection (poll + watchfiles events)
    - Re-open after atomic temp-then-rename replacement
    - Retention of the last good snapshot when a read fails to parse
    """

    state_dir: Path = field(default_factory=lambda: DEFAULT_STATE_DIR)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    rewatch_delay: float = DEFAULT_REWATCH_DELAY
    use_file_events: bool = True
    events: EventDispatcher | None = None

    # Published output
    snapshot: SessionStateSnapshot = field(default_factory=SessionStateSnapshot.empty)
    state: WatcherState = WatcherState.IDLE
    project_path: Path | None = None
    artifact_path: Path | None = None

    # Callbacks
    on_snapshot: Callable[[SessionStateSnapshot], None] | None = None

    # Internal state
    _poll_task: asyncio.Task | None = field(default=None, repr=False)
    _event_task: asyncio.Task | None = field(default=None, repr=False)
    _rewatch_task: asyncio.Task | None = field(default=None, repr=False)
    _stop_event: asyncio.Event | None = field(default=None, repr=False)
    _generation: int = field(default=0, repr=False)
    _read_seq: int = field(default=0, repr=False)
    _published_seq: int = field(default=0, repr=False)
    _last_error: str | None = field(default=None, repr=False)

    @classmethod
    def from_config(
        cls, config: AppConfig, events: EventDispatcher | None = None
    ) -> StateWatcher:
        """Create a watcher using the configured directory and timings."""
        return cls(
            state_dir=config.resolved_state_dir,
            poll_interval=config.poll_interval,
            rewatch_delay=config.rewatch_delay,
            use_file_events=config.use_file_events,
            events=events,
        )

    @property
    def is_watching(self) -> bool:
        """Check if the watcher is searching for or watching an artifact."""
        return self.state != WatcherState.IDLE

    @property
    def rewatch_pending(self) -> bool:
        """Check if a re-open after an atomic rename is scheduled."""
        return self._rewatch_task is not None and not self._rewatch_task.done()

    # =========================================================================
    # Public API
    # =========================================================================

    async def watch_project(self, path: str | Path) -> None:
        """Start watching the state artifact for the project at ``path``.

        Any previous watch is fully cancelled first. If the artifact does
        not exist yet the watcher searches for it indefinitely.

        Args:
            path: Filesystem path of the project root.

        Raises:
            InvalidProjectPathError: If ``path`` is empty.
        """
        if path is None or not str(path).strip():
            raise InvalidProjectPathError(path)

        await self.stop_watching()

        project_path = Path(path).expanduser()
        target = artifact_path(project_path, self.state_dir)
        switching = target != self.artifact_path

        self.project_path = project_path
        self.artifact_path = target
        self._generation += 1
        self._stop_event = asyncio.Event()
        self._last_error = None

        if switching and not self.snapshot.is_empty:
            # Never show another project's state for this one
            self._published_seq = self._read_seq
            self._publish(SessionStateSnapshot.empty())

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Failed to create state directory %s: %s", self.state_dir, e)
            record_error(e)

        logger.info("Watching session state for %s at %s", project_path, target)
        await self._open_and_watch()

    async def stop_watching(self) -> None:
        """Stop both channels and release the notification handle.

        Idempotent and safe to call from any state.
        """
        self._generation += 1
        if self._stop_event is not None:
            self._stop_event.set()

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._poll_task, self._event_task, self._rewatch_task)
            if task is not None and task is not current
        ]
        self._poll_task = None
        self._event_task = None
        self._rewatch_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.state != WatcherState.IDLE:
            logger.debug("Stopped watching %s", self.artifact_path)
        self._set_state(WatcherState.IDLE)

    async def refresh(self) -> bool:
        """Re-read the artifact and publish it if it parsed and changed.

        Read and parse failures are logged and the previous snapshot is kept.

        Returns:
            True if a new snapshot was published.
        """
        path = self.artifact_path
        if path is None or self.state == WatcherState.IDLE:
            return False

        generation = self._generation
        self._read_seq += 1
        seq = self._read_seq

        try:
            snapshot = await asyncio.to_thread(read_state_file, path)
        except FileNotFoundError:
            logger.debug("State artifact %s missing during read", path)
            return False
        except StateParseError as e:
            self._log_read_failure("Failed to parse state artifact, keeping previous snapshot", e)
            return False
        except OSError as e:
            self._log_read_failure("Failed to read state artifact", e)
            return False
        except Exception as e:
            # The poll and event channels must outlive any single bad read
            self._log_read_failure("Unexpected error reading state artifact", e)
            return False

        if generation != self._generation or self.state == WatcherState.IDLE:
            logger.debug("Discarding read of %s from a cancelled watch", path)
            return False
        if seq < self._published_seq:
            logger.debug("Discarding stale read of %s (seq %d < %d)", path, seq, self._published_seq)
            return False

        self._published_seq = seq
        self._last_error = None
        if snapshot == self.snapshot:
            return False

        self._publish(snapshot)
        return True

    # =========================================================================
    # State transitions
    # =========================================================================

    async def _open_and_watch(self) -> None:
        """Enter Watching if the artifact exists, otherwise Searching."""
        path = self.artifact_path
        if path is None:
            return
        if path.exists():
            await self._enter_watching()
        else:
            self._enter_searching()

    def _enter_searching(self) -> None:
        logger.debug("State artifact %s not found, waiting...", self.artifact_path)
        self._set_state(WatcherState.SEARCHING)
        self._start_poll(self._search_loop)
        self._ensure_event_channel()

    async def _enter_watching(self) -> None:
        generation = self._generation
        self._set_state(WatcherState.WATCHING)

        # Read immediately on entry
        await self.refresh()

        if generation != self._generation or self.state == WatcherState.IDLE:
            return
        self._start_poll(self._poll_loop)
        self._ensure_event_channel()

    def _set_state(self, new_state: WatcherState) -> None:
        if new_state == self.state:
            return
        self.state = new_state
        if self.events is not None:
            project = str(self.project_path) if self.project_path else None
            self.events.emit(
                StateEvent.WATCHER_STATE_CHANGED,
                WatcherStateChanged(project, new_state),
                project_path=project,
                state=new_state,
            )

    # =========================================================================
    # Poll channel
    # =========================================================================

    def _start_poll(self, loop_factory: Callable[[], object]) -> None:
        """Replace the poll task, without cancelling the task that calls this."""
        current = asyncio.current_task()
        if (
            self._poll_task is not None
            and self._poll_task is not current
            and not self._poll_task.done()
        ):
            self._poll_task.cancel()
        self._poll_task = asyncio.create_task(loop_factory())

    async def _search_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            path = self.artifact_path
            if path is not None and path.exists():
                logger.info("State artifact found: %s", path)
                await self._enter_watching()
                return

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()

    # =========================================================================
    # Event channel
    # =========================================================================

    def _ensure_event_channel(self) -> None:
        if not self.use_file_events:
            return
        if self._event_task is None or self._event_task.done():
            self._event_task = asyncio.create_task(self._event_loop())

    async def _event_loop(self) -> None:
        """Forward filesystem notifications for the artifact."""
        path = self.artifact_path
        stop_event = self._stop_event
        if path is None or stop_event is None:
            return

        name = path.name

        def only_artifact(change: Change, changed_path: str) -> bool:
            return Path(changed_path).name == name

        try:
            async for changes in awatch(
                path.parent,
                watch_filter=only_artifact,
                stop_event=stop_event,
                debounce=50,
                rust_timeout=500,
            ):
                await self._on_file_changes(changes)
        except asyncio.CancelledError:
            pass
        except (OSError, RuntimeError) as e:
            logger.warning(
                "File events unavailable for %s, relying on polling: %s", path, e
            )
            record_error(e)

    async def _on_file_changes(self, changes: set[tuple[Change, str]]) -> None:
        kinds = {change for change, _ in changes}
        if Change.deleted in kinds or Change.added in kinds:
            # Replaced via temp-then-rename; the old file is gone
            logger.debug("State artifact replaced, re-watching %s", self.artifact_path)
            self._schedule_rewatch()
        elif Change.modified in kinds:
            await self.refresh()

    def _schedule_rewatch(self) -> None:
        if self.rewatch_pending:
            return
        self._rewatch_task = asyncio.create_task(self._rewatch())

    async def _rewatch(self) -> None:
        generation = self._generation
        try:
            # Let the rename settle; the previous snapshot stays published
            await asyncio.sleep(self.rewatch_delay)
            if generation != self._generation or self.state == WatcherState.IDLE:
                return
            await self._open_and_watch()
        finally:
            if self._rewatch_task is asyncio.current_task():
                self._rewatch_task = None

    # =========================================================================
    # Publication
    # =========================================================================

    def _publish(self, snapshot: SessionStateSnapshot) -> None:
        self.snapshot = snapshot
        logger.debug(
            "Published snapshot for %s: context=%.0f%% quota=%.0f%% todos=%d prs=%d",
            self.project_path,
            snapshot.context_percent,
            snapshot.quota_percent,
            len(snapshot.todos),
            len(snapshot.open_prs),
        )

        if self.on_snapshot is not None:
            try:
                self.on_snapshot(snapshot)
            except Exception:
                logger.exception("Snapshot callback failed")

        if self.events is not None:
            project = str(self.project_path) if self.project_path else None
            self.events.emit(
                StateEvent.SNAPSHOT_UPDATED,
                SnapshotUpdated(project, snapshot),
                project_path=project,
                snapshot=snapshot,
            )

    def _log_read_failure(self, message: str, error: Exception) -> None:
        # Repeated identical failures from the poll channel go to debug
        text = str(error)
        if text != self._last_error:
            logger.warning("%s: %s", message, error)
            record_error(error)
        else:
            logger.debug("%s: %s", message, error)
        self._last_error = text
