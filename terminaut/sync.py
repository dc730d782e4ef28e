"""Keeps the state watcher pointed at the visible session.

The shell shows one session at a time, so only one StateWatcher is live.
ActiveSessionWatch listens for VISIBLE_PROJECT_CHANGED from the
coordinator and re-points the watcher. Coordinator operations are
synchronous, so the re-point runs as a task on the loop; requests are
applied one at a time and a request superseded before it runs is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .events import StateEvent
from .exceptions import WatcherError, record_error

if TYPE_CHECKING:
    from .coordinator import SessionCoordinator
    from .models import Project
    from .state_watcher import StateWatcher

logger = logging.getLogger(__name__)


class ActiveSessionWatch:
    """Re-points a StateWatcher whenever the visible project changes."""

    def __init__(self, coordinator: SessionCoordinator, watcher: StateWatcher) -> None:
        self.coordinator = coordinator
        self.watcher = watcher
        self._lock = asyncio.Lock()
        self._requested: Project | None = None
        self._version = 0
        self._tasks: set[asyncio.Task] = set()
        self._attached = False

    def attach(self) -> None:
        """Start following the coordinator's visible project."""
        if self._attached:
            return
        self.coordinator.events.subscribe(
            StateEvent.VISIBLE_PROJECT_CHANGED, self._on_visible_project_changed
        )
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self.coordinator.events.unsubscribe(
            StateEvent.VISIBLE_PROJECT_CHANGED, self._on_visible_project_changed
        )
        self._attached = False

    def request(self, project: Project | None) -> asyncio.Task | None:
        """Queue a re-point to ``project``; None stops the watcher.

        Must be called from the event loop thread.

        Returns:
            The task applying the request, or None without a running loop.
        """
        self._requested = project
        self._version += 1

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, deferring watcher re-point")
            return None

        task = loop.create_task(self._apply(self._version))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def sync(self) -> None:
        """Point the watcher at the current visible project and wait."""
        task = self.request(self.coordinator.visible_project)
        if task is not None:
            await task

    async def wait_idle(self) -> None:
        """Wait until all queued re-points have been applied."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Detach, drop pending re-points and stop the watcher."""
        self.detach()
        self._version += 1
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        async with self._lock:
            await self.watcher.stop_watching()

    def _on_visible_project_changed(self, project: Project | None) -> None:
        self.request(project)

    async def _apply(self, version: int) -> None:
        async with self._lock:
            if version != self._version:
                return
            project = self._requested
            try:
                if project is None:
                    logger.debug("No visible session, stopping state watcher")
                    await self.watcher.stop_watching()
                else:
                    logger.debug("Visible session is %s, re-pointing watcher", project.name)
                    await self.watcher.watch_project(project.path)
            except WatcherError as e:
                logger.warning("Failed to re-point state watcher: %s", e)
                record_error(e)
