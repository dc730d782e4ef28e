"""Persisted set of archived background task ids.

Background tasks listed in a session state snapshot can be dismissed by the
user. Dismissed session ids are stored in a small JSON file:

    {"archived": ["session_01Qy...", ...]}

The whole set is rewritten atomically on every mutation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from .exceptions import ArchiveSaveError, record_error
from .models import DEFAULT_ARCHIVE_PATH, BackgroundTask, SessionStateSnapshot
from .state_artifact import atomic_write_json

logger = logging.getLogger(__name__)


class TaskArchive:
    """Archived background task ids, persisted across restarts."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or DEFAULT_ARCHIVE_PATH

    def archive(self, session_id: str) -> None:
        """Archive a task by session id."""
        archived = self._load()
        if session_id not in archived:
            archived.append(session_id)
            self._save(archived)
            logger.info("Archived background task %s", session_id)

    def unarchive(self, session_id: str) -> None:
        """Unarchive a task by session id."""
        archived = self._load()
        if session_id in archived:
            archived = [s for s in archived if s != session_id]
            self._save(archived)
            logger.info("Unarchived background task %s", session_id)

    def is_archived(self, session_id: str) -> bool:
        return session_id in self._load()

    def archived_ids(self) -> set[str]:
        return set(self._load())

    def filter_tasks(self, tasks: Iterable[BackgroundTask]) -> list[BackgroundTask]:
        """Drop archived tasks, keeping the order of the rest."""
        archived = self.archived_ids()
        return [task for task in tasks if task.session_id not in archived]

    def visible_tasks(self, snapshot: SessionStateSnapshot) -> list[BackgroundTask]:
        """Return the snapshot's background tasks that are not archived."""
        return self.filter_tasks(snapshot.background_tasks)

    def _load(self) -> list[str]:
        """Load archived ids from disk.

        A missing file is an empty set. A corrupt file is logged and treated
        as empty; the next mutation overwrites it.
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Failed to read task archive %s: %s", self.path, e)
            record_error(e)
            return []

        if isinstance(data, dict):
            data = data.get("archived", [])
        if not isinstance(data, list):
            logger.warning("Unexpected task archive layout in %s", self.path)
            return []

        archived: list[str] = []
        for item in data:
            if isinstance(item, str) and item not in archived:
                archived.append(item)
        return archived

    def _save(self, archived: list[str]) -> None:
        try:
            atomic_write_json(self.path, {"archived": archived})
        except OSError as e:
            logger.error("Failed to write task archive %s: %s", self.path, e)
            record_error(e)
            raise ArchiveSaveError(
                "Failed to write task archive",
                file_path=str(self.path),
                cause=e,
            ) from e
