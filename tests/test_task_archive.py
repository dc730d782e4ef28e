"""Tests for the archived background task set."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from terminaut.exceptions import ArchiveSaveError, error_stats
from terminaut.models import BackgroundTask, SessionStateSnapshot
from terminaut.task_archive import TaskArchive


def make_tasks() -> list[BackgroundTask]:
    return [
        BackgroundTask(session_id="session_a", description="A"),
        BackgroundTask(session_id="session_b", description="B"),
        BackgroundTask(session_id="session_c", description="C"),
    ]


class TestTaskArchive:
    """Test archiving and unarchiving task ids."""

    def test_empty_when_file_missing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = TaskArchive(Path(tmpdir) / "tasks.json")
            assert archive.archived_ids() == set()
            assert not archive.is_archived("session_a")

    def test_archive_persists(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tasks.json"
            TaskArchive(path).archive("session_a")

            # A fresh instance sees the same set
            reloaded = TaskArchive(path)
            assert reloaded.is_archived("session_a")
            assert json.loads(path.read_text()) == {"archived": ["session_a"]}

    def test_archive_twice_stores_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tasks.json"
            archive = TaskArchive(path)
            archive.archive("session_a")
            archive.archive("session_a")

            assert json.loads(path.read_text()) == {"archived": ["session_a"]}

    def test_unarchive(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = TaskArchive(Path(tmpdir) / "tasks.json")
            archive.archive("session_a")
            archive.archive("session_b")

            archive.unarchive("session_a")

            assert archive.archived_ids() == {"session_b"}

    def test_unarchive_unknown_id_does_not_write(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tasks.json"
            TaskArchive(path).unarchive("session_x")
            assert not path.exists()

    def test_default_path(self):
        archive = TaskArchive()
        assert archive.path.name == "tasks.json"
        assert archive.path.parent.name == ".terminaut"


class TestArchiveFileFormats:
    """Test reading unusual or damaged archive files."""

    def test_bare_list_accepted(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tasks.json"
            path.write_text('["session_a", "session_b", "session_a", 5]')

            assert TaskArchive(path).archived_ids() == {"session_a", "session_b"}

    def test_corrupt_file_treated_as_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tasks.json"
            path.write_text("{not json")
            error_stats.reset()

            archive = TaskArchive(path)
            assert archive.archived_ids() == set()
            assert error_stats.total_count == 1

            # Next mutation rewrites the file
            archive.archive("session_a")
            assert json.loads(path.read_text()) == {"archived": ["session_a"]}

    def test_unexpected_layout(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tasks.json"
            path.write_text('{"archived": "session_a"}')

            assert TaskArchive(path).archived_ids() == set()

    def test_save_failure_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = TaskArchive(Path(tmpdir) / "tasks.json")
            with patch(
                "terminaut.task_archive.atomic_write_json",
                side_effect=OSError("read-only"),
            ):
                with pytest.raises(ArchiveSaveError) as exc_info:
                    archive.archive("session_a")
            assert "tasks.json" in str(exc_info.value)


class TestFiltering:
    """Test hiding archived tasks."""

    def test_filter_tasks_keeps_order(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = TaskArchive(Path(tmpdir) / "tasks.json")
            archive.archive("session_b")

            visible = archive.filter_tasks(make_tasks())

            assert [t.session_id for t in visible] == ["session_a", "session_c"]

    def test_visible_tasks_from_snapshot(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = TaskArchive(Path(tmpdir) / "tasks.json")
            archive.archive("session_a")
            archive.archive("session_c")
            snapshot = SessionStateSnapshot(background_tasks=make_tasks())

            visible = archive.visible_tasks(snapshot)

            assert [t.session_id for t in visible] == ["session_b"]
            # Snapshot itself is untouched
            assert len(snapshot.background_tasks) == 3

    def test_nothing_archived(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = TaskArchive(Path(tmpdir) / "tasks.json")
            assert archive.filter_tasks(make_tasks()) == make_tasks()
