"""State artifact contract shared by the status hook and the shell.

The status hook writes one JSON file per project into the state directory:

    <state_dir>/project-<sanitized basename>.json

Writes are atomic (temporary file in the same directory, then rename over
the final path), so a reader either sees the previous document or the new
one, never a half-written file.

Parsing is all-or-nothing: a document that is not a JSON object, has no
timestamp, or carries a value of the wrong type is rejected with
StateParseError. Missing and null fields fall back to neutral defaults.

Known limitation: two projects whose basenames sanitize to the same string
share one artifact. ``artifact_collisions`` reports such groups; nothing
attempts to disambiguate them.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
import tempfile
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import dacite

from .exceptions import StateParseError, StateWriteError
from .models import (
    DEFAULT_STATE_DIR,
    PullRequestState,
    SessionStateSnapshot,
    TodoStatus,
    model_to_dict,
)

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "project-"
ARTIFACT_SUFFIX = ".json"

# Everything outside letters, digits, "-" and "_" is stripped
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

# snake_case field -> artifact key, where plain camelCase is not what the hook writes
_KEY_ALIASES = {"open_prs": "openPRs"}

_LIST_FIELDS = ("todos", "open_prs", "background_tasks")
_PERCENT_FIELDS = ("context_percent", "quota_percent")
_CONTEXT_PERCENT_FIELDS = ("used_percent", "remaining_percent")


# =============================================================================
# Location
# =============================================================================


def sanitize_project_name(name: str) -> str:
    """Reduce a project basename to the artifact-filename-safe character set.

    Idempotent: sanitizing an already sanitized name returns it unchanged.
    """
    return _UNSAFE_CHARS.sub("", name)


def artifact_name(project_path: str | Path) -> str:
    """Return the artifact filename for a project path."""
    basename = Path(project_path).name
    return f"{ARTIFACT_PREFIX}{sanitize_project_name(basename)}{ARTIFACT_SUFFIX}"


def artifact_path(project_path: str | Path, state_dir: Path | None = None) -> Path:
    """Return the full artifact path for a project path."""
    return (state_dir or DEFAULT_STATE_DIR) / artifact_name(project_path)


def artifact_collisions(project_paths: Iterable[str | Path]) -> dict[str, list[str]]:
    """Group project paths that map to the same artifact filename.

    Only groups with more than one distinct path are returned.
    """
    groups: dict[str, list[str]] = {}
    for path in project_paths:
        name = artifact_name(path)
        members = groups.setdefault(name, [])
        if str(path) not in members:
            members.append(str(path))
    return {name: paths for name, paths in groups.items() if len(paths) > 1}


# =============================================================================
# Parsing
# =============================================================================


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _normalize_keys(value: Any) -> Any:
    """Convert artifact keys to field names and drop nulls."""
    if isinstance(value, dict):
        return {
            _snake_case(str(k)): _normalize_keys(v)
            for k, v in value.items()
            if v is not None
        }
    if isinstance(value, list):
        return [_normalize_keys(item) for item in value if item is not None]
    return value


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _enum_hook(enum_type: type[Enum]):
    def convert(value: Any) -> Enum:
        if isinstance(value, enum_type):
            return value
        if not isinstance(value, str):
            raise ValueError(f"{enum_type.__name__} must be a string, got {value!r}")
        return enum_type(value.strip().lower())

    return convert


_DACITE_CONFIG = dacite.Config(
    type_hooks={
        datetime: parse_timestamp,
        TodoStatus: _enum_hook(TodoStatus),
        PullRequestState: _enum_hook(PullRequestState),
    },
    cast=[float],
)


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100]; non-finite values become 0."""
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return min(100.0, max(0.0, value))


def _clamp_percentages(snapshot: SessionStateSnapshot) -> None:
    for name in _PERCENT_FIELDS:
        setattr(snapshot, name, clamp_percent(getattr(snapshot, name)))
    for name in _CONTEXT_PERCENT_FIELDS:
        setattr(snapshot.context, name, clamp_percent(getattr(snapshot.context, name)))


def parse_state(data: Any, *, source: str | None = None) -> SessionStateSnapshot:
    """Build a snapshot from a decoded artifact document.

    Args:
        data: The decoded JSON document.
        source: Optional file path, used for error context.

    Returns:
        A fully validated SessionStateSnapshot.

    Raises:
        StateParseError: If the document is structurally invalid.
    """
    if not isinstance(data, dict):
        raise StateParseError(
            "State artifact must be a JSON object",
            file_path=source,
            context={"type": type(data).__name__},
        )

    normalized = _normalize_keys(data)

    if "timestamp" not in normalized:
        raise StateParseError(
            "State artifact has no timestamp", file_path=source, field="timestamp"
        )
    for name in _LIST_FIELDS:
        if name in normalized and not isinstance(normalized[name], list):
            raise StateParseError(
                "State artifact field must be a list", file_path=source, field=name
            )
    if "context" in normalized and not isinstance(normalized["context"], dict):
        raise StateParseError(
            "State artifact field must be an object", file_path=source, field="context"
        )

    try:
        snapshot = dacite.from_dict(
            data_class=SessionStateSnapshot,
            data=normalized,
            config=_DACITE_CONFIG,
        )
    except (dacite.DaciteError, ValueError, TypeError, OverflowError) as e:
        raise StateParseError(
            f"Invalid state artifact: {e}", file_path=source, cause=e
        ) from e

    _clamp_percentages(snapshot)
    return snapshot


def parse_state_text(text: str, *, source: str | None = None) -> SessionStateSnapshot:
    """Parse artifact JSON text into a snapshot.

    Raises:
        StateParseError: If the text is not valid JSON or not a valid artifact.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StateParseError(
            f"Invalid JSON in state artifact at line {e.lineno}",
            file_path=source,
            context={"line": e.lineno, "column": e.colno},
            cause=e,
        ) from e
    except ValueError as e:
        # Integer literals beyond the interpreter digit limit
        raise StateParseError(
            f"Invalid number in state artifact: {e}", file_path=source, cause=e
        ) from e
    return parse_state(data, source=source)


def read_state_file(path: Path) -> SessionStateSnapshot:
    """Read and parse a state artifact from disk.

    Raises:
        FileNotFoundError: If the artifact does not exist.
        OSError: If the artifact cannot be read.
        StateParseError: If the content is not a valid artifact.
    """
    raw = path.read_bytes()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise StateParseError(
            "State artifact is not valid UTF-8", file_path=str(path), cause=e
        ) from e
    return parse_state_text(text, source=str(path))


# =============================================================================
# Writing (producer side of the contract)
# =============================================================================


def _camel_case(key: str) -> str:
    if key in _KEY_ALIASES:
        return _KEY_ALIASES[key]
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _camelize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel_case(k): _camelize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize_keys(item) for item in value]
    return value


def snapshot_to_dict(snapshot: SessionStateSnapshot) -> dict[str, Any]:
    """Convert a snapshot to the artifact document layout (camelCase keys)."""
    return _camelize_keys(model_to_dict(snapshot))


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to ``path`` via a temporary file and rename.

    The temporary file lives in the same directory so the final rename
    never crosses filesystems.

    Raises:
        OSError: If the file cannot be written or renamed.
        TypeError: If ``data`` is not JSON serializable.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def write_state_artifact(
    project_path: str | Path,
    state: SessionStateSnapshot | dict[str, Any],
    state_dir: Path | None = None,
) -> Path:
    """Atomically write a project's state artifact.

    A snapshot without a timestamp is stamped with the current UTC time.

    Returns:
        The artifact path that was written.

    Raises:
        StateWriteError: If the artifact cannot be written.
    """
    if isinstance(state, SessionStateSnapshot):
        document = snapshot_to_dict(state)
        if document.get("timestamp") is None:
            document["timestamp"] = (
                datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            )
    else:
        document = state

    target = artifact_path(project_path, state_dir)
    try:
        atomic_write_json(target, document)
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write state artifact %s: %s", target, e)
        raise StateWriteError(
            f"Failed to write state artifact: {e}", file_path=str(target), cause=e
        ) from e

    logger.debug("Wrote state artifact %s", target)
    return target
