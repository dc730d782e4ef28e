"""Core dataclasses for projects, sessions, session state snapshots and config.

All models are designed for JSON serialization using dacite.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


# =============================================================================
# Project and Session Models
# =============================================================================


@dataclass
class Project:
    """A project known to the external catalog.

    Sessions reference projects; they never own them.
    """

    id: str  # Stable unique identifier
    name: str  # Display name
    path: str  # Absolute path to project root
    last_opened: datetime | None = None


class LaunchMode(Enum):
    """How a new assistant session is started inside its terminal surface."""

    CONTINUE = "continue"  # Continue the most recent conversation
    FRESH = "fresh"  # Start a brand new conversation
    RESUME = "resume"  # Resume a specific conversation by id
    TELEPORT = "teleport"  # Attach to an external session (see SessionCoordinator.teleport)


class CoordinatorMode(Enum):
    """Which top-level view the shell is showing."""

    LAUNCHER = "launcher"
    SESSION = "session"


@dataclass
class Session:
    """One running assistant instance bound to one project.

    ``surface_id`` is a lookup key into the surface factory that owns the
    terminal surface. It is None when the surface could not be created.
    """

    project: Project
    surface_id: str | None = None
    launch_mode: LaunchMode = LaunchMode.CONTINUE
    external_session_id: str | None = None  # Resume/teleport target
    has_activity: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def project_id(self) -> str:
        return self.project.id

    @property
    def has_surface(self) -> bool:
        """Check if a live terminal surface is attached."""
        return self.surface_id is not None


# =============================================================================
# Session State Snapshot Models
# =============================================================================


class TodoStatus(Enum):
    """Status of a todo item reported by the assistant."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PullRequestState(Enum):
    """State of a pull request summary."""

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


@dataclass
class TodoItem:
    """A todo item from the assistant's task list."""

    content: str = ""
    status: TodoStatus = TodoStatus.PENDING
    active_form: str | None = None  # Shown only while in progress

    @property
    def display_text(self) -> str:
        """Text to show for this item, preferring the active form while in progress."""
        if self.status == TodoStatus.IN_PROGRESS and self.active_form:
            return self.active_form
        return self.content


@dataclass
class PullRequest:
    """Summary of a pull request for the project's repository."""

    number: int = 0
    title: str = ""
    author: str | None = None
    is_draft: bool = False
    updated_at: str | None = None
    state: PullRequestState = PullRequestState.OPEN
    closed_at: str | None = None

    @property
    def is_closed(self) -> bool:
        """Return True for closed or merged pull requests."""
        return self.state in (PullRequestState.CLOSED, PullRequestState.MERGED)


@dataclass
class BackgroundTask:
    """A background task started by the assistant in another session."""

    session_id: str = ""
    description: str = ""
    web_url: str = ""


@dataclass
class ContextBreakdown:
    """Context window usage reported by the assistant."""

    # Totals for the session
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    max_tokens: int = 0
    used_percent: float = 0.0
    remaining_percent: float = 0.0

    # Current API call usage
    current_input: int = 0
    current_output: int = 0
    cache_creation: int = 0
    cache_read: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.total_input_tokens + self.total_output_tokens

    def percent_of(self, value: int) -> float:
        """Return ``value`` as a percentage of the context window size."""
        if self.max_tokens <= 0:
            return 0.0
        return value / self.max_tokens * 100


@dataclass
class SessionStateSnapshot:
    """Parsed contents of one state artifact.

    A snapshot is either fully valid or not produced at all; see
    ``terminaut.state_artifact.parse_state``.
    """

    project_name: str = ""
    model: str = ""
    version: str = ""
    cwd: str = ""
    context_percent: float = 0.0
    quota_percent: float = 0.0
    git_branch: str = ""
    git_uncommitted: int = 0
    git_ahead: int = 0
    git_behind: int = 0
    current_tool: str = ""
    todos: list[TodoItem] = field(default_factory=list)
    open_prs: list[PullRequest] = field(default_factory=list)
    background_tasks: list[BackgroundTask] = field(default_factory=list)
    context: ContextBreakdown = field(default_factory=ContextBreakdown)
    timestamp: datetime | None = None

    @classmethod
    def empty(cls) -> SessionStateSnapshot:
        """Return the neutral snapshot used before the first successful parse."""
        return cls()

    @property
    def is_empty(self) -> bool:
        """True until a real artifact has been parsed."""
        return self.timestamp is None

    @property
    def in_progress_todos(self) -> list[TodoItem]:
        return [t for t in self.todos if t.status == TodoStatus.IN_PROGRESS]

    @property
    def open_pull_requests(self) -> list[PullRequest]:
        return [pr for pr in self.open_prs if not pr.is_closed]

    @property
    def todo_counts(self) -> dict[str, int]:
        """Return a count of todos per status."""
        counts = {status.value: 0 for status in TodoStatus}
        for todo in self.todos:
            counts[todo.status.value] += 1
        return counts


# =============================================================================
# Configuration Models
# =============================================================================

TERMINAUT_DIR = Path.home() / ".terminaut"
DEFAULT_STATE_DIR = TERMINAUT_DIR / "states"
DEFAULT_ARCHIVE_PATH = TERMINAUT_DIR / "tasks.json"


@dataclass
class AppConfig:
    """Application configuration."""

    state_dir: str = ""  # Empty means ~/.terminaut/states
    archive_path: str = ""  # Empty means ~/.terminaut/tasks.json
    poll_interval: float = 2.0  # Seconds between poll reads
    rewatch_delay: float = 0.05  # Seconds to wait after an atomic rename
    use_file_events: bool = True
    assistant_command: str = "claude"
    surface_environment: dict[str, str] = field(
        default_factory=lambda: {"TERM_PROGRAM": "Apple_Terminal"}
    )
    log_level: str = "INFO"

    @property
    def resolved_state_dir(self) -> Path:
        """Return the directory holding per-project state artifacts."""
        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return DEFAULT_STATE_DIR

    @property
    def resolved_archive_path(self) -> Path:
        """Return the archived task set file path."""
        if self.archive_path:
            return Path(self.archive_path).expanduser()
        return DEFAULT_ARCHIVE_PATH


# =============================================================================
# Serialization Helpers
# =============================================================================


def _convert_enums(obj: object) -> object:
    """Recursively convert Enum and datetime values to JSON-friendly values."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _convert_enums(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_convert_enums(item) for item in obj]
    return obj


def model_to_dict(obj: object) -> dict:
    """Convert a dataclass model to a dictionary for JSON serialization."""
    data = asdict(obj)  # type: ignore[arg-type]
    return _convert_enums(data)  # type: ignore[return-value]
