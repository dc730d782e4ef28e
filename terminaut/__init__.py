"""Terminaut session state synchronization.

Keeps a multi-session shell in step with a coding assistant that reports its
state only by writing JSON files to disk, and coordinates the lifecycle of
the sessions the shell hosts.

Public API Usage:
    from terminaut import SessionCoordinator, StateWatcher, ActiveSessionWatch

    coordinator = SessionCoordinator(surfaces, events=events)
    watcher = StateWatcher.from_config(load_config(), events)
    ActiveSessionWatch(coordinator, watcher).attach()

    coordinator.launch(project)  # the watcher follows the visible session
"""

__version__ = "0.1.0"

# =============================================================================
# Core Data Models
# =============================================================================

from terminaut.models import (
    AppConfig,
    BackgroundTask,
    ContextBreakdown,
    CoordinatorMode,
    LaunchMode,
    Project,
    PullRequest,
    PullRequestState,
    Session,
    SessionStateSnapshot,
    TodoItem,
    TodoStatus,
)

# =============================================================================
# State Artifacts and Watching
# =============================================================================

from terminaut.state_artifact import (
    artifact_collisions,
    artifact_path,
    parse_state,
    read_state_file,
    sanitize_project_name,
    snapshot_to_dict,
    write_state_artifact,
)
from terminaut.state_watcher import StateWatcher, WatcherState
from terminaut.task_archive import TaskArchive

# =============================================================================
# Session Coordination
# =============================================================================

from terminaut.coordinator import SessionCoordinator, build_initial_input
from terminaut.events import EventDispatcher, StateEvent
from terminaut.ports import ProjectCatalog, SurfaceConfig, TerminalSurfaceFactory
from terminaut.sync import ActiveSessionWatch

# =============================================================================
# Configuration
# =============================================================================

from terminaut.config import load_config, save_config

__all__ = [
    "__version__",
    # Models
    "AppConfig",
    "BackgroundTask",
    "ContextBreakdown",
    "CoordinatorMode",
    "LaunchMode",
    "Project",
    "PullRequest",
    "PullRequestState",
    "Session",
    "SessionStateSnapshot",
    "TodoItem",
    "TodoStatus",
    # State artifacts
    "artifact_collisions",
    "artifact_path",
    "parse_state",
    "read_state_file",
    "sanitize_project_name",
    "snapshot_to_dict",
    "write_state_artifact",
    "StateWatcher",
    "WatcherState",
    "TaskArchive",
    # Coordination
    "SessionCoordinator",
    "build_initial_input",
    "EventDispatcher",
    "StateEvent",
    "ProjectCatalog",
    "SurfaceConfig",
    "TerminalSurfaceFactory",
    "ActiveSessionWatch",
    # Configuration
    "load_config",
    "save_config",
]
