"""State events, the observer registry, and Textual message classes.

Coordinator mutations and watcher publications are broadcast through an
EventDispatcher. Any number of consumers can subscribe callbacks to a
StateEvent; when a Textual App is connected, the matching Message is also
posted so widgets can react with ``on_*`` handlers.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from textual.message import Message

if TYPE_CHECKING:
    from textual.app import App

    from terminaut.models import (
        CoordinatorMode,
        Project,
        Session,
        SessionStateSnapshot,
    )
    from terminaut.state_watcher import WatcherState

logger = logging.getLogger(__name__)


class StateEvent(Enum):
    """Events that can be dispatched from state changes."""

    SESSION_LAUNCHED = "session_launched"
    SESSION_TELEPORTED = "session_teleported"
    SESSION_SELECTED = "session_selected"
    SESSION_CLOSED = "session_closed"
    MODE_CHANGED = "mode_changed"
    ACTIVE_PROJECT_CHANGED = "active_project_changed"
    VISIBLE_PROJECT_CHANGED = "visible_project_changed"
    # Watcher events
    SNAPSHOT_UPDATED = "snapshot_updated"
    WATCHER_STATE_CHANGED = "watcher_state_changed"


# =============================================================================
# Textual Messages for State Events
# =============================================================================


class StateMessage(Message):
    """Base class for state change messages."""

    pass


class SessionLaunched(StateMessage):
    """Posted when a new session is created by launch()."""

    def __init__(self, session: Session, index: int) -> None:
        super().__init__()
        self.session = session
        self.index = index


class SessionTeleported(StateMessage):
    """Posted when an additional session is opened by teleport()."""

    def __init__(self, session: Session, index: int) -> None:
        super().__init__()
        self.session = session
        self.index = index


class SessionSelected(StateMessage):
    """Posted when the selected session changes."""

    def __init__(self, session: Session | None, index: int) -> None:
        super().__init__()
        self.session = session
        self.index = index


class SessionClosed(StateMessage):
    """Posted when a session is closed."""

    def __init__(self, session: Session, index: int) -> None:
        super().__init__()
        self.session = session
        self.index = index


class ModeChanged(StateMessage):
    """Posted when the shell switches between launcher and session mode."""

    def __init__(self, mode: CoordinatorMode) -> None:
        super().__init__()
        self.mode = mode


class ActiveProjectChanged(StateMessage):
    """Posted when the current project reference changes."""

    def __init__(self, project: Project | None) -> None:
        super().__init__()
        self.project = project


class VisibleProjectChanged(StateMessage):
    """Posted when the project of the visible session changes."""

    def __init__(self, project: Project | None) -> None:
        super().__init__()
        self.project = project


class SnapshotUpdated(StateMessage):
    """Posted when the watcher publishes a new snapshot."""

    def __init__(self, project_path: str | None, snapshot: SessionStateSnapshot) -> None:
        super().__init__()
        self.project_path = project_path
        self.snapshot = snapshot


class WatcherStateChanged(StateMessage):
    """Posted when the watcher moves between idle, searching and watching."""

    def __init__(self, project_path: str | None, state: WatcherState) -> None:
        super().__init__()
        self.project_path = project_path
        self.state = state


# =============================================================================
# Observer Registry
# =============================================================================


class EventDispatcher:
    """Broadcasts state events to subscribed callbacks and a Textual app.

    Provides two mechanisms for notifying about state changes:

    1. **Callback-based subscriptions**: Use ``subscribe()`` and
       ``unsubscribe()`` for components outside the Textual widget tree.

    2. **Textual Message posting**: When connected via ``connect_app()``,
       every emit that carries a message posts it to the app.
    """

    def __init__(self) -> None:
        self._listeners: dict[StateEvent, list[Callable[..., Any]]] = {
            e: [] for e in StateEvent
        }
        self._app: App | None = None

    def connect_app(self, app: App) -> None:
        """Connect to a Textual App for message posting.

        Args:
            app: The Textual App instance to post messages to.
        """
        self._app = app

    def subscribe(self, event: StateEvent, callback: Callable[..., Any]) -> None:
        """Register callback for state event.

        Args:
            event: The event type to subscribe to.
            callback: Function to call with the event's keyword arguments.
        """
        self._listeners.setdefault(event, []).append(callback)

    def unsubscribe(self, event: StateEvent, callback: Callable[..., Any]) -> None:
        """Remove callback from event.

        Args:
            event: The event type to unsubscribe from.
            callback: The callback function to remove.
        """
        if event in self._listeners:
            try:
                self._listeners[event].remove(callback)
            except ValueError:
                pass

    def emit(
        self,
        event: StateEvent,
        message: StateMessage | None = None,
        **kwargs: Any,
    ) -> None:
        """Dispatch event to all subscribers and post its message.

        Args:
            event: The event type to dispatch.
            message: Optional Textual message to post to the connected app.
            **kwargs: Arguments passed to callbacks.
        """
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(**kwargs)
            except Exception:
                # Subscriber errors never reach the emitter
                logger.exception("Subscriber for %s failed", event.value)

        if message is not None and self._app is not None:
            self._app.post_message(message)
