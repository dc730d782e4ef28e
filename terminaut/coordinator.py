"""Session lifecycle coordination.

The SessionCoordinator owns the ordered list of active sessions, the
selected tab, the activation order shown by the launcher, and the switch
between launcher mode and session mode. It is the only place that mutates
this state.

Every operation is synchronous and runs on the event loop thread. State is
fully updated before any notification goes out, so subscribers never see a
half-applied mutation (for example a removed session with a stale
selection).
"""

from __future__ import annotations

import logging
import shlex
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

from .events import (
    ActiveProjectChanged,
    EventDispatcher,
    ModeChanged,
    SessionClosed,
    SessionLaunched,
    SessionSelected,
    SessionTeleported,
    StateEvent,
    StateMessage,
    VisibleProjectChanged,
)
from .exceptions import InvalidLaunchError, record_error
from .models import AppConfig, CoordinatorMode, LaunchMode, Project, Session
from .ports import SurfaceConfig

if TYPE_CHECKING:
    from .ports import ProjectCatalog, TerminalSurfaceFactory

logger = logging.getLogger(__name__)


def build_initial_input(
    mode: LaunchMode,
    command: str = "claude",
    external_session_id: str | None = None,
) -> str:
    """Build the text typed into a new surface to start the assistant.

    Args:
        mode: How the assistant should start.
        command: The assistant executable.
        external_session_id: Conversation id for RESUME and TELEPORT.

    Returns:
        The initial input, terminated with a newline.

    Raises:
        InvalidLaunchError: If RESUME or TELEPORT has no session id.
    """
    if mode == LaunchMode.CONTINUE:
        return f"exec {command} -c\n"
    if mode == LaunchMode.FRESH:
        return f"exec {command}\n"

    if not external_session_id:
        raise InvalidLaunchError(
            f"{mode.value} requires a session id", mode=mode.value
        )
    flag = "--resume" if mode == LaunchMode.RESUME else "--teleport"
    return f"exec {command} {flag} {shlex.quote(external_session_id)}\n"


class SessionCoordinator:
    """Owns the active sessions and the launcher/session mode switch.

    Collaborators are injected: a surface factory that hosts the assistant
    process, an optional project catalog, and an event dispatcher that
    broadcasts every change.

    Invariants kept by every operation:
    - ``selected_index`` is a valid index whenever sessions exist
    - ``activation_order`` lists each launched project id once, in first
      activation order
    - ``launch()`` never creates a second session for a project
    """

    def __init__(
        self,
        surfaces: TerminalSurfaceFactory,
        *,
        catalog: ProjectCatalog | None = None,
        events: EventDispatcher | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.surfaces = surfaces
        self.catalog = catalog
        self.events = events or EventDispatcher()
        self.config = config or AppConfig()

        self._sessions: list[Session] = []
        self._selected_index = 0
        self._activation_order: list[str] = []
        self._active_project: Project | None = None
        self._mode = CoordinatorMode.LAUNCHER
        self._pending: list[tuple[StateEvent, StateMessage, dict[str, Any]]] = []

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def sessions(self) -> tuple[Session, ...]:
        return tuple(self._sessions)

    @property
    def selected_index(self) -> int:
        return self._selected_index

    @property
    def selected_session(self) -> Session | None:
        if 0 <= self._selected_index < len(self._sessions):
            return self._sessions[self._selected_index]
        return None

    @property
    def activation_order(self) -> tuple[str, ...]:
        """Project ids in tab order, first activated first."""
        return tuple(self._activation_order)

    @property
    def active_project(self) -> Project | None:
        return self._active_project

    @property
    def mode(self) -> CoordinatorMode:
        return self._mode

    @property
    def is_launcher(self) -> bool:
        return self._mode == CoordinatorMode.LAUNCHER

    @property
    def visible_project(self) -> Project | None:
        """Project of the session on screen; None while the launcher shows."""
        if self._mode != CoordinatorMode.SESSION:
            return None
        session = self.selected_session
        return session.project if session else None

    def session_for_surface(self, surface_id: str) -> Session | None:
        for session in self._sessions:
            if session.surface_id == surface_id:
                return session
        return None

    # =========================================================================
    # Operations
    # =========================================================================

    def launch(
        self,
        project: Project,
        mode: LaunchMode = LaunchMode.CONTINUE,
        resume_id: str | None = None,
    ) -> Session:
        """Open a project, reusing its session if one is already active.

        Args:
            project: The project to open.
            mode: How to start the assistant for a new session.
            resume_id: Conversation id, required for LaunchMode.RESUME.

        Returns:
            The selected session (existing or newly created).

        Raises:
            InvalidLaunchError: For TELEPORT (use ``teleport()``) or RESUME
                without ``resume_id``.
        """
        if mode == LaunchMode.TELEPORT:
            raise InvalidLaunchError(
                "Teleport sessions are opened with teleport()",
                project_id=project.id,
                mode=mode.value,
            )
        if mode == LaunchMode.RESUME and not resume_id:
            raise InvalidLaunchError(
                "Resuming requires a session id", project_id=project.id, mode=mode.value
            )

        self._mark_opened(project)

        existing = self._index_for_project(project.id)
        new_session = None
        if existing is None:
            new_session = self._create_session(project, mode, resume_id)

        with self._mutation():
            if existing is not None:
                logger.info("Switching to existing session for %s", project.name)
                self._selected_index = existing
            else:
                self._sessions.append(new_session)
                self._selected_index = len(self._sessions) - 1
                if project.id not in self._activation_order:
                    self._activation_order.append(project.id)
                self._queue(
                    StateEvent.SESSION_LAUNCHED,
                    SessionLaunched(new_session, self._selected_index),
                    session=new_session,
                    index=self._selected_index,
                )
                logger.info(
                    "Launched %s session for %s (%d active)",
                    mode.value,
                    project.name,
                    len(self._sessions),
                )

            session = self._sessions[self._selected_index]
            self._active_project = session.project
            self._mode = CoordinatorMode.SESSION

        return session

    def switch_to(self, index: int) -> bool:
        """Select the session at ``index`` and show it.

        Returns:
            False (and changes nothing) if ``index`` is out of range.
        """
        if not 0 <= index < len(self._sessions):
            logger.debug("Ignoring switch to invalid session index %d", index)
            return False

        with self._mutation():
            self._selected_index = index
            self._active_project = self._sessions[index].project
            self._mode = CoordinatorMode.SESSION
        return True

    def next(self) -> None:
        """Select the next session, wrapping around."""
        if not self._sessions:
            return
        self.switch_to((self._selected_index + 1) % len(self._sessions))

    def previous(self) -> None:
        """Select the previous session, wrapping around."""
        if not self._sessions:
            return
        self.switch_to((self._selected_index - 1) % len(self._sessions))

    def close(self, index: int) -> Session | None:
        """Close the session at ``index`` and return to the launcher.

        An invalid index only returns to the launcher. Closing never lands
        the user in another session automatically.

        Returns:
            The closed session, or None if ``index`` was invalid.
        """
        if not 0 <= index < len(self._sessions):
            logger.debug("Close of invalid session index %d, returning to launcher", index)
            self.return_to_launcher()
            return None

        with self._mutation():
            session = self._sessions.pop(index)

            # Teleported tabs never hold a place in the activation order
            if not any(
                s.project_id == session.project_id
                and s.launch_mode != LaunchMode.TELEPORT
                for s in self._sessions
            ):
                self._activation_order = [
                    pid for pid in self._activation_order if pid != session.project_id
                ]

            if not self._sessions:
                self._active_project = None
                self._selected_index = 0
            else:
                if index < self._selected_index:
                    self._selected_index -= 1
                if self._selected_index >= len(self._sessions):
                    self._selected_index = len(self._sessions) - 1
                self._active_project = self._sessions[self._selected_index].project

            self._mode = CoordinatorMode.LAUNCHER
            self._queue(
                StateEvent.SESSION_CLOSED,
                SessionClosed(session, index),
                session=session,
                index=index,
            )

        logger.info(
            "Closed session for %s (%d active)", session.project.name, len(self._sessions)
        )
        self._release_surface(session)
        return session

    def close_current(self) -> Session | None:
        """Close the selected session."""
        return self.close(self._selected_index)

    def return_to_launcher(self) -> None:
        """Show the launcher, keeping sessions and selection for coming back."""
        with self._mutation():
            self._mode = CoordinatorMode.LAUNCHER

    def teleport(self, session_id: str) -> Session | None:
        """Open an extra tab for the current project attached to ``session_id``.

        Unlike ``launch()``, this always creates a new session even if the
        project already has one.

        Returns:
            The new session, or None if there is no current project.

        Raises:
            InvalidLaunchError: If ``session_id`` is empty.
        """
        if not session_id:
            raise InvalidLaunchError(
                "Teleport requires a session id", mode=LaunchMode.TELEPORT.value
            )

        project = self._active_project
        if project is None:
            logger.warning("Cannot teleport to %s without a current project", session_id)
            return None

        session = self._create_session(project, LaunchMode.TELEPORT, session_id)
        with self._mutation():
            self._sessions.append(session)
            self._selected_index = len(self._sessions) - 1
            self._queue(
                StateEvent.SESSION_TELEPORTED,
                SessionTeleported(session, self._selected_index),
                session=session,
                index=self._selected_index,
            )

        logger.info("Teleported to %s for %s", session_id, project.name)
        return session

    def handle_surface_exited(
        self, surface_id: str, process_alive: bool = False
    ) -> Session | None:
        """Close the session whose surface closed because its process exited.

        Surfaces that close while their process is still alive are left to
        the user.

        Returns:
            The closed session, if any.
        """
        if process_alive:
            return None
        for index, session in enumerate(self._sessions):
            if session.surface_id == surface_id:
                return self.close(index)
        return None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _index_for_project(self, project_id: str) -> int | None:
        for index, session in enumerate(self._sessions):
            if session.project_id == project_id:
                return index
        return None

    def _create_session(
        self, project: Project, mode: LaunchMode, external_session_id: str | None
    ) -> Session:
        """Create a session, tolerating a surface that cannot be created."""
        surface_config = SurfaceConfig(
            working_directory=project.path,
            initial_input=build_initial_input(
                mode, self.config.assistant_command, external_session_id
            ),
            environment=dict(self.config.surface_environment),
            name=project.name,
        )

        surface_id: str | None = None
        try:
            surface_id = self.surfaces.create_surface(surface_config)
        except Exception as e:
            logger.error("Failed to create terminal surface for %s: %s", project.name, e)
            record_error(e)

        if surface_id is None:
            logger.warning("Session for %s has no terminal surface", project.name)

        return Session(
            project=project,
            surface_id=surface_id,
            launch_mode=mode,
            external_session_id=external_session_id,
        )

    def _release_surface(self, session: Session) -> None:
        if session.surface_id is None:
            return
        try:
            self.surfaces.close_surface(session.surface_id)
        except Exception as e:
            logger.warning("Failed to close surface %s: %s", session.surface_id, e)
            record_error(e)

    def _mark_opened(self, project: Project) -> None:
        if self.catalog is None:
            return
        try:
            self.catalog.mark_opened(project)
        except Exception as e:
            logger.warning("Failed to mark %s as opened: %s", project.name, e)
            record_error(e)

    def _queue(self, event: StateEvent, message: StateMessage, **kwargs: Any) -> None:
        self._pending.append((event, message, kwargs))

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Apply a mutation, then emit explicit and derived change events."""
        before_mode = self._mode
        before_active = self._active_project
        before_visible = self.visible_project
        before_selected = self.selected_session
        before_index = self._selected_index
        self._pending = []

        yield

        pending = self._pending
        self._pending = []

        selected = self.selected_session
        if selected is not None and (
            selected is not before_selected or self._selected_index != before_index
        ):
            pending.append((
                StateEvent.SESSION_SELECTED,
                SessionSelected(selected, self._selected_index),
                {"session": selected, "index": self._selected_index},
            ))

        if not _same_project(before_active, self._active_project):
            pending.append((
                StateEvent.ACTIVE_PROJECT_CHANGED,
                ActiveProjectChanged(self._active_project),
                {"project": self._active_project},
            ))

        if self._mode != before_mode:
            pending.append((
                StateEvent.MODE_CHANGED,
                ModeChanged(self._mode),
                {"mode": self._mode},
            ))

        visible = self.visible_project
        if not _same_project(before_visible, visible):
            pending.append((
                StateEvent.VISIBLE_PROJECT_CHANGED,
                VisibleProjectChanged(visible),
                {"project": visible},
            ))

        for event, message, kwargs in pending:
            self.events.emit(event, message, **kwargs)


def _same_project(a: Project | None, b: Project | None) -> bool:
    if a is None or b is None:
        return a is b
    return a.id == b.id
