"""Tests for the session coordinator."""

import functools
import random

import pytest

from terminaut.coordinator import SessionCoordinator, build_initial_input
from terminaut.events import EventDispatcher, StateEvent
from terminaut.exceptions import InvalidLaunchError, error_stats
from terminaut.models import AppConfig, CoordinatorMode, LaunchMode, Project
from terminaut.testing import MockProjectCatalog, MockSurfaceFactory


def make_project(n: int) -> Project:
    return Project(id=f"p{n}", name=f"proj{n}", path=f"/work/proj{n}")


class EventRecorder:
    """Records every state event emitted by a dispatcher."""

    def __init__(self, events: EventDispatcher) -> None:
        self.received: list[tuple[StateEvent, dict]] = []
        for event in StateEvent:
            events.subscribe(event, functools.partial(self._record, event))

    def _record(self, event: StateEvent, **kwargs) -> None:
        self.received.append((event, kwargs))

    @property
    def names(self) -> list[StateEvent]:
        return [event for event, _ in self.received]

    def last(self, event: StateEvent) -> dict:
        return [kwargs for e, kwargs in self.received if e == event][-1]

    def clear(self) -> None:
        self.received.clear()


def assert_invariants(coordinator: SessionCoordinator) -> None:
    sessions = coordinator.sessions
    if sessions:
        assert 0 <= coordinator.selected_index < len(sessions)
    order = coordinator.activation_order
    assert len(order) == len(set(order))
    assert set(order) == {
        s.project_id for s in sessions if s.launch_mode != LaunchMode.TELEPORT
    }
    for project_id in order:
        launched = [
            s
            for s in sessions
            if s.project_id == project_id and s.launch_mode != LaunchMode.TELEPORT
        ]
        assert len(launched) <= 1
    if coordinator.mode == CoordinatorMode.LAUNCHER:
        assert coordinator.visible_project is None


@pytest.fixture
def surfaces():
    return MockSurfaceFactory()


@pytest.fixture
def catalog():
    return MockProjectCatalog()


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def coordinator(surfaces, catalog, events):
    return SessionCoordinator(surfaces, catalog=catalog, events=events)


@pytest.fixture
def recorder(events):
    return EventRecorder(events)


def launch_three(coordinator: SessionCoordinator) -> list[Project]:
    projects = [make_project(n) for n in range(3)]
    for project in projects:
        coordinator.launch(project)
    return projects


class TestBuildInitialInput:
    """Test the command typed into new surfaces."""

    def test_continue(self):
        assert build_initial_input(LaunchMode.CONTINUE) == "exec claude -c\n"

    def test_fresh(self):
        assert build_initial_input(LaunchMode.FRESH) == "exec claude\n"

    def test_resume(self):
        assert (
            build_initial_input(LaunchMode.RESUME, external_session_id="abc-123")
            == "exec claude --resume abc-123\n"
        )

    def test_teleport(self):
        assert (
            build_initial_input(LaunchMode.TELEPORT, external_session_id="session_01")
            == "exec claude --teleport session_01\n"
        )

    def test_id_is_quoted(self):
        command = build_initial_input(LaunchMode.RESUME, external_session_id="a; rm -rf /")
        assert command == "exec claude --resume 'a; rm -rf /'\n"

    def test_custom_command(self):
        assert build_initial_input(LaunchMode.CONTINUE, "claude-dev") == "exec claude-dev -c\n"

    def test_missing_id(self):
        with pytest.raises(InvalidLaunchError):
            build_initial_input(LaunchMode.RESUME)
        with pytest.raises(InvalidLaunchError):
            build_initial_input(LaunchMode.TELEPORT, external_session_id="")


class TestInitialState:
    """Test a freshly constructed coordinator."""

    def test_starts_in_launcher(self, coordinator):
        assert coordinator.mode == CoordinatorMode.LAUNCHER
        assert coordinator.is_launcher
        assert coordinator.sessions == ()
        assert coordinator.selected_index == 0
        assert coordinator.selected_session is None
        assert coordinator.active_project is None
        assert coordinator.visible_project is None
        assert coordinator.activation_order == ()

    def test_defaults(self, surfaces):
        coordinator = SessionCoordinator(surfaces)
        assert coordinator.catalog is None
        assert isinstance(coordinator.events, EventDispatcher)
        assert coordinator.config == AppConfig()


class TestLaunch:
    """Test launching sessions."""

    def test_launch_creates_session(self, coordinator, surfaces, catalog):
        project = make_project(1)

        session = coordinator.launch(project)

        assert coordinator.sessions == (session,)
        assert coordinator.selected_index == 0
        assert coordinator.selected_session is session
        assert coordinator.active_project is project
        assert coordinator.visible_project is project
        assert coordinator.mode == CoordinatorMode.SESSION
        assert coordinator.activation_order == ("p1",)
        assert session.launch_mode == LaunchMode.CONTINUE
        assert session.has_surface
        assert catalog.opened == ["p1"]
        assert project.last_opened is not None
        assert_invariants(coordinator)

    def test_surface_config(self, coordinator, surfaces):
        session = coordinator.launch(make_project(1))

        config = surfaces.get_config(session.surface_id)
        assert config.working_directory == "/work/proj1"
        assert config.initial_input == "exec claude -c\n"
        assert config.environment == {"TERM_PROGRAM": "Apple_Terminal"}
        assert config.name == "proj1"

    def test_launch_fresh(self, coordinator, surfaces):
        session = coordinator.launch(make_project(1), LaunchMode.FRESH)
        assert surfaces.get_config(session.surface_id).initial_input == "exec claude\n"
        assert session.launch_mode == LaunchMode.FRESH

    def test_launch_resume(self, coordinator, surfaces):
        session = coordinator.launch(make_project(1), LaunchMode.RESUME, resume_id="conv-9")

        assert session.external_session_id == "conv-9"
        assert (
            surfaces.get_config(session.surface_id).initial_input
            == "exec claude --resume conv-9\n"
        )

    def test_resume_without_id_rejected(self, coordinator, surfaces, catalog):
        with pytest.raises(InvalidLaunchError):
            coordinator.launch(make_project(1), LaunchMode.RESUME)

        assert coordinator.sessions == ()
        assert surfaces.created == []
        assert catalog.opened == []

    def test_launch_teleport_mode_rejected(self, coordinator):
        with pytest.raises(InvalidLaunchError):
            coordinator.launch(make_project(1), LaunchMode.TELEPORT)

    def test_launch_twice_reuses_session(self, coordinator, surfaces):
        project = make_project(1)
        first = coordinator.launch(project)
        coordinator.launch(make_project(2))

        second = coordinator.launch(project, LaunchMode.FRESH)

        assert second is first
        assert len(coordinator.sessions) == 2
        assert coordinator.selected_index == 0
        assert len(surfaces.created) == 2
        assert_invariants(coordinator)

    def test_launch_existing_from_launcher(self, coordinator):
        project = make_project(1)
        coordinator.launch(project)
        coordinator.return_to_launcher()

        coordinator.launch(project)

        assert coordinator.mode == CoordinatorMode.SESSION
        assert len(coordinator.sessions) == 1

    def test_activation_order(self, coordinator):
        launch_three(coordinator)
        coordinator.launch(make_project(0))
        assert coordinator.activation_order == ("p0", "p1", "p2")

    def test_uses_configured_command(self, surfaces):
        config = AppConfig(assistant_command="claude-beta", surface_environment={"FOO": "1"})
        coordinator = SessionCoordinator(surfaces, config=config)

        session = coordinator.launch(make_project(1))

        surface_config = surfaces.get_config(session.surface_id)
        assert surface_config.initial_input == "exec claude-beta -c\n"
        assert surface_config.environment == {"FOO": "1"}

    def test_surface_returns_none(self, coordinator, surfaces):
        surfaces.set_create_failure(True)

        session = coordinator.launch(make_project(1))

        assert session.surface_id is None
        assert not session.has_surface
        assert coordinator.sessions == (session,)
        assert coordinator.mode == CoordinatorMode.SESSION

    def test_surface_raises(self, coordinator, surfaces):
        surfaces.set_create_failure(True, raise_error=True)
        error_stats.reset()

        session = coordinator.launch(make_project(1))

        assert session.surface_id is None
        assert coordinator.sessions == (session,)
        assert error_stats.by_type.get("SurfaceCreationError") == 1

    def test_catalog_failure_does_not_block(self, surfaces):
        coordinator = SessionCoordinator(
            surfaces, catalog=MockProjectCatalog(should_fail=True)
        )
        session = coordinator.launch(make_project(1))
        assert coordinator.sessions == (session,)


class TestSwitching:
    """Test selecting sessions."""

    def test_switch_to(self, coordinator):
        projects = launch_three(coordinator)
        coordinator.return_to_launcher()

        assert coordinator.switch_to(0) is True

        assert coordinator.selected_index == 0
        assert coordinator.active_project is projects[0]
        assert coordinator.mode == CoordinatorMode.SESSION

    def test_switch_to_invalid_index(self, coordinator):
        launch_three(coordinator)
        coordinator.return_to_launcher()

        assert coordinator.switch_to(3) is False
        assert coordinator.switch_to(-1) is False

        assert coordinator.selected_index == 2
        assert coordinator.mode == CoordinatorMode.LAUNCHER

    def test_next_wraps(self, coordinator):
        launch_three(coordinator)
        coordinator.next()
        assert coordinator.selected_index == 0
        coordinator.next()
        assert coordinator.selected_index == 1

    def test_previous_wraps(self, coordinator):
        launch_three(coordinator)
        coordinator.switch_to(0)
        coordinator.previous()
        assert coordinator.selected_index == 2
        coordinator.previous()
        assert coordinator.selected_index == 1

    def test_next_previous_without_sessions(self, coordinator, recorder):
        coordinator.next()
        coordinator.previous()
        assert coordinator.selected_index == 0
        assert coordinator.mode == CoordinatorMode.LAUNCHER
        assert recorder.received == []

    def test_next_enters_session_mode(self, coordinator):
        launch_three(coordinator)
        coordinator.return_to_launcher()
        coordinator.next()
        assert coordinator.mode == CoordinatorMode.SESSION


class TestClose:
    """Test closing sessions."""

    def test_close_selected_last(self, coordinator):
        projects = launch_three(coordinator)

        closed = coordinator.close(2)

        assert closed.project is projects[2]
        assert len(coordinator.sessions) == 2
        assert coordinator.selected_index == 1
        assert coordinator.active_project is projects[1]
        assert coordinator.mode == CoordinatorMode.LAUNCHER
        assert coordinator.activation_order == ("p0", "p1")
        assert_invariants(coordinator)

    def test_close_before_selected_shifts_selection(self, coordinator):
        projects = launch_three(coordinator)
        selected = coordinator.selected_session

        coordinator.close(0)

        assert coordinator.selected_index == 1
        assert coordinator.selected_session is selected
        assert coordinator.active_project is projects[2]

    def test_close_after_selected_keeps_selection(self, coordinator):
        launch_three(coordinator)
        coordinator.switch_to(0)

        coordinator.close(2)

        assert coordinator.selected_index == 0

    def test_close_selected_middle(self, coordinator):
        projects = launch_three(coordinator)
        coordinator.switch_to(1)

        coordinator.close(1)

        assert coordinator.selected_index == 1
        assert coordinator.active_project is projects[2]

    def test_close_always_returns_to_launcher(self, coordinator):
        launch_three(coordinator)
        coordinator.switch_to(0)

        coordinator.close(2)

        assert coordinator.mode == CoordinatorMode.LAUNCHER
        assert coordinator.visible_project is None

    def test_close_last_session(self, coordinator):
        coordinator.launch(make_project(1))

        coordinator.close(0)

        assert coordinator.sessions == ()
        assert coordinator.active_project is None
        assert coordinator.activation_order == ()
        assert coordinator.mode == CoordinatorMode.LAUNCHER

    def test_close_invalid_index(self, coordinator):
        launch_three(coordinator)

        assert coordinator.close(5) is None
        assert coordinator.close(-1) is None

        assert len(coordinator.sessions) == 3
        assert coordinator.mode == CoordinatorMode.LAUNCHER

    def test_close_releases_surface(self, coordinator, surfaces):
        session = coordinator.launch(make_project(1))

        coordinator.close(0)

        assert surfaces.closed == [session.surface_id]
        assert not surfaces.is_open(session.surface_id)

    def test_close_release_failure_logged(self, coordinator, surfaces):
        coordinator.launch(make_project(1))
        surfaces.set_close_failure(True)

        closed = coordinator.close(0)

        assert closed is not None
        assert coordinator.sessions == ()

    def test_close_without_surface(self, coordinator, surfaces):
        surfaces.set_create_failure(True)
        coordinator.launch(make_project(1))

        coordinator.close(0)

        assert surfaces.closed == []

    def test_close_current(self, coordinator):
        projects = launch_three(coordinator)
        coordinator.switch_to(1)

        closed = coordinator.close_current()

        assert closed.project is projects[1]

    def test_close_current_without_sessions(self, coordinator):
        assert coordinator.close_current() is None
        assert coordinator.mode == CoordinatorMode.LAUNCHER


class TestReturnToLauncher:
    """Test returning to the launcher."""

    def test_keeps_sessions(self, coordinator):
        projects = launch_three(coordinator)

        coordinator.return_to_launcher()

        assert coordinator.mode == CoordinatorMode.LAUNCHER
        assert len(coordinator.sessions) == 3
        assert coordinator.selected_index == 2
        assert coordinator.active_project is projects[2]
        assert coordinator.visible_project is None


class TestTeleport:
    """Test teleporting into external sessions."""

    def test_teleport_adds_session(self, coordinator, surfaces):
        project = make_project(1)
        coordinator.launch(project)

        session = coordinator.teleport("session_01")

        assert len(coordinator.sessions) == 2
        assert coordinator.selected_index == 1
        assert session.project is project
        assert session.launch_mode == LaunchMode.TELEPORT
        assert session.external_session_id == "session_01"
        assert (
            surfaces.get_config(session.surface_id).initial_input
            == "exec claude --teleport session_01\n"
        )
        assert coordinator.activation_order == ("p1",)
        assert_invariants(coordinator)

    def test_teleport_keeps_mode(self, coordinator):
        coordinator.launch(make_project(1))
        coordinator.return_to_launcher()

        coordinator.teleport("session_01")

        assert coordinator.mode == CoordinatorMode.LAUNCHER
        assert coordinator.selected_index == 1

    def test_teleport_without_project(self, coordinator, surfaces):
        assert coordinator.teleport("session_01") is None
        assert surfaces.created == []

    def test_teleport_empty_id(self, coordinator):
        coordinator.launch(make_project(1))
        with pytest.raises(InvalidLaunchError):
            coordinator.teleport("")

    def test_launch_after_teleport_switches(self, coordinator):
        project = make_project(1)
        first = coordinator.launch(project)
        coordinator.teleport("session_01")

        assert coordinator.launch(project) is first
        assert coordinator.selected_index == 0
        assert len(coordinator.sessions) == 2

    def test_closing_launched_session_leaves_activation_order(self, coordinator):
        coordinator.launch(make_project(1))
        coordinator.teleport("session_01")

        coordinator.close(0)
        assert coordinator.activation_order == ()
        assert [s.launch_mode for s in coordinator.sessions] == [LaunchMode.TELEPORT]
        assert_invariants(coordinator)

        coordinator.close(0)
        assert coordinator.activation_order == ()

    def test_closing_teleport_keeps_launched_project(self, coordinator):
        coordinator.launch(make_project(1))
        coordinator.teleport("session_01")

        coordinator.close(1)
        assert coordinator.activation_order == ("p1",)
        assert_invariants(coordinator)


class TestSurfaceExit:
    """Test reacting to surfaces that close on their own."""

    def test_process_exit_closes_session(self, coordinator):
        launch_three(coordinator)
        surface_id = coordinator.sessions[1].surface_id

        closed = coordinator.handle_surface_exited(surface_id, process_alive=False)

        assert closed.surface_id == surface_id
        assert len(coordinator.sessions) == 2
        assert coordinator.mode == CoordinatorMode.LAUNCHER

    def test_live_process_ignored(self, coordinator):
        launch_three(coordinator)
        surface_id = coordinator.sessions[1].surface_id

        assert coordinator.handle_surface_exited(surface_id, process_alive=True) is None
        assert len(coordinator.sessions) == 3

    def test_unknown_surface(self, coordinator):
        launch_three(coordinator)
        assert coordinator.handle_surface_exited("nope") is None
        assert len(coordinator.sessions) == 3

    def test_session_for_surface(self, coordinator):
        launch_three(coordinator)
        session = coordinator.sessions[2]

        assert coordinator.session_for_surface(session.surface_id) is session
        assert coordinator.session_for_surface("nope") is None


class TestEvents:
    """Test notifications emitted after mutations."""

    def test_first_launch(self, coordinator, recorder):
        project = make_project(1)
        session = coordinator.launch(project)

        assert recorder.names == [
            StateEvent.SESSION_LAUNCHED,
            StateEvent.SESSION_SELECTED,
            StateEvent.ACTIVE_PROJECT_CHANGED,
            StateEvent.MODE_CHANGED,
            StateEvent.VISIBLE_PROJECT_CHANGED,
        ]
        assert recorder.last(StateEvent.SESSION_LAUNCHED) == {"session": session, "index": 0}
        assert recorder.last(StateEvent.MODE_CHANGED) == {"mode": CoordinatorMode.SESSION}
        assert recorder.last(StateEvent.VISIBLE_PROJECT_CHANGED) == {"project": project}

    def test_relaunch_selected_project_is_silent(self, coordinator, recorder):
        project = make_project(1)
        coordinator.launch(project)
        recorder.clear()

        coordinator.launch(project)

        assert recorder.received == []

    def test_close_events(self, coordinator, recorder):
        projects = launch_three(coordinator)
        recorder.clear()

        coordinator.close(2)

        assert recorder.names == [
            StateEvent.SESSION_CLOSED,
            StateEvent.SESSION_SELECTED,
            StateEvent.ACTIVE_PROJECT_CHANGED,
            StateEvent.MODE_CHANGED,
            StateEvent.VISIBLE_PROJECT_CHANGED,
        ]
        assert recorder.last(StateEvent.ACTIVE_PROJECT_CHANGED) == {"project": projects[1]}
        assert recorder.last(StateEvent.VISIBLE_PROJECT_CHANGED) == {"project": None}

    def test_return_to_launcher_twice(self, coordinator, recorder):
        coordinator.launch(make_project(1))
        recorder.clear()

        coordinator.return_to_launcher()
        coordinator.return_to_launcher()

        assert recorder.names == [
            StateEvent.MODE_CHANGED,
            StateEvent.VISIBLE_PROJECT_CHANGED,
        ]

    def test_teleport_event(self, coordinator, recorder):
        coordinator.launch(make_project(1))
        recorder.clear()

        session = coordinator.teleport("session_01")

        assert recorder.names[0] == StateEvent.SESSION_TELEPORTED
        assert StateEvent.SESSION_SELECTED in recorder.names
        # Same project, still visible
        assert StateEvent.VISIBLE_PROJECT_CHANGED not in recorder.names
        assert recorder.last(StateEvent.SESSION_TELEPORTED) == {"session": session, "index": 1}

    def test_subscribers_see_completed_mutation(self, coordinator, events):
        launch_three(coordinator)
        seen = []

        def on_closed(session, index):
            seen.append((
                coordinator.mode,
                coordinator.selected_index,
                len(coordinator.sessions),
                session in coordinator.sessions,
            ))

        events.subscribe(StateEvent.SESSION_CLOSED, on_closed)
        coordinator.close(2)

        assert seen == [(CoordinatorMode.LAUNCHER, 1, 2, False)]

    def test_failing_subscriber_does_not_break_mutation(self, coordinator, events):
        def broken(**kwargs):
            raise RuntimeError("boom")

        events.subscribe(StateEvent.SESSION_LAUNCHED, broken)
        session = coordinator.launch(make_project(1))

        assert coordinator.sessions == (session,)
        assert coordinator.mode == CoordinatorMode.SESSION


class TestInvariantsUnderRandomOperations:
    """Apply long random operation sequences and check invariants after each."""

    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_random_sequences(self, seed):
        rng = random.Random(seed)
        surfaces = MockSurfaceFactory()
        coordinator = SessionCoordinator(surfaces)
        projects = [make_project(n) for n in range(5)]

        for _ in range(400):
            op = rng.choice([
                "launch", "switch", "next", "previous", "close",
                "close_current", "launcher", "teleport", "exit",
            ])
            if op == "launch":
                project = rng.choice(projects)
                mode = rng.choice([LaunchMode.CONTINUE, LaunchMode.FRESH, LaunchMode.RESUME])
                resume_id = "conv" if mode == LaunchMode.RESUME else None
                session = coordinator.launch(project, mode, resume_id)
                assert coordinator.selected_session is session
                assert session.project_id == project.id
                assert coordinator.mode == CoordinatorMode.SESSION
            elif op == "switch":
                coordinator.switch_to(rng.randint(-1, 6))
            elif op == "next":
                coordinator.next()
            elif op == "previous":
                coordinator.previous()
            elif op == "close":
                coordinator.close(rng.randint(-1, 6))
                assert coordinator.mode == CoordinatorMode.LAUNCHER
            elif op == "close_current":
                coordinator.close_current()
                assert coordinator.mode == CoordinatorMode.LAUNCHER
            elif op == "launcher":
                coordinator.return_to_launcher()
            elif op == "teleport":
                coordinator.teleport(f"session_{rng.randint(0, 99)}")
            elif op == "exit" and coordinator.sessions:
                target = rng.choice(coordinator.sessions)
                coordinator.handle_surface_exited(target.surface_id, rng.random() < 0.5)

            assert_invariants(coordinator)
