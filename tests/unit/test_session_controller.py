"""Unit tests for SessionController using in-memory tmux and signal fakes."""

from __future__ import annotations

from pathlib import Path

import pytest

from epicswarm.core.config import SessionConfig
from epicswarm.core.result import (
    AlreadyExistsError,
    Err,
    InvalidTransitionError,
    Ok,
    SessionError,
    SessionNotFoundError,
)
from epicswarm.session.controller import STATUS_TRANSITIONS, SessionController
from epicswarm.session.types import ReadyOutcome, SessionStatus, TerminateOutcome
from tests.mocks.fake_session import FakeClock, FakeSignaler, FakeTmux

RIG = "gastown"


@pytest.fixture
def tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def signaler() -> FakeSignaler:
    return FakeSignaler()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> SessionConfig:
    return SessionConfig(
        session_prefix="es",
        agent_command="agent --serve",
        ready_marker="> ",
        ready_timeout=2.0,
        poll_interval=0.5,
        grace_period=3.0,
        nudge_text="Begin.",
    )


@pytest.fixture
def controller(
    config: SessionConfig, tmux: FakeTmux, signaler: FakeSignaler, fake_clock: FakeClock
) -> SessionController:
    return SessionController(
        config, tmux=tmux, signaler=signaler, clock=fake_clock, sleep=fake_clock.sleep
    )


class TestSpawn:
    def test_spawn_tracks_new_session(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Ok)
        session = result.value
        assert session.session_name == "es-gastown-Toast"
        assert session.status is SessionStatus.SPAWNING
        assert session.pgid == 1000
        pane = tmux.sessions["es-gastown-Toast"]
        assert pane.workdir == tmp_path
        assert pane.command == "agent --serve"

    def test_explicit_command_overrides_config(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path, command="bash")

        assert tmux.sessions["es-gastown-Toast"].command == "bash"

    def test_second_spawn_for_live_key_fails(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Err)
        assert isinstance(result.error, AlreadyExistsError)
        assert [c for c in tmux.calls if c[0] == "new_session"] == [("new_session", "es-gastown-Toast")]

    def test_untracked_tmux_session_is_not_clobbered(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        tmux.start_external("es-gastown-Toast", pid=777)

        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Err)
        assert isinstance(result.error, AlreadyExistsError)
        assert tmux.sessions["es-gastown-Toast"].pid == 777

    def test_tmux_failure_is_reported(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        tmux.fail_next("new_session")

        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Err)
        assert isinstance(result.error, SessionError)
        assert controller.list_sessions() == []

    def test_unreadable_pane_pid_kills_session(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        tmux.fail_next("pane_pid")

        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Err)
        assert "es-gastown-Toast" not in tmux.sessions
        assert controller.list_sessions() == []

    def test_respawn_after_termination(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)
        controller.terminate(RIG, "Toast")

        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Ok)
        assert result.value.status is SessionStatus.SPAWNING
        assert result.value.pgid == 1001

    def test_lost_registration_race_keeps_winner_session(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
    ) -> None:
        real_pane_pid = tmux.pane_pid

        def adopt_first(name: str):
            # Another caller adopts the freshly started session before
            # spawn gets to register it.
            monkeypatch.setattr(tmux, "pane_pid", real_pane_pid)
            controller.adopt(RIG, "Toast")
            return real_pane_pid(name)

        monkeypatch.setattr(tmux, "pane_pid", adopt_first)

        result = controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(result, Err)
        assert isinstance(result.error, AlreadyExistsError)
        assert "es-gastown-Toast" in tmux.sessions
        assert not [c for c in tmux.calls if c[0] == "kill_session"]
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.READY

    def test_dots_and_colons_in_names_match_tmux(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        session = controller.spawn("gas.town", "Toast.1", workdir=tmp_path).unwrap()

        assert session.session_name == "es-gas_town-Toast_1"
        assert "es-gas_town-Toast_1" in tmux.sessions
        tmux.screens["es-gas_town-Toast_1"] = ["> "]
        assert controller.wait_ready("gas.town", "Toast.1") == Ok(ReadyOutcome.READY)
        assert controller.terminate("gas.town", "Toast.1") == Ok(TerminateOutcome.TERMINATED)
        assert "es-gas_town-Toast_1" not in tmux.sessions

    def test_snapshots_are_detached(self, controller: SessionController, tmp_path: Path) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        session.status = SessionStatus.TERMINATED

        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.SPAWNING


class TestAdopt:
    def test_adopt_external_session(self, controller: SessionController, tmux: FakeTmux) -> None:
        tmux.start_external("es-gastown-Nux", pid=4242)

        result = controller.adopt(RIG, "Nux")

        assert isinstance(result, Ok)
        assert result.value.pgid == 4242
        assert result.value.status is SessionStatus.READY

    def test_adopt_worker_with_colon(self, controller: SessionController, tmux: FakeTmux) -> None:
        tmux.start_external("es-gastown-Nux_2", pid=4242)

        result = controller.adopt(RIG, "Nux:2")

        assert isinstance(result, Ok)
        assert result.value.session_name == "es-gastown-Nux_2"

    def test_adopt_missing_session(self, controller: SessionController) -> None:
        result = controller.adopt(RIG, "Nux")

        assert isinstance(result, Err)
        assert isinstance(result.error, SessionNotFoundError)

    def test_adopt_twice_fails(self, controller: SessionController, tmux: FakeTmux) -> None:
        tmux.start_external("es-gastown-Nux", pid=4242)
        controller.adopt(RIG, "Nux")

        result = controller.adopt(RIG, "Nux")

        assert isinstance(result, Err)
        assert isinstance(result.error, AlreadyExistsError)


class TestWaitReady:
    def test_ready_marker_appears(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        fake_clock: FakeClock,
        tmp_path: Path,
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)
        tmux.screens["es-gastown-Toast"] = ["booting", "loading tools", "Welcome\n> "]

        result = controller.wait_ready(RIG, "Toast")

        assert result == Ok(ReadyOutcome.READY)
        assert fake_clock.sleeps == [0.5, 0.5]
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.READY

    def test_times_out_without_marker(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        fake_clock: FakeClock,
        tmp_path: Path,
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)
        tmux.screens["es-gastown-Toast"] = ["still booting"]

        result = controller.wait_ready(RIG, "Toast")

        assert result == Ok(ReadyOutcome.TIMED_OUT)
        assert sum(fake_clock.sleeps) == pytest.approx(2.0)
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.SPAWNING

    def test_explicit_timeout_caps_last_sleep(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        fake_clock: FakeClock,
        tmp_path: Path,
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        result = controller.wait_ready(RIG, "Toast", timeout=0.75)

        assert result == Ok(ReadyOutcome.TIMED_OUT)
        assert fake_clock.sleeps == [0.5, 0.25]

    def test_capture_failure_counts_as_not_ready(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)
        tmux.fail_next("capture_pane")
        tmux.screens["es-gastown-Toast"] = ["> "]

        assert controller.wait_ready(RIG, "Toast") == Ok(ReadyOutcome.READY)

    def test_status_change_during_poll_is_kept(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        def errors_mid_poll(name: str, lines: int):
            controller.mark(RIG, "Toast", SessionStatus.ERROR)
            return Ok("> ")

        monkeypatch.setattr(tmux, "capture_pane", errors_mid_poll)

        assert controller.wait_ready(RIG, "Toast") == Ok(ReadyOutcome.READY)
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.ERROR

    def test_terminated_session_is_not_revived(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        def terminated_mid_poll(name: str, lines: int):
            controller.terminate(RIG, "Toast")
            return Ok("> ")

        monkeypatch.setattr(tmux, "capture_pane", terminated_mid_poll)

        controller.wait_ready(RIG, "Toast")

        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.TERMINATED

    def test_unknown_session(self, controller: SessionController) -> None:
        result = controller.wait_ready(RIG, "Ghost")

        assert isinstance(result, Err)
        assert isinstance(result.error, SessionNotFoundError)


class TestNudgeAndMark:
    def test_nudge_types_configured_text(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert isinstance(controller.nudge(RIG, "Toast"), Ok)
        assert isinstance(controller.nudge(RIG, "Toast", "Work on task-7."), Ok)

        assert tmux.sessions["es-gastown-Toast"].typed == ["Begin.", "Work on task-7."]

    def test_nudge_unknown_worker(self, controller: SessionController) -> None:
        assert isinstance(controller.nudge(RIG, "Ghost"), Err)

    def test_mark_follows_status_table(self, controller: SessionController, tmp_path: Path) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        skipped = controller.mark(RIG, "Toast", SessionStatus.WORKING)
        assert isinstance(skipped, Err)
        assert isinstance(skipped.error, InvalidTransitionError)

        assert controller.mark(RIG, "Toast", SessionStatus.READY).unwrap().status is SessionStatus.READY
        assert controller.mark(RIG, "Toast", SessionStatus.WORKING).unwrap().status is SessionStatus.WORKING
        assert controller.mark(RIG, "Toast", SessionStatus.WORKING).unwrap().status is SessionStatus.WORKING
        assert controller.mark(RIG, "Toast", SessionStatus.IDLE).unwrap().status is SessionStatus.IDLE
        assert isinstance(controller.mark(RIG, "Toast", SessionStatus.PENDING_SHUTDOWN), Ok)
        assert isinstance(controller.mark(RIG, "Toast", SessionStatus.READY), Err)

    def test_terminated_is_final(self) -> None:
        assert STATUS_TRANSITIONS[SessionStatus.TERMINATED] == frozenset()
        assert set(STATUS_TRANSITIONS) == set(SessionStatus)


class TestTerminate:
    def test_group_exits_on_sigterm(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        signaler: FakeSignaler,
        fake_clock: FakeClock,
        tmp_path: Path,
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()

        result = controller.terminate(RIG, "Toast")

        assert result == Ok(TerminateOutcome.TERMINATED)
        assert signaler.sent == [("terminate", session.pgid)]
        assert fake_clock.sleeps == []
        assert "es-gastown-Toast" not in tmux.sessions
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.TERMINATED

    def test_escalates_to_sigkill_after_grace(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        signaler: FakeSignaler,
        fake_clock: FakeClock,
        tmp_path: Path,
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        signaler.term_survivors.add(session.pgid)

        result = controller.terminate(RIG, "Toast")

        assert result == Ok(TerminateOutcome.FORCE_TERMINATED)
        assert signaler.sent == [("terminate", session.pgid), ("kill", session.pgid)]
        assert sum(fake_clock.sleeps) == pytest.approx(3.0)
        assert not signaler.is_alive(session.pgid)
        assert "es-gastown-Toast" not in tmux.sessions

    def test_explicit_grace_period(
        self,
        controller: SessionController,
        signaler: FakeSignaler,
        fake_clock: FakeClock,
        tmp_path: Path,
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        signaler.term_survivors.add(session.pgid)

        controller.terminate(RIG, "Toast", grace_period=1.0)

        assert sum(fake_clock.sleeps) == pytest.approx(1.0)

    def test_group_already_gone(
        self, controller: SessionController, signaler: FakeSignaler, tmp_path: Path
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        signaler.alive.discard(session.pgid)

        assert controller.terminate(RIG, "Toast") == Ok(TerminateOutcome.TERMINATED)
        assert signaler.sent == []

    def test_denied_sigterm_fails(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        signaler: FakeSignaler,
        tmp_path: Path,
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        signaler.denied["terminate"].add(session.pgid)

        assert controller.terminate(RIG, "Toast") == Ok(TerminateOutcome.FAILED)
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.ERROR
        assert "es-gastown-Toast" in tmux.sessions

    def test_denied_sigkill_fails(
        self, controller: SessionController, signaler: FakeSignaler, tmp_path: Path
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        signaler.term_survivors.add(session.pgid)
        signaler.denied["kill"].add(session.pgid)

        assert controller.terminate(RIG, "Toast") == Ok(TerminateOutcome.FAILED)
        assert signaler.is_alive(session.pgid)
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.ERROR

    def test_unsupported_platform_is_not_success(
        self, config: SessionConfig, tmux: FakeTmux, fake_clock: FakeClock, tmp_path: Path
    ) -> None:
        signaler = FakeSignaler(supported=False)
        controller = SessionController(
            config, tmux=tmux, signaler=signaler, clock=fake_clock, sleep=fake_clock.sleep
        )
        controller.spawn(RIG, "Toast", workdir=tmp_path)

        assert controller.terminate(RIG, "Toast") == Ok(TerminateOutcome.UNSUPPORTED)
        assert "es-gastown-Toast" in tmux.sessions
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.SPAWNING

    def test_kill_session_failure_still_terminates(
        self, controller: SessionController, tmux: FakeTmux, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)
        tmux.fail_next("kill_session")

        assert controller.terminate(RIG, "Toast") == Ok(TerminateOutcome.TERMINATED)
        assert controller.get_session(RIG, "Toast").unwrap().status is SessionStatus.TERMINATED

    def test_second_terminate_sends_nothing(
        self,
        controller: SessionController,
        tmux: FakeTmux,
        signaler: FakeSignaler,
        tmp_path: Path,
    ) -> None:
        session = controller.spawn(RIG, "Toast", workdir=tmp_path).unwrap()
        controller.terminate(RIG, "Toast")
        # The old pgid now belongs to an unrelated group.
        signaler.alive.add(session.pgid)
        tmux_calls = len(tmux.calls)

        result = controller.terminate(RIG, "Toast")

        assert result == Ok(TerminateOutcome.TERMINATED)
        assert signaler.sent == [("terminate", session.pgid)]
        assert session.pgid in signaler.alive
        assert len(tmux.calls) == tmux_calls

    def test_unknown_session(self, controller: SessionController) -> None:
        result = controller.terminate(RIG, "Ghost")

        assert isinstance(result, Err)
        assert isinstance(result.error, SessionNotFoundError)

    def test_is_alive_tracks_group(
        self, controller: SessionController, signaler: FakeSignaler, tmp_path: Path
    ) -> None:
        controller.spawn(RIG, "Toast", workdir=tmp_path)
        assert controller.is_alive(RIG, "Toast") == Ok(True)

        controller.terminate(RIG, "Toast")
        assert controller.is_alive(RIG, "Toast") == Ok(False)
