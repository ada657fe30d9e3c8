from __future__ import annotations

import asyncio
from pathlib import Path

from fakes import FakeTmuxServer, FakeWindow, fail, no_sleep, ok, vw_list_payload

from panepilot.actions import PaneDispatcher
from panepilot.errors import ErrorCode
from panepilot.launch import LaunchOrchestrator, LaunchRequest, PaneInterrupter, build_launch_command
from panepilot.launch.interrupt import PANE_TARGET_FORMAT
from panepilot.launch.orchestrator import pick_window_name
from panepilot.process import SIGKILL, SIGTERM, FakeProcessTree
from panepilot.profiles import BUILTIN_PROFILES, ProfileLoader
from panepilot.worktree import FakeVwRunner, WorktreeResolver


def make_orchestrator(
    server: FakeTmuxServer,
    *,
    vw: FakeVwRunner | None = None,
    tree: FakeProcessTree | None = None,
) -> LaunchOrchestrator:
    dispatcher = PaneDispatcher(server.runner(), sleep=no_sleep)
    return LaunchOrchestrator(
        dispatcher,
        WorktreeResolver(vw or FakeVwRunner()),
        ProfileLoader([]),
        interrupter=PaneInterrupter(dispatcher, tree or FakeProcessTree(), sleep=no_sleep),
        sleep=no_sleep,
    )


def request(**overrides) -> LaunchRequest:
    fields = {"session_name": "dev-main", "agent": "codex", "request_id": "req-1"}
    fields.update(overrides)
    return LaunchRequest(**fields)


def invocations(orchestrator: LaunchOrchestrator) -> list[tuple[str, ...]]:
    return orchestrator._dispatcher.runner.invocations


def test_launch_creates_window_and_verifies_agent() -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request()))

    assert response.ok
    assert response.rollback.attempted is False
    result = response.result
    assert (result.window_id, result.window_name, result.pane_id) == ("@1", "codex-work", "%1")
    assert result.launched_command == "codex"
    assert result.verification.status == "verified"
    assert result.verification.attempts == 1
    assert server.typed["%1"] == ["codex"]


def test_launch_picks_unique_window_name() -> None:
    server = FakeTmuxServer()
    server.add_window("dev-main", "review")
    server.add_window("dev-main", "review-2")
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(window_name="review")))

    assert response.result.window_name == "review-3"


def test_pick_window_name() -> None:
    assert pick_window_name(set(), "codex-work") == "codex-work"
    assert pick_window_name({"codex-work"}, "codex-work") == "codex-work-2"


def test_failed_launch_command_rolls_back_created_window() -> None:
    server = FakeTmuxServer()
    server.overrides["send-keys"] = lambda args: fail("pane is dead") if "-l" in args else None
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request()))

    assert not response.ok
    assert response.error.code is ErrorCode.INTERNAL
    assert response.error.message == "pane is dead"
    assert response.rollback.attempted is True
    assert response.rollback.ok is True
    assert ("kill-window", "-t", "@1") in invocations(orchestrator)
    assert server.windows == {}


def test_rollback_failure_is_reported_separately() -> None:
    server = FakeTmuxServer()
    server.overrides["send-keys"] = lambda args: fail("pane is dead") if "-l" in args else None
    server.overrides["kill-window"] = lambda args: fail("permission denied")
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request()))

    assert response.error.message == "pane is dead"
    assert response.to_dict()["rollback"] == {
        "attempted": True,
        "ok": False,
        "message": "permission denied",
    }


def test_unexpected_error_after_window_creation_still_rolls_back() -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    async def explode(pane_id: str, binary: str):
        raise RuntimeError("verification crashed")

    orchestrator.verify = explode

    response = asyncio.run(orchestrator.launch(request()))

    assert response.error.code is ErrorCode.INTERNAL
    assert response.error.message == "verification crashed"
    assert response.rollback.attempted is True
    assert response.rollback.ok is True
    assert server.windows == {}


def test_failure_before_window_creation_needs_no_rollback() -> None:
    server = FakeTmuxServer()
    server.overrides["new-window"] = lambda args: fail("create window failed: index in use")
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request()))

    assert response.error.code is ErrorCode.INTERNAL
    assert response.rollback.attempted is False
    assert "kill-window" not in [call[0] for call in invocations(orchestrator)]


def test_missing_session_is_not_found() -> None:
    server = FakeTmuxServer(sessions={})
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request()))

    assert response.error.code is ErrorCode.NOT_FOUND
    assert response.error.message == "session not found: dev-main"
    assert [call[0] for call in invocations(orchestrator)] == ["has-session"]


def test_launch_without_tmux_is_unavailable() -> None:
    dispatcher = PaneDispatcher(None)
    orchestrator = LaunchOrchestrator(dispatcher, WorktreeResolver(None), ProfileLoader([]), sleep=no_sleep)

    response = asyncio.run(orchestrator.launch(request()))

    assert response.error.code is ErrorCode.TMUX_UNAVAILABLE


def test_verification_reports_mismatch_and_timeout() -> None:
    mismatch_server = FakeTmuxServer(started_command="bash")
    timeout_server = FakeTmuxServer(started_command=None)

    mismatch = asyncio.run(make_orchestrator(mismatch_server).launch(request()))
    timeout = asyncio.run(make_orchestrator(timeout_server).launch(request()))

    assert mismatch.ok
    assert mismatch.result.verification.status == "mismatch"
    assert mismatch.result.verification.observed_command == "bash"
    assert mismatch.result.verification.attempts == 5
    assert timeout.ok
    assert timeout.result.verification.status == "timeout"
    assert timeout.result.verification.observed_command is None


def test_verification_reads_the_target_pane_of_a_split_window() -> None:
    server = FakeTmuxServer()
    window = server.add_window("dev-main", "agents")
    server.foreground[window.pane_id] = "sleep"
    pane_id = server.split(window, foreground="cat")
    orchestrator = make_orchestrator(server)

    other = asyncio.run(orchestrator.verify(pane_id, "sleep"))
    own = asyncio.run(orchestrator.verify(pane_id, "cat"))

    assert (other.status, other.observed_command, other.attempts) == ("mismatch", "cat", 5)
    assert (own.status, own.attempts) == ("verified", 1)
    assert invocations(orchestrator)[0] == ("display-message", "-p", "-t", pane_id, "#{pane_current_command}")


def test_invalid_request_makes_no_tmux_calls() -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(cwd="/tmp", worktree_branch="main")))

    assert response.error.code is ErrorCode.INVALID_PAYLOAD
    assert invocations(orchestrator) == []


def test_agent_options_are_quoted_into_command() -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(agent_options=["--model", "o3 mini", " "])))

    assert response.result.launched_command == "codex --model 'o3 mini'"
    assert response.result.resolved_options == ["--model", "o3 mini"]


def test_agent_option_with_control_characters_is_rejected() -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(agent_options=["--model\nrm"])))

    assert response.error.message == "agent options include an invalid value"


def test_cwd_is_passed_to_new_window(tmp_path: Path) -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(cwd=str(tmp_path))))

    assert response.ok
    new_window = next(call for call in invocations(orchestrator) if call[0] == "new-window")
    assert new_window[-2:] == ("-c", str(tmp_path))


def test_missing_cwd_is_rejected_before_window_creation(tmp_path: Path) -> None:
    server = FakeTmuxServer()
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(cwd=str(tmp_path / "missing"))))

    assert response.error.message == "cwd does not exist"
    assert server.windows == {}


def test_conflicting_worktree_selectors_create_no_window() -> None:
    server = FakeTmuxServer(sessions={"dev-main": "/repo"})
    vw = FakeVwRunner(
        handler=lambda args, cwd: ok(
            vw_list_payload({"path": "/repo", "branch": "main"}, {"path": "/repo/wt-feat", "branch": "feat"})
        )
    )
    orchestrator = make_orchestrator(server, vw=vw)

    response = asyncio.run(orchestrator.launch(request(worktree_path="/repo", worktree_branch="feat")))

    assert response.error.code is ErrorCode.INVALID_PAYLOAD
    assert "resolved to different worktrees" in response.error.message
    assert "new-window" not in [call[0] for call in invocations(orchestrator)]
    assert vw.invocations == [(("list", "--json"), "/repo")]


def test_worktree_branch_selects_launch_directory(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    feature = tmp_path / "repo-feat"
    repo.mkdir()
    feature.mkdir()
    server = FakeTmuxServer(sessions={"dev-main": str(repo)})
    vw = FakeVwRunner(
        handler=lambda args, cwd: ok(
            vw_list_payload(
                {"path": str(repo), "branch": "main"},
                {"path": str(feature), "branch": "feat"},
                repo_root=str(repo),
            )
        )
    )
    orchestrator = make_orchestrator(server, vw=vw)

    response = asyncio.run(orchestrator.launch(request(worktree_branch="feat")))

    assert response.ok
    new_window = next(call for call in invocations(orchestrator) if call[0] == "new-window")
    assert new_window[-2:] == ("-c", str(feature))


def test_resume_in_new_window_uses_profile_resume_args() -> None:
    server = FakeTmuxServer(sessions={"dev-main": "/tmp"}, started_command="claude")
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(agent="claude", resume_session_id="abc-123")))

    assert response.ok
    assert response.result.launched_command == "claude --resume abc-123"
    new_window = next(call for call in invocations(orchestrator) if call[0] == "new-window")
    assert new_window[-2:] == ("-c", "/tmp")


def test_build_launch_command_quotes_cwd() -> None:
    command = build_launch_command(
        BUILTIN_PROFILES["codex"], ["--full-auto"], resume_session_id="s-1", cwd="/work/my repo"
    )

    assert command == "cd '/work/my repo' && codex --full-auto resume s-1"


def _relaunch_server(tree: FakeProcessTree, *, agent_pid: int = 5000) -> FakeTmuxServer:
    server = FakeTmuxServer()
    server.windows["@3"] = FakeWindow(window_id="@3", index=2, name="agents", session="dev-main", pane_id="%7")
    server._next_id = 4

    def display(args):
        if args[-1] == PANE_TARGET_FORMAT:
            return ok("%7\t@3\t2\tagents\t4242\t/work\n")
        if args[-1] == "#{pane_current_command}" and tree.alive(agent_pid):
            return ok("codex\n")
        return None

    server.overrides["display-message"] = display
    return server


def test_relaunch_interrupts_agent_and_resumes_in_same_pane() -> None:
    tree = FakeProcessTree(exit_on={SIGTERM: {5000}})
    tree.add(5000, 4242, "codex")
    server = _relaunch_server(tree)
    orchestrator = make_orchestrator(server, tree=tree)

    response = asyncio.run(
        orchestrator.launch(request(resume_from_pane_id="%7", resume_session_id="sess-1"))
    )

    assert response.ok
    assert (response.result.window_id, response.result.pane_id) == ("@3", "%7")
    assert response.result.launched_command == "cd /work && codex resume sess-1"
    assert response.result.verification.status == "verified"
    assert tree.signals == [(5000, SIGTERM)]
    assert "new-window" not in [call[0] for call in invocations(orchestrator)]


def test_relaunch_escalates_to_sigkill() -> None:
    tree = FakeProcessTree(exit_on={SIGKILL: {5000}})
    tree.add(5000, 4242, "codex")
    orchestrator = make_orchestrator(_relaunch_server(tree), tree=tree)

    response = asyncio.run(orchestrator.launch(request(resume_from_pane_id="%7")))

    assert response.ok
    assert tree.signals == [(5000, SIGTERM), (5000, SIGKILL)]


def test_relaunch_fails_when_agent_will_not_exit() -> None:
    tree = FakeProcessTree()
    tree.add(5000, 4242, "codex")
    server = _relaunch_server(tree)
    orchestrator = make_orchestrator(server, tree=tree)

    response = asyncio.run(orchestrator.launch(request(resume_from_pane_id="%7")))

    assert response.error.code is ErrorCode.INTERNAL
    assert response.error.message == "pane is still busy"
    assert response.rollback.attempted is False
    assert "%7" not in server.typed
    assert "@3" in server.windows


def test_relaunch_signals_only_processes_named_after_the_agent() -> None:
    tree = FakeProcessTree(exit_on={SIGTERM: {5000}})
    tree.add(5000, 4242, "node")
    orchestrator = make_orchestrator(_relaunch_server(tree), tree=tree)

    response = asyncio.run(orchestrator.launch(request(resume_from_pane_id="%7")))

    assert response.error.message == "pane is still busy"
    assert tree.signals == []


def test_relaunch_into_missing_pane_is_invalid_pane() -> None:
    server = FakeTmuxServer()
    server.overrides["display-message"] = lambda args: fail("can't find pane: %7")
    orchestrator = make_orchestrator(server)

    response = asyncio.run(orchestrator.launch(request(resume_from_pane_id="%7")))

    assert response.error.code is ErrorCode.INVALID_PANE
    assert response.error.message == "pane not found: %7"
