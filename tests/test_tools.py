from __future__ import annotations

import asyncio
from typing import Any

from fakes import FakeTmuxServer, no_sleep, ok, vw_list_payload

from panepilot.actions import PaneDispatcher
from panepilot.config import PanePilotSettings
from panepilot.launch import LaunchOrchestrator, LaunchService, PaneSessionResolver, ResumePlanner
from panepilot.limits import RateLimiter
from panepilot.process import FakeProcessTree
from panepilot.profiles import ProfileLoader
from panepilot.tools import register_tools
from panepilot.worktree import FakeVwRunner, WorktreeResolver


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubDirectory:
    async def get_detail(self, pane_id: str):
        return None


class RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def warning(self, message, extra=None):
        self.records.append(("warning", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = RecordingLogger()


def build(
    tmux: FakeTmuxServer | None = None,
    *,
    vw: FakeVwRunner | None = None,
    send_limiter: RateLimiter | None = None,
):
    tmux = tmux or FakeTmuxServer()
    settings = PanePilotSettings()
    dispatcher = PaneDispatcher(tmux.runner(), sleep=no_sleep)
    worktrees = WorktreeResolver(vw or FakeVwRunner())
    orchestrator = LaunchOrchestrator(dispatcher, worktrees, ProfileLoader([]), sleep=no_sleep)
    service = LaunchService(orchestrator, ResumePlanner(StubDirectory(), PaneSessionResolver(FakeProcessTree())))
    server = StubServer()
    handles = register_tools(
        server,  # type: ignore[arg-type]
        settings=settings,
        dispatcher=dispatcher,
        launch_service=service,
        worktrees=worktrees,
        send_limiter=send_limiter,
    )
    return server, handles, tmux


def test_all_tools_are_registered() -> None:
    server, _, _ = build()

    assert set(server._tools) == {
        "send_text",
        "send_keys",
        "send_raw",
        "kill_pane",
        "kill_window",
        "launch_agent",
        "worktree_snapshot",
    }


def test_send_text_tool_returns_result_dict_and_logs_to_context() -> None:
    _, handles, tmux = build()
    context = StubContext()

    result = asyncio.run(handles.send_text.fn(pane_id="%1", text="echo hi", context=context))  # type: ignore[attr-defined]

    assert result == {"ok": True}
    assert tmux.typed["%1"] == ["echo hi"]
    level, message, extra = context.logger.records[0]
    assert (level, message) == ("info", "Sent text to pane")
    assert extra["pane_id"] == "%1"


def test_send_text_tool_reports_dangerous_command() -> None:
    _, handles, _ = build()

    result = asyncio.run(handles.send_text.fn(pane_id="%1", text="sudo rm -rf /"))  # type: ignore[attr-defined]

    assert result["ok"] is False
    assert result["error"]["code"] == "DANGEROUS_COMMAND"
    assert handles.activity[-1] == {
        "tool": "send_text",
        "pane_id": "%1",
        "ok": False,
        "error_code": "DANGEROUS_COMMAND",
    }


def test_send_tools_are_rate_limited() -> None:
    _, handles, _ = build(send_limiter=RateLimiter(60.0, 1))

    async def scenario():
        first = await handles.send_keys.fn(pane_id="%1", keys=["Enter"])  # type: ignore[attr-defined]
        second = await handles.send_text.fn(pane_id="%1", text="ls")  # type: ignore[attr-defined]
        return first, second

    first, second = asyncio.run(scenario())

    assert first == {"ok": True}
    assert second["error"] == {"code": "RATE_LIMIT", "message": "rate limited"}


def test_send_raw_tool_validates_item_shape() -> None:
    _, handles, tmux = build()

    async def scenario():
        bad = await handles.send_raw.fn(pane_id="%1", items=[{"kind": "mouse", "value": "x"}])  # type: ignore[attr-defined]
        good = await handles.send_raw.fn(  # type: ignore[attr-defined]
            pane_id="%1", items=[{"kind": "text", "value": "q"}, {"kind": "key", "value": "Enter"}]
        )
        return bad, good

    bad, good = asyncio.run(scenario())

    assert bad["error"]["code"] == "INVALID_PAYLOAD"
    assert good == {"ok": True}
    assert tmux.typed["%1"] == ["q"]


def test_kill_window_tool() -> None:
    tmux = FakeTmuxServer()
    window = tmux.add_window("dev-main", "codex-work")
    _, handles, _ = build(tmux)

    result = asyncio.run(handles.kill_window.fn(pane_id=window.pane_id))  # type: ignore[attr-defined]

    assert result == {"ok": True}
    assert tmux.windows == {}


def test_launch_agent_tool_launches_and_serializes_result() -> None:
    _, handles, tmux = build()

    result = asyncio.run(  # type: ignore[attr-defined]
        handles.launch_agent.fn(session_name="dev-main", agent="codex", request_id="r-1")
    )

    assert result["ok"] is True
    assert result["rollback"] == {"attempted": False, "ok": True}
    assert result["result"]["pane_id"] == "%1"
    assert result["result"]["verification"]["status"] == "verified"
    assert "resume" not in result
    assert len(tmux.windows) == 1


def test_launch_agent_tool_rejects_unknown_agent() -> None:
    _, handles, tmux = build()

    result = asyncio.run(  # type: ignore[attr-defined]
        handles.launch_agent.fn(session_name="dev-main", agent="gemini", request_id="r-1")
    )

    assert result["ok"] is False
    assert result["error"]["code"] == "INVALID_PAYLOAD"
    assert result["error"]["message"].startswith("invalid launch request:")
    assert tmux.windows == {}


def test_worktree_snapshot_tool() -> None:
    vw = FakeVwRunner(
        handler=lambda args, cwd: ok(
            vw_list_payload({"path": "/repo", "branch": "main"}, {"path": "/repo/sub", "branch": "sub"})
        )
    )
    _, handles, _ = build(vw=vw)

    result = asyncio.run(handles.worktree_snapshot.fn(cwd="/repo/sub/src"))  # type: ignore[attr-defined]

    assert result["available"] is True
    assert result["status"]["worktree_path"] == "/repo/sub"
    assert [entry["path"] for entry in result["snapshot"]["entries"]] == ["/repo/sub", "/repo"]


def test_worktree_snapshot_tool_without_vw_data() -> None:
    _, handles, _ = build()

    result = asyncio.run(handles.worktree_snapshot.fn(cwd="/repo"))  # type: ignore[attr-defined]

    assert result == {"available": False, "snapshot": None, "status": None}
