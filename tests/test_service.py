from __future__ import annotations

import asyncio

from fakes import FakeTmuxServer, no_sleep

from panepilot.actions import PaneDispatcher
from panepilot.errors import ErrorCode
from panepilot.launch import (
    LaunchOrchestrator,
    LaunchRequest,
    LaunchService,
    PaneDetail,
    PaneSessionResolver,
    ResumePlanner,
)
from panepilot.limits import RateLimiter
from panepilot.process import FakeProcessTree
from panepilot.profiles import ProfileLoader
from panepilot.worktree import FakeVwRunner, WorktreeResolver


class StubDirectory:
    def __init__(self, detail: PaneDetail | None = None) -> None:
        self.detail = detail

    async def get_detail(self, pane_id: str) -> PaneDetail | None:
        return self.detail


def make_service(
    server: FakeTmuxServer,
    *,
    backend: str = "tmux",
    limiter: RateLimiter | None = None,
    directory: StubDirectory | None = None,
) -> LaunchService:
    dispatcher = PaneDispatcher(server.runner(), sleep=no_sleep)
    orchestrator = LaunchOrchestrator(
        dispatcher, WorktreeResolver(FakeVwRunner()), ProfileLoader([]), sleep=no_sleep
    )
    planner = ResumePlanner(directory or StubDirectory(), PaneSessionResolver(FakeProcessTree()))
    return LaunchService(orchestrator, planner, backend=backend, limiter=limiter)


def request(**overrides) -> LaunchRequest:
    fields = {"session_name": "dev-main", "agent": "codex", "request_id": "req-1"}
    fields.update(overrides)
    return LaunchRequest(**fields)


def window_creations(server: FakeTmuxServer) -> int:
    return len(server.windows)


def test_retry_with_same_request_id_returns_identical_result() -> None:
    server = FakeTmuxServer()
    service = make_service(server)

    async def scenario():
        first = await service.launch(request())
        second = await service.launch(request())
        return first, second

    first, second = asyncio.run(scenario())

    assert first.ok
    assert second is first
    assert window_creations(server) == 1


def test_concurrent_launches_create_one_window() -> None:
    server = FakeTmuxServer()
    service = make_service(server)

    async def scenario():
        return await asyncio.gather(service.launch(request()), service.launch(request()))

    first, second = asyncio.run(scenario())

    assert first is second
    assert window_creations(server) == 1


def test_same_request_id_with_different_payload_is_rejected() -> None:
    server = FakeTmuxServer()
    service = make_service(server)

    async def scenario():
        await service.launch(request())
        calls_before = len(service_runner(service).invocations)
        rejected = await service.launch(request(window_name="other"))
        return calls_before, rejected

    calls_before, rejected = asyncio.run(scenario())

    assert not rejected.ok
    assert rejected.error.code is ErrorCode.INVALID_PAYLOAD
    assert rejected.error.message == "requestId payload mismatch"
    assert len(service_runner(service).invocations) == calls_before
    assert window_creations(server) == 1


def service_runner(service: LaunchService):
    return service._orchestrator._dispatcher.runner


def test_request_ids_are_scoped_per_session() -> None:
    server = FakeTmuxServer(sessions={"dev-main": "/tmp", "ops": "/tmp"})
    service = make_service(server)

    async def scenario():
        await service.launch(request())
        await service.launch(request(session_name="ops"))

    asyncio.run(scenario())

    assert window_creations(server) == 2


def test_failed_launch_can_be_retried_with_same_request_id() -> None:
    server = FakeTmuxServer(sessions={})
    service = make_service(server)

    async def scenario():
        failed = await service.launch(request())
        server.sessions["dev-main"] = "/tmp"
        retried = await service.launch(request())
        return failed, retried

    failed, retried = asyncio.run(scenario())

    assert failed.error.code is ErrorCode.NOT_FOUND
    assert retried.ok
    assert len(service.cache) == 1


def test_blank_request_id_is_invalid() -> None:
    service = make_service(FakeTmuxServer())

    response = asyncio.run(service.launch(request(request_id="   ")))

    assert response.error.code is ErrorCode.INVALID_PAYLOAD
    assert response.error.message == "request_id is required"


def test_rate_limit_is_checked_inside_launch() -> None:
    server = FakeTmuxServer()
    service = make_service(server, limiter=RateLimiter(60.0, 1))

    async def scenario():
        first = await service.launch(request(request_id="a"))
        second = await service.launch(request(request_id="b"))
        return first, second

    first, second = asyncio.run(scenario())

    assert first.ok
    assert second.error.code is ErrorCode.RATE_LIMIT
    assert window_creations(server) == 1


def test_resume_on_non_tmux_backend_is_unavailable() -> None:
    server = FakeTmuxServer()
    service = make_service(server, backend="wezterm")

    response = asyncio.run(service.launch(request(resume_session_id="abc")))

    assert response.error.code is ErrorCode.TMUX_UNAVAILABLE
    assert response.error.message == "launch-agent requires tmux backend"
    assert response.resume.failure_reason == "unsupported"
    assert window_creations(server) == 0


def test_required_resume_failure_stops_launch() -> None:
    server = FakeTmuxServer()
    service = make_service(server, directory=StubDirectory(None))

    response = asyncio.run(
        service.launch(request(resume_from_pane_id="%9", resume_policy="required"))
    )

    assert response.error.code is ErrorCode.INVALID_PAYLOAD
    assert response.resume.failure_reason == "invalid_input"
    assert window_creations(server) == 0


def test_manual_resume_attaches_meta_and_resume_args() -> None:
    server = FakeTmuxServer()
    service = make_service(server)

    response = asyncio.run(service.launch(request(resume_session_id="sess-42")))

    payload = response.to_dict()
    assert payload["ok"] is True
    assert payload["result"]["launched_command"].endswith("codex resume sess-42")
    assert payload["resume"] == {
        "requested": True,
        "reused": True,
        "session_id": "sess-42",
        "source": "manual",
        "confidence": "high",
        "policy": "required",
    }


def test_unexpected_errors_become_internal() -> None:
    server = FakeTmuxServer()
    service = make_service(server)

    async def explode(request):
        raise RuntimeError("planner exploded")

    service._planner.plan = explode

    response = asyncio.run(service.launch(request()))

    assert response.error.code is ErrorCode.INTERNAL
    assert response.error.message == "planner exploded"
    assert len(service.cache) == 0
