from __future__ import annotations

import importlib.util
import json
import os
from pathlib import Path

import pytest

from fakes import ok, vw_list_payload

from panepilot.multiplexer import FakeTmuxRunner
from panepilot.worktree import FakeVwRunner

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "panepilot_diag.py"


def load_diag():
    spec = importlib.util.spec_from_file_location("panepilot_diag", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("PANEPILOT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


def test_parser_lists_subcommands() -> None:
    diag = load_diag()
    parser = diag.build_parser()

    args = parser.parse_args(["worktrees", "/repo", "--augmented"])

    assert args.cmd == "worktrees"
    assert args.augmented is True


def test_profiles_command_prints_resolved_profiles(monkeypatch, capsys, tmp_path: Path) -> None:
    (tmp_path / "codex.yaml").write_text("agent: codex\nbinary: codex-nightly\n", encoding="utf-8")
    monkeypatch.setenv("PANEPILOT_PROFILE_PATHS", str(tmp_path))
    diag = load_diag()

    diag.main(["profiles"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["codex"]["binary"] == "codex-nightly"
    assert payload["claude"]["resume_style"] == "flag"


def test_tmux_command_reports_version(monkeypatch, capsys) -> None:
    diag = load_diag()
    fake = FakeTmuxRunner([ok("tmux 3.4\n")])
    monkeypatch.setattr(diag, "load_runner", lambda settings: fake)

    diag.main(["tmux"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["ok"] is True
    assert payload["version"] == "tmux 3.4"
    assert fake.invocations == [("-V",)]


def test_tmux_command_exits_when_tmux_missing(monkeypatch, capsys, tmp_path: Path) -> None:
    monkeypatch.setenv("PANEPILOT_TMUX_PATH", str(tmp_path / "missing-tmux"))
    diag = load_diag()

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["tmux"])

    assert excinfo.value.code == 1
    assert "tmux unavailable" in capsys.readouterr().out


def test_worktrees_command_prints_snapshot_and_status(monkeypatch, capsys) -> None:
    diag = load_diag()
    fake = FakeVwRunner(
        handler=lambda args, cwd: ok(
            vw_list_payload({"path": "/repo", "branch": "main"}, {"path": "/repo/sub", "branch": "sub"})
        )
    )
    monkeypatch.setattr(diag, "VwRunner", lambda executable: fake)

    diag.main(["worktrees", "/repo/sub/pkg"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["status"]["branch"] == "sub"
    assert fake.invocations[0][0] == ("list", "--json")


def test_worktrees_command_exits_without_snapshot(monkeypatch, capsys) -> None:
    diag = load_diag()
    monkeypatch.setattr(diag, "VwRunner", lambda executable: FakeVwRunner())

    with pytest.raises(SystemExit):
        diag.main(["worktrees", "/repo"])

    assert "vw snapshot unavailable" in capsys.readouterr().out
