"""End-to-end tests for the ralph command with a scripted agent binary."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import ralph.loop as loop_module
import ralph.runners as runners
from ralph.commands import main


class _StaticStream:
    def __init__(self, lines: list[str]) -> None:
        self._lines = list(lines)

    def readline(self) -> str:
        if self._lines:
            return self._lines.pop(0)
        return ""

    def close(self) -> None:
        return None


class _RecordingStdin:
    def __init__(self) -> None:
        self.written: list[str] = []

    def write(self, text: str) -> int:
        self.written.append(text)
        return len(text)

    def flush(self) -> None:
        return None

    def close(self) -> None:
        return None


class _ScriptedProcess:
    def __init__(self, lines: list[str], returncode: int) -> None:
        self.stdin = _RecordingStdin()
        self.stdout = _StaticStream(lines)
        self._returncode = returncode

    def wait(self, timeout: float | None = None) -> int:
        return self._returncode


class _ScriptedAgent:
    """Emit the completion marker on ``complete_on`` (1-based), never if None."""

    def __init__(self, *, complete_on: int | None, returncode: int = 0) -> None:
        self.complete_on = complete_on
        self.returncode = returncode
        self.calls: list[list[str]] = []

    def __call__(self, command: list[str], **_kwargs: object) -> _ScriptedProcess:
        self.calls.append(list(command))
        lines = [f"iteration {len(self.calls)} progress\n"]
        if self.complete_on is not None and len(self.calls) == self.complete_on:
            lines.append("<promise>COMPLETE</promise>\n")
        return _ScriptedProcess(lines, self.returncode)


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(loop_module.time, "sleep", lambda seconds: recorded.append(seconds))
    return recorded


def _install_agent(monkeypatch: pytest.MonkeyPatch, agent: _ScriptedAgent) -> _ScriptedAgent:
    monkeypatch.setattr(runners.subprocess, "Popen", agent)
    return agent


@pytest.mark.parametrize("complete_on", [1, 3, 5])
def test_completion_marker_stops_after_exactly_k_invocations(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
    capsys: pytest.CaptureFixture[str],
    complete_on: int,
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=complete_on))

    exit_code = main(["5"])

    assert exit_code == 0
    assert len(agent.calls) == complete_on
    assert len(sleeps) == complete_on - 1
    out = capsys.readouterr().out
    assert "Ralph completed all tasks!" in out
    assert f"Completed at iteration {complete_on} of 5" in out


def test_exhaustion_runs_max_invocations_and_exits_one(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
    capsys: pytest.CaptureFixture[str],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=None))

    exit_code = main(["--tool", "claude", "4"])

    assert exit_code == 1
    assert len(agent.calls) == 4
    assert sleeps == [2.0, 2.0, 2.0]
    out = capsys.readouterr().out
    assert "Ralph reached max iterations (4) without completing all tasks." in out
    assert f"Check {workdir / 'ralph' / 'progress.txt'} for status." in out
    assert "Ralph Iteration 4 of 4 (claude)" in out


def test_failing_tool_does_not_abort_loop(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=None, returncode=2))

    assert main(["3"]) == 1
    assert len(agent.calls) == 3


def test_default_iteration_cap_is_ten(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=None))

    assert main([]) == 1
    assert len(agent.calls) == 10


@pytest.mark.parametrize("argv", [["--tool", "codex"], ["--tool=gpt", "3"]])
def test_invalid_tool_exits_one_without_side_effects(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
    argv: list[str],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=1))

    assert main(argv) == 1

    assert agent.calls == []
    assert list(workdir.iterdir()) == []
    assert "Error: Invalid tool" in capsys.readouterr().err


def test_docker_sandbox_with_amp_warns_and_runs_amp(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
    capsys: pytest.CaptureFixture[str],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=1))

    assert main(["--tool", "amp", "--docker-sandbox", "--name ralph", "2"]) == 0

    assert agent.calls == [["amp", "--dangerously-allow-all"]]
    captured = capsys.readouterr()
    assert "Docker sandbox (--docker-sandbox) only works with Claude Code" in captured.err
    assert "Docker: enabled" not in captured.out
    assert "Ralph Iteration 1 of 2 (amp)" in captured.out
    assert "amp - Docker" not in captured.out


def test_docker_sandbox_with_claude_routes_through_docker(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
    capsys: pytest.CaptureFixture[str],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=1))

    assert main(["--tool", "claude", "--docker-sandbox", "--name ralph"]) == 0

    assert agent.calls == [["docker", "sandbox", "run", "--name", "ralph", "--", "--print"]]
    out = capsys.readouterr().out
    assert "Docker: enabled" in out
    assert "Docker flags: --name ralph" in out
    assert "Ralph Iteration 1 of 10 (claude - Docker)" in out


def test_state_dir_prompt_overrides_bundled_prompt(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    recorded: list[_RecordingStdin] = []
    agent = _ScriptedAgent(complete_on=1)

    def _recording_agent(command: list[str], **kwargs: object) -> _ScriptedProcess:
        process = agent(command, **kwargs)
        recorded.append(process.stdin)
        return process

    monkeypatch.setattr(runners.subprocess, "Popen", _recording_agent)
    state_dir = workdir / "ralph"
    state_dir.mkdir()
    (state_dir / "CLAUDE.md").write_text("custom claude prompt\n", encoding="utf-8")

    assert main(["--tool", "claude"]) == 0

    assert recorded[0].written == ["custom claude prompt\n"]


def test_bundled_prompt_is_used_by_default(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    recorded: list[_RecordingStdin] = []
    agent = _ScriptedAgent(complete_on=1)

    def _recording_agent(command: list[str], **kwargs: object) -> _ScriptedProcess:
        process = agent(command, **kwargs)
        recorded.append(process.stdin)
        return process

    monkeypatch.setattr(runners.subprocess, "Popen", _recording_agent)

    assert main([]) == 0

    assert "<promise>COMPLETE</promise>" in "".join(recorded[0].written)


def test_missing_explicit_prompt_file_is_fatal(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    agent = _install_agent(monkeypatch, _ScriptedAgent(complete_on=1))

    assert main(["--prompt-file", "nope.md"]) == 1

    assert agent.calls == []
    assert "prompt file not found" in capsys.readouterr().err


def test_branch_transition_is_archived_before_loop(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    _install_agent(monkeypatch, _ScriptedAgent(complete_on=1))
    state_dir = workdir / "ralph"
    state_dir.mkdir()
    (state_dir / "prd.json").write_text(json.dumps({"branchName": "B1"}), encoding="utf-8")
    (state_dir / ".last-branch").write_text("B2\n", encoding="utf-8")
    (state_dir / "progress.txt").write_text("previous run notes\n", encoding="utf-8")

    assert main([]) == 0

    archives = list((state_dir / "archive").iterdir())
    assert len(archives) == 1
    assert archives[0].name.endswith("-B2")
    assert (archives[0] / "progress.txt").read_text(encoding="utf-8") == "previous run notes\n"
    assert (state_dir / ".last-branch").read_text(encoding="utf-8").strip() == "B1"
    assert "previous run notes" not in (state_dir / "progress.txt").read_text(encoding="utf-8")


def test_policy_sleep_seconds_is_used_between_iterations(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    _install_agent(monkeypatch, _ScriptedAgent(complete_on=3))
    state_dir = workdir / "ralph"
    state_dir.mkdir()
    (state_dir / "config.yaml").write_text("sleep_seconds: 0.25\n", encoding="utf-8")

    assert main([]) == 0
    assert sleeps == [0.25, 0.25]


def test_run_summary_is_written_to_orchestrator_log(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    _install_agent(monkeypatch, _ScriptedAgent(complete_on=None, returncode=4))

    assert main(["2"]) == 1

    log_text = (workdir / "ralph" / "logs" / "ralph.log").read_text(encoding="utf-8")
    assert "iteration=1 incomplete: exit_code=4" in log_text
    assert "iteration=2 incomplete: exit_code=4" in log_text
    assert "ralph finish exit_code=1 completed=False iterations=2/2" in log_text
    assert "reached max iterations (2) without completion" in log_text


def test_completed_run_summary_is_logged(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    _install_agent(monkeypatch, _ScriptedAgent(complete_on=2))

    assert main(["5"]) == 0

    log_text = (workdir / "ralph" / "logs" / "ralph.log").read_text(encoding="utf-8")
    assert "ralph finish exit_code=0 completed=True iterations=2/5: completed at iteration 2 of 5" in log_text


def test_launch_failure_reason_is_logged(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    sleeps: list[float],
) -> None:
    def _missing(*_args: object, **_kwargs: object) -> None:
        raise FileNotFoundError(2, "No such file or directory", "amp")

    monkeypatch.setattr(runners.subprocess, "Popen", _missing)

    assert main(["1"]) == 1

    log_text = (workdir / "ralph" / "logs" / "ralph.log").read_text(encoding="utf-8")
    assert "iteration=1 incomplete: could not start amp" in log_text
