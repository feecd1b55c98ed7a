from __future__ import annotations

import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any

from ralph.constants import (
    COMPLETION_MARKER,
    DOCKER_SANDBOX_COMMAND,
    DOCKER_SANDBOX_TOOL_ARGS,
    ITERATION_REPORT_RELATIVE_PATH,
    TOOL_COMMAND_PRESETS,
)
from ralph.models import IterationResult, RunConfig
from ralph.state import ProgressState
from ralph.utils import (
    _append_log,
    _compact_log_text,
    _redact_sensitive_text,
    _utc_now,
    _write_json,
)


def _build_tool_command(config: RunConfig) -> list[str]:
    if config.sandbox_effective:
        return [
            *DOCKER_SANDBOX_COMMAND,
            *shlex.split(config.docker_flags),
            *DOCKER_SANDBOX_TOOL_ARGS,
        ]
    return list(TOOL_COMMAND_PRESETS[config.tool])


def _build_tool_env(
    config: RunConfig,
    state: ProgressState,
    *,
    iteration: int,
) -> dict[str, str]:
    env = os.environ.copy()
    env["RALPH_TOOL"] = config.tool
    env["RALPH_ITERATION"] = str(iteration)
    env["RALPH_MAX_ITERATIONS"] = str(config.max_iterations)
    env["RALPH_STATE_DIR"] = str(state.state_dir)
    env["RALPH_PROGRESS_FILE"] = str(state.progress_path)
    env["RALPH_PRD_FILE"] = str(state.prd_path)
    return env


def _contains_completion_marker(output: str) -> bool:
    return COMPLETION_MARKER in output


def _pump_stream(stream: Any, sink: Any, captured_chunks: list[str]) -> None:
    """Copy ``stream`` line by line to ``sink`` while keeping every line."""
    if stream is None:
        return
    try:
        for line in iter(stream.readline, ""):
            sink.write(line)
            sink.flush()
            captured_chunks.append(line)
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _write_iteration_report(state: ProgressState, *, payload: dict[str, Any]) -> None:
    _write_json(state.state_dir / ITERATION_REPORT_RELATIVE_PATH, payload)


def _invoke_tool(
    config: RunConfig,
    state: ProgressState,
    *,
    prompt_text: str,
    iteration: int,
) -> IterationResult:
    """Run the selected tool once, teeing its merged output to stderr.

    Failures never propagate: a non-zero exit or a tool that cannot be started
    is reported as an iteration without the completion marker.
    """
    command = _build_tool_command(config)
    redacted_command = _redact_sensitive_text(shlex.join(command))
    run_report: dict[str, Any] = {
        "started_at": _utc_now(),
        "iteration": iteration,
        "max_iterations": config.max_iterations,
        "tool": config.tool,
        "docker_sandbox": config.sandbox_effective,
        "command_argv": [_redact_sensitive_text(token) for token in command],
        "status": "starting",
        "exit_code": None,
        "completed": False,
    }
    _append_log(
        state.state_dir,
        f"tool start iteration={iteration}/{config.max_iterations} tool={config.tool} command={redacted_command}",
    )
    _write_iteration_report(state, payload=run_report)

    captured_chunks: list[str] = []
    try:
        process = subprocess.Popen(
            command,
            shell=False,
            text=True,
            encoding="utf-8",
            errors="replace",
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            bufsize=1,
            env=_build_tool_env(config, state, iteration=iteration),
        )
    except (OSError, ValueError) as exc:
        message = f"could not start {command[0]}: {exc}"
        print(f"ralph: WARN {message}", file=sys.stderr)
        _append_log(state.state_dir, f"tool launch error iteration={iteration}: {exc}")
        run_report["status"] = "error"
        run_report["error"] = str(exc)
        run_report["finished_at"] = _utc_now()
        _write_iteration_report(state, payload=run_report)
        return IterationResult(exit_code=None, output="", completed=False, error=message)

    if process.stdin is not None:
        try:
            process.stdin.write(prompt_text)
            process.stdin.flush()
        except BrokenPipeError:
            pass
        finally:
            try:
                process.stdin.close()
            except BrokenPipeError:
                pass

    _pump_stream(process.stdout, sys.stderr, captured_chunks)
    returncode = process.wait()

    output = "".join(captured_chunks)
    completed = _contains_completion_marker(output)
    if output.strip():
        _append_log(
            state.state_dir,
            f"tool output iteration={iteration}: {_compact_log_text(_redact_sensitive_text(output))}",
        )
    _append_log(
        state.state_dir,
        f"tool exit iteration={iteration} returncode={returncode} completed={completed}",
    )
    run_report["status"] = "completed" if returncode == 0 else "failed"
    run_report["exit_code"] = int(returncode)
    run_report["completed"] = completed
    run_report["finished_at"] = _utc_now()
    _write_iteration_report(state, payload=run_report)
    return IterationResult(exit_code=int(returncode), output=output, completed=completed)
