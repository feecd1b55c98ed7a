from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence

from ralph.config import load_run_config
from ralph.loop import run_loop
from ralph.models import ConfigError, RunConfig
from ralph.prompts import _load_prompt_text, _resolve_prompt_path
from ralph.state import ProgressState
from ralph.utils import _append_log, _redact_sensitive_text


def _warn_unsupported_sandbox(config: RunConfig) -> None:
    if config.docker_sandbox and not config.sandbox_effective:
        print(
            "Warning: Docker sandbox (--docker-sandbox) only works with Claude Code (--tool claude).",
            file=sys.stderr,
        )
        print(
            f"         The --docker-sandbox flag will be ignored for tool '{config.tool}'.",
            file=sys.stderr,
        )
        print("", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    cwd = Path.cwd()
    try:
        config = load_run_config(argv, cwd=cwd)
        prompt_path = _resolve_prompt_path(config)
        prompt_text = _load_prompt_text(prompt_path)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    _warn_unsupported_sandbox(config)

    state = ProgressState(config.state_dir)
    state.prepare()
    _append_log(
        config.state_dir,
        (
            f"ralph start tool={config.tool} max_iterations={config.max_iterations} "
            f"docker_sandbox={config.docker_sandbox} "
            f"docker_flags={_redact_sensitive_text(config.docker_flags) or '-'} "
            f"prompt={prompt_path}"
        ),
    )

    outcome = run_loop(config, state, prompt_text=prompt_text)
    _append_log(
        config.state_dir,
        (
            f"ralph finish exit_code={outcome.exit_code} completed={outcome.completed} "
            f"iterations={outcome.iterations_run}/{outcome.max_iterations}: {outcome.message}"
        ),
    )
    return outcome.exit_code
