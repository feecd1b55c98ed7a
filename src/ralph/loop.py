from __future__ import annotations

import time

from ralph.constants import BANNER_RULE
from ralph.models import LoopOutcome, RunConfig
from ralph.runners import _invoke_tool
from ralph.state import ProgressState
from ralph.utils import _append_log


def _print_start_banner(config: RunConfig) -> None:
    if config.sandbox_effective:
        print(
            f"Starting Ralph - Tool: {config.tool} - Max iterations: {config.max_iterations} - Docker: enabled"
        )
        if config.docker_flags:
            print(f"Docker flags: {config.docker_flags}")
    else:
        print(f"Starting Ralph - Tool: {config.tool} - Max iterations: {config.max_iterations}")


def _print_iteration_banner(config: RunConfig, iteration: int) -> None:
    label = f"{config.tool} - Docker" if config.sandbox_effective else config.tool
    print("")
    print(BANNER_RULE)
    print(f"  Ralph Iteration {iteration} of {config.max_iterations} ({label})")
    print(BANNER_RULE, flush=True)


def run_loop(config: RunConfig, state: ProgressState, *, prompt_text: str) -> LoopOutcome:
    """Invoke the tool up to ``max_iterations`` times, stopping on the completion marker."""
    _print_start_banner(config)
    _append_log(
        state.state_dir,
        (
            f"loop start tool={config.tool} max_iterations={config.max_iterations} "
            f"docker_sandbox={config.sandbox_effective}"
        ),
    )

    for iteration in range(1, config.max_iterations + 1):
        _print_iteration_banner(config, iteration)
        result = _invoke_tool(config, state, prompt_text=prompt_text, iteration=iteration)

        if result.completed:
            print("")
            print("Ralph completed all tasks!")
            print(f"Completed at iteration {iteration} of {config.max_iterations}")
            _append_log(state.state_dir, f"loop complete at iteration={iteration}")
            return LoopOutcome(
                exit_code=0,
                completed=True,
                iterations_run=iteration,
                max_iterations=config.max_iterations,
                message=f"completed at iteration {iteration} of {config.max_iterations}",
            )

        detail = result.error or f"exit_code={result.exit_code}"
        _append_log(state.state_dir, f"iteration={iteration} incomplete: {detail}")
        print(f"Iteration {iteration} complete. Continuing...", flush=True)
        if iteration < config.max_iterations:
            time.sleep(config.sleep_seconds)

    print("")
    print(f"Ralph reached max iterations ({config.max_iterations}) without completing all tasks.")
    print(f"Check {state.progress_path} for status.")
    _append_log(state.state_dir, f"loop exhausted max_iterations={config.max_iterations}")
    return LoopOutcome(
        exit_code=1,
        completed=False,
        iterations_run=config.max_iterations,
        max_iterations=config.max_iterations,
        message=f"reached max iterations ({config.max_iterations}) without completion",
    )
