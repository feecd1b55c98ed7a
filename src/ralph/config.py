from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Sequence

import yaml

from ralph.constants import (
    BARE_INTEGER_PATTERN,
    CONFIG_FILENAME,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SLEEP_SECONDS,
    DEFAULT_STATE_DIR,
    DEFAULT_TOOL,
    LONG_OPTION_PATTERN,
    SUPPORTED_TOOLS,
)
from ralph.models import (
    ConfigError,
    RunConfig,
    _coerce_bool,
    _coerce_float,
    _coerce_non_negative_int,
)

_VALUE_OPTIONS = ("--tool", "--state-dir", "--prompt-file", "--config")


def _normalize_argv(argv: Sequence[str]) -> tuple[list[str], int | None, str | None]:
    """Fold option values into ``--opt=value`` form and pull out the iteration cap
    and the docker sandbox flags.

    ``--docker-sandbox`` only consumes the following token when it is neither a
    single long option nor a bare integer, so ``--docker-sandbox 7`` still sets the
    iteration cap. The last bare integer wins. A bare ``--`` is dropped and
    scanning continues.
    """
    tokens = [str(token) for token in argv]
    normalized: list[str] = []
    max_iterations: int | None = None
    docker_flags: str | None = None
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token in _VALUE_OPTIONS:
            value = tokens[index + 1] if index + 1 < len(tokens) else ""
            normalized.append(f"{token}={value}")
            index += 2
            continue
        if token == "--docker-sandbox":
            docker_flags = ""
            if index + 1 < len(tokens):
                candidate = tokens[index + 1]
                if not LONG_OPTION_PATTERN.match(candidate) and not BARE_INTEGER_PATTERN.match(candidate):
                    docker_flags = candidate
                    index += 2
                    continue
            index += 1
            continue
        if token.startswith("--docker-sandbox="):
            docker_flags = token.split("=", 1)[1]
        elif token == "--":
            pass
        elif BARE_INTEGER_PATTERN.match(token):
            max_iterations = int(token)
        else:
            normalized.append(token)
        index += 1
    return normalized, max_iterations, docker_flags


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph",
        description="Long-running AI agent loop",
        usage="ralph [--tool amp|claude] [--docker-sandbox [FLAGS]] [max_iterations]",
        allow_abbrev=False,
    )
    parser.add_argument(
        "--tool",
        default=None,
        help="Agent tool to drive: amp or claude (default: amp)",
    )
    parser.add_argument(
        "--docker-sandbox",
        dest="docker_flags",
        nargs="?",
        const="",
        default=None,
        help="Run claude through 'docker sandbox run', optionally with extra docker flags",
    )
    parser.add_argument(
        "--state-dir",
        default=None,
        help=f"Progress state directory (default: ./{DEFAULT_STATE_DIR})",
    )
    parser.add_argument(
        "--prompt-file",
        default=None,
        help="Prompt document fed to the tool on stdin (default: per-tool prompt)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Policy YAML (default: <state-dir>/{CONFIG_FILENAME})",
    )
    return parser


def _parse_cli(argv: Sequence[str]) -> tuple[argparse.Namespace, int | None]:
    tokens, max_iterations, docker_flags = _normalize_argv(argv)
    # Unrecognised tokens are ignored.
    args, _unknown = _build_parser().parse_known_args(tokens)
    args.docker_flags = docker_flags
    return args, max_iterations


def _load_policy(policy_path: Path, *, required: bool = False) -> dict[str, Any]:
    if not policy_path.exists():
        if required:
            raise ConfigError(f"config file not found: {policy_path}")
        return {}
    try:
        loaded = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file could not be parsed at {policy_path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"config file must contain a mapping: {policy_path}")
    return loaded


def _validate_tool(tool: str) -> str:
    if tool not in SUPPORTED_TOOLS:
        raise ConfigError(f"Invalid tool '{tool}'. Must be 'amp' or 'claude'.")
    return tool


def _resolve_path(base: Path, raw: Any) -> Path:
    candidate = Path(str(raw)).expanduser()
    if candidate.is_absolute():
        return candidate
    return base / candidate


def load_run_config(argv: Sequence[str], *, cwd: Path) -> RunConfig:
    args, cli_max_iterations = _parse_cli(argv)

    state_dir = _resolve_path(cwd, args.state_dir or DEFAULT_STATE_DIR)
    if args.config:
        policy = _load_policy(_resolve_path(cwd, args.config), required=True)
    else:
        policy = _load_policy(state_dir / CONFIG_FILENAME)

    raw_tool = args.tool if args.tool is not None else policy.get("tool", DEFAULT_TOOL)
    tool = _validate_tool(str(raw_tool))

    if cli_max_iterations is not None:
        max_iterations = cli_max_iterations
    else:
        max_iterations = _coerce_non_negative_int(
            policy.get("max_iterations", DEFAULT_MAX_ITERATIONS),
            default=DEFAULT_MAX_ITERATIONS,
        )

    if args.docker_flags is not None:
        docker_sandbox = True
        docker_flags = args.docker_flags
    else:
        docker_sandbox = _coerce_bool(policy.get("docker_sandbox"), default=False)
        docker_flags = str(policy.get("docker_flags") or "")

    sleep_seconds = _coerce_float(
        policy.get("sleep_seconds", DEFAULT_SLEEP_SECONDS),
        default=DEFAULT_SLEEP_SECONDS,
    )
    if sleep_seconds < 0:
        sleep_seconds = DEFAULT_SLEEP_SECONDS

    raw_prompt = args.prompt_file or policy.get("prompt_file")
    prompt_file = _resolve_path(cwd, raw_prompt) if raw_prompt else None

    return RunConfig(
        tool=tool,
        max_iterations=max_iterations,
        docker_sandbox=docker_sandbox,
        docker_flags=docker_flags,
        state_dir=state_dir,
        prompt_file=prompt_file,
        sleep_seconds=sleep_seconds,
    )
