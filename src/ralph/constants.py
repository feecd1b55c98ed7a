"""Ralph constants: tool presets, state layout, and defaults."""

from __future__ import annotations

import re
from pathlib import Path

PACKAGE_SCAFFOLD_DIR = Path(__file__).resolve().parent / "scaffold"

SUPPORTED_TOOLS = ("amp", "claude")
DEFAULT_TOOL = "amp"
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_SLEEP_SECONDS = 2.0
DEFAULT_STATE_DIR = "ralph"

COMPLETION_MARKER = "<promise>COMPLETE</promise>"

TOOL_COMMAND_PRESETS: dict[str, tuple[str, ...]] = {
    "amp": ("amp", "--dangerously-allow-all"),
    "claude": ("claude", "--dangerously-skip-permissions", "--print"),
}
DOCKER_SANDBOX_COMMAND = ("docker", "sandbox", "run")
DOCKER_SANDBOX_TOOL_ARGS = ("--", "--print")
SANDBOX_CAPABLE_TOOLS = frozenset({"claude"})

TOOL_PROMPT_FILES: dict[str, str] = {
    "amp": "prompt.md",
    "claude": "CLAUDE.md",
}

PRD_FILENAME = "prd.json"
PROGRESS_FILENAME = "progress.txt"
LAST_BRANCH_FILENAME = ".last-branch"
ARCHIVE_DIRNAME = "archive"
CONFIG_FILENAME = "config.yaml"
LOG_RELATIVE_PATH = Path("logs") / "ralph.log"
ITERATION_REPORT_RELATIVE_PATH = Path("logs") / "last_iteration.json"

ARCHIVE_BRANCH_PREFIX = "ralph/"
PROGRESS_HEADER_TITLE = "# Ralph Progress Log"
PROGRESS_HEADER_RULE = "---"

LONG_OPTION_PATTERN = re.compile(r"^--[a-z]\S*$")
BARE_INTEGER_PATTERN = re.compile(r"^[0-9]+$")

BANNER_RULE = "=" * 63
