from __future__ import annotations

from pathlib import Path

from ralph.constants import PACKAGE_SCAFFOLD_DIR, TOOL_PROMPT_FILES
from ralph.models import ConfigError, RunConfig


def _bundled_prompt_path(tool: str) -> Path:
    return PACKAGE_SCAFFOLD_DIR / TOOL_PROMPT_FILES[tool]


def _resolve_prompt_path(config: RunConfig) -> Path:
    """Pick the prompt document for ``config.tool``.

    An explicit prompt file must exist. Otherwise a copy in the state directory
    takes precedence over the prompt bundled with the package.
    """
    if config.prompt_file is not None:
        if not config.prompt_file.is_file():
            raise ConfigError(f"prompt file not found: {config.prompt_file}")
        return config.prompt_file

    local_prompt = config.state_dir / TOOL_PROMPT_FILES[config.tool]
    if local_prompt.is_file():
        return local_prompt

    bundled = _bundled_prompt_path(config.tool)
    if not bundled.is_file():
        raise ConfigError(f"bundled prompt is unavailable in this installation: {bundled}")
    return bundled


def _load_prompt_text(prompt_path: Path) -> str:
    try:
        return prompt_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"prompt file could not be read at {prompt_path}: {exc}") from exc
