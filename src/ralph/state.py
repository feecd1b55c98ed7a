"""Progress state kept under the ``ralph/`` directory between runs.

The directory holds the externally produced task descriptor (``prd.json``), the
append-only progress log, the ``.last-branch`` marker, and dated archive
snapshots taken whenever the tracked branch changes.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from ralph.constants import (
    ARCHIVE_BRANCH_PREFIX,
    ARCHIVE_DIRNAME,
    LAST_BRANCH_FILENAME,
    PRD_FILENAME,
    PROGRESS_FILENAME,
    PROGRESS_HEADER_RULE,
    PROGRESS_HEADER_TITLE,
)
from ralph.utils import (
    _append_log,
    _load_json_if_exists,
    _local_date_stamp,
    _local_started_stamp,
)


def _archive_folder_name(branch: str) -> str:
    name = branch[len(ARCHIVE_BRANCH_PREFIX):] if branch.startswith(ARCHIVE_BRANCH_PREFIX) else branch
    return name.replace("/", "-")


def _progress_header() -> str:
    return f"{PROGRESS_HEADER_TITLE}\nStarted: {_local_started_stamp()}\n{PROGRESS_HEADER_RULE}\n"


class ProgressState:
    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    @property
    def prd_path(self) -> Path:
        return self.state_dir / PRD_FILENAME

    @property
    def progress_path(self) -> Path:
        return self.state_dir / PROGRESS_FILENAME

    @property
    def last_branch_path(self) -> Path:
        return self.state_dir / LAST_BRANCH_FILENAME

    @property
    def archive_dir(self) -> Path:
        return self.state_dir / ARCHIVE_DIRNAME

    def read_branch_name(self) -> str:
        """Return ``branchName`` from the task descriptor, or "" when untracked."""
        payload = _load_json_if_exists(self.prd_path)
        if not isinstance(payload, dict):
            return ""
        branch = payload.get("branchName")
        if branch is None or branch is False:
            return ""
        return str(branch).strip()

    def read_last_branch(self) -> str:
        if not self.last_branch_path.exists():
            return ""
        try:
            return self.last_branch_path.read_text(encoding="utf-8").strip()
        except OSError:
            return ""

    def write_last_branch(self, branch: str) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.last_branch_path.write_text(f"{branch}\n", encoding="utf-8")

    def reset_progress_log(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.progress_path.write_text(_progress_header(), encoding="utf-8")

    def ensure_progress_log(self) -> bool:
        if self.progress_path.exists():
            return False
        self.reset_progress_log()
        return True

    def archive_previous_run(self, previous_branch: str) -> Path:
        """Snapshot the descriptor and progress log, then reset the log."""
        archive_folder = self.archive_dir / f"{_local_date_stamp()}-{_archive_folder_name(previous_branch)}"
        print(f"Archiving previous run: {previous_branch}")
        archive_folder.mkdir(parents=True, exist_ok=True)
        for source in (self.prd_path, self.progress_path):
            if source.exists():
                shutil.copy2(source, archive_folder / source.name)
        print(f"   Archived to: {archive_folder}")
        _append_log(self.state_dir, f"archived branch={previous_branch} to {archive_folder}")
        self.reset_progress_log()
        return archive_folder

    def prepare(self) -> Path | None:
        """Run the startup bookkeeping; returns the archive folder if one was made."""
        archived: Path | None = None
        current_branch = self.read_branch_name()
        if self.prd_path.exists() and self.last_branch_path.exists():
            last_branch = self.read_last_branch()
            if current_branch and last_branch and current_branch != last_branch:
                archived = self.archive_previous_run(last_branch)

        if current_branch:
            self.write_last_branch(current_branch)

        if self.ensure_progress_log():
            _append_log(self.state_dir, f"progress log initialized at {self.progress_path}")
        return archived
