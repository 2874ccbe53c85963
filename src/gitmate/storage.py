import os
from logging import Logger, getLogger
from pathlib import Path

from pydantic import ValidationError

from gitmate.models.workspace import Workspace

DEFAULT_STATE_FILE = Path.home() / ".gitmate" / "workspace.json"


def get_state_file() -> Path:
    if state_file := os.getenv("GITMATE_STATE_FILE"):
        return Path(state_file).expanduser()
    return DEFAULT_STATE_FILE


class WorkspaceStore:
    """Keeps the one workspace record on disk."""

    path: Path
    logger: Logger

    def __init__(self, path: Path | None = None, logger: Logger | None = None):
        self.path = path or get_state_file()
        self.logger = logger or getLogger(__name__)

    def load(self) -> Workspace:
        """Load the stored workspace, or an unstarted one when there is nothing usable on disk."""

        if not self.path.exists():
            return Workspace()

        try:
            return Workspace.model_validate_json(self.path.read_bytes())
        except (ValidationError, OSError):
            self.logger.exception(f"Ignoring unreadable workspace record at {self.path}")
            return Workspace()

    def save(self, workspace: Workspace) -> bool:
        """Write the workspace wholesale. Unstarted workspaces are not written."""

        if not workspace.is_started:
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        _ = self.path.write_text(workspace.model_dump_json(indent=2), encoding="utf-8")

        return True

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
