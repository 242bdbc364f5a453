"""Discovery of session logs under the projects directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .monitoring.agent_log import AGENT_LOG_PREFIX
from .timeutils import UTC

logger = logging.getLogger(__name__)

SESSION_SUFFIX = ".jsonl"


@dataclass
class SessionInfo:
    """One session log found on disk."""

    path: str
    name: str
    project_name: str
    project_path: str
    relative_path: str
    size: int
    last_update: datetime
    session_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.path,
            "path": self.path,
            "name": self.name,
            "projectName": self.project_name,
            "projectPath": self.project_path,
            "relativePath": self.relative_path,
            "size": self.size,
            "lastUpdate": self.last_update.isoformat(),
            "sessionCount": self.session_count,
        }


def decode_project_path(encoded_dir: str) -> str:
    """Decode a project directory name back into the path it stands for.

    ``Users-alice-Projects-foo`` becomes ``/Users/alice/Projects/foo``. The
    encoding is lossy: dashes in the original path also become separators.
    """
    return "/" + encoded_dir.replace("-", "/")


def extract_project_info(encoded_dir: str, user: str | None = None) -> tuple[str, str, str]:
    """Return (project name, full path, path relative to home) for a project dir."""
    full_path = decode_project_path(encoded_dir)
    parts = [p for p in full_path.split("/") if p]
    project_name = parts[-1] if parts else "Unknown"

    user = user if user is not None else os.environ.get("USER")
    home_index = next(
        (i for i, part in enumerate(parts) if part == user or part == "Users"),
        -1,
    )
    relative_path = full_path
    if home_index >= 0 and home_index + 1 < len(parts):
        relative_path = "~/" + "/".join(parts[home_index + 2 :])
    return project_name, full_path, relative_path


def _is_session_log(path: Path) -> bool:
    return path.suffix == SESSION_SUFFIX and not path.name.startswith(AGENT_LOG_PREFIX)


def list_sessions(projects_dir: str | Path, user: str | None = None) -> list[SessionInfo]:
    """Find every session log below ``projects_dir``.

    Agent logs are excluded. Each session is attributed to the project
    directory that contains it; unreadable directories are skipped.
    """
    root = Path(projects_dir).expanduser()
    if not root.is_dir():
        return []

    sessions: list[SessionInfo] = []

    def scan(directory: Path, encoded_name: str | None) -> None:
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return

        for entry in entries:
            try:
                if entry.is_dir():
                    scan(entry, entry.name)
                elif _is_session_log(entry):
                    stat = entry.stat()
                    project_name, project_path, relative_path = extract_project_info(
                        encoded_name or directory.name, user
                    )
                    sessions.append(
                        SessionInfo(
                            path=str(entry),
                            name=entry.name,
                            project_name=project_name,
                            project_path=project_path,
                            relative_path=relative_path,
                            size=stat.st_size,
                            last_update=datetime.fromtimestamp(stat.st_mtime, UTC),
                        )
                    )
            except OSError as e:
                logger.debug(f"Skipping {entry}: {e}")

    scan(root, None)
    return sessions


def deduplicate_sessions(sessions: list[SessionInfo]) -> list[SessionInfo]:
    """Keep the most recent session per project, newest projects first.

    Each kept session's ``session_count`` is the number of sessions its
    project had.
    """
    by_project: dict[str, list[SessionInfo]] = {}
    for session in sessions:
        by_project.setdefault(session.relative_path, []).append(session)

    deduplicated = []
    for project_sessions in by_project.values():
        project_sessions.sort(key=lambda s: s.last_update, reverse=True)
        most_recent = project_sessions[0]
        deduplicated.append(
            SessionInfo(
                path=most_recent.path,
                name=most_recent.name,
                project_name=most_recent.project_name,
                project_path=most_recent.project_path,
                relative_path=most_recent.relative_path,
                size=most_recent.size,
                last_update=most_recent.last_update,
                session_count=len(project_sessions),
            )
        )

    deduplicated.sort(key=lambda s: s.last_update, reverse=True)
    return deduplicated
