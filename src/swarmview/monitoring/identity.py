"""Mapping between ephemeral agent handles, durable identities and log files."""

from __future__ import annotations

import logging
from pathlib import Path

from .agent_log import (
    AGENT_LOG_PREFIX,
    AGENT_LOG_SUFFIX,
    SUBAGENTS_DIR,
    agent_id_from_path,
    agent_log_filename,
)

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Resolves agent identities for one session.

    An agent is first known by the ephemeral handle the orchestrator assigned
    when delegating; the runtime later reports its durable identity, which
    names the agent's own log file. Bindings are permanent for the life of
    the resolver: a handle binds at most once, and an identity belongs to at
    most one handle.

    Agent logs live either beside the orchestrator log or in a
    ``<session>/subagents/`` directory next to it.

    Attributes:
        session_path: Orchestrator log path.
        known_ids: Durable identities seen so far (bound or not).
    """

    def __init__(self, session_path: str | Path):
        self.session_path = Path(session_path)
        self.known_ids: set[str] = set()
        self._by_handle: dict[str, str] = {}
        self._by_identity: dict[str, str] = {}

    @property
    def session_dir(self) -> Path:
        return self.session_path.parent

    @property
    def subagents_dir(self) -> Path:
        return self.session_dir / self.session_path.stem / SUBAGENTS_DIR

    def bind(self, handle: str, identity: str) -> bool:
        """Bind a handle to a durable identity.

        Returns:
            True if the binding is new. False if the handle is already bound
            (to any identity) or the identity belongs to another handle.
        """
        existing = self._by_handle.get(handle)
        if existing is not None:
            if existing != identity:
                logger.warning(
                    "Ignoring rebinding of agent handle",
                    extra={"handle": handle, "bound_to": existing, "reported": identity},
                )
            return False

        owner = self._by_identity.get(identity)
        if owner is not None:
            logger.warning(
                "Durable identity already bound to another handle",
                extra={"identity": identity, "owner": owner, "handle": handle},
            )
            return False

        self._by_handle[handle] = identity
        self._by_identity[identity] = handle
        self.known_ids.add(identity)
        logger.debug(f"Mapped agent handle {handle} to {identity}")
        return True

    def mark_known(self, identity: str) -> bool:
        """Record an identity (e.g. from a newly discovered log). True if new."""
        if identity in self.known_ids:
            return False
        self.known_ids.add(identity)
        return True

    def identity_for(self, handle: str) -> str | None:
        return self._by_handle.get(handle)

    def handle_for(self, identity: str) -> str | None:
        return self._by_identity.get(identity)

    @staticmethod
    def identity_from_path(file_path: str | Path) -> str | None:
        """Durable identity named by an agent log path, or None."""
        return agent_id_from_path(file_path)

    def candidate_paths(self, identity: str) -> list[Path]:
        name = agent_log_filename(identity)
        return [self.session_dir / name, self.subagents_dir / name]

    def locate(self, identity: str) -> Path | None:
        """Path of the identity's log file, or None if it doesn't exist yet."""
        for candidate in self.candidate_paths(identity):
            if candidate.is_file():
                return candidate
        return None

    def owns(self, file_path: str | Path) -> bool:
        """Whether a path is an agent log belonging to this session."""
        path = Path(file_path)
        if agent_id_from_path(path) is None:
            return False
        return path.parent in (self.session_dir, self.subagents_dir)

    def discover(self) -> list[Path]:
        """All agent log files currently present for this session, sorted by name."""
        pattern = f"{AGENT_LOG_PREFIX}*{AGENT_LOG_SUFFIX}"
        found: list[Path] = []
        for directory in (self.session_dir, self.subagents_dir):
            if directory.is_dir():
                found.extend(p for p in directory.glob(pattern) if agent_id_from_path(p))
        return sorted(found, key=lambda p: p.name)
