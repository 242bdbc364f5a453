"""Per-session checkpoint for incremental re-derivation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .identity import IdentityResolver
from .models import DEFAULT_MAX_MARKERS, Agent, AgentLogData, MarkerBuffer, Orchestrator

logger = logging.getLogger(__name__)


@dataclass
class SessionCache:
    """Mutable state for one watched session.

    Attributes:
        session_path: Orchestrator log path.
        identities: Handle/identity/log-file resolver.
        last_byte_offset: Bytes of the orchestrator log already folded in.
        orchestrator: Live orchestrator record, once a session id was seen.
        agents: Agents keyed by ephemeral handle, in spawn order.
        markers: Bounded timeline.
        mission: Extracted mission string.
        agent_offsets: Bytes of each agent log already parsed, by durable id.
            Absent for logs that only had a reduced parse.
        agent_logs: Accumulated agent log data by durable id, including logs
            whose identity hasn't been bound to a handle yet.
        marked_actions: Number of each agent's actions already turned into
            timeline markers, by durable id.
        foreign_agent_ids: Agent logs in the directory stamped with another
            session's id; never parsed or retained.
    """

    session_path: Path
    identities: IdentityResolver
    last_byte_offset: int = 0
    orchestrator: Orchestrator | None = None
    agents: dict[str, Agent] = field(default_factory=dict)
    markers: MarkerBuffer = field(default_factory=MarkerBuffer)
    mission: str | None = None
    agent_offsets: dict[str, int] = field(default_factory=dict)
    agent_logs: dict[str, AgentLogData] = field(default_factory=dict)
    marked_actions: dict[str, int] = field(default_factory=dict)
    foreign_agent_ids: set[str] = field(default_factory=set)

    @classmethod
    def create(cls, session_path: str | Path, max_markers: int = DEFAULT_MAX_MARKERS) -> SessionCache:
        path = Path(session_path)
        return cls(
            session_path=path,
            identities=IdentityResolver(path),
            markers=MarkerBuffer(max_markers),
        )

    @property
    def session_id(self) -> str | None:
        return self.orchestrator.id if self.orchestrator is not None else None

    @property
    def known_agent_ids(self) -> set[str]:
        return self.identities.known_ids

    def agent_for_identity(self, identity: str) -> Agent | None:
        handle = self.identities.handle_for(identity)
        return self.agents.get(handle) if handle is not None else None


class SessionCacheStore:
    """Explicitly owned store of session caches, keyed by orchestrator log path."""

    def __init__(self, max_markers: int = DEFAULT_MAX_MARKERS):
        self.max_markers = max_markers
        self._caches: dict[str, SessionCache] = {}

    @staticmethod
    def _key(session_path: str | Path) -> str:
        return str(Path(session_path))

    def get(self, session_path: str | Path) -> SessionCache | None:
        return self._caches.get(self._key(session_path))

    def create(self, session_path: str | Path) -> SessionCache:
        """Create a fresh cache, replacing any existing one for the session."""
        cache = SessionCache.create(session_path, self.max_markers)
        self._caches[self._key(session_path)] = cache
        return cache

    def discard(self, session_path: str | Path) -> bool:
        removed = self._caches.pop(self._key(session_path), None)
        if removed is not None:
            logger.debug(f"Discarded session cache for {session_path}")
        return removed is not None

    def __contains__(self, session_path: object) -> bool:
        if not isinstance(session_path, (str, Path)):
            return False
        return self._key(session_path) in self._caches

    def __len__(self) -> int:
        return len(self._caches)
