"""Full and incremental re-derivation of session state.

SessionMonitor owns a SessionCacheStore and turns "these files changed"
into an updated snapshot. The first parse of a session (and any parse after
the orchestrator log was truncated) reads everything; later passes read
only appended bytes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from ..config import WatchConfig
from .agent_log import AgentLogReader, agent_id_from_path
from .events import iter_events
from .log_reader import read_new_lines
from .models import AgentStatus, SessionSnapshot
from .session_cache import SessionCache, SessionCacheStore
from .state_builder import SessionStateBuilder

logger = logging.getLogger(__name__)


def normalize_path(file_path: str | Path) -> Path:
    return Path(file_path).expanduser().resolve()


class SessionMonitor:
    """Re-derives session snapshots from orchestrator and agent logs.

    Sessions are independent: each has its own SessionCache in the store and
    nothing is shared between them. Callers must not run two passes for the
    same session concurrently (see ChangeCoalescer).

    Attributes:
        config: Thresholds and budgets.
        store: Session caches keyed by orchestrator log path.
        builder: Event folding and snapshot rendering.
        agent_reader: Agent log parsing.
    """

    def __init__(
        self,
        config: WatchConfig | None = None,
        store: SessionCacheStore | None = None,
        builder: SessionStateBuilder | None = None,
        agent_reader: AgentLogReader | None = None,
    ):
        self.config = config or WatchConfig()
        self.store = store or SessionCacheStore(max_markers=self.config.max_markers)
        self.builder = builder or SessionStateBuilder(self.config)
        self.agent_reader = agent_reader or AgentLogReader(
            active_window_seconds=self.config.agent_active_window_seconds,
            head_lines=self.config.reduced_head_lines,
            tail_lines=self.config.reduced_tail_lines,
        )

    def full_parse(self, session_path: str | Path, now: datetime | None = None) -> SessionSnapshot:
        """Rebuild a session from scratch.

        Any existing cache is discarded. Every agent log present is parsed
        (reduced mode for inactive files) and attached to its agent.
        """
        path = normalize_path(session_path)
        self.store.discard(path)
        cache = self.store.create(path)

        result = read_new_lines(path, 0)
        self.builder.fold(iter_events(result.lines), cache)
        cache.last_byte_offset = result.new_offset

        agent_logs = cache.identities.discover()
        for log_path in agent_logs:
            self._load_agent_log(cache, log_path, now, smart=True)

        logger.info(
            "Parsed session",
            extra={
                "session_path": str(path),
                "agents": len(cache.agents),
                "agent_logs": len(agent_logs),
                "markers": len(cache.markers),
            },
        )
        return self._snapshot(cache, now)

    def apply_changes(
        self,
        session_path: str | Path,
        changed_paths: Iterable[str | Path],
        now: datetime | None = None,
    ) -> SessionSnapshot | None:
        """Fold a batch of file changes into a session.

        Args:
            session_path: Orchestrator log of the session.
            changed_paths: Files reported changed since the previous pass.
            now: Reference time for recency decisions.

        Returns:
            Updated snapshot, or None if nothing changed.
        """
        path = normalize_path(session_path)
        cache = self.store.get(path)
        if cache is None:
            logger.info(f"No cache for {path}, doing full parse")
            return self.full_parse(path, now)

        changed = {normalize_path(p) for p in changed_paths}
        has_updates = False

        if path in changed:
            result = read_new_lines(path, cache.last_byte_offset)
            if result.needs_full_reparse:
                logger.warning(f"Session log {path} was truncated, rebuilding from scratch")
                return self.full_parse(path, now)

            cache.last_byte_offset = result.new_offset
            if result.lines:
                logger.debug(f"Processing {len(result.lines)} new lines from {path.name}")
                newly_bound = self.builder.fold(iter_events(result.lines), cache)
                for identity in newly_bound:
                    self._attach_bound_identity(cache, identity, now)
                has_updates = True

        for changed_path in sorted(changed):
            if changed_path == path or not cache.identities.owns(changed_path):
                continue
            identity = cache.identities.identity_from_path(changed_path)
            if identity is None:
                continue
            agent = cache.agent_for_identity(identity)
            if agent is None and identity in cache.foreign_agent_ids:
                continue
            if cache.identities.mark_known(identity):
                logger.info(f"Discovered new agent log: {identity}")

            if not self.builder.classifier.should_process_agent_change(agent, now):
                logger.debug(f"Skipping update for long-completed agent {identity}")
                continue
            if self._load_agent_log(cache, changed_path, now, smart=False):
                has_updates = True

        if not has_updates:
            return None
        return self._snapshot(cache, now)

    def snapshot(self, session_path: str | Path, now: datetime | None = None) -> SessionSnapshot | None:
        """Current snapshot of a cached session, or None if it isn't cached."""
        cache = self.store.get(normalize_path(session_path))
        return self._snapshot(cache, now) if cache is not None else None

    def discard(self, session_path: str | Path) -> bool:
        return self.store.discard(normalize_path(session_path))

    def _attach_bound_identity(self, cache: SessionCache, identity: str, now: datetime | None) -> None:
        agent = cache.agent_for_identity(identity)
        if agent is None:
            return
        pending = cache.agent_logs.get(identity)
        if pending is not None:
            self.builder.attach_agent_log(cache, agent, pending)
            return
        log_path = cache.identities.locate(identity)
        if log_path is None:
            logger.debug(f"No log file yet for agent {identity}")
            return
        self._load_agent_log(cache, log_path, now, smart=True)

    def _load_agent_log(
        self,
        cache: SessionCache,
        log_path: Path,
        now: datetime | None,
        smart: bool,
    ) -> bool:
        identity = agent_id_from_path(log_path)
        if identity is None:
            return False
        agent = cache.agent_for_identity(identity)
        if agent is None:
            if self._is_foreign(cache, identity, log_path):
                return False
        else:
            cache.foreign_agent_ids.discard(identity)
        cache.identities.mark_known(identity)

        try:
            reduced = smart and not self.agent_reader.is_active(log_path, now)
        except FileNotFoundError:
            return False

        if reduced:
            data = self.agent_reader.parse_reduced(log_path)
            offset = None
        else:
            data, offset = self.agent_reader.update(
                log_path,
                cache.agent_logs.get(identity),
                cache.agent_offsets.get(identity, 0),
            )
        if data is None:
            return False

        cache.agent_logs[identity] = data
        if offset is None:
            cache.agent_offsets.pop(identity, None)
        else:
            cache.agent_offsets[identity] = offset

        if agent is not None:
            self.builder.attach_agent_log(cache, agent, data)
        else:
            logger.debug(f"Agent log {identity} not yet linked to a delegated task")
        return True

    def _is_foreign(self, cache: SessionCache, identity: str, log_path: Path) -> bool:
        """Whether an unbound agent log belongs to another session in the same directory."""
        if identity in cache.foreign_agent_ids:
            return True
        own = cache.session_id
        if own is None:
            return False
        pending = cache.agent_logs.get(identity)
        if pending is not None and pending.session_id:
            other = pending.session_id
        else:
            try:
                other = self.agent_reader.read_session_id(log_path)
            except OSError as e:
                logger.error(f"Failed to read agent log {log_path}: {e}")
                return False
        if other is None or other == own:
            return False

        cache.foreign_agent_ids.add(identity)
        cache.agent_logs.pop(identity, None)
        cache.agent_offsets.pop(identity, None)
        logger.debug(f"Ignoring agent log {identity} from session {other}")
        return True

    def _snapshot(self, cache: SessionCache, now: datetime | None) -> SessionSnapshot:
        snapshot = self.builder.build_snapshot(cache, now)

        # Completed agents never reopen, so collapsed detail can be released
        for projected in snapshot.agents:
            if not (projected.collapsed and projected.status == AgentStatus.DONE):
                continue
            live = cache.agents.get(projected.id)
            if live is None or not (live.actions or live.messages):
                continue
            live.actions = []
            live.messages = []
            if live.real_agent_id:
                cache.agent_logs.pop(live.real_agent_id, None)
                cache.agent_offsets.pop(live.real_agent_id, None)

        return snapshot
