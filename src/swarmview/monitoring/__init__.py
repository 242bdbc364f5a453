"""Session monitoring for multi-agent orchestration logs.

This package turns an orchestrator's append-only JSONL log, plus one log
per delegated agent, into live snapshots of the whole session: agent
records, the orchestrator's state and a bounded timeline of markers.

Key Components:
    - models: Agents, markers, snapshots and the bounded marker buffer
    - events: Decoding of JSONL records into typed events
    - log_reader: Offset-based tailing with truncation detection
    - agent_log: Full, reduced and incremental parsing of agent logs
    - state_builder: Folding events into session state
    - freshness: Fresh/stale/collapsed presentation policy
    - session_monitor: Full and incremental re-derivation per session
    - coalescer: Debounced, single-flight change batching
    - watcher: watchfiles-based watching and subscriber delivery

Example:
    >>> from swarmview.monitoring import SessionMonitor
    >>> monitor = SessionMonitor()
    >>> snapshot = monitor.full_parse("~/.claude/projects/demo/session.jsonl")
    >>> snapshot = monitor.apply_changes(snapshot.session_path, [snapshot.session_path])
"""

from __future__ import annotations

from .agent_log import AgentLogReader
from .coalescer import ChangeCoalescer
from .events import decode_line, iter_events
from .freshness import FreshnessClassifier
from .identity import IdentityResolver
from .log_reader import read_head_tail_lines, read_new_lines
from .models import (
    Agent,
    AgentLogData,
    AgentStatus,
    Marker,
    MarkerBuffer,
    MarkerType,
    Orchestrator,
    SessionSnapshot,
    TailResult,
)
from .session_cache import SessionCache, SessionCacheStore
from .session_monitor import SessionMonitor
from .state_builder import SessionStateBuilder
from .watcher import SessionSubscriber, SessionWatcher, WatchRegistry

__all__ = [
    "Agent",
    "AgentLogData",
    "AgentLogReader",
    "AgentStatus",
    "ChangeCoalescer",
    "FreshnessClassifier",
    "IdentityResolver",
    "Marker",
    "MarkerBuffer",
    "MarkerType",
    "Orchestrator",
    "SessionCache",
    "SessionCacheStore",
    "SessionMonitor",
    "SessionSnapshot",
    "SessionStateBuilder",
    "SessionSubscriber",
    "SessionWatcher",
    "TailResult",
    "WatchRegistry",
    "decode_line",
    "iter_events",
    "read_head_tail_lines",
    "read_new_lines",
]
