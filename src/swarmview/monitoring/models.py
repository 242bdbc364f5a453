"""Data models for session state reconstruction.

This module defines the records the monitor derives from orchestrator and
agent logs: the orchestrator, its agents, timeline markers, and the
intermediate results of tailing and agent-log parsing.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..timeutils import parse_timestamp

DEFAULT_MAX_MARKERS = 1000


class AgentStatus(str, Enum):
    """Lifecycle status of a delegated agent.

    Attributes:
        ACTIVE: Spawned and not yet reported complete.
        DONE: Completion reported (orchestrator log, or agent log as fallback).
        STALE: Not complete, but no activity within the stale window.
    """

    ACTIVE = "active"
    DONE = "done"
    STALE = "stale"


class MarkerType(str, Enum):
    """Kinds of timeline markers."""

    AGENT_SPAWN = "agent_spawn"
    AGENT_COMPLETE = "agent_complete"
    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    ERROR = "error"


@dataclass(frozen=True)
class Marker:
    """Immutable timestamped fact on the activity timeline.

    Attributes:
        timestamp: ISO 8601 timestamp copied from the originating record.
        type: Marker kind.
        agent_id: Agent handle (spawn/complete) or durable id (agent file ops).
        agent_type: Agent type label for spawn/complete markers.
        file: Full file path for file operation markers.
        filename: Basename of ``file``.
        content: Error payload for error markers.
    """

    timestamp: str | None
    type: MarkerType
    agent_id: str | None = None
    agent_type: str | None = None
    file: str | None = None
    filename: str | None = None
    content: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"timestamp": self.timestamp, "type": self.type.value}
        if self.agent_id is not None:
            data["agentId"] = self.agent_id
        if self.agent_type is not None:
            data["agentType"] = self.agent_type
        if self.file is not None:
            data["file"] = self.file
            data["filename"] = self.filename
        if self.content is not None:
            data["content"] = self.content
        return data


class MarkerBuffer:
    """Append-ordered marker buffer with a fixed cap.

    Once full, each append evicts exactly the oldest marker.
    """

    def __init__(self, max_markers: int = DEFAULT_MAX_MARKERS, markers: Iterable[Marker] = ()):
        if max_markers <= 0:
            raise ValueError("max_markers must be positive")
        self._markers: deque[Marker] = deque(markers, maxlen=max_markers)

    @property
    def max_markers(self) -> int:
        return self._markers.maxlen or 0

    def append(self, marker: Marker) -> None:
        self._markers.append(marker)

    def extend(self, markers: Iterable[Marker]) -> None:
        self._markers.extend(markers)

    def to_list(self) -> list[Marker]:
        return list(self._markers)

    def __len__(self) -> int:
        return len(self._markers)

    def __iter__(self) -> Iterator[Marker]:
        return iter(self._markers)


@dataclass
class Goal:
    """One entry of the orchestrator's goal list."""

    content: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "status": self.status}


@dataclass
class AgentAction:
    """A tool invocation observed in an agent's own log.

    Attributes:
        name: Tool name.
        file_path: ``file_path`` or ``path`` input, if any.
        input: Raw tool input.
        timestamp: Record timestamp.
    """

    name: str
    file_path: str | None
    input: dict[str, Any]
    timestamp: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "filePath": self.file_path,
            "input": self.input,
            "timestamp": self.timestamp,
        }


@dataclass
class AgentMessage:
    """A text block observed in an agent's own log."""

    text: str
    timestamp: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "timestamp": self.timestamp}


@dataclass
class Agent:
    """One delegated task.

    The ephemeral handle (``id``) is the tool-call id the orchestrator used to
    spawn the agent. The durable identity (``real_agent_id``) is reported
    later and names the agent's own log file.

    Attributes:
        id: Ephemeral handle.
        name: Agent type label.
        current_task: Task description.
        status: Lifecycle status.
        actions: Tool invocations from the agent's own log.
        messages: Text excerpts from the agent's own log.
        start_time: Spawn timestamp.
        end_time: Completion timestamp, set only on completion.
        first_activity_time: Earliest timestamp in the agent's own log.
        last_activity_time: Latest timestamp in the agent's own log.
        real_agent_id: Durable identity, once reported.
        result: Truncated result summary.
        collapsed: True when detail was dropped by freshness classification.
        orchestrator_completed: True once the orchestrator log reported completion.
    """

    id: str
    name: str
    current_task: str
    status: AgentStatus = AgentStatus.ACTIVE
    actions: list[AgentAction] = field(default_factory=list)
    messages: list[AgentMessage] = field(default_factory=list)
    start_time: str | None = None
    end_time: str | None = None
    first_activity_time: str | None = None
    last_activity_time: str | None = None
    real_agent_id: str | None = None
    result: str | None = None
    collapsed: bool = False
    orchestrator_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "currentTask": self.current_task,
            "actions": [a.to_dict() for a in self.actions],
            "messages": [m.to_dict() for m in self.messages],
            "startTime": self.start_time,
            "endTime": self.end_time,
            "firstActivityTime": self.first_activity_time,
            "lastActivityTime": self.last_activity_time,
            "realAgentId": self.real_agent_id,
            "result": self.result,
        }
        if self.collapsed:
            data["isStale"] = True
        return data


@dataclass
class Orchestrator:
    """The coordinating process of a session.

    Attributes:
        id: Durable session identifier.
        name: Display name.
        status: Always "active"; the orchestrator is the log producer.
        current_task: Latest orchestrator-authored text, truncated.
        mission: First substantive user message, truncated.
        goals: Latest goal list, replaced wholesale on each update.
        thinking: Latest reasoning excerpt, truncated.
        active_agents: Derived count of active agents.
        tasks_completed: Derived count of completed agents.
    """

    id: str
    name: str = "Orchestrator"
    status: str = "active"
    current_task: str = "Coordinating agents..."
    mission: str | None = None
    goals: list[Goal] = field(default_factory=list)
    thinking: str | None = None
    active_agents: int = 0
    tasks_completed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "currentTask": self.current_task,
            "mission": self.mission,
            "goals": [g.to_dict() for g in self.goals],
            "thinking": self.thinking,
            "activeAgents": self.active_agents,
            "tasksCompleted": self.tasks_completed,
        }


@dataclass
class AgentLogData:
    """Parsed content of one agent log file.

    Attributes:
        agent_id: Durable identity found in the log, if any.
        actions: Tool invocations (empty for reduced parses).
        messages: Text blocks (empty for reduced parses).
        is_completed: True iff the last stop reason was the natural end.
        last_stop_reason: Last stop reason seen.
        is_partial_parse: True when produced by the reduced head/tail parse.
        session_id: Session id stamped on the log's records, if any.
    """

    agent_id: str | None = None
    session_id: str | None = None
    actions: list[AgentAction] = field(default_factory=list)
    messages: list[AgentMessage] = field(default_factory=list)
    is_completed: bool = False
    last_stop_reason: str | None = None
    is_partial_parse: bool = False

    def _activity_bounds(self) -> tuple[str | None, str | None]:
        stamped = []
        for record in [*self.actions, *self.messages]:
            parsed = parse_timestamp(record.timestamp)
            if parsed is not None:
                stamped.append((parsed, record.timestamp))
        if not stamped:
            return None, None
        stamped.sort(key=lambda item: item[0])
        return stamped[0][1], stamped[-1][1]

    @property
    def first_activity_time(self) -> str | None:
        return self._activity_bounds()[0]

    @property
    def last_activity_time(self) -> str | None:
        return self._activity_bounds()[1]


@dataclass
class TailResult:
    """Outcome of an incremental read of an append-only file.

    Attributes:
        lines: Whole, non-blank lines appended since the previous offset.
        new_offset: Offset to resume from on the next read.
        needs_full_reparse: True if the file shrank or vanished.
    """

    lines: list[str]
    new_offset: int
    needs_full_reparse: bool = False


@dataclass
class SessionSnapshot:
    """State of one watched session as delivered to subscribers."""

    session_path: Path
    orchestrator: Orchestrator | None
    agents: list[Agent]
    markers: list[Marker]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": str(self.session_path),
            "type": "update",
            "orchestrator": self.orchestrator.to_dict() if self.orchestrator else None,
            "agents": [a.to_dict() for a in self.agents],
            "markers": [m.to_dict() for m in self.markers],
            "events": [],
        }
