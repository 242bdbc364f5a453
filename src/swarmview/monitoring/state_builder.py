"""Folding of orchestrator and agent log events into session state.

The builder applies decoded events to a SessionCache. The same code path
serves the first full parse and every incremental re-parse, so folding a
sequence in one go or in contiguous chunks produces the same state.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from ..config import WatchConfig
from ..timeutils import utc_now
from .events import (
    AssistantEvent,
    Event,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserEvent,
)
from .freshness import FreshnessClassifier
from .models import (
    Agent,
    AgentLogData,
    AgentStatus,
    Goal,
    Marker,
    MarkerType,
    Orchestrator,
    SessionSnapshot,
)
from .session_cache import SessionCache

logger = logging.getLogger(__name__)

DELEGATE_TOOL = "Task"
GOALS_TOOL = "TodoWrite"
FILE_TOOL_MARKERS = {
    "Read": MarkerType.READ,
    "Write": MarkerType.WRITE,
    "Edit": MarkerType.EDIT,
}
COMPLETED_STATUS = "completed"
DEFAULT_AGENT_TYPE = "general-purpose"
DEFAULT_AGENT_TASK = "Unknown task"

# User strings that are runtime chatter rather than a human prompt
_SYSTEM_TEXT_MARKER = "Caveat:"
_SYSTEM_TEXT_PREFIX = "<"


def _basename(file_path: str) -> str:
    return posixpath.basename(file_path.replace("\\", "/"))


class SessionStateBuilder:
    """Applies log events to session state and renders snapshots."""

    def __init__(
        self,
        config: WatchConfig | None = None,
        classifier: FreshnessClassifier | None = None,
    ):
        self.config = config or WatchConfig()
        self.classifier = classifier or FreshnessClassifier(
            fresh_window_seconds=self.config.fresh_window_seconds,
            stale_window_seconds=self.config.stale_window_seconds,
        )

    # ------------------------------------------------------------------
    # Orchestrator log
    # ------------------------------------------------------------------

    def fold(self, events: Iterable[Event], cache: SessionCache) -> list[str]:
        """Fold orchestrator-log events into the cache.

        Args:
            events: Decoded events, in file order.
            cache: Session state to update in place.

        Returns:
            Durable identities bound to an agent by these events, in order.
        """
        newly_bound: list[str] = []
        for event in events:
            if isinstance(event, UserEvent):
                self._ensure_orchestrator(event.session_id, cache)
                self._apply_mission(event, cache)
                newly_bound.extend(self._apply_tool_results(event, cache))
            elif isinstance(event, AssistantEvent):
                self._ensure_orchestrator(event.session_id, cache)
                self._apply_assistant(event, cache)
        return newly_bound

    def _ensure_orchestrator(self, session_id: str | None, cache: SessionCache) -> None:
        if session_id and cache.orchestrator is None:
            cache.orchestrator = Orchestrator(id=session_id, mission=cache.mission)
            logger.debug(f"Orchestrator initialized for session {session_id}")

    def _apply_mission(self, event: UserEvent, cache: SessionCache) -> None:
        if cache.mission is not None or event.is_meta or event.text is None:
            return
        text = event.text
        if not text.strip() or _SYSTEM_TEXT_MARKER in text or text.startswith(_SYSTEM_TEXT_PREFIX):
            return
        cache.mission = text[: self.config.mission_max_chars]

    def _apply_assistant(self, event: AssistantEvent, cache: SessionCache) -> None:
        orchestrator = cache.orchestrator
        for block in event.blocks:
            if isinstance(block, ThinkingBlock):
                if orchestrator is not None and block.thinking:
                    orchestrator.thinking = block.thinking[: self.config.thinking_max_chars]
            elif isinstance(block, TextBlock):
                if orchestrator is not None and block.text:
                    orchestrator.current_task = (
                        block.text[: self.config.current_task_max_chars] + "..."
                    )
            elif isinstance(block, ToolUseBlock):
                self._apply_tool_use(block, event.timestamp, cache)

    def _apply_tool_use(self, block: ToolUseBlock, timestamp: str | None, cache: SessionCache) -> None:
        if block.name == DELEGATE_TOOL:
            self._spawn_agent(block, timestamp, cache)
        elif block.name == GOALS_TOOL:
            todos = block.input.get("todos")
            if isinstance(todos, list) and cache.orchestrator is not None:
                cache.orchestrator.goals = [
                    Goal(content=str(todo.get("content", "")), status=str(todo.get("status", "")))
                    for todo in todos
                    if isinstance(todo, dict)
                ]

        marker_type = FILE_TOOL_MARKERS.get(block.name or "")
        file_path = block.file_path
        if marker_type is not None and file_path:
            cache.markers.append(
                Marker(
                    timestamp=timestamp,
                    type=marker_type,
                    file=file_path,
                    filename=_basename(file_path),
                )
            )

    def _spawn_agent(self, block: ToolUseBlock, timestamp: str | None, cache: SessionCache) -> None:
        handle = block.id
        if not handle:
            logger.debug("Ignoring delegation without a tool-call id")
            return
        if handle in cache.agents:
            return

        agent_type = block.input.get("subagent_type") or DEFAULT_AGENT_TYPE
        description = block.input.get("description") or DEFAULT_AGENT_TASK
        cache.agents[handle] = Agent(
            id=handle,
            name=str(agent_type),
            current_task=str(description),
            start_time=timestamp,
        )
        cache.markers.append(
            Marker(
                timestamp=timestamp,
                type=MarkerType.AGENT_SPAWN,
                agent_id=handle,
                agent_type=str(agent_type),
            )
        )
        logger.debug(f"Agent spawned: {handle} ({agent_type})")

    def _apply_tool_results(self, event: UserEvent, cache: SessionCache) -> list[str]:
        newly_bound: list[str] = []
        payload = event.tool_use_result or {}
        reported_id = payload.get("agentId")
        reported_id = reported_id if isinstance(reported_id, str) and reported_id else None

        for block in event.blocks:
            if not isinstance(block, ToolResultBlock):
                continue

            if block.is_error:
                cache.markers.append(
                    Marker(timestamp=event.timestamp, type=MarkerType.ERROR, content=block.content)
                )

            agent = cache.agents.get(block.tool_use_id or "")
            if agent is None:
                continue

            if reported_id and agent.real_agent_id is None:
                if cache.identities.bind(agent.id, reported_id):
                    agent.real_agent_id = reported_id
                    newly_bound.append(reported_id)

            # Applies once, even over a completion inferred from the agent's own log
            if payload.get("status") == COMPLETED_STATUS and not agent.orchestrator_completed:
                agent.status = AgentStatus.DONE
                agent.orchestrator_completed = True
                agent.end_time = event.timestamp
                cache.markers.append(
                    Marker(
                        timestamp=event.timestamp,
                        type=MarkerType.AGENT_COMPLETE,
                        agent_id=agent.id,
                        agent_type=agent.name,
                    )
                )
                logger.debug(f"Agent marked as done: {agent.id}")

            summary = block.text()
            if summary is not None:
                agent.result = summary[: self.config.result_max_chars]

        return newly_bound

    # ------------------------------------------------------------------
    # Agent logs
    # ------------------------------------------------------------------

    def attach_agent_log(self, cache: SessionCache, agent: Agent, data: AgentLogData) -> None:
        """Merge a parsed agent log into its agent record.

        The orchestrator log is authoritative for completion: the agent log's
        natural-end signal only completes an agent the orchestrator hasn't
        already reported, and a done agent is never reopened. A later
        orchestrator report still records its own end time and marker.
        """
        identity = agent.real_agent_id or data.agent_id
        if not data.is_partial_parse or not (agent.actions or agent.messages):
            agent.actions = list(data.actions)
            agent.messages = list(data.messages)

        first, last = data.first_activity_time, data.last_activity_time
        if first is not None:
            agent.first_activity_time = first
            agent.last_activity_time = last

        if agent.status == AgentStatus.DONE:
            if agent.end_time is None and agent.last_activity_time:
                agent.end_time = agent.last_activity_time
        elif data.is_completed:
            agent.status = AgentStatus.DONE
            if agent.last_activity_time:
                agent.end_time = agent.last_activity_time
            logger.debug(f"Agent {agent.id} marked as done from its own log")

        if identity and not data.is_partial_parse:
            self._mark_agent_file_ops(cache, identity, data)

    def _mark_agent_file_ops(self, cache: SessionCache, identity: str, data: AgentLogData) -> None:
        already = cache.marked_actions.get(identity, 0)
        if already > len(data.actions):
            # Log was rewritten from scratch; its markers are already on the timeline
            already = 0
        for action in data.actions[already:]:
            marker_type = FILE_TOOL_MARKERS.get(action.name)
            if marker_type is not None and action.file_path:
                cache.markers.append(
                    Marker(
                        timestamp=action.timestamp,
                        type=marker_type,
                        file=action.file_path,
                        filename=_basename(action.file_path),
                        agent_id=identity,
                    )
                )
        cache.marked_actions[identity] = len(data.actions)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def build_snapshot(self, cache: SessionCache, now: datetime | None = None) -> SessionSnapshot:
        """Render the cache as a snapshot, applying freshness classification."""
        now = now or utc_now()
        # Snapshots are handed to other tasks; never share the live records
        agents = [
            replace(agent, actions=list(agent.actions), messages=list(agent.messages))
            for agent in self.classifier.classify(cache.agents.values(), now)
        ]

        orchestrator = None
        if cache.orchestrator is not None:
            orchestrator = replace(
                cache.orchestrator,
                goals=list(cache.orchestrator.goals),
                mission=cache.mission,
                active_agents=sum(1 for a in agents if a.status == AgentStatus.ACTIVE),
                tasks_completed=sum(1 for a in agents if a.status == AgentStatus.DONE),
            )

        return SessionSnapshot(
            session_path=cache.session_path,
            orchestrator=orchestrator,
            agents=agents,
            markers=cache.markers.to_list(),
        )
