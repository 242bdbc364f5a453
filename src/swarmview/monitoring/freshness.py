"""Recency-based presentation policy for agents.

Fresh agents (active, or completed recently) are shown with full detail.
Completed agents past the freshness window are collapsed to a minimal
summary, and unfinished agents without recent activity are shown as stale.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from ..timeutils import seconds_since, utc_now
from .models import Agent, AgentStatus

logger = logging.getLogger(__name__)


class FreshnessClassifier:
    """Classifies agents as fresh, stale or collapsed.

    Attributes:
        fresh_window_seconds: How long a completed agent keeps full detail.
        stale_window_seconds: Inactivity after which an unfinished agent is stale.
    """

    def __init__(self, fresh_window_seconds: float = 30 * 60, stale_window_seconds: float = 30 * 60):
        self.fresh_window_seconds = fresh_window_seconds
        self.stale_window_seconds = stale_window_seconds

    def _is_recently_completed(self, agent: Agent, now: datetime) -> bool:
        elapsed = seconds_since(agent.end_time, now)
        return elapsed is not None and elapsed <= self.fresh_window_seconds

    def classify_agent(self, agent: Agent, now: datetime) -> Agent:
        """Return the presentation projection of one agent.

        The input record is never modified; stale or collapsed agents are
        returned as copies.
        """
        if agent.status != AgentStatus.DONE:
            elapsed = seconds_since(agent.last_activity_time or agent.start_time, now)
            if elapsed is None or elapsed <= self.stale_window_seconds:
                return agent
            logger.debug(f"Agent {agent.id} is stale: no activity for {int(elapsed)}s")
            # Without an end time the agent may still be running; keep its detail
            if agent.end_time is None:
                return replace(agent, status=AgentStatus.STALE, collapsed=True)
            return replace(agent, status=AgentStatus.STALE, collapsed=True, actions=[], messages=[])

        if self._is_recently_completed(agent, now):
            return agent

        logger.debug(f"Collapsing completed agent {agent.id}")
        return replace(agent, collapsed=True, actions=[], messages=[])

    def classify(self, agents: Iterable[Agent], now: datetime | None = None) -> list[Agent]:
        """Classify every agent against the same ``now``."""
        now = now or utc_now()
        return [self.classify_agent(agent, now) for agent in agents]

    def should_process_agent_change(self, agent: Agent | None, now: datetime | None = None) -> bool:
        """Whether a change to an agent's log file is worth re-parsing.

        Unmatched logs and unfinished agents are always processed; completed
        agents only while they are within the freshness window.
        """
        if agent is None:
            return True
        if agent.status != AgentStatus.DONE or agent.end_time is None:
            return True
        return self._is_recently_completed(agent, now or utc_now())
