"""Parsing of per-agent log files.

Each delegated agent writes its own ``agent-<id>.jsonl`` log. A full parse
extracts every action and message; a reduced parse samples only the head and
tail of files that are unlikely to still be changing.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from ..timeutils import UTC, utc_now
from .events import AssistantEvent, TextBlock, ToolUseBlock, decode_line, iter_events
from .log_reader import read_head_tail_lines, read_new_lines
from .models import AgentAction, AgentLogData, AgentMessage

logger = logging.getLogger(__name__)

AGENT_LOG_PREFIX = "agent-"
AGENT_LOG_SUFFIX = ".jsonl"
SUBAGENTS_DIR = "subagents"

# Stop reason meaning the agent finished its turn (vs. "tool_use": still going)
NATURAL_END_STOP_REASON = "end_turn"

_AGENT_LOG_PATTERN = re.compile(r"^agent-([A-Za-z0-9_-]+)\.jsonl$")


def agent_log_filename(agent_id: str) -> str:
    """File name of the log for a durable agent identity."""
    return f"{AGENT_LOG_PREFIX}{agent_id}{AGENT_LOG_SUFFIX}"


def agent_id_from_path(file_path: str | Path) -> str | None:
    """Durable identity encoded in an agent log file name, or None."""
    match = _AGENT_LOG_PATTERN.match(Path(file_path).name)
    return match.group(1) if match else None


def is_agent_log(file_path: str | Path) -> bool:
    return agent_id_from_path(file_path) is not None


class AgentLogReader:
    """Parses agent log files in full or reduced mode.

    Attributes:
        active_window_seconds: Files modified more recently get a full parse.
        head_lines: Leading lines sampled by the reduced parse.
        tail_lines: Trailing lines sampled by the reduced parse.
    """

    def __init__(
        self,
        active_window_seconds: float = 10 * 60,
        head_lines: int = 50,
        tail_lines: int = 20,
    ):
        self.active_window_seconds = active_window_seconds
        self.head_lines = head_lines
        self.tail_lines = tail_lines

    def _fold_lines(self, lines: Iterable[str], data: AgentLogData) -> AgentLogData:
        for event in iter_events(lines):
            if data.agent_id is None and event.agent_id:
                data.agent_id = event.agent_id
            if data.session_id is None and event.session_id:
                data.session_id = event.session_id
            if not isinstance(event, AssistantEvent):
                continue
            if event.stop_reason:
                data.last_stop_reason = event.stop_reason
            for block in event.blocks:
                if isinstance(block, ToolUseBlock):
                    data.actions.append(
                        AgentAction(
                            name=block.name or "unknown",
                            file_path=block.file_path,
                            input=block.input,
                            timestamp=event.timestamp,
                        )
                    )
                elif isinstance(block, TextBlock) and block.text:
                    data.messages.append(AgentMessage(text=block.text, timestamp=event.timestamp))
        data.is_completed = data.last_stop_reason == NATURAL_END_STOP_REASON
        return data

    def parse(self, file_path: str | Path) -> AgentLogData | None:
        """Full parse of an agent log.

        Args:
            file_path: Path to the agent log.

        Returns:
            AgentLogData with every action and message, or None if the file
            doesn't exist or can't be read.
        """
        data, _ = self.update(file_path, None, 0)
        return data

    def update(
        self,
        file_path: str | Path,
        previous: AgentLogData | None,
        offset: int,
    ) -> tuple[AgentLogData | None, int]:
        """Continue a full parse from a byte offset.

        New lines are folded into ``previous``. If the file was truncated, or
        ``previous`` is missing or a reduced parse, the file is parsed again
        from the start.

        Returns:
            Tuple of (data, new_offset); data is None if the file is missing.
        """
        path = Path(file_path)
        if not path.exists():
            return None, 0

        if previous is None or previous.is_partial_parse:
            previous, offset = None, 0

        try:
            result = read_new_lines(path, offset)
            if result.needs_full_reparse:
                logger.info(f"Agent log {path.name} was truncated, reparsing from start")
                previous = None
                result = read_new_lines(path, 0)
        except OSError as e:
            logger.error(f"Failed to read agent log {path}: {e}")
            return None, 0

        data = previous if previous is not None else AgentLogData()
        self._fold_lines(result.lines, data)
        return data, result.new_offset

    def parse_reduced(self, file_path: str | Path) -> AgentLogData | None:
        """Reduced parse: identity and last stop reason from a head/tail sample.

        Actions and messages are left empty.
        """
        path = Path(file_path)
        try:
            lines = read_head_tail_lines(path, self.head_lines, self.tail_lines)
        except OSError as e:
            logger.error(f"Failed to read agent log {path}: {e}")
            return None
        if not lines and not path.exists():
            return None

        data = AgentLogData(is_partial_parse=True)
        for line in lines:
            event = decode_line(line)
            agent_id = getattr(event, "agent_id", None)
            if data.agent_id is None and agent_id:
                data.agent_id = agent_id
            session_id = getattr(event, "session_id", None)
            if data.session_id is None and session_id:
                data.session_id = session_id
            if isinstance(event, AssistantEvent) and event.stop_reason:
                data.last_stop_reason = event.stop_reason
        data.is_completed = data.last_stop_reason == NATURAL_END_STOP_REASON
        return data

    def read_session_id(self, file_path: str | Path) -> str | None:
        """Session id of the first stamped record among the leading lines."""
        for event in iter_events(read_head_tail_lines(file_path, self.head_lines, 0)):
            if event.session_id:
                return event.session_id
        return None

    def is_active(self, file_path: str | Path, now: datetime | None = None) -> bool:
        """Whether the file was modified within the active window."""
        now = now or utc_now()
        mtime = datetime.fromtimestamp(Path(file_path).stat().st_mtime, tz=UTC)
        return (now - mtime).total_seconds() < self.active_window_seconds

    def parse_smart(
        self, file_path: str | Path, now: datetime | None = None
    ) -> AgentLogData | None:
        """Full parse for recently modified files, reduced parse otherwise."""
        path = Path(file_path)
        try:
            active = self.is_active(path, now)
        except FileNotFoundError:
            return None

        if active:
            return self.parse(path)

        logger.debug(f"Agent log {path.name} inactive, using reduced parse")
        return self.parse_reduced(path)
