"""Shared fixtures for swarmview tests."""

import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from swarmview.config import WatchConfig
from swarmview.monitoring.session_cache import SessionCache
from swarmview.monitoring.session_monitor import SessionMonitor
from swarmview.timeutils import utc_now

SESSION_ID = "sess-0001"


def iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def write_records(path: Path, records: list[dict[str, Any]], mode: str = "a") -> None:
    """Write records as JSONL, one per line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open(mode) as f:
        for record in records:
            f.write(json.dumps(record) + "\n")


def set_mtime(path: Path, moment: datetime) -> None:
    stamp = moment.timestamp()
    os.utime(path, (stamp, stamp))


class LogFactory:
    """Builds orchestrator and agent log records relative to ``now``."""

    def __init__(self, now: datetime, session_id: str = SESSION_ID):
        self.now = now
        self.session_id = session_id

    def ts(self, minutes_ago: float = 0) -> str:
        return iso(self.now - timedelta(minutes=minutes_ago))

    def user_prompt(self, text: str, minutes_ago: float = 0, is_meta: bool = False) -> dict:
        record = {
            "type": "user",
            "sessionId": self.session_id,
            "timestamp": self.ts(minutes_ago),
            "message": {"role": "user", "content": text},
        }
        if is_meta:
            record["isMeta"] = True
        return record

    def assistant(self, blocks: list[dict], minutes_ago: float = 0, stop_reason: str | None = None,
                  agent_id: str | None = None) -> dict:
        record = {
            "type": "assistant",
            "sessionId": self.session_id,
            "timestamp": self.ts(minutes_ago),
            "message": {"role": "assistant", "content": blocks, "stop_reason": stop_reason},
        }
        if agent_id:
            record["agentId"] = agent_id
        return record

    def text(self, text: str, minutes_ago: float = 0) -> dict:
        return self.assistant([{"type": "text", "text": text}], minutes_ago)

    def thinking(self, thinking: str, minutes_ago: float = 0) -> dict:
        return self.assistant([{"type": "thinking", "thinking": thinking}], minutes_ago)

    def spawn(self, handle: str, subagent_type: str = "Explore", description: str = "Explore repo",
              minutes_ago: float = 0) -> dict:
        return self.assistant(
            [
                {
                    "type": "tool_use",
                    "id": handle,
                    "name": "Task",
                    "input": {"subagent_type": subagent_type, "description": description},
                }
            ],
            minutes_ago,
            stop_reason="tool_use",
        )

    def tool_use(self, name: str, tool_input: dict, handle: str = "toolu_x", minutes_ago: float = 0) -> dict:
        return self.assistant(
            [{"type": "tool_use", "id": handle, "name": name, "input": tool_input}],
            minutes_ago,
            stop_reason="tool_use",
        )

    def todos(self, todos: list[dict], minutes_ago: float = 0) -> dict:
        return self.tool_use("TodoWrite", {"todos": todos}, "toolu_todo", minutes_ago)

    def tool_result(self, handle: str, agent_id: str | None = None, status: str | None = None,
                    content: Any = "Finished", is_error: bool = False, minutes_ago: float = 0) -> dict:
        block = {"type": "tool_result", "tool_use_id": handle, "content": content}
        if is_error:
            block["is_error"] = True
        record = {
            "type": "user",
            "sessionId": self.session_id,
            "timestamp": self.ts(minutes_ago),
            "message": {"role": "user", "content": [block]},
        }
        result = {}
        if agent_id:
            result["agentId"] = agent_id
        if status:
            result["status"] = status
        if result:
            record["toolUseResult"] = result
        return record

    def agent_action(self, agent_id: str, tool: str = "Read", file_path: str = "/repo/app.py",
                     minutes_ago: float = 0, stop_reason: str = "tool_use") -> dict:
        return self.assistant(
            [{"type": "tool_use", "id": f"toolu_{tool}", "name": tool, "input": {"file_path": file_path}}],
            minutes_ago,
            stop_reason=stop_reason,
            agent_id=agent_id,
        )

    def agent_text(self, agent_id: str, text: str, minutes_ago: float = 0,
                   stop_reason: str | None = "end_turn") -> dict:
        return self.assistant(
            [{"type": "text", "text": text}], minutes_ago, stop_reason=stop_reason, agent_id=agent_id
        )


@pytest.fixture
def now() -> datetime:
    return utc_now()


@pytest.fixture
def factory(now: datetime) -> LogFactory:
    return LogFactory(now)


@pytest.fixture
def session_dir(tmp_path: Path) -> Path:
    """Project directory holding the session and its agent logs."""
    directory = tmp_path / "projects" / "Users-alice-Projects-demo"
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def session_path(session_dir: Path) -> Path:
    """Orchestrator log path (not created)."""
    return session_dir / f"{SESSION_ID}.jsonl"


@pytest.fixture
def config() -> WatchConfig:
    return WatchConfig(log_dir="", debounce_seconds=0.05)


@pytest.fixture
def monitor(config: WatchConfig) -> SessionMonitor:
    return SessionMonitor(config)


@pytest.fixture
def cache(session_path: Path) -> SessionCache:
    return SessionCache.create(session_path)


@pytest.fixture
def write_jsonl():
    """Append records to a JSONL file."""
    return write_records


@pytest.fixture
def touch_at():
    """Set a file's modification time."""
    return set_mtime
