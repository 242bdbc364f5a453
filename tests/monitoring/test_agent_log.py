"""Tests for agent log parsing."""

from datetime import timedelta
from pathlib import Path

from swarmview.monitoring.agent_log import (
    AgentLogReader,
    agent_id_from_path,
    agent_log_filename,
    is_agent_log,
)


class TestAgentLogNames:
    """Tests for agent log file naming."""

    def test_round_trip(self) -> None:
        """Test that the identity can be recovered from the file name."""
        assert agent_log_filename("a1b2") == "agent-a1b2.jsonl"
        assert agent_id_from_path("/x/agent-a1b2.jsonl") == "a1b2"

    def test_non_agent_files(self) -> None:
        """Test names that aren't agent logs."""
        assert agent_id_from_path("/x/session.jsonl") is None
        assert agent_id_from_path("/x/agent-.jsonl") is None
        assert not is_agent_log("/x/agent-abc.txt")


class TestFullParse:
    """Tests for full parses."""

    def test_actions_messages_and_completion(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test extracting actions, messages and the completion signal."""
        log = session_dir / "agent-abc.jsonl"
        write_jsonl(
            log,
            [
                factory.agent_action("abc", "Read", "/repo/a.py", minutes_ago=3),
                factory.agent_action("abc", "Edit", "/repo/b.py", minutes_ago=2),
                factory.agent_text("abc", "All done", minutes_ago=1),
            ],
        )

        data = AgentLogReader().parse(log)

        assert data.agent_id == "abc"
        assert [a.name for a in data.actions] == ["Read", "Edit"]
        assert data.actions[1].file_path == "/repo/b.py"
        assert [m.text for m in data.messages] == ["All done"]
        assert data.is_completed is True
        assert data.is_partial_parse is False
        assert data.first_activity_time == factory.ts(3)
        assert data.last_activity_time == factory.ts(1)

    def test_not_completed_when_last_stop_is_tool_use(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test that a tool_use stop reason after end_turn means still running."""
        log = session_dir / "agent-abc.jsonl"
        write_jsonl(
            log,
            [
                factory.agent_text("abc", "First pass done", minutes_ago=2),
                factory.agent_action("abc", "Read", minutes_ago=1),
            ],
        )

        data = AgentLogReader().parse(log)

        assert data.last_stop_reason == "tool_use"
        assert data.is_completed is False

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test that a missing log yields no data."""
        assert AgentLogReader().parse(tmp_path / "agent-x.jsonl") is None


class TestIncrementalUpdate:
    """Tests for AgentLogReader.update."""

    def test_appends_to_previous(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test that update folds only new lines into previous data."""
        log = session_dir / "agent-abc.jsonl"
        reader = AgentLogReader()
        write_jsonl(log, [factory.agent_action("abc", "Read")])
        data, offset = reader.update(log, None, 0)

        write_jsonl(log, [factory.agent_action("abc", "Write", "/repo/c.py")])
        data, new_offset = reader.update(log, data, offset)

        assert [a.name for a in data.actions] == ["Read", "Write"]
        assert new_offset == log.stat().st_size

    def test_truncation_reparses(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test that a rewritten log is parsed from scratch."""
        log = session_dir / "agent-abc.jsonl"
        reader = AgentLogReader()
        write_jsonl(log, [factory.agent_action("abc", "Read") for _ in range(5)])
        data, offset = reader.update(log, None, 0)

        write_jsonl(log, [factory.agent_action("abc", "Edit")], mode="w")
        data, _ = reader.update(log, data, offset)

        assert [a.name for a in data.actions] == ["Edit"]


class TestReducedAndSmartParse:
    """Tests for reduced and smart parses."""

    def test_reduced_parse_has_no_detail(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test that a reduced parse keeps only identity and completion."""
        log = session_dir / "agent-abc.jsonl"
        records = [factory.agent_action("abc", "Read", minutes_ago=30) for _ in range(100)]
        records.append(factory.agent_text("abc", "done", minutes_ago=20))
        write_jsonl(log, records)

        data = AgentLogReader(head_lines=5, tail_lines=2).parse_reduced(log)

        assert data.is_partial_parse is True
        assert data.agent_id == "abc"
        assert data.is_completed is True
        assert data.actions == []
        assert data.messages == []

    def test_smart_parse_inactive_file(self, session_dir: Path, factory, write_jsonl, touch_at, now) -> None:
        """Test that a file untouched for 20 minutes gets a reduced parse."""
        log = session_dir / "agent-abc.jsonl"
        write_jsonl(
            log,
            [
                factory.agent_action("abc", "Read", minutes_ago=25),
                factory.agent_text("abc", "done", minutes_ago=20),
            ],
        )
        touch_at(log, now - timedelta(minutes=20))

        data = AgentLogReader().parse_smart(log, now)

        assert data.is_partial_parse is True
        assert data.is_completed is True
        assert data.actions == []

    def test_smart_parse_active_file(self, session_dir: Path, factory, write_jsonl, now) -> None:
        """Test that a recently modified file gets a full parse."""
        log = session_dir / "agent-abc.jsonl"
        write_jsonl(log, [factory.agent_action("abc", "Read")])

        data = AgentLogReader().parse_smart(log, now + timedelta(seconds=1))

        assert data.is_partial_parse is False
        assert len(data.actions) == 1

    def test_smart_parse_missing(self, tmp_path: Path) -> None:
        """Test that a missing file yields no data."""
        assert AgentLogReader().parse_smart(tmp_path / "agent-x.jsonl") is None


class TestSessionId:
    """Tests for the session id stamped on agent log records."""

    def test_recorded_by_full_and_reduced_parse(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test that both parse modes keep the owning session's id."""
        log = session_dir / "agent-abc.jsonl"
        write_jsonl(log, [factory.agent_action("abc"), factory.agent_text("abc", "done")])
        reader = AgentLogReader()

        assert reader.parse(log).session_id == factory.session_id
        assert reader.parse_reduced(log).session_id == factory.session_id

    def test_read_session_id(self, session_dir: Path, factory, write_jsonl) -> None:
        """Test peeking the session id from the head of a log."""
        log = session_dir / "agent-zzz.jsonl"
        write_jsonl(log, [{**factory.agent_action("zzz"), "sessionId": "other-session"}])
        reader = AgentLogReader()

        assert reader.read_session_id(log) == "other-session"
        assert reader.read_session_id(session_dir / "agent-missing.jsonl") is None
