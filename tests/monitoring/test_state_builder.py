"""Tests for SessionStateBuilder."""

import json
from datetime import timedelta

from swarmview.config import WatchConfig
from swarmview.monitoring.events import iter_events
from swarmview.monitoring.models import AgentAction, AgentLogData, AgentStatus, MarkerType
from swarmview.monitoring.session_cache import SessionCache
from swarmview.monitoring.state_builder import SessionStateBuilder


def _events(records):
    return iter_events(json.dumps(r) for r in records)


class TestDelegation:
    """Tests for agent spawn and completion."""

    def test_spawn_then_complete(self, cache: SessionCache, factory) -> None:
        """Test one delegation completed with a reported identity."""
        builder = SessionStateBuilder()

        bound = builder.fold(
            _events(
                [
                    factory.spawn("h1", "explorer", "scan repo"),
                    factory.tool_result("h1", agent_id="abc", status="completed"),
                ]
            ),
            cache,
        )

        assert bound == ["abc"]
        (agent,) = cache.agents.values()
        assert agent.id == "h1"
        assert agent.name == "explorer"
        assert agent.current_task == "scan repo"
        assert agent.status == AgentStatus.DONE
        assert agent.real_agent_id == "abc"
        assert agent.end_time is not None
        assert agent.result == "Finished"
        assert [m.type for m in cache.markers] == [MarkerType.AGENT_SPAWN, MarkerType.AGENT_COMPLETE]

    def test_duplicate_spawn_ignored(self, cache: SessionCache, factory) -> None:
        """Test that a repeated delegation for the same handle adds nothing."""
        builder = SessionStateBuilder()

        builder.fold(_events([factory.spawn("h1"), factory.spawn("h1", "other")]), cache)

        assert len(cache.agents) == 1
        assert cache.agents["h1"].name == "Explore"
        assert len(cache.markers) == 1

    def test_spawn_defaults(self, cache: SessionCache, factory) -> None:
        """Test defaults when the delegation omits type and description."""
        record = factory.tool_use("Task", {}, handle="h1")

        SessionStateBuilder().fold(_events([record]), cache)

        assert cache.agents["h1"].name == "general-purpose"
        assert cache.agents["h1"].current_task == "Unknown task"

    def test_identity_binding_is_idempotent(self, cache: SessionCache, factory) -> None:
        """Test that a later report of a different identity is ignored."""
        builder = SessionStateBuilder()

        builder.fold(_events([factory.spawn("h1"), factory.tool_result("h1", agent_id="abc")]), cache)
        bound = builder.fold(_events([factory.tool_result("h1", agent_id="xyz")]), cache)

        assert bound == []
        assert cache.agents["h1"].real_agent_id == "abc"

    def test_completion_recorded_once(self, cache: SessionCache, factory) -> None:
        """Test that a repeated completion adds no second marker."""
        builder = SessionStateBuilder()
        done = factory.tool_result("h1", agent_id="abc", status="completed")

        builder.fold(_events([factory.spawn("h1"), done, done]), cache)

        completes = [m for m in cache.markers if m.type == MarkerType.AGENT_COMPLETE]
        assert len(completes) == 1

    def test_error_result_marker(self, cache: SessionCache, factory) -> None:
        """Test that an error tool result produces an error marker."""
        SessionStateBuilder().fold(
            _events([factory.tool_result("toolu_9", content="boom", is_error=True)]), cache
        )

        (marker,) = cache.markers
        assert marker.type == MarkerType.ERROR
        assert marker.content == "boom"


class TestOrchestratorState:
    """Tests for mission, goals, thinking and current task."""

    def test_mission_skips_meta_and_system_text(self, cache: SessionCache, factory) -> None:
        """Test that the first substantive prompt becomes the mission."""
        SessionStateBuilder().fold(
            _events(
                [
                    factory.user_prompt("Caveat: the messages below were generated", is_meta=False),
                    factory.user_prompt("setup", is_meta=True),
                    factory.user_prompt("<command-name>/clear</command-name>"),
                    factory.user_prompt("Refactor the parser"),
                    factory.user_prompt("And then test it"),
                ]
            ),
            cache,
        )

        assert cache.mission == "Refactor the parser"
        assert cache.orchestrator.id == factory.session_id

    def test_truncation_budgets(self, cache: SessionCache, factory) -> None:
        """Test mission, thinking and current task truncation."""
        builder = SessionStateBuilder(WatchConfig(log_dir=""))

        builder.fold(
            _events(
                [
                    factory.user_prompt("m" * 900),
                    factory.thinking("t" * 900),
                    factory.text("c" * 900),
                ]
            ),
            cache,
        )

        assert len(cache.mission) == 500
        assert len(cache.orchestrator.thinking) == 300
        assert cache.orchestrator.current_task == "c" * 200 + "..."

    def test_goals_replaced_wholesale(self, cache: SessionCache, factory) -> None:
        """Test that each goal update replaces the previous list."""
        builder = SessionStateBuilder()

        builder.fold(
            _events(
                [
                    factory.user_prompt("go"),
                    factory.todos([{"content": "a", "status": "pending"}, {"content": "b", "status": "pending"}]),
                    factory.todos([{"content": "a", "status": "completed"}]),
                ]
            ),
            cache,
        )

        assert [(g.content, g.status) for g in cache.orchestrator.goals] == [("a", "completed")]

    def test_file_markers(self, cache: SessionCache, factory) -> None:
        """Test read/write/edit markers with basenames."""
        SessionStateBuilder().fold(
            _events(
                [
                    factory.tool_use("Read", {"file_path": "/repo/src/app.py"}),
                    factory.tool_use("Write", {"path": "/repo/out.txt"}),
                    factory.tool_use("Edit", {}),
                    factory.tool_use("Bash", {"command": "ls"}),
                ]
            ),
            cache,
        )

        assert [(m.type, m.filename) for m in cache.markers] == [
            (MarkerType.READ, "app.py"),
            (MarkerType.WRITE, "out.txt"),
        ]


class TestMarkerBound:
    """Tests for the bounded marker timeline."""

    def test_keeps_most_recent_markers(self, cache: SessionCache, factory) -> None:
        """Test folding 1005 file operations in chunks keeps the newest 1000."""
        builder = SessionStateBuilder()
        records = [factory.tool_use("Read", {"file_path": f"/repo/f{i}.py"}) for i in range(1005)]

        for start in range(0, len(records), 100):
            builder.fold(_events(records[start : start + 100]), cache)

        filenames = [m.filename for m in cache.markers]
        assert len(filenames) == 1000
        assert filenames[0] == "f5.py"
        assert filenames[-1] == "f1004.py"


class TestSplitInvariance:
    """Tests that chunked folding equals folding everything at once."""

    def test_chunked_equals_whole(self, session_path, factory) -> None:
        """Test every split point of a mixed event sequence."""
        records = [
            factory.user_prompt("Ship it"),
            factory.thinking("plan"),
            factory.todos([{"content": "a", "status": "in_progress"}]),
            factory.spawn("h1"),
            factory.spawn("h2", "Plan", "plan work"),
            factory.tool_use("Edit", {"file_path": "/r/x.py"}),
            factory.tool_result("h1", agent_id="a1", status="completed"),
            factory.text("waiting"),
            factory.tool_result("h2", agent_id="a2"),
        ]
        builder = SessionStateBuilder()

        whole = SessionCache.create(session_path)
        builder.fold(_events(records), whole)

        for split in range(len(records) + 1):
            chunked = SessionCache.create(session_path)
            builder.fold(_events(records[:split]), chunked)
            builder.fold(_events(records[split:]), chunked)

            assert chunked.agents == whole.agents
            assert chunked.orchestrator == whole.orchestrator
            assert chunked.mission == whole.mission
            assert chunked.markers.to_list() == whole.markers.to_list()


class TestAttachAgentLog:
    """Tests for merging agent logs into agents."""

    def _spawned(self, cache: SessionCache, factory, completed: bool = False):
        records = [factory.spawn("h1", minutes_ago=5)]
        if completed:
            records.append(factory.tool_result("h1", agent_id="abc", status="completed", minutes_ago=1))
        else:
            records.append(factory.tool_result("h1", agent_id="abc", minutes_ago=4))
        SessionStateBuilder().fold(_events(records), cache)
        return cache.agents["h1"]

    def _log_data(self, factory, stop_reason: str) -> AgentLogData:
        return AgentLogData(
            agent_id="abc",
            actions=[
                AgentAction("Read", "/repo/a.py", {}, factory.ts(3)),
                AgentAction("Edit", "/repo/b.py", {}, factory.ts(2)),
            ],
            is_completed=stop_reason == "end_turn",
            last_stop_reason=stop_reason,
        )

    def test_natural_end_completes_agent(self, cache: SessionCache, factory) -> None:
        """Test the agent log's end signal completing an unfinished agent."""
        agent = self._spawned(cache, factory)

        SessionStateBuilder().attach_agent_log(cache, agent, self._log_data(factory, "end_turn"))

        assert agent.status == AgentStatus.DONE
        assert agent.end_time == factory.ts(2)
        assert agent.first_activity_time == factory.ts(3)

    def test_done_never_reverts(self, cache: SessionCache, factory) -> None:
        """Test that an orchestrator-reported completion wins over the agent log."""
        agent = self._spawned(cache, factory, completed=True)
        end_time = agent.end_time

        SessionStateBuilder().attach_agent_log(cache, agent, self._log_data(factory, "tool_use"))

        assert agent.status == AgentStatus.DONE
        assert agent.end_time == end_time

    def test_file_markers_added_once(self, cache: SessionCache, factory) -> None:
        """Test that re-attaching the same log adds no duplicate markers."""
        agent = self._spawned(cache, factory)
        builder = SessionStateBuilder()
        data = self._log_data(factory, "tool_use")

        builder.attach_agent_log(cache, agent, data)
        builder.attach_agent_log(cache, agent, data)

        agent_markers = [m for m in cache.markers if m.agent_id == "abc"]
        assert [m.type for m in agent_markers] == [MarkerType.READ, MarkerType.EDIT]

    def test_partial_parse_keeps_existing_detail(self, cache: SessionCache, factory) -> None:
        """Test that a reduced parse doesn't wipe detail from a full parse."""
        agent = self._spawned(cache, factory)
        builder = SessionStateBuilder()
        builder.attach_agent_log(cache, agent, self._log_data(factory, "tool_use"))

        builder.attach_agent_log(
            cache, agent, AgentLogData(agent_id="abc", last_stop_reason="tool_use", is_partial_parse=True)
        )

        assert len(agent.actions) == 2


class TestBuildSnapshot:
    """Tests for snapshot rendering."""

    def test_counts_and_isolation(self, cache: SessionCache, factory, now) -> None:
        """Test derived counts and that snapshots don't share live records."""
        builder = SessionStateBuilder()
        builder.fold(
            _events(
                [
                    factory.user_prompt("go"),
                    factory.spawn("h1"),
                    factory.spawn("h2"),
                    factory.tool_result("h1", agent_id="a1", status="completed"),
                ]
            ),
            cache,
        )

        snapshot = builder.build_snapshot(cache, now + timedelta(seconds=1))
        snapshot.agents[0].actions.append("x")
        snapshot.orchestrator.goals.append("y")

        assert snapshot.orchestrator.active_agents == 1
        assert snapshot.orchestrator.tasks_completed == 1
        assert snapshot.orchestrator.mission == "go"
        assert cache.agents["h1"].actions == []
        assert cache.orchestrator.goals == []
        assert snapshot.to_dict()["type"] == "update"
