"""Tests for AgentManager: spawning, admission control, replies, stop and retention."""

from __future__ import annotations

import asyncio
import json
import os
import subprocess
import sys
from datetime import timedelta

import pytest

from swarm_cli.agents.base import AgentKind, Mode
from swarm_cli.config import AgentSettings, default_config
from swarm_cli.errors import (
    AgentStillRunning,
    CliNotAvailable,
    ConcurrencyLimitExceeded,
    ConfigurationError,
    InvalidWorkingDirectory,
    MissingSessionId,
    NotFound,
    RalphModeError,
    ReplyNotSupported,
)
from swarm_cli.events import MessageEvent, ResultEvent
from swarm_cli.events.timestamps import utc_now
from swarm_cli.orchestrator.launch import PosixLauncher
from swarm_cli.orchestrator.manager import AgentManager
from swarm_cli.orchestrator.ralph import RalphConfig
from swarm_cli.orchestrator.record import AgentRecord, AgentStatus

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX process semantics")


def agent_dirs(agents_dir):
    return sorted(p.name for p in agents_dir.iterdir() if p.is_dir())


def append_json(record, *records):
    with open(record.stdout_path, "a", encoding="utf-8") as f:
        for raw in records:
            f.write(json.dumps(raw) + "\n")


@pytest.fixture()
def manager(agents_dir, fake_launcher, fake_bin):
    return AgentManager(agents_dir, launcher=fake_launcher)


class TestSpawn:
    def test_spawn_persists_running_record(self, manager, fake_launcher, agents_dir, workdir):
        record = asyncio.run(manager.spawn("review", "claude", "Review auth", cwd=str(workdir)))

        assert record.status is AgentStatus.RUNNING
        assert record.agent_kind is AgentKind.CLAUDE
        assert record.mode is Mode.PLAN
        assert record.cwd == str(workdir.resolve())
        assert record.prompt == "Review auth"
        assert record.conversation_turn == 0
        assert agent_dirs(agents_dir) == [record.agent_id]

        meta = json.loads(record.meta_path.read_text(encoding="utf-8"))
        assert meta["status"] == "running"
        assert meta["pid"] == record.pid
        assert record.stdout_path.exists()

        (argv, cwd, log_path) = fake_launcher.launched[0]
        assert argv[0] == "claude"
        assert "--model" in argv
        assert argv[argv.index("--model") + 1] == "claude-sonnet-4-6"
        assert cwd == record.cwd
        assert log_path == record.stdout_path

    def test_effort_and_explicit_model(self, manager, fake_launcher):
        async def scenario():
            await manager.spawn("t", "gemini", "x", effort="detailed")
            await manager.spawn("t", "gemini", "x", effort="fast", model="custom-model")

        asyncio.run(scenario())
        first, second = (argv for argv, _, _ in fake_launcher.launched)
        assert first[first.index("--model") + 1] == "gemini-3-pro-preview"
        assert second[second.index("--model") + 1] == "custom-model"

    def test_default_mode_from_manager(self, agents_dir, fake_launcher, fake_bin):
        manager = AgentManager(agents_dir, launcher=fake_launcher, default_mode="edit")
        record = asyncio.run(manager.spawn("t", "codex", "x"))
        assert record.mode is Mode.EDIT
        assert "--full-auto" in fake_launcher.launched[0][0]

    def test_invalid_mode_rejected(self, manager):
        with pytest.raises(ConfigurationError, match="Invalid mode"):
            asyncio.run(manager.spawn("t", "claude", "x", mode="yolo"))

    def test_unknown_kind_rejected(self, manager, agents_dir):
        with pytest.raises(ConfigurationError):
            asyncio.run(manager.spawn("t", "aider", "x"))
        assert agent_dirs(agents_dir) == []

    def test_disabled_agent_rejected(self, agents_dir, fake_launcher, fake_bin):
        base = default_config()
        agents = dict(base.agents)
        agents[AgentKind.CODEX] = AgentSettings(enabled=False, models=base.agents[AgentKind.CODEX].models)
        config = type(base)(agents=agents, default_mode=base.default_mode)
        manager = AgentManager(agents_dir, config, launcher=fake_launcher)
        with pytest.raises(ConfigurationError, match="disabled"):
            asyncio.run(manager.spawn("t", "codex", "x"))
        assert fake_launcher.launched == []

    def test_concurrency_ceiling(self, agents_dir, fake_launcher, fake_bin):
        manager = AgentManager(agents_dir, launcher=fake_launcher, max_concurrent=1)

        async def scenario():
            first = await manager.spawn("t", "claude", "one")
            with pytest.raises(ConcurrencyLimitExceeded) as exc_info:
                await manager.spawn("t", "claude", "two")
            assert "(1)" in str(exc_info.value)
            assert agent_dirs(agents_dir) == [first.agent_id]

            fake_launcher.finish(first.pid)
            second = await manager.spawn("t", "claude", "three")
            assert second.status is AgentStatus.RUNNING

        asyncio.run(scenario())
        assert len(fake_launcher.launched) == 2

    def test_missing_cli(self, agents_dir, fake_launcher, tmp_path, monkeypatch):
        empty = tmp_path / "empty-bin"
        empty.mkdir()
        monkeypatch.setenv("PATH", str(empty))
        manager = AgentManager(agents_dir, launcher=fake_launcher)
        with pytest.raises(CliNotAvailable) as exc_info:
            asyncio.run(manager.spawn("t", "codex", "x"))
        assert "codex" in str(exc_info.value)
        assert agent_dirs(agents_dir) == []
        assert fake_launcher.launched == []

    def test_missing_cwd(self, manager, agents_dir, tmp_path):
        missing = tmp_path / "missing"
        with pytest.raises(InvalidWorkingDirectory, match="does not exist"):
            asyncio.run(manager.spawn("t", "claude", "x", cwd=str(missing)))
        assert agent_dirs(agents_dir) == []

    def test_cwd_is_a_file(self, manager, tmp_path):
        a_file = tmp_path / "notes.txt"
        a_file.write_text("hi", encoding="utf-8")
        with pytest.raises(InvalidWorkingDirectory, match="not a directory"):
            asyncio.run(manager.spawn("t", "claude", "x", cwd=str(a_file)))

    def test_ralph_mode_requires_task_file(self, manager, workdir):
        with pytest.raises(RalphModeError, match="RALPH.md"):
            asyncio.run(manager.spawn("t", "claude", "x", cwd=str(workdir), mode="ralph"))

    def test_ralph_mode_spawn(self, manager, fake_launcher, workdir):
        (workdir / "RALPH.md").write_text("## [ ] First task\n", encoding="utf-8")
        record = asyncio.run(manager.spawn("t", "claude", "Ship it", cwd=str(workdir), mode="ralph"))

        argv = fake_launcher.launched[0][0]
        assert "--dangerously-skip-permissions" in argv
        assert any("RALPH MODE INSTRUCTIONS" in part for part in argv)
        assert record.mode is Mode.RALPH
        assert record.prompt == "Ship it"

    def test_ralph_mode_disabled(self, agents_dir, fake_launcher, fake_bin, workdir):
        (workdir / "RALPH.md").write_text("## [ ] Task\n", encoding="utf-8")
        manager = AgentManager(agents_dir, launcher=fake_launcher, ralph=RalphConfig(disabled=True))
        with pytest.raises(RalphModeError, match="disabled"):
            asyncio.run(manager.spawn("t", "claude", "x", cwd=str(workdir), mode="ralph"))


class TestQueries:
    def test_get_unknown_raises(self, manager):
        with pytest.raises(NotFound):
            asyncio.run(manager.get("nope"))

    def test_get_loads_record_spawned_elsewhere(self, agents_dir, fake_launcher, fake_bin, launcher_factory):
        spawner = AgentManager(agents_dir, launcher=fake_launcher)
        reader = AgentManager(agents_dir, launcher=launcher_factory())

        async def scenario():
            await reader.initialize()
            record = await spawner.spawn("t", "claude", "x")
            found = await reader.get(record.agent_id)
            assert found.agent_id == record.agent_id

        asyncio.run(scenario())

    def test_list_by_parent_session(self, manager):
        async def scenario():
            await manager.spawn("t", "claude", "a", parent_session_id="parent-1")
            await manager.spawn("t", "codex", "b", parent_session_id="parent-2")
            return await manager.list_by_parent_session("parent-1")

        (record,) = asyncio.run(scenario())
        assert record.agent_kind is AgentKind.CLAUDE

    def test_running_and_completed_listings(self, manager, fake_launcher):
        async def scenario():
            done = await manager.spawn("t", "claude", "a")
            running = await manager.spawn("t", "claude", "b")
            fake_launcher.finish(done.pid)
            return done, running, await manager.list_running(), await manager.list_completed()

        done, running, running_list, completed_list = asyncio.run(scenario())
        assert [r.agent_id for r in running_list] == [running.agent_id]
        assert [r.agent_id for r in completed_list] == [done.agent_id]

    @posix_only
    def test_task_status_mixes_live_and_dead_pids(self, agents_dir):
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait()
        for agent_id, pid in (("live", os.getpid()), ("gone", proc.pid)):
            AgentRecord(
                agent_id=agent_id,
                task_name="mixed",
                agent_kind=AgentKind.CLAUDE,
                prompt="x",
                agents_dir=agents_dir,
                pid=pid,
            ).save_meta()

        manager = AgentManager(agents_dir, launcher=PosixLauncher())
        records = asyncio.run(manager.list_by_task("mixed"))
        statuses = {r.agent_id: r.status for r in records}
        assert statuses == {"live": AgentStatus.RUNNING, "gone": AgentStatus.COMPLETED}

    def test_list_tasks(self, manager, fake_launcher, workdir):
        (workdir / "api").mkdir()
        (workdir / "web").mkdir()

        async def scenario():
            first = await manager.spawn("build", "claude", "a", cwd=str(workdir / "api"))
            await manager.spawn("build", "codex", "b", cwd=str(workdir / "web"))
            fake_launcher.finish(first.pid, 1)
            await manager.spawn("docs", "gemini", "c")
            return await manager.list_tasks()

        summaries = asyncio.run(scenario())
        by_name = {s.task_name: s for s in summaries}
        build = by_name["build"]
        assert build.agent_count == 2
        assert build.running == 1
        assert build.failed == 1
        assert build.workspace_dir == str(workdir.resolve())
        assert by_name["docs"].workspace_dir is None
        assert set(build.to_dict()) == {
            "task_name", "agent_count", "running", "completed", "failed", "stopped",
            "latest_activity", "workspace_dir",
        }

    def test_list_tasks_limit(self, manager):
        async def scenario():
            for name in ("a", "b", "c"):
                await manager.spawn(name, "claude", "x")
            return await manager.list_tasks(limit=2)

        assert len(asyncio.run(scenario())) == 2


class TestReply:
    def test_reply_chain(self, manager, fake_launcher, workdir):
        async def scenario():
            original = await manager.spawn(
                "review", "claude", "Review", cwd=str(workdir), mode="edit", parent_session_id="p-1"
            )
            append_json(original, {"type": "system", "subtype": "init", "session_id": "sess-42"})
            fake_launcher.finish(original.pid)
            reply = await manager.reply(original.agent_id, "Now fix it")
            return original, reply

        original, reply = asyncio.run(scenario())

        assert reply.agent_id != original.agent_id
        assert reply.task_name == "review"
        assert reply.mode is Mode.EDIT
        assert reply.cwd == original.cwd
        assert reply.parent_session_id == "p-1"
        assert reply.session_id == "sess-42"
        assert reply.conversation_turn == 1
        assert reply.original_agent_id == original.agent_id
        assert reply.prompt == "Now fix it"
        assert original.reply_agent_ids == [reply.agent_id]

        on_disk = AgentRecord.load(original.agent_dir)
        assert on_disk.reply_agent_ids == [reply.agent_id]

        argv = fake_launcher.launched[1][0]
        assert argv[:3] == ["claude", "-r", "sess-42"]
        assert argv[argv.index("--permission-mode") + 1] == "acceptEdits"

    def test_second_reply_increments_turn(self, manager, fake_launcher):
        async def scenario():
            original = await manager.spawn("t", "gemini", "x")
            fake_launcher.finish(original.pid)
            first = await manager.reply(original, "more")
            fake_launcher.finish(first.pid)
            return await manager.reply(first, "even more")

        second = asyncio.run(scenario())
        assert second.conversation_turn == 2

    def test_reply_without_session_id(self, manager, fake_launcher):
        async def scenario():
            original = await manager.spawn("t", "claude", "x")
            fake_launcher.finish(original.pid)
            await manager.reply(original.agent_id, "more")

        with pytest.raises(MissingSessionId):
            asyncio.run(scenario())
        assert len(fake_launcher.launched) == 1

    def test_reply_not_supported(self, manager):
        async def scenario():
            original = await manager.spawn("t", "codex", "x")
            await manager.reply(original.agent_id, "more")

        with pytest.raises(ReplyNotSupported, match="codex"):
            asyncio.run(scenario())

    def test_reply_to_running_agent_rejected(self, manager, fake_launcher):
        async def scenario():
            original = await manager.spawn("t", "claude", "x")
            append_json(original, {"type": "system", "subtype": "init", "session_id": "s1"})
            with pytest.raises(AgentStillRunning, match="still running"):
                await manager.reply(original.agent_id, "more")
            return original

        original = asyncio.run(scenario())
        assert original.status is AgentStatus.RUNNING
        assert original.reply_agent_ids == []
        assert len(fake_launcher.launched) == 1

    def test_reply_to_unknown_agent(self, manager):
        with pytest.raises(NotFound):
            asyncio.run(manager.reply("missing", "hello"))


class TestStop:
    def test_stop_running_agent(self, manager, fake_launcher):
        async def scenario():
            record = await manager.spawn("t", "claude", "x")
            first = await manager.stop(record.agent_id)
            second = await manager.stop(record.agent_id)
            return record, first, second

        record, first, second = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert fake_launcher.terminated == [record.pid]
        assert fake_launcher.killed == []
        assert AgentRecord.load(record.agent_dir).status is AgentStatus.STOPPED

    def test_stop_finished_agent_returns_false(self, manager, fake_launcher):
        async def scenario():
            record = await manager.spawn("t", "claude", "x")
            fake_launcher.finish(record.pid)
            return record, await manager.stop(record.agent_id)

        record, stopped = asyncio.run(scenario())
        assert stopped is False
        assert record.status is AgentStatus.COMPLETED
        assert fake_launcher.terminated == []

    def test_stubborn_agent_is_killed(self, agents_dir, fake_launcher, fake_bin):
        manager = AgentManager(agents_dir, launcher=fake_launcher, stop_grace_seconds=0)

        async def scenario():
            record = await manager.spawn("t", "claude", "x")
            fake_launcher.stubborn.add(record.pid)
            return record, await manager.stop(record.agent_id)

        record, stopped = asyncio.run(scenario())
        assert stopped is True
        assert fake_launcher.killed == [record.pid]
        assert record.status is AgentStatus.STOPPED

    def test_stop_unknown_agent(self, manager):
        with pytest.raises(NotFound):
            asyncio.run(manager.stop("nope"))

    def test_stop_rejects_agent_of_another_task(self, manager, fake_launcher):
        async def scenario():
            record = await manager.spawn("build", "claude", "x")
            with pytest.raises(NotFound, match="in task 'docs'"):
                await manager.stop(record.agent_id, task_name="docs")
            return record, await manager.stop(record.agent_id, task_name="build")

        record, stopped = asyncio.run(scenario())
        assert stopped is True
        assert fake_launcher.terminated == [record.pid]

    def test_stop_by_task(self, manager, fake_launcher):
        async def scenario():
            done = await manager.spawn("t", "claude", "a")
            running = await manager.spawn("t", "codex", "b")
            other = await manager.spawn("other", "codex", "c")
            fake_launcher.finish(done.pid)
            return done, running, other, await manager.stop_by_task("t")

        done, running, other, result = asyncio.run(scenario())
        assert result.stopped == [running.agent_id]
        assert result.already_stopped == [done.agent_id]
        assert other.status is AgentStatus.RUNNING
        assert result.to_dict() == {"stopped": [running.agent_id], "already_stopped": [done.agent_id]}


class TestWait:
    def test_wait_times_out(self, manager):
        async def scenario():
            await manager.spawn("t", "claude", "x")
            return await manager.wait_for_task("t", timeout=0, poll_interval=0.01)

        result = asyncio.run(scenario())
        assert result.timed_out is True
        assert [r.status for r in result.records] == [AgentStatus.RUNNING]

    def test_wait_returns_when_all_terminal(self, manager, fake_launcher):
        async def scenario():
            record = await manager.spawn("t", "claude", "x")
            asyncio.get_running_loop().call_later(0.05, fake_launcher.finish, record.pid)
            return await manager.wait_for_task("t", timeout=5, poll_interval=0.01)

        result = asyncio.run(scenario())
        assert result.timed_out is False
        assert result.records[0].status is AgentStatus.COMPLETED

    def test_wait_for_unknown_task(self, manager):
        result = asyncio.run(manager.wait_for_task("nothing", timeout=0))
        assert result.records == []
        assert result.timed_out is False


class TestStartupAndRetention:
    def test_initialize_runs_once(self, manager):
        calls = []
        load = manager._load_existing_agents

        async def counting_load():
            calls.append(1)
            await load()

        manager._load_existing_agents = counting_load

        async def scenario():
            await asyncio.gather(manager.initialize(), manager.initialize())
            await manager.initialize()

        asyncio.run(scenario())
        assert calls == [1]

    def test_dead_agents_reconciled_on_startup(self, agents_dir, fake_launcher, fake_bin, launcher_factory):
        first = AgentManager(agents_dir, launcher=fake_launcher)
        record = asyncio.run(first.spawn("t", "claude", "x"))

        restarted = AgentManager(agents_dir, launcher=launcher_factory())
        (loaded,) = asyncio.run(restarted.list_all())
        assert loaded.agent_id == record.agent_id
        assert loaded.status is AgentStatus.COMPLETED
        assert AgentRecord.load(record.agent_dir).status is AgentStatus.COMPLETED

    def test_startup_rebuilds_events_from_log(self, agents_dir, fake_launcher, fake_bin, launcher_factory):
        first = AgentManager(agents_dir, launcher=fake_launcher)
        record = asyncio.run(first.spawn("t", "claude", "x"))
        append_json(
            record,
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}},
            {"type": "result", "subtype": "success", "result": "done"},
        )

        restarted = AgentManager(agents_dir, launcher=launcher_factory())
        loaded = asyncio.run(restarted.get(record.agent_id))
        assert [type(e) for e in loaded.events] == [MessageEvent, ResultEvent]
        assert loaded.status is AgentStatus.COMPLETED

    def test_old_records_evicted_on_startup(self, agents_dir, fake_launcher):
        old = AgentRecord(
            agent_id="old",
            task_name="t",
            agent_kind=AgentKind.CLAUDE,
            prompt="x",
            agents_dir=agents_dir,
            status=AgentStatus.COMPLETED,
            started_at=utc_now() - timedelta(days=10),
            completed_at=utc_now() - timedelta(days=9),
        )
        recent = AgentRecord(
            agent_id="recent",
            task_name="t",
            agent_kind=AgentKind.CLAUDE,
            prompt="x",
            agents_dir=agents_dir,
            status=AgentStatus.COMPLETED,
            completed_at=utc_now(),
        )
        old.save_meta()
        recent.save_meta()
        (agents_dir / "junk").mkdir()

        manager = AgentManager(agents_dir, launcher=fake_launcher)
        records = asyncio.run(manager.list_all())
        assert [r.agent_id for r in records] == ["recent"]
        assert agent_dirs(agents_dir) == ["junk", "recent"]

    def test_cwd_filter(self, agents_dir, fake_launcher, fake_bin, workdir, tmp_path):
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        spawner = AgentManager(agents_dir, launcher=fake_launcher)

        async def spawn_both():
            mine = await spawner.spawn("t", "claude", "x", cwd=str(workdir))
            await spawner.spawn("t", "claude", "y", cwd=str(elsewhere))
            return mine

        mine = asyncio.run(spawn_both())
        scoped = AgentManager(agents_dir, launcher=fake_launcher, filter_by_cwd=str(workdir))
        records = asyncio.run(scoped.list_all())
        assert [r.agent_id for r in records] == [mine.agent_id]

    def test_retention_evicts_oldest_terminal(self, agents_dir, fake_launcher, fake_bin):
        manager = AgentManager(agents_dir, launcher=fake_launcher, max_agents=2)

        async def scenario():
            spawned = []
            for name in ("a", "b", "c"):
                record = await manager.spawn(name, "claude", "x")
                fake_launcher.finish(record.pid)
                spawned.append(record)
            spawned.append(await manager.spawn("d", "claude", "x"))
            return spawned

        a, b, c, d = asyncio.run(scenario())
        assert agent_dirs(agents_dir) == sorted([b.agent_id, c.agent_id, d.agent_id])
        assert a.agent_id not in {r.agent_id for r in asyncio.run(manager.list_all())}

    def test_running_agents_never_evicted(self, agents_dir, fake_launcher, fake_bin):
        manager = AgentManager(agents_dir, launcher=fake_launcher, max_agents=1)

        async def scenario():
            for _ in range(3):
                await manager.spawn("t", "claude", "x")
            return await manager.list_running()

        assert len(asyncio.run(scenario())) == 3


@posix_only
class TestRealProcesses:
    def test_spawn_and_wait_for_real_cli(self, agents_dir, write_cli, workdir):
        write_cli(
            "claude",
            "cat <<'EOF'\n"
            '{"type":"system","subtype":"init","session_id":"real-1"}\n'
            '{"type":"assistant","message":{"content":[{"type":"text","text":"working"}]}}\n'
            '{"type":"result","subtype":"success","result":"done"}\n'
            "EOF\n",
        )
        manager = AgentManager(agents_dir, launcher=PosixLauncher())

        async def scenario():
            record = await manager.spawn("real", "claude", "Do it", cwd=str(workdir))
            result = await manager.wait_for_task("real", timeout=10, poll_interval=0.05)
            return record, result

        record, result = asyncio.run(scenario())
        assert result.timed_out is False
        assert record.status is AgentStatus.COMPLETED
        assert record.session_id == "real-1"
        assert [type(e) for e in record.events] == [MessageEvent, ResultEvent]

    def test_stop_real_process(self, agents_dir, write_cli):
        write_cli("codex", "exec sleep 30\n")
        manager = AgentManager(agents_dir, launcher=PosixLauncher(), stop_grace_seconds=5)

        async def scenario():
            record = await manager.spawn("sleepy", "codex", "x")
            return record, await manager.stop(record.agent_id)

        record, stopped = asyncio.run(scenario())
        assert stopped is True
        assert record.status is AgentStatus.STOPPED
        assert manager.launcher.is_alive(record.pid) is False
