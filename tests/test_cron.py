from datetime import datetime, timedelta

import pytest

from tidebot.agent.tools.base import ToolContext
from tidebot.agent.tools.cron import CronTool
from tidebot.agent.tools.registry import ToolRegistry
from tidebot.cron.service import CronService

NOW = datetime(2026, 3, 2, 8, 30)


@pytest.fixture
def cron(bus, tmp_path) -> CronService:
    return CronService(bus, store_path=tmp_path / "cron" / "jobs.json")


def test_compute_next_run():
    assert CronService.compute_next_run("every", "90", NOW) == NOW + timedelta(seconds=90)
    assert CronService.compute_next_run("every", "0", NOW) is None
    assert CronService.compute_next_run("cron", "0 9 * * *", NOW) == datetime(2026, 3, 2, 9, 0)
    assert CronService.compute_next_run("cron", "not a cron", NOW) is None
    assert CronService.compute_next_run("at", "2026-03-02T10:00:00", NOW) == datetime(2026, 3, 2, 10, 0)
    assert CronService.compute_next_run("at", "2020-01-01T00:00:00", NOW) is None


async def test_jobs_persist_across_instances(bus, tmp_path, cron):
    job = await cron.add_job("water", "Water the plants", "every", "3600", "telegram", "42")

    reloaded = CronService(bus, store_path=tmp_path / "cron" / "jobs.json")

    assert [j.id for j in reloaded.list_jobs()] == [job.id]
    assert reloaded.jobs[job.id].message == "Water the plants"
    assert reloaded.jobs[job.id].next_run_at == job.next_run_at


async def test_never_firing_schedule_is_rejected(cron):
    with pytest.raises(ValueError):
        await cron.add_job("old", "too late", "at", "2020-01-01T00:00:00", "cli", "direct")


async def test_due_job_is_delivered_as_system_message(bus, cron):
    job = await cron.add_job("water", "Water the plants", "every", "60", "telegram", "42")

    await cron._tick(job.next_run_at + timedelta(seconds=1))

    msg = await bus.consume_inbound(timeout=1)
    assert (msg.channel, msg.sender_id, msg.chat_id) == ("system", "cron", "telegram:42")
    assert msg.content == "Water the plants"
    assert msg.metadata == {"cron_job_id": job.id}
    assert job.next_run_at == job.last_run_at + timedelta(seconds=60)


async def test_one_shot_job_is_removed_after_running(bus, cron):
    at = (datetime.now() + timedelta(minutes=5)).isoformat(timespec="seconds")
    job = await cron.add_job("remind", "Call mom", "at", at, "cli", "direct")

    await cron._tick(datetime.now() + timedelta(minutes=6))

    assert job.id not in cron.jobs
    assert (await bus.consume_inbound(timeout=1)).content == "Call mom"


async def test_jobs_not_yet_due_stay_quiet(bus, cron):
    await cron.add_job("later", "Later", "every", "3600", "cli", "direct")
    await cron._tick()
    assert bus.inbound_depth == 0


async def test_remove_job(cron):
    job = await cron.add_job("x", "x", "every", "60", "cli", "direct")
    assert await cron.remove_job(job.id) is True
    assert await cron.remove_job(job.id) is False


async def test_cron_tool_schedules_for_current_chat(cron):
    registry = ToolRegistry()
    registry.register(CronTool(cron))
    telegram = ToolContext(channel="telegram", chat_id="42")

    created = await registry.execute(
        "cron",
        {"action": "add", "message": "Stand up and stretch", "every_seconds": 1800},
        context=telegram,
    )
    assert created.startswith("Created job 'Stand up and stretch'")
    job = cron.list_jobs()[0]
    assert (job.channel, job.chat_id, job.schedule_type) == ("telegram", "42", "every")

    listing = await registry.execute("cron", {"action": "list"})
    assert job.id in listing

    assert await registry.execute("cron", {"action": "remove", "job_id": job.id}) == (
        f"Removed job {job.id}"
    )
    assert await registry.execute("cron", {"action": "list"}) == "No scheduled jobs."


async def test_cron_tool_errors_are_text(cron):
    registry = ToolRegistry()
    registry.register(CronTool(cron))
    cli = ToolContext(channel="cli", chat_id="direct")

    assert await registry.execute("cron", {"action": "add", "message": "x"}) == (
        "Error: no session context (channel/chat_id)"
    )
    assert await registry.execute("cron", {"action": "add", "message": "x"}, context=cli) == (
        "Error: either every_seconds, cron_expr, or at is required"
    )
    past = await registry.execute(
        "cron", {"action": "add", "message": "x", "at": "2020-01-01T00:00:00"}, context=cli
    )
    assert past.startswith("Error executing cron:")
    assert "Invalid parameters" in await registry.execute("cron", {"action": "pause"})
