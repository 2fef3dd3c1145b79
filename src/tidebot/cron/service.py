"""
Cron service for scheduled tasks.

Due jobs are not executed here: each one is delivered to the agent as a
system message on the bus, addressed to the chat that scheduled it.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path

from croniter import croniter

from tidebot.bus import InboundMessage, MessageBus
from tidebot.bus.events import SYSTEM_CHANNEL
from tidebot.cron.types import CronJob, ScheduleType

logger = logging.getLogger(__name__)


class CronService:
    """
    Scheduled tasks service.

    Three schedule types:
    - "at": One-time execution at specific ISO datetime
    - "every": Interval-based (every N seconds)
    - "cron": Cron expression
    """

    def __init__(
        self,
        bus: MessageBus,
        store_path: Path | None = None,
        interval_s: int = 60,
    ):
        """
        Args:
            bus: Bus that due jobs are published to
            store_path: JSON file jobs are persisted in (None = memory only)
            interval_s: How often to check for due jobs (default 60s)
        """
        self.bus = bus
        self.store_path = store_path
        self.interval_s = interval_s
        self.jobs: dict[str, CronJob] = {}
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._load()

    def _load(self) -> None:
        if self.store_path is None or not self.store_path.exists():
            return
        try:
            raw = json.loads(self.store_path.read_text(encoding="utf-8"))
            for item in raw.get("jobs", []):
                job = CronJob.from_dict(item)
                self.jobs[job.id] = job
        except (json.JSONDecodeError, OSError, TypeError, ValueError) as e:
            logger.warning("Could not load cron jobs from %s: %s", self.store_path, e)

    def _save(self) -> None:
        if self.store_path is None:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"jobs": [job.to_dict() for job in self.jobs.values()]}
        self.store_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    @staticmethod
    def compute_next_run(
        schedule_type: ScheduleType, schedule_value: str, now: datetime | None = None
    ) -> datetime | None:
        """
        Compute next run time for a schedule.

        Returns:
            Next run datetime, or None if the schedule can never fire
            (past "at" time, unparseable value).
        """
        now = now or datetime.now()

        if schedule_type == "at":
            try:
                run_at = datetime.fromisoformat(schedule_value)
            except ValueError:
                return None
            if run_at.tzinfo is not None:
                run_at = run_at.astimezone().replace(tzinfo=None)
            return run_at if run_at > now else None

        if schedule_type == "every":
            try:
                seconds = int(schedule_value)
            except ValueError:
                return None
            return now + timedelta(seconds=seconds) if seconds > 0 else None

        if schedule_type == "cron":
            if not croniter.is_valid(schedule_value):
                return None
            return croniter(schedule_value, now).get_next(datetime)

        return None

    async def add_job(
        self,
        name: str,
        message: str,
        schedule_type: ScheduleType,
        schedule_value: str,
        channel: str,
        chat_id: str,
    ) -> CronJob:
        """
        Add a new scheduled job.

        Raises:
            ValueError: if the schedule would never fire.
        """
        next_run = self.compute_next_run(schedule_type, schedule_value)
        if next_run is None:
            raise ValueError(f"schedule {schedule_type}={schedule_value!r} never fires")

        job = CronJob(
            id=uuid.uuid4().hex[:8],
            name=name,
            message=message,
            schedule_type=schedule_type,
            schedule_value=schedule_value,
            channel=channel,
            chat_id=chat_id,
            next_run_at=next_run,
        )
        self.jobs[job.id] = job
        self._save()
        logger.info("Cron job %s added (%s: %s)", job.id, schedule_type, schedule_value)
        return job

    def list_jobs(self, include_disabled: bool = False) -> list[CronJob]:
        jobs = [j for j in self.jobs.values() if include_disabled or j.enabled]
        return sorted(jobs, key=lambda j: j.next_run_at or datetime.max)

    async def remove_job(self, job_id: str) -> bool:
        """Remove a job. Returns False if not found."""
        if self.jobs.pop(job_id, None) is None:
            return False
        self._save()
        return True

    async def _deliver(self, job: CronJob) -> None:
        """Hand the job to the agent as a system turn for its origin chat."""
        await self.bus.publish_inbound(
            InboundMessage(
                channel=SYSTEM_CHANNEL,
                sender_id="cron",
                chat_id=f"{job.channel}:{job.chat_id}",
                content=job.message,
                metadata={"cron_job_id": job.id},
            )
        )

    async def _tick(self, now: datetime | None = None) -> None:
        """Deliver due jobs and reschedule them."""
        now = now or datetime.now()
        changed = False

        for job_id, job in list(self.jobs.items()):
            if not job.enabled or job.next_run_at is None or job.next_run_at > now:
                continue

            try:
                await self._deliver(job)
            except Exception:
                logger.exception("Failed to deliver cron job %s", job_id)
                continue

            job.last_run_at = now
            changed = True
            if job.schedule_type == "at":
                del self.jobs[job_id]
            else:
                job.next_run_at = self.compute_next_run(
                    job.schedule_type, job.schedule_value, now
                )

        if changed:
            self._save()

    async def _run_loop(self) -> None:
        """Main cron loop."""
        while self._running:
            await self._tick()
            await asyncio.sleep(self.interval_s)

    async def start(self) -> None:
        """Start the cron service."""
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Stop the cron service."""
        self._running = False
        if self._task:
            self._task.cancel()
