"""
Cron data types.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

ScheduleType = Literal["at", "every", "cron"]


@dataclass
class CronJob:
    """
    A scheduled task.

    Attributes:
        id: Short unique identifier
        name: Human-readable label
        message: Directive handed to the agent when the job runs
        schedule_type: "at", "every" or "cron"
        schedule_value: ISO datetime (at), seconds (every), or cron expr (cron)
        channel: Channel the result is delivered to
        chat_id: Chat the result is delivered to
        enabled: Whether job is active
        next_run_at: When this job should next run
    """

    id: str
    name: str
    message: str
    schedule_type: ScheduleType
    schedule_value: str
    channel: str
    chat_id: str
    enabled: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("next_run_at", "last_run_at", "created_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronJob":
        data = dict(data)
        for key in ("next_run_at", "last_run_at", "created_at"):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)
