"""
Tool: cron

Lets the agent schedule reminders and recurring tasks for the current chat.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from tidebot.agent.tools.base import Tool, ToolContext

if TYPE_CHECKING:
    from tidebot.cron.service import CronService


def parse_at(raw: str) -> datetime:
    """Parse an ISO datetime; naive values are taken as local time."""
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("invalid at datetime: expected ISO datetime string") from None


class CronTool(Tool):
    name = "cron"
    description = "Schedule reminders and recurring tasks. Actions: add, list, remove."
    parameters = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["add", "list", "remove"]},
            "message": {
                "type": "string",
                "description": "Instruction to run when the job fires (for add)",
            },
            "every_seconds": {"type": "integer", "minimum": 1},
            "cron_expr": {"type": "string", "description": "Cron expression, e.g. '0 9 * * *'"},
            "at": {"type": "string", "description": "ISO datetime for a one-time job"},
            "job_id": {"type": "string", "description": "Job to remove"},
        },
        "required": ["action"],
    }
    context_aware = True

    def __init__(self, cron_service: "CronService"):
        self._cron = cron_service

    async def execute(
        self, action: str, context: ToolContext | None = None, **kwargs: Any
    ) -> str:
        if action == "add":
            return await self._add_job(context, **kwargs)
        if action == "list":
            return self._list_jobs()
        if action == "remove":
            return await self._remove_job(kwargs.get("job_id"))
        return f"Unknown action: {action}"

    async def _add_job(
        self,
        context: ToolContext | None,
        message: str = "",
        every_seconds: int | None = None,
        cron_expr: str | None = None,
        at: str | None = None,
        **kwargs: Any,
    ) -> str:
        if not message:
            return "Error: message is required for add"
        if context is None:
            return "Error: no session context (channel/chat_id)"

        if every_seconds:
            schedule_type, schedule_value = "every", str(every_seconds)
        elif cron_expr:
            schedule_type, schedule_value = "cron", cron_expr
        elif at:
            schedule_type, schedule_value = "at", parse_at(at).isoformat()
        else:
            return "Error: either every_seconds, cron_expr, or at is required"

        job = await self._cron.add_job(
            name=message[:30],
            message=message,
            schedule_type=schedule_type,
            schedule_value=schedule_value,
            channel=context.channel,
            chat_id=context.chat_id,
        )
        return f"Created job '{job.name}' (id: {job.id})"

    def _list_jobs(self) -> str:
        jobs = self._cron.list_jobs()
        if not jobs:
            return "No scheduled jobs."
        lines = [f"- {j.name} (id: {j.id}, {j.schedule_type}: {j.schedule_value})" for j in jobs]
        return "Scheduled jobs:\n" + "\n".join(lines)

    async def _remove_job(self, job_id: str | None) -> str:
        if not job_id:
            return "Error: job_id is required for remove"
        if await self._cron.remove_job(job_id):
            return f"Removed job {job_id}"
        return f"Job {job_id} not found"
