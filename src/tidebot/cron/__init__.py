"""Scheduled jobs delivered as system turns."""

from tidebot.cron.service import CronService
from tidebot.cron.types import CronJob

__all__ = ["CronService", "CronJob"]
