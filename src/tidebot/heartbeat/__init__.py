"""Periodic heartbeat."""

from tidebot.heartbeat.service import HeartbeatService

__all__ = ["HeartbeatService"]
