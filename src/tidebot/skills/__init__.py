"""Skill discovery."""

from tidebot.skills.loader import SkillsLoader

__all__ = ["SkillsLoader"]
