"""Configuration management."""

from tidebot.config.schema import Config
from tidebot.config.loader import load_config, save_config

__all__ = ["Config", "load_config", "save_config"]
