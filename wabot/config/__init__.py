"""Configuration module for wabot."""

from wabot.config.loader import get_config_path, load_config
from wabot.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
