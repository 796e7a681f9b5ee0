"""Configuration module for chathost."""

from chathost.config.loader import get_config_path, load_config, save_config
from chathost.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
