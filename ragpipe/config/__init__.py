"""Configuration module -- exports Settings and load_config."""

from ragpipe.config.loader import load_config
from ragpipe.config.settings import Settings

__all__ = ["Settings", "load_config"]
