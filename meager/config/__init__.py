"""Configuration package exports."""

from .core import ENV_FIELDS, load_config, print_config_summary  # noqa: F401
from .model import ClientConfig

__all__ = ["ClientConfig", "ENV_FIELDS", "load_config", "print_config_summary"]
