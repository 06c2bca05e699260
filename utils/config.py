"""
Configuration loading for sol_bump_monitor.

``config.yaml`` lives alongside ``main.py`` and carries the default runner
configuration that every trading session starts from (the values a user does
not override when creating a session). ``CONFIG_PATH`` in the environment
points to an alternative file. If the file is missing, an empty dictionary is
returned and the model defaults apply.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

import yaml  # type: ignore


def _config_path() -> str:
    env_path = os.getenv("CONFIG_PATH")
    if env_path:
        return os.path.abspath(os.path.expanduser(env_path))
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
    return os.path.join(base_dir, "config.yaml")


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    """Load application configuration from ``config.yaml``.

    :returns: A dictionary representing the configuration. Missing files
        quietly yield an empty dictionary.
    """
    config_path = _config_path()
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


def default_runner_config() -> Dict[str, Any]:
    """Return the ``runner`` section: defaults merged under each session config."""
    section = load_config().get("runner") or {}
    if not isinstance(section, dict):
        raise ValueError("config.yaml: 'runner' debe ser un mapa")
    return dict(section)
