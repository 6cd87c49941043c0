from __future__ import annotations

from .loader import ConfigError, config_from_dict, load_config

__all__ = ["ConfigError", "config_from_dict", "load_config"]
