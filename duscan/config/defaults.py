from __future__ import annotations

from duscan.config.schema import AppConfig


def default_config() -> AppConfig:
    return AppConfig()
