from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from result import Err, Ok, Result

from duscan.services.sizing import LARGE_FILE_THRESHOLD


@dataclass(slots=True, frozen=True)
class IntSetting:
    """One integer config value: its JSON key, ``AppConfig`` attribute and floor."""

    key: str
    attr: str
    minimum: int

    def parse(self, data: dict[str, Any], default: int) -> Result[int, str]:
        if self.key not in data:
            return Ok(default)
        value = data[self.key]
        # bool is an int subclass; JSON true/false is never a count.
        if isinstance(value, bool) or not isinstance(value, int):
            return Err(f"{self.key} must be an integer, got {value!r}")
        return Ok(max(self.minimum, value))


SETTINGS: tuple[IntSetting, ...] = (
    IntSetting("largeFileThresholdBytes", "large_file_threshold_bytes", 0),
    IntSetting("probeTimeoutMs", "probe_timeout_ms", 100),
    IntSetting("progressIntervalMs", "progress_interval_ms", 10),
    IntSetting("topCount", "top_count", 1),
)
_BY_ATTR = {setting.attr: setting for setting in SETTINGS}


def clamp_setting(attr: str, value: int) -> int:
    """Raise *value* to the floor of the ``AppConfig`` attribute *attr*."""
    return max(_BY_ATTR[attr].minimum, value)


@dataclass(slots=True)
class AppConfig:
    large_file_threshold_bytes: int = LARGE_FILE_THRESHOLD
    probe_timeout_ms: int = 5000
    progress_interval_ms: int = 200
    top_count: int = 15

    def to_dict(self) -> dict[str, int]:
        return {setting.key: getattr(self, setting.attr) for setting in SETTINGS}

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: AppConfig) -> Result[AppConfig, str]:
        """Build a config from parsed JSON, stopping at the first bad value."""
        values: dict[str, int] = {}
        for setting in SETTINGS:
            parsed = setting.parse(data, getattr(defaults, setting.attr))
            if isinstance(parsed, Err):
                return parsed
            values[setting.attr] = parsed.unwrap()
        return Ok(cls(**values))
