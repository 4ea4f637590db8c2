from __future__ import annotations

import json
import logging

from result import Err, Ok, Result

from duscan.config.defaults import default_config
from duscan.config.schema import SETTINGS, AppConfig
from duscan.services.fs import DEFAULT_FS, FileSystem

logger = logging.getLogger(__name__)

CONFIG_PATH = "~/.config/duscan/config.json"

_KNOWN_KEYS = frozenset(setting.key for setting in SETTINGS)


def load_config(path: str | None = None, fs: FileSystem = DEFAULT_FS) -> Result[AppConfig, str]:
    """Read the JSON config at *path* (or the default location).

    A missing file means defaults. Every other problem comes back as an
    ``Err`` whose message names the file and, for bad values, the key.
    """
    resolved = fs.expanduser(path or CONFIG_PATH)
    if not fs.exists(resolved):
        logger.debug("No config at %s, using defaults", resolved)
        return Ok(default_config())

    try:
        text = fs.read_text(resolved)
    except (OSError, UnicodeDecodeError) as exc:
        return Err(f"Cannot read config at {resolved}: {exc}.")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        return Err(f"Config at {resolved} is not valid JSON: {exc}.")
    if not isinstance(payload, dict):
        return Err(f"Config at {resolved} must be a JSON object.")

    unknown = sorted(set(payload) - _KNOWN_KEYS)
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", resolved, ", ".join(unknown))

    parsed = AppConfig.from_dict(payload, default_config())
    if isinstance(parsed, Err):
        return Err(f"Invalid config at {resolved}: {parsed.unwrap_err()}.")
    logger.debug("Loaded config from %s", resolved)
    return parsed


def sample_config_json() -> str:
    return json.dumps(default_config().to_dict(), indent=2)
