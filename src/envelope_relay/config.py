"""
Relay settings.

Sources, later ones winning: model defaults, ~/.envelope-relay/config.json,
ENVELOPE_RELAY_* environment variables, explicit overrides (CLI flags).
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from envelope_relay.errors import RelayError

logger = logging.getLogger("envelope_relay.config")

CONFIG_FILE = Path.home() / ".envelope-relay" / "config.json"
ENV_PREFIX = "ENVELOPE_RELAY_"
DEFAULT_PORT = 8969


class RelaySettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(DEFAULT_PORT, ge=1, le=65535)
    buffer_size: int = Field(100, ge=1)
    session_idle_ttl: Optional[float] = Field(3600.0, gt=0)
    subscriber_queue_size: int = Field(256, ge=1)
    debug: bool = False
    default_format: str = "human"

    @property
    def base_url(self) -> str:
        host = "localhost" if self.host in ("0.0.0.0", "127.0.0.1") else self.host
        return f"http://{host}:{self.port}"


def _load_config(path: Path = CONFIG_FILE) -> dict:
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _save_config(cfg: dict, path: Path = CONFIG_FILE) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2))


def _from_env(environ: Mapping[str, str]) -> dict:
    values = {}
    for name in RelaySettings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


def load_settings(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    config_file: Optional[Path] = None,
) -> RelaySettings:
    """Merge every settings source. `None` overrides are ignored."""
    values: dict[str, Any] = {}
    values.update({k: v for k, v in _load_config(config_file or CONFIG_FILE).items() if k in RelaySettings.model_fields})
    values.update(_from_env(os.environ if environ is None else environ))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    try:
        return RelaySettings(**values)
    except ValidationError as e:
        raise RelayError("invalid_settings", f"Invalid relay settings: {e}", {"errors": e.errors()}) from e


def save_settings(settings: RelaySettings, config_file: Optional[Path] = None) -> None:
    _save_config(settings.model_dump(exclude_defaults=True), config_file or CONFIG_FILE)
