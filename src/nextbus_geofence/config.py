"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import jsonschema
import orjson

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "config.schema.json"


@dataclass
class FeedConfig:
    """NextBus feed settings."""

    url: str = "http://webservices.nextbus.com/service/publicXMLFeed"
    agency: str = "ttc"
    route: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class StoreConfig:
    """Document store settings."""

    backend: str = "mongo"
    uri: str = "mongodb://localhost:27017"
    database: str = "nextbus"
    locations_collection: str = "locations"
    hits_collection: str = "hits"
    timeout_seconds: float = 10.0


@dataclass
class ScheduleConfig:
    """Job intervals.

    ``max_overlapping_runs`` lets a tick start while the previous tick of
    the same job is still running.
    """

    ingest_interval_seconds: float = 15.0
    alert_interval_seconds: float = 5.0
    max_overlapping_runs: int = 3


@dataclass
class FencesConfig:
    """Location of the static fence definitions."""

    path: str = "/etc/nextbus-geofence/fences.json"


@dataclass
class LogFileConfig:
    """Optional log file output settings.

    When ``enabled`` is True the application writes operational logs to a
    rotating file in addition to stderr.
    """

    enabled: bool = False
    path: str = "/var/log/nextbus-geofence/app.log"
    max_size_bytes: int = 10485760   # 10 MB
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*password*", "*secret*", "*token*", "*uri*"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    instance_id: str = "geofence-01"
    feed: FeedConfig = field(default_factory=FeedConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    fences: FencesConfig = field(default_factory=FencesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment "
            f"or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _section(cls, raw: dict[str, Any]):
    """Build dataclass *cls* from the keys of *raw* it knows about."""
    return cls(**{k: raw[k] for k in raw if k in cls.__dataclass_fields__})


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    logging_raw = dict(raw.get("logging", {}))
    log_file_raw = logging_raw.pop("file", {})

    return AppConfig(
        instance_id=raw.get("instance_id", "geofence-01"),
        feed=_section(FeedConfig, raw.get("feed", {})),
        store=_section(StoreConfig, raw.get("store", {})),
        schedule=_section(ScheduleConfig, raw.get("schedule", {})),
        fences=_section(FencesConfig, raw.get("fences", {})),
        logging=LoggingConfig(
            level=logging_raw.get("level", "info"),
            file=_section(LogFileConfig, log_file_raw),
            redact_patterns=logging_raw.get(
                "redact_patterns",
                ["*password*", "*secret*", "*token*", "*uri*"],
            ),
        ),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to ``config.json``.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``schemas/config.schema.json`` shipped inside the package.

    Returns
    -------
    AppConfig
        Fully resolved and validated configuration.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes())

    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    return _dict_to_config(interpolated)
