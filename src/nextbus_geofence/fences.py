"""Load the static fence definitions.

File format: a JSON array of ``{id, name, region, polygon}`` objects where
``polygon`` is a list of ``[lat, lon]`` pairs.  Open rings are closed on
load.  The result is loaded once at startup and never changes afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import jsonschema
import orjson

from nextbus_geofence.exceptions import ConfigError
from nextbus_geofence.geometry import close_ring
from nextbus_geofence.models import Fence

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "fences.schema.json"


def load_fences(path: str | Path, schema_path: str | Path | None = None) -> list[Fence]:
    """Read, validate and return the fences in *path*.

    Raises
    ------
    ConfigError
        If the file is unreadable, fails schema validation, holds a
        degenerate ring, or repeats a fence id.
    """
    try:
        raw: Any = orjson.loads(Path(path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read fences from {path}: {exc}") from exc

    if not isinstance(raw, list):
        raise ConfigError(f"Fences file {path} must hold a JSON array")

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        try:
            jsonschema.validate(instance=raw, schema=orjson.loads(sp.read_bytes()))
        except jsonschema.ValidationError as exc:
            raise ConfigError(f"Invalid fences file {path}: {exc.message}") from exc
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    fences: list[Fence] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError(f"Fence #{index} in {path} must be a JSON object")
        if entry.get("id") is None:
            raise ConfigError(f"Fence #{index} in {path} has no id")
        fence_id = str(entry["id"])
        if fence_id in seen:
            raise ConfigError(f"Duplicate fence id {fence_id!r} in {path}")
        seen.add(fence_id)

        polygon = entry.get("polygon")
        if not isinstance(polygon, list):
            raise ConfigError(f"Fence {fence_id!r} in {path} has no polygon")
        try:
            ring = close_ring(polygon)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Fence {fence_id!r}: {exc}") from exc

        fences.append(Fence(
            id=fence_id,
            name=entry.get("name", ""),
            region=int(entry.get("region", 0)),
            polygon=ring,
        ))

    logger.info("Loaded %d fences from %s", len(fences), path)
    return fences
