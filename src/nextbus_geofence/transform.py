"""Transform raw NextBus vehicle attribute maps into :class:`Location` records.

Field rules::

    id               → vehicle_id          required, non-empty
    lat / lon        → lat / lon           required, finite, in range
    secsSinceReport  → secs_since_report   required, int >= 0
    routeTag, dirTag → route_tag, dir_tag  optional text
    predictable      → predictable         optional, "true" / "false"
    heading          → heading             optional, int in [0, 360); < 0 means unknown
                                           and clears the stored heading
    speedKmHr        → speed_km_hr         optional, int >= 0

Any rule violation raises :class:`ValidationError` naming the field.  The
transform never consults the clock, so the same input always yields the same
:class:`Location`.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping, Optional

from nextbus_geofence.exceptions import ValidationError
from nextbus_geofence.models import Location

logger = logging.getLogger(__name__)


def transform(raw: Mapping[str, Any], observed_at_millis: int) -> Location:
    """Convert one raw vehicle attribute map into a :class:`Location`.

    Parameters
    ----------
    raw:
        Attribute map from the feed, values usually strings.
    observed_at_millis:
        The feed's ``lastTime`` for the batch this record came from.

    Returns
    -------
    Location

    Raises
    ------
    ValidationError
        When any field fails its parse rule.
    """
    vehicle_id = _text(raw, "id")
    if vehicle_id is None:
        raise ValidationError("id", raw.get("id"), "missing vehicle id")

    heading = _optional(raw, "heading", _heading)
    unknown: frozenset[str] = frozenset()
    if heading is None and _text(raw, "heading") is not None:
        unknown = frozenset({"heading"})

    return Location(
        vehicle_id=vehicle_id,
        lat=_coordinate(raw, "lat", 90.0),
        lon=_coordinate(raw, "lon", 180.0),
        secs_since_report=_required(raw, "secsSinceReport", _non_negative_int),
        observed_at_millis=observed_at_millis,
        route_tag=_text(raw, "routeTag"),
        dir_tag=_text(raw, "dirTag"),
        predictable=_optional(raw, "predictable", _boolean),
        heading=heading,
        speed_km_hr=_optional(raw, "speedKmHr", _non_negative_int),
        unknown_fields=unknown,
    )


def transform_batch(
    raws: Iterable[Mapping[str, Any]],
    observed_at_millis: int,
) -> list[Location]:
    """Transform a whole batch, dropping and logging invalid records."""
    locations: list[Location] = []
    for raw in raws:
        try:
            locations.append(transform(raw, observed_at_millis))
        except ValidationError as exc:
            logger.warning("Dropped vehicle %s: %s", raw.get("id"), exc)
    return locations


# ── field parsers ───────────────────────────────────────────────────


def _text(raw: Mapping[str, Any], name: str) -> Optional[str]:
    value = raw.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _required(raw: Mapping[str, Any], name: str, parse) -> Any:
    value = raw.get(name)
    if value is None or str(value).strip() == "":
        raise ValidationError(name, value, "missing required field")
    return parse(name, value)


def _optional(raw: Mapping[str, Any], name: str, parse) -> Any:
    value = raw.get(name)
    if value is None or str(value).strip() == "":
        return None
    return parse(name, value)


def _coordinate(raw: Mapping[str, Any], name: str, bound: float) -> float:
    value = raw.get(name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(name, value, "not a number") from None
    if not math.isfinite(number) or abs(number) > bound:
        raise ValidationError(name, value, f"outside [-{bound:g}, {bound:g}]")
    return number


def _integer(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(name, value, "not an integer")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(name, value, "not an integer") from None
    if not number.is_integer():
        raise ValidationError(name, value, "not an integer")
    return int(number)


def _non_negative_int(name: str, value: Any) -> int:
    number = _integer(name, value)
    if number < 0:
        raise ValidationError(name, value, "must be >= 0")
    return number


def _heading(name: str, value: Any) -> Optional[int]:
    number = _integer(name, value)
    if number < 0:
        return None  # feed reports -4 when the heading is unknown
    if number >= 360:
        raise ValidationError(name, value, "must be < 360")
    return number


def _boolean(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValidationError(name, value, "expected 'true' or 'false'")
