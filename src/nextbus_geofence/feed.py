"""HTTP client for the NextBus ``vehicleLocations`` command.

Response shape::

    <body>
      <vehicle id="1266" routeTag="65" dirTag="65_0_65" lat="43.7" lon="-79.4"
               secsSinceReport="12" predictable="true" heading="270" speedKmHr="35"/>
      ...
      <lastTime time="1495374664331"/>
    </body>

An ``<Error>`` element in place of the vehicles means the request was
rejected and is reported as :class:`FetchError`.
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Optional

import aiohttp

from nextbus_geofence.config import FeedConfig
from nextbus_geofence.exceptions import FetchError
from nextbus_geofence.models import FeedSnapshot

logger = logging.getLogger(__name__)


class FeedClient:
    """Issues ``vehicleLocations`` requests and decodes the XML response.

    Parameters
    ----------
    config:
        Feed URL, agency, optional route and request timeout.
    http_session:
        Shared :class:`aiohttp.ClientSession`; owned by the caller.
    """

    def __init__(self, config: FeedConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)

    def build_params(self, cursor: int) -> dict[str, str]:
        """Query parameters for a request starting at *cursor*."""
        params = {
            "command": "vehicleLocations",
            "a": self._config.agency,
            "t": str(cursor),
        }
        if self._config.route:
            params["r"] = self._config.route
        return params

    async def fetch_raw(self, cursor: int) -> FeedSnapshot:
        """Fetch every vehicle update the feed has since *cursor*.

        Raises
        ------
        FetchError
            On network failure, timeout, non-2xx status or a body that
            cannot be decoded.
        """
        params = self.build_params(cursor)
        logger.debug("GET %s t=%s", self._config.url, cursor)

        try:
            async with self._http.get(
                self._config.url, params=params, timeout=self._timeout
            ) as resp:
                body = await resp.read()
                if resp.status < 200 or resp.status >= 300:
                    snippet = body[:200].decode("utf-8", errors="replace")
                    raise FetchError(
                        f"HTTP {resp.status} from feed: {snippet}",
                        status_code=resp.status,
                    )
        except FetchError:
            raise
        except asyncio.TimeoutError as exc:
            raise FetchError(
                f"Feed request timed out after {self._config.timeout_seconds}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise FetchError(f"Feed request failed: {exc}") from exc

        return parse_vehicle_locations(body)


def parse_vehicle_locations(body: str | bytes) -> FeedSnapshot:
    """Decode a ``vehicleLocations`` XML document.

    Bytes are handed to the XML parser undecoded so the document's own
    encoding declaration applies; bytes invalid in that encoding are a
    parse error.

    Raises
    ------
    FetchError
        When the body is not well-formed XML, carries an ``<Error>``
        element, or lacks a usable ``<lastTime>``.
    """
    try:
        root = ET.fromstring(body.strip())
    except ET.ParseError as exc:
        raise FetchError(f"Feed body is not valid XML: {exc}") from exc

    error = root.find("Error")
    if error is not None:
        message = (error.text or "").strip()
        retry = error.get("shouldRetry", "")
        raise FetchError(f"Feed error (shouldRetry={retry}): {message}")

    last_time = _last_time(root)
    if last_time is None:
        raise FetchError("Feed body has no usable lastTime element")

    vehicles = [dict(el.attrib) for el in root.iter("vehicle")]
    return FeedSnapshot(last_time_millis=last_time, vehicles=vehicles)


def _last_time(root: ET.Element) -> Optional[int]:
    element = root.find("lastTime")
    if element is None:
        return None
    try:
        return int(element.get("time", ""))
    except ValueError:
        return None
