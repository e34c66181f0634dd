"""
Geo-indexed transmitter datasets.

A provider exposes ``async fetch(coordinate) -> {"locations": {...}}``. The
DatasetCache keeps the parsed result in memory, refreshes it on the configured
interval and keeps the previous copy whenever a fetch fails.

Two datasets are held: the primary one (normally the FMDX map API) and an
optional secondary fallback (normally a local JSON export). The resolver
searches the fallback only when the primary yields nothing.
"""

import asyncio
import json
import logging
import time
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import numpy as np

from ..interfaces.station_models import Location

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]


class DatasetError(Exception):
    """Upstream dataset could not be fetched or parsed."""


def parse_locations(payload: Any) -> List[Location]:
    """
    Parse a ``{"locations": {id: {...}}}`` payload.

    Sites with unusable coordinates are skipped.

    Raises:
        DatasetError: payload is not an object with a locations mapping
    """
    if not isinstance(payload, dict):
        raise DatasetError("dataset payload must be an object")
    raw_locations = payload.get("locations") or {}
    if isinstance(raw_locations, dict):
        raw_locations = list(raw_locations.values())
    if not isinstance(raw_locations, list):
        raise DatasetError("dataset 'locations' must be a mapping or list")

    locations = []
    skipped = 0
    for raw in raw_locations:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        try:
            locations.append(Location.from_dict(raw))
        except ValueError:
            skipped += 1
    if skipped:
        logger.debug(f"Skipped {skipped} malformed dataset locations")
    return locations


class HttpDatasetProvider:
    """Fetches the station map around the receiver over HTTP."""

    def __init__(self, base_url: str, timeout_s: float = 30.0):
        self.base_url = base_url
        self.timeout_s = timeout_s

    def build_url(self, coordinate: Coordinate) -> str:
        lat, lon = coordinate
        return f"{self.base_url}?qth={lat},{lon}&date={date.today().isoformat()}"

    async def fetch(self, coordinate: Coordinate) -> Dict[str, Any]:
        """
        Raises:
            DatasetError: network failure, bad HTTP status or invalid JSON
        """
        url = self.build_url(coordinate)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise DatasetError(f"HTTP {response.status} from {self.base_url}")
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DatasetError(f"request to {self.base_url} failed: {e}") from e
        except ValueError as e:
            raise DatasetError(f"invalid JSON from {self.base_url}: {e}") from e


class FileDatasetProvider:
    """Reads a dataset export from a local JSON file (coordinate is ignored)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def fetch(self, coordinate: Coordinate) -> Dict[str, Any]:
        """
        Raises:
            DatasetError: file missing or not valid JSON
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise DatasetError(f"cannot read {self.path}: {e}") from e


class LocationIndex:
    """Parsed locations plus coordinate arrays for vectorised distance checks."""

    def __init__(self, locations: Optional[List[Location]] = None):
        self.locations: List[Location] = list(locations or [])
        self.lats = np.array([loc.latitude for loc in self.locations], dtype=float)
        self.lons = np.array([loc.longitude for loc in self.locations], dtype=float)

    def __len__(self) -> int:
        return len(self.locations)


class DatasetCache:
    """
    In-memory cache of the primary and fallback datasets.

    refresh() is called at startup and then whenever refresh_due() reports the
    configured interval has passed.
    """

    def __init__(
        self,
        receiver: Coordinate,
        primary=None,
        fallback=None,
        clock: Callable[[], float] = time.time,
    ):
        self.receiver = receiver
        self.primary_provider = primary
        self.fallback_provider = fallback
        self.clock = clock

        self.primary = LocationIndex()
        self.fallback = LocationIndex()
        self.last_load_ts = 0.0
        self.stats = {'refresh_ok': 0, 'refresh_failed': 0}

    def set_primary(self, locations: List[Location]):
        self.primary = LocationIndex(locations)

    def set_fallback(self, locations: List[Location]):
        self.fallback = LocationIndex(locations)

    def refresh_due(self, interval_hours: float) -> bool:
        if not self.last_load_ts:
            return True
        return self.clock() - self.last_load_ts >= interval_hours * 3600.0

    async def refresh(self) -> bool:
        """
        Reload both datasets. A failing provider leaves its cache untouched.

        Returns:
            True if the primary dataset was loaded
        """
        primary_ok = False
        if self.primary_provider is not None:
            locations = await self._load(self.primary_provider, "primary")
            if locations is not None:
                self.primary = LocationIndex(locations)
                self.last_load_ts = self.clock()
                primary_ok = True

        if self.fallback_provider is not None:
            locations = await self._load(self.fallback_provider, "fallback")
            if locations is not None:
                self.fallback = LocationIndex(locations)

        return primary_ok

    async def _load(self, provider, label: str) -> Optional[List[Location]]:
        try:
            payload = await provider.fetch(self.receiver)
            locations = parse_locations(payload)
        except DatasetError as e:
            self.stats['refresh_failed'] += 1
            logger.error(f"{label} dataset load failed, keeping {label} cache: {e}")
            return None

        self.stats['refresh_ok'] += 1
        logger.info(f"{label} dataset loaded: {len(locations)} locations")
        return locations
