"""
Candidate station search and ranking.

Modes (FinderConfig.mode):
    1  dataset only
    2  user station list only
    3  user list, dataset when the user list has no match

Dataset search walks every site within max_distance_km of the receiver and
every active station on it whose normalized frequency and/or identifier match
the query. The secondary dataset is searched only when the primary yields
nothing; the two result sets are never merged.
"""

import logging
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..config import FinderConfig, SearchMode
from ..geo.geomath import haversine_km, haversine_km_many, initial_bearing_deg
from ..interfaces.station_models import CandidateResult, Location, StationRecord
from .datasets import DatasetCache, LocationIndex
from .normalize import normalize_frequency, normalize_identifier

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def _expand_station_name(name: str) -> str:
    return (name or "Unknown").replace("R.", "Radio ", 1)


class CandidateResolver:
    """
    Resolves (frequency, identifier, antenna) into ranked CandidateResults.

    The config snapshot is fetched on every call so mode and distance edits
    apply to the next lookup.
    """

    def __init__(
        self,
        receiver: Tuple[float, float],
        datasets: DatasetCache,
        logos,
        config: Callable[[], FinderConfig],
    ):
        self.receiver_lat, self.receiver_lon = receiver
        self.datasets = datasets
        self.logos = logos
        self.config = config

    async def resolve(
        self,
        frequency,
        identifier=None,
        antenna: Optional[int] = None,
        token=None,
    ) -> List[CandidateResult]:
        config = self.config()
        mode = config.mode

        if mode == SearchMode.USER_LIST_ONLY:
            return await self.search_user_list(frequency, identifier, antenna, config, token)
        if mode == SearchMode.USER_LIST_THEN_DATASET:
            first = await self.search_user_list(frequency, identifier, antenna, config, token)
            if first:
                return first
        return await self.search_datasets(frequency, identifier, config, token)

    async def search_datasets(self, frequency, identifier, config: FinderConfig, token=None) -> List[CandidateResult]:
        freq = normalize_frequency(frequency)
        pi = normalize_identifier(identifier)
        if freq is None and pi is None:
            return []

        results = self._search_index(self.datasets.primary, freq, pi, config.max_distance_km)
        if not results and len(self.datasets.fallback):
            results = self._search_index(self.datasets.fallback, freq, pi, config.max_distance_km)
            if results:
                logger.debug(f"{len(results)} candidates from fallback dataset for {freq} {pi or ''}")

        await self._attach_logos(results, token, only_missing=False)
        return results

    def _search_index(
        self,
        index: LocationIndex,
        freq: Optional[float],
        pi: Optional[str],
        max_distance_km: float,
    ) -> List[CandidateResult]:
        if not len(index):
            return []

        distances = haversine_km_many(self.receiver_lat, self.receiver_lon, index.lats, index.lons)
        nearby = np.nonzero(distances <= max_distance_km)[0]

        results = []
        for i in nearby:
            location = index.locations[int(i)]
            for station in location.stations:
                if station.inactive:
                    continue
                if freq is not None and normalize_frequency(station.frequency) != freq:
                    continue
                if pi is not None and normalize_identifier(station.identifier) != pi:
                    continue
                results.append(self._build_candidate(location, station))

        results.sort(key=lambda c: c.distance_km)
        return results

    def _build_candidate(self, location: Location, station: StationRecord) -> CandidateResult:
        distance = haversine_km(self.receiver_lat, self.receiver_lon, location.latitude, location.longitude)
        azimuth = initial_bearing_deg(self.receiver_lat, self.receiver_lon, location.latitude, location.longitude)
        return CandidateResult(
            frequency=normalize_frequency(station.frequency),
            station=_expand_station_name(station.name),
            location=location.name,
            country_code=location.country_code,
            distance_km=_round_half_up(distance),
            azimuth_deg=_round_half_up(azimuth) % 360,
            identifier=station.identifier,
            polarization=station.polarization,
            power=station.power,
            catalog_id=station.catalog_id,
        )

    async def search_user_list(
        self,
        frequency,
        identifier,
        antenna: Optional[int],
        config: FinderConfig,
        token=None,
    ) -> List[CandidateResult]:
        freq = normalize_frequency(frequency)
        pi = normalize_identifier(identifier)
        if freq is None and pi is None:
            return []

        ant = int(antenna or 0)
        results = []
        for record in config.user_stations:
            if freq is not None and normalize_frequency(record.frequency) != freq:
                continue
            if record.antenna is not None and record.antenna != ant:
                continue
            results.append(CandidateResult(
                frequency=normalize_frequency(record.frequency),
                station=record.name,
                location=record.location,
                country_code=record.country_code,
                distance_km=round(record.distance_km, 1),
                azimuth_deg=_round_half_up(record.azimuth_deg),
                identifier=record.identifier,
                polarization=record.polarization,
                power=record.power,
                logo_url=record.logo_url,
            ))

        results.sort(key=lambda c: c.distance_km)
        await self._attach_logos(results, token, only_missing=True)
        return results

    async def _attach_logos(self, results: List[CandidateResult], token, only_missing: bool):
        for candidate in results:
            if token is not None and token.cancelled:
                logger.debug("Lookup cancelled, skipping remaining logos")
                return
            if only_missing and candidate.logo_url:
                continue
            candidate.logo_url = await self.logos.resolve(candidate)
