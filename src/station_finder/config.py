"""
Configuration for station-finder.

Two layers, both read from one TOML file:

    Service settings   [receiver] [server] [datasets] [logos] [output]
                       Loaded once at startup by load_config().

    Finder tunables    [finder]
                       Re-read at every decision point through ConfigStore,
                       so edits apply without a restart.

Example:
    [receiver]
    latitude = 55.75
    longitude = 37.62

    [finder]
    mode = 3
    threshold_signal = 10
    stable_time = 3
    max_distance_km = 500
    refresh_interval_hours = 24

    [finder.threshold_signals]
    "88.0" = 8
    "90-92" = 12
    all = 5

    [[finder.user_stations]]
    freq = 101.0
    station = "Radio Test"
    distance = 12.4
    azimuth = 270
    antenna = 1
"""

import copy
import logging
import math
import os
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import toml

from .interfaces.station_models import UserStation

logger = logging.getLogger(__name__)

EXACT_FREQUENCY_TOLERANCE_MHZ = 0.0001


class ConfigError(ValueError):
    """Configuration value missing the documented type or range."""


class SearchMode(IntEnum):
    """Where candidates come from."""
    DATASET_ONLY = 1
    USER_LIST_ONLY = 2
    USER_LIST_THEN_DATASET = 3


def _number(section: Dict[str, Any], key: str, default: float, minimum: float = 0.0) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"finder.{key}: expected a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value) or value < minimum:
        raise ConfigError(f"finder.{key}: out of range: {value}")
    return value


@dataclass
class FinderConfig:
    """Immutable snapshot of the [finder] tunables."""
    mode: SearchMode = SearchMode.DATASET_ONLY
    user_stations: List[UserStation] = field(default_factory=list)
    threshold_signal: float = 10.0                            # dBuV
    threshold_signals: Optional[Dict[str, float]] = None      # per-frequency overrides
    stable_time_s: float = 3.0
    max_distance_km: float = 500.0
    refresh_interval_hours: float = 24.0

    @classmethod
    def from_dict(cls, section: Optional[Dict[str, Any]]) -> "FinderConfig":
        """
        Validate a [finder] table. Absent keys take the documented defaults.

        Raises:
            ConfigError: a present key has the wrong type or range
        """
        if section is None:
            return cls()
        if not isinstance(section, dict):
            raise ConfigError("[finder] must be a table")

        raw_mode = section.get("mode", int(SearchMode.DATASET_ONLY))
        try:
            mode = SearchMode(int(raw_mode))
        except (TypeError, ValueError):
            logger.warning(f"finder.mode: unknown mode {raw_mode!r}, searching the dataset only")
            mode = SearchMode.DATASET_ONLY

        raw_stations = section.get("user_stations", [])
        if not isinstance(raw_stations, list):
            raise ConfigError("finder.user_stations: expected an array of tables")
        try:
            user_stations = [UserStation.from_dict(s) for s in raw_stations]
        except ValueError as e:
            raise ConfigError(f"finder.user_stations: {e}") from None

        threshold_signals = section.get("threshold_signals")
        if threshold_signals is not None:
            if not isinstance(threshold_signals, dict):
                raise ConfigError("finder.threshold_signals: expected a table")
            threshold_signals = {
                str(k): _number(threshold_signals, k, 0.0, minimum=-math.inf)
                for k in threshold_signals
            }

        return cls(
            mode=mode,
            user_stations=user_stations,
            threshold_signal=_number(section, "threshold_signal", 10.0, minimum=-math.inf),
            threshold_signals=threshold_signals,
            stable_time_s=_number(section, "stable_time", 3.0),
            max_distance_km=_number(section, "max_distance_km", 500.0),
            refresh_interval_hours=_number(section, "refresh_interval_hours", 24.0),
        )

    def threshold_for(self, frequency: Optional[float]) -> float:
        """
        Signal threshold for a frequency.

        Exact keys beat ranges ("min-max", inclusive, endpoints in any order),
        ranges beat "all", and without a map the global threshold applies.
        """
        table = self.threshold_signals
        if not table or frequency is None or not math.isfinite(frequency):
            return self.threshold_signal

        for key, value in table.items():
            if key == "all" or "-" in key:
                continue
            try:
                if abs(float(key) - frequency) < EXACT_FREQUENCY_TOLERANCE_MHZ:
                    return value
            except ValueError:
                continue

        for key, value in table.items():
            bounds = _parse_range(key)
            if bounds and bounds[0] <= frequency <= bounds[1]:
                return value

        if "all" in table:
            return table["all"]

        return self.threshold_signal

    def to_subscriber_dict(self) -> Dict[str, Any]:
        """Tunables in the units the presentation layer expects."""
        return {
            "thresholdSignal": self.threshold_signal,
            "stableTime": int(round(self.stable_time_s * 1000)),   # ms
            "maxDistanceKm": self.max_distance_km,
        }


def _parse_range(key: str) -> Optional[Tuple[float, float]]:
    if "-" not in key:
        return None
    parts = key.split("-")
    if len(parts) != 2:
        return None
    try:
        a, b = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    return (min(a, b), max(a, b))


class ConfigStore:
    """
    Read-only view of the [finder] tunables with hot reload.

    The file is re-parsed whenever its mtime changes. A missing or corrupt
    file leaves the last good snapshot in place, or the defaults if there
    never was one.
    """

    def __init__(self, source: Union[str, Path, Dict[str, Any], None] = None):
        self._path: Optional[Path] = None
        self._mtime: Optional[float] = None
        self._snapshot = FinderConfig()

        if isinstance(source, dict):
            self._snapshot = FinderConfig.from_dict(source.get("finder", source))
        elif source is not None:
            self._path = Path(source)
            self._reload_if_changed()

    def snapshot(self) -> FinderConfig:
        """Current tunables; checks the file for edits first."""
        if self._path is not None:
            self._reload_if_changed()
        return self._snapshot

    def update(self, section: Dict[str, Any]):
        """Replace the snapshot directly (embedding applications, tests)."""
        self._snapshot = FinderConfig.from_dict(section)

    def _reload_if_changed(self):
        try:
            mtime = os.stat(self._path).st_mtime
        except OSError as e:
            if self._mtime is not None:
                logger.warning(f"Config file unavailable, keeping last good values: {e}")
                self._mtime = None
            return

        if mtime == self._mtime:
            return
        self._mtime = mtime

        try:
            with open(self._path, 'r') as f:
                data = toml.load(f)
            self._snapshot = FinderConfig.from_dict(data.get("finder"))
            logger.info(f"Finder config loaded from {self._path} (mode={int(self._snapshot.mode)})")
        except (toml.TomlDecodeError, ConfigError, OSError) as e:
            logger.warning(f"Config reload failed, keeping last good values: {e}")


DEFAULT_CONFIG: Dict[str, Any] = {
    'receiver': {
        'latitude': None,
        'longitude': None,
        'grid_square': None,
    },
    'server': {
        'websocket_base': 'ws://127.0.0.1:8080',
        'plugin_name': 'StationsWithoutRDS',
        'reconnect_delay_s': 2.0,
    },
    'datasets': {
        'primary_url': 'https://maps.fmdx.org/api/',
        'fallback_file': None,
        'timeout_s': 30.0,
    },
    'logos': {
        'directory': None,
        'local_url_prefix': '/logos/',
        'remote_base_url': 'https://tef.noobish.eu/logos/',
        'default_logo': 'https://tef.noobish.eu/logos/default-logo.png',
        'brand_word': 'RADIO',
        'default_country': '',
        'id_map_url': None,
    },
    'output': {
        'health_port': 0,
    },
    'finder': {},
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from TOML file, filling missing sections with defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            loaded = toml.load(f)
        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values
    return config
