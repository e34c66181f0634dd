"""
Station Finder Data Models

These dataclasses define the contract between station-finder, its upstream
tuner telemetry and the presentation layer. Inbound JSON (telemetry frames,
dataset payloads, user station lists) is validated here; everything past this
module works with typed objects only.

Wire keys follow the presentation layer's protocol:
    freq, station, location, itu, distance, azimuth, pi, pol, erp,
    logoUrl, isServer
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Placeholder character the tuner uses for undecoded identifier digits
IDENTIFIER_PLACEHOLDER = "?"

# Fixed offset between the tuner's raw signal units and dBuV
SIGNAL_CALIBRATION_DB = -11.25


def _as_float(value: Any, name: str) -> float:
    """Coerce a JSON number or numeric string, rejecting anything else."""
    if isinstance(value, bool):
        raise ValueError(f"{name}: boolean is not a number")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            raise ValueError(f"{name}: not a number: {value!r}") from None
    else:
        raise ValueError(f"{name}: expected number, got {type(value).__name__}")
    if not math.isfinite(result):
        raise ValueError(f"{name}: not finite")
    return result


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    return _as_float(value, name)


def _lenient_float(value: Any) -> Optional[float]:
    """Like _optional_float, but an unparsable value is just unknown."""
    try:
        return _optional_float(value, "")
    except ValueError:
        return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class TransmitterInfo:
    """
    Authoritative transmitter description supplied by the tuner itself.

    When present with an identifier, it replaces the dataset search entirely.
    """
    name: str
    location: str = ""
    country_code: str = ""
    distance_km: Optional[float] = None
    azimuth_deg: Optional[float] = None
    polarization: str = ""
    power: Optional[Any] = None
    identifier: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TransmitterInfo"]:
        """Build from a ``txInfo`` object; None when no transmitter is named."""
        if not isinstance(data, dict):
            return None
        name = _as_text(data.get("tx")).strip()
        if not name:
            return None
        return cls(
            name=name,
            location=_as_text(data.get("city")),
            country_code=_as_text(data.get("itu")).upper(),
            distance_km=_lenient_float(data.get("dist")),
            azimuth_deg=_lenient_float(data.get("azi")),
            polarization=_as_text(data.get("pol")),
            power=data.get("erp"),
            identifier=_as_text(data.get("pi")),
        )


@dataclass
class TelemetryEvent:
    """One telemetry frame from the tuner."""
    frequency: float                     # MHz
    signal_level: float                  # Raw tuner units (see SIGNAL_CALIBRATION_DB)
    identifier: Optional[str] = None     # None when unknown or partially decoded
    antenna: int = 0
    transmitter: Optional[TransmitterInfo] = None

    @property
    def signal_dbuv(self) -> float:
        """Signal level after the fixed calibration offset."""
        return self.signal_level + SIGNAL_CALIBRATION_DB

    @classmethod
    def from_message(cls, data: Any) -> "TelemetryEvent":
        """
        Parse a decoded ``/text`` frame.

        Missing signal defaults to 0 and missing antenna to 0. A PI code that
        carries the placeholder character, or an empty PS name, marks the
        identifier as unknown.

        Raises:
            ValueError: frame is not an object or the frequency is unusable
        """
        if not isinstance(data, dict):
            raise ValueError("telemetry frame must be an object")

        frequency = _as_float(data.get("freq"), "freq")
        if frequency <= 0:
            raise ValueError(f"freq: must be positive, got {frequency}")

        signal_raw = data.get("sig")
        signal_level = 0.0 if signal_raw is None else _as_float(signal_raw, "sig")

        ant_raw = data.get("ant")
        antenna = 0 if ant_raw in (None, "") else int(_as_float(ant_raw, "ant"))

        pi = _as_text(data.get("pi")).strip()
        if not pi or IDENTIFIER_PLACEHOLDER in pi or data.get("ps") == "":
            identifier = None
        else:
            identifier = pi

        return cls(
            frequency=frequency,
            signal_level=signal_level,
            identifier=identifier,
            antenna=antenna,
            transmitter=TransmitterInfo.from_dict(data.get("txInfo")),
        )


@dataclass
class StationRecord:
    """One transmitter entry of a geo dataset."""
    frequency: Optional[float]
    name: str = "Unknown"
    identifier: str = ""
    polarization: str = ""
    power: Optional[Any] = None
    inactive: bool = False
    catalog_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StationRecord":
        catalog_id = data.get("id")
        return cls(
            frequency=_optional_float(data.get("freq"), "station.freq"),
            name=_as_text(data.get("station")) or "Unknown",
            identifier=_as_text(data.get("pi")),
            polarization=_as_text(data.get("pol")),
            power=data.get("erp"),
            inactive=bool(data.get("inactive", False)),
            catalog_id=None if catalog_id in (None, "") else str(catalog_id),
        )


@dataclass
class Location:
    """A transmitter site grouping one or more stations."""
    name: str
    country_code: str
    latitude: float
    longitude: float
    stations: List[StationRecord] = field(default_factory=list)

    @property
    def coordinate(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        """
        Raises:
            ValueError: coordinate missing or not numeric
        """
        stations = []
        for raw in data.get("stations") or []:
            if not isinstance(raw, dict):
                continue
            try:
                stations.append(StationRecord.from_dict(raw))
            except ValueError:
                continue
        return cls(
            name=_as_text(data.get("name")),
            country_code=_as_text(data.get("itu")).upper(),
            latitude=_as_float(data.get("lat"), "location.lat"),
            longitude=_as_float(data.get("lon"), "location.lon"),
            stations=stations,
        )


@dataclass
class UserStation:
    """
    Hand-curated station from the user's list.

    Distance, azimuth and logo are trusted as given. ``antenna`` restricts the
    record to one antenna input when set.
    """
    frequency: Optional[float]
    name: str = "Unknown"
    location: str = ""
    country_code: str = ""
    distance_km: float = 0.0
    azimuth_deg: float = 0.0
    identifier: str = ""
    polarization: str = ""
    power: Optional[Any] = None
    logo_url: Optional[str] = None
    antenna: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserStation":
        """
        Raises:
            ValueError: a numeric field holds a non-numeric value
        """
        if not isinstance(data, dict):
            raise ValueError("user station must be a table")
        antenna = None
        if "antenna" in data:
            ant_raw = data.get("antenna")
            antenna = 0 if ant_raw in (None, "") else int(_as_float(ant_raw, "user_station.antenna"))
        return cls(
            frequency=_optional_float(data.get("freq"), "user_station.freq"),
            name=_as_text(data.get("station")) or "Unknown",
            location=_as_text(data.get("location")),
            country_code=_as_text(data.get("itu")).upper(),
            distance_km=_optional_float(data.get("distance"), "user_station.distance") or 0.0,
            azimuth_deg=_optional_float(data.get("azimuth"), "user_station.azimuth") or 0.0,
            identifier=_as_text(data.get("pi")),
            polarization=_as_text(data.get("pol")),
            power=data.get("erp"),
            logo_url=data.get("logoUrl") or data.get("logo_url") or None,
            antenna=antenna,
        )


@dataclass
class CandidateResult:
    """A ranked candidate station pushed to the presentation layer."""
    frequency: Optional[float]
    station: str
    location: str = ""
    country_code: str = ""
    distance_km: Optional[float] = None
    azimuth_deg: Optional[float] = None
    identifier: str = ""
    polarization: str = ""
    power: Optional[Any] = None
    logo_url: Optional[str] = None
    is_server_announced: bool = False
    catalog_id: Optional[str] = None     # Not serialised; used for logo lookup

    def to_dict(self) -> dict:
        result = {
            "freq": self.frequency,
            "station": self.station,
            "location": self.location,
            "itu": self.country_code,
            "distance": self.distance_km,
            "azimuth": self.azimuth_deg,
            "pi": self.identifier,
            "pol": self.polarization,
            "erp": self.power,
            "logoUrl": self.logo_url,
        }
        if self.is_server_announced:
            result["isServer"] = True
        return result

    @classmethod
    def from_transmitter(cls, frequency: float, info: TransmitterInfo) -> "CandidateResult":
        return cls(
            frequency=frequency,
            station=info.name,
            location=info.location,
            country_code=info.country_code,
            distance_km=info.distance_km,
            azimuth_deg=info.azimuth_deg,
            identifier=info.identifier,
            polarization=info.polarization,
            power=info.power,
            logo_url=None,
            is_server_announced=True,
        )
