"""
station-finder: Candidate identification for FM stations without RDS

This package runs beside a networked FM tuner. It watches the tuner's
telemetry feed, waits until the tuning has settled with usable signal, and
pushes a ranked list of likely transmitters (with logos) to every subscriber
of the shared plugin channel.

Architecture:
    tuner (/text ws) → station-finder → plugin channel (/data_plugins ws)

Candidates come from a geo-indexed transmitter dataset around the receiver,
a hand-curated user list, or both. The service never decodes RDS itself.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.station_models import (
    TelemetryEvent,
    TransmitterInfo,
    StationRecord,
    Location,
    UserStation,
    CandidateResult,
)

__all__ = [
    "TelemetryEvent",
    "TransmitterInfo",
    "StationRecord",
    "Location",
    "UserStation",
    "CandidateResult",
    "__version__",
]
