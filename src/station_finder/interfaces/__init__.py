"""Typed data contracts shared by every station-finder module."""

from .station_models import (
    CandidateResult,
    Location,
    StationRecord,
    TelemetryEvent,
    TransmitterInfo,
    UserStation,
)

__all__ = ['CandidateResult', 'Location', 'StationRecord', 'TelemetryEvent', 'TransmitterInfo', 'UserStation']
