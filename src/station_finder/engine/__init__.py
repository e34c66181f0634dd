"""Tuning monitor - decides when and what to broadcast.

Contains:
- TelemetryMonitor: stability fixation state machine with periodic rebroadcast
- LoopScheduler / ManualScheduler: real and hand-driven clocks for its timers
"""

from .scheduler import LoopScheduler, ManualScheduler
from .telemetry_monitor import MonitorPhase, MonitorState, TelemetryMonitor

__all__ = ['TelemetryMonitor', 'MonitorState', 'MonitorPhase', 'LoopScheduler', 'ManualScheduler']
