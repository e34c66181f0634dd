#!/usr/bin/env python3
"""
Telemetry Monitor - Tuning Stability State Machine

Decides when the tuner has settled on a frequency long enough, with enough
signal, to be worth identifying, and then keeps the candidate list fresh.

States:
    ┌──────┐  sample >= threshold-3dB   ┌──────────────┐  window mean >= threshold
    │ IDLE │ ─────────────────────────▶ │ ACCUMULATING │ ─────────────────────────┐
    └──────┘ ◀───────────────────────── └──────────────┘                          ▼
        ▲      weak sample / weak mean                                   ┌──────────────┐
        └────────────────────────────────────────────────────────────────│ FIXED_ACTIVE │
                 frequency / identifier / antenna change                 └──────────────┘

Once FIXED_ACTIVE the monitor searches and pushes immediately, then every
REBROADCAST_INTERVAL_S seconds until cancelled.

Cancellation:
    Every cancellation bumps MonitorState.generation. Each search captures a
    CancellationToken at dispatch; a result whose generation is stale is
    dropped without being published. Dispatched lookups are never aborted.

Transmitter info:
    Frames that carry authoritative transmitter info with a known identifier
    bypass the state machine and are published directly, rate-limited by a
    leading-edge throttle.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..config import FinderConfig
from ..interfaces.station_models import CandidateResult, TelemetryEvent
from .scheduler import CancellationToken, LeadingThrottle, OneShotTimer, PeriodicTimer

logger = logging.getLogger(__name__)

Publisher = Callable[[Optional[float], Optional[str], List[CandidateResult]], None]


class MonitorPhase(Enum):
    """Stability state machine phase."""
    IDLE = "IDLE"                     # Nothing pending
    ACCUMULATING = "ACCUMULATING"     # Averaging signal over the stable window
    FIXED_ACTIVE = "FIXED_ACTIVE"     # Committed; broadcasting periodically


@dataclass
class MonitorState:
    """Mutable monitor state. Touched only by the monitor and its timers."""
    last_frequency: Optional[float] = None

    pending_frequency: Optional[float] = None
    pending_identifier: Optional[str] = None
    pending_antenna: Optional[int] = None

    signal_sum: float = 0.0
    signal_count: int = 0
    window_start: Optional[float] = None

    phase: MonitorPhase = MonitorPhase.IDLE
    active_frequency: Optional[float] = None
    active_identifier: Optional[str] = None
    active_antenna: Optional[int] = None

    generation: int = 0
    last_broadcast_at: float = 0.0
    broadcast_count: int = 0
    fixation_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.phase == MonitorPhase.FIXED_ACTIVE

    @property
    def window_mean(self) -> Optional[float]:
        if not self.signal_count:
            return None
        return self.signal_sum / self.signal_count

    def reset_accumulator(self):
        self.signal_sum = 0.0
        self.signal_count = 0
        self.window_start = None

    def clear_pending(self):
        self.pending_frequency = None
        self.pending_identifier = None
        self.pending_antenna = None

    def clear_active(self):
        self.active_frequency = None
        self.active_identifier = None
        self.active_antenna = None

    def to_status(self) -> dict:
        return {
            'phase': self.phase.value,
            'last_frequency': self.last_frequency,
            'pending_frequency': self.pending_frequency,
            'active_frequency': self.active_frequency,
            'active_identifier': self.active_identifier,
            'active_antenna': self.active_antenna,
            'window_samples': self.signal_count,
            'window_mean_dbuv': self.window_mean,
            'generation': self.generation,
            'last_broadcast_at': self.last_broadcast_at,
            'broadcast_count': self.broadcast_count,
            'fixation_count': self.fixation_count,
        }


class TelemetryMonitor:
    """
    Consumes TelemetryEvents and drives candidate searches.

    Args:
        resolver: object with ``async resolve(frequency, identifier, antenna, token)``
        publish: called with (frequency, identifier, candidates); an empty
            list clears the subscriber display
        config: callable returning the current FinderConfig
        scheduler: LoopScheduler or ManualScheduler
        state: injected MonitorState (a fresh one by default)
    """

    THRESHOLD_TOLERANCE_DB = 3.0
    REBROADCAST_INTERVAL_S = 3.0
    TRANSMITTER_THROTTLE_S = 0.25

    def __init__(
        self,
        resolver,
        publish: Publisher,
        config: Callable[[], FinderConfig],
        scheduler,
        state: Optional[MonitorState] = None,
    ):
        self.resolver = resolver
        self.publish = publish
        self.config = config
        self.scheduler = scheduler
        self.state = state or MonitorState()

        self._stability_timer = OneShotTimer(scheduler, 0.0, self._on_window_elapsed)
        self._rebroadcast_timer = PeriodicTimer(scheduler, self.REBROADCAST_INTERVAL_S, self._dispatch_broadcast)
        self._throttled_transmitter = LeadingThrottle(
            self._publish_transmitter, self.TRANSMITTER_THROTTLE_S, scheduler.now
        )
        self._inflight = None

        self.stats = {
            'events': 0,
            'transmitter_pushes': 0,
            'dropped_weak': 0,
            'stale_results': 0,
            'search_errors': 0,
        }

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, event: TelemetryEvent):
        """Process one telemetry frame."""
        state = self.state
        config = self.config()
        self.stats['events'] += 1

        if event.frequency != state.last_frequency:
            state.last_frequency = event.frequency
            self._reset_for_new_frequency(event.frequency)

        if event.transmitter is not None and event.identifier:
            if self._throttled_transmitter(event):
                self.stats['transmitter_pushes'] += 1
            return

        threshold = config.threshold_for(event.frequency)
        signal = event.signal_dbuv

        if state.is_active:
            if event.antenna != state.active_antenna:
                logger.info(f"Antenna changed {state.active_antenna} -> {event.antenna}, cancelling fixation")
                self._cancel()
                state.reset_accumulator()
                self.publish(event.frequency, None, [])
            elif event.identifier != state.active_identifier:
                logger.info(f"Identifier changed {state.active_identifier} -> {event.identifier}, cancelling fixation")
                self._cancel()
                state.reset_accumulator()
            else:
                return

        if signal < threshold - self.THRESHOLD_TOLERANCE_DB:
            if state.phase == MonitorPhase.ACCUMULATING:
                logger.debug(f"{event.frequency}: weak sample {signal:.1f} dBuV, window reset")
            self.stats['dropped_weak'] += 1
            self._stability_timer.cancel()
            state.reset_accumulator()
            state.clear_pending()
            state.phase = MonitorPhase.IDLE
            return

        if (event.frequency != state.pending_frequency
                or event.identifier != state.pending_identifier
                or event.antenna != state.pending_antenna):
            self._stability_timer.cancel()
            state.reset_accumulator()
            state.pending_frequency = event.frequency
            state.pending_identifier = event.identifier
            state.pending_antenna = event.antenna

        now = self.scheduler.now()
        if state.window_start is None:
            state.window_start = now
            state.phase = MonitorPhase.ACCUMULATING
            self._stability_timer.start(config.stable_time_s)

        state.signal_sum += signal
        state.signal_count += 1

        if now - state.window_start >= config.stable_time_s:
            self._complete_window()

    def stop(self):
        """Cancel everything without notifying subscribers."""
        self._cancel()
        self._throttled_transmitter.reset()
        self.state.reset_accumulator()
        self.state.clear_pending()

    async def wait_idle(self):
        """Wait for dispatched searches to settle."""
        await self.scheduler.wait_idle()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _reset_for_new_frequency(self, frequency: Optional[float]):
        logger.debug(f"Frequency change to {frequency}, resetting monitor")
        self._cancel()
        self._throttled_transmitter.reset()
        self.state.reset_accumulator()
        self.state.clear_pending()
        self.publish(None, None, [])

    def _cancel(self):
        state = self.state
        state.generation += 1
        self._stability_timer.cancel()
        self._rebroadcast_timer.cancel()
        self._inflight = None
        state.phase = MonitorPhase.IDLE
        state.clear_active()
        state.last_broadcast_at = 0.0

    def _on_window_elapsed(self):
        if self.state.phase == MonitorPhase.ACCUMULATING and self.state.signal_count:
            self._complete_window()

    def _complete_window(self):
        state = self.state
        self._stability_timer.cancel()
        mean = state.window_mean
        threshold = self.config().threshold_for(state.pending_frequency)

        if mean is None or mean < threshold:
            logger.debug(f"{state.pending_frequency}: window mean {mean} below {threshold}, staying idle")
            state.reset_accumulator()
            state.phase = MonitorPhase.IDLE
            return

        self._fix(state.pending_frequency, state.pending_identifier, state.pending_antenna, mean)

    def _fix(self, frequency, identifier, antenna, mean: float):
        state = self.state
        state.phase = MonitorPhase.FIXED_ACTIVE
        state.active_frequency = frequency
        state.active_identifier = identifier
        state.active_antenna = antenna
        state.fixation_count += 1
        state.reset_accumulator()

        logger.info(f"Fixed on {frequency} MHz (pi={identifier or '-'}, ant={antenna}, mean={mean:.1f} dBuV)")

        self._dispatch_broadcast()
        self._rebroadcast_timer.start()

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    def _dispatch_broadcast(self):
        state = self.state
        if not state.is_active or state.active_frequency is None:
            return
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Previous search still running, skipping rebroadcast tick")
            return

        token = CancellationToken(lambda: self.state.generation)
        self._inflight = self.scheduler.spawn(self._broadcast_once(
            token, state.active_frequency, state.active_identifier, state.active_antenna
        ))

    async def _broadcast_once(self, token: CancellationToken, frequency, identifier, antenna):
        try:
            candidates = await self.resolver.resolve(frequency, identifier, antenna, token=token)
        except Exception as e:
            self.stats['search_errors'] += 1
            logger.exception(f"Candidate search failed for {frequency}: {e}")
            return

        if token.cancelled:
            self.stats['stale_results'] += 1
            logger.debug(f"Dropping stale result for {frequency} (generation {token.generation})")
            return

        self.publish(frequency, identifier, candidates)
        self.state.last_broadcast_at = self.scheduler.now()
        self.state.broadcast_count += 1

    def _publish_transmitter(self, event: TelemetryEvent):
        candidate = CandidateResult.from_transmitter(event.frequency, event.transmitter)
        self.publish(event.frequency, event.identifier, [candidate])
