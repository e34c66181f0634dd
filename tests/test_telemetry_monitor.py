"""
Unit tests for the tuning stability state machine.

Scenarios are replayed on a ManualScheduler so timer firing is deterministic;
spawned searches run on the real loop and are awaited with wait_idle().

Signal levels: the tuner reports raw units, 11.25 above dBuV. With the default
threshold of 10 dBuV, raw 30 is strong, raw 19.25 is inside the 3 dB tolerance
band and raw 15 is weak.
"""

import asyncio
import pytest

STRONG = 30.0
MARGINAL = 19.25
WEAK = 15.0


def event(freq=101.0, sig=STRONG, pi=None, ant=0, tx=None):
    from station_finder.interfaces.station_models import TelemetryEvent
    
    message = {'freq': freq, 'sig': sig, 'ant': ant}
    if pi is not None:
        message['pi'] = pi
        message['ps'] = 'TEST'
    if tx is not None:
        message['txInfo'] = tx
    return TelemetryEvent.from_message(message)


class FakeResolver:
    """Records lookups; optionally blocks each one until released."""
    
    def __init__(self, results=None, blocking=False):
        self.results = results if results is not None else ['candidate']
        self.blocking = blocking
        self.calls = []
        self.gate = None
    
    async def resolve(self, frequency, identifier=None, antenna=None, token=None):
        self.calls.append((frequency, identifier, antenna))
        if self.blocking:
            if self.gate is None:
                self.gate = asyncio.Event()
            await self.gate.wait()
        return list(self.results)


class Harness:
    """Monitor wired to a manual clock and a publish recorder."""
    
    def __init__(self, resolver=None, finder=None):
        from station_finder.config import FinderConfig
        from station_finder.engine.scheduler import ManualScheduler
        from station_finder.engine.telemetry_monitor import TelemetryMonitor
        
        self.resolver = resolver or FakeResolver()
        self.sched = ManualScheduler()
        self.published = []
        config = FinderConfig.from_dict(finder or {})
        self.monitor = TelemetryMonitor(
            self.resolver,
            lambda freq, pi, candidates: self.published.append((freq, pi, list(candidates))),
            lambda: config,
            self.sched,
        )
    
    @property
    def broadcasts(self):
        return [p for p in self.published if p[2]]
    
    def feed(self, *events, every=0.0):
        for e in events:
            self.monitor.handle_event(e)
            if every:
                self.sched.advance(every)


class TestStabilityWindow:
    """Test accumulation and fixation."""
    
    def test_single_fixation_after_stable_window(self):
        async def scenario():
            h = Harness()
            h.feed(event(), event(), event(), every=1.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        
        assert h.published[0] == (None, None, [])
        assert h.broadcasts == [(101.0, None, ['candidate'])]
        assert h.monitor.state.is_active
        assert h.monitor.state.fixation_count == 1
        assert h.resolver.calls == [(101.0, None, 0)]
    
    def test_timer_completes_window_without_more_samples(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert len(h.broadcasts) == 1
    
    def test_not_fixed_before_window(self):
        async def scenario():
            h = Harness()
            h.feed(event(), event(), every=1.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.broadcasts == []
        assert h.monitor.state.phase.value == 'ACCUMULATING'
    
    def test_weak_sample_resets_window(self):
        async def scenario():
            h = Harness()
            h.feed(event(), event(sig=WEAK), every=1.0)
            h.sched.advance(10.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.broadcasts == []
        assert h.monitor.state.phase.value == 'IDLE'
        assert h.monitor.stats['dropped_weak'] == 1
    
    def test_marginal_mean_does_not_fix(self):
        """Samples inside the tolerance band accumulate but the mean is too low."""
        async def scenario():
            h = Harness()
            h.feed(event(sig=MARGINAL), event(sig=MARGINAL), every=1.0)
            h.sched.advance(5.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.broadcasts == []
        assert h.monitor.state.phase.value == 'IDLE'
    
    def test_identifier_change_restarts_window(self):
        async def scenario():
            h = Harness()
            h.feed(event(), every=2.0)
            h.feed(event(pi='7201'))
            h.sched.advance(1.5)
            before = list(h.broadcasts)
            h.sched.advance(2.0)
            await h.monitor.wait_idle()
            return h, before
        
        h, before = asyncio.run(scenario())
        assert before == []
        assert h.broadcasts == [(101.0, '7201', ['candidate'])]
    
    def test_per_frequency_threshold(self):
        async def scenario():
            h = Harness(finder={'threshold_signals': {'101.0': 25}})
            h.feed(event(), event(), event(), every=1.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.broadcasts == []


class TestRebroadcast:
    """Test periodic refresh while fixed."""
    
    def test_rebroadcast_every_interval(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            for _ in range(2):
                h.sched.advance(3.0)
                await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert len(h.broadcasts) == 3
        assert h.monitor.state.broadcast_count == 3
    
    def test_same_identity_events_ignored_while_fixed(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            h.feed(event(), event(sig=WEAK))
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.monitor.state.is_active
        assert len(h.broadcasts) == 1
    
    def test_overlapping_tick_skipped(self):
        async def scenario():
            resolver = FakeResolver(blocking=True)
            h = Harness(resolver)
            h.feed(event())
            h.sched.advance(3.0)
            await asyncio.sleep(0)
            h.sched.advance(3.0)
            resolver.gate.set()
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert len(h.resolver.calls) == 1
        assert len(h.broadcasts) == 1


class TestCancellation:
    """Test generation-based cancellation."""
    
    def test_frequency_change_drops_inflight_result(self):
        async def scenario():
            resolver = FakeResolver(blocking=True)
            h = Harness(resolver)
            h.feed(event())
            h.sched.advance(3.0)
            await asyncio.sleep(0)
            h.feed(event(freq=102.0))
            resolver.gate.set()
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.broadcasts == []
        assert h.published == [(None, None, []), (None, None, [])]
        assert h.monitor.state.broadcast_count == 0
        assert h.monitor.stats['stale_results'] == 1
        assert h.monitor.state.generation >= 2
    
    def test_antenna_change_clears_display(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            h.feed(event(ant=1))
            return h
        
        h = asyncio.run(scenario())
        assert h.published[-1] == (101.0, None, [])
        assert h.monitor.state.phase.value == 'ACCUMULATING'
        assert h.monitor.state.pending_antenna == 1
    
    def test_identifier_change_cancels_silently(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            count = len(h.published)
            h.feed(event(pi='7201'))
            return h, count
        
        h, count = asyncio.run(scenario())
        assert len(h.published) == count
        assert not h.monitor.state.is_active
        assert h.monitor.state.pending_identifier == '7201'
    
    def test_no_rebroadcast_after_cancel(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            h.feed(event(freq=102.0, sig=WEAK))
            h.sched.advance(30.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert len(h.broadcasts) == 1
        assert h.sched.pending_timers == 0
    
    def test_stop(self):
        async def scenario():
            h = Harness()
            h.feed(event())
            h.sched.advance(3.0)
            await h.monitor.wait_idle()
            h.monitor.stop()
            h.sched.advance(30.0)
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert len(h.broadcasts) == 1
        assert h.monitor.state.phase.value == 'IDLE'


class TestTransmitterInfo:
    """Frames with authoritative transmitter info bypass the state machine."""
    
    TX = {'tx': 'Radio Test', 'city': 'Moscow', 'itu': 'RUS', 'dist': 12, 'azi': 270, 'pi': '7201'}
    
    def test_throttled_direct_push(self):
        async def scenario():
            h = Harness()
            h.feed(event(pi='7201', tx=self.TX))
            h.sched.advance(0.1)
            h.feed(event(pi='7201', tx=self.TX))
            h.sched.advance(0.2)
            h.feed(event(pi='7201', tx=self.TX))
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        pushes = h.broadcasts
        assert len(pushes) == 2
        freq, pi, candidates = pushes[0]
        assert (freq, pi) == (101.0, '7201')
        assert candidates[0].is_server_announced
        assert candidates[0].to_dict()['isServer'] is True
        assert h.resolver.calls == []
    
    def test_without_identifier_uses_state_machine(self):
        async def scenario():
            h = Harness()
            h.feed(event(tx=self.TX))
            await h.monitor.wait_idle()
            return h
        
        h = asyncio.run(scenario())
        assert h.broadcasts == []
        assert h.monitor.state.phase.value == 'ACCUMULATING'


class TestEndToEnd:
    """Monitor, resolver, logos and protocol wired together."""
    
    def test_fixation_pushes_ranked_candidates(self, receiver_location, sample_payload):
        from station_finder.config import FinderConfig
        from station_finder.engine.scheduler import ManualScheduler
        from station_finder.engine.telemetry_monitor import TelemetryMonitor
        from station_finder.logos.logo_resolver import LogoResolver
        from station_finder.output.broadcast import BroadcastProtocol
        from station_finder.search.candidate_resolver import CandidateResolver
        from station_finder.search.datasets import DatasetCache, parse_locations
        
        receiver = (receiver_location['lat'], receiver_location['lon'])
        config = FinderConfig.from_dict({'max_distance_km': 100})
        datasets = DatasetCache(receiver)
        datasets.set_primary(parse_locations(sample_payload))
        resolver = CandidateResolver(receiver, datasets, LogoResolver(), lambda: config)
        sent = []
        protocol = BroadcastProtocol(sent.append, resolver, lambda: config, wall_clock=lambda: 1700000000.0)
        
        async def scenario():
            sched = ManualScheduler()
            monitor = TelemetryMonitor(resolver, protocol.push_find, lambda: config, sched)
            monitor.handle_event(event())
            sched.advance(3.0)
            await monitor.wait_idle()
        
        asyncio.run(scenario())
        
        assert sent[0]['value']['list'] == []
        push = sent[-1]
        assert push['type'] == 'StationsWithoutRDS'
        assert push['value']['action'] == 'find'
        assert push['value']['freq'] == 101.0
        assert push['value']['ts'] == 1700000000000
        station = push['value']['list'][0]
        assert station['station'] == 'Radio Test'
        assert station['distance'] == 8
        assert station['logoUrl'] == 'https://tef.noobish.eu/logos/default-logo.png'
