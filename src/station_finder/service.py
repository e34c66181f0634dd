"""
station-finder service wiring.

Runs inside the tuner web server's process tree as an embedded service:

    ┌───────────────────────────────────────────────────────────────────┐
    │                         station-finder                            │
    │                                                                   │
    │  /text ws ──▶ TelemetryMonitor ──▶ CandidateResolver ──▶ Logos   │
    │                     │                      │                      │
    │                     ▼                      ▼                      │
    │             BroadcastProtocol ◀──── DatasetCache (refresh loop)   │
    │                     │                                             │
    │                     ▼                                             │
    │             /data_plugins ws  ──▶  presentation layer             │
    └───────────────────────────────────────────────────────────────────┘

Usage:
    from station_finder.service import run_service
    run_service('/etc/station-finder/config.toml')
"""

import asyncio
import json
import logging
import signal
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .config import ConfigStore, load_config
from .engine.scheduler import LoopScheduler
from .engine.telemetry_monitor import TelemetryMonitor
from .geo.geomath import grid_to_latlon
from .interfaces.station_models import TelemetryEvent
from .logos.catalogs import IdLogoMap, LocalLogoCatalog, RemoteLogoCatalog
from .logos.logo_resolver import DEFAULT_LOGO_URL, LogoResolver
from .output.broadcast import BroadcastProtocol
from .output.channel import ReconnectingChannel
from .search.candidate_resolver import CandidateResolver
from .search.datasets import DatasetCache, FileDatasetProvider, HttpDatasetProvider

logger = logging.getLogger('station-finder')

DATASET_CHECK_INTERVAL_S = 60.0
STATUS_INTERVAL_S = 1.0


def setup_logging(level: int = logging.INFO):
    """Configure root logging the same way for every entry path."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def receiver_coordinate(receiver: Dict[str, Any]) -> Tuple[float, float]:
    """
    Receiver position from [receiver]: latitude/longitude, else grid_square.

    Raises:
        ValueError: neither form is configured
    """
    lat = receiver.get('latitude')
    lon = receiver.get('longitude')
    if lat is not None and lon is not None:
        return float(lat), float(lon)
    grid = receiver.get('grid_square')
    if grid:
        return grid_to_latlon(grid)
    raise ValueError("receiver location missing: set [receiver] latitude/longitude or grid_square")


class StationFinderService:
    """
    Owns every component and the background loops.

    One instance per process; all components share its event loop.
    """

    def __init__(self, config: Dict[str, Any], config_path: Optional[str] = None):
        self.config = config
        self.receiver = receiver_coordinate(config.get('receiver', {}))

        self.config_store = ConfigStore(config_path if config_path else config.get('finder', {}))
        self.scheduler = LoopScheduler()

        server_cfg = config.get('server', {})
        datasets_cfg = config.get('datasets', {})
        logos_cfg = config.get('logos', {})

        fallback_file = datasets_cfg.get('fallback_file')
        self.datasets = DatasetCache(
            receiver=self.receiver,
            primary=HttpDatasetProvider(datasets_cfg.get('primary_url'), datasets_cfg.get('timeout_s', 30.0))
            if datasets_cfg.get('primary_url') else None,
            fallback=FileDatasetProvider(Path(fallback_file)) if fallback_file else None,
        )

        brand_word = logos_cfg.get('brand_word', 'RADIO')
        local_dir = logos_cfg.get('directory')
        self.id_map = IdLogoMap(logos_cfg.get('id_map_url'))
        remote_base = logos_cfg.get('remote_base_url')
        self.logos = LogoResolver(
            local=LocalLogoCatalog.from_directory(
                Path(local_dir) if local_dir else None,
                brand_word=brand_word,
                url_prefix=logos_cfg.get('local_url_prefix', '/logos/'),
            ),
            remote=RemoteLogoCatalog(remote_base) if remote_base else None,
            id_map=self.id_map,
            default_logo=logos_cfg.get('default_logo', DEFAULT_LOGO_URL),
            brand_word=brand_word,
            default_country=logos_cfg.get('default_country', ''),
        )

        self.resolver = CandidateResolver(self.receiver, self.datasets, self.logos, self.config_store.snapshot)

        ws_base = server_cfg.get('websocket_base', 'ws://127.0.0.1:8080').rstrip('/')
        reconnect_delay = float(server_cfg.get('reconnect_delay_s', 2.0))
        self.plugin_channel = ReconnectingChannel(
            f"{ws_base}/data_plugins", self._on_plugin_message, reconnect_delay, name='data_plugins'
        )
        self.telemetry_channel = ReconnectingChannel(
            f"{ws_base}/text", self._on_telemetry_message, reconnect_delay, name='text'
        )

        self.protocol = BroadcastProtocol(
            send=self.plugin_channel.send,
            resolver=self.resolver,
            config=self.config_store.snapshot,
            plugin_name=server_cfg.get('plugin_name', 'StationsWithoutRDS'),
        )
        self.monitor = TelemetryMonitor(
            resolver=self.resolver,
            publish=self.protocol.push_find,
            config=self.config_store.snapshot,
            scheduler=self.scheduler,
        )

        self.health_server = None
        health_port = int(config.get('output', {}).get('health_port', 0) or 0)
        if health_port > 0:
            from .output.health_server import HealthServer
            self.health_server = HealthServer(port=health_port)
            self.health_server.set_service(self)

        self.running = False
        self.start_time = 0.0
        self.counters = {'telemetry_frames': 0, 'telemetry_rejected': 0}
        self._status: Dict[str, Any] = {}
        self._tasks = []

        logger.info("=" * 60)
        logger.info("station-finder initializing")
        logger.info(f"  Receiver: {self.receiver[0]:.4f}, {self.receiver[1]:.4f}")
        logger.info(f"  Channel base: {ws_base}")
        logger.info(f"  Primary dataset: {datasets_cfg.get('primary_url') or 'none'}")
        logger.info(f"  Fallback dataset: {fallback_file or 'none'}")
        logger.info(f"  Local logos: {len(self.logos.local)}")
        logger.info(f"  Health port: {health_port or 'disabled'}")
        logger.info("=" * 60)

    # ------------------------------------------------------------------
    # Channel handlers
    # ------------------------------------------------------------------

    def _on_telemetry_message(self, data: str):
        self.counters['telemetry_frames'] += 1
        try:
            event = TelemetryEvent.from_message(json.loads(data))
        except ValueError as e:
            self.counters['telemetry_rejected'] += 1
            logger.debug(f"Dropping telemetry frame: {e}")
            return
        self.monitor.handle_event(event)

    def _on_plugin_message(self, data: str):
        # Requests may hit the network for logos; don't stall the reader
        self.scheduler.spawn(self.protocol.handle_message(data))

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def _dataset_refresh_loop(self):
        while self.running:
            interval_hours = self.config_store.snapshot().refresh_interval_hours
            if self.datasets.refresh_due(interval_hours):
                await self.datasets.refresh()
                await self.id_map.refresh()
            await asyncio.sleep(DATASET_CHECK_INTERVAL_S)

    async def _status_loop(self):
        while self.running:
            self._status = self._build_status()
            await asyncio.sleep(STATUS_INTERVAL_S)

    def _build_status(self) -> Dict[str, Any]:
        counters = dict(self.counters)
        counters.update(self.monitor.stats)
        counters.update({f"protocol_{k}": v for k, v in self.protocol.stats.items()})
        return {
            'timestamp': time.time(),
            'uptime_seconds': time.time() - self.start_time if self.start_time else 0.0,
            'monitor': self.monitor.state.to_status(),
            'dataset_locations': len(self.datasets.primary),
            'fallback_locations': len(self.datasets.fallback),
            'dataset_loaded_at': self.datasets.last_load_ts,
            'logo_countries_cached': self.logos.remote.cached_countries() if self.logos.remote else [],
            'counters': counters,
            'channels': {
                'text': self.telemetry_channel.connected,
                'data_plugins': self.plugin_channel.connected,
            },
        }

    def status_snapshot(self) -> Dict[str, Any]:
        """Last published status (safe to call from the health thread)."""
        return dict(self._status)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self):
        """Run until stop() is called."""
        logger.info("Starting station-finder")
        self.running = True
        self.start_time = time.time()
        self._status = self._build_status()

        if self.health_server:
            self.health_server.start()

        signals = self._install_signal_handlers()

        self._tasks = [
            asyncio.ensure_future(self._dataset_refresh_loop()),
            asyncio.ensure_future(self._status_loop()),
            asyncio.ensure_future(self.plugin_channel.run()),
            asyncio.ensure_future(self.telemetry_channel.run()),
        ]
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass
        finally:
            # Let channel tasks close their sessions before the loop goes away
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._remove_signal_handlers(signals)
            self._cleanup()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Cannot handle {sig.name} on this loop: {e}")
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, signals):
        loop = asyncio.get_running_loop()
        for sig in signals:
            loop.remove_signal_handler(sig)

    def _signal_handler(self, sig):
        logger.info(f"Received signal {sig.name}")
        self.stop()

    def stop(self):
        logger.info("Stopping station-finder...")
        self.running = False
        self.monitor.stop()
        self.plugin_channel.stop()
        self.telemetry_channel.stop()
        for task in self._tasks:
            task.cancel()

    def _cleanup(self):
        if self.health_server:
            self.health_server.stop()
        logger.info(f"Monitor fixations: {self.monitor.state.fixation_count}, "
                    f"broadcasts: {self.monitor.state.broadcast_count}")
        logger.info("station-finder stopped")


def run_service(config_path: Optional[str] = None, level: int = logging.INFO):
    """Load configuration and run the service until interrupted."""
    setup_logging(level)
    config = load_config(config_path)
    service = StationFinderService(config, config_path=config_path)
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
