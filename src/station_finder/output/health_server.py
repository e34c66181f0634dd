"""
Health Monitoring HTTP Server for station-finder.

Provides a simple HTTP endpoint for monitoring the tuning monitor, dataset
caches and channels.

Endpoints:
    GET /health     - Basic health check (200 OK if running)
    GET /status     - JSON monitor status and counters
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from station_finder.output.health_server import HealthServer

    server = HealthServer(port=8090)
    server.set_service(station_finder_service)
    server.start()

The server runs in its own thread and only reads the status snapshot the
service publishes; it never touches monitor state directly.
"""

import json
import logging
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

PHASE_VALUES = {'IDLE': 1, 'ACCUMULATING': 2, 'FIXED_ACTIVE': 3}


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Class-level reference to status callback
    get_status: Optional[Callable[[], Dict[str, Any]]] = None

    def log_message(self, format, *args):
        """Suppress default HTTP logging."""
        pass

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.end_headers()
        self.wfile.write(b'OK\n')

    def _handle_status(self):
        """Return JSON status of the monitor."""
        if self.get_status:
            try:
                status = self.get_status()
                self._send(200, 'application/json', json.dumps(status, indent=2))
            except Exception as e:
                self._send(500, 'application/json', json.dumps({'error': str(e)}))
        else:
            self._send(503, 'application/json', json.dumps({'error': 'No service connected'}))

    def _handle_metrics(self):
        """Return Prometheus-compatible metrics."""
        if self.get_status:
            try:
                metrics = self._format_prometheus_metrics(self.get_status())
                self._send(200, 'text/plain; version=0.0.4', metrics)
            except Exception as e:
                self._send(500, 'text/plain', f'# Error: {e}\n')
        else:
            self._send(503, 'text/plain', '# No service connected\n')

    def _send(self, code: int, content_type: str, body: str):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.end_headers()
        self.wfile.write(body.encode())

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        monitor = status.get('monitor', {})
        counters = status.get('counters', {})
        lines = [
            '# HELP station_finder_phase Monitor phase (1=IDLE, 2=ACCUMULATING, 3=FIXED_ACTIVE)',
            '# TYPE station_finder_phase gauge',
            f'station_finder_phase {PHASE_VALUES.get(monitor.get("phase", "IDLE"), 0)}',
            '',
            '# HELP station_finder_generation Cancellation generation counter',
            '# TYPE station_finder_generation counter',
            f'station_finder_generation {monitor.get("generation", 0)}',
            '',
            '# HELP station_finder_broadcasts_total Candidate lists pushed after fixation',
            '# TYPE station_finder_broadcasts_total counter',
            f'station_finder_broadcasts_total {monitor.get("broadcast_count", 0)}',
            '',
            '# HELP station_finder_fixations_total Transitions into FIXED_ACTIVE',
            '# TYPE station_finder_fixations_total counter',
            f'station_finder_fixations_total {monitor.get("fixation_count", 0)}',
            '',
            '# HELP station_finder_dataset_locations Locations in the primary dataset cache',
            '# TYPE station_finder_dataset_locations gauge',
            f'station_finder_dataset_locations {status.get("dataset_locations", 0)}',
            '',
            '# HELP station_finder_uptime_seconds Service uptime in seconds',
            '# TYPE station_finder_uptime_seconds gauge',
            f'station_finder_uptime_seconds {status.get("uptime_seconds", 0):.1f}',
        ]

        if counters:
            lines.extend([
                '',
                '# HELP station_finder_events_total Service event counters',
                '# TYPE station_finder_events_total counter',
            ])
            for name, value in sorted(counters.items()):
                lines.append(f'station_finder_events_total{{kind="{name}"}} {value}')

        channels = status.get('channels', {})
        if channels:
            lines.extend([
                '',
                '# HELP station_finder_channel_connected Websocket channel connected (1) or not (0)',
                '# TYPE station_finder_channel_connected gauge',
            ])
            for name, connected in channels.items():
                lines.append(f'station_finder_channel_connected{{channel="{name}"}} {int(bool(connected))}')

        lines.append('')
        return '\n'.join(lines)


class HealthServer:
    """
    HTTP server for health monitoring.

    Runs in a background thread and provides endpoints for monitoring
    the station-finder service.
    """

    def __init__(self, port: int = 8090, bind_address: str = '127.0.0.1'):
        """
        Initialize the health server.

        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: loopback only)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.service = None
        self._running = False

    def set_service(self, service):
        """
        Connect to a StationFinderService for status reporting.

        Args:
            service: object exposing ``status_snapshot() -> dict``
        """
        self.service = service
        HealthRequestHandler.get_status = self._get_status

    def _get_status(self) -> Dict[str, Any]:
        if not self.service:
            return {'error': 'No service connected'}
        return self.service.status_snapshot()

    def start(self):
        """Start the health server in a background thread."""
        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self.server = HTTPServer(
                (self.bind_address, self.port),
                HealthRequestHandler
            )
            # Set timeout so handle_request doesn't block forever
            self.server.timeout = 1.0
            self._running = True

            self.thread = threading.Thread(
                target=self._serve,
                name="HealthServer",
                daemon=True
            )
            self.thread.start()

            logger.info(f"Health server started on http://{self.bind_address}:{self.port}")
            logger.info(f"  GET /health  - Health check")
            logger.info(f"  GET /status  - JSON status")
            logger.info(f"  GET /metrics - Prometheus metrics")

        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            self._running = False

    def _serve(self):
        """Server loop (runs in background thread)."""
        while self._running:
            try:
                self.server.handle_request()
            except Exception:
                pass  # Timeout or shutdown

    def stop(self):
        """Stop the health server."""
        self._running = False
        if self.server:
            try:
                self.server.server_close()
            except OSError:
                pass
            self.server = None
        if self.thread:
            self.thread.join(timeout=2.0)
        logger.info("Health server stopped")
