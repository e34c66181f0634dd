"""
Broadcast protocol on the shared plugin channel.

Every frame is an envelope tagged with the plugin name:

    {"type": "StationsWithoutRDS", "value": {...}}

Exchanges:
    push       server -> all   {"action": "find", "freq", "pi", "ts", "list"}
    request    client -> srv   {"action": "find", "freq", "requestId"}
    response   srv -> all      {"requestId", "list"}
    config     client -> srv   {"action": "get_config"}
               srv -> all      {"action": "config", "thresholdSignal",
                                "stableTime" (ms), "maxDistanceKm"}

The channel is shared by every subscriber, so the server sees its own pushes
and other plugins' traffic; anything that is not a request addressed to us is
ignored. Duplicate requestIds inside the retention window get no reply.
"""

import json
import logging
import time
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from ..interfaces.station_models import CandidateResult

logger = logging.getLogger(__name__)

DEFAULT_PLUGIN_NAME = "StationsWithoutRDS"


def _decode(message: Any) -> Optional[dict]:
    if isinstance(message, (str, bytes, bytearray)):
        try:
            message = json.loads(message)
        except ValueError:
            return None
    return message if isinstance(message, dict) else None


class BroadcastProtocol:
    """Server side of the plugin channel."""

    REQUEST_RETENTION_S = 120.0

    def __init__(
        self,
        send: Callable[[Dict[str, Any]], Any],
        resolver=None,
        config: Optional[Callable[[], Any]] = None,
        plugin_name: str = DEFAULT_PLUGIN_NAME,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.send = send
        self.resolver = resolver
        self.config = config
        self.plugin_name = plugin_name
        self.clock = clock
        self.wall_clock = wall_clock
        self._seen_requests: "OrderedDict[str, float]" = OrderedDict()

        self.stats = {
            'pushes': 0,
            'responses': 0,
            'duplicate_requests': 0,
            'config_replies': 0,
            'ignored': 0,
        }

    def envelope(self, value: Dict[str, Any]) -> Dict[str, Any]:
        return {'type': self.plugin_name, 'value': value}

    def push_find(self, frequency, identifier: Optional[str], candidates: List[CandidateResult]):
        """Unsolicited push; an empty list clears the subscriber display."""
        self.send(self.envelope({
            'action': 'find',
            'freq': frequency,
            'pi': identifier or None,
            'ts': int(self.wall_clock() * 1000),
            'list': [c.to_dict() for c in candidates],
        }))
        self.stats['pushes'] += 1

    async def handle_message(self, message: Any) -> bool:
        """
        Handle one inbound channel frame.

        Returns:
            True if the frame was a request addressed to this plugin
        """
        data = _decode(message)
        if data is None:
            self.stats['ignored'] += 1
            logger.debug("Dropping unparsable channel frame")
            return False
        if data.get('type') != self.plugin_name:
            self.stats['ignored'] += 1
            return False

        value = data.get('value')
        if not isinstance(value, dict):
            self.stats['ignored'] += 1
            logger.debug(f"Dropping {self.plugin_name} frame without an object value")
            return False

        action = value.get('action')
        if action == 'get_config':
            self._reply_config()
            return True
        if action == 'find' and value.get('requestId'):
            await self._reply_find(str(value['requestId']), value.get('freq'))
            return True

        self.stats['ignored'] += 1
        return False

    def _reply_config(self):
        if self.config is None:
            return
        reply = {'action': 'config'}
        reply.update(self.config().to_subscriber_dict())
        self.send(self.envelope(reply))
        self.stats['config_replies'] += 1

    def _remember_request(self, request_id: str) -> bool:
        """Record a requestId; False if it was already seen recently."""
        now = self.clock()
        while self._seen_requests:
            oldest_id, seen_at = next(iter(self._seen_requests.items()))
            if now - seen_at < self.REQUEST_RETENTION_S:
                break
            self._seen_requests.pop(oldest_id)

        if request_id in self._seen_requests:
            return False
        self._seen_requests[request_id] = now
        return True

    async def _reply_find(self, request_id: str, frequency):
        if not self._remember_request(request_id):
            self.stats['duplicate_requests'] += 1
            logger.debug(f"Ignoring repeated request {request_id}")
            return

        candidates: List[CandidateResult] = []
        if self.resolver is not None:
            try:
                candidates = await self.resolver.resolve(frequency)
            except Exception as e:
                logger.exception(f"Request {request_id} for {frequency} failed: {e}")
                candidates = []

        self.send(self.envelope({
            'requestId': request_id,
            'list': [c.to_dict() for c in candidates],
        }))
        self.stats['responses'] += 1


class CandidateRequester:
    """
    Subscriber side of the request/response exchange.

    Only the single outstanding request is honoured; late answers to
    superseded requests are discarded.
    """

    def __init__(
        self,
        plugin_name: str = DEFAULT_PLUGIN_NAME,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.plugin_name = plugin_name
        self.id_factory = id_factory
        self.active_request_id: Optional[str] = None
        self.threshold_signal: Optional[float] = None
        self.stable_time_ms: Optional[int] = None
        self.max_distance_km: Optional[float] = None

    def config_request(self) -> Dict[str, Any]:
        return {'type': self.plugin_name, 'value': {'action': 'get_config'}}

    def request(self, frequency) -> Dict[str, Any]:
        """New request frame; supersedes any outstanding request."""
        self.active_request_id = self.id_factory()
        return {
            'type': self.plugin_name,
            'value': {'action': 'find', 'freq': frequency, 'requestId': self.active_request_id},
        }

    def cancel(self):
        self.active_request_id = None

    def accept(self, message: Any) -> Optional[List[Dict[str, Any]]]:
        """
        Feed an inbound frame.

        Returns:
            The candidate list if the frame answers the outstanding request,
            otherwise None (config frames update the stored tunables)
        """
        data = _decode(message)
        if data is None or data.get('type') != self.plugin_name:
            return None
        value = data.get('value')
        if not isinstance(value, dict):
            return None

        if value.get('action') == 'config':
            self.threshold_signal = value.get('thresholdSignal', self.threshold_signal)
            self.stable_time_ms = value.get('stableTime', self.stable_time_ms)
            self.max_distance_km = value.get('maxDistanceKm', self.max_distance_km)
            return None

        request_id = value.get('requestId')
        if not request_id or self.active_request_id is None or request_id != self.active_request_id:
            return None

        candidates = value.get('list')
        return candidates if isinstance(candidates, list) else []
