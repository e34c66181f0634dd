"""Output adapters - plugin channel protocol, websocket channels, health monitoring."""

from .broadcast import BroadcastProtocol, CandidateRequester
from .channel import ReconnectingChannel
from .health_server import HealthServer

__all__ = ['BroadcastProtocol', 'CandidateRequester', 'ReconnectingChannel', 'HealthServer']
