"""
Persistent websocket channel with fixed-delay reconnect.

Used for both the inbound telemetry feed (``/text``) and the shared plugin
channel (``/data_plugins``). On any closure or connection failure the channel
waits ``reconnect_delay_s`` and tries again, forever. There is no backoff
growth and no give-up condition.

Outbound frames are queued and written by a per-connection writer task, so
send() is safe to call from synchronous code on the loop. Frames sent while
disconnected are dropped.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import aiohttp

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Any]


class ReconnectingChannel:
    """
    Websocket client that stays connected.

    Args:
        url: websocket URL
        on_message: called with each text frame; may be a coroutine function
        reconnect_delay_s: fixed pause between connection attempts
        connect: optional ``async connect(url) -> ws`` replacing aiohttp
        name: label for log lines
    """

    def __init__(
        self,
        url: str,
        on_message: MessageHandler,
        reconnect_delay_s: float = 2.0,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        name: Optional[str] = None,
    ):
        self.url = url
        self.on_message = on_message
        self.reconnect_delay_s = reconnect_delay_s
        self.name = name or url
        self._connect = connect
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._outbox: Optional[asyncio.Queue] = None
        self._running = False

        self.stats = {'connects': 0, 'disconnects': 0, 'received': 0, 'sent': 0, 'dropped': 0}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def send(self, payload: Any) -> bool:
        """Queue a frame (dict is JSON-encoded). False if disconnected."""
        if self._ws is None or self._outbox is None:
            self.stats['dropped'] += 1
            return False
        text = payload if isinstance(payload, str) else json.dumps(payload)
        self._outbox.put_nowait(text)
        return True

    async def run(self):
        """Connect and keep reconnecting until stop() is called."""
        self._running = True
        try:
            while self._running:
                try:
                    ws = await self._open()
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.error(f"[{self.name}] connect failed: {e}")
                else:
                    self.stats['connects'] += 1
                    logger.info(f"[{self.name}] connected")
                    try:
                        await self._pump(ws)
                    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                        logger.error(f"[{self.name}] connection error: {e}")
                    self.stats['disconnects'] += 1

                if not self._running:
                    break
                logger.info(f"[{self.name}] closed, reconnecting in {self.reconnect_delay_s:.0f}s...")
                await asyncio.sleep(self.reconnect_delay_s)
        finally:
            await self._close_session()

    def stop(self):
        self._running = False
        if self._ws is not None:
            asyncio.ensure_future(self._ws.close())

    async def _open(self):
        if self._connect is not None:
            return await self._connect(self.url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(self.url, heartbeat=30.0)

    async def _close_session(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _pump(self, ws):
        self._ws = ws
        self._outbox = asyncio.Queue()
        writer = asyncio.ensure_future(self._write_loop(ws, self._outbox))
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.stats['received'] += 1
                    await self._dispatch(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        finally:
            self._ws = None
            self._outbox = None
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    async def _write_loop(self, ws, outbox: asyncio.Queue):
        while True:
            text = await outbox.get()
            try:
                await ws.send_str(text)
                self.stats['sent'] += 1
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                self.stats['dropped'] += 1
                logger.warning(f"[{self.name}] send failed: {e}")

    async def _dispatch(self, data: str):
        try:
            result = self.on_message(data)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.exception(f"[{self.name}] message handler failed: {e}")
