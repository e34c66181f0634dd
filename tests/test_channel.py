"""
Tests for the reconnecting websocket channel.

A fake connection stands in for aiohttp's websocket; frames are real
aiohttp.WSMessage tuples.
"""

import asyncio
import aiohttp
import pytest


def text(data):
    return aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, data, None)


class FakeWebSocket:
    """Yields queued frames, records sends."""
    
    def __init__(self, frames):
        self.frames = list(frames)
        self.sent = []
        self.closed = False
    
    def __aiter__(self):
        return self
    
    async def __anext__(self):
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        if not self.frames or self.closed:
            raise StopAsyncIteration
        return self.frames.pop(0)
    
    async def send_str(self, data):
        self.sent.append(data)
    
    async def close(self):
        self.closed = True


class FakeConnector:
    """Hands out prepared connections; exceptions are raised instead."""
    
    def __init__(self, *results):
        self.results = list(results)
        self.urls = []
    
    async def __call__(self, url):
        self.urls.append(url)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def run_channel(channel, timeout=2.0):
    asyncio.run(asyncio.wait_for(channel.run(), timeout))


class TestReconnectingChannel:
    """Test receive, send and reconnect behaviour."""
    
    def test_text_frames_dispatched(self):
        from station_finder.output.channel import ReconnectingChannel
        
        received = []
        ws = FakeWebSocket([
            text('one'),
            aiohttp.WSMessage(aiohttp.WSMsgType.BINARY, b'\x00', None),
            text('two'),
        ])
        
        def on_message(data):
            received.append(data)
            if data == 'two':
                channel.stop()
        
        channel = ReconnectingChannel('ws://tuner/text', on_message, 0.01, connect=FakeConnector(ws))
        run_channel(channel)
        
        assert received == ['one', 'two']
        assert channel.stats['received'] == 2
        assert not channel.connected
    
    def test_reconnects_after_failure(self):
        from station_finder.output.channel import ReconnectingChannel
        
        received = []
        connector = FakeConnector(
            aiohttp.ClientConnectionError('refused'),
            FakeWebSocket([]),
            FakeWebSocket([text('hello')]),
        )
        
        def on_message(data):
            received.append(data)
            channel.stop()
        
        channel = ReconnectingChannel('ws://tuner/text', on_message, 0.01, connect=connector)
        run_channel(channel)
        
        assert received == ['hello']
        assert connector.urls == ['ws://tuner/text'] * 3
        assert channel.stats['connects'] == 2
        assert channel.stats['disconnects'] == 2
    
    def test_send_while_connected(self):
        from station_finder.output.channel import ReconnectingChannel
        
        ws = FakeWebSocket([text('ping'), text('done')])
        
        def on_message(data):
            if data == 'ping':
                assert channel.send({'type': 'StationsWithoutRDS', 'value': {}}) is True
            else:
                channel.stop()
        
        channel = ReconnectingChannel('ws://tuner/data_plugins', on_message, 0.01, connect=FakeConnector(ws))
        run_channel(channel)
        
        assert ws.sent == ['{"type": "StationsWithoutRDS", "value": {}}']
        assert channel.stats['sent'] == 1
    
    def test_send_while_disconnected_dropped(self):
        from station_finder.output.channel import ReconnectingChannel
        
        channel = ReconnectingChannel('ws://tuner/data_plugins', lambda data: None)
        assert channel.send({'a': 1}) is False
        assert channel.stats['dropped'] == 1
    
    def test_async_handler_and_handler_errors(self):
        from station_finder.output.channel import ReconnectingChannel
        
        received = []
        ws = FakeWebSocket([text('bad'), text('good')])
        
        async def on_message(data):
            if data == 'bad':
                raise ValueError('cannot parse')
            received.append(data)
            channel.stop()
        
        channel = ReconnectingChannel('ws://tuner/text', on_message, 0.01, connect=FakeConnector(ws))
        run_channel(channel)
        
        assert received == ['good']
    
    def test_cancel_closes_session(self):
        from station_finder.output.channel import ReconnectingChannel
        
        class FakeSession:
            closed = False
            close_calls = 0
            
            async def close(self):
                self.close_calls += 1
                self.closed = True
        
        async def hang(url):
            await asyncio.Event().wait()
        
        session = FakeSession()
        channel = ReconnectingChannel('ws://tuner/text', lambda data: None, 0.01, connect=hang)
        channel._session = session
        
        async def run():
            task = asyncio.ensure_future(channel.run())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        
        asyncio.run(run())
        assert session.close_calls == 1
        assert channel._session is None
