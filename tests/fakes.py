"""In-memory stand-ins for the WebSocket and the clock used by the client tests."""

import asyncio
import json
from types import SimpleNamespace

import aiohttp
import msgpack

from nt4_client import NT4Client, UidCounter


class FakeClock:
    """Settable microsecond clock."""

    def __init__(self, now: int = 1000):
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeWebSocket:
    """Records outbound frames; inbound frames are queued with feed_*()."""

    def __init__(self):
        self.sent_text: list[str] = []
        self.sent_binary: list[bytes] = []
        self.closed = False
        self.close_code = None
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data: str):
        if self.fail_sends:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent_text.append(data)

    async def send_bytes(self, data: bytes):
        if self.fail_sends:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent_binary.append(data)

    async def close(self):
        if self.closed:
            return False
        self.closed = True
        self.close_code = 1000
        self._inbox.put_nowait(None)
        return True

    def exception(self):
        return None

    def feed_text(self, records: list):
        self._inbox.put_nowait(
            SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(records))
        )

    def feed_raw_text(self, text: str):
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def feed_binary(self, *records: list):
        data = b"".join(msgpack.packb(r, use_bin_type=True) for r in records)
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.BINARY, data=data))

    def feed_raw_binary(self, data: bytes):
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.BINARY, data=data))

    async def drain(self):
        """Wait until the receive loop has taken every queued frame.

        Gives up after a bounded number of yields, since a loop that stopped
        on its own (after closing the socket) leaves the close sentinel behind.
        """
        for _ in range(1000):
            if self._inbox.empty():
                break
            await asyncio.sleep(0)
        await asyncio.sleep(0)

    @property
    def controls(self) -> list[dict]:
        return [record for text in self.sent_text for record in json.loads(text)]

    @property
    def values(self) -> list[list]:
        return [msgpack.unpackb(b, raw=False) for b in self.sent_binary]

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


async def open_client(clock: FakeClock = None, **kwargs):
    """An NT4Client in the OPEN state on a FakeWebSocket."""
    client = NT4Client(
        "test",
        sync_interval=3600,
        uid_source=UidCounter(),
        clock=clock or FakeClock(),
        **kwargs,
    )
    ws = FakeWebSocket()
    await client._opened(ws)
    return client, ws
