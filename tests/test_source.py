import asyncio

from nt4_client import NT4Source, UidCounter

from fakes import FakeClock, FakeWebSocket


def make_source():
    return NT4Source("127.0.0.1", "test", sync_interval=3600, uid_source=UidCounter(), clock=FakeClock())


def test_requests_are_replayed_on_every_open():

    async def scenario():
        source = make_source()
        await source.publish_topic("/out", "double", {"retained": True})
        await source.subscribe("/in", prefix=True)
        assert not source.connected

        ws = FakeWebSocket()
        await source.client._opened(ws)
        assert [c["method"] for c in ws.controls] == ["publish", "subscribe"]
        assert ws.controls[0]["params"]["name"] == "/out"
        assert ws.controls[1]["params"]["options"]["prefix"] is True

        # connection drops; the client forgets everything
        await ws.close()
        await ws.drain()
        assert source.client.topics.local_topics == []
        assert await source.publish_value("/out", 1.0) is False

        again = FakeWebSocket()
        await source.client._opened(again)
        assert [c["method"] for c in again.controls] == ["publish", "subscribe"]
        assert await source.publish_value("/out", 1.0)
        await source.stop()

    asyncio.run(scenario())


def test_publish_while_connected_is_not_duplicated():

    async def scenario():
        source = make_source()
        ws = FakeWebSocket()
        await source.client._opened(ws)

        await source.publish_topic("/out", "int")
        await source.publish_topic("/out", "int")
        assert [c["method"] for c in ws.controls] == ["publish"]
        await source.disconnect()

    asyncio.run(scenario())


def test_values_are_recorded_with_history():

    async def scenario():
        source = make_source()
        ws = FakeWebSocket()
        await source.client._opened(ws)

        ws.feed_text([{"method": "announce",
                       "params": {"name": "/in", "id": 4, "type": "int", "properties": {}}}])
        ws.feed_binary([4, 100, 2, 1], [4, 200, 2, 2], [4, 300, 2, 3])
        await ws.drain()

        assert source.get_value("/in") == 3
        assert source.get_value("/in", 250) == 2
        assert source.get_value("/in", 50) is None
        assert source.get_value("/never") is None
        assert len(source.history("/in")) == 3
        await source.disconnect()

    asyncio.run(scenario())
