"""
NT4 WebSocket Client
====================

Connects to an NT4 server over WebSocket, keeps the topic and subscription
tables for this connection, publishes topics and values, routes incoming
values to a callback, and keeps the client clock synchronized with the
server.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import aiohttp

from .nt4_protocol import (
    CLOCK_SYNC_TOPIC_ID,
    DEFAULT_APP_NAME,
    DEFAULT_PORT,
    NT4_SUBPROTOCOL,
    ControlMessage,
    NT4Value,
    TypeCode,
    ValueRecord,
    UidCounter,
    decode_control,
    decode_values,
    encode_control,
    encode_value,
    server_url,
)
from .clock_sync import ClockSync
from .stats import Stats
from .subscriptions import SubscriptionOptions, SubscriptionRegistry
from .topics import Topic, TopicRegistry

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 5.0     # seconds between clock syncs
HEARTBEAT_INTERVAL = 25.0       # aiohttp ping interval
CONNECT_TIMEOUT = 5.0

OnOpen = Callable[[], Union[None, Awaitable[None]]]
OnNewValue = Callable[[Topic, int, NT4Value], None]
OnTopic = Callable[[Topic], None]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"


class NT4Client:
    """NT4 protocol client.

    Handles:
      - Connection lifecycle (one WebSocket per client identity)
      - Publish/unpublish and subscribe/unsubscribe control messages
      - Announce/unannounce/properties bookkeeping for server topics
      - Routing binary value records to ``on_new_value``
      - Periodic clock sync on the reserved topic id -1

    Every topic and subscription is dropped when the connection closes;
    re-publishing after a reconnect is up to the caller (see NT4Source).

    Args:
        app_name:       Client identity, part of the endpoint path.
        server_address: Host name or IP of the server.
        port:           Server port.
        on_open:        Called (or awaited) each time the connection opens.
        on_new_value:   Called as ``(topic, timestamp_us, value)`` for every
                        value on an announced topic, in arrival order.
        on_announce:    Called with each newly announced topic.
        on_unannounce:  Called with each topic the server withdraws.
        sync_interval:  Seconds between clock-sync requests.
        uid_source:     Callable returning fresh pubuid/subuid values.
        clock:          Client time source in microseconds.
    """

    def __init__(
        self,
        app_name: str = DEFAULT_APP_NAME,
        server_address: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        on_open: Optional[OnOpen] = None,
        on_new_value: Optional[OnNewValue] = None,
        *,
        on_announce: Optional[OnTopic] = None,
        on_unannounce: Optional[OnTopic] = None,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        uid_source: Optional[Callable[[], int]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.app_name = app_name
        self.url = server_url(server_address, port, app_name)
        self.on_open = on_open
        self.on_new_value = on_new_value
        self.on_announce = on_announce
        self.on_unannounce = on_unannounce
        self.sync_interval = sync_interval

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._state = ConnectionState.DISCONNECTED

        uid_source = uid_source or UidCounter()
        self.topics = TopicRegistry(uid_source)
        self.subscriptions = SubscriptionRegistry(uid_source)
        self.clock = ClockSync(clock) if clock is not None else ClockSync()
        self.stats = Stats()

        # Registry mutation + frame send happen under this lock
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self._sync_sent_at = 0.0

    async def __aenter__(self) -> 'NT4Client':
        await self.connect()
        return self

    async def __aexit__(self, *exc):
        await self.disconnect()

    # ---- Properties ----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return (
            self._state == ConnectionState.OPEN
            and self._ws is not None
            and not self._ws.closed
        )

    def server_time_us(self) -> Optional[int]:
        """Current server time (us), or None before the first clock sync."""
        return self.clock.server_time_us()

    # ---- Connection lifecycle ------------------------------------------------

    async def connect(self) -> bool:
        """Open the connection to the server.

        Returns:
            True if the connection is open (or already opening), False if it
            could not be established.
        """
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return True

        self._state = ConnectionState.CONNECTING
        try:
            self._session = aiohttp.ClientSession()
            ws = await asyncio.wait_for(
                self._session.ws_connect(
                    self.url,
                    protocols=(NT4_SUBPROTOCOL,),
                    heartbeat=HEARTBEAT_INTERVAL,
                ),
                timeout=CONNECT_TIMEOUT,
            )
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Connect to {self.url} failed: {e}")
            self._state = ConnectionState.DISCONNECTED
            await self._close_transport()
            return False

        return await self._opened(ws)

    async def disconnect(self):
        """Close the connection; every topic and subscription is dropped."""
        if self._ws is None:
            return
        logger.info("Closing...")
        if not self._ws.closed:
            await self._ws.close()
        await self._cleanup()
        self._handle_close()

    async def _opened(self, ws) -> bool:
        """Transition to OPEN on an established socket.

        Returns:
            False if the socket failed before on_open could run.
        """
        self._ws = ws
        self._state = ConnectionState.OPEN
        logger.info(f"[NT4] Connected with identity {self.app_name}")

        self._tasks = [
            asyncio.create_task(self._recv_loop()),
            asyncio.create_task(self._sync_loop()),
        ]

        await self._send_sync()
        if not self.connected:
            logger.error("[NT4] Connection lost while opening")
            return False
        await self._invoke_on_open()
        return True

    async def _invoke_on_open(self):
        if self.on_open is None:
            return
        try:
            result = self.on_open()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"on_open callback error: {e}")

    def _handle_close(self):
        """Transition to DISCONNECTED and drop all per-connection state."""
        if self._state == ConnectionState.DISCONNECTED:
            return
        code = self._ws.close_code if self._ws is not None else None
        logger.info(f"[NT4] Disconnected (code={code})")

        self._state = ConnectionState.DISCONNECTED
        self.topics.clear()
        self.subscriptions.clear()
        self.clock.reset_pending()

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()

    # ---- Receive loop --------------------------------------------------------

    async def _recv_loop(self):
        """Process inbound frames one at a time, in arrival order."""
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_binary(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Recv error: {e}")
        finally:
            # A reconnect may already have replaced the socket
            if self._ws is ws:
                self._handle_close()
                await self._close_transport()

    def _handle_text(self, data: str):
        """Decode a control frame and apply each record."""
        self.stats.text_frames += 1
        result = decode_control(data)
        for err in result.errors:
            self.stats.decode_errors += 1
            logger.warning(f"Failed to decode control message: {err}")
        for msg in result.items:
            self.stats.control_messages += 1
            self._handle_control(msg)

    def _handle_control(self, msg: ControlMessage):
        params = msg.params
        if msg.method == "announce":
            try:
                topic = self.topics.on_announce(params)
            except ValueError as e:
                logger.warning(f"Malformed announce: {e}")
                return
            logger.debug(f"Announced {topic.name} (id={topic.uid}, type={topic.type})")
            self._notify(self.on_announce, topic)

        elif msg.method == "unannounce":
            name = params.get("name")
            if not isinstance(name, str):
                logger.warning(f"Malformed unannounce: {params!r}")
                return
            topic = self.topics.on_unannounce(name)
            if topic is not None:
                self._notify(self.on_unannounce, topic)

        elif msg.method == "properties":
            name = params.get("name")
            update = params.get("update")
            if not isinstance(name, str) or not isinstance(update, dict):
                logger.warning(f"Malformed properties update: {params!r}")
                return
            self.topics.on_properties_update(name, update)

        else:
            logger.debug(f"Ignoring control message: {msg.method}")

    def _notify(self, callback: Optional[OnTopic], topic: Topic):
        if callback is None:
            return
        try:
            callback(topic)
        except Exception as e:
            logger.error(f"Callback error: {e}")

    def _handle_binary(self, data: bytes):
        """Decode a binary frame; route values and clock-sync echoes."""
        rx_time = self.clock.client_time_us()
        self.stats.binary_frames += 1

        result = decode_values(data)
        for err in result.errors:
            self.stats.decode_errors += 1
            logger.warning(f"Failed to decode binary message: {err}")

        for record in result.items:
            self.stats.value_records += 1
            if record.topic_id >= 0:
                self._deliver(record)
            elif record.topic_id == CLOCK_SYNC_TOPIC_ID:
                self._handle_sync_response(record, rx_time)
            else:
                self.stats.dropped += 1
                logger.debug(f"Dropping value with reserved topic id {record.topic_id}")

    def _deliver(self, record: ValueRecord):
        topic = self.topics.lookup_by_remote_id(record.topic_id)
        if topic is None:
            self.stats.dropped += 1
            logger.debug(f"Dropping value for unknown topic id {record.topic_id}")
            return

        self.stats.delivered += 1
        if self.on_new_value:
            try:
                self.on_new_value(topic, record.timestamp_us, record.value)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    # ---- Outbound ------------------------------------------------------------

    async def publish_topic(
        self, name: str, type_str: str, properties: Optional[dict] = None
    ) -> bool:
        """Announce that this client will publish values for ``name``.

        Publishing a name that is already published is a no-op.

        Returns:
            False if not connected or the send failed.
        """
        async with self._lock:
            if not self.connected:
                logger.debug(f"Not connected; publish of {name} dropped")
                return False
            topic, created = self.topics.register_local(name, type_str, properties)
            if not created:
                return True
            return await self._send_text(encode_control("publish", topic.to_publish_obj()))

    async def unpublish_topic(self, name: str) -> bool:
        async with self._lock:
            if not self.connected:
                logger.debug(f"Not connected; unpublish of {name} dropped")
                return False
            topic = self.topics.unregister_local(name)
            if topic is None:
                return False
            return await self._send_text(encode_control("unpublish", topic.to_unpublish_obj()))

    async def publish_value(self, name: str, value: Any) -> bool:
        """Send a value for a published topic, stamped with server time.

        The timestamp is 0 until the first clock sync completes.
        """
        async with self._lock:
            if not self.connected:
                logger.debug(f"Not connected; value for {name} dropped")
                return False
            topic = self.topics.get_local(name)
            if topic is None:
                logger.warning(f"Attempted to publish value for topic that was not published: {name}")
                return False
            timestamp = self.server_time_us() or 0
            try:
                frame = encode_value(topic.uid, timestamp, topic.type_code, value)
            except ValueError as e:
                logger.warning(f"Cannot publish {value!r} to {name} ({topic.type}): {e}")
                return False
            return await self._send_binary(frame)

    async def subscribe(
        self,
        topics: Union[str, Iterable[str]],
        periodic: float = 0.1,
        send_all: bool = False,
        topics_only: bool = False,
        prefix: bool = False,
        options: Optional[SubscriptionOptions] = None,
    ) -> Optional[int]:
        """Subscribe to one or more topic names or prefixes.

        Args:
            topics:      A topic name or a list of them.
            periodic:    Update rate requested from the server, in seconds.
            send_all:    Receive every value change rather than the latest.
            topics_only: Receive announcements only, no values.
            prefix:      Treat each name as a prefix.
            options:     Ready-made options; overrides the flags above.

        Returns:
            The subuid (for unsubscribing), or None if not connected.
        """
        if options is None:
            options = SubscriptionOptions(periodic, send_all, topics_only, prefix)

        async with self._lock:
            if not self.connected:
                logger.debug("Not connected; subscribe dropped")
                return None
            sub = self.subscriptions.add(topics, options)
            if not await self._send_text(encode_control("subscribe", sub.to_subscribe_obj())):
                return None
            return sub.uid

    async def unsubscribe(self, uid: int) -> bool:
        async with self._lock:
            if not self.connected:
                logger.debug(f"Not connected; unsubscribe of {uid} dropped")
                return False
            sub = self.subscriptions.remove(uid)
            if sub is None:
                return False
            return await self._send_text(encode_control("unsubscribe", sub.to_unsubscribe_obj()))

    async def _send_text(self, text: str) -> bool:
        try:
            await self._ws.send_str(text)
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            logger.error(f"Send error: {e}")
            await self._on_send_failure()
            return False
        self.stats.tx_frames += 1
        return True

    async def _send_binary(self, data: bytes) -> bool:
        try:
            await self._ws.send_bytes(data)
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            logger.error(f"Send error: {e}")
            await self._on_send_failure()
            return False
        self.stats.tx_frames += 1
        return True

    async def _on_send_failure(self):
        self._handle_close()
        await self._close_transport()

    # ---- Clock sync ----------------------------------------------------------

    async def _sync_loop(self):
        """Periodic clock sync with the server."""
        try:
            while self.connected:
                await asyncio.sleep(self.sync_interval)
                await self._send_sync()
        except asyncio.CancelledError:
            pass

    async def _send_sync(self):
        """Send a clock sync request unless one is still outstanding."""
        if not self.connected:
            return

        now = asyncio.get_running_loop().time()
        if self.clock.pending is not None:
            if now - self._sync_sent_at < self.sync_interval:
                logger.debug("Clock sync still outstanding")
                return
            logger.debug(f"Abandoning unanswered clock sync t_send={self.clock.pending}")

        t_send = self.clock.begin()
        self._sync_sent_at = now
        await self._send_binary(encode_value(CLOCK_SYNC_TOPIC_ID, 0, TypeCode.INT, t_send))

    def _handle_sync_response(self, record: ValueRecord, rx_time: int):
        """Process a clock sync echo from the server."""
        client_send = record.value.value
        if record.type_code != TypeCode.INT:
            logger.warning(f"Clock sync echo with type code {record.type_code}")
            return
        if not self.clock.matches(client_send):
            logger.debug(f"Ignoring stale clock sync echo t_send={client_send}")
            return

        offset, latency = self.clock.process(record.timestamp_us, client_send, rx_time)
        self.stats.record_sync(self.clock.rtt)
        logger.info(
            f"[NT4] New server time: {self.clock.server_time_us(rx_time) / 1e6:.3f}s "
            f"with {latency / 1000.0:.1f}ms latency (offset={offset}us)"
        )

    # ---- Cleanup -------------------------------------------------------------

    async def _cleanup(self):
        """Cancel background tasks and close the transport."""
        current = asyncio.current_task()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_transport()

    async def _close_transport(self):
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
