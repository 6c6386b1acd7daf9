"""
NT4 Source
==========

Convenience wrapper around NT4Client that survives reconnects and keeps a
timestamped history of every received value.

The client drops its topics and subscriptions whenever the connection
closes. NT4Source remembers every publish and subscribe request and replays
them from the client's ``on_open`` hook, so the caller can issue them once,
before or after connecting.
"""

import logging
from typing import Any, Optional

from .client import NT4Client
from .history import TopicHistory
from .nt4_protocol import DEFAULT_APP_NAME, DEFAULT_PORT, NT4Value
from .subscriptions import SubscriptionOptions
from .topics import Topic

logger = logging.getLogger(__name__)


class NT4Source:
    """Reconnect-friendly NT4 client with value history.

    Args:
        server_address: Host name or IP of the server.
        app_name:       Client identity.
        port:           Server port.
        **client_kwargs: Passed through to NT4Client.
    """

    def __init__(
        self,
        server_address: str = "127.0.0.1",
        app_name: str = DEFAULT_APP_NAME,
        port: int = DEFAULT_PORT,
        **client_kwargs,
    ):
        self.client = NT4Client(
            app_name,
            server_address,
            port,
            on_open=self._on_open,
            on_new_value=self._on_new_value,
            **client_kwargs,
        )
        self._values: dict[str, TopicHistory] = {}
        self._queued_publishes: dict[str, tuple[str, dict]] = {}
        self._queued_subscribes: dict[str, SubscriptionOptions] = {}

    # ---- Connection ----------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.client.connected

    async def connect(self) -> bool:
        """Connect unless already connected."""
        if self.client.connected:
            return True
        return await self.client.connect()

    async def disconnect(self):
        if self.client.connected:
            await self.client.disconnect()

    start = connect
    stop = disconnect

    def server_time_us(self) -> Optional[int]:
        return self.client.server_time_us()

    # ---- Requests ------------------------------------------------------------

    async def publish_topic(self, name: str, type_str: str, properties: Optional[dict] = None):
        """Publish now if connected, and again after every reconnect."""
        properties = dict(properties or {})
        if self.client.connected:
            await self.client.publish_topic(name, type_str, properties)
        self._queued_publishes.setdefault(name, (type_str, properties))

    async def publish_value(self, name: str, value: Any) -> bool:
        """Values are not queued; returns False while disconnected."""
        if not self.client.connected:
            return False
        return await self.client.publish_value(name, value)

    async def subscribe(
        self,
        topic: str,
        periodic: float = 0.1,
        send_all: bool = False,
        topics_only: bool = False,
        prefix: bool = False,
    ):
        """Subscribe now if connected, and again after every reconnect."""
        options = SubscriptionOptions(periodic, send_all, topics_only, prefix)
        if self.client.connected:
            await self.client.subscribe(topic, options=options)
        self._queued_subscribes.setdefault(topic, options)

    # ---- Values --------------------------------------------------------------

    def get_value(self, name: str, timestamp_us: Optional[int] = None) -> Any:
        """Latest value of a topic, or its value as of ``timestamp_us``.

        Returns None for a topic that has never received a value.
        """
        history = self._values.get(name)
        if history is None:
            return None
        return history.get(timestamp_us)

    def history(self, name: str) -> Optional[TopicHistory]:
        return self._values.get(name)

    # ---- Client callbacks ----------------------------------------------------

    async def _on_open(self):
        for name, (type_str, properties) in list(self._queued_publishes.items()):
            await self.client.publish_topic(name, type_str, properties)
        for topic, options in list(self._queued_subscribes.items()):
            await self.client.subscribe(topic, options=options)
        logger.debug(
            f"Replayed {len(self._queued_publishes)} publishes, "
            f"{len(self._queued_subscribes)} subscribes"
        )

    def _on_new_value(self, topic: Topic, timestamp_us: int, value: NT4Value):
        history = self._values.get(topic.name)
        if history is None:
            history = self._values[topic.name] = TopicHistory()
        history.add(timestamp_us, value.value)
