"""
Topic Registry
==============

Tracks the topics this client publishes and the topics the server has
announced. The two sets are kept in separate tables keyed by name; a numeric
id is only meaningful inside the table of the side that assigned it.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .nt4_protocol import TypeCode, UidCounter, type_code_for

logger = logging.getLogger(__name__)


@dataclass
class Topic:
    """A named, typed key in the shared table.

    Args:
        uid:        pubuid for local topics, server id for announced ones.
        name:       Full topic name, e.g. ``/SmartDashboard/speed``.
        type:       Protocol type string (``double``, ``int[]``, ...).
        properties: Topic metadata, mutated in place by property updates.
    """

    uid: int
    name: str
    type: str
    properties: dict = field(default_factory=dict)

    @property
    def type_code(self) -> TypeCode:
        return type_code_for(self.type)

    def set_property(self, key: str, value):
        self.properties[key] = value

    def remove_property(self, key: str):
        self.properties.pop(key, None)

    def apply_update(self, update: dict):
        """Merge a properties update: null removes a key, anything else sets it."""
        for key, value in update.items():
            if value is None:
                self.remove_property(key)
            else:
                self.set_property(key, value)

    def to_publish_obj(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "pubuid": self.uid,
            "properties": self.properties,
        }

    def to_unpublish_obj(self) -> dict:
        return {"pubuid": self.uid}

    @classmethod
    def from_announce(cls, params: dict) -> 'Topic':
        """Build a topic from ``announce`` params.

        Raises:
            ValueError: if name, id or type is missing or mistyped.
        """
        name = params.get("name")
        uid = params.get("id")
        type_str = params.get("type")
        properties = params.get("properties", {})
        if properties is None:
            properties = {}

        if not isinstance(name, str):
            raise ValueError(f"announce without a valid name: {params!r}")
        if isinstance(uid, bool) or not isinstance(uid, int):
            raise ValueError(f"announce for {name} without a valid id")
        if not isinstance(type_str, str):
            raise ValueError(f"announce for {name} without a valid type")
        if not isinstance(properties, dict):
            raise ValueError(f"announce for {name} with non-object properties")

        return cls(uid=uid, name=name, type=type_str, properties=dict(properties))


class TopicRegistry:
    """Locally published and server-announced topics of one client.

    Args:
        uid_source: Callable returning a fresh pubuid for each local publish.
    """

    def __init__(self, uid_source: Optional[Callable[[], int]] = None):
        self._uid_source = uid_source or UidCounter()
        self._local: dict[str, Topic] = {}
        self._remote: dict[str, Topic] = {}
        self._remote_by_id: dict[int, Topic] = {}

    # ---- Local (published) ---------------------------------------------------

    def register_local(
        self, name: str, type_str: str, properties: Optional[dict] = None
    ) -> tuple[Topic, bool]:
        """Register a topic this client will publish.

        Returns:
            (topic, created). Publishing an already published name returns
            the existing topic with ``created=False``.
        """
        existing = self._local.get(name)
        if existing is not None:
            logger.debug(f"Topic already published: {name}")
            return existing, False

        topic = Topic(self._uid_source(), name, type_str, dict(properties or {}))
        self._local[name] = topic
        return topic, True

    def unregister_local(self, name: str) -> Optional[Topic]:
        topic = self._local.pop(name, None)
        if topic is None:
            logger.warning(f"Attempted to unpublish topic that was not published: {name}")
        return topic

    def get_local(self, name: str) -> Optional[Topic]:
        return self._local.get(name)

    @property
    def local_topics(self) -> list[Topic]:
        return list(self._local.values())

    # ---- Remote (announced) --------------------------------------------------

    def on_announce(self, params: dict) -> Topic:
        """Record a server announcement, replacing any stale entry of that name.

        Raises:
            ValueError: on malformed announce params.
        """
        topic = Topic.from_announce(params)

        stale = self._remote.get(topic.name)
        if stale is not None:
            logger.warning(f"Received announcement for topic that already exists: {topic.name}")
            self._evict(stale)

        self._remote[topic.name] = topic
        self._remote_by_id[topic.uid] = topic
        return topic

    def on_unannounce(self, name: str) -> Optional[Topic]:
        topic = self._remote.get(name)
        if topic is None:
            logger.warning(f"Received unannounce for topic that does not exist: {name}")
            return None
        self._evict(topic)
        return topic

    def on_properties_update(self, name: str, update: dict) -> Optional[Topic]:
        topic = self._remote.get(name)
        if topic is None:
            logger.warning(f"Received properties update for topic that does not exist: {name}")
            return None
        topic.apply_update(update)
        return topic

    def lookup_by_remote_id(self, uid: int) -> Optional[Topic]:
        return self._remote_by_id.get(uid)

    def get_remote(self, name: str) -> Optional[Topic]:
        return self._remote.get(name)

    @property
    def remote_topics(self) -> list[Topic]:
        return list(self._remote.values())

    def _evict(self, topic: Topic):
        del self._remote[topic.name]
        # The id may already belong to a newer announcement
        if self._remote_by_id.get(topic.uid) is topic:
            del self._remote_by_id[topic.uid]

    # ---- Lifecycle -----------------------------------------------------------

    def clear(self):
        """Forget every local and remote topic."""
        self._local.clear()
        self._remote.clear()
        self._remote_by_id.clear()

    def __len__(self) -> int:
        return len(self._local) + len(self._remote)
