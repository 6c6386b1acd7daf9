"""
Subscription Registry
=====================

Records the subscriptions this client has asked the server for. Pattern
interpretation (exact vs. prefix) is done by the server; the client only
remembers what it requested so it can unsubscribe later.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

from .nt4_protocol import UidCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionOptions:
    """Delivery options sent with a subscribe request.

    Args:
        periodic:    How often the server sends changes, in seconds.
        send_all:    Send every value change, not only the most recent one.
        topics_only: Only send announcements, never values.
        prefix:      Match every topic starting with a pattern.
    """

    periodic: float = 0.1
    send_all: bool = False
    topics_only: bool = False
    prefix: bool = False

    def to_obj(self) -> dict:
        return {
            "periodic": self.periodic,
            "all": self.send_all,
            "topicsonly": self.topics_only,
            "prefix": self.prefix,
        }


@dataclass(frozen=True)
class Subscription:
    uid: int
    topics: tuple
    options: SubscriptionOptions

    def to_subscribe_obj(self) -> dict:
        return {
            "topics": list(self.topics),
            "subuid": self.uid,
            "options": self.options.to_obj(),
        }

    def to_unsubscribe_obj(self) -> dict:
        return {"subuid": self.uid}


class SubscriptionRegistry:
    """Active subscriptions of one client, keyed by subuid.

    Args:
        uid_source: Callable returning a fresh subuid for each subscription.
    """

    def __init__(self, uid_source: Optional[Callable[[], int]] = None):
        self._uid_source = uid_source or UidCounter()
        self._subscriptions: dict[int, Subscription] = {}

    def add(
        self,
        topics: Union[str, Iterable[str]],
        options: Optional[SubscriptionOptions] = None,
    ) -> Subscription:
        if isinstance(topics, str):
            topics = (topics,)
        sub = Subscription(
            uid=self._uid_source(),
            topics=tuple(topics),
            options=options or SubscriptionOptions(),
        )
        self._subscriptions[sub.uid] = sub
        return sub

    def remove(self, uid: int) -> Optional[Subscription]:
        sub = self._subscriptions.pop(uid, None)
        if sub is None:
            logger.warning(f"Attempted to unsubscribe from a subscription that does not exist: {uid}")
        return sub

    def get(self, uid: int) -> Optional[Subscription]:
        return self._subscriptions.get(uid)

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def clear(self):
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, uid: int) -> bool:
        return uid in self._subscriptions
