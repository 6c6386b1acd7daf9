"""
Topic History
=============

Timestamped record of every value seen on one topic.
"""

import bisect
from typing import Any, Optional


class TopicHistory:
    """All ``(timestamp_us, value)`` samples of one topic, sorted by time.

    A second sample with an already recorded timestamp does not replace the
    stored one, but still becomes ``latest``.
    """

    def __init__(self):
        self._timestamps: list[int] = []
        self._values: list[Any] = []
        self.latest: Any = None

    def add(self, timestamp_us: int, value: Any):
        index = bisect.bisect_left(self._timestamps, timestamp_us)
        if index == len(self._timestamps) or self._timestamps[index] != timestamp_us:
            self._timestamps.insert(index, timestamp_us)
            self._values.insert(index, value)
        self.latest = value

    def get(self, timestamp_us: Optional[int] = None) -> Any:
        """Value as of ``timestamp_us``.

        Returns the sample at that exact time, otherwise the most recent one
        before it, otherwise None. Without a timestamp, the latest value.
        """
        if timestamp_us is None:
            return self.latest
        index = bisect.bisect_right(self._timestamps, timestamp_us)
        if index == 0:
            return None
        return self._values[index - 1]

    @property
    def timestamps(self) -> list[int]:
        return list(self._timestamps)

    def __len__(self) -> int:
        return len(self._timestamps)
