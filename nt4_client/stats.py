"""
Statistics Tracker
==================

Counts frames and records flowing through the client, and keeps a sliding
window of clock-sync round-trip times.
"""

from collections import deque


class Stats:
    """Connection counters and clock-sync RTT window.

    Args:
        window: Number of recent RTT samples to keep for averaging.
    """

    def __init__(self, window: int = 100):
        self._rtts_us: deque[int] = deque(maxlen=window)
        self.text_frames: int = 0
        self.binary_frames: int = 0
        self.control_messages: int = 0
        self.value_records: int = 0
        self.delivered: int = 0
        self.dropped: int = 0
        self.decode_errors: int = 0
        self.tx_frames: int = 0
        self.sync_count: int = 0

    def record_sync(self, rtt_us: int):
        """Record one completed clock-sync round trip."""
        if rtt_us >= 0:
            self._rtts_us.append(rtt_us)
        self.sync_count += 1

    @property
    def avg_rtt_ms(self) -> float:
        if not self._rtts_us:
            return 0.0
        return sum(self._rtts_us) / len(self._rtts_us) / 1000.0

    def __str__(self) -> str:
        return (
            f"rx={self.text_frames}t/{self.binary_frames}b tx={self.tx_frames} "
            f"values={self.delivered} dropped={self.dropped} "
            f"errors={self.decode_errors} "
            f"syncs={self.sync_count} rtt={self.avg_rtt_ms:.1f}ms"
        )
