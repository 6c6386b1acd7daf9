"""
Clock Synchronization
=====================

Round-trip clock sync between the client and the NT4 server.

The client sends its own time ``t_send`` on the reserved topic id -1; the
server echoes it back together with its time ``t_server``. On receipt at
``t_recv``:

    rtt     = t_recv - t_send
    latency = rtt / 2
    offset  = (t_server + latency) - t_recv

Offset convention:
    offset = server_time - client_time
    server_time = client_time + offset

Only the most recent exchange is kept; there is no filtering across samples.
"""

import logging
from typing import Callable, Optional

from .nt4_protocol import current_time_us

logger = logging.getLogger(__name__)


class ClockSync:
    """Latest-sample clock offset estimator.

    Args:
        clock: Returns the client time in microseconds. Injected in tests.
    """

    def __init__(self, clock: Callable[[], int] = current_time_us):
        self._clock = clock
        self.offset: Optional[int] = None
        self.latency: int = 0
        self.rtt: int = 0
        self.pending: Optional[int] = None

    def client_time_us(self) -> int:
        return self._clock()

    def begin(self) -> int:
        """Start an exchange and return the ``t_send`` to put on the wire."""
        self.pending = self._clock()
        return self.pending

    def matches(self, client_send_us: int) -> bool:
        """True if an echoed ``t_send`` belongs to the outstanding exchange."""
        return self.pending is not None and client_send_us == self.pending

    def reset_pending(self):
        self.pending = None

    def process(
        self,
        server_time_us: int,
        client_send_us: int,
        rx_time_us: Optional[int] = None,
    ) -> tuple[int, int]:
        """Process a server echo and replace the offset estimate.

        Args:
            server_time_us: Server time carried by the echo.
            client_send_us: The client ``t_send`` echoed back.
            rx_time_us:     Client receive time; read from the clock if omitted.

        Returns:
            Tuple of (offset_us, latency_us).
        """
        t_recv = rx_time_us if rx_time_us is not None else self._clock()

        self.rtt = t_recv - client_send_us
        self.latency = self.rtt // 2
        self.offset = (server_time_us + self.latency) - t_recv
        self.pending = None

        return self.offset, self.latency

    @property
    def synced(self) -> bool:
        """True once one exchange has completed."""
        return self.offset is not None

    def server_time_us(self, client_time_us: Optional[int] = None) -> Optional[int]:
        """Estimated server time, or None before the first exchange.

        Args:
            client_time_us: Client timestamp to convert (default: now).
        """
        if self.offset is None:
            return None
        if client_time_us is None:
            client_time_us = self._clock()
        return client_time_us + self.offset
