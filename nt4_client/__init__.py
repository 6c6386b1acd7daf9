"""
NT4 Client Package
==================

asyncio client for the NT4 publish/subscribe protocol: JSON control messages
and MessagePack value records over one WebSocket, with server clock sync.

Modules:
    nt4_protocol   - Wire encoding/decoding, type codes, tagged values
    topics         - Published and announced topic registry
    subscriptions  - Subscription registry and options
    clock_sync     - Round-trip clock offset estimation
    stats          - Frame counters and sync RTT statistics
    client         - WebSocket protocol engine
    history        - Timestamped per-topic value history
    source         - Reconnect-replaying wrapper with history
"""

from .nt4_protocol import (
    CLOCK_SYNC_TOPIC_ID,
    DEFAULT_APP_NAME,
    DEFAULT_PORT,
    ControlMessage,
    DecodeError,
    DecodeResult,
    NT4Value,
    TypeCode,
    UidCounter,
    ValueRecord,
    current_time_us,
    decode_control,
    decode_values,
    encode_control,
    encode_value,
    type_code_for,
)
from .topics import Topic, TopicRegistry
from .subscriptions import Subscription, SubscriptionOptions, SubscriptionRegistry
from .clock_sync import ClockSync
from .stats import Stats
from .client import ConnectionState, NT4Client
from .history import TopicHistory
from .source import NT4Source

__all__ = [
    "CLOCK_SYNC_TOPIC_ID",
    "DEFAULT_APP_NAME",
    "DEFAULT_PORT",
    "ControlMessage",
    "DecodeError",
    "DecodeResult",
    "NT4Value",
    "TypeCode",
    "UidCounter",
    "ValueRecord",
    "current_time_us",
    "decode_control",
    "decode_values",
    "encode_control",
    "encode_value",
    "type_code_for",
    "Topic",
    "TopicRegistry",
    "Subscription",
    "SubscriptionOptions",
    "SubscriptionRegistry",
    "ClockSync",
    "Stats",
    "ConnectionState",
    "NT4Client",
    "TopicHistory",
    "NT4Source",
]
