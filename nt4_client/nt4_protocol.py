"""
NT4 Protocol Module - JSON Control + MessagePack Values
=======================================================

Encoding/decoding for the two NT4 wire formats carried on one WebSocket.

CONTROL FRAME (WebSocket TEXT):
  JSON array of zero or more records:
    [{"method": "<method>", "params": {...}}, ...]

  Client -> server methods:
    publish      {name, type, pubuid, properties}
    unpublish    {pubuid}
    subscribe    {topics: [str], subuid, options: {periodic, all, topicsonly, prefix}}
    unsubscribe  {subuid}

  Server -> client methods:
    announce     {name, id, type, properties, [pubuid]}
    unannounce   {name, id}
    properties   {name, update, [ack]}

VALUE FRAME (WebSocket BINARY):
  One or more concatenated MessagePack arrays:
    [topic_id: int, timestamp_us: int64, type_code: int, value]

  topic_id -1 is reserved for clock sync in both directions:
    client -> server: [-1, 0, 2, t_send_us]
    server -> client: [-1, t_server_us, 2, t_send_us]

  Type codes:
    0  boolean     16  boolean[]
    1  double      17  double[]
    2  int         18  int[]
    3  string      19  float[]
    4  json        20  string[]
    5  raw / rpc / msgpack / protobuf
"""

import itertools
import json
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Union

import msgpack


# =================
# CONSTANTS
# =================

DEFAULT_PORT = 5810
DEFAULT_APP_NAME = "nt4-python"
NT4_SUBPROTOCOL = "networktables.first.wpi.edu"

CLOCK_SYNC_TOPIC_ID = -1


class TypeCode(IntEnum):
    """Wire type codes (third element of every value record)."""
    BOOLEAN = 0
    DOUBLE = 1
    INT = 2
    STRING = 3
    JSON = 4
    RAW = 5
    BOOLEAN_ARRAY = 16
    DOUBLE_ARRAY = 17
    INT_ARRAY = 18
    FLOAT_ARRAY = 19
    STRING_ARRAY = 20


# Topic type string -> wire type code
TYPE_STRINGS = {
    "boolean": TypeCode.BOOLEAN,
    "double": TypeCode.DOUBLE,
    "int": TypeCode.INT,
    "string": TypeCode.STRING,
    "json": TypeCode.JSON,
    "raw": TypeCode.RAW,
    "rpc": TypeCode.RAW,
    "msgpack": TypeCode.RAW,
    "protobuf": TypeCode.RAW,
    "boolean[]": TypeCode.BOOLEAN_ARRAY,
    "double[]": TypeCode.DOUBLE_ARRAY,
    "int[]": TypeCode.INT_ARRAY,
    "float[]": TypeCode.FLOAT_ARRAY,
    "string[]": TypeCode.STRING_ARRAY,
}


# ===================
# UTILITY FUNCTIONS
# ===================

def current_time_us() -> int:
    """Current time in microseconds since Unix epoch."""
    return int(time.time() * 1_000_000)


def server_url(host: str, port: int, app_name: str) -> str:
    """WebSocket endpoint for a client identity."""
    return f"ws://{host}:{port}/nt/{app_name}"


def type_code_for(type_str: str) -> TypeCode:
    """Wire type code for a topic type string. Unknown types are sent as raw."""
    return TYPE_STRINGS.get(type_str, TypeCode.RAW)


class UidCounter:
    """Thread-safe source of increasing pub/sub identifiers.

    Args:
        start: First identifier handed out.
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            return next(self._counter)


# =================
# ERRORS
# =================

class DecodeError(ValueError):
    """A control record or value record could not be decoded."""


@dataclass
class DecodeResult:
    """Outcome of decoding one frame: good items plus per-element errors."""
    items: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# =================
# TYPED VALUES
# =================

def _to_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected boolean, got {type(value).__name__}")
    return value


def _to_double(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected double, got {type(value).__name__}")
    return float(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected int, got {type(value).__name__}")
    return value


def _to_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"Expected string, got {type(value).__name__}")
    return value


def _to_bytes(value: Any) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise ValueError(f"Expected raw bytes, got {type(value).__name__}")
    return bytes(value)


def _array_of(convert: Callable[[Any], Any]) -> Callable[[Any], list]:
    def to_list(value: Any) -> list:
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Expected array, got {type(value).__name__}")
        return [convert(v) for v in value]
    return to_list


# One converter per type code
_CONVERTERS = {
    TypeCode.BOOLEAN: _to_bool,
    TypeCode.DOUBLE: _to_double,
    TypeCode.INT: _to_int,
    TypeCode.STRING: _to_str,
    TypeCode.JSON: _to_str,
    TypeCode.RAW: _to_bytes,
    TypeCode.BOOLEAN_ARRAY: _array_of(_to_bool),
    TypeCode.DOUBLE_ARRAY: _array_of(_to_double),
    TypeCode.INT_ARRAY: _array_of(_to_int),
    TypeCode.FLOAT_ARRAY: _array_of(_to_double),
    TypeCode.STRING_ARRAY: _array_of(_to_str),
}


@dataclass(frozen=True)
class NT4Value:
    """A value tagged with its wire type code.

    Construct through ``NT4Value.of`` so the payload is checked against the
    code; the constructor itself does no validation.

    Raises (from ``of``):
        ValueError: unknown type code, or a payload that does not fit it.
    """

    type_code: TypeCode
    value: Any

    @classmethod
    def of(cls, type_code: int, value: Any) -> 'NT4Value':
        try:
            code = TypeCode(type_code)
        except ValueError:
            raise ValueError(f"Unknown type code {type_code}") from None
        return cls(code, _CONVERTERS[code](value))


# =================
# CONTROL MESSAGES
# =================

@dataclass
class ControlMessage:
    """One ``{method, params}`` record of a control frame."""
    method: str
    params: dict

    def to_obj(self) -> dict:
        return {"method": self.method, "params": self.params}


def encode_control(method: str, params: dict) -> str:
    """Encode a single control record as a one-element JSON array."""
    return json.dumps([ControlMessage(method, params).to_obj()])


def decode_control(text: Union[str, bytes]) -> DecodeResult:
    """Decode a control frame.

    Each array element is checked on its own; a bad element is reported in
    ``errors`` and the rest of the batch is still decoded.

    Returns:
        DecodeResult whose ``items`` are ControlMessage objects.
    """
    result = DecodeResult()
    try:
        batch = json.loads(text)
    except (ValueError, RecursionError) as e:
        result.errors.append(DecodeError(f"Invalid JSON: {e}"))
        return result

    if not isinstance(batch, list):
        result.errors.append(
            DecodeError(f"Expected JSON array, got {type(batch).__name__}")
        )
        return result

    for index, obj in enumerate(batch):
        if not isinstance(obj, dict):
            result.errors.append(DecodeError(f"Record {index}: not an object"))
            continue
        method = obj.get("method")
        params = obj.get("params")
        if not isinstance(method, str):
            result.errors.append(DecodeError(f"Record {index}: missing method"))
            continue
        if not isinstance(params, dict):
            result.errors.append(
                DecodeError(f"Record {index} ({method}): params is not an object")
            )
            continue
        result.items.append(ControlMessage(method, params))

    return result


# =================
# VALUE RECORDS
# =================

@dataclass
class ValueRecord:
    """One ``[topic_id, timestamp_us, type_code, value]`` record."""
    topic_id: int
    timestamp_us: int
    type_code: TypeCode
    value: NT4Value


def encode_value(topic_id: int, timestamp_us: int, type_code: int, payload: Any) -> bytes:
    """Encode one value record.

    The payload is run through its type code's converter first, so an int
    published on a double topic goes out as a float.

    Raises:
        ValueError: if the payload does not fit the type code.
    """
    tagged = NT4Value.of(type_code, payload)
    return msgpack.packb(
        [topic_id, timestamp_us, int(tagged.type_code), tagged.value],
        use_bin_type=True,
    )


def _record_from_array(index: int, arr: Any) -> ValueRecord:
    if not isinstance(arr, (list, tuple)) or len(arr) < 4:
        raise DecodeError(f"Record {index}: expected array of at least 4 elements")
    topic_id, timestamp_us, type_code, raw = arr[0], arr[1], arr[2], arr[3]
    for name, v in (("topic id", topic_id), ("timestamp", timestamp_us), ("type code", type_code)):
        if isinstance(v, bool) or not isinstance(v, int):
            raise DecodeError(f"Record {index}: {name} is not an integer")
    try:
        value = NT4Value.of(type_code, raw)
    except ValueError as e:
        raise DecodeError(f"Record {index} (topic {topic_id}): {e}") from None
    return ValueRecord(topic_id, timestamp_us, value.type_code, value)


def decode_values(data: bytes) -> DecodeResult:
    """Decode a binary frame of one or more concatenated value records.

    Returns:
        DecodeResult whose ``items`` are ValueRecord objects.
    """
    result = DecodeResult()
    unpacker = msgpack.Unpacker(raw=False, strict_map_key=False)
    unpacker.feed(data)

    index = 0
    while True:
        try:
            arr = next(unpacker)
        except StopIteration:
            # Unpacker waits for more bytes on a truncated record
            if unpacker.tell() < len(data):
                result.errors.append(DecodeError(f"Record {index}: truncated"))
            break
        except (ValueError, TypeError) as e:
            # FormatError, StackError or an unhashable map key; no resync possible
            result.errors.append(DecodeError(f"Record {index}: corrupt MessagePack ({e})"))
            break
        try:
            result.items.append(_record_from_array(index, arr))
        except DecodeError as e:
            result.errors.append(e)
        index += 1

    if index == 0 and not result.errors:
        result.errors.append(DecodeError("Empty binary frame"))

    return result
