"""GGUF header decoder.

Pure computation, no I/O.  Parses the key/value section of a GGUF
container from an in-memory byte prefix.  Every read is bounds-checked
before it happens, so a prefix that is simply too short raises
``TruncatedInput`` (retryable with more bytes) while a corrupt header raises
``MalformedContainer`` or ``UnsupportedVersion`` (not retryable).
"""

from __future__ import annotations

import logging
import struct
from typing import Any

from planner.errors import MalformedContainer, TruncatedInput, UnsupportedVersion
from planner.gguf.constants import (
    GGUF_MAGIC,
    GGUF_MIN_VERSION,
    MAX_ARRAY_DEPTH,
    SCALAR_FORMATS,
    GGUFValueType,
)
from planner.gguf.metadata import ModelMetadata

logger = logging.getLogger(__name__)

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


# ---------------------------------------------------------------------------
# Bounds-checked primitive reads
# ---------------------------------------------------------------------------


def _ensure(buf: bytes, offset: int, size: int) -> None:
    if offset + size > len(buf):
        raise TruncatedInput(offset=offset, needed=size, available=len(buf))


def _read_u32(buf: bytes, offset: int) -> int:
    _ensure(buf, offset, 4)
    return _U32.unpack_from(buf, offset)[0]


def _read_u64(buf: bytes, offset: int) -> int:
    _ensure(buf, offset, 8)
    return _U64.unpack_from(buf, offset)[0]


def _value_type(tag: int, offset: int, context: str) -> GGUFValueType:
    try:
        return GGUFValueType(tag)
    except ValueError:
        raise MalformedContainer(
            expected=f"value type tag 0-{max(GGUFValueType)}",
            actual=tag,
            details=f"{context} at offset {offset}",
        ) from None


def read_string(buf: bytes, offset: int) -> tuple[str, int]:
    """Read a u64 length-prefixed UTF-8 string. Returns (value, bytes consumed)."""
    length = _read_u64(buf, offset)
    _ensure(buf, offset + 8, length)
    start = offset + 8
    value = bytes(buf[start : start + length]).decode("utf-8", errors="replace")
    return value, 8 + length


def read_value(
    buf: bytes, offset: int, value_type: GGUFValueType, depth: int = 0
) -> tuple[Any, int]:
    """Read one value of *value_type* at *offset*.

    Returns ``(value, bytes consumed)`` so the caller can advance its cursor
    exactly.  Arrays are returned as tuples and may nest up to
    ``MAX_ARRAY_DEPTH`` levels; *depth* is the nesting level of *offset*.
    """
    if value_type == GGUFValueType.STRING:
        return read_string(buf, offset)

    if value_type == GGUFValueType.ARRAY:
        return _read_array(buf, offset, depth + 1)

    fmt = SCALAR_FORMATS[value_type]
    size = struct.calcsize(fmt)
    _ensure(buf, offset, size)
    return struct.unpack_from(fmt, buf, offset)[0], size


def _read_array(buf: bytes, offset: int, depth: int) -> tuple[tuple, int]:
    if depth > MAX_ARRAY_DEPTH:
        raise MalformedContainer(
            expected=f"array nesting <= {MAX_ARRAY_DEPTH}",
            actual=depth,
            details=f"array at offset {offset}",
        )
    element_type = _value_type(_read_u32(buf, offset), offset, "array element type")
    count = _read_u64(buf, offset + 4)
    cursor = offset + 12

    fmt = SCALAR_FORMATS.get(element_type)
    if fmt is not None:
        # Fixed-width elements: check the whole run once, then unpack in bulk
        size = struct.calcsize(fmt)
        _ensure(buf, cursor, count * size)
        values = struct.unpack_from(f"<{count}{fmt[1:]}", buf, cursor)
        return values, 12 + count * size

    # Variable-width elements (strings, nested arrays): each read is checked
    items = []
    for _ in range(count):
        value, consumed = read_value(buf, cursor, element_type, depth)
        items.append(value)
        cursor += consumed
    return tuple(items), cursor - offset


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def decode(data: bytes | bytearray | memoryview) -> ModelMetadata:
    """Decode the GGUF header in *data* into a ``ModelMetadata``.

    Raises ``MalformedContainer`` on a bad magic or unknown type tag,
    ``UnsupportedVersion`` for pre-v2 files and ``TruncatedInput`` when *data*
    ends before the key/value section does.  Nothing is returned on failure;
    there is no partially decoded result.
    """
    buf = bytes(data)

    _ensure(buf, 0, 4)
    magic = buf[:4]
    if magic != GGUF_MAGIC:
        raise MalformedContainer(expected=GGUF_MAGIC, actual=magic, details="magic")

    version = _read_u32(buf, 4)
    if version < GGUF_MIN_VERSION:
        raise UnsupportedVersion(version=version, minimum=GGUF_MIN_VERSION)

    tensor_count = _read_u64(buf, 8)
    kv_count = _read_u64(buf, 16)
    offset = 24

    # kv_count is not checked against len(buf): an implausibly large count
    # simply runs into the bounds checks below.
    values: dict[str, Any] = {}
    for _ in range(kv_count):
        key, consumed = read_string(buf, offset)
        offset += consumed

        tag_offset = offset
        value_type = _value_type(_read_u32(buf, offset), tag_offset, f"key {key!r}")
        offset += 4

        value, consumed = read_value(buf, offset, value_type)
        offset += consumed
        values[key] = value

    logger.debug(
        "Decoded GGUF v%d header: %d keys, %d tensors, %d bytes",
        version,
        len(values),
        tensor_count,
        offset,
    )
    return ModelMetadata(
        values=values,
        version=version,
        tensor_count=tensor_count,
        header_size=offset,
    )
