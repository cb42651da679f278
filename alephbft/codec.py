"""Little-endian binary encoding with compact length prefixes."""

from __future__ import annotations

from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")

_MAX_BIG_COMPACT_BYTES = 67


class CodecError(ValueError):
    """Raised when a byte string cannot be decoded."""


def _encode_uint(value: int, width: int) -> bytes:
    if not 0 <= value < 1 << (8 * width):
        raise ValueError(f"{value} does not fit in an unsigned {8 * width}-bit integer")
    return value.to_bytes(width, "little")


def encode_u8(value: int) -> bytes:
    """Encode an unsigned 8-bit integer."""
    return _encode_uint(value, 1)


def encode_u16(value: int) -> bytes:
    """Encode an unsigned 16-bit integer, little-endian."""
    return _encode_uint(value, 2)


def encode_u32(value: int) -> bytes:
    """Encode an unsigned 32-bit integer, little-endian."""
    return _encode_uint(value, 4)


def encode_u64(value: int) -> bytes:
    """Encode an unsigned 64-bit integer, little-endian."""
    return _encode_uint(value, 8)


def encode_compact(value: int) -> bytes:
    """Encode a non-negative integer in the variable-length compact form."""
    if value < 0:
        raise ValueError("compact integers must be non-negative")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return ((value << 2) | 0b01).to_bytes(2, "little")
    if value < 1 << 30:
        return ((value << 2) | 0b10).to_bytes(4, "little")
    length = max(4, (value.bit_length() + 7) // 8)
    if length > _MAX_BIG_COMPACT_BYTES:
        raise ValueError(f"{value} is too large for compact encoding")
    return bytes([((length - 4) << 2) | 0b11]) + value.to_bytes(length, "little")


def encode_bytes(data: bytes) -> bytes:
    """Encode a byte string prefixed with its compact length."""
    data = bytes(data)
    return encode_compact(len(data)) + data


def encode_option(value: Optional[T], encoder: Callable[[T], bytes]) -> bytes:
    """Encode an optional value: a zero tag, or a one tag followed by the value."""
    if value is None:
        return b"\x00"
    return b"\x01" + encoder(value)


def encode_sequence(items: Iterable[T], encoder: Callable[[T], bytes]) -> bytes:
    """Encode a sequence prefixed with its compact length."""
    items = list(items)
    return encode_compact(len(items)) + b"".join(encoder(item) for item in items)


class ByteReader:
    """Sequential reader over an encoded byte string."""

    __slots__ = ("_data", "_pos")

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def read(self, n: int) -> bytes:
        """Read exactly ``n`` bytes."""
        if n < 0:
            raise ValueError("cannot read a negative number of bytes")
        end = self._pos + n
        if end > len(self._data):
            remaining = len(self._data) - self._pos
            raise CodecError(f"unexpected end of input: needed {n} bytes, {remaining} left")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def _read_uint(self, width: int) -> int:
        return int.from_bytes(self.read(width), "little")

    def read_u8(self) -> int:
        return self._read_uint(1)

    def read_u16(self) -> int:
        return self._read_uint(2)

    def read_u32(self) -> int:
        return self._read_uint(4)

    def read_u64(self) -> int:
        return self._read_uint(8)

    def read_compact(self) -> int:
        """Read a compact integer, rejecting non-canonical encodings."""
        first = self.read_u8()
        mode = first & 0b11
        if mode == 0:
            return first >> 2
        if mode == 1:
            value = (first | (self.read_u8() << 8)) >> 2
            if value < 1 << 6:
                raise CodecError("non-canonical compact integer")
            return value
        if mode == 2:
            value = int.from_bytes(bytes([first]) + self.read(3), "little") >> 2
            if value < 1 << 14:
                raise CodecError("non-canonical compact integer")
            return value
        length = (first >> 2) + 4
        raw = self.read(length)
        value = int.from_bytes(raw, "little")
        if value < 1 << 30 or raw[-1] == 0:
            raise CodecError("non-canonical compact integer")
        return value

    def read_bytes(self) -> bytes:
        """Read a byte string prefixed with its compact length."""
        return self.read(self.read_compact())

    def at_end(self) -> bool:
        """Whether every byte has been consumed."""
        return self._pos == len(self._data)