"""Node indices, counts and per-node maps."""

from __future__ import annotations

import operator
from typing import Callable, Generic, Iterable, Iterator, TypeVar

from alephbft.codec import ByteReader, CodecError, encode_bytes, encode_sequence, encode_u32, encode_u64

T = TypeVar("T")


class NodeIndex(int):
    """The index of a committee member."""

    __slots__ = ()

    def __new__(cls, value: int = 0) -> "NodeIndex":
        value = operator.index(value)
        if value < 0:
            raise ValueError("node index must be non-negative")
        return super().__new__(cls, value)

    def __repr__(self) -> str:
        return f"NodeIndex({int(self)})"

    def encode(self) -> bytes:
        return encode_u64(int(self))

    @classmethod
    def decode(cls, reader: ByteReader) -> "NodeIndex":
        return cls(reader.read_u64())


class NodeCount(int):
    """A number of committee members."""

    __slots__ = ()

    def __new__(cls, value: int = 0) -> "NodeCount":
        value = operator.index(value)
        if value < 0:
            raise ValueError("node count must be non-negative")
        return super().__new__(cls, value)

    def __repr__(self) -> str:
        return f"NodeCount({int(self)})"

    def __add__(self, other):
        if not isinstance(other, int):
            return NotImplemented
        return NodeCount(int(self) + int(other))

    __radd__ = __add__

    def __sub__(self, other):
        if not isinstance(other, int):
            return NotImplemented
        return NodeCount(int(self) - int(other))

    def __mul__(self, other):
        if not isinstance(other, int):
            return NotImplemented
        return NodeCount(int(self) * int(other))

    __rmul__ = __mul__

    def __floordiv__(self, other):
        if not isinstance(other, int):
            return NotImplemented
        return NodeCount(int(self) // int(other))

    def indices(self) -> Iterator[NodeIndex]:
        """All node indices below this count."""
        return (NodeIndex(i) for i in range(int(self)))


def _position(index: int, length: int) -> int:
    index = operator.index(index)
    if not 0 <= index < length:
        raise IndexError(f"node index {index} out of range for {length} nodes")
    return index


class NodeMap(Generic[T]):
    """A value for each node, addressed by node index."""

    __slots__ = ("_values",)

    def __init__(self, values: Iterable[T] = ()) -> None:
        self._values = list(values)

    @classmethod
    def with_len(cls, length: int, default: T = None) -> "NodeMap[T]":
        return cls([default] * int(length))

    def __getitem__(self, index: int) -> T:
        return self._values[_position(index, len(self._values))]

    def __setitem__(self, index: int, value: T) -> None:
        self._values[_position(index, len(self._values))] = value

    def __iter__(self) -> Iterator[T]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NodeMap):
            return NotImplemented
        return self._values == other._values

    __hash__ = None

    def __repr__(self) -> str:
        return f"NodeMap({self._values!r})"

    def enumerate(self) -> Iterator[tuple[NodeIndex, T]]:
        """Pairs of node index and value."""
        return ((NodeIndex(i), value) for i, value in enumerate(self._values))

    def encode(self, encoder: Callable[[T], bytes]) -> bytes:
        return encode_sequence(self._values, encoder)

    @classmethod
    def decode(cls, reader: ByteReader, decoder: Callable[[ByteReader], T]) -> "NodeMap[T]":
        count = reader.read_compact()
        return cls(decoder(reader) for _ in range(count))


class BoolNodeMap:
    """A fixed-size set of nodes stored as a bit vector."""

    __slots__ = ("_bits",)

    def __init__(self, bits: Iterable[bool] = ()) -> None:
        self._bits = [bool(bit) for bit in bits]

    @classmethod
    def with_capacity(cls, capacity: int) -> "BoolNodeMap":
        return cls([False] * int(capacity))

    def capacity(self) -> int:
        return len(self._bits)

    def set(self, index: int) -> None:
        self._bits[_position(index, len(self._bits))] = True

    def true_indices(self) -> Iterator[NodeIndex]:
        return (NodeIndex(i) for i, bit in enumerate(self._bits) if bit)

    def __getitem__(self, index: int) -> bool:
        return self._bits[_position(index, len(self._bits))]

    def __iter__(self) -> Iterator[bool]:
        return iter(self._bits)

    def __len__(self) -> int:
        return len(self._bits)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BoolNodeMap):
            return NotImplemented
        return self._bits == other._bits

    def __hash__(self) -> int:
        return hash(tuple(self._bits))

    def __repr__(self) -> str:
        return "BoolNodeMap(" + "".join("1" if bit else "0" for bit in self._bits) + ")"

    def _packed(self) -> bytes:
        if not self._bits:
            return b""
        n_bytes = (len(self._bits) + 7) // 8
        text = "".join("1" if bit else "0" for bit in self._bits).ljust(8 * n_bytes, "0")
        return int(text, 2).to_bytes(n_bytes, "big")

    def encode(self) -> bytes:
        return encode_u32(len(self._bits)) + encode_bytes(self._packed())

    @classmethod
    def decode(cls, reader: ByteReader) -> "BoolNodeMap":
        capacity = reader.read_u32()
        packed = reader.read_bytes()
        bits = "".join(f"{byte:08b}" for byte in packed)
        if len(bits) != 8 * ((capacity + 7) // 8):
            raise CodecError("Length of bitvector inconsistent with encoded capacity.")
        if "1" in bits[capacity:]:
            raise CodecError("Non-canonical encoding. Trailing bits should be all 0.")
        return cls(bit == "1" for bit in bits[:capacity])