"""Units of the DAG: coordinates, control hashes and unit bodies."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from alephbft.codec import ByteReader, encode_bytes, encode_option, encode_u16, encode_u64
from alephbft.nodes import BoolNodeMap, NodeCount, NodeIndex, NodeMap

_MAX_ROUND = (1 << 16) - 1


@dataclass(frozen=True)
class Hasher:
    """Fixed-size hash function producing ``digest_size`` bytes."""

    digest_size: int = 32

    def __post_init__(self) -> None:
        if not 1 <= self.digest_size <= 64:
            raise ValueError("digest size must be between 1 and 64 bytes")

    def hash(self, data: bytes) -> bytes:
        return hashlib.blake2b(bytes(data), digest_size=self.digest_size).digest()


@dataclass(frozen=True)
class UnitCoord:
    """The round and creator identifying a unit slot."""

    round: int
    creator: NodeIndex

    def __post_init__(self) -> None:
        if not 0 <= self.round <= _MAX_ROUND:
            raise ValueError(f"round {self.round} out of range")
        object.__setattr__(self, "creator", NodeIndex(self.creator))

    def encode(self) -> bytes:
        return encode_u16(self.round) + self.creator.encode()

    @classmethod
    def decode(cls, reader: ByteReader) -> "UnitCoord":
        round_ = reader.read_u16()
        return cls(round_, NodeIndex.decode(reader))


def _encode_hash(value: bytes) -> bytes:
    return bytes(value)


@dataclass(frozen=True)
class ControlHash:
    """Combined hash of a unit's parents together with the mask of their creators."""

    parents_mask: BoolNodeMap
    combined_hash: bytes

    @classmethod
    def from_parents(cls, parent_map: NodeMap, hasher: Hasher) -> "ControlHash":
        mask = BoolNodeMap(value is not None for value in parent_map)
        return cls(mask, cls.combine_hashes(parent_map, hasher))

    @staticmethod
    def combine_hashes(parent_map: NodeMap, hasher: Hasher) -> bytes:
        return hasher.hash(parent_map.encode(lambda value: encode_option(value, _encode_hash)))

    def parents(self) -> Iterator[NodeIndex]:
        return self.parents_mask.true_indices()

    @property
    def n_parents(self) -> NodeCount:
        return NodeCount(sum(1 for _ in self.parents()))

    @property
    def n_members(self) -> NodeCount:
        return NodeCount(self.parents_mask.capacity())

    def encode(self) -> bytes:
        return self.parents_mask.encode() + bytes(self.combined_hash)

    @classmethod
    def decode(cls, reader: ByteReader, hasher: Hasher) -> "ControlHash":
        mask = BoolNodeMap.decode(reader)
        return cls(mask, reader.read(hasher.digest_size))


@dataclass(frozen=True)
class PreUnit:
    """Coordinates and control hash of a unit."""

    coord: UnitCoord
    control_hash: ControlHash

    @property
    def creator(self) -> NodeIndex:
        return self.coord.creator

    @property
    def round(self) -> int:
        return self.coord.round

    @property
    def n_parents(self) -> NodeCount:
        return self.control_hash.n_parents

    @property
    def n_members(self) -> NodeCount:
        return self.control_hash.n_members

    def encode(self) -> bytes:
        return self.coord.encode() + self.control_hash.encode()

    @classmethod
    def decode(cls, reader: ByteReader, hasher: Hasher) -> "PreUnit":
        coord = UnitCoord.decode(reader)
        return cls(coord, ControlHash.decode(reader, hasher))


@dataclass(frozen=True)
class Unit:
    """A pre-unit together with the hash of its full unit."""

    pre_unit: PreUnit
    hash: bytes

    @property
    def creator(self) -> NodeIndex:
        return self.pre_unit.creator

    @property
    def round(self) -> int:
        return self.pre_unit.round

    @property
    def coord(self) -> UnitCoord:
        return self.pre_unit.coord

    @property
    def control_hash(self) -> ControlHash:
        return self.pre_unit.control_hash

    def encode(self) -> bytes:
        return self.pre_unit.encode() + bytes(self.hash)

    @classmethod
    def decode(cls, reader: ByteReader, hasher: Hasher) -> "Unit":
        pre_unit = PreUnit.decode(reader, hasher)
        return cls(pre_unit, reader.read(hasher.digest_size))


def _encode_data(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return encode_bytes(data)
    return data.encode()


class FullUnit:
    """A pre-unit with its data and session; the hash is computed once on demand."""

    __slots__ = ("pre_unit", "data", "session_id", "_hasher", "_hash")

    def __init__(self, pre_unit: PreUnit, data: Any, session_id: int, hasher: Hasher) -> None:
        self.pre_unit = pre_unit
        self.data = data
        self.session_id = session_id
        self._hasher = hasher
        self._hash: Optional[bytes] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FullUnit):
            return NotImplemented
        return (self.pre_unit, self.data, self.session_id) == (
            other.pre_unit,
            other.data,
            other.session_id,
        )

    def __hash__(self) -> int:
        return hash((self.pre_unit, self.data, self.session_id))

    def __repr__(self) -> str:
        return (
            f"FullUnit(pre_unit={self.pre_unit!r}, data={self.data!r}, "
            f"session_id={self.session_id!r})"
        )

    @property
    def creator(self) -> NodeIndex:
        return self.pre_unit.creator

    @property
    def round(self) -> int:
        return self.pre_unit.round

    @property
    def coord(self) -> UnitCoord:
        return self.pre_unit.coord

    @property
    def control_hash(self) -> ControlHash:
        return self.pre_unit.control_hash

    def hash(self) -> bytes:
        if self._hash is None:
            self._hash = self._hasher.hash(self.encode())
        return self._hash

    def index(self) -> NodeIndex:
        return self.creator

    def unit(self) -> Unit:
        return Unit(self.pre_unit, self.hash())

    def encode(self) -> bytes:
        return self.pre_unit.encode() + _encode_data(self.data) + encode_u64(self.session_id)

    @classmethod
    def decode(
        cls,
        reader: ByteReader,
        hasher: Hasher,
        decode_data: Callable[[ByteReader], Any],
    ) -> "FullUnit":
        pre_unit = PreUnit.decode(reader, hasher)
        data = decode_data(reader)
        session_id = reader.read_u64()
        return cls(pre_unit, data, session_id, hasher)