"""Signatures, multisignatures and the keychain abstractions that produce them."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from alephbft.codec import encode_bytes, encode_option
from alephbft.nodes import NodeCount, NodeIndex, NodeMap

log = logging.getLogger(__name__)

T = TypeVar("T")


def _signable_hash(signable: Any) -> bytes:
    """The bytes a keychain signs for ``signable``."""
    if isinstance(signable, (bytes, bytearray, memoryview)):
        return bytes(signable)
    return bytes(signable.hash())


def _encode(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return encode_bytes(bytes(value))
    return value.encode()


class KeyBox(abc.ABC):
    """Signs messages as one node and verifies signatures of every node."""

    @abc.abstractmethod
    def index(self) -> NodeIndex:
        """The index of the node owning the private key."""

    @abc.abstractmethod
    def node_count(self) -> NodeCount:
        """The total number of known public keys."""

    @abc.abstractmethod
    async def sign(self, msg: bytes) -> Any:
        """Sign ``msg``."""

    @abc.abstractmethod
    def verify(self, msg: bytes, signature: Any, index: NodeIndex) -> bool:
        """Whether the node ``index`` correctly signed ``msg``."""


class MultiKeychain(KeyBox):
    """A key box that can also aggregate signatures into multisignatures."""

    @abc.abstractmethod
    def from_signature(self, signature: Any, index: NodeIndex) -> Any:
        """A partial multisignature holding a single signature."""

    @abc.abstractmethod
    def is_complete(self, msg: bytes, partial: Any) -> bool:
        """Whether enough valid signatures have been added to ``partial``."""


class SignatureError(ValueError):
    """Raised when a signature or multisignature does not verify."""

    def __init__(self, unchecked: "UncheckedSigned") -> None:
        super().__init__("signature verification failed")
        self.unchecked = unchecked


@dataclass(frozen=True)
class Indexed(Generic[T]):
    """Signable data paired with the index of the node that signs it.

    Its hash is the hash of the wrapped data, so indexed signatures of the same
    data from different nodes can be aggregated.
    """

    signable: T
    node: NodeIndex

    def __post_init__(self) -> None:
        object.__setattr__(self, "node", NodeIndex(self.node))

    def hash(self) -> bytes:
        return _signable_hash(self.signable)

    def index(self) -> NodeIndex:
        return self.node

    def encode(self) -> bytes:
        return _encode(self.signable) + self.node.encode()


@dataclass(frozen=True)
class UncheckedSigned(Generic[T]):
    """Signable data with a signature that has not been verified."""

    signable: T
    signature: Any

    def index(self) -> NodeIndex:
        return self.signable.index()

    def check(self, key_box: KeyBox) -> "Signed[T]":
        """Verify the signature against the index carried by the data."""
        if not key_box.verify(_signable_hash(self.signable), self.signature, self.index()):
            raise SignatureError(self)
        return Signed(self)

    def check_multi(self, keychain: MultiKeychain) -> "Multisigned[T]":
        """Verify that the signature is a complete multisignature of the data."""
        if not keychain.is_complete(_signable_hash(self.signable), self.signature):
            raise SignatureError(self)
        return Multisigned(self)

    def strip_index(self) -> "UncheckedSigned":
        """Drop the node index from indexed data, keeping the signature."""
        if not isinstance(self.signable, Indexed):
            raise TypeError("only indexed data carries an index to strip")
        return UncheckedSigned(self.signable.signable, self.signature)

    def encode(self) -> bytes:
        return _encode(self.signable) + _encode(self.signature)


@dataclass(frozen=True)
class Signed(Generic[T]):
    """Data whose signature has been verified or produced locally."""

    unchecked: UncheckedSigned[T]

    @property
    def signable(self) -> T:
        return self.unchecked.signable

    @property
    def signature(self) -> Any:
        return self.unchecked.signature

    @classmethod
    async def sign(cls, signable: T, key_box: KeyBox) -> "Signed[T]":
        """Sign data whose index must match the index of ``key_box``."""
        if signable.index() != key_box.index():
            raise ValueError(
                f"data index {signable.index()} differs from key box index {key_box.index()}"
            )
        signature = await key_box.sign(_signable_hash(signable))
        return cls(UncheckedSigned(signable, signature))

    @classmethod
    async def sign_with_index(cls, signable: Any, key_box: KeyBox) -> "Signed[Indexed]":
        """Sign data, attaching the index of ``key_box``."""
        return await cls.sign(Indexed(signable, key_box.index()), key_box)

    def into_partially_multisigned(self, keychain: MultiKeychain) -> "PartiallyMultisigned":
        """Turn an indexed signature into a multisignature holding just that signature."""
        indexed = self.signable
        if not isinstance(indexed, Indexed):
            raise TypeError("only indexed signatures can start a multisignature")
        multisignature = keychain.from_signature(self.signature, indexed.node)
        unchecked = UncheckedSigned(indexed.signable, multisignature)
        complete = keychain.is_complete(_signable_hash(unchecked.signable), multisignature)
        return PartiallyMultisigned(unchecked, complete)


@dataclass(frozen=True)
class Multisigned(Generic[T]):
    """Data together with a valid, complete multisignature."""

    unchecked: UncheckedSigned[T]

    @property
    def signable(self) -> T:
        return self.unchecked.signable

    @property
    def signature(self) -> Any:
        return self.unchecked.signature


@dataclass(frozen=True)
class PartiallyMultisigned(Generic[T]):
    """Data with a valid partial multisignature, tracking whether it is complete."""

    unchecked: UncheckedSigned[T]
    complete: bool = False

    @classmethod
    async def sign(cls, signable: T, keychain: MultiKeychain) -> "PartiallyMultisigned[T]":
        signed = await Signed.sign_with_index(signable, keychain)
        return signed.into_partially_multisigned(keychain)

    def is_complete(self) -> bool:
        return self.complete

    @property
    def signable(self) -> T:
        return self.unchecked.signable

    @property
    def multisigned(self) -> Optional[Multisigned[T]]:
        """The complete multisignature, or None while it is incomplete."""
        return Multisigned(self.unchecked) if self.complete else None

    def add_signature(
        self, signed: Signed, keychain: MultiKeychain
    ) -> "PartiallyMultisigned[T]":
        """Add an indexed signature and recheck completeness."""
        if _signable_hash(self.signable) != _signable_hash(signed.signable):
            log.warning("Tried to add a signature of a different object")
            return self
        if self.complete:
            return self
        signature = self.unchecked.signature.add_signature(
            signed.signature, signed.signable.index()
        )
        unchecked = UncheckedSigned(self.unchecked.signable, signature)
        complete = keychain.is_complete(_signable_hash(unchecked.signable), signature)
        return PartiallyMultisigned(unchecked, complete)


class SignatureSet:
    """A partial multisignature made of the signatures of a subset of nodes."""

    __slots__ = ("signatures",)

    def __init__(self, signatures: NodeMap) -> None:
        self.signatures = signatures

    @classmethod
    def empty(cls, node_count: int) -> "SignatureSet":
        return cls(NodeMap.with_len(node_count))

    def add_signature(self, signature: Any, index: NodeIndex) -> "SignatureSet":
        """A copy of this set with the signature of node ``index`` added."""
        signatures = NodeMap(self.signatures)
        signatures[index] = signature
        return SignatureSet(signatures)

    def __len__(self) -> int:
        return sum(1 for signature in self.signatures if signature is not None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignatureSet):
            return NotImplemented
        return self.signatures == other.signatures

    __hash__ = None

    def __repr__(self) -> str:
        return f"SignatureSet({list(self.signatures)!r})"

    def encode(self) -> bytes:
        return self.signatures.encode(lambda value: encode_option(value, _encode))


class DefaultMultiKeychain(MultiKeychain):
    """A multikeychain whose multisignatures are plain sets of signatures.

    A set is complete once it holds more than two thirds of the committee's
    signatures and all of them verify.
    """

    def __init__(self, key_box: KeyBox) -> None:
        self.key_box = key_box

    def __repr__(self) -> str:
        return f"DefaultMultiKeychain({self.key_box!r})"

    def index(self) -> NodeIndex:
        return self.key_box.index()

    def node_count(self) -> NodeCount:
        return self.key_box.node_count()

    def quorum(self) -> int:
        return 2 * int(self.node_count()) // 3 + 1

    async def sign(self, msg: bytes) -> Any:
        return await self.key_box.sign(msg)

    def verify(self, msg: bytes, signature: Any, index: NodeIndex) -> bool:
        return self.key_box.verify(msg, signature, index)

    def from_signature(self, signature: Any, index: NodeIndex) -> SignatureSet:
        return SignatureSet.empty(self.node_count()).add_signature(signature, index)

    def is_complete(self, msg: bytes, partial: SignatureSet) -> bool:
        if len(partial) < self.quorum():
            return False
        return all(
            self.key_box.verify(msg, signature, index)
            for index, signature in partial.signatures.enumerate()
            if signature is not None
        )