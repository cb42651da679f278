from dataclasses import dataclass, replace

import pytest

from alephbft.codec import encode_bytes
from alephbft.nodes import NodeCount, NodeIndex, NodeMap
from alephbft.signed import (
    DefaultMultiKeychain,
    Indexed,
    KeyBox,
    PartiallyMultisigned,
    SignatureError,
    SignatureSet,
    Signed,
    UncheckedSigned,
)


@dataclass(frozen=True)
class Message:
    msg: bytes

    def hash(self) -> bytes:
        return self.msg


def hello() -> Message:
    return Message(b"Hello")


@dataclass(frozen=True)
class FakeSignature:
    msg: bytes
    index: NodeIndex

    def encode(self) -> bytes:
        return encode_bytes(self.msg) + NodeIndex(self.index).encode()


class FakeKeyBox(KeyBox):
    def __init__(self, count, index):
        self._count = NodeCount(count)
        self._index = NodeIndex(index)

    def index(self):
        return self._index

    def node_count(self):
        return self._count

    async def sign(self, msg):
        return FakeSignature(bytes(msg), self._index)

    def verify(self, msg, signature, index):
        return index == signature.index and bytes(msg) == signature.msg


def keychain(count, index):
    return DefaultMultiKeychain(FakeKeyBox(count, index))


def keychains(count):
    return [keychain(count, i) for i in range(count)]


@pytest.mark.asyncio
async def test_valid_signatures():
    chains = keychains(7)
    for signer in chains:
        for checker in chains:
            signed = await Signed.sign_with_index(hello(), signer)
            checked = signed.unchecked.check(checker)
            assert checked.signable == Indexed(hello(), signer.index())


@pytest.mark.asyncio
async def test_invalid_signatures():
    chain = keychain(1, 0)
    signed = await Signed.sign_with_index(hello(), chain)
    unchecked = signed.unchecked
    tampered = replace(unchecked, signature=replace(unchecked.signature, index=NodeIndex(1)))
    with pytest.raises(SignatureError) as info:
        tampered.check(chain)
    assert info.value.unchecked == tampered


@pytest.mark.asyncio
async def test_incomplete_multisignature():
    partial = await PartiallyMultisigned.sign(hello(), keychain(2, 0))
    assert partial.is_complete() is False
    assert partial.multisigned is None


@pytest.mark.asyncio
async def test_multisignatures():
    chains = keychains(7)
    partial = await PartiallyMultisigned.sign(hello(), chains[0])
    for chain in chains[1:5]:
        assert not partial.is_complete()
        signed = await Signed.sign_with_index(hello(), chain)
        partial = partial.add_signature(signed, chain)
    assert partial.is_complete()
    assert partial.multisigned.signable == hello()
    assert len(partial.unchecked.signature) == 5


@pytest.mark.asyncio
async def test_single_node_signature_is_complete_immediately():
    partial = await PartiallyMultisigned.sign(hello(), keychain(1, 0))
    assert partial.is_complete()


@pytest.mark.asyncio
async def test_complete_multisignature_passes_check_multi():
    chains = keychains(4)
    partial = await PartiallyMultisigned.sign(hello(), chains[0])
    for chain in chains[1:3]:
        partial = partial.add_signature(await Signed.sign_with_index(hello(), chain), chain)
    multisigned = partial.unchecked.check_multi(chains[3])
    assert multisigned.signable == hello()


def test_empty_multisignature_fails_check_multi():
    chain = keychain(10, 0)
    unchecked = UncheckedSigned(hello(), SignatureSet.empty(10))
    with pytest.raises(SignatureError):
        unchecked.check_multi(chain)


@pytest.mark.asyncio
async def test_multisignature_with_bad_signature_is_incomplete():
    chain = keychain(1, 0)
    bad = SignatureSet.empty(1).add_signature(FakeSignature(b"other", NodeIndex(0)), 0)
    assert chain.is_complete(b"Hello", bad) is False


@pytest.mark.asyncio
async def test_adding_signature_of_other_object_is_ignored():
    chains = keychains(4)
    partial = await PartiallyMultisigned.sign(hello(), chains[0])
    other = await Signed.sign_with_index(Message(b"Bye"), chains[1])
    assert partial.add_signature(other, chains[1]) == partial


@pytest.mark.asyncio
async def test_sign_rejects_mismatched_index():
    chain = keychain(3, 1)
    with pytest.raises(ValueError):
        await Signed.sign(Indexed(hello(), 0), chain)


@pytest.mark.asyncio
async def test_strip_index_keeps_signature():
    chain = keychain(3, 2)
    signed = await Signed.sign_with_index(hello(), chain)
    stripped = signed.unchecked.strip_index()
    assert stripped.signable == hello()
    assert stripped.signature == FakeSignature(b"Hello", NodeIndex(2))
    assert signed.unchecked.index() == NodeIndex(2)


def test_strip_index_requires_indexed_data():
    with pytest.raises(TypeError):
        UncheckedSigned(hello(), None).strip_index()


@pytest.mark.parametrize("count, quorum", [(1, 1), (2, 2), (4, 3), (7, 5), (10, 7)])
def test_quorum(count, quorum):
    assert keychain(count, 0).quorum() == quorum


def test_signature_set_add_returns_new_set():
    empty = SignatureSet.empty(3)
    added = empty.add_signature(FakeSignature(b"x", NodeIndex(1)), NodeIndex(1))
    assert len(empty) == 0
    assert len(added) == 1
    assert list(added.signatures) == [None, FakeSignature(b"x", NodeIndex(1)), None]


def test_signature_set_encoding():
    assert SignatureSet.empty(2).encode() == b"\x08\x00\x00"
    added = SignatureSet.empty(1).add_signature(FakeSignature(b"A", NodeIndex(0)), 0)
    assert added.encode() == b"\x04\x01\x04A" + bytes(8)


def test_from_signature_holds_only_that_signature():
    chain = keychain(3, 0)
    sig = FakeSignature(b"m", NodeIndex(2))
    assert chain.from_signature(sig, NodeIndex(2)) == SignatureSet(NodeMap([None, None, sig]))


def test_indexed_hash_and_encoding():
    indexed = Indexed(b"ab", 3)
    assert indexed.hash() == b"ab"
    assert indexed.index() == NodeIndex(3)
    assert indexed.encode() == b"\x08ab" + (3).to_bytes(8, "little")


def test_unchecked_signed_encoding():
    unchecked = UncheckedSigned(Indexed(b"a", 1), FakeSignature(b"a", NodeIndex(1)))
    one = (1).to_bytes(8, "little")
    assert unchecked.encode() == b"\x04a" + one + b"\x04a" + one