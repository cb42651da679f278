import pytest

from alephbft.codec import encode_u32
from alephbft.nodes import NodeCount, NodeIndex, NodeMap
from alephbft.signed import KeyBox, Signed
from alephbft.store import UnitStore
from alephbft.units import ControlHash, FullUnit, Hasher, PreUnit, UnitCoord

HASHER = Hasher(8)


class _UnitKeyBox(KeyBox):
    def __init__(self, count, ix):
        self._count = NodeCount(count)
        self._ix = NodeIndex(ix)

    def index(self):
        return self._ix

    def node_count(self):
        return self._count

    async def sign(self, msg):
        return b""

    def verify(self, msg, signature, index):
        return True


async def create_unit(round_, node, count, keybox, variant=0):
    pre_unit = PreUnit(
        UnitCoord(round_, NodeIndex(node)),
        ControlHash.from_parents(NodeMap.with_len(count), HASHER),
    )
    data = UnitCoord(round_, NodeIndex(node)).encode() + encode_u32(variant)
    full_unit = FullUnit(pre_unit, data, 0, HASHER)
    return await Signed.sign(full_unit, keybox)


@pytest.mark.asyncio
async def test_mark_forker_restore_state():
    n_nodes = NodeCount(10)
    store = UnitStore(n_nodes, 100)
    keyboxes = [_UnitKeyBox(n_nodes, i) for i in range(5)]
    forker_hashes = []

    for round_ in range(4):
        for i, keybox in enumerate(keyboxes):
            unit = await create_unit(round_, i, n_nodes, keybox)
            if i == 0:
                forker_hashes.append(unit.signable.hash())
            store.add_unit(unit, False)

    for round_ in range(4, 7):
        unit = await create_unit(round_, 0, n_nodes, keyboxes[0])
        forker_hashes.append(unit.signable.hash())
        store.add_unit(unit, False)

    forker_rounds = [unit.signable.round for unit in store.mark_forker(NodeIndex(0))]
    assert forker_rounds == [0, 1, 2, 3, 4, 5, 6]
    assert store.is_forker(NodeIndex(0))

    assert len(forker_hashes) == 7
    coords_present = [store.contains_coord(UnitCoord(r, NodeIndex(0))) for r in range(7)]
    assert coords_present == [True] * 7
    hashes_present = [store.contains_hash(h) for h in forker_hashes]
    assert hashes_present == [True] * 7


@pytest.mark.asyncio
async def test_duplicates_are_ignored_and_buffer_empties():
    store = UnitStore(4, 10)
    keybox = _UnitKeyBox(4, 1)
    unit = await create_unit(0, 1, 4, keybox)
    store.add_unit(unit, False)
    store.add_unit(unit, False)
    assert store.yield_buffer_units() == [unit]
    assert store.yield_buffer_units() == []
    assert store.unit_by_hash(unit.signable.hash()) == unit
    assert store.unit_by_coord(UnitCoord(0, NodeIndex(1))) == unit


@pytest.mark.asyncio
async def test_is_new_fork():
    store = UnitStore(4, 10)
    keybox = _UnitKeyBox(4, 2)
    original = await create_unit(3, 2, 4, keybox, variant=0)
    fork = await create_unit(3, 2, 4, keybox, variant=1)
    store.add_unit(original, False)
    assert store.is_new_fork(original.signable) is None
    assert store.is_new_fork(fork.signable) == original


@pytest.mark.asyncio
async def test_forker_units_are_not_legit_without_alert():
    store = UnitStore(4, 10)
    keybox = _UnitKeyBox(4, 3)
    store.mark_forker(NodeIndex(3))
    plain = await create_unit(0, 3, 4, keybox, variant=0)
    alerted = await create_unit(1, 3, 4, keybox, variant=0)
    store.add_unit(plain, False)
    store.add_unit(alerted, True)
    assert store.yield_buffer_units() == [alerted]
    assert store.contains_hash(plain.signable.hash())


@pytest.mark.asyncio
async def test_alerted_unit_requires_marked_forker():
    store = UnitStore(4, 10)
    unit = await create_unit(0, 0, 4, _UnitKeyBox(4, 0))
    with pytest.raises(ValueError):
        store.add_unit(unit, True)


def test_parents_and_limit():
    store = UnitStore(4, 42)
    assert store.get_parents(b"x" * 8) is None
    store.add_parents(b"x" * 8, [b"a" * 8, b"b" * 8])
    assert store.get_parents(b"x" * 8) == [b"a" * 8, b"b" * 8]
    assert store.limit_per_node() == 42
    assert store.is_forker(NodeIndex(2)) is False