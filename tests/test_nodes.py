import pytest

from alephbft.codec import ByteReader, CodecError, encode_bytes, encode_option, encode_u8
from alephbft.nodes import BoolNodeMap, NodeCount, NodeIndex, NodeMap


def test_decoding_node_index_works():
    for i in range(1000):
        node_index = NodeIndex(i)
        decoded = NodeIndex.decode(ByteReader(node_index.encode()))
        assert decoded == node_index
        assert isinstance(decoded, NodeIndex)


def test_node_index_encoding_width():
    assert len(NodeIndex(5).encode()) == 8


def test_negative_node_index_rejected():
    with pytest.raises(ValueError):
        NodeIndex(-1)


def test_node_count_arithmetic_keeps_type():
    threshold = NodeCount(7) * 2 // 3 + NodeCount(1)
    assert threshold == 5
    assert isinstance(threshold, NodeCount)


def test_node_count_subtraction_underflow():
    with pytest.raises(ValueError):
        NodeCount(2) - NodeCount(3)


def test_node_count_sum():
    total = sum([NodeCount(1), NodeCount(2), NodeCount(3)])
    assert total == 6
    assert isinstance(total, NodeCount)


def test_node_count_indices():
    assert list(NodeCount(4).indices()) == [NodeIndex(0), NodeIndex(1), NodeIndex(2), NodeIndex(3)]


def test_node_map_with_len_and_assignment():
    node_map = NodeMap.with_len(NodeCount(3), False)
    node_map[NodeIndex(1)] = True
    assert list(node_map) == [False, True, False]
    assert len(node_map) == 3
    assert list(node_map.enumerate()) == [(0, False), (1, True), (2, False)]


def test_node_map_out_of_range():
    node_map = NodeMap.with_len(2)
    with pytest.raises(IndexError):
        node_map[NodeIndex(2)]
    with pytest.raises(IndexError):
        node_map[-1] = 1


def _read_optional_u8(reader):
    tag = reader.read_u8()
    return None if tag == 0 else reader.read_u8()


def test_node_map_codec_round_trip():
    node_map = NodeMap([1, None, 7, None])
    encoded = node_map.encode(lambda v: encode_option(v, encode_u8))
    reader = ByteReader(encoded)
    decoded = NodeMap.decode(reader, _read_optional_u8)
    assert decoded == node_map
    assert reader.at_end()


@pytest.mark.parametrize("length", range(12))
def test_bool_node_map_decoding_works(length):
    for mask in range(1 << length):
        bnm = BoolNodeMap.with_capacity(length)
        for i in range(length):
            if (1 << i) & mask:
                bnm.set(NodeIndex(i))
        reader = ByteReader(bnm.encode())
        decoded = BoolNodeMap.decode(reader)
        assert decoded == bnm
        assert reader.at_end()


def test_bool_node_map_decoding_deals_with_trailing_zeros():
    encoded = bytes([1, 0, 0, 0]) + encode_bytes(bytes([128]))
    decoded = BoolNodeMap.decode(ByteReader(encoded))
    assert decoded == BoolNodeMap([True])

    encoded = bytes([1, 0, 0, 0]) + encode_bytes(bytes([129]))
    with pytest.raises(CodecError):
        BoolNodeMap.decode(ByteReader(encoded))


def test_bool_node_map_decoding_deals_with_too_long_bitvec():
    encoded = bytes([1, 0, 0, 0]) + encode_bytes(bytes([128, 0]))
    with pytest.raises(CodecError):
        BoolNodeMap.decode(ByteReader(encoded))


def test_decoding_bool_node_map_works():
    bool_node_map = BoolNodeMap([True, False, True, True, True])
    decoded = BoolNodeMap.decode(ByteReader(bool_node_map.encode()))
    assert decoded == bool_node_map


def test_bool_node_map_has_efficient_encoding():
    bnm = BoolNodeMap.with_capacity(100)
    for i in range(50):
        bnm.set(NodeIndex(i))
    assert len(bnm.encode()) < 20


def test_bool_node_map_queries():
    bnm = BoolNodeMap([False, True, False, True])
    assert bnm.capacity() == 4
    assert list(bnm.true_indices()) == [NodeIndex(1), NodeIndex(3)]
    assert bnm[NodeIndex(1)] is True
    assert bnm[NodeIndex(2)] is False
    assert hash(bnm) == hash(BoolNodeMap([False, True, False, True]))


def test_bool_node_map_set_out_of_range():
    with pytest.raises(IndexError):
        BoolNodeMap.with_capacity(3).set(NodeIndex(3))