# alephbft

Building blocks for an asynchronous Byzantine fault tolerant consensus
protocol. The package is plain Python built on `asyncio` and needs nothing
outside the standard library.

## Modules

- `alephbft.codec` is a little-endian binary codec. It has the encoders
  `encode_u8`, `encode_u16`, `encode_u32`, `encode_u64`, `encode_compact`,
  `encode_bytes`, `encode_option` and `encode_sequence`, and a sequential
  `ByteReader` with `read`, `read_u8` … `read_u64`, `read_compact`,
  `read_bytes` and `at_end`. Truncated input raises `CodecError`, and so does
  a compact integer in non-canonical form.
- `alephbft.nodes` covers committee indices and maps:
  - `NodeIndex` encodes as a u64.
  - `NodeCount` has arithmetic and `indices()`.
  - `NodeMap` holds one value per node.
  - `BoolNodeMap` is a bit vector that encodes as its capacity followed by
    packed bytes. Decoding rejects a length that does not match the capacity,
    and rejects set trailing bits.
- `alephbft.units` holds the DAG units: `UnitCoord`, `ControlHash`,
  `PreUnit`, `FullUnit` and `Unit`. `FullUnit` computes its hash on first use
  and caches it. Hashing goes through `Hasher`, which is BLAKE2b with a
  configurable `digest_size`, 32 bytes by default.
- `alephbft.signed` covers signing:
  - `KeyBox` and `MultiKeychain` are the abstract interfaces.
  - `UncheckedSigned.check` and `check_multi` raise `SignatureError` when
    verification fails.
  - It also provides `Signed`, `Indexed`, `Multisigned`,
    `PartiallyMultisigned` and `SignatureSet`.
  - `DefaultMultiKeychain` wraps any `KeyBox`. Its multisignatures are sets of
    signatures. A set is complete once it holds at least `2 * N // 3 + 1`
    signatures and all of them verify.
- `alephbft.store` has `UnitStore`, which keeps signed units by coordinate and
  by hash. It detects new forks with `is_new_fork` and marks forkers with
  `mark_forker`, which returns the forker's units in round order. Legit units
  are buffered until `yield_buffer_units` collects them.
- `alephbft.rmc` is reliable multicast:
  - `ReliableMulticast` signs a hash with `start_rmc`.
  - It exchanges `SignedHash` and `MultisignedHash` messages.
  - `next_multisigned_hash()` returns each hash once it is multisigned.
  - `DoublingDelayScheduler(initial_delay)` performs a task at once, then
    repeats it after `initial_delay` seconds, with the delay doubling each
    time.
- `alephbft.terminal` has `Terminal`, which rebuilds the parents of incoming
  units and checks them against the control hash. Its notifications are:
  - `MissingUnits`, asking for parents it does not have;
  - `WrongControlHash`, when the rebuilt parents do not match;
  - `AddedToDag`, when a unit has been added to the DAG, which happens once
    all of its parents are in it.

  It accepts `NewUnits` and `UnitParents`, directly through `add_units` and
  `handle_parents_response` or through `run`.
- `alephbft.network` provides:
  - the `Recipient` addressing (`Recipient.everyone()`, `Recipient.node(i)`);
  - the `NetworkData` envelope, tagged by `MessageKind.UNITS` or
    `MessageKind.ALERT`;
  - the abstract `Network`;
  - `NetworkHub`, which forwards outgoing messages to the network and routes
    incoming ones by kind.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Example: reaching a multisignature

The `KeyBox` below is for demonstration only and is not secure.

```python
import asyncio

from alephbft.nodes import NodeCount, NodeIndex
from alephbft.signed import DefaultMultiKeychain, KeyBox, PartiallyMultisigned, Signed


class DemoKeyBox(KeyBox):
    def __init__(self, count, index):
        self._count, self._index = count, index

    def index(self):
        return NodeIndex(self._index)

    def node_count(self):
        return NodeCount(self._count)

    async def sign(self, msg):
        return (bytes(msg), self._index)

    def verify(self, msg, signature, index):
        return signature == (bytes(msg), index)


async def main():
    keychains = [DefaultMultiKeychain(DemoKeyBox(7, i)) for i in range(7)]
    message = b"Hello"
    partial = await PartiallyMultisigned.sign(message, keychains[0])
    for keychain in keychains[1:5]:
        signed = await Signed.sign_with_index(message, keychain)
        partial = partial.add_signature(signed, keychain)
    assert partial.is_complete()  # 5 of 7 signatures reach the quorum


asyncio.run(main())
```

## Channels

`ReliableMulticast`, `Terminal` and `NetworkHub` communicate through
queue-like objects. They read with an awaitable `get()` and write with
`put_nowait()`, so `asyncio.Queue` works.

`NetworkHub` treats a `None` from either outgoing source as a closed stream
and stops. It also stops when `Network.next_event()` returns `None`, or when
its exit event is set.

## What the package does not do

- It has no transport. A network is any `Network` subclass that provides
  `send(data, recipient)` and `async next_event()`. `send` should not block,
  and it may drop messages, because reliable multicast keeps resending.
- It does not order units into batches.
- It does not produce or check fork alerts.
- It does not define the unit and alert message types. `NetworkData` carries
  any message object with `encode()` and `included_data()`, and decoding takes
  the message decoders as arguments.
- It has no command-line program and no persistent storage.