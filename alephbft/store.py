"""Temporary storage for signed units before they are declared legit."""

from __future__ import annotations

import logging
from typing import Optional

from alephbft.nodes import NodeIndex, NodeMap
from alephbft.signed import Signed
from alephbft.units import FullUnit, UnitCoord

log = logging.getLogger(__name__)


class UnitStore:
    """Holds signed units by coordinate and by hash, and tracks known forkers.

    Units from nodes not known to be forkers, and units attached to an alert,
    are buffered as legit until they are collected with ``yield_buffer_units``.
    """

    def __init__(self, n_nodes: int, max_round: int) -> None:
        self._by_coord: dict[UnitCoord, Signed] = {}
        self._by_hash: dict[bytes, Signed] = {}
        self._parents: dict[bytes, list[bytes]] = {}
        self._is_forker: NodeMap[bool] = NodeMap.with_len(n_nodes, False)
        self._legit_buffer: list[Signed] = []
        self._max_round = max_round

    def unit_by_coord(self, coord: UnitCoord) -> Optional[Signed]:
        return self._by_coord.get(coord)

    def unit_by_hash(self, unit_hash: bytes) -> Optional[Signed]:
        return self._by_hash.get(unit_hash)

    def contains_hash(self, unit_hash: bytes) -> bool:
        return unit_hash in self._by_hash

    def contains_coord(self, coord: UnitCoord) -> bool:
        return coord in self._by_coord

    def yield_buffer_units(self) -> list[Signed]:
        """Return the newly legit units and empty the buffer."""
        units, self._legit_buffer = self._legit_buffer, []
        return units

    def is_new_fork(self, full_unit: FullUnit) -> Optional[Signed]:
        """The stored unit forming a fork with ``full_unit``, if this is a newly seen fork."""
        if self.contains_hash(full_unit.hash()):
            return None
        return self.unit_by_coord(full_unit.coord)

    def is_forker(self, node: NodeIndex) -> bool:
        return self._is_forker[node]

    def mark_forker(self, forker: NodeIndex) -> list[Signed]:
        """Mark ``forker`` and return its stored units ordered by increasing round."""
        if self._is_forker[forker]:
            log.warning("Trying to mark the node %r as forker for the second time.", forker)
        self._is_forker[forker] = True
        units = [
            (coord.round, unit)
            for coord, unit in self._by_coord.items()
            if coord.creator == forker and coord.round <= self._max_round
        ]
        return [unit for _, unit in sorted(units, key=lambda pair: pair[0])]

    def add_unit(self, signed_unit: Signed, alert: bool) -> None:
        """Store a unit; duplicates are ignored.

        Units coming with an alert require their creator to be marked as a forker first.
        """
        full_unit = signed_unit.signable
        unit_hash = full_unit.hash()
        creator = full_unit.creator
        if alert:
            log.debug("Adding unit with alert %r.", full_unit)
            if not self._is_forker[creator]:
                raise ValueError("The forker must be marked before adding alerted units.")
        if self.contains_hash(unit_hash):
            log.debug("A unit ignored as a duplicate %r.", full_unit)
            return
        self._by_hash[unit_hash] = signed_unit
        self._by_coord[full_unit.coord] = signed_unit
        if alert or not self._is_forker[creator]:
            self._legit_buffer.append(signed_unit)

    def add_parents(self, unit_hash: bytes, parents: list[bytes]) -> None:
        self._parents[unit_hash] = list(parents)

    def get_parents(self, unit_hash: bytes) -> Optional[list[bytes]]:
        return self._parents.get(unit_hash)

    def limit_per_node(self) -> int:
        return self._max_round