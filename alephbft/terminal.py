"""The terminal: reconstructs the parents of incoming units and places them in the local DAG."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Optional, Union

from alephbft.nodes import NodeIndex, NodeMap
from alephbft.units import ControlHash, Hasher, Unit, UnitCoord

log = logging.getLogger(__name__)


class UnitStatus(enum.Enum):
    """Where a unit stands in the terminal pipeline."""

    RECONSTRUCTING_PARENTS = "reconstructing_parents"
    WRONG_CONTROL_HASH = "wrong_control_hash"
    WAITING_PARENTS_IN_DAG = "waiting_parents_in_dag"
    IN_DAG = "in_dag"


@dataclass
class TerminalUnit:
    """A unit with what is known so far about its parents.

    ``parents`` starts empty and is filled with parent hashes as units of the
    parent coordinates arrive; once complete it is checked against the unit's
    control hash.
    """

    unit: Unit
    parents: NodeMap
    n_miss_par_decoded: int
    n_miss_par_dag: int
    status: UnitStatus = UnitStatus.RECONSTRUCTING_PARENTS

    @classmethod
    def blank_from_unit(cls, unit: Unit) -> "TerminalUnit":
        """A terminal unit with no parents reconstructed yet."""
        control_hash = unit.control_hash
        n_parents = int(control_hash.n_parents)
        return cls(
            unit=unit,
            parents=NodeMap.with_len(control_hash.n_members),
            n_miss_par_decoded=n_parents,
            n_miss_par_dag=n_parents,
        )

    def verify_control_hash(self, hasher: Hasher) -> bool:
        """Whether the reconstructed parents hash to the unit's combined hash."""
        return self.unit.control_hash.combined_hash == ControlHash.combine_hashes(
            self.parents, hasher
        )

    def parent_hashes(self) -> list[bytes]:
        """The known parent hashes in node order."""
        return [p for p in self.parents if p is not None]


@dataclass(frozen=True)
class MissingUnits:
    """Request for the units at the given coordinates."""

    coords: tuple[UnitCoord, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "coords", tuple(self.coords))


@dataclass(frozen=True)
class AddedToDag:
    """A unit was added to the DAG, with the hashes of its parents."""

    unit_hash: bytes
    parent_hashes: tuple[bytes, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "parent_hashes", tuple(self.parent_hashes))


@dataclass(frozen=True)
class WrongControlHash:
    """The reconstructed parents of a unit do not match its control hash."""

    unit_hash: bytes


@dataclass(frozen=True)
class NewUnits:
    """Units delivered to the terminal."""

    units: tuple[Unit, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "units", tuple(self.units))


@dataclass(frozen=True)
class UnitParents:
    """The correct parent hashes of a unit with a wrong control hash."""

    unit_hash: bytes
    parent_hashes: tuple[bytes, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "parent_hashes", tuple(self.parent_hashes))


Notification = Union[MissingUnits, AddedToDag, WrongControlHash]


@dataclass(frozen=True)
class _ParentsReconstructed:
    unit_hash: bytes


@dataclass(frozen=True)
class _ParentsInDag:
    unit_hash: bytes


class Terminal:
    """Receives units and adds them to the local DAG once all their parents are in it.

    ``incoming`` provides an awaitable ``get()`` yielding ``NewUnits`` or
    ``UnitParents``; notifications are handed to ``outgoing.put_nowait``.
    Events are processed in FIFO order, so units are added breadth first.
    """

    def __init__(self, node_id: NodeIndex, incoming: Any, outgoing: Any, hasher: Hasher) -> None:
        self._node_id = NodeIndex(node_id)
        self._incoming = incoming
        self._outgoing = outgoing
        self._hasher = hasher
        self._events: deque = deque()
        self._post_insert: list[Callable[[TerminalUnit], None]] = []
        self._unit_store: dict[bytes, TerminalUnit] = {}
        self._unit_by_coord: dict[tuple[int, NodeIndex], bytes] = {}
        self._children_coord: dict[tuple[int, NodeIndex], list[bytes]] = {}
        self._children_hash: dict[bytes, list[bytes]] = {}

    def register_post_insert_hook(self, hook: Callable[[TerminalUnit], None]) -> None:
        """Call ``hook`` with every unit as it is added to the DAG."""
        self._post_insert.append(hook)

    def status(self, unit_hash: bytes) -> Optional[UnitStatus]:
        """The status of a stored unit, or None if it is unknown."""
        stored = self._unit_store.get(unit_hash)
        return None if stored is None else stored.status

    def add_units(self, units: Iterable[Unit]) -> None:
        """Store the units one by one, processing the events each one triggers."""
        for unit in units:
            self._add_to_store(unit)
            self._handle_events()

    def handle_parents_response(self, unit_hash: bytes, parent_hashes: Iterable[bytes]) -> None:
        """Set the correct parents of a unit whose control hash did not match."""
        stored = self._unit_store.get(unit_hash)
        if stored is None:
            raise KeyError(f"unit with wrong control hash must be in store: {unit_hash!r}")
        if stored.status is not UnitStatus.WRONG_CONTROL_HASH:
            log.debug(
                "%r Received parents response without it being expected for %r. Ignoring.",
                self._node_id,
                unit_hash,
            )
            return
        parent_hashes = list(parent_hashes)
        parent_ids = list(stored.unit.control_hash.parents())
        if len(parent_hashes) < len(parent_ids):
            raise ValueError(
                f"expected {len(parent_ids)} parent hashes, got {len(parent_hashes)}"
            )
        for node, parent_hash in zip(parent_ids, parent_hashes):
            stored.parents[node] = parent_hash
        log.debug(
            "%r Updating parent hashes for wrong control hash unit %r", self._node_id, unit_hash
        )
        stored.n_miss_par_decoded = 0
        self._inspect_parents_in_dag(unit_hash)
        self._handle_events()

    async def run(self, exit_event: asyncio.Event) -> None:
        """Process incoming notifications until ``exit_event`` is set."""
        exit_wait = asyncio.ensure_future(exit_event.wait())
        try:
            while True:
                receive = asyncio.ensure_future(self._incoming.get())
                done, _ = await asyncio.wait(
                    {receive, exit_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if receive in done:
                    self._handle_notification(receive.result())
                else:
                    receive.cancel()
                if exit_wait in done:
                    log.info("%r received exit signal.", self._node_id)
                    return
        finally:
            exit_wait.cancel()

    def _handle_notification(self, notification: Any) -> None:
        if isinstance(notification, NewUnits):
            self.add_units(notification.units)
        elif isinstance(notification, UnitParents):
            self.handle_parents_response(notification.unit_hash, notification.parent_hashes)

    def _send(self, notification: Notification) -> None:
        self._outgoing.put_nowait(notification)

    def _reconstruct_parent(self, unit_hash: bytes, node: NodeIndex, parent_hash: bytes) -> None:
        stored = self._unit_store[unit_hash]
        stored.parents[node] = parent_hash
        stored.n_miss_par_decoded -= 1
        if stored.n_miss_par_decoded == 0:
            self._events.append(_ParentsReconstructed(unit_hash))

    def _new_parent_in_dag(self, unit_hash: bytes) -> None:
        stored = self._unit_store[unit_hash]
        stored.n_miss_par_dag -= 1
        if stored.n_miss_par_dag == 0:
            self._events.append(_ParentsInDag(unit_hash))

    def _update_on_store_add(self, unit: Unit) -> None:
        unit_hash = unit.hash
        coord_key = (unit.round, unit.creator)
        if coord_key in self._unit_by_coord:
            log.debug("Received a fork at round %r creator %r", unit.round, unit.creator)
        else:
            self._unit_by_coord[coord_key] = unit_hash

        for child_hash in self._children_coord.pop(coord_key, []):
            self._reconstruct_parent(child_hash, unit.creator, unit_hash)

        if unit.round == 0:
            self._events.append(_ParentsReconstructed(unit_hash))
            return
        missing = []
        for node in unit.control_hash.parents():
            parent_key = (unit.round - 1, node)
            parent_hash = self._unit_by_coord.get(parent_key)
            if parent_hash is not None:
                self._reconstruct_parent(unit_hash, node, parent_hash)
            else:
                self._children_coord.setdefault(parent_key, []).append(unit_hash)
                missing.append(UnitCoord(unit.round - 1, node))
        if missing:
            log.debug("%r Missing coords %r", self._node_id, missing)
            self._send(MissingUnits(missing))

    def _update_on_dag_add(self, unit_hash: bytes) -> None:
        stored = self._unit_store[unit_hash]
        for hook in self._post_insert:
            hook(replace(stored, parents=NodeMap(stored.parents)))
        for child_hash in self._children_hash.pop(unit_hash, []):
            self._new_parent_in_dag(child_hash)
        self._send(AddedToDag(unit_hash, stored.parent_hashes()))

    def _add_to_store(self, unit: Unit) -> None:
        log.debug(
            "%r Adding to store %r round %r index %r",
            self._node_id,
            unit.hash,
            unit.round,
            unit.creator,
        )
        if unit.hash in self._unit_store:
            return
        self._unit_store[unit.hash] = TerminalUnit.blank_from_unit(unit)
        self._update_on_store_add(unit)

    def _inspect_parents_in_dag(self, unit_hash: bytes) -> None:
        stored = self._unit_store[unit_hash]
        in_dag = 0
        for parent_hash in stored.parent_hashes():
            parent = self._unit_store.get(parent_hash)
            # the parent may be absent when the unit had a wrong control hash
            if parent is not None and parent.status is UnitStatus.IN_DAG:
                in_dag += 1
            else:
                self._children_hash.setdefault(parent_hash, []).append(unit_hash)
        stored.n_miss_par_dag -= in_dag
        log.debug(
            "%r Inspecting parents for %r, missing %r",
            self._node_id,
            unit_hash,
            stored.n_miss_par_dag,
        )
        if stored.n_miss_par_dag == 0:
            self._events.append(_ParentsInDag(unit_hash))
        else:
            stored.status = UnitStatus.WAITING_PARENTS_IN_DAG

    def _handle_events(self) -> None:
        while self._events:
            event = self._events.popleft()
            stored = self._unit_store[event.unit_hash]
            if isinstance(event, _ParentsReconstructed):
                if stored.verify_control_hash(self._hasher):
                    self._inspect_parents_in_dag(event.unit_hash)
                else:
                    stored.status = UnitStatus.WRONG_CONTROL_HASH
                    log.warning("%r wrong control hash", self._node_id)
                    self._send(WrongControlHash(event.unit_hash))
            else:
                stored.status = UnitStatus.IN_DAG
                log.debug(
                    "%r Adding to Dag %r round %r index %r.",
                    self._node_id,
                    event.unit_hash,
                    stored.unit.round,
                    stored.unit.creator,
                )
                self._update_on_dag_add(event.unit_hash)