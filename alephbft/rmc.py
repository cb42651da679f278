"""Reliable multicast: gathering multisignatures of hashes over an unreliable network."""

from __future__ import annotations

import abc
import asyncio
import heapq
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Generic, Hashable, Optional, TypeVar, Union

from alephbft.signed import (
    Multisigned,
    MultiKeychain,
    PartiallyMultisigned,
    SignatureError,
    Signed,
    UncheckedSigned,
)

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SignedHash:
    """A hash signed by a single node, carrying that node's index."""

    unchecked: UncheckedSigned

    def hash(self) -> Any:
        return self.unchecked.signable.signable

    def is_complete(self) -> bool:
        return False


@dataclass(frozen=True)
class MultisignedHash:
    """A hash together with a multisignature."""

    unchecked: UncheckedSigned

    def hash(self) -> Any:
        return self.unchecked.signable

    def is_complete(self) -> bool:
        return True


Message = Union[SignedHash, MultisignedHash]


class TaskScheduler(abc.ABC, Generic[T]):
    """Decides when tasks are to be performed, possibly repeatedly."""

    @abc.abstractmethod
    def add_task(self, task: T) -> None:
        """Schedule a new task."""

    @abc.abstractmethod
    async def next_task(self) -> T:
        """Wait for and return the next task due."""


class DoublingDelayScheduler(TaskScheduler[T]):
    """Performs each task at once, then again forever with doubling delays.

    The first repetition comes ``initial_delay`` seconds after the task was added,
    and each following delay is twice the previous one.
    """

    def __init__(self, initial_delay: float) -> None:
        self._initial_delay = initial_delay
        self._instants: list[tuple[float, int]] = []
        self._tasks: list[T] = []
        self._delays: list[float] = []
        self._pending: deque[T] = deque()
        self._wakeup = asyncio.Event()

    def add_task(self, task: T) -> None:
        self._pending.append(task)
        self._wakeup.set()

    async def next_task(self) -> T:
        if not self._pending:
            if self._instants:
                timeout: Optional[float] = max(0.0, self._instants[0][0] - time.monotonic())
            else:
                timeout = None
            if timeout != 0.0:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
        if self._pending:
            task = self._pending.popleft()
            heapq.heappush(self._instants, (time.monotonic(), len(self._tasks)))
            self._tasks.append(task)
            self._delays.append(self._initial_delay)
        instant, i = heapq.heappop(self._instants)
        heapq.heappush(self._instants, (instant + self._delays[i], i))
        self._delays[i] *= 2
        return self._tasks[i]


class ReliableMulticast:
    """Reliably broadcasts hashes and yields them once multisigned.

    ``network_rx`` delivers incoming messages through an awaitable ``get()``;
    outgoing messages are handed to ``network_tx.put_nowait``. Each started or
    completed hash is broadcast repeatedly according to ``scheduler``.
    """

    def __init__(
        self,
        network_rx: Any,
        network_tx: Any,
        keychain: MultiKeychain,
        scheduler: TaskScheduler,
    ) -> None:
        self._hash_states: dict[Hashable, PartiallyMultisigned] = {}
        self._network_rx = network_rx
        self._network_tx = network_tx
        self._keychain = keychain
        self._scheduler = scheduler
        self._multisigned: deque[Multisigned] = deque()

    async def start_rmc(self, hash_value: Hashable) -> None:
        """Sign ``hash_value`` and start broadcasting the signature."""
        log.debug("starting rmc for %r", hash_value)
        signed = await Signed.sign_with_index(hash_value, self._keychain)
        message = SignedHash(signed.unchecked)
        self._handle_message(message)
        self._do_task(message)
        self._scheduler.add_task(message)

    def _on_complete_multisignature(self, multisigned: Multisigned) -> None:
        self._hash_states[multisigned.signable] = PartiallyMultisigned(
            multisigned.unchecked, True
        )
        self._multisigned.append(multisigned)
        message = MultisignedHash(multisigned.unchecked)
        self._do_task(message)
        self._scheduler.add_task(message)

    def _handle_message(self, message: Message) -> None:
        hash_value = message.hash()
        state = self._hash_states.get(hash_value)
        if state is not None and state.is_complete():
            return
        if isinstance(message, MultisignedHash):
            try:
                multisigned = message.unchecked.check_multi(self._keychain)
            except SignatureError:
                log.warning("Received a hash with a bad multisignature")
                return
            self._on_complete_multisignature(multisigned)
            return
        try:
            signed = message.unchecked.check(self._keychain)
        except SignatureError:
            log.warning("Received a hash with a bad signature")
            return
        previous = self._hash_states.pop(hash_value, None)
        if previous is None:
            new_state = signed.into_partially_multisigned(self._keychain)
        else:
            new_state = previous.add_signature(signed, self._keychain)
        if new_state.is_complete():
            self._on_complete_multisignature(new_state.multisigned)
        else:
            self._hash_states[hash_value] = new_state

    def _do_task(self, message: Message) -> None:
        self._network_tx.put_nowait(message)

    def get_multisigned(self, hash_value: Hashable) -> Optional[Multisigned]:
        """The complete multisignature of ``hash_value``, if collected."""
        state = self._hash_states.get(hash_value)
        if state is None:
            return None
        return state.multisigned

    async def next_multisigned_hash(self) -> Multisigned:
        """Process messages and scheduled broadcasts until a hash becomes multisigned."""
        while True:
            if self._multisigned:
                return self._multisigned.popleft()
            receive = asyncio.ensure_future(self._network_rx.get())
            tick = asyncio.ensure_future(self._scheduler.next_task())
            try:
                done, _ = await asyncio.wait(
                    {receive, tick}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for future in (receive, tick):
                    if not future.done():
                        future.cancel()
            if receive in done:
                self._handle_message(receive.result())
            if tick in done:
                self._do_task(tick.result())