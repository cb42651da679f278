"""Network messages and the hub that moves them between the protocol and the network."""

from __future__ import annotations

import abc
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from alephbft.codec import ByteReader, CodecError, encode_u8
from alephbft.nodes import NodeIndex

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """The receiver of a message: a single node, or everyone when ``target`` is None."""

    target: Optional[NodeIndex] = None

    def __post_init__(self) -> None:
        if self.target is not None:
            object.__setattr__(self, "target", NodeIndex(self.target))

    @classmethod
    def everyone(cls) -> "Recipient":
        return cls(None)

    @classmethod
    def node(cls, index: int) -> "Recipient":
        return cls(NodeIndex(index))

    @property
    def is_everyone(self) -> bool:
        return self.target is None

    def __repr__(self) -> str:
        return "Recipient.everyone()" if self.target is None else f"Recipient.node({int(self.target)})"


class MessageKind(enum.Enum):
    """Which part of the protocol a network message belongs to."""

    UNITS = 0
    ALERT = 1


@dataclass(frozen=True)
class NetworkData:
    """The opaque form of everything a committee member sends to other nodes.

    ``message`` is a unit or alert message providing ``encode()`` and
    ``included_data()``.
    """

    kind: MessageKind
    message: Any

    def included_data(self) -> list:
        """All data that may end up ordered as a result of accepting this message."""
        return list(self.message.included_data())

    def encode(self) -> bytes:
        return encode_u8(self.kind.value) + self.message.encode()

    @classmethod
    def decode(
        cls,
        reader: ByteReader,
        decode_units: Callable[[ByteReader], Any],
        decode_alert: Callable[[ByteReader], Any],
    ) -> "NetworkData":
        tag = reader.read_u8()
        try:
            kind = MessageKind(tag)
        except ValueError:
            raise CodecError(f"unknown network message kind {tag}") from None
        decoder = decode_units if kind is MessageKind.UNITS else decode_alert
        return cls(kind, decoder(reader))


class Network(abc.ABC):
    """Sends and receives network data.

    ``send`` must not block. Delivery need not be reliable; the protocol
    resends what it needs.
    """

    @abc.abstractmethod
    def send(self, data: NetworkData, recipient: Recipient) -> None:
        """Send ``data`` to one node or to everyone."""

    @abc.abstractmethod
    async def next_event(self) -> Optional[NetworkData]:
        """The next incoming message, or None once the network has stopped."""


class NetworkHub:
    """Forwards outgoing unit and alert messages to the network and routes incoming ones.

    ``units_to_send`` and ``alerts_to_send`` provide an awaitable ``get()``
    yielding ``(message, recipient)`` pairs, or None once the stream is closed.
    Incoming messages are handed to ``units_received.put_nowait`` or
    ``alerts_received.put_nowait``.
    """

    def __init__(
        self,
        network: Network,
        units_to_send: Any,
        units_received: Any,
        alerts_to_send: Any,
        alerts_received: Any,
    ) -> None:
        self._network = network
        self._units_to_send = units_to_send
        self._units_received = units_received
        self._alerts_to_send = alerts_to_send
        self._alerts_received = alerts_received

    def _send_outgoing(self, kind: MessageKind, item: Any) -> bool:
        if item is None:
            name = "units" if kind is MessageKind.UNITS else "alerts"
            log.error("Outgoing %s stream closed.", name)
            return False
        message, recipient = item
        self._network.send(NetworkData(kind, message), recipient)
        return True

    def _handle_incoming(self, data: Optional[NetworkData]) -> bool:
        if data is None:
            log.error("Network stopped working.")
            return False
        if data.kind is MessageKind.UNITS:
            target, name = self._units_received, "units"
        else:
            target, name = self._alerts_received, "alerts"
        try:
            target.put_nowait(data.message)
        except Exception as error:  # the consumer may be gone; keep running
            log.warning("Error when sending %s to consensus %r", name, error)
        return True

    async def run(self, exit_event: asyncio.Event) -> None:
        """Move messages until ``exit_event`` is set or a stream closes."""
        sources: dict[str, Callable[[], Any]] = {
            "units": self._units_to_send.get,
            "alerts": self._alerts_to_send.get,
            "network": self._network.next_event,
        }
        handlers: dict[str, Callable[[Any], bool]] = {
            "units": lambda item: self._send_outgoing(MessageKind.UNITS, item),
            "alerts": lambda item: self._send_outgoing(MessageKind.ALERT, item),
            "network": self._handle_incoming,
        }
        exit_wait = asyncio.ensure_future(exit_event.wait())
        pending: dict[asyncio.Future, str] = {
            asyncio.ensure_future(factory()): name for name, factory in sources.items()
        }
        try:
            while True:
                done, _ = await asyncio.wait(
                    set(pending) | {exit_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if exit_wait in done:
                    return
                for future in [f for f in pending if f in done]:
                    name = pending.pop(future)
                    if not handlers[name](future.result()):
                        return
                    pending[asyncio.ensure_future(sources[name]())] = name
        finally:
            for future in [*pending, exit_wait]:
                if not future.done():
                    future.cancel()