"""Signaling router: the relay's message state machine.

The router owns the device registry, the negotiation table and the lock
serializing every change to them. Handlers never wait on the network
while holding the lock; outbound frames are queued on each
connection's outbox (see ``keyrelay.channel``).

Pair direction: an offer (or connection request) from A to B opens the
negotiation ``PairKey(A, B)``. B's answer names A as its target, so it
resolves to ``PairKey.for_answer(sender=B, target=A)`` which is the
same ``PairKey(A, B)``.
"""

import asyncio
import logging
from typing import Any, Optional

from keyrelay import messages
from keyrelay.channel import Connection
from keyrelay.errors import (
    InvalidIdentity,
    MalformedMessage,
    NoSuchNegotiation,
    NotRegistered,
    RelayError,
    TargetNotFound,
)
from keyrelay.identity import PairKey, validate_key
from keyrelay.message_dispatcher import MessageDispatcher
from keyrelay.messages import InboundType, require_fields, require_keys
from keyrelay.negotiation import NegotiationTable
from keyrelay.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class SignalingRouter:
    """Interpret device messages and relay them between registered devices."""

    def __init__(
        self,
        registry: Optional[DeviceRegistry] = None,
        negotiations: Optional[NegotiationTable] = None,
        handler_timeout: float = 10.0,
    ):
        """Initialize router.

        Args:
            registry: Device registry (a fresh one if None).
            negotiations: Negotiation table (a fresh one if None).
            handler_timeout: Maximum time to handle one message.
        """
        self.registry = registry if registry is not None else DeviceRegistry()
        self.negotiations = (
            negotiations if negotiations is not None else NegotiationTable()
        )
        self.lock = asyncio.Lock()
        self._connections: set[Connection] = set()
        self._dispatcher = MessageDispatcher(handler_timeout=handler_timeout)
        self._register_handlers()

    def _register_handlers(self) -> None:
        self._dispatcher.register(InboundType.REGISTER, self._handle_register)
        self._dispatcher.register(
            InboundType.CONNECTION_REQUEST, self._handle_connection_request
        )
        self._dispatcher.register(
            InboundType.CONNECTION_RESPONSE, self._handle_connection_response
        )
        self._dispatcher.register(InboundType.OFFER, self._handle_offer)
        self._dispatcher.register(InboundType.ANSWER, self._handle_answer)
        self._dispatcher.register(InboundType.ICE_CANDIDATE, self._handle_ice_candidate)
        self._dispatcher.register(InboundType.HEARTBEAT, self._handle_heartbeat)
        self._dispatcher.register(InboundType.DISCONNECT, self._handle_disconnect)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    @property
    def connections(self) -> list[Connection]:
        """Snapshot of open connections, registered or not."""
        return list(self._connections)

    async def connection_opened(self, connection: Connection) -> None:
        async with self.lock:
            self._connections.add(connection)

    async def connection_closed(self, connection: Connection) -> None:
        """Handle a channel that closed or failed.

        Only the connection currently bound to an identity tears that
        identity down; a superseded connection closing is a no-op.
        """
        async with self.lock:
            self._connections.discard(connection)
            identity = connection.identity
            if identity is not None and self.registry.lookup(identity) is connection:
                logger.info(f"Connection closed for {identity}")
                self.disconnect_locked(identity)
        connection.close_soon()

    def forget_locked(self, connection: Connection) -> None:
        """Stop tracking ``connection``. Caller holds ``lock``."""
        self._connections.discard(connection)

    async def pong_received(self, connection: Connection) -> None:
        """Liveness acknowledgment from ``connection``."""
        async with self.lock:
            connection.alive = True
            if self._is_bound(connection):
                self.registry.touch(connection.identity)

    async def disconnect(self, identity: str) -> list[str]:
        """Run the disconnection path for ``identity``.

        Returns:
            Identities notified with ``peer-disconnected``.
        """
        async with self.lock:
            return self.disconnect_locked(identity)

    def disconnect_locked(self, identity: str) -> list[str]:
        """Disconnection path body. Caller holds ``lock``.

        Idempotent: a second call for the same identity finds nothing
        left and notifies no one.
        """
        if self.registry.remove(identity) is not None:
            logger.info(f"Device disconnecting: {identity}")
        return self._drop_negotiations_locked(identity)

    def _drop_negotiations_locked(self, identity: str) -> list[str]:
        notified: list[str] = []
        for pair in self.negotiations.remove_all_involving(identity):
            other = pair.other(identity)
            if other in notified:
                continue
            peer = self.registry.lookup(other)
            if peer is not None:
                peer.post(messages.peer_disconnected(identity))
                notified.append(other)
            logger.debug(f"Dropped negotiation {pair}")
        return notified

    async def close_all(self) -> None:
        """Close every connection (shutdown)."""
        async with self.lock:
            conns = list(self._connections)
            self._connections.clear()

        if conns:
            await asyncio.gather(
                *[conn.close() for conn in conns],
                return_exceptions=True,
            )

    # =========================================================================
    # Inbound frames
    # =========================================================================

    async def handle_frame(self, connection: Connection, data: str | bytes) -> None:
        """Handle one inbound frame.

        Relay errors and unexpected failures are reported to the sender
        as ``error`` frames; the connection stays open.
        """
        try:
            message = messages.parse_frame(data)
            logger.debug(
                f"Message received: type={message['type']} from={connection.identity}"
            )
            await self._dispatcher.dispatch(connection, message)
        except RelayError as e:
            logger.warning(f"Rejected message from {connection.identity}: {e}")
            connection.post(messages.error(e.code, str(e)))
        except asyncio.TimeoutError:
            logger.error(f"Handler timeout for message from {connection.identity}")
            connection.post(
                messages.error("internal-error", "Failed to process message")
            )
        except Exception:
            logger.exception(f"Error handling message from {connection.identity}")
            connection.post(
                messages.error("internal-error", "Failed to process message")
            )

    def _is_bound(self, connection: Connection) -> bool:
        identity = connection.identity
        return identity is not None and self.registry.lookup(identity) is connection

    def _require_sender(self, connection: Connection) -> str:
        if not self._is_bound(connection):
            raise NotRegistered("Device must register first")
        return connection.identity

    async def _handle_register(self, connection: Connection, message: dict) -> None:
        device_key = message.get("deviceKey")
        try:
            validate_key(device_key)
        except InvalidIdentity as e:
            logger.warning(f"Registration rejected: {e}")
            connection.post(messages.registration_error(e.code, str(e)))
            return

        async with self.lock:
            previous = connection.identity
            if previous is not None and previous != device_key and self._is_bound(
                connection
            ):
                self.disconnect_locked(previous)

            displaced = self.registry.register(device_key, connection)
            if displaced is not None:
                old = displaced.connection
                logger.warning(
                    f"Device {device_key} already registered, disconnecting old session"
                )
                old.post(messages.forced_disconnect())
                old.close_soon()
                self._drop_negotiations_locked(device_key)

            connection.bind(device_key)
            connection.post(messages.registration_success(device_key))
        logger.info(f"Device registered successfully: {device_key}")

    async def _handle_connection_request(
        self, connection: Connection, message: dict
    ) -> None:
        require_fields(message, "sourceKey", "targetKey", "offer")
        source_key, target_key = require_keys(message, "sourceKey", "targetKey")
        offer = message["offer"]
        async with self.lock:
            # Unregistered senders name themselves; bound ones must use their key
            if connection.identity is not None:
                sender = self._require_sender(connection)
                if source_key != sender:
                    raise MalformedMessage("sourceKey does not match registered device")

            target = self.registry.lookup(target_key)
            if target is None:
                raise TargetNotFound("Target device not found or offline")

            self.negotiations.open_or_replace(
                PairKey.for_offer(source_key, target_key), offer
            )
            target.post(messages.connection_request(source_key, offer))
        logger.info(f"Forwarding connection request {source_key} -> {target_key}")

    async def _handle_connection_response(
        self, connection: Connection, message: dict
    ) -> None:
        target_key, accepted = require_fields(message, "targetKey", "accepted")
        require_keys(message, "targetKey")
        if not isinstance(accepted, bool):
            raise MalformedMessage("accepted must be true or false")

        async with self.lock:
            sender = self._require_sender(connection)
            target = self.registry.lookup(target_key)
            if target is None:
                raise TargetNotFound("Target device not found or offline")

            pair = PairKey.for_answer(sender, target_key)
            if not accepted:
                self.negotiations.remove(pair)
                target.post(messages.connection_rejected(sender, message.get("reason")))
                logger.info(f"Connection rejected {pair}")
                return

            target.post(messages.connection_accepted(sender))
            answer = message.get("answer")
            if answer is not None:
                try:
                    self._relay_answer_locked(pair, connection, target, answer)
                except NoSuchNegotiation:
                    logger.warning(f"Accepted without pending request: {pair}")
            connection.post(messages.connection_established(target_key))
        logger.info(f"Connection accepted {pair}")

    async def _handle_offer(self, connection: Connection, message: dict) -> None:
        target_key, offer = require_fields(message, "targetKey", "offer")
        require_keys(message, "targetKey")
        async with self.lock:
            sender = self._require_sender(connection)
            target = self.registry.lookup(target_key)
            if target is None:
                logger.warning(f"Offer dropped, target not found: {target_key}")
                return

            self.negotiations.open_or_replace(PairKey.for_offer(sender, target_key), offer)
            target.post(messages.offer(sender, offer))
        logger.info(f"Forwarding offer {sender} -> {target_key}")

    async def _handle_answer(self, connection: Connection, message: dict) -> None:
        target_key, answer = require_fields(message, "targetKey", "answer")
        require_keys(message, "targetKey")
        async with self.lock:
            sender = self._require_sender(connection)
            target = self.registry.lookup(target_key)
            if target is None:
                logger.warning(f"Answer dropped, target not found: {target_key}")
                return

            pair = PairKey.for_answer(sender, target_key)
            try:
                self._relay_answer_locked(pair, connection, target, answer)
            except NoSuchNegotiation:
                logger.warning(f"Answer dropped, no negotiation for {pair}")
                return
        logger.info(f"Forwarding answer {sender} -> {target_key}")

    def _relay_answer_locked(
        self, pair: PairKey, responder: Connection, initiator: Connection, answer: Any
    ) -> None:
        buffered = self.negotiations.record_answer(pair, answer)
        initiator.post(messages.answer(pair.responder, answer))
        # Initiator candidates held back until now go to the responder.
        for candidate in buffered:
            responder.post(messages.ice_candidate(pair.initiator, candidate))
        if buffered:
            logger.debug(f"Flushed {len(buffered)} buffered candidates for {pair}")

    async def _handle_ice_candidate(
        self, connection: Connection, message: dict
    ) -> None:
        target_key, candidate = require_fields(message, "targetKey", "candidate")
        require_keys(message, "targetKey")
        async with self.lock:
            sender = self._require_sender(connection)
            target = self.registry.lookup(target_key)
            if target is None:
                logger.warning(f"Candidate dropped, target not found: {target_key}")
                return

            pair = PairKey.for_offer(sender, target_key)
            if pair in self.negotiations:
                if not self.negotiations.append_candidate(pair, candidate):
                    logger.debug(f"Candidate buffered until answer: {pair}")
                    return
            elif pair.reversed() not in self.negotiations:
                # Responder candidates ride on the initiator's record.
                logger.warning(f"Candidate dropped, no negotiation for {pair}")
                return

            target.post(messages.ice_candidate(sender, candidate))

    async def _handle_heartbeat(self, connection: Connection, message: dict) -> None:
        async with self.lock:
            if self._is_bound(connection):
                self.registry.touch(connection.identity)

    async def _handle_disconnect(self, connection: Connection, message: dict) -> None:
        (target_key,) = require_keys(message, "targetKey")
        async with self.lock:
            sender = self._require_sender(connection)
            target = self.registry.lookup(target_key)
            if target is None:
                return

            pair = PairKey.for_offer(sender, target_key)
            self.negotiations.remove(pair)
            self.negotiations.remove(pair.reversed())
            target.post(messages.peer_disconnected(sender))
        logger.info(f"Device {sender} disconnected from {target_key}")
