"""Route inbound frames to handlers by message type."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Coroutine, Union

from keyrelay.errors import UnknownMessageType

logger = logging.getLogger(__name__)

# Handler type: async or sync function taking (connection, message)
Handler = Union[
    Callable[[Any, dict], Coroutine[Any, Any, None]],
    Callable[[Any, dict], None],
]


class MessageDispatcher:
    """Route messages to registered handlers by their ``type`` field.

    Handler exceptions propagate to the caller so relay errors can be
    reported back to the originating device.
    """

    def __init__(self, handler_timeout: float = 10.0):
        """Initialize dispatcher.

        Args:
            handler_timeout: Maximum time for handler to complete (seconds).
        """
        self._handlers: dict[str, Handler] = {}
        self._handler_timeout = handler_timeout

    def register(self, message_type: str, handler: Handler) -> None:
        """Register a handler for a message type.

        Args:
            message_type: Type identifier (e.g., "offer").
            handler: Async or sync function(connection, message).
        """
        self._handlers[message_type] = handler
        logger.debug(f"Registered handler for: {message_type}")

    async def dispatch(self, connection: Any, message: dict) -> None:
        """Dispatch message to the handler for its type.

        Args:
            connection: Connection the message arrived on.
            message: Parsed message with a ``type`` field.

        Raises:
            UnknownMessageType: If no handler is registered for the type.
            asyncio.TimeoutError: If the handler exceeds the timeout.
        """
        message_type = message.get("type")
        handler = self._handlers.get(message_type)

        if handler is None:
            logger.warning(f"No handler for message type: {message_type}")
            raise UnknownMessageType(f"Unknown message type: {message_type}")

        if inspect.iscoroutinefunction(handler):
            await asyncio.wait_for(
                handler(connection, message), timeout=self._handler_timeout
            )
        else:
            handler(connection, message)
