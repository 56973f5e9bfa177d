"""Base exceptions for the signaling relay.

Every error carries the ``code`` reported to clients in ``error`` frames.
"""


class RelayError(Exception):
    """Base exception for all relay errors."""

    code = "relay-error"


class InvalidIdentity(RelayError):
    """Device key missing or not in the accepted format."""

    code = "invalid-key"


class TargetNotFound(RelayError):
    """Target device is not registered."""

    code = "target-not-found"


class NoSuchNegotiation(RelayError):
    """Answer or candidate without a matching offer on file."""

    code = "no-such-negotiation"


class MalformedMessage(RelayError):
    """Frame could not be parsed or lacks a required field."""

    code = "malformed-message"


class UnknownMessageType(MalformedMessage):
    """Frame discriminant names no known message type."""

    code = "unknown-type"


class NotRegistered(RelayError):
    """Message requires a registered sender."""

    code = "not-registered"


class ChannelUnavailable(RelayError):
    """Send attempted on a closed or failing channel."""

    code = "channel-unavailable"
