"""Device key format and the ordered device pair used as negotiation key."""

import re
from typing import Any, NamedTuple

from keyrelay.errors import InvalidIdentity

KEY_LENGTH = 10
KEY_PATTERN = re.compile(r"[A-Z0-9]{10}")


def is_valid_key(key: Any) -> bool:
    """Check a device key against the accepted format.

    Keys are exactly ten characters of uppercase letters and digits.
    """
    return isinstance(key, str) and KEY_PATTERN.fullmatch(key) is not None


def validate_key(key: Any) -> str:
    """Return ``key`` unchanged if well formed.

    Raises:
        InvalidIdentity: If the key is missing or malformed.
    """
    if not key:
        raise InvalidIdentity("Device key is required")
    if not is_valid_key(key):
        raise InvalidIdentity(
            f"Device key must be {KEY_LENGTH} uppercase letters or digits"
        )
    return key


class PairKey(NamedTuple):
    """Ordered (initiator, responder) pair identifying one negotiation.

    An offer travels initiator -> responder and is keyed as sent. An
    answer travels responder -> initiator, so its key is built from the
    answer's target (initiator) and sender (responder).
    """

    initiator: str
    responder: str

    @classmethod
    def for_offer(cls, sender: str, target: str) -> "PairKey":
        return cls(initiator=sender, responder=target)

    @classmethod
    def for_answer(cls, sender: str, target: str) -> "PairKey":
        return cls(initiator=target, responder=sender)

    def involves(self, identity: str) -> bool:
        return identity == self.initiator or identity == self.responder

    def other(self, identity: str) -> str:
        """Return the party that is not ``identity``."""
        if identity == self.initiator:
            return self.responder
        if identity == self.responder:
            return self.initiator
        raise ValueError(f"{identity} is not part of {self}")

    def reversed(self) -> "PairKey":
        return PairKey(initiator=self.responder, responder=self.initiator)

    def __str__(self) -> str:
        return f"{self.initiator}->{self.responder}"
