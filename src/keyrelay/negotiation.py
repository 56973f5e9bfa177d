"""In-flight offer/answer/candidate exchanges keyed by device pair."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from keyrelay.errors import NoSuchNegotiation
from keyrelay.identity import PairKey

logger = logging.getLogger(__name__)


@dataclass
class NegotiationRecord:
    """One negotiation between an initiator and a responder.

    ``candidates`` only holds candidates received before the answer;
    it is emptied when the answer is recorded.
    """

    offer: Any
    created_at: float
    answer: Any = None
    candidates: list[Any] = field(default_factory=list)

    @property
    def answered(self) -> bool:
        return self.answer is not None


class NegotiationTable:
    """Negotiation records by ``PairKey``.

    Like the registry this holds no lock of its own; the router
    serializes access.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._records: dict[PairKey, NegotiationRecord] = {}
        self._clock = clock

    def open_or_replace(self, pair: PairKey, offer: Any) -> NegotiationRecord:
        """Start a negotiation, discarding any previous one for ``pair``."""
        if pair in self._records:
            logger.debug(f"Offer resets negotiation {pair}")
        record = NegotiationRecord(offer=offer, created_at=self._clock())
        self._records[pair] = record
        return record

    def record_answer(self, pair: PairKey, answer: Any) -> list[Any]:
        """Store the answer for ``pair``.

        Returns:
            Candidates buffered before the answer, in arrival order.

        Raises:
            NoSuchNegotiation: If no offer is on file for ``pair``.
        """
        record = self._records.get(pair)
        if record is None:
            raise NoSuchNegotiation(f"No negotiation for {pair}")
        record.answer = answer
        buffered, record.candidates = record.candidates, []
        return buffered

    def append_candidate(self, pair: PairKey, candidate: Any) -> bool:
        """Accept a candidate for ``pair``.

        Returns:
            True if the pair is answered and the candidate should be
            relayed now, False if it was buffered until the answer.

        Raises:
            NoSuchNegotiation: If no offer is on file for ``pair``.
        """
        record = self._records.get(pair)
        if record is None:
            raise NoSuchNegotiation(f"No negotiation for {pair}")
        if record.answered:
            return True
        record.candidates.append(candidate)
        return False

    def get(self, pair: PairKey) -> Optional[NegotiationRecord]:
        return self._records.get(pair)

    def remove(self, pair: PairKey) -> Optional[NegotiationRecord]:
        return self._records.pop(pair, None)

    def remove_all_involving(self, identity: str) -> list[PairKey]:
        """Drop every record where ``identity`` is initiator or responder."""
        pairs = [pair for pair in self._records if pair.involves(identity)]
        for pair in pairs:
            del self._records[pair]
        return pairs

    def evict_older_than(self, age: float) -> list[PairKey]:
        """Drop records created more than ``age`` seconds ago."""
        now = self._clock()
        pairs = [
            pair
            for pair, record in self._records.items()
            if now - record.created_at > age
        ]
        for pair in pairs:
            del self._records[pair]
        return pairs

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pair: PairKey) -> bool:
        return pair in self._records
