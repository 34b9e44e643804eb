"""
Pending opportunity pool.

Bounded FIFO buffer between the external detectors (producers) and the
construction cycle (consumer). Producers only append; the cycle reads a
snapshot at tick time and never blocks on producers.
"""
import logging
import threading
import time
import uuid
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from mev_bundler.errors import InvalidOpportunityError, MissingFieldError, OpportunityValidationError
from .models import Opportunity

logger = logging.getLogger(__name__)


REQUIRED_FIELDS = ("strategy", "profit", "gas_cost", "risk_score", "venue", "tokens")

# Fields where an empty collection counts as missing
NON_EMPTY_FIELDS = ("tokens",)


class PoolEvent(str, Enum):
    """Signals emitted by the pool for observability."""
    OPPORTUNITY_ADDED = "opportunity_added"
    OPPORTUNITY_EXPIRED = "opportunity_expired"
    OPPORTUNITY_EVICTED = "opportunity_evicted"
    OPPORTUNITY_CONSUMED = "opportunity_consumed"


PoolHandler = Callable[[PoolEvent, Opportunity], None]


def parse_opportunity(raw: Union[Opportunity, Mapping[str, Any]]) -> Opportunity:
    """
    Normalize and validate an inbound opportunity.

    Args:
        raw: An Opportunity instance or a raw detector mapping

    Returns:
        A validated Opportunity

    Raises:
        MissingFieldError: A required field is absent or null, or has no token legs
        InvalidOpportunityError: A field is present but malformed
    """
    if isinstance(raw, Opportunity):
        return raw

    if not isinstance(raw, Mapping):
        raise InvalidOpportunityError(f"Unsupported opportunity payload type: {type(raw).__name__}")

    opportunity_id = raw.get("opportunity_id")
    missing = [
        name for name in REQUIRED_FIELDS
        if raw.get(name) is None or (name in NON_EMPTY_FIELDS and not raw[name])
    ]
    if missing:
        raise MissingFieldError(missing, opportunity_id=opportunity_id)

    payload = dict(raw)
    if not opportunity_id:
        payload["opportunity_id"] = f"opp_{uuid.uuid4().hex[:12]}"

    try:
        return Opportunity.model_validate(payload)
    except ValidationError as e:
        raise InvalidOpportunityError(str(e), opportunity_id=payload["opportunity_id"]) from e


class OpportunityPool:
    """
    Bounded FIFO pool of validated opportunities awaiting bundling.

    When full, the oldest entry is silently evicted since opportunities decay
    in value quickly. Entries older than the TTL are swept at the start of
    every construction cycle.
    """

    def __init__(
        self,
        capacity: int = 100,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the opportunity pool.

        Args:
            capacity: Maximum number of pending opportunities
            ttl_seconds: Age after which an opportunity is purged
            clock: Time source returning unix seconds
        """
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.clock = clock

        self._entries: Deque[Opportunity] = deque()
        self._lock = threading.Lock()
        self._handlers: List[PoolHandler] = []

        self.stats = {
            "opportunities_added": 0,
            "opportunities_rejected": 0,
            "opportunities_evicted": 0,
            "opportunities_expired": 0,
            "opportunities_consumed": 0,
            "duplicates_ignored": 0
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add_handler(self, handler: PoolHandler):
        """Register a callback for pool signals."""
        self._handlers.append(handler)

    def submit(self, opportunity: Union[Opportunity, Mapping[str, Any]]) -> Opportunity:
        """
        Validate an opportunity and append it to the pool.

        Args:
            opportunity: Opportunity instance or raw detector mapping

        Returns:
            The validated opportunity as stored

        Raises:
            OpportunityValidationError: The opportunity is malformed; it is dropped
        """
        try:
            validated = parse_opportunity(opportunity)
        except OpportunityValidationError:
            with self._lock:
                self.stats["opportunities_rejected"] += 1
            raise

        evicted: Optional[Opportunity] = None
        with self._lock:
            if any(entry.opportunity_id == validated.opportunity_id for entry in self._entries):
                self.stats["duplicates_ignored"] += 1
                logger.debug(f"Ignoring duplicate opportunity {validated.opportunity_id}")
                return validated

            if len(self._entries) >= self.capacity:
                evicted = self._entries.popleft()
                self.stats["opportunities_evicted"] += 1

            self._entries.append(validated)
            self.stats["opportunities_added"] += 1

        if evicted is not None:
            logger.debug(f"Pool full, evicted oldest opportunity {evicted.opportunity_id}")
            self._emit(PoolEvent.OPPORTUNITY_EVICTED, evicted)

        logger.debug(f"Added {validated.strategy.value} opportunity {validated.opportunity_id} to pool")
        self._emit(PoolEvent.OPPORTUNITY_ADDED, validated)
        return validated

    def sweep_expired(self, now: Optional[float] = None) -> List[Opportunity]:
        """Remove and return opportunities older than the TTL."""
        current = self.clock() if now is None else now

        with self._lock:
            expired = [op for op in self._entries if op.is_expired(self.ttl_seconds, current)]
            if expired:
                self._entries = deque(
                    op for op in self._entries if not op.is_expired(self.ttl_seconds, current)
                )
                self.stats["opportunities_expired"] += len(expired)

        for opportunity in expired:
            self._emit(PoolEvent.OPPORTUNITY_EXPIRED, opportunity)

        if expired:
            logger.debug(f"Purged {len(expired)} expired opportunities")
        return expired

    def snapshot(self, now: Optional[float] = None) -> List[Opportunity]:
        """Sweep expired entries, then copy the remaining pool in FIFO order."""
        self.sweep_expired(now)
        with self._lock:
            return list(self._entries)

    def remove(self, opportunity_ids: Iterable[str]) -> int:
        """Remove consumed opportunities and return the count removed."""
        ids = set(opportunity_ids)
        with self._lock:
            consumed = [op for op in self._entries if op.opportunity_id in ids]
            self._entries = deque(op for op in self._entries if op.opportunity_id not in ids)
            self.stats["opportunities_consumed"] += len(consumed)

        for opportunity in consumed:
            self._emit(PoolEvent.OPPORTUNITY_CONSUMED, opportunity)
        return len(consumed)

    def clear(self):
        """Drop all pending opportunities."""
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        with self._lock:
            size = len(self._entries)
        return {**self.stats, "pending": size, "capacity": self.capacity}

    def _emit(self, event: PoolEvent, opportunity: Opportunity):
        for handler in self._handlers:
            try:
                handler(event, opportunity)
            except Exception as e:
                logger.error(f"Pool handler failed on {event.value} for {opportunity.opportunity_id}: {e}")
