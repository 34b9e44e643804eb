"""
Bundle submission contract and a simulated block engine.

The simulator stands in for a real block-engine endpoint: it accepts
bundles, estimates confirmation latency and inclusion probability from the
tip, bundle size and network congestion, and resolves each bundle with a
seeded random draw once its estimated confirmation time has passed.
"""
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

from mev_bundler.bundles.models import Bundle
from mev_bundler.errors import SubmissionError

logger = logging.getLogger(__name__)


class SubmissionStatus(str, Enum):
    """Status of a submitted bundle at the block engine."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class SubmissionHandle:
    """Receipt for a submitted bundle."""
    bundle_id: str
    submitted_at: float
    tip: float
    transaction_count: int
    estimated_confirmation_ms: float
    success_probability: float


class BundleSubmitter(ABC):
    """Abstract base class for bundle submission endpoints."""

    @abstractmethod
    async def submit_bundle(self, bundle: Bundle, tip: Optional[float] = None) -> SubmissionHandle:
        """Submit a bundle and return a handle for status polling."""
        pass

    @abstractmethod
    async def get_bundle_status(self, handle: Union[SubmissionHandle, str]) -> SubmissionStatus:
        """Get the current status of a submitted bundle."""
        pass


@dataclass
class SimulatorConfig:
    """Configuration for the simulated block engine."""
    total_validators: int = 150
    jito_validators: int = 25            # Validators that accept bundles
    base_tip: float = 10_000             # Reference tip in lamports
    max_bundle_size: int = 10
    network_congestion: float = 0.3      # 0-1 scale
    max_wait_ms: float = 5_000           # Pending time past the estimate before expiry
    min_confirmation_ms: float = 400     # One slot


class SimulatedBlockEngine(BundleSubmitter):
    """In-memory block engine with probabilistic inclusion."""

    def __init__(
        self,
        config: SimulatorConfig = None,
        rng: random.Random = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or SimulatorConfig()
        self.rng = rng or random.Random()
        self.clock = clock

        self._handles: Dict[str, SubmissionHandle] = {}
        self._statuses: Dict[str, SubmissionStatus] = {}

        self.metrics = {
            "total_submissions": 0,
            "confirmed_submissions": 0,
            "failed_submissions": 0,
            "expired_submissions": 0
        }

    def estimate_confirmation_ms(self, tip: float, size: int) -> float:
        """Estimated time to confirmation for a bundle."""
        tip_factor = tip / self.config.base_tip
        congestion_delay = self.config.network_congestion * 2000
        size_delay = size * 100
        return max(self.config.min_confirmation_ms, 1000 / tip_factor + congestion_delay + size_delay)

    def success_probability(self, tip: float, size: int) -> float:
        """Probability that a bundle lands, capped at 0.95."""
        tip_factor = min(tip / (self.config.base_tip * 2), 2)
        size_factor = 1 - (size / self.config.max_bundle_size) * 0.3
        congestion_factor = 1 - self.config.network_congestion * 0.4
        validator_ratio = self.config.jito_validators / self.config.total_validators
        return min(0.95, tip_factor * size_factor * congestion_factor * validator_ratio * 0.8)

    async def submit_bundle(self, bundle: Bundle, tip: Optional[float] = None) -> SubmissionHandle:
        """
        Submit a bundle to the simulated block engine.

        Raises:
            SubmissionError: The bundle is empty, too large, already submitted or the tip is not positive
        """
        tip = self.config.base_tip if tip is None else tip
        if tip <= 0:
            raise SubmissionError(f"Tip must be positive, got {tip}")
        if bundle.size == 0:
            raise SubmissionError(f"Bundle {bundle.bundle_id} has no transactions")
        if bundle.size > self.config.max_bundle_size:
            raise SubmissionError(
                f"Bundle size {bundle.size} exceeds maximum ({self.config.max_bundle_size})"
            )
        if bundle.bundle_id in self._handles:
            raise SubmissionError(f"Bundle {bundle.bundle_id} was already submitted")

        handle = SubmissionHandle(
            bundle_id=bundle.bundle_id,
            submitted_at=self.clock(),
            tip=tip,
            transaction_count=bundle.size,
            estimated_confirmation_ms=self.estimate_confirmation_ms(tip, bundle.size),
            success_probability=self.success_probability(tip, bundle.size)
        )
        self._handles[handle.bundle_id] = handle
        self._statuses[handle.bundle_id] = SubmissionStatus.PENDING
        self.metrics["total_submissions"] += 1

        logger.info(
            f"Submitted bundle {bundle.bundle_id}: tip {tip:.0f}, "
            f"ETA {handle.estimated_confirmation_ms:.0f}ms, "
            f"success probability {handle.success_probability:.1%}"
        )
        return handle

    async def get_bundle_status(self, handle: Union[SubmissionHandle, str]) -> SubmissionStatus:
        """
        Resolve the current status of a submitted bundle.

        Raises:
            SubmissionError: The handle is unknown to this engine
        """
        bundle_id = handle.bundle_id if isinstance(handle, SubmissionHandle) else handle
        record = self._handles.get(bundle_id)
        if record is None:
            raise SubmissionError(f"Unknown bundle handle: {bundle_id}")

        status = self._statuses[bundle_id]
        if status != SubmissionStatus.PENDING:
            return status

        elapsed_ms = (self.clock() - record.submitted_at) * 1000
        if elapsed_ms < record.estimated_confirmation_ms:
            return status

        if elapsed_ms > record.estimated_confirmation_ms + self.config.max_wait_ms:
            status = SubmissionStatus.EXPIRED
            self.metrics["expired_submissions"] += 1
        elif self.rng.random() < record.success_probability:
            status = SubmissionStatus.CONFIRMED
            self.metrics["confirmed_submissions"] += 1
        else:
            status = SubmissionStatus.FAILED
            self.metrics["failed_submissions"] += 1

        self._statuses[bundle_id] = status
        logger.info(f"Bundle {bundle_id} resolved as {status.value} after {elapsed_ms:.0f}ms")
        return status

    def get_metrics(self) -> Dict[str, float]:
        """Get submission metrics."""
        total = self.metrics["total_submissions"]
        return {
            **self.metrics,
            "success_rate": self.metrics["confirmed_submissions"] / total if total else 0.0,
            "pending_submissions": sum(
                1 for status in self._statuses.values() if status == SubmissionStatus.PENDING
            )
        }
