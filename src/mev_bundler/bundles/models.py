"""Bundle data models and lifecycle."""
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from mev_bundler.errors import BundleStateError
from mev_bundler.opportunities.models import Opportunity


class BundleStatus(str, Enum):
    """Lifecycle status of a bundle."""
    CONSTRUCTED = "constructed"
    VALIDATED = "validated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS: Dict[BundleStatus, FrozenSet[BundleStatus]] = {
    BundleStatus.CONSTRUCTED: frozenset({BundleStatus.VALIDATED, BundleStatus.REJECTED}),
    BundleStatus.VALIDATED: frozenset({BundleStatus.ACCEPTED, BundleStatus.REJECTED}),
    BundleStatus.ACCEPTED: frozenset({BundleStatus.SUBMITTED}),
    BundleStatus.SUBMITTED: frozenset({BundleStatus.CONFIRMED, BundleStatus.FAILED, BundleStatus.EXPIRED}),
    BundleStatus.REJECTED: frozenset(),
    BundleStatus.CONFIRMED: frozenset(),
    BundleStatus.FAILED: frozenset(),
    BundleStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


class RejectionReason(str, Enum):
    """Why a bundle was rejected."""
    UNPROFITABLE = "unprofitable"                   # Net profit below minimum
    POOR_GAS_EFFICIENCY = "poor_gas_efficiency"     # Profit to gas ratio below minimum
    RISK_TOO_HIGH = "risk_too_high"                 # Average opportunity risk above tolerance
    RISK_VETO = "risk_veto"                         # Composite risk assessment veto


@dataclass(frozen=True)
class BundleMetrics:
    """Aggregate economics of a bundle."""
    total_profit: float
    total_gas: float
    net_profit: float
    avg_risk: float
    max_slippage: float
    gas_efficiency: float
    estimated_execution_time_ms: float
    transaction_count: int


@dataclass(frozen=True)
class ExecutionStep:
    """One transaction in the execution plan."""
    index: int
    opportunity_id: str
    action: str
    venue: str
    estimated_duration_ms: float
    dependencies: Tuple[int, ...] = ()
    rollback_strategy: str = ""


@dataclass(frozen=True)
class ExecutionPlan:
    """Step-by-step plan for executing a bundle."""
    steps: Tuple[ExecutionStep, ...]
    total_estimated_duration_ms: float
    rollback_plan: str
    risk_mitigation: str


@dataclass
class BundleValidationReport:
    """Outcome of bundle validation."""
    is_valid: bool
    reason: Optional[RejectionReason] = None
    message: str = ""


@dataclass
class Bundle:
    """
    An ordered set of opportunities executed atomically.

    Status changes go through ``transition``. Once submitted, only terminal
    status transitions are permitted; any other assignment raises
    BundleStateError. Metrics and the execution plan are frozen, and
    priority fees become a read-only mapping on submission.
    """
    bundle_id: str
    opportunities: Tuple[Opportunity, ...]
    metrics: BundleMetrics
    execution_plan: ExecutionPlan
    priority_fees: Mapping[str, float] = field(default_factory=dict)
    status: BundleStatus = BundleStatus.CONSTRUCTED
    created_at: float = field(default_factory=time.time)

    rejection_reason: Optional[RejectionReason] = None
    rejection_message: Optional[str] = None
    risk_assessment: Optional[Any] = None
    submission_handle: Optional[Any] = None

    def __setattr__(self, name: str, value: Any):
        if getattr(self, "_sealed", False) and name != "status":
            raise BundleStateError(f"Bundle {self.bundle_id} is submitted and can no longer be modified")
        super().__setattr__(name, value)

    @property
    def size(self) -> int:
        return len(self.opportunities)

    @property
    def opportunity_ids(self) -> List[str]:
        return [op.opportunity_id for op in self.opportunities]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, target: BundleStatus) -> bool:
        """Check whether moving to ``target`` is a legal transition."""
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: BundleStatus):
        """
        Move the bundle to a new status.

        Raises:
            BundleStateError: The transition is not allowed from the current status
        """
        if not self.can_transition(target):
            raise BundleStateError(
                f"Illegal transition for bundle {self.bundle_id}: {self.status.value} -> {target.value}"
            )
        self.status = target

    def reject(self, reason: RejectionReason, message: str = ""):
        """Record a rejection and move to REJECTED."""
        if not self.can_transition(BundleStatus.REJECTED):
            raise BundleStateError(f"Bundle {self.bundle_id} cannot be rejected from {self.status.value}")
        self.rejection_reason = reason
        self.rejection_message = message
        self.transition(BundleStatus.REJECTED)

    def mark_submitted(self, handle: Any):
        """Attach the submission handle and seal the bundle."""
        if not self.can_transition(BundleStatus.SUBMITTED):
            raise BundleStateError(f"Bundle {self.bundle_id} cannot be submitted from {self.status.value}")
        self.submission_handle = handle
        self.transition(BundleStatus.SUBMITTED)
        object.__setattr__(self, "priority_fees", MappingProxyType(dict(self.priority_fees)))
        object.__setattr__(self, "_sealed", True)

    def to_dict(self) -> Dict[str, Any]:
        """Summary suitable for logging and the HTTP API."""
        return {
            "bundle_id": self.bundle_id,
            "status": self.status.value,
            "opportunity_ids": self.opportunity_ids,
            "total_profit": self.metrics.total_profit,
            "total_gas": self.metrics.total_gas,
            "net_profit": self.metrics.net_profit,
            "avg_risk": self.metrics.avg_risk,
            "gas_efficiency": self.metrics.gas_efficiency if math.isfinite(self.metrics.gas_efficiency) else None,
            "estimated_execution_time_ms": self.metrics.estimated_execution_time_ms,
            "rejection_reason": self.rejection_reason.value if self.rejection_reason else None,
            "created_at": self.created_at
        }
