"""Bundle construction and profitability validation."""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from mev_bundler.opportunities.models import Opportunity, StrategyKind
from mev_bundler.scheduling.dependency import DependencyGraph
from .models import (
    Bundle,
    BundleMetrics,
    BundleValidationReport,
    ExecutionPlan,
    ExecutionStep,
    RejectionReason
)

logger = logging.getLogger(__name__)


ROLLBACK_STRATEGIES: Dict[StrategyKind, str] = {
    StrategyKind.ARBITRAGE: "Reverse swap on the counter venue",
    StrategyKind.LIQUIDATION: "Return borrowed funds immediately",
    StrategyKind.SANDWICH: "Execute the back-run unconditionally",
    StrategyKind.FLASH_LOAN: "Guarantee loan repayment in the same transaction",
    StrategyKind.SWAP: "Rely on slippage protection",
}
DEFAULT_ROLLBACK_STRATEGY = "Monitor and intervene manually"

BUNDLE_ROLLBACK_PLAN = "Reverse transaction order on failure"
BUNDLE_RISK_MITIGATION = "Monitor each step and abort on significant deviation"


@dataclass
class BuilderConfig:
    """Configuration for bundle construction and validation."""
    min_bundle_profit: float = 0.05          # Minimum net profit in native units
    min_gas_efficiency: float = 2.0          # Minimum profit to gas ratio
    risk_tolerance: float = 7.0              # Maximum average risk score
    priority_fee_multiplier: float = 1.5     # Priority fee as a multiple of gas cost
    step_duration_ms: float = 2000.0         # Estimated duration of one transaction

    @classmethod
    def from_settings(cls, settings) -> "BuilderConfig":
        """Build builder configuration from application settings."""
        return cls(
            min_bundle_profit=settings.min_bundle_profit,
            min_gas_efficiency=settings.min_gas_efficiency,
            risk_tolerance=settings.risk_tolerance,
            priority_fee_multiplier=settings.priority_fee_multiplier
        )


class BundleBuilder:
    """
    Turns an optimized execution order into a Bundle.

    Construction computes metrics, an execution plan and per-transaction
    priority fees. Validation is a pure check against the profitability,
    gas efficiency and risk gates; status changes are applied by the caller.
    """

    def __init__(self, config: BuilderConfig = None, clock: Callable[[], float] = time.time):
        self.config = config or BuilderConfig()
        self.clock = clock

    def calculate_metrics(self, opportunities: Sequence[Opportunity]) -> BundleMetrics:
        """Aggregate profit, gas, risk and timing for a transaction list."""
        count = len(opportunities)
        total_profit = sum(op.profit for op in opportunities)
        total_gas = sum(op.gas_cost for op in opportunities)

        if total_gas > 0:
            gas_efficiency = total_profit / total_gas
        else:
            gas_efficiency = float('inf') if total_profit > 0 else 0.0

        return BundleMetrics(
            total_profit=total_profit,
            total_gas=total_gas,
            net_profit=total_profit - total_gas,
            avg_risk=sum(op.risk_score for op in opportunities) / count if count else 0.0,
            max_slippage=max((op.slippage for op in opportunities), default=0.0),
            gas_efficiency=gas_efficiency,
            estimated_execution_time_ms=self.estimate_execution_time(count),
            transaction_count=count
        )

    def estimate_execution_time(self, count: int) -> float:
        """Per-transaction base time scaled by a complexity multiplier."""
        complexity = max(1.0, count * 0.1)
        return self.config.step_duration_ms * count * complexity

    def create_execution_plan(
        self,
        opportunities: Sequence[Opportunity],
        graph: Optional[DependencyGraph] = None,
        order: Optional[Sequence[int]] = None
    ) -> ExecutionPlan:
        """
        Create the step-by-step execution plan.

        Args:
            opportunities: Transactions in execution order
            graph: Dependency graph; when given, step dependencies follow its edges
            order: Graph node of each step; defaults to the step index

        Returns:
            Execution plan with one step per transaction
        """
        nodes = list(order) if order is not None else list(range(len(opportunities)))
        step_of_node = {node: index for index, node in enumerate(nodes)}

        steps = []
        for index, opportunity in enumerate(opportunities):
            if graph is not None:
                dependencies = tuple(sorted(step_of_node[dep] for dep in graph.predecessors[nodes[index]]))
            else:
                dependencies = (index - 1,) if index > 0 else ()

            steps.append(ExecutionStep(
                index=index,
                opportunity_id=opportunity.opportunity_id,
                action=opportunity.strategy.value,
                venue=opportunity.venue,
                estimated_duration_ms=self.config.step_duration_ms,
                dependencies=dependencies,
                rollback_strategy=ROLLBACK_STRATEGIES.get(opportunity.strategy, DEFAULT_ROLLBACK_STRATEGY)
            ))

        return ExecutionPlan(
            steps=tuple(steps),
            total_estimated_duration_ms=len(steps) * self.config.step_duration_ms,
            rollback_plan=BUNDLE_ROLLBACK_PLAN,
            risk_mitigation=BUNDLE_RISK_MITIGATION
        )

    def build(
        self,
        opportunities: Sequence[Opportunity],
        graph: Optional[DependencyGraph] = None,
        order: Optional[Sequence[int]] = None
    ) -> Bundle:
        """
        Construct a bundle from transactions in execution order.

        Raises:
            ValueError: No opportunities were given
        """
        if not opportunities:
            raise ValueError("Cannot build a bundle without opportunities")

        metrics = self.calculate_metrics(opportunities)
        bundle = Bundle(
            bundle_id=self.generate_bundle_id(),
            opportunities=tuple(opportunities),
            metrics=metrics,
            execution_plan=self.create_execution_plan(opportunities, graph, order),
            priority_fees={
                op.opportunity_id: op.gas_cost * self.config.priority_fee_multiplier
                for op in opportunities
            },
            created_at=self.clock()
        )

        logger.debug(
            f"Constructed bundle {bundle.bundle_id}: {metrics.transaction_count} txs, "
            f"net profit {metrics.net_profit:.6f}, gas efficiency {metrics.gas_efficiency:.2f}"
        )
        return bundle

    def validate(self, bundle: Bundle) -> BundleValidationReport:
        """Check a bundle against the profitability gates; the first failure wins."""
        metrics = bundle.metrics

        if metrics.net_profit < self.config.min_bundle_profit:
            return BundleValidationReport(
                is_valid=False,
                reason=RejectionReason.UNPROFITABLE,
                message=f"Net profit {metrics.net_profit:.6f} below minimum {self.config.min_bundle_profit}"
            )

        if metrics.gas_efficiency < self.config.min_gas_efficiency:
            return BundleValidationReport(
                is_valid=False,
                reason=RejectionReason.POOR_GAS_EFFICIENCY,
                message=f"Gas efficiency {metrics.gas_efficiency:.2f} below minimum {self.config.min_gas_efficiency}"
            )

        if metrics.avg_risk > self.config.risk_tolerance:
            return BundleValidationReport(
                is_valid=False,
                reason=RejectionReason.RISK_TOO_HIGH,
                message=f"Average risk {metrics.avg_risk:.2f} above tolerance {self.config.risk_tolerance}"
            )

        return BundleValidationReport(is_valid=True, message="Bundle meets all profitability requirements")

    def generate_bundle_id(self) -> str:
        """Unique bundle identifier: millisecond timestamp plus random suffix."""
        return f"bundle_{int(self.clock() * 1000)}_{uuid.uuid4().hex[:9]}"
