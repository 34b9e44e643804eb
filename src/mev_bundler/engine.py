"""
Bundle Construction Engine.

Owns the pending pool and every pipeline component, and runs the periodic
construction cycle: snapshot, group, dependency check, order optimization,
bundle build and validation, risk assessment, then acceptance or rejection.
"""
import asyncio
import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set, Union

from mev_bundler.bundles.builder import BuilderConfig, BundleBuilder
from mev_bundler.bundles.models import Bundle, BundleStatus, RejectionReason
from mev_bundler.config.settings import Settings, get_settings
from mev_bundler.errors import BundleStateError, SubmissionError
from mev_bundler.opportunities.models import Opportunity
from mev_bundler.opportunities.pool import OpportunityPool
from mev_bundler.risk.assessor import AssessorConfig, BundleRiskAssessor
from mev_bundler.risk.models import MarketConditions, RiskAssessment
from mev_bundler.scheduling.dependency import build_graph, find_cycle
from mev_bundler.scheduling.grouping import GroupingConfig, GroupingEngine
from mev_bundler.scheduling.optimizer import OptimizationResult, OptimizerConfig, OrderOptimizer
from mev_bundler.submission.simulator import (
    BundleSubmitter,
    SimulatedBlockEngine,
    SimulatorConfig,
    SubmissionStatus
)

logger = logging.getLogger(__name__)


class CycleStatus(str, Enum):
    """Outcome of one construction cycle."""
    IDLE = "idle"                 # Fewer than two pending opportunities
    NO_GROUP = "no_group"         # No qualifying acyclic group
    REJECTED = "rejected"         # Bundle failed validation or was vetoed
    ACCEPTED = "accepted"         # Bundle accepted for submission
    DISCARDED = "discarded"       # Cycle exceeded its timeout; result dropped


class EngineEvent(str, Enum):
    """Bundle lifecycle events delivered to registered handlers."""
    BUNDLE_ACCEPTED = "bundle_accepted"
    BUNDLE_REJECTED = "bundle_rejected"


@dataclass
class CycleResult:
    """Result of a single construction cycle."""
    status: CycleStatus
    bundle: Optional[Bundle] = None
    assessment: Optional[RiskAssessment] = None
    optimization: Optional[OptimizationResult] = None
    reason: Optional[RejectionReason] = None
    message: str = ""
    groups_considered: int = 0
    groups_discarded: int = 0


BundleHandler = Callable[[Bundle], None]

SUBMISSION_OUTCOMES = {
    SubmissionStatus.CONFIRMED: BundleStatus.CONFIRMED,
    SubmissionStatus.FAILED: BundleStatus.FAILED,
    SubmissionStatus.EXPIRED: BundleStatus.EXPIRED,
}


class BundleConstructionEngine:
    """
    Periodic bundle construction over the pending opportunity pool.

    Ingestion only appends to the pool. Each tick takes a snapshot and runs
    the synchronous pipeline in a worker thread under the construction
    timeout; accepted bundles are submitted without blocking the next tick.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        submitter: Optional[BundleSubmitter] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the construction engine.

        Args:
            settings: Engine settings; loaded from the environment when omitted
            submitter: Bundle submission endpoint; a simulated block engine by default
            clock: Time source returning unix seconds
            rng: Random source for order optimization
        """
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng or random.Random(self.settings.random_seed)

        self.pool = OpportunityPool(
            capacity=self.settings.pool_capacity,
            ttl_seconds=self.settings.opportunity_ttl_seconds,
            clock=clock
        )
        self.grouping = GroupingEngine(GroupingConfig(
            max_group_size=self.settings.max_bundle_transactions,
            min_group_profit=self.settings.min_bundle_profit,
            max_group_gas=self.settings.max_bundle_gas_cost,
            risk_tolerance=self.settings.risk_tolerance
        ))
        self.optimizer = OrderOptimizer(OptimizerConfig.from_settings(self.settings), self.rng)
        self.builder = BundleBuilder(BuilderConfig.from_settings(self.settings), clock=clock)
        self.risk_assessor = BundleRiskAssessor(AssessorConfig.from_settings(self.settings), clock=clock)
        self.submitter = submitter or SimulatedBlockEngine(
            SimulatorConfig(max_bundle_size=self.settings.max_bundle_transactions),
            rng=random.Random(self.settings.random_seed),
            clock=clock
        )

        self.market_conditions = MarketConditions()

        # Bundle tracking
        self.bundle_history: Deque[Bundle] = deque(maxlen=1000)
        self.submitted_bundles: Dict[str, Bundle] = {}

        # Event handlers
        self.handlers: Dict[EngineEvent, List[BundleHandler]] = {event: [] for event in EngineEvent}

        # Runtime state
        self.is_running = False
        self.loop_tasks: List[asyncio.Task] = []
        self._submission_tasks: Set[asyncio.Task] = set()
        self._inflight: Optional[asyncio.Future] = None
        self._commit_lock = threading.Lock()

        self.stats = {
            "cycles_run": 0,
            "bundles_constructed": 0,
            "bundles_accepted": 0,
            "bundles_rejected": 0,
            "rejections_by_reason": {reason.value: 0 for reason in RejectionReason},
            "groups_discarded_for_cycles": 0,
            "cycle_timeouts": 0,
            "cycle_errors": 0,
            "total_bundle_size": 0,
            "total_optimization_time_ms": 0.0,
            "total_profit": 0.0,
            "bundles_submitted": 0,
            "submission_errors": 0,
            "bundles_confirmed": 0,
            "bundles_failed": 0,
            "bundles_expired": 0
        }

    # Ingestion

    def submit_opportunity(self, opportunity: Union[Opportunity, Mapping[str, Any]]) -> Opportunity:
        """
        Validate an opportunity and add it to the pending pool.

        Raises:
            OpportunityValidationError: The opportunity is malformed and was dropped
        """
        return self.pool.submit(opportunity)

    def update_market_conditions(self, conditions: MarketConditions):
        """Replace the market snapshot used for risk assessment."""
        self.market_conditions = conditions

    def add_handler(self, event: EngineEvent, handler: BundleHandler):
        """Register a callback for a bundle lifecycle event."""
        self.handlers[EngineEvent(event)].append(handler)

    # Construction cycle

    def run_cycle(self, now: Optional[float] = None, cancelled: Optional[threading.Event] = None) -> CycleResult:
        """
        Run one synchronous construction cycle.

        Args:
            now: Cycle time in unix seconds; defaults to the clock
            cancelled: Set by the scheduler when the cycle timed out; a set
                event prevents the cycle from committing its result

        Returns:
            Cycle result
        """
        now = self.clock() if now is None else now
        self.stats["cycles_run"] += 1

        snapshot = self.pool.snapshot(now)
        if len(snapshot) < 2:
            return CycleResult(status=CycleStatus.IDLE, message=f"{len(snapshot)} pending opportunities")

        groups = self.grouping.rank_groups(snapshot)
        if not groups:
            return CycleResult(status=CycleStatus.NO_GROUP, message="No qualifying opportunity group")

        selected = None
        discarded = 0
        for group in groups:
            graph = build_graph(group.opportunities)
            cycle = find_cycle(graph)
            if cycle is not None:
                discarded += 1
                self.stats["groups_discarded_for_cycles"] += 1
                logger.warning(
                    f"Discarding group {group.opportunity_ids}: dependency cycle "
                    f"{' -> '.join(str(node) for node in cycle)}"
                )
                continue
            selected = (group, graph)
            break

        if selected is None:
            return CycleResult(
                status=CycleStatus.NO_GROUP,
                message="All candidate groups have cyclic dependencies",
                groups_considered=len(groups),
                groups_discarded=discarded
            )

        group, graph = selected
        optimization = self.optimizer.optimize(group.opportunities, graph)
        self.stats["total_optimization_time_ms"] += optimization.optimization_time_ms

        bundle = self.builder.build(optimization.opportunities, graph, optimization.order)
        self.stats["bundles_constructed"] += 1
        self.stats["total_bundle_size"] += bundle.size

        report = self.builder.validate(bundle)
        if not report.is_valid:
            return self._reject(
                bundle, report.reason, report.message, optimization, len(groups), discarded, cancelled
            )

        bundle.transition(BundleStatus.VALIDATED)

        if cancelled is not None and cancelled.is_set():
            return self._discard(bundle)

        assessment = self.risk_assessor.assess(bundle, self.market_conditions)
        bundle.risk_assessment = assessment

        if self.risk_assessor.should_veto(assessment):
            message = (
                f"Risk {assessment.overall_risk:.2f} ({assessment.risk_level.value}) "
                f"exceeds maximum {self.settings.max_acceptable_risk}"
            )
            return self._reject(
                bundle, RejectionReason.RISK_VETO, message, optimization, len(groups), discarded, cancelled
            )

        for recommendation in assessment.recommendations:
            logger.info(
                f"Bundle {bundle.bundle_id} flagged [{recommendation.type.value}]: "
                f"{recommendation.message}. {recommendation.action}"
            )

        with self._commit_lock:
            if cancelled is not None and cancelled.is_set():
                return self._discard(bundle)

            bundle.transition(BundleStatus.ACCEPTED)
            self.pool.remove(bundle.opportunity_ids)
            self.bundle_history.append(bundle)
            self.stats["bundles_accepted"] += 1
            self.stats["total_profit"] += bundle.metrics.net_profit

        logger.info(
            f"Accepted bundle {bundle.bundle_id}: {bundle.size} txs, "
            f"net profit {bundle.metrics.net_profit:.6f}, risk {assessment.overall_risk:.2f} "
            f"({assessment.risk_level.value}), {optimization.algorithm.value} ordering"
        )
        self._trigger_handlers(EngineEvent.BUNDLE_ACCEPTED, bundle)

        return CycleResult(
            status=CycleStatus.ACCEPTED,
            bundle=bundle,
            assessment=assessment,
            optimization=optimization,
            groups_considered=len(groups),
            groups_discarded=discarded
        )

    def _reject(
        self,
        bundle: Bundle,
        reason: RejectionReason,
        message: str,
        optimization: OptimizationResult,
        groups_considered: int,
        groups_discarded: int,
        cancelled: Optional[threading.Event] = None
    ) -> CycleResult:
        with self._commit_lock:
            if cancelled is not None and cancelled.is_set():
                return self._discard(bundle)

            bundle.reject(reason, message)
            self.bundle_history.append(bundle)
            self.stats["bundles_rejected"] += 1
            self.stats["rejections_by_reason"][reason.value] += 1

        logger.info(f"Rejected bundle {bundle.bundle_id} ({reason.value}): {message}")
        self._trigger_handlers(EngineEvent.BUNDLE_REJECTED, bundle)

        return CycleResult(
            status=CycleStatus.REJECTED,
            bundle=bundle,
            assessment=bundle.risk_assessment,
            optimization=optimization,
            reason=reason,
            message=message,
            groups_considered=groups_considered,
            groups_discarded=groups_discarded
        )

    @staticmethod
    def _discard(bundle: Bundle) -> CycleResult:
        logger.warning(f"Discarding bundle {bundle.bundle_id} from a timed-out cycle")
        return CycleResult(status=CycleStatus.DISCARDED, bundle=bundle, assessment=bundle.risk_assessment)

    def _trigger_handlers(self, event: EngineEvent, bundle: Bundle):
        for handler in self.handlers[event]:
            try:
                handler(bundle)
            except Exception as e:
                logger.error(f"Error in {event.value} handler: {e}")

    # Submission

    async def submit_bundle(self, bundle: Bundle) -> bool:
        """Submit an accepted bundle and start tracking it."""
        try:
            handle = await self.submitter.submit_bundle(bundle)
            bundle.mark_submitted(handle)
        except (SubmissionError, BundleStateError) as e:
            logger.error(f"Failed to submit bundle {bundle.bundle_id}: {e}")
            self.stats["submission_errors"] += 1
            return False

        self.submitted_bundles[bundle.bundle_id] = bundle
        self.stats["bundles_submitted"] += 1
        return True

    async def poll_submissions(self) -> Dict[str, BundleStatus]:
        """Poll the submitter for tracked bundles and apply terminal outcomes."""
        resolved: Dict[str, BundleStatus] = {}

        for bundle_id, bundle in list(self.submitted_bundles.items()):
            try:
                status = await self.submitter.get_bundle_status(bundle.submission_handle)
            except SubmissionError as e:
                logger.error(f"Status check failed for bundle {bundle_id}: {e}")
                continue

            outcome = SUBMISSION_OUTCOMES.get(status)
            if outcome is None:
                continue

            bundle.transition(outcome)
            self.stats[f"bundles_{outcome.value}"] += 1
            del self.submitted_bundles[bundle_id]
            resolved[bundle_id] = outcome
            logger.info(f"Bundle {bundle_id} {outcome.value}")

        return resolved

    # Lifecycle

    async def start(self):
        """Start the periodic construction and submission polling loops."""
        if self.is_running:
            logger.warning("Bundle construction engine already running")
            return

        logger.info(
            f"Starting bundle construction engine "
            f"(interval {self.settings.cycle_interval_seconds}s, "
            f"timeout {self.settings.bundle_timeout_seconds}s)"
        )
        self.is_running = True
        self.loop_tasks = [
            asyncio.create_task(self._run_loop()),
            asyncio.create_task(self._poll_loop())
        ]

    async def stop(self):
        """Stop the engine and cancel outstanding work."""
        logger.info("Stopping bundle construction engine")
        self.is_running = False

        tasks = self.loop_tasks + list(self._submission_tasks)
        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
        self.loop_tasks.clear()
        self._submission_tasks.clear()

    async def _run_loop(self):
        while self.is_running:
            try:
                await self.tick()
            except Exception as e:
                self.stats["cycle_errors"] += 1
                logger.error(f"Error in construction cycle: {e}")

            await asyncio.sleep(self.settings.cycle_interval_seconds)

    async def _poll_loop(self):
        while self.is_running:
            try:
                await self.poll_submissions()
            except Exception as e:
                logger.error(f"Error polling bundle submissions: {e}")

            await asyncio.sleep(self.settings.cycle_interval_seconds)

    async def tick(self) -> Optional[CycleResult]:
        """
        Run one cycle in a worker thread under the construction timeout.

        Returns:
            The cycle result, or None when the cycle timed out or was skipped
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Previous timed-out cycle still running, skipping tick")
            return None

        cancelled = threading.Event()
        worker = asyncio.ensure_future(asyncio.to_thread(self.run_cycle, None, cancelled))
        self._inflight = worker

        try:
            result = await asyncio.wait_for(asyncio.shield(worker), timeout=self.settings.bundle_timeout_seconds)
        except asyncio.TimeoutError:
            with self._commit_lock:
                cancelled.set()
            worker.add_done_callback(self._log_orphaned_cycle)
            self.stats["cycle_timeouts"] += 1
            logger.warning(
                f"Construction cycle exceeded {self.settings.bundle_timeout_seconds}s, result discarded"
            )
            return None

        if result.status == CycleStatus.ACCEPTED:
            task = asyncio.create_task(self.submit_bundle(result.bundle))
            self._submission_tasks.add(task)
            task.add_done_callback(self._submission_tasks.discard)

        return result

    @staticmethod
    def _log_orphaned_cycle(worker: asyncio.Future):
        if worker.cancelled():
            return
        error = worker.exception()
        if error is not None:
            logger.error(f"Timed-out construction cycle failed: {error}")

    # Statistics

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        constructed = self.stats["bundles_constructed"]
        return {
            **self.stats,
            "rejections_by_reason": dict(self.stats["rejections_by_reason"]),
            "average_bundle_size": self.stats["total_bundle_size"] / constructed if constructed else 0.0,
            "average_optimization_time_ms": (
                self.stats["total_optimization_time_ms"] / constructed if constructed else 0.0
            ),
            "pending_submissions": len(self.submitted_bundles),
            "pool": self.pool.get_stats(),
            "risk": self.risk_assessor.get_risk_stats(),
            "optimizer": self.optimizer.get_stats(),
            "is_running": self.is_running
        }

    def get_recent_bundles(self, limit: int = 10) -> List[Bundle]:
        """Most recently constructed bundles, newest first."""
        return list(reversed(self.bundle_history))[:limit]
