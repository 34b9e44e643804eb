"""
Bundle Risk Assessment Module.

Scores a constructed bundle across eight independent risk categories and
combines them into a weighted composite with a confidence estimate,
recommendations and mitigation strategies.
"""
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from mev_bundler.bundles.models import Bundle
from mev_bundler.errors import CategoryModelError
from mev_bundler.opportunities.models import COMPLEX_STRATEGIES, TIME_SENSITIVE_STRATEGIES, StrategyKind
from .models import (
    RISK_WEIGHTS,
    CategoryRisk,
    DataQuality,
    MarketConditions,
    MitigationStrategy,
    NetworkCongestion,
    Recommendation,
    RecommendationType,
    RiskAssessment,
    RiskCategory,
    RiskHistoryEntry,
    RiskLevel,
    categorize_risk_level
)

logger = logging.getLogger(__name__)


FALLBACK_SCORE = 5.0
FALLBACK_CONFIDENCE = 0.3


@dataclass
class AssessorConfig:
    """Configuration for bundle risk assessment."""
    max_acceptable_risk: float = 7.5     # Composite risk above which a bundle is vetoed
    min_confidence_level: float = 0.6    # Confidence below which an assessment is flagged
    history_size: int = 1000             # Retained assessments for confidence estimation

    @classmethod
    def from_settings(cls, settings) -> "AssessorConfig":
        """Build assessor configuration from application settings."""
        return cls(
            max_acceptable_risk=settings.max_acceptable_risk,
            min_confidence_level=settings.min_confidence_level,
            history_size=settings.risk_history_size
        )


RiskModel = Callable[[Bundle, MarketConditions], float]


class BundleRiskAssessor:
    """
    Multi-category risk assessment for constructed bundles.

    Each category model is isolated: a failing model is logged and scored
    at a moderate 5.0 so one faulty input cannot abort the assessment. Only
    when every model fails is the fixed fallback assessment returned.
    """

    def __init__(self, config: AssessorConfig = None, clock: Callable[[], float] = time.time):
        """Initialize the assessor with its risk tables."""
        self.config = config or AssessorConfig()
        self.clock = clock

        # Venue execution reliability (lower is more reliable)
        self.venue_reliability = {
            "raydium": 0.2,
            "orca": 0.3,
            "jupiter": 0.4,    # Aggregator routing complexity
            "openbook": 0.5,
            "mango": 0.6,
        }
        self.unknown_venue_reliability = 0.7

        # Venue liquidity depth (lower is deeper)
        self.venue_liquidity = {
            "raydium": 0.2,
            "orca": 0.3,
            "jupiter": 0.1,    # Aggregated liquidity
            "openbook": 0.4,
            "mango": 0.5,
        }
        self.unknown_venue_liquidity = 0.6

        self.congestion_risk = {
            NetworkCongestion.LOW: 0.2,
            NetworkCongestion.NORMAL: 0.5,
            NetworkCongestion.HIGH: 1.5,
            NetworkCongestion.EXTREME: 3.0,
        }

        # Baseline token volatility
        self.token_volatility = {
            "SOL": 0.08,
            "BTC": 0.06,
            "ETH": 0.07,
            "USDC": 0.001,
            "USDT": 0.001,
            "RAY": 0.12,
            "BONK": 0.25,
        }
        self.unknown_token_volatility = 0.15

        self.correlated_pairs = [
            frozenset({"BTC", "ETH"}),
            frozenset({"USDC", "USDT"}),
            frozenset({"SOL", "ETH"}),
        ]
        self.low_liquidity_tokens = {"BONK", "SAMO", "FIDA"}
        self.popular_tokens = {"SOL", "USDC", "USDT", "BTC", "ETH"}

        self.strategy_competition = {
            StrategyKind.ARBITRAGE: 2.0,
            StrategyKind.SANDWICH: 2.5,
            StrategyKind.LIQUIDATION: 1.5,
            StrategyKind.FLASH_LOAN: 1.0,
            StrategyKind.SWAP: 1.0,
        }

        self.risk_models: Dict[RiskCategory, RiskModel] = {
            RiskCategory.EXECUTION: self.execution_risk,
            RiskCategory.MARKET: self.market_risk,
            RiskCategory.LIQUIDITY: self.liquidity_risk,
            RiskCategory.COMPETITION: self.competition_risk,
            RiskCategory.TECHNICAL: self.technical_risk,
            RiskCategory.SLIPPAGE: self.slippage_risk,
            RiskCategory.GAS: self.gas_risk,
            RiskCategory.TIMING: self.timing_risk,
        }

        self.history: Deque[RiskHistoryEntry] = deque(maxlen=self.config.history_size)

        self.stats = {
            "total_assessments": 0,
            "average_risk_score": 0.0,
            "high_risk_bundles": 0,
            "fallback_assessments": 0,
            "category_failures": 0
        }

    def assess(self, bundle: Bundle, market_conditions: Optional[MarketConditions] = None) -> RiskAssessment:
        """
        Assess the composite risk of a bundle.

        Args:
            bundle: Constructed bundle
            market_conditions: Current market snapshot; defaults apply when omitted

        Returns:
            Immutable risk assessment
        """
        conditions = market_conditions or MarketConditions()
        logger.debug(f"Assessing risk for bundle {bundle.bundle_id} ({bundle.size} txs)")

        category_risks: List[CategoryRisk] = []
        failed: List[RiskCategory] = []

        for category, weight in RISK_WEIGHTS.items():
            try:
                score = self._run_model(category, bundle, conditions)
            except CategoryModelError as e:
                logger.error(f"Bundle {bundle.bundle_id}: {e}")
                self.stats["category_failures"] += 1
                failed.append(category)
                score = FALLBACK_SCORE
            category_risks.append(CategoryRisk(category=category, score=score, weight=weight))

        if len(failed) == len(RISK_WEIGHTS):
            logger.warning(f"All risk models failed for bundle {bundle.bundle_id}, using fallback assessment")
            self.stats["fallback_assessments"] += 1
            return self.fallback_assessment(bundle)

        overall = min(max(sum(risk.weighted_score for risk in category_risks), 0.0), 10.0)
        level = categorize_risk_level(overall)
        confidence = self.calculate_confidence(bundle, conditions)
        scores = {risk.category: risk.score for risk in category_risks}

        assessment = RiskAssessment(
            bundle_id=bundle.bundle_id,
            transaction_count=bundle.size,
            category_risks=tuple(category_risks),
            overall_risk=overall,
            risk_level=level,
            confidence=confidence,
            recommendations=tuple(self.generate_recommendations(overall, confidence, scores)),
            mitigation_strategies=tuple(self.generate_mitigations(scores)),
            failed_categories=tuple(failed),
            assessed_at=self.clock()
        )

        self._record(assessment)
        logger.debug(
            f"Bundle {bundle.bundle_id} risk {overall:.2f} ({level.value}), confidence {confidence:.2f}"
        )
        return assessment

    def should_veto(self, assessment: RiskAssessment) -> bool:
        """Check whether an assessment vetoes the bundle."""
        return (assessment.overall_risk > self.config.max_acceptable_risk or
                assessment.risk_level == RiskLevel.EXTREME)

    def _run_model(self, category: RiskCategory, bundle: Bundle, conditions: MarketConditions) -> float:
        model = self.risk_models.get(category)
        if model is None:
            raise CategoryModelError(category.value, "no model registered")
        try:
            score = float(model(bundle, conditions))
        except Exception as e:
            raise CategoryModelError(category.value, str(e)) from e
        if math.isnan(score):
            raise CategoryModelError(category.value, "score is not a number")
        return min(max(score, 0.0), 10.0)

    # Category models

    def execution_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        """Transaction count, dependency complexity, venue reliability, gas estimation and congestion."""
        risk = min(bundle.size * 0.5, 5.0)
        risk += self._dependency_complexity(bundle)
        risk += self._venue_reliability(bundle)
        risk += self._gas_estimation_risk(bundle)
        risk += self.congestion_risk.get(conditions.network_congestion, 1.0)
        return min(risk, 10.0)

    def _dependency_complexity(self, bundle: Bundle) -> float:
        risk = 0.0
        venue_usage: Dict[str, int] = {}
        for op in bundle.opportunities:
            venue_usage[op.venue] = venue_usage.get(op.venue, 0) + 1
        for count in venue_usage.values():
            if count > 2:
                risk += (count - 2) * 0.5

        mints = set()
        for op in bundle.opportunities:
            mints |= op.mints()
        if len(mints) > 5:
            risk += 1.0

        return min(risk, 3.0)

    def _venue_reliability(self, bundle: Bundle) -> float:
        venues = {op.venue.lower() for op in bundle.opportunities}
        risk = sum(self.venue_reliability.get(venue, self.unknown_venue_reliability) for venue in venues)
        return min(risk, 3.0)

    def _gas_estimation_risk(self, bundle: Bundle) -> float:
        risk = 0.0
        ratio = self._gas_to_profit(bundle)
        if ratio > 0.5:
            risk += 2.0
        elif ratio > 0.3:
            risk += 1.0
        risk += self._complex_count(bundle) * 0.3
        return min(risk, 2.0)

    def market_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        """Token volatility, time-of-day exposure and correlated positions."""
        risk = self._volatility_risk(bundle, conditions)
        risk += self._market_timing_risk(bundle, conditions)
        risk += self._correlation_risk(bundle)
        return min(risk, 10.0)

    def _volatility_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        risk = 0.0
        for symbol in self._symbols(bundle):
            volatility = conditions.token_volatility.get(
                symbol, self.token_volatility.get(symbol, self.unknown_token_volatility)
            )
            if volatility > 0.2:
                risk += 2.0
            elif volatility > 0.1:
                risk += 1.0
            elif volatility > 0.05:
                risk += 0.5
        return min(risk, 4.0)

    def _market_timing_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        risk = self._time_sensitive_count(bundle) * 0.5
        hour = conditions.utc_hour
        if hour is None:
            hour = datetime.fromtimestamp(self.clock(), tz=timezone.utc).hour
        # Off-peak hours have thinner liquidity
        if hour < 6 or hour > 22:
            risk += 1.0
        return min(risk, 3.0)

    def _correlation_risk(self, bundle: Bundle) -> float:
        risk = 0.0
        for op in bundle.opportunities:
            tickers = [leg.ticker for leg in op.tokens]
            for i in range(len(tickers)):
                for j in range(i + 1, len(tickers)):
                    if frozenset({tickers[i], tickers[j]}) in self.correlated_pairs:
                        risk += 0.5
        return min(risk, 2.0)

    def liquidity_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        """Trade size, venue depth and thinly traded tokens."""
        risk = 0.0
        total_value = sum(op.value_usd for op in bundle.opportunities)
        if total_value > 1_000_000:
            risk += 3.0
        elif total_value > 500_000:
            risk += 2.0
        elif total_value > 100_000:
            risk += 1.0

        venue_volume: Dict[str, float] = {}
        for op in bundle.opportunities:
            venue = op.venue.lower()
            venue_volume[venue] = venue_volume.get(venue, 0.0) + op.value_usd
        depth_risk = 0.0
        for venue, volume in venue_volume.items():
            multiplier = 1.5 if volume > 100_000 else 1.0
            depth_risk += self.venue_liquidity.get(venue, self.unknown_venue_liquidity) * multiplier
        risk += min(depth_risk, 3.0)

        thin = sum(1.0 for symbol in self._symbols(bundle) if symbol in self.low_liquidity_tokens)
        risk += min(thin, 2.0)

        return min(risk, 10.0)

    def competition_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        """Bundle value, popular tokens and strategy crowding."""
        risk = 0.0
        net_profit = bundle.metrics.net_profit
        if net_profit > 0.1:
            risk += 2.0
        elif net_profit > 0.05:
            risk += 1.0

        popular_legs = sum(
            1 for op in bundle.opportunities for leg in op.tokens if leg.ticker in self.popular_tokens
        )
        risk += min(popular_legs * 0.3, 2.0)

        for strategy in {op.strategy for op in bundle.opportunities}:
            risk += self.strategy_competition.get(strategy, 1.0)

        return min(risk, 10.0)

    def slippage_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        risk = 0.0
        for op in bundle.opportunities:
            slippage = op.slippage or 0.01
            if slippage > 0.05:
                risk += 3.0
            elif slippage > 0.03:
                risk += 2.0
            elif slippage > 0.01:
                risk += 1.0
        if bundle.size > 5:
            risk *= 1.2
        return min(risk, 10.0)

    def gas_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        risk = 0.0
        ratio = self._gas_to_profit(bundle)
        if ratio > 0.5:
            risk += 3.0
        elif ratio > 0.3:
            risk += 2.0
        elif ratio > 0.1:
            risk += 1.0
        risk += self.congestion_risk.get(conditions.network_congestion, 1.0) * 0.5
        return min(risk, 10.0)

    def timing_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        risk = self._time_sensitive_count(bundle) * 1.0
        execution_ms = bundle.metrics.estimated_execution_time_ms
        if execution_ms > 30_000:
            risk += 2.0
        elif execution_ms > 15_000:
            risk += 1.0
        return min(risk, 10.0)

    def technical_risk(self, bundle: Bundle, conditions: MarketConditions) -> float:
        risk = 0.5  # Endpoint reliability baseline
        risk += self._complex_count(bundle) * 0.5
        if bundle.size > 8:
            risk += 1.0
        return min(risk, 10.0)

    # Helpers

    @staticmethod
    def _symbols(bundle: Bundle) -> set:
        return {leg.ticker for op in bundle.opportunities for leg in op.tokens}

    @staticmethod
    def _complex_count(bundle: Bundle) -> int:
        return sum(1 for op in bundle.opportunities if op.strategy in COMPLEX_STRATEGIES)

    @staticmethod
    def _time_sensitive_count(bundle: Bundle) -> int:
        return sum(1 for op in bundle.opportunities if op.strategy in TIME_SENSITIVE_STRATEGIES)

    @staticmethod
    def _gas_to_profit(bundle: Bundle) -> float:
        """Gas relative to net profit; unbounded when there is no net profit."""
        total_gas = bundle.metrics.total_gas
        if total_gas <= 0:
            return 0.0
        net_profit = bundle.metrics.net_profit
        if net_profit <= 0:
            return float('inf')
        return total_gas / net_profit

    def calculate_confidence(self, bundle: Bundle, conditions: MarketConditions) -> float:
        """Confidence in [0.3, 0.95] from history depth, data quality and complexity."""
        confidence = 0.8

        similar = sum(1 for entry in self.history if entry.bundle_size == bundle.size)
        if similar > 50:
            confidence += 0.1
        elif similar < 10:
            confidence -= 0.2

        if conditions.data_quality == DataQuality.HIGH:
            confidence += 0.1
        elif conditions.data_quality == DataQuality.LOW:
            confidence -= 0.2

        confidence -= self._complex_count(bundle) * 0.05

        return max(0.3, min(0.95, confidence))

    def generate_recommendations(
        self,
        overall_risk: float,
        confidence: float,
        scores: Dict[RiskCategory, float]
    ) -> List[Recommendation]:
        """Advisory recommendations for elevated risk."""
        recommendations = []

        if overall_risk > self.config.max_acceptable_risk:
            recommendations.append(Recommendation(
                type=RecommendationType.WARNING,
                message="Bundle risk exceeds acceptable threshold",
                action="Reduce bundle size or remove high-risk transactions"
            ))

        if scores.get(RiskCategory.EXECUTION, 0.0) > 7:
            recommendations.append(Recommendation(
                type=RecommendationType.OPTIMIZATION,
                message="High execution risk detected",
                action="Simplify transaction dependencies or reduce bundle complexity"
            ))

        if scores.get(RiskCategory.GAS, 0.0) > 6:
            recommendations.append(Recommendation(
                type=RecommendationType.COST,
                message="Gas costs may significantly impact profitability",
                action="Optimize transaction ordering or choose cheaper venues"
            ))

        if confidence < self.config.min_confidence_level:
            recommendations.append(Recommendation(
                type=RecommendationType.UNCERTAINTY,
                message="Low confidence in risk assessment",
                action="Gather more market data or reduce position sizes"
            ))

        return recommendations

    def generate_mitigations(self, scores: Dict[RiskCategory, float]) -> List[MitigationStrategy]:
        """Mitigation strategies for the categories that are elevated."""
        strategies = []

        if scores.get(RiskCategory.MARKET, 0.0) > 6:
            strategies.append(MitigationStrategy(
                risk=RiskCategory.MARKET,
                strategy="Implement stop-loss mechanisms and reduce position sizes",
                effectiveness=0.7
            ))

        if scores.get(RiskCategory.LIQUIDITY, 0.0) > 6:
            strategies.append(MitigationStrategy(
                risk=RiskCategory.LIQUIDITY,
                strategy="Split large orders across venues or time intervals",
                effectiveness=0.6
            ))

        if scores.get(RiskCategory.COMPETITION, 0.0) > 7:
            strategies.append(MitigationStrategy(
                risk=RiskCategory.COMPETITION,
                strategy="Raise priority fees and optimize transaction timing",
                effectiveness=0.5
            ))

        return strategies

    def fallback_assessment(self, bundle: Bundle) -> RiskAssessment:
        """Fixed moderate assessment used when no category model could run."""
        return RiskAssessment(
            bundle_id=bundle.bundle_id,
            transaction_count=bundle.size,
            category_risks=tuple(
                CategoryRisk(category=category, score=FALLBACK_SCORE, weight=weight)
                for category, weight in RISK_WEIGHTS.items()
            ),
            overall_risk=FALLBACK_SCORE,
            risk_level=RiskLevel.MODERATE,
            confidence=FALLBACK_CONFIDENCE,
            recommendations=(Recommendation(
                type=RecommendationType.WARNING,
                message="Using fallback risk assessment due to calculation error",
                action="Review bundle manually before execution"
            ),),
            is_fallback=True,
            failed_categories=tuple(RISK_WEIGHTS.keys()),
            assessed_at=self.clock()
        )

    def _record(self, assessment: RiskAssessment):
        self.history.append(RiskHistoryEntry(
            timestamp=assessment.assessed_at,
            bundle_size=assessment.transaction_count,
            overall_risk=assessment.overall_risk,
            risk_level=assessment.risk_level,
            confidence=assessment.confidence
        ))

        self.stats["total_assessments"] += 1
        total = self.stats["total_assessments"]
        current_avg = self.stats["average_risk_score"]
        self.stats["average_risk_score"] = (current_avg * (total - 1) + assessment.overall_risk) / total

        if assessment.risk_level in (RiskLevel.HIGH, RiskLevel.EXTREME):
            self.stats["high_risk_bundles"] += 1

    def get_risk_stats(self) -> Dict[str, Any]:
        """Get risk assessment statistics."""
        return {**self.stats, "historical_data_points": len(self.history)}
