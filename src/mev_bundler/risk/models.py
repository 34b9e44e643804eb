"""Risk assessment data models."""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class RiskCategory(str, Enum):
    """Independent dimensions of bundle risk."""
    EXECUTION = "execution"
    MARKET = "market"
    LIQUIDITY = "liquidity"
    COMPETITION = "competition"
    TECHNICAL = "technical"
    SLIPPAGE = "slippage"
    GAS = "gas"
    TIMING = "timing"


# Category weights; they sum to 1.0
RISK_WEIGHTS: Dict[RiskCategory, float] = {
    RiskCategory.EXECUTION: 0.25,
    RiskCategory.MARKET: 0.20,
    RiskCategory.LIQUIDITY: 0.15,
    RiskCategory.COMPETITION: 0.15,
    RiskCategory.TECHNICAL: 0.10,
    RiskCategory.SLIPPAGE: 0.10,
    RiskCategory.GAS: 0.03,
    RiskCategory.TIMING: 0.02,
}


class RiskLevel(str, Enum):
    """Risk levels for categorization."""
    LOW = "LOW"             # <= 2.5
    MODERATE = "MODERATE"   # <= 5.0
    HIGH = "HIGH"           # <= 7.5
    EXTREME = "EXTREME"     # > 7.5


class RecommendationType(str, Enum):
    """Kinds of advisory recommendation."""
    WARNING = "WARNING"
    OPTIMIZATION = "OPTIMIZATION"
    COST = "COST"
    UNCERTAINTY = "UNCERTAINTY"


class NetworkCongestion(str, Enum):
    """Observed network congestion."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EXTREME = "extreme"


class DataQuality(str, Enum):
    """Quality of the market data behind an assessment."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class MarketConditions(BaseModel):
    """Market snapshot supplied to the risk assessor."""

    network_congestion: NetworkCongestion = Field(
        default=NetworkCongestion.NORMAL, description="Current network congestion"
    )
    data_quality: DataQuality = Field(
        default=DataQuality.NORMAL, description="Quality of the available market data"
    )
    utc_hour: Optional[int] = Field(
        None, ge=0, le=23, description="UTC hour used for timing risk; defaults to the clock"
    )
    token_volatility: Dict[str, float] = Field(
        default_factory=dict, description="Per-symbol volatility overrides"
    )


@dataclass(frozen=True)
class CategoryRisk:
    """Score for a single risk category."""
    category: RiskCategory
    score: float
    weight: float

    @property
    def weighted_score(self) -> float:
        return self.score * self.weight


@dataclass(frozen=True)
class Recommendation:
    """Advisory produced alongside an assessment."""
    type: RecommendationType
    message: str
    action: str


@dataclass(frozen=True)
class MitigationStrategy:
    """Suggested mitigation for an elevated risk category."""
    risk: RiskCategory
    strategy: str
    effectiveness: float


@dataclass(frozen=True)
class RiskAssessment:
    """Immutable composite risk assessment of one bundle."""
    bundle_id: str
    transaction_count: int
    category_risks: Tuple[CategoryRisk, ...]
    overall_risk: float
    risk_level: RiskLevel
    confidence: float
    recommendations: Tuple[Recommendation, ...] = ()
    mitigation_strategies: Tuple[MitigationStrategy, ...] = ()
    is_fallback: bool = False
    failed_categories: Tuple[RiskCategory, ...] = ()
    assessed_at: float = field(default_factory=time.time)

    def score_for(self, category: RiskCategory) -> float:
        """Score of one category; 0 when it was not assessed."""
        for risk in self.category_risks:
            if risk.category == category:
                return risk.score
        return 0.0

    def to_dict(self) -> Dict[str, object]:
        """Serializable representation."""
        return {
            "bundle_id": self.bundle_id,
            "transaction_count": self.transaction_count,
            "category_scores": {risk.category.value: risk.score for risk in self.category_risks},
            "overall_risk": self.overall_risk,
            "risk_level": self.risk_level.value,
            "confidence": self.confidence,
            "recommendations": [
                {"type": rec.type.value, "message": rec.message, "action": rec.action}
                for rec in self.recommendations
            ],
            "mitigation_strategies": [
                {"risk": m.risk.value, "strategy": m.strategy, "effectiveness": m.effectiveness}
                for m in self.mitigation_strategies
            ],
            "is_fallback": self.is_fallback,
            "failed_categories": [category.value for category in self.failed_categories],
            "assessed_at": self.assessed_at
        }


@dataclass(frozen=True)
class RiskHistoryEntry:
    """Compact record kept for confidence estimation."""
    timestamp: float
    bundle_size: int
    overall_risk: float
    risk_level: RiskLevel
    confidence: float


def categorize_risk_level(score: float) -> RiskLevel:
    """Map a composite score onto a risk level."""
    if score <= 2.5:
        return RiskLevel.LOW
    if score <= 5.0:
        return RiskLevel.MODERATE
    if score <= 7.5:
        return RiskLevel.HIGH
    return RiskLevel.EXTREME
