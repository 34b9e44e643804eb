"""
Risk Assessment Module.

Multi-category bundle risk scoring with weighted aggregation, confidence
estimation, recommendations and mitigation strategies.
"""
from .assessor import (
    AssessorConfig,
    BundleRiskAssessor
)
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
    RiskLevel,
    categorize_risk_level
)

__all__ = [
    # Assessor
    "AssessorConfig",
    "BundleRiskAssessor",

    # Models
    "RISK_WEIGHTS",
    "CategoryRisk",
    "DataQuality",
    "MarketConditions",
    "MitigationStrategy",
    "NetworkCongestion",
    "Recommendation",
    "RecommendationType",
    "RiskAssessment",
    "RiskCategory",
    "RiskLevel",
    "categorize_risk_level"
]
