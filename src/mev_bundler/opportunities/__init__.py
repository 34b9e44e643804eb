"""
Opportunity intake.

Normalized opportunity models and the bounded pending pool that buffers
detector output between construction cycles.
"""
from .models import (
    Opportunity,
    TokenLeg,
    TokenDirection,
    StrategyKind,
    STRATEGY_PRIORITY,
    is_complementary
)
from .pool import (
    OpportunityPool,
    PoolEvent,
    REQUIRED_FIELDS,
    parse_opportunity
)

__all__ = [
    # Models
    "Opportunity",
    "TokenLeg",
    "TokenDirection",
    "StrategyKind",
    "STRATEGY_PRIORITY",
    "is_complementary",

    # Pool
    "OpportunityPool",
    "PoolEvent",
    "REQUIRED_FIELDS",
    "parse_opportunity"
]
