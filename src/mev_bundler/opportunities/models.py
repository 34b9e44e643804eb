"""
Opportunity Data Models.

Defines the normalized representation of candidate MEV opportunities emitted
by external detectors and consumed by the bundle construction engine.
"""
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field


class StrategyKind(str, Enum):
    """Strategy that produced an opportunity."""
    ARBITRAGE = "arbitrage"         # Cross-venue price difference
    SANDWICH = "sandwich"           # Front-run and back-run around a victim
    LIQUIDATION = "liquidation"     # Undercollateralized position liquidation
    FLASH_LOAN = "flash_loan"       # Same-transaction borrowed capital
    SWAP = "swap"                   # Plain token swap


class TokenDirection(str, Enum):
    """Direction of a token leg relative to the transaction."""
    IN = "in"       # Consumed by the transaction
    OUT = "out"     # Produced by the transaction


# Execution priority used by the strategy-priority ordering heuristic
STRATEGY_PRIORITY: Dict[StrategyKind, int] = {
    StrategyKind.FLASH_LOAN: 1,
    StrategyKind.ARBITRAGE: 2,
    StrategyKind.SANDWICH: 3,
    StrategyKind.LIQUIDATION: 4,
    StrategyKind.SWAP: 5,
}

# Strategy pairs that benefit from being bundled together
COMPLEMENTARY_STRATEGIES: Set[frozenset] = {
    frozenset({StrategyKind.ARBITRAGE, StrategyKind.SANDWICH}),
    frozenset({StrategyKind.LIQUIDATION, StrategyKind.FLASH_LOAN}),
}

# Strategies that carry complex execution (borrowed capital, external positions)
COMPLEX_STRATEGIES: Set[StrategyKind] = {StrategyKind.FLASH_LOAN, StrategyKind.LIQUIDATION}

# Strategies whose profit disappears if execution is delayed
TIME_SENSITIVE_STRATEGIES: Set[StrategyKind] = {StrategyKind.SANDWICH, StrategyKind.ARBITRAGE}


class TokenLeg(BaseModel):
    """One input or output token amount referenced by a transaction."""

    mint: str = Field(..., min_length=1, description="Token mint address")
    direction: TokenDirection = Field(..., description="Whether the token is consumed or produced")
    amount: float = Field(default=0.0, ge=0, description="Token amount in native token units")
    symbol: Optional[str] = Field(None, description="Ticker symbol used for market lookups")

    @property
    def ticker(self) -> str:
        """Symbol used for market data lookups, falling back to the mint."""
        return self.symbol or self.mint


class Opportunity(BaseModel):
    """Candidate profitable action prior to bundling."""

    opportunity_id: str = Field(..., min_length=1, description="Unique opportunity identifier")
    strategy: StrategyKind = Field(..., description="Strategy kind of the opportunity")
    venue: str = Field(..., min_length=1, description="DEX or lending protocol instance")
    tokens: List[TokenLeg] = Field(..., min_length=1, description="Ordered token legs")

    # Economics
    profit: float = Field(..., ge=0, description="Estimated profit in native units")
    gas_cost: float = Field(..., ge=0, description="Estimated gas/fee cost in native units")
    risk_score: float = Field(..., ge=0, le=10, description="Detector risk score (0-10)")
    slippage: float = Field(default=0.0, ge=0, description="Estimated slippage fraction")
    value_usd: float = Field(default=0.0, ge=0, description="Notional trade size in USD")

    # Timing
    discovered_at: float = Field(default_factory=time.time, description="When the opportunity was discovered")

    # Metadata
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional detector data")

    model_config = {"frozen": True}

    def gas_efficiency(self) -> float:
        """Calculate profit to gas ratio."""
        if self.gas_cost == 0:
            return float('inf')
        return self.profit / self.gas_cost

    def mints(self) -> Set[str]:
        """All token mints touched by this opportunity."""
        return {leg.mint for leg in self.tokens}

    def mints_by_direction(self, direction: TokenDirection) -> Set[str]:
        """Token mints touched in the given direction."""
        return {leg.mint for leg in self.tokens if leg.direction == direction}

    def shares_tokens_with(self, other: "Opportunity") -> bool:
        """Check whether both opportunities touch at least one common mint."""
        return not self.mints().isdisjoint(other.mints())

    def age(self, now: Optional[float] = None) -> float:
        """Seconds elapsed since discovery."""
        current = time.time() if now is None else now
        return max(0.0, current - self.discovered_at)

    def is_expired(self, ttl_seconds: float, now: Optional[float] = None) -> bool:
        """Check if the opportunity is older than the pool TTL."""
        return self.age(now) >= ttl_seconds


def is_complementary(first: StrategyKind, second: StrategyKind) -> bool:
    """Check whether two strategies form a complementary pairing."""
    return frozenset({first, second}) in COMPLEMENTARY_STRATEGIES
