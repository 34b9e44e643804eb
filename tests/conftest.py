"""Shared fixtures for bundle engine tests."""
from typing import Iterable, Optional, Tuple

import pytest

from mev_bundler.opportunities.models import Opportunity, TokenDirection, TokenLeg


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def build_opportunity(
    opportunity_id: str,
    strategy: str = "arbitrage",
    venue: str = "raydium",
    tokens: Optional[Iterable[Tuple[str, str]]] = None,
    profit: float = 0.03,
    gas_cost: float = 0.005,
    risk_score: float = 3.0,
    discovered_at: float = 1_000.0,
    **extra
) -> Opportunity:
    """Build an opportunity; tokens are (symbol, direction) pairs and the symbol doubles as the mint."""
    legs = [
        TokenLeg(mint=symbol, direction=TokenDirection(direction), symbol=symbol)
        for symbol, direction in (tokens or [("SOL", "in"), ("USDC", "out")])
    ]
    return Opportunity(
        opportunity_id=opportunity_id,
        strategy=strategy,
        venue=venue,
        tokens=legs,
        profit=profit,
        gas_cost=gas_cost,
        risk_score=risk_score,
        discovered_at=discovered_at,
        **extra
    )


@pytest.fixture
def clock():
    """Fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def make_opportunity():
    """Factory for test opportunities."""
    return build_opportunity
