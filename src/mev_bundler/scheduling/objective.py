"""Shared ordering objective used by every optimization algorithm."""
from typing import Optional, Sequence

from mev_bundler.opportunities.models import Opportunity

HIGH_RISK_THRESHOLD = 7.0
RISK_CLUSTER_PENALTY = 5.0
GAS_EFFICIENCY_WEIGHT = 10.0

SAME_VENUE_BONUS = 1.0
SHARED_TOKEN_BONUS = 2.0


def safe_ratio(numerator: float, denominator: float) -> float:
    """Ratio that scores zero instead of failing on a zero denominator."""
    return numerator / denominator if denominator > 0 else 0.0


def transition_synergy(previous: Optional[Opportunity], current: Opportunity) -> float:
    """Bonus for executing ``current`` directly after ``previous``."""
    if previous is None:
        return 0.0
    bonus = 0.0
    if previous.venue == current.venue:
        bonus += SAME_VENUE_BONUS
    if previous.shares_tokens_with(current):
        bonus += SHARED_TOKEN_BONUS
    return bonus


def order_score(order: Sequence[Opportunity]) -> float:
    """
    Score an execution order; higher is better.

    Rewards front-loaded profit, penalizes adjacent high-risk transactions
    and adds a gas efficiency term that is order independent.
    """
    if not order:
        return 0.0

    score = 0.0
    cumulative_profit = 0.0
    for index, opportunity in enumerate(order):
        cumulative_profit += opportunity.profit
        score += cumulative_profit / (index + 1)

    for current, following in zip(order, order[1:]):
        if current.risk_score > HIGH_RISK_THRESHOLD and following.risk_score > HIGH_RISK_THRESHOLD:
            score -= RISK_CLUSTER_PENALTY

    total_profit = sum(op.profit for op in order)
    total_gas = sum(op.gas_cost for op in order)
    score += safe_ratio(total_profit, total_gas) * GAS_EFFICIENCY_WEIGHT

    return score
