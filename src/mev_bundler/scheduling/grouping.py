"""Grouping of related pending opportunities into candidate bundles."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from mev_bundler.opportunities.models import Opportunity, is_complementary
from .objective import safe_ratio

logger = logging.getLogger(__name__)


@dataclass
class GroupingConfig:
    """Configuration for grouping and group selection."""
    max_group_size: int = 10               # Hard cap on transactions per bundle
    min_group_profit: float = 0.05         # Minimum summed profit
    max_group_gas: float = 0.02            # Maximum summed gas cost
    risk_tolerance: float = 7.0            # Maximum average risk score
    same_venue_window_seconds: float = 10.0

    # Score weights
    profit_weight: float = 40.0
    risk_weight: float = 2.0
    gas_efficiency_weight: float = 20.0
    synergy_weight: float = 20.0


@dataclass
class OpportunityGroup:
    """A scored set of related opportunities."""
    opportunities: List[Opportunity]
    score: float = 0.0
    synergy: float = 0.0
    constraint_violations: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.opportunities)

    @property
    def total_profit(self) -> float:
        return sum(op.profit for op in self.opportunities)

    @property
    def total_gas(self) -> float:
        return sum(op.gas_cost for op in self.opportunities)

    @property
    def average_risk(self) -> float:
        if not self.opportunities:
            return 0.0
        return sum(op.risk_score for op in self.opportunities) / len(self.opportunities)

    @property
    def opportunity_ids(self) -> List[str]:
        return [op.opportunity_id for op in self.opportunities]

    @property
    def meets_requirements(self) -> bool:
        return not self.constraint_violations


class GroupingEngine:
    """
    Partitions the pending pool into candidate bundles and ranks them.

    Each unassigned opportunity seeds a group that absorbs every later
    unassigned opportunity related to it. Groups of one bring no bundling
    benefit and are left for standalone execution.
    """

    def __init__(self, config: GroupingConfig = None):
        self.config = config or GroupingConfig()

    def related(self, first: Opportunity, second: Opportunity) -> bool:
        """Check whether two opportunities belong in the same bundle."""
        if first.shares_tokens_with(second):
            return True

        if (first.venue == second.venue and
                abs(first.discovered_at - second.discovered_at) < self.config.same_venue_window_seconds):
            return True

        return is_complementary(first.strategy, second.strategy)

    def partition(self, pool: Sequence[Opportunity]) -> List[OpportunityGroup]:
        """Group related opportunities; only groups of two or more are returned."""
        groups: List[OpportunityGroup] = []
        assigned = set()

        for i, seed in enumerate(pool):
            if i in assigned:
                continue
            members = [seed]
            assigned.add(i)

            for j in range(i + 1, len(pool)):
                if j in assigned:
                    continue
                if self.related(seed, pool[j]):
                    members.append(pool[j])
                    assigned.add(j)

            if len(members) >= 2:
                groups.append(OpportunityGroup(opportunities=members))

        return groups

    def synergy(self, opportunities: Sequence[Opportunity]) -> float:
        """Synergy bonus in [0, 1] for strategy, token and venue mix."""
        bonus = len({op.strategy for op in opportunities}) * 0.1

        overlaps = 0
        for i in range(len(opportunities)):
            for j in range(i + 1, len(opportunities)):
                if opportunities[i].shares_tokens_with(opportunities[j]):
                    overlaps += 1
        bonus += overlaps * 0.2

        if len({op.venue for op in opportunities}) > 1:
            bonus += 0.3

        return min(bonus, 1.0)

    def score(self, group: OpportunityGroup) -> float:
        """Composite group score; higher is better."""
        total_profit = group.total_profit
        group.synergy = self.synergy(group.opportunities)

        score = total_profit * self.config.profit_weight
        score += (10 - group.average_risk) * self.config.risk_weight
        score += safe_ratio(total_profit, group.total_gas) * self.config.gas_efficiency_weight
        score += group.synergy * self.config.synergy_weight

        group.score = score
        return score

    def check_requirements(self, group: OpportunityGroup) -> List[str]:
        """Return the hard constraints this group violates."""
        violations = []
        if group.size > self.config.max_group_size:
            violations.append(f"size {group.size} exceeds {self.config.max_group_size}")
        if group.total_profit < self.config.min_group_profit:
            violations.append(f"profit {group.total_profit:.6f} below {self.config.min_group_profit}")
        if group.total_gas > self.config.max_group_gas:
            violations.append(f"gas {group.total_gas:.6f} above {self.config.max_group_gas}")
        if group.average_risk > self.config.risk_tolerance:
            violations.append(f"average risk {group.average_risk:.2f} above {self.config.risk_tolerance}")
        group.constraint_violations = violations
        return violations

    def rank_groups(self, pool: Sequence[Opportunity]) -> List[OpportunityGroup]:
        """Qualifying groups ordered by score, best first."""
        candidates = self.partition(pool)

        qualifying = []
        for group in candidates:
            self.score(group)
            violations = self.check_requirements(group)
            if violations:
                logger.debug(f"Group {group.opportunity_ids} rejected: {'; '.join(violations)}")
                continue
            qualifying.append(group)

        qualifying.sort(key=lambda g: g.score, reverse=True)
        logger.debug(f"Grouping: {len(candidates)} candidate groups, {len(qualifying)} qualifying")
        return qualifying

    def group_and_select(self, pool: Sequence[Opportunity]) -> Optional[OpportunityGroup]:
        """Best qualifying group, or None when there is nothing to bundle."""
        ranked = self.rank_groups(pool)
        return ranked[0] if ranked else None
