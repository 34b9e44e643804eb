"""Unit tests for opportunity grouping and group ranking."""
import pytest

from mev_bundler.scheduling.grouping import GroupingConfig, GroupingEngine, OpportunityGroup


class TestRelatedness:
    """Test the pairwise relatedness rules."""

    @pytest.fixture
    def engine(self):
        return GroupingEngine()

    def test_shared_mint(self, engine, make_opportunity):
        """Test that sharing a mint relates opportunities."""
        first = make_opportunity("a", strategy="swap", venue="raydium", tokens=[("SOL", "in"), ("USDC", "out")])
        second = make_opportunity("b", strategy="swap", venue="orca", tokens=[("USDC", "in"), ("RAY", "out")],
                                  discovered_at=2_000.0)
        assert engine.related(first, second)

    def test_same_venue_within_window(self, engine, make_opportunity):
        """Test the same-venue discovery window."""
        first = make_opportunity("a", strategy="swap", venue="orca", tokens=[("SOL", "in"), ("USDC", "out")])
        near = make_opportunity("b", strategy="swap", venue="orca", tokens=[("BONK", "in"), ("RAY", "out")],
                                discovered_at=1_009.0)
        far = make_opportunity("c", strategy="swap", venue="orca", tokens=[("BONK", "in"), ("RAY", "out")],
                               discovered_at=1_010.0)

        assert engine.related(first, near)
        assert not engine.related(first, far)

    def test_complementary_strategies(self, engine, make_opportunity):
        """Test that complementary strategies relate across venues and tokens."""
        arbitrage = make_opportunity("a", strategy="arbitrage", venue="raydium",
                                     tokens=[("SOL", "in"), ("USDC", "out")])
        sandwich = make_opportunity("b", strategy="sandwich", venue="orca",
                                    tokens=[("BONK", "in"), ("RAY", "out")], discovered_at=5_000.0)
        assert engine.related(arbitrage, sandwich)

    def test_unrelated(self, engine, make_opportunity):
        """Test that nothing in common means unrelated."""
        first = make_opportunity("a", strategy="swap", venue="raydium", tokens=[("SOL", "in"), ("USDC", "out")])
        second = make_opportunity("b", strategy="arbitrage", venue="orca", tokens=[("BONK", "in"), ("RAY", "out")])
        assert not engine.related(first, second)


class TestPartition:
    """Test seed-anchored partitioning."""

    def test_seed_anchored_groups(self, make_opportunity):
        """Test that only opportunities related to the seed join its group."""
        engine = GroupingEngine()
        a = make_opportunity("a", strategy="swap", venue="v1", tokens=[("X", "in"), ("W", "out")])
        b = make_opportunity("b", strategy="swap", venue="v2", tokens=[("X", "in"), ("Y", "out")])
        c = make_opportunity("c", strategy="swap", venue="v3", tokens=[("Y", "in"), ("Z", "out")],
                             discovered_at=1_100.0)

        groups = engine.partition([a, b, c])

        assert len(groups) == 1
        assert groups[0].opportunity_ids == ["a", "b"]

    def test_singletons_dropped(self, make_opportunity):
        """Test that groups of one are not candidates."""
        engine = GroupingEngine()
        a = make_opportunity("a", strategy="swap", venue="v1", tokens=[("X", "in"), ("W", "out")])
        b = make_opportunity("b", strategy="swap", venue="v2", tokens=[("Y", "in"), ("Z", "out")])

        assert engine.partition([a, b]) == []
        assert engine.partition([]) == []


class TestScoring:
    """Test synergy and group score."""

    def test_synergy(self, make_opportunity):
        """Test synergy bonus components."""
        engine = GroupingEngine()
        first = make_opportunity("a", venue="raydium", tokens=[("SOL", "in"), ("USDC", "out")])
        second = make_opportunity("b", venue="orca", tokens=[("USDC", "in"), ("RAY", "out")])

        # One strategy, one overlapping pair, two venues
        assert engine.synergy([first, second]) == pytest.approx(0.6)

    def test_synergy_capped(self, make_opportunity):
        """Test that synergy never exceeds 1.0."""
        engine = GroupingEngine()
        opportunities = [
            make_opportunity(f"op{i}", venue="raydium", tokens=[("SOL", "in"), ("USDC", "out")])
            for i in range(4)
        ]
        assert engine.synergy(opportunities) == 1.0

    def test_group_score(self, make_opportunity):
        """Test the composite group score."""
        engine = GroupingEngine()
        group = OpportunityGroup(opportunities=[
            make_opportunity("a", venue="raydium", tokens=[("SOL", "in"), ("USDC", "out")],
                             profit=0.03, gas_cost=0.005, risk_score=3.0),
            make_opportunity("b", venue="orca", tokens=[("USDC", "in"), ("RAY", "out")],
                             profit=0.04, gas_cost=0.005, risk_score=5.0),
        ])

        score = engine.score(group)

        # 40*0.07 + 2*(10-4) + 20*(0.07/0.01) + 20*0.6
        assert score == pytest.approx(166.8)
        assert group.score == score
        assert group.synergy == pytest.approx(0.6)

    def test_zero_gas_scores_without_error(self, make_opportunity):
        """Test that a gasless group scores with a zero efficiency term."""
        engine = GroupingEngine()
        group = OpportunityGroup(opportunities=[
            make_opportunity("a", venue="raydium", profit=0.03, gas_cost=0.0, risk_score=0.0),
            make_opportunity("b", venue="raydium", profit=0.03, gas_cost=0.0, risk_score=0.0),
        ])

        # 40*0.06 + 2*10 + 0 + 20*(0.1 + 0.2)
        assert engine.score(group) == pytest.approx(28.4)


class TestSelection:
    """Test constraint filtering and ranking."""

    def test_filters(self, make_opportunity):
        """Test each hard constraint."""
        engine = GroupingEngine(GroupingConfig(max_group_size=2))

        def pair(profit=0.04, gas_cost=0.005, risk_score=3.0):
            return OpportunityGroup(opportunities=[
                make_opportunity("a", profit=profit, gas_cost=gas_cost, risk_score=risk_score),
                make_opportunity("b", profit=profit, gas_cost=gas_cost, risk_score=risk_score),
            ])

        assert engine.check_requirements(pair()) == []
        assert engine.check_requirements(pair(profit=0.02))
        assert engine.check_requirements(pair(gas_cost=0.011))
        assert engine.check_requirements(pair(risk_score=7.5))

        oversized = OpportunityGroup(opportunities=[make_opportunity(f"op{i}") for i in range(3)])
        violations = engine.check_requirements(oversized)
        assert any("size" in violation for violation in violations)
        assert not oversized.meets_requirements

    def test_rank_groups_by_score(self, make_opportunity):
        """Test that qualifying groups are ranked best first."""
        engine = GroupingEngine()
        pool = [
            make_opportunity("a1", strategy="swap", venue="v1", tokens=[("X", "in"), ("Y", "out")], profit=0.03),
            make_opportunity("b1", strategy="swap", venue="v2", tokens=[("P", "in"), ("Q", "out")], profit=0.05),
            make_opportunity("a2", strategy="swap", venue="v3", tokens=[("Y", "in"), ("Z", "out")], profit=0.03),
            make_opportunity("b2", strategy="swap", venue="v4", tokens=[("Q", "in"), ("R", "out")], profit=0.05),
        ]

        ranked = engine.rank_groups(pool)

        assert [group.opportunity_ids for group in ranked] == [["b1", "b2"], ["a1", "a2"]]
        assert engine.group_and_select(pool).opportunity_ids == ["b1", "b2"]

    def test_nothing_to_bundle(self, make_opportunity):
        """Test that no qualifying group yields None."""
        engine = GroupingEngine()
        low_profit = [
            make_opportunity("a", profit=0.01),
            make_opportunity("b", profit=0.01),
        ]

        assert engine.group_and_select(low_profit) is None
        assert engine.group_and_select([]) is None
