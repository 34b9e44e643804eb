"""
Unit tests for execution order optimization.

Every algorithm must return a dependency-valid order whose score is at
least that of the repaired input order.
"""
import random

import pytest

from mev_bundler.errors import DependencyCycleError
from mev_bundler.scheduling.dependency import DependencyGraph, build_graph, is_valid_order, repair
from mev_bundler.scheduling.objective import order_score, safe_ratio
from mev_bundler.scheduling.optimizer import OptimizationAlgorithm, OptimizerConfig, OrderOptimizer


@pytest.fixture
def fast_config():
    """Small search budgets for quick tests."""
    return OptimizerConfig(ga_generations=10, ga_population_size=12, sa_max_iterations=150)


def chain_group(make_opportunity, size):
    """Group where every fourth opportunity feeds the next one through a shared mint."""
    opportunities = []
    for i in range(size):
        if i % 4 == 1:
            tokens = [(f"T{i - 1}", "in"), (f"T{i}", "out")]
        else:
            tokens = [(f"S{i}", "in"), (f"T{i}", "out")]
        opportunities.append(make_opportunity(
            f"op{i}",
            strategy=["arbitrage", "sandwich", "swap", "flash_loan"][i % 4],
            venue=f"venue{i}",
            tokens=tokens,
            profit=0.01 + (i * 7 % 5) * 0.01,
            gas_cost=0.001 + (i % 3) * 0.001,
            risk_score=float((i * 3) % 10)
        ))
    # Place consumers before their producers so the input order needs repair
    opportunities.reverse()
    return opportunities


class TestOrderScore:
    """Test the ordering objective."""

    def test_single(self, make_opportunity):
        """Test score of a single transaction."""
        opportunity = make_opportunity("a", profit=1.0, gas_cost=1.0, risk_score=0.0)
        assert order_score([opportunity]) == pytest.approx(1.0 + 10.0)

    def test_front_loaded_profit(self, make_opportunity):
        """Test that earlier profit scores higher."""
        big = make_opportunity("big", profit=2.0, gas_cost=1.0, risk_score=0.0)
        small = make_opportunity("small", profit=1.0, gas_cost=1.0, risk_score=0.0)

        # 2/1 + 3/2 + 10*1.5
        assert order_score([big, small]) == pytest.approx(18.5)
        assert order_score([big, small]) > order_score([small, big])

    def test_adjacent_high_risk_penalty(self, make_opportunity):
        """Test the penalty for consecutive high-risk transactions."""
        safe = make_opportunity("safe", profit=1.0, gas_cost=1.0, risk_score=2.0)
        risky = make_opportunity("risky", profit=1.0, gas_cost=1.0, risk_score=8.0)
        risky_too = make_opportunity("risky2", profit=1.0, gas_cost=1.0, risk_score=9.0)

        clustered = order_score([safe, risky, risky_too])
        spread = order_score([risky, safe, risky_too])

        assert clustered == pytest.approx(spread - 5.0)

    def test_zero_gas(self, make_opportunity):
        """Test that zero total gas contributes nothing instead of failing."""
        opportunity = make_opportunity("a", profit=1.0, gas_cost=0.0)
        assert order_score([opportunity]) == pytest.approx(1.0)
        assert safe_ratio(1.0, 0.0) == 0.0

    def test_empty(self):
        assert order_score([]) == 0.0


class TestAlgorithmSelection:
    """Test algorithm choice by group size."""

    @pytest.mark.parametrize("size,expected", [
        (1, OptimizationAlgorithm.TRIVIAL),
        (2, OptimizationAlgorithm.GREEDY),
        (5, OptimizationAlgorithm.GREEDY),
        (6, OptimizationAlgorithm.GENETIC),
        (12, OptimizationAlgorithm.GENETIC),
        (13, OptimizationAlgorithm.SIMULATED_ANNEALING),
    ])
    def test_select_algorithm(self, size, expected):
        assert OrderOptimizer().select_algorithm(size) == expected


class TestDependencyRepairScenario:
    """Consumer listed before its producer must be reordered by every algorithm."""

    @pytest.fixture
    def group(self, make_opportunity):
        consumer = make_opportunity("b", venue="orca", tokens=[("USDC", "in"), ("RAY", "out")],
                                    profit=0.09, gas_cost=0.001)
        producer = make_opportunity("a", venue="raydium", tokens=[("SOL", "in"), ("USDC", "out")],
                                    profit=0.01, gas_cost=0.005)
        return [consumer, producer]

    def test_greedy(self, group, fast_config):
        optimizer = OrderOptimizer(fast_config, random.Random(1))
        assert optimizer.greedy(group, build_graph(group)) == [1, 0]

    def test_genetic(self, group, fast_config):
        optimizer = OrderOptimizer(fast_config, random.Random(1))
        assert optimizer.genetic(group, build_graph(group)) == [1, 0]

    def test_simulated_annealing(self, group, fast_config):
        optimizer = OrderOptimizer(fast_config, random.Random(1))
        assert optimizer.simulated_annealing(group, build_graph(group)) == [1, 0]

    def test_optimize(self, group, fast_config):
        result = OrderOptimizer(fast_config, random.Random(1)).optimize(group)

        assert result.order == [1, 0]
        assert [op.opportunity_id for op in result.opportunities] == ["a", "b"]
        assert result.algorithm == OptimizationAlgorithm.GREEDY


class TestOrderOptimizer:
    """Test optimization results."""

    @pytest.mark.parametrize("size", [4, 8, 15])
    def test_result_valid_and_not_worse(self, make_opportunity, fast_config, size):
        """Test validity and the input-order lower bound for every algorithm size."""
        group = chain_group(make_opportunity, size)
        graph = build_graph(group)
        optimizer = OrderOptimizer(fast_config, random.Random(42))

        result = optimizer.optimize(group, graph)
        baseline = repair(list(range(size)), graph)

        assert is_valid_order(result.order, graph)
        assert result.optimized_score >= order_score([group[i] for i in baseline]) - 1e-9
        assert result.optimized_score == pytest.approx(order_score(result.opportunities))
        assert result.candidates_evaluated > 0

    def test_greedy_prefers_gas_efficiency(self, make_opportunity):
        """Test greedy selection among independent transactions."""
        group = [
            make_opportunity("low", venue="v1", tokens=[("A", "in"), ("B", "out")], profit=0.02, gas_cost=0.01),
            make_opportunity("high", venue="v2", tokens=[("C", "in"), ("D", "out")], profit=0.10, gas_cost=0.01),
            make_opportunity("mid", venue="v3", tokens=[("E", "in"), ("F", "out")], profit=0.05, gas_cost=0.01),
        ]
        optimizer = OrderOptimizer()

        assert optimizer.greedy(group, build_graph(group)) == [1, 2, 0]

    def test_greedy_tie_goes_to_earliest(self, make_opportunity):
        """Test that equal values keep group order."""
        group = [
            make_opportunity("first", venue="v1", tokens=[("A", "in"), ("B", "out")]),
            make_opportunity("second", venue="v2", tokens=[("C", "in"), ("D", "out")]),
        ]
        assert OrderOptimizer().greedy(group, build_graph(group)) == [0, 1]

    def test_seeded_runs_are_reproducible(self, make_opportunity, fast_config):
        """Test that the same seed produces the same order."""
        group = chain_group(make_opportunity, 9)

        first = OrderOptimizer(fast_config, random.Random(7)).optimize(group)
        second = OrderOptimizer(fast_config, random.Random(7)).optimize(group)

        assert first.order == second.order
        assert first.algorithm == OptimizationAlgorithm.GENETIC

    def test_cyclic_group_rejected(self, make_opportunity):
        """Test that a cyclic group raises before optimization."""
        group = [
            make_opportunity("a", tokens=[("SOL", "in"), ("USDC", "out")]),
            make_opportunity("b", venue="orca", tokens=[("USDC", "in"), ("SOL", "out")]),
        ]

        with pytest.raises(DependencyCycleError):
            OrderOptimizer().optimize(group)

    def test_explicit_graph_respected(self, make_opportunity, fast_config):
        """Test that edges supplied by the caller constrain the result."""
        group = [
            make_opportunity(f"op{i}", venue=f"v{i}", tokens=[(f"A{i}", "in"), (f"B{i}", "out")],
                             profit=0.01 * (i + 1))
            for i in range(4)
        ]
        graph = DependencyGraph.from_edges(4, [(0, 3), (1, 2)])

        result = OrderOptimizer(fast_config, random.Random(3)).optimize(group, graph)

        assert is_valid_order(result.order, graph)

    def test_single_opportunity(self, make_opportunity):
        """Test the trivial case."""
        result = OrderOptimizer().optimize([make_opportunity("only")])

        assert result.order == [0]
        assert result.algorithm == OptimizationAlgorithm.TRIVIAL
        assert result.improvement_percent == 0.0

    def test_stats(self, make_opportunity, fast_config):
        """Test optimizer statistics."""
        optimizer = OrderOptimizer(fast_config, random.Random(5))
        optimizer.optimize(chain_group(make_opportunity, 3))
        optimizer.optimize(chain_group(make_opportunity, 7))

        stats = optimizer.get_stats()

        assert stats["optimizations_run"] == 2
        assert stats["greedy_runs"] == 1
        assert stats["genetic_runs"] == 1
        assert stats["average_time_ms"] >= 0
