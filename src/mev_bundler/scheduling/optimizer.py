"""
Execution order optimization for bundle candidates.

Orders are permutations of group positions. Every candidate produced by the
search algorithms is passed through ``repair`` so only dependency-valid
orders are ever scored or returned.
"""
import logging
import math
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from mev_bundler.opportunities.models import Opportunity, STRATEGY_PRIORITY
from .dependency import DependencyGraph, build_graph, ensure_acyclic, repair
from .objective import order_score, transition_synergy

logger = logging.getLogger(__name__)


class OptimizationAlgorithm(str, Enum):
    """Search algorithm used for an optimization."""
    TRIVIAL = "trivial"
    GREEDY = "greedy"
    GENETIC = "genetic"
    SIMULATED_ANNEALING = "simulated_annealing"


@dataclass
class OptimizerConfig:
    """Configuration for order optimization."""
    greedy_max_size: int = 5                 # Groups up to this size use greedy
    genetic_max_size: int = 12               # Groups up to this size use the genetic search
    optimization_passes: int = 3             # Heuristic refinement passes
    perturbations_per_pass: int = 10         # Random swaps tried per refinement pass

    # Genetic algorithm
    ga_population_size: int = 30
    ga_generations: int = 50
    ga_mutation_rate: float = 0.1
    ga_elitism_ratio: float = 0.1
    ga_tournament_size: int = 3

    # Simulated annealing
    sa_initial_temperature: float = 1000.0
    sa_cooling_rate: float = 0.95
    sa_max_iterations: int = 500
    sa_min_temperature: float = 0.001

    @classmethod
    def from_settings(cls, settings) -> "OptimizerConfig":
        """Build optimizer configuration from application settings."""
        return cls(
            optimization_passes=settings.optimization_passes,
            ga_population_size=settings.ga_population_size,
            ga_generations=settings.ga_generations,
            ga_mutation_rate=settings.ga_mutation_rate,
            ga_elitism_ratio=settings.ga_elitism_ratio,
            ga_tournament_size=settings.ga_tournament_size,
            sa_initial_temperature=settings.sa_initial_temperature,
            sa_cooling_rate=settings.sa_cooling_rate,
            sa_max_iterations=settings.sa_max_iterations
        )


@dataclass
class OptimizationResult:
    """Result of optimizing one group's execution order."""
    order: List[int]
    opportunities: List[Opportunity]
    original_score: float
    optimized_score: float
    algorithm: OptimizationAlgorithm
    optimization_time_ms: float
    graph: Optional[DependencyGraph] = None
    candidates_evaluated: int = 0

    @property
    def improvement_percent(self) -> float:
        """Score improvement over the input order as a percentage."""
        if self.original_score == 0:
            return 0.0
        return (self.optimized_score - self.original_score) / abs(self.original_score) * 100


Order = List[int]


class _Scorer:
    """Memoized order scoring for one group."""

    def __init__(self, opportunities: Sequence[Opportunity]):
        self.opportunities = opportunities
        self._cache: Dict[Tuple[int, ...], float] = {}

    def __call__(self, order: Sequence[int]) -> float:
        key = tuple(order)
        if key not in self._cache:
            self._cache[key] = order_score([self.opportunities[i] for i in key])
        return self._cache[key]

    @property
    def evaluations(self) -> int:
        return len(self._cache)


class OrderOptimizer:
    """
    Finds a dependency-valid execution order maximizing ``order_score``.

    The algorithm is chosen by group size: greedy for small groups, a genetic
    search for medium groups and simulated annealing for large ones. A few
    passes of deterministic heuristics and random perturbations follow.
    """

    def __init__(self, config: OptimizerConfig = None, rng: random.Random = None):
        """
        Initialize the optimizer.

        Args:
            config: Optimizer configuration
            rng: Random source for the stochastic searches; seed it for reproducibility
        """
        self.config = config or OptimizerConfig()
        self.rng = rng or random.Random()

        self.stats = {
            "optimizations_run": 0,
            "greedy_runs": 0,
            "genetic_runs": 0,
            "annealing_runs": 0,
            "total_time_ms": 0.0,
            "total_improvement_percent": 0.0
        }

    def select_algorithm(self, size: int) -> OptimizationAlgorithm:
        """Choose the search algorithm for a group of the given size."""
        if size <= 1:
            return OptimizationAlgorithm.TRIVIAL
        if size <= self.config.greedy_max_size:
            return OptimizationAlgorithm.GREEDY
        if size <= self.config.genetic_max_size:
            return OptimizationAlgorithm.GENETIC
        return OptimizationAlgorithm.SIMULATED_ANNEALING

    def optimize(
        self,
        opportunities: Sequence[Opportunity],
        graph: Optional[DependencyGraph] = None
    ) -> OptimizationResult:
        """
        Optimize the execution order of a group.

        Args:
            opportunities: Group members in their input order
            graph: Dependency graph over the group; built when omitted

        Returns:
            Optimization result with a dependency-valid order

        Raises:
            DependencyCycleError: The group's dependencies are cyclic
        """
        start_time = time.time()
        opportunities = list(opportunities)
        size = len(opportunities)

        if graph is None:
            graph = build_graph(opportunities)
        ensure_acyclic(graph)

        scorer = _Scorer(opportunities)
        input_order = list(range(size))
        baseline = repair(input_order, graph)
        original_score = scorer(input_order)

        algorithm = self.select_algorithm(size)
        if algorithm == OptimizationAlgorithm.GREEDY:
            candidate = self.greedy(opportunities, graph)
        elif algorithm == OptimizationAlgorithm.GENETIC:
            candidate = self.genetic(opportunities, graph, scorer)
        elif algorithm == OptimizationAlgorithm.SIMULATED_ANNEALING:
            candidate = self.simulated_annealing(opportunities, graph, scorer)
        else:
            candidate = baseline

        # The repaired input order is always a candidate
        if scorer(baseline) > scorer(candidate):
            candidate = baseline

        if size > 1:
            candidate = self.refine(candidate, opportunities, graph, scorer)

        elapsed_ms = (time.time() - start_time) * 1000
        result = OptimizationResult(
            order=candidate,
            opportunities=[opportunities[i] for i in candidate],
            original_score=original_score,
            optimized_score=scorer(candidate),
            algorithm=algorithm,
            optimization_time_ms=elapsed_ms,
            graph=graph,
            candidates_evaluated=scorer.evaluations
        )

        self._update_stats(result)
        logger.debug(
            f"Optimized {size} transactions with {algorithm.value}: "
            f"{result.original_score:.4f} -> {result.optimized_score:.4f} "
            f"({result.improvement_percent:.1f}%) in {elapsed_ms:.1f}ms"
        )
        return result

    # Search algorithms

    def greedy(self, opportunities: Sequence[Opportunity], graph: DependencyGraph) -> Order:
        """Repeatedly place the ready transaction with the best gas efficiency plus synergy."""
        placed: List[int] = []
        placed_set = set()

        while len(placed) < len(opportunities):
            previous = opportunities[placed[-1]] if placed else None
            best_node = None
            best_value = -math.inf

            for node in range(len(opportunities)):
                if node in placed_set:
                    continue
                if any(dep not in placed_set for dep in graph.predecessors[node]):
                    continue
                candidate = opportunities[node]
                value = candidate.gas_efficiency() + transition_synergy(previous, candidate)
                if best_node is None or value > best_value:
                    best_node = node
                    best_value = value

            if best_node is None:
                # Cyclic graph
                break
            placed.append(best_node)
            placed_set.add(best_node)

        return placed

    def genetic(
        self,
        opportunities: Sequence[Opportunity],
        graph: DependencyGraph,
        scorer: Optional[Callable[[Sequence[int]], float]] = None
    ) -> Order:
        """Genetic search with order crossover, swap mutation and elitism."""
        scorer = scorer or _Scorer(opportunities)
        population = self._initial_population(opportunities, graph)
        best = max(population, key=scorer)

        elite_count = max(1, int(self.config.ga_population_size * self.config.ga_elitism_ratio))

        for _ in range(self.config.ga_generations):
            ranked = sorted(population, key=scorer, reverse=True)
            if scorer(ranked[0]) > scorer(best):
                best = ranked[0]

            next_generation = [list(order) for order in ranked[:elite_count]]
            while len(next_generation) < self.config.ga_population_size:
                first = self._tournament(population, scorer)
                second = self._tournament(population, scorer)
                child = self._order_crossover(first, second)
                if self.rng.random() < self.config.ga_mutation_rate:
                    self._swap_mutation(child)
                next_generation.append(repair(child, graph))

            population = next_generation

        final_best = max(population, key=scorer)
        if scorer(final_best) > scorer(best):
            best = final_best
        return list(best)

    def simulated_annealing(
        self,
        opportunities: Sequence[Opportunity],
        graph: DependencyGraph,
        scorer: Optional[Callable[[Sequence[int]], float]] = None
    ) -> Order:
        """Simulated annealing over repaired random-swap neighbors."""
        scorer = scorer or _Scorer(opportunities)
        current = repair(list(range(len(opportunities))), graph)
        current_score = scorer(current)
        best, best_score = current, current_score
        temperature = self.config.sa_initial_temperature

        for _ in range(self.config.sa_max_iterations):
            if temperature < self.config.sa_min_temperature:
                break

            neighbor = list(current)
            self._swap_mutation(neighbor)
            neighbor = repair(neighbor, graph)
            neighbor_score = scorer(neighbor)

            delta = neighbor_score - current_score
            if delta > 0 or self.rng.random() < math.exp(delta / temperature):
                current, current_score = neighbor, neighbor_score
                if current_score > best_score:
                    best, best_score = current, current_score

            temperature *= self.config.sa_cooling_rate

        return best

    def refine(
        self,
        order: Order,
        opportunities: Sequence[Opportunity],
        graph: DependencyGraph,
        scorer: Optional[Callable[[Sequence[int]], float]] = None
    ) -> Order:
        """Try the ordering heuristics and random perturbations, keeping any improvement."""
        scorer = scorer or _Scorer(opportunities)
        incumbent = list(order)
        incumbent_score = scorer(incumbent)

        for _ in range(self.config.optimization_passes):
            candidates = [repair(heuristic, graph) for heuristic in self.heuristic_orders(opportunities)]
            for _ in range(self.config.perturbations_per_pass):
                perturbed = list(incumbent)
                self._swap_mutation(perturbed)
                candidates.append(repair(perturbed, graph))

            for candidate in candidates:
                candidate_score = scorer(candidate)
                if candidate_score > incumbent_score:
                    incumbent, incumbent_score = candidate, candidate_score

        return incumbent

    @staticmethod
    def heuristic_orders(opportunities: Sequence[Opportunity]) -> List[Order]:
        """Deterministic candidate orders (not yet repaired)."""
        positions = range(len(opportunities))
        return [
            sorted(positions, key=lambda i: -opportunities[i].profit),
            sorted(positions, key=lambda i: opportunities[i].risk_score),
            sorted(positions, key=lambda i: STRATEGY_PRIORITY.get(opportunities[i].strategy, 99)),
            sorted(positions, key=lambda i: -opportunities[i].gas_efficiency()),
        ]

    # Genetic operators

    def _initial_population(self, opportunities: Sequence[Opportunity], graph: DependencyGraph) -> List[Order]:
        size = len(opportunities)
        seeds = [list(range(size))] + self.heuristic_orders(opportunities)[:2]
        population = [repair(seed, graph) for seed in seeds]

        while len(population) < self.config.ga_population_size:
            shuffled = list(range(size))
            self.rng.shuffle(shuffled)
            population.append(repair(shuffled, graph))

        return population[:self.config.ga_population_size]

    def _tournament(self, population: Sequence[Order], scorer: Callable[[Sequence[int]], float]) -> Order:
        contestants = [
            population[self.rng.randrange(len(population))]
            for _ in range(self.config.ga_tournament_size)
        ]
        return max(contestants, key=scorer)

    def _order_crossover(self, first: Order, second: Order) -> Order:
        """Copy a contiguous slice of ``first`` and fill the rest in ``second``'s relative order."""
        size = len(first)
        start = self.rng.randrange(size)
        end = self.rng.randrange(start, size)

        child: List[Optional[int]] = [None] * size
        child[start:end + 1] = first[start:end + 1]
        inherited = set(first[start:end + 1])

        remainder = iter(node for node in second if node not in inherited)
        for position in range(size):
            if child[position] is None:
                child[position] = next(remainder)
        return child

    def _swap_mutation(self, order: Order):
        if len(order) < 2:
            return
        i, j = self.rng.sample(range(len(order)), 2)
        order[i], order[j] = order[j], order[i]

    def _update_stats(self, result: OptimizationResult):
        self.stats["optimizations_run"] += 1
        self.stats["total_time_ms"] += result.optimization_time_ms
        self.stats["total_improvement_percent"] += result.improvement_percent
        counter = {
            OptimizationAlgorithm.GREEDY: "greedy_runs",
            OptimizationAlgorithm.GENETIC: "genetic_runs",
            OptimizationAlgorithm.SIMULATED_ANNEALING: "annealing_runs"
        }.get(result.algorithm)
        if counter:
            self.stats[counter] += 1

    def get_stats(self) -> Dict[str, float]:
        """Get optimizer statistics."""
        runs = self.stats["optimizations_run"]
        return {
            **self.stats,
            "average_time_ms": self.stats["total_time_ms"] / runs if runs else 0.0,
            "average_improvement_percent": self.stats["total_improvement_percent"] / runs if runs else 0.0
        }
