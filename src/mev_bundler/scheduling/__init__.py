"""
Bundle scheduling.

Groups related opportunities, analyzes their transaction dependencies and
searches for the most profitable dependency-valid execution order.
"""
from .dependency import (
    DependencyGraph,
    DependencyKind,
    build_graph,
    ensure_acyclic,
    find_cycle,
    is_valid_order,
    repair
)
from .grouping import (
    GroupingConfig,
    GroupingEngine,
    OpportunityGroup
)
from .objective import order_score
from .optimizer import (
    OptimizationAlgorithm,
    OptimizationResult,
    OptimizerConfig,
    OrderOptimizer
)

__all__ = [
    # Dependency analysis
    "DependencyGraph",
    "DependencyKind",
    "build_graph",
    "ensure_acyclic",
    "find_cycle",
    "is_valid_order",
    "repair",

    # Grouping
    "GroupingConfig",
    "GroupingEngine",
    "OpportunityGroup",

    # Ordering
    "order_score",
    "OptimizationAlgorithm",
    "OptimizationResult",
    "OptimizerConfig",
    "OrderOptimizer"
]
