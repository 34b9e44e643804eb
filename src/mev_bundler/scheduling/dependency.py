"""
Transaction dependency analysis.

Opportunities within a group are addressed by their integer position in the
group. The graph is an adjacency list keyed by that position, so orderings
are plain permutations of ``range(n)``.
"""
import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from mev_bundler.errors import DependencyCycleError
from mev_bundler.opportunities.models import Opportunity, TokenDirection

logger = logging.getLogger(__name__)


class DependencyKind:
    """Reasons an edge exists between two opportunities."""
    TOKEN_FLOW = "token_flow"
    LIQUIDITY = "liquidity"


@dataclass
class DependencyGraph:
    """Directed dependency graph; an edge a -> b means a must execute before b."""
    size: int
    successors: Dict[int, List[int]] = field(default_factory=dict)
    predecessors: Dict[int, List[int]] = field(default_factory=dict)
    edge_kinds: Dict[Tuple[int, int], str] = field(default_factory=dict)

    def __post_init__(self):
        for node in range(self.size):
            self.successors.setdefault(node, [])
            self.predecessors.setdefault(node, [])

    @classmethod
    def from_edges(cls, size: int, edges: Sequence[Tuple[int, int]]) -> "DependencyGraph":
        """Build a graph from explicit (before, after) pairs."""
        graph = cls(size=size)
        for before, after in edges:
            graph.add_edge(before, after)
        return graph

    def add_edge(self, before: int, after: int, kind: str = DependencyKind.TOKEN_FLOW):
        """Add an edge, ignoring duplicates and self-loops."""
        if before == after or (before, after) in self.edge_kinds:
            return
        if not (0 <= before < self.size and 0 <= after < self.size):
            raise ValueError(f"Edge ({before}, {after}) outside graph of size {self.size}")
        self.successors[before].append(after)
        self.predecessors[after].append(before)
        self.edge_kinds[(before, after)] = kind

    @property
    def edges(self) -> List[Tuple[int, int]]:
        """All edges as (before, after) pairs."""
        return list(self.edge_kinds.keys())

    @property
    def edge_count(self) -> int:
        return len(self.edge_kinds)

    def depends_on(self, node: int) -> List[int]:
        """Nodes that must execute before ``node``."""
        return list(self.predecessors.get(node, []))

    def to_dict(self) -> Dict[str, object]:
        """Serializable representation."""
        return {
            "size": self.size,
            "edges": [
                {"before": before, "after": after, "kind": kind}
                for (before, after), kind in self.edge_kinds.items()
            ]
        }


def has_token_flow(producer: Opportunity, consumer: Opportunity) -> bool:
    """Check whether ``producer`` outputs a mint that ``consumer`` takes as input."""
    produced = producer.mints_by_direction(TokenDirection.OUT)
    consumed = consumer.mints_by_direction(TokenDirection.IN)
    return not produced.isdisjoint(consumed)


def has_liquidity_coupling(first: Opportunity, second: Opportunity) -> bool:
    """Same venue and at least one shared mint implies shared pool state."""
    return first.venue == second.venue and first.shares_tokens_with(second)


def build_graph(opportunities: Sequence[Opportunity]) -> DependencyGraph:
    """
    Build the dependency graph over a group of opportunities.

    Token-flow edges always point from producer to consumer. Liquidity
    coupling (same venue, shared mint) is treated as a hard dependency that
    preserves group order.

    Args:
        opportunities: Group members; positions become node ids

    Returns:
        Dependency graph over ``range(len(opportunities))``
    """
    graph = DependencyGraph(size=len(opportunities))

    for i in range(len(opportunities)):
        for j in range(i + 1, len(opportunities)):
            first, second = opportunities[i], opportunities[j]
            forward = has_token_flow(first, second)
            backward = has_token_flow(second, first)

            if forward:
                graph.add_edge(i, j, DependencyKind.TOKEN_FLOW)
            if backward:
                graph.add_edge(j, i, DependencyKind.TOKEN_FLOW)
            if not forward and not backward and has_liquidity_coupling(first, second):
                graph.add_edge(i, j, DependencyKind.LIQUIDITY)

    logger.debug(f"Built dependency graph: {graph.size} nodes, {graph.edge_count} edges")
    return graph


def is_valid_order(order: Sequence[int], graph: DependencyGraph) -> bool:
    """Check that ``order`` is a permutation placing every dependency first."""
    if len(order) != graph.size or sorted(order) != list(range(graph.size)):
        return False

    position = {node: index for index, node in enumerate(order)}
    return all(position[before] < position[after] for before, after in graph.edges)


def find_cycle(graph: DependencyGraph) -> Optional[List[int]]:
    """Return one cycle as a node list (first node repeated at the end), or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node: WHITE for node in range(graph.size)}
    parent: Dict[int, int] = {}

    for root in range(graph.size):
        if color[root] != WHITE:
            continue
        stack = [(root, iter(graph.successors[root]))]
        color[root] = GREY
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if color[child] == WHITE:
                    color[child] = GREY
                    parent[child] = node
                    stack.append((child, iter(graph.successors[child])))
                    advanced = True
                    break
                if color[child] == GREY:
                    cycle = [child]
                    current = node
                    while current != child:
                        cycle.append(current)
                        current = parent[current]
                    cycle.append(child)
                    cycle.reverse()
                    return cycle
            if not advanced:
                color[node] = BLACK
                stack.pop()
    return None


def ensure_acyclic(graph: DependencyGraph):
    """Raise DependencyCycleError if the graph contains a cycle."""
    cycle = find_cycle(graph)
    if cycle is not None:
        raise DependencyCycleError(cycle)


def repair(order: Sequence[int], graph: DependencyGraph) -> List[int]:
    """
    Restore dependency validity with a stable topological sort.

    Among nodes whose dependencies are already placed, the one appearing
    earliest in ``order`` is emitted first, so an already-valid order is
    returned unchanged.

    Raises:
        DependencyCycleError: The graph is cyclic
        ValueError: ``order`` is not a permutation of the graph's nodes
    """
    if len(order) != graph.size or sorted(order) != list(range(graph.size)):
        raise ValueError(f"Order {list(order)} is not a permutation of {graph.size} nodes")

    rank = {node: index for index, node in enumerate(order)}
    remaining = {node: len(graph.predecessors[node]) for node in range(graph.size)}
    ready = [(rank[node], node) for node, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    result: List[int] = []
    while ready:
        _, node = heapq.heappop(ready)
        result.append(node)
        for child in graph.successors[node]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, (rank[child], child))

    if len(result) != graph.size:
        raise DependencyCycleError(find_cycle(graph) or [])

    return result
