"""Order graph nodes so every dependency precedes its dependents."""

import networkx as nx
from typing import Dict, Hashable, List, Union
from .dependency_graph import DeploymentGraph
from ..utils.errors import CycleError
from ..utils.logging import get_logger

logger = get_logger("graph.planner")

_WHITE, _GREY, _BLACK = 0, 1, 2


def topological_order(graph: Union[DeploymentGraph, nx.DiGraph]) -> List[Hashable]:
    """
    Depth-first topological sort with cycle detection.

    Nodes are visited in ``rank`` order (declaration order), and each node's
    predecessors are emitted before it, so independent nodes keep their
    declaration order and identical input always yields an identical order.

    Args:
        graph: DeploymentGraph, or any DiGraph whose edges point
            predecessor -> successor and whose nodes carry a ``rank`` attribute

    Returns:
        Node ids such that for every edge (a, b), a precedes b

    Raises:
        CycleError: Listing every node on the first cycle found
    """
    g = graph.graph if isinstance(graph, DeploymentGraph) else graph

    def rank(node: Hashable):
        return g.nodes[node].get("rank", 0)

    color: Dict[Hashable, int] = {node: _WHITE for node in g.nodes}
    path: List[Hashable] = []
    order: List[Hashable] = []

    def visit(node: Hashable) -> None:
        color[node] = _GREY
        path.append(node)
        for pred in sorted(g.predecessors(node), key=rank):
            if color[pred] == _GREY:
                # Path runs dependent -> dependency; reverse it to list the cycle in apply order.
                cycle = path[path.index(pred):]
                cycle.reverse()
                raise CycleError([str(n) for n in cycle])
            if color[pred] == _WHITE:
                visit(pred)
        path.pop()
        color[node] = _BLACK
        order.append(node)

    for node in sorted(g.nodes, key=rank):
        if color[node] == _WHITE:
            visit(node)

    logger.debug(f"Topological order: {order}")
    return order
