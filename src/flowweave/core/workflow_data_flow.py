"""Execution ordering for workflow graphs.

Dependencies are given as ``(source, target)`` pairs: an edge ``A -> B``
means B depends on A. Ordering is deterministic; ties are broken by the
position of each node in the declared node list.
"""

import heapq
from collections.abc import Iterable


class CycleError(Exception):
    """Raised when circular dependency is detected in workflow."""

    def __init__(self, nodes: list[str]):
        self.nodes = nodes
        super().__init__(f"Circular dependency detected involving nodes: {', '.join(nodes)}")


def _adjacency(node_ids: list[str], edges: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    known = set(node_ids)
    graph: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for source, target in edges:
        # Edges touching nodes outside this layer are not ordering constraints here
        if source in known and target in known and target not in graph[source]:
            graph[source].append(target)
    return graph


def build_execution_order(node_ids: list[str], edges: Iterable[tuple[str, str]]) -> list[str]:
    """Build the execution order of nodes using topological sort.

    Args:
        node_ids: Node ids in declaration order
        edges: Dependency edges as (source, target) pairs

    Returns:
        List of node ids in execution order

    Raises:
        CycleError: If circular dependency is detected
    """
    graph = _adjacency(node_ids, edges)
    position = {node_id: index for index, node_id in enumerate(node_ids)}
    in_degree: dict[str, int] = dict.fromkeys(node_ids, 0)
    for targets in graph.values():
        for target in targets:
            in_degree[target] += 1

    # Kahn's algorithm with a declaration-order priority queue
    queue = [(position[n], n) for n in node_ids if in_degree[n] == 0]
    heapq.heapify(queue)
    order: list[str] = []

    while queue:
        _, node = heapq.heappop(queue)
        order.append(node)
        for neighbor in graph[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                heapq.heappush(queue, (position[neighbor], neighbor))

    if len(order) != len(node_ids):
        cycles = find_cycles(node_ids, [(s, t) for s, targets in graph.items() for t in targets])
        involved = cycles[0] if cycles else [n for n in node_ids if n not in set(order)]
        raise CycleError(involved)

    return order


def find_cycles(node_ids: list[str], edges: Iterable[tuple[str, str]]) -> list[list[str]]:
    """Return every cycle as a strongly connected component.

    Components are listed in declaration order of their first member, and the
    members of each component are in declaration order too. Self-loops count
    as a cycle of one.
    """
    graph = _adjacency(node_ids, edges)
    position = {node_id: index for index, node_id in enumerate(node_ids)}

    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    for root in node_ids:
        if root in index_of:
            continue
        # Iterative Tarjan: each frame is (node, iterator over its neighbors)
        work = [(root, iter(graph[root]))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, neighbors = work[-1]
            advanced = False
            for neighbor in neighbors:
                if neighbor not in index_of:
                    index_of[neighbor] = lowlink[neighbor] = counter
                    counter += 1
                    stack.append(neighbor)
                    on_stack.add(neighbor)
                    work.append((neighbor, iter(graph[neighbor])))
                    advanced = True
                    break
                if neighbor in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[neighbor])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

            if lowlink[node] == index_of[node]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                if len(component) > 1 or node in graph[node]:
                    components.append(sorted(component, key=position.__getitem__))

    components.sort(key=lambda c: position[c[0]])
    return components
