"""
Dependency graph helpers over WorkflowTask / ScheduledTask collections.

Everything iterates tasks in task_id order so that results do not depend on
the order of the input list.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Protocol, Sequence, Set, Tuple


class _HasDependencies(Protocol):
    task_id: str
    depends_on: Tuple[str, ...]


def dependency_map(tasks: Iterable[_HasDependencies]) -> Dict[str, Tuple[str, ...]]:
    return {t.task_id: tuple(t.depends_on) for t in tasks}


def find_unknown_dependencies(tasks: Iterable[_HasDependencies]) -> List[Tuple[str, str]]:
    """(task_id, missing dependency) pairs, sorted."""
    graph = dependency_map(tasks)
    missing = [
        (task_id, dep)
        for task_id, deps in graph.items()
        for dep in deps
        if dep not in graph
    ]
    return sorted(missing)


def find_cycles(tasks: Iterable[_HasDependencies]) -> List[Tuple[str, ...]]:
    """
    Dependency cycles, each as the ordered task IDs along the cycle.

    Iterative DFS; every distinct set of cycle members is reported once.
    """
    graph = dependency_map(tasks)
    state: Dict[str, int] = {}  # 1 = on current path, 2 = done
    cycles: List[Tuple[str, ...]] = []
    seen: Set[frozenset] = set()

    for root in sorted(graph):
        if state.get(root):
            continue
        path: List[str] = [root]
        position = {root: 0}
        state[root] = 1
        stack = [iter(sorted(d for d in graph[root] if d in graph))]

        while stack:
            node = path[-1]
            dep = next(stack[-1], None)
            if dep is None:
                state[node] = 2
                stack.pop()
                path.pop()
                del position[node]
                continue
            if state.get(dep) == 1:
                cycle = tuple(path[position[dep]:])
                key = frozenset(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif not state.get(dep):
                state[dep] = 1
                position[dep] = len(path)
                path.append(dep)
                stack.append(iter(sorted(d for d in graph[dep] if d in graph)))

    return cycles


def dependency_depth(tasks: Sequence[_HasDependencies]) -> Dict[str, int]:
    """
    Length of the longest dependency chain ending at each task (roots = 1).

    Only meaningful for acyclic graphs; tasks on a cycle are left out.
    """
    graph = dependency_map(tasks)
    depth: Dict[str, int] = {}
    remaining = {t: {d for d in deps if d in graph} for t, deps in graph.items()}

    ready = sorted(t for t, deps in remaining.items() if not deps)
    dependents: Dict[str, List[str]] = {t: [] for t in graph}
    for task_id, deps in remaining.items():
        for dep in deps:
            dependents[dep].append(task_id)

    while ready:
        task_id = ready.pop(0)
        deps = [d for d in graph[task_id] if d in depth]
        depth[task_id] = 1 + max((depth[d] for d in deps), default=0)
        for child in sorted(dependents[task_id]):
            remaining[child].discard(task_id)
            if not remaining[child] and child not in depth and child not in ready:
                ready.append(child)

    return depth
