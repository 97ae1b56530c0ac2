"""
ICU Step Graph - validated, immutable dependency graph over steps.

Pure Python, no external dependencies.
"""
from __future__ import annotations

import logging
from collections import deque
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .errors import CycleError, DuplicateStepError, UnknownDependencyError, UnknownStepError
from .steps import Step, as_step_list

logger = logging.getLogger(__name__)


class StepGraph:
    """
    A validated set of steps.

    Construction fails with ``DuplicateStepError``, ``UnknownDependencyError``
    or ``CycleError``; a constructed graph is never mutated.
    """

    def __init__(self, steps: Iterable[Step]):
        step_list = as_step_list(steps)

        ordered: Dict[str, Step] = {}
        for step in step_list:
            if step.name in ordered:
                raise DuplicateStepError(step.name)
            ordered[step.name] = step

        for step in step_list:
            for dep in step.depends_on:
                if dep not in ordered:
                    raise UnknownDependencyError(step.name, dep)

        cycle = _find_cycle(ordered)
        if cycle:
            raise CycleError(cycle)

        dependents: Dict[str, List[str]] = {name: [] for name in ordered}
        for step in step_list:
            for dep in dict.fromkeys(step.depends_on):
                dependents[dep].append(step.name)

        self._steps: Mapping[str, Step] = MappingProxyType(ordered)
        self._dependents: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {name: tuple(children) for name, children in dependents.items()}
        )
        logger.debug(f"Validated step graph with {len(ordered)} steps")

    @property
    def steps(self) -> Mapping[str, Step]:
        return self._steps

    @property
    def names(self) -> List[str]:
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def get(self, name: str) -> Step:
        try:
            return self._steps[name]
        except KeyError:
            raise UnknownStepError(name) from None

    def roots(self) -> List[str]:
        """Steps with no dependencies."""
        return [name for name, step in self._steps.items() if not step.depends_on]

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self.get(name).depends_on

    def dependents(self, name: str) -> Tuple[str, ...]:
        """Steps that declare ``name`` as a direct dependency."""
        self.get(name)
        return self._dependents[name]

    def descendants(self, name: str) -> List[str]:
        """Every step that transitively depends on ``name``, in BFS order."""
        self.get(name)
        seen: Set[str] = set()
        order: List[str] = []
        queue = deque(self._dependents[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            order.append(current)
            queue.extend(self._dependents[current])
        return order

    def topological_order(self) -> List[str]:
        """Kahn's algorithm, ties broken by registration order."""
        position = {name: i for i, name in enumerate(self._steps)}
        indegree = {name: len(set(step.depends_on)) for name, step in self._steps.items()}
        ready = sorted((n for n, d in indegree.items() if d == 0), key=position.__getitem__)
        order: List[str] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            released = []
            for child in self._dependents[current]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    released.append(child)
            if released:
                ready = sorted(ready + released, key=position.__getitem__)
        return order


def _find_cycle(steps: Mapping[str, Step]) -> List[str]:
    """
    Return one dependency cycle as a closed path (``[a, b, a]``), or ``[]``.

    Iterative DFS over dependency edges with an explicit on-stack set, so deep
    chains do not hit the recursion limit.
    """
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    for root in steps:
        if root in visited:
            continue
        path: List[str] = [root]
        iterators = [iter(steps[root].depends_on)]
        on_stack.add(root)
        visited.add(root)

        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                iterators.pop()
                on_stack.discard(path.pop())
                continue
            if dep in on_stack:
                start = path.index(dep)
                # path follows dependency edges; report it in execution order
                cycle = path[start:] + [dep]
                return list(reversed(cycle))
            if dep in visited:
                continue
            visited.add(dep)
            on_stack.add(dep)
            path.append(dep)
            iterators.append(iter(steps[dep].depends_on))

    return []
