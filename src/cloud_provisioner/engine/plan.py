"""Provisioning plans — dependency-ordered resource steps."""

from __future__ import annotations

import heapq
from collections.abc import Collection, Iterable, Iterator

from cloud_provisioner.config.models import PlanConfig
from cloud_provisioner.engine.steps import ResourceStep
from cloud_provisioner.errors import CyclicDependency, PlanError
from cloud_provisioner.resources.ids import is_resource_group


def _find_cycle(remaining: dict[str, ResourceStep]) -> list[str]:
    """Walk dependency edges inside *remaining* until a step repeats.

    Every step left over after Kahn's algorithm has at least one dependency
    that is also left over, so the walk always closes a loop.
    """
    path: list[str] = []
    seen: dict[str, int] = {}
    current = next(iter(remaining))
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = next(d for d in remaining[current].depends_on if d in remaining)
    return path[seen[current] :]


def topological_order(steps: list[ResourceStep]) -> list[ResourceStep]:
    """Kahn's algorithm; ties between ready steps go to declaration order."""
    index = {s.step_id: i for i, s in enumerate(steps)}
    pending = {s.step_id: len(s.depends_on) for s in steps}
    dependents: dict[str, list[str]] = {s.step_id: [] for s in steps}
    for step in steps:
        for dep in step.depends_on:
            dependents[dep].append(step.step_id)

    ready = [index[sid] for sid, count in pending.items() if count == 0]
    heapq.heapify(ready)
    ordered: list[ResourceStep] = []
    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for child in dependents[step.step_id]:
            pending[child] -= 1
            if pending[child] == 0:
                heapq.heappush(ready, index[child])

    if len(ordered) != len(steps):
        done = {s.step_id for s in ordered}
        remaining = {s.step_id: s for s in steps if s.step_id not in done}
        raise CyclicDependency(_find_cycle(remaining))
    return ordered


class ProvisioningPlan:
    """Immutable, dependency-respecting sequence of :class:`ResourceStep`.

    A step never precedes any step it depends on. Construction fails with
    :class:`CyclicDependency` before anything can execute when the graph has
    a cycle, and with :class:`PlanError` for duplicate IDs or dependencies on
    undeclared steps.
    """

    def __init__(self, steps: Iterable[ResourceStep], *, plan_id: str = "plan") -> None:
        declared = list(steps)
        if not declared:
            msg = "A plan needs at least one step"
            raise PlanError(msg)

        by_id: dict[str, ResourceStep] = {}
        for step in declared:
            if step.step_id in by_id:
                msg = f"Duplicate step_id '{step.step_id}'"
                raise PlanError(msg)
            by_id[step.step_id] = step

        for step in declared:
            unknown = [d for d in step.depends_on if d not in by_id]
            if unknown:
                msg = (
                    f"Step '{step.step_id}' depends on undeclared step(s): "
                    f"{', '.join(unknown)}"
                )
                raise PlanError(msg)

        self.plan_id = plan_id
        self._by_id = by_id
        self._steps = tuple(topological_order(declared))
        self._index = {s.step_id: i for i, s in enumerate(self._steps)}

    @classmethod
    def from_config(cls, config: PlanConfig) -> ProvisioningPlan:
        """Build a plan, filling in ``config.location`` where it applies.

        Only top-level resources (no parent, or a resource-group parent) get
        the plan location; child resources inherit theirs remotely.
        """
        kinds = {s.step_id: s.kind for s in config.steps}
        steps: list[ResourceStep] = []
        for step_config in config.steps:
            step = ResourceStep.from_config(step_config)
            parent_kind = kinds.get(step.parent) if step.parent else None
            top_level = parent_kind is None or is_resource_group(parent_kind)
            if (
                config.location
                and step.creates_resource
                and top_level
                and "location" not in step.payload
            ):
                step.payload["location"] = config.location
            steps.append(step)
        return cls(steps, plan_id=config.plan_id)

    @property
    def steps(self) -> tuple[ResourceStep, ...]:
        return self._steps

    def __iter__(self) -> Iterator[ResourceStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, step_id: str) -> ResourceStep:
        return self._by_id[step_id]

    def index_of(self, step_id: str) -> int:
        return self._index[step_id]

    def reverse(self, completed: Collection[str] | None = None) -> list[ResourceStep]:
        """Teardown order: forward order reversed, restricted to steps that
        created something.

        *completed* defaults to every step whose result slot is populated.
        Reads, deletes and steps marked ``delete_on_teardown=False`` are never
        part of the reverse plan.
        """
        if completed is None:
            completed = {s.step_id for s in self._steps if s.result is not None}
        return [
            s
            for s in reversed(self._steps)
            if s.step_id in completed and s.creates_resource and s.delete_on_teardown
        ]
