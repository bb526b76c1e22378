"""Unit tests for plan ordering, cycle detection and the reverse plan."""

from __future__ import annotations

import pytest

from cloud_provisioner.config.models import Action, PlanConfig, StepConfig
from cloud_provisioner.engine.plan import ProvisioningPlan, topological_order
from cloud_provisioner.engine.steps import ResourceStep
from cloud_provisioner.errors import CyclicDependency, PlanError


def _step(step_id: str, **kwargs) -> ResourceStep:
    kwargs.setdefault("kind", "Microsoft.Test/things")
    return ResourceStep(step_id=step_id, name=step_id, **kwargs)


def _ids(steps) -> list[str]:
    return [s.step_id for s in steps]


class TestOrdering:
    def test_dependencies_come_first(self):
        plan = ProvisioningPlan(
            [
                _step("q", parent="ns"),
                _step("ns", parent="rg"),
                _step("rg"),
            ]
        )
        assert _ids(plan) == ["rg", "ns", "q"]

    def test_independent_steps_keep_declaration_order(self):
        plan = ProvisioningPlan([_step("a"), _step("b"), _step("c")])
        assert _ids(plan) == ["a", "b", "c"]

    def test_ties_broken_by_declaration_index(self):
        plan = ProvisioningPlan(
            [_step("a", depends_on=("c",)), _step("b"), _step("c")]
        )
        assert _ids(plan) == ["b", "c", "a"]

    def test_every_step_after_its_dependencies(self):
        steps = [
            _step("server_key", parent="server", depends_on=("key",)),
            _step("key", parent="vault"),
            _step("vault", parent="rg"),
            _step("server", parent="rg"),
            _step("rg"),
        ]
        plan = ProvisioningPlan(steps)
        for step in plan:
            for dep in step.depends_on:
                assert plan.index_of(dep) < plan.index_of(step.step_id)

    def test_references_are_dependencies(self):
        step = _step("b", payload={"properties": {"target": {"$ref": "a.id"}}})
        assert step.depends_on == ("a",)
        plan = ProvisioningPlan([step, _step("a")])
        assert _ids(plan) == ["a", "b"]

    def test_dependency_union_is_deduplicated(self):
        step = _step(
            "c",
            parent="a",
            depends_on=("b", "a"),
            payload={"x": {"$ref": "b.id"}, "y": {"$ref": "d.name"}},
        )
        assert step.depends_on == ("b", "a", "d")

    def test_lookup_by_step_id(self):
        plan = ProvisioningPlan([_step("a"), _step("b")], plan_id="demo")
        assert plan["b"].step_id == "b"
        assert len(plan) == 2
        assert plan.plan_id == "demo"
        assert _ids(plan.steps) == ["a", "b"]


class TestValidation:
    def test_two_step_cycle(self):
        with pytest.raises(CyclicDependency) as exc_info:
            ProvisioningPlan(
                [_step("a", depends_on=("b",)), _step("b", depends_on=("a",))]
            )
        assert set(exc_info.value.step_ids) == {"a", "b"}

    def test_cycle_reported_without_unrelated_steps(self):
        with pytest.raises(CyclicDependency) as exc_info:
            ProvisioningPlan(
                [
                    _step("root"),
                    _step("x", depends_on=("root", "z")),
                    _step("y", depends_on=("x",)),
                    _step("z", depends_on=("y",)),
                ]
            )
        assert set(exc_info.value.step_ids) == {"x", "y", "z"}

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CyclicDependency, match="a"):
            topological_order([_step("a", depends_on=("a",))])

    def test_unknown_dependency(self):
        with pytest.raises(PlanError, match="undeclared"):
            ProvisioningPlan([_step("a", parent="missing")])

    def test_duplicate_step_ids(self):
        with pytest.raises(PlanError, match="Duplicate"):
            ProvisioningPlan([_step("a"), _step("a")])

    def test_empty_plan(self):
        with pytest.raises(PlanError):
            ProvisioningPlan([])


class TestReverse:
    def _plan(self) -> ProvisioningPlan:
        return ProvisioningPlan(
            [
                _step("rg"),
                _step("ns", parent="rg"),
                _step("q", parent="ns"),
                _step("lookup", action=Action.READ, parent="ns"),
                _step("shared", delete_on_teardown=False),
            ]
        )

    def test_reverse_of_fully_completed_plan(self):
        plan = self._plan()
        completed = _ids(plan)
        assert _ids(plan.reverse(completed)) == ["q", "ns", "rg"]

    def test_reverse_only_covers_completed_steps(self):
        plan = self._plan()
        assert _ids(plan.reverse(["rg"])) == ["rg"]

    def test_reverse_defaults_to_populated_results(self):
        plan = self._plan()
        assert plan.reverse() == []


class TestFromConfig:
    def _config(self, **kwargs) -> PlanConfig:
        return PlanConfig(
            plan_id="demo",
            steps=[
                StepConfig(
                    step_id="rg", kind="Microsoft.Resources/resourceGroups", name="rg"
                ),
                StepConfig(
                    step_id="ns",
                    kind="Microsoft.ServiceBus/namespaces",
                    name="ns",
                    parent="rg",
                ),
                StepConfig(
                    step_id="q",
                    kind="Microsoft.ServiceBus/namespaces/queues",
                    name="q",
                    parent="ns",
                ),
                StepConfig(
                    step_id="vault",
                    kind="Microsoft.KeyVault/vaults",
                    name="v",
                    parent="rg",
                    payload={"location": "northeurope"},
                ),
            ],
            **kwargs,
        )

    def test_location_applied_to_top_level_resources(self):
        plan = ProvisioningPlan.from_config(self._config(location="westus"))
        assert plan["rg"].payload["location"] == "westus"
        assert plan["ns"].payload["location"] == "westus"
        assert "location" not in plan["q"].payload
        assert plan["vault"].payload["location"] == "northeurope"

    def test_no_location(self):
        plan = ProvisioningPlan.from_config(self._config())
        assert all("location" not in s.payload for s in plan)
        assert plan.plan_id == "demo"
        assert _ids(plan) == ["rg", "ns", "q", "vault"]
