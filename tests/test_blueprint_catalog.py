"""
Blueprint catalog tests — pure mapping from intake flags to step templates.

Base chain (always present):
    collect-civil-records
    gather-estate-inventory
    submit-succession-notification  ← collect-civil-records, gather-estate-inventory

Conditional (appended in flag-check order):
    has_will                    → validate-will              ← collect-civil-records
    requires_legal_support      → engage-legal-support       ← submit-succession-notification
    requires_financial_support  → engage-financial-support   ← gather-estate-inventory
"""

import itertools

import pytest

from caseflow.core.exceptions import InvalidCaseStateError, PlanIntegrityError
from caseflow.services.blueprint_catalog import (
    IntakeFlags,
    assert_acyclic,
    build_blueprints,
)

pytestmark = pytest.mark.unit

BASE_KEYS = [
    "collect-civil-records",
    "gather-estate-inventory",
    "submit-succession-notification",
]


def _keys(flags):
    return [bp.step_key for bp in build_blueprints(flags)]


class TestBuildBlueprints:
    def test_no_flags_yields_base_chain(self):
        assert _keys(IntakeFlags()) == BASE_KEYS

    def test_all_flags_append_in_flag_order(self):
        flags = IntakeFlags(True, True, True)
        assert _keys(flags) == BASE_KEYS + [
            "validate-will",
            "engage-legal-support",
            "engage-financial-support",
        ]

    def test_financial_only(self):
        assert _keys(IntakeFlags(requires_financial_support=True)) == BASE_KEYS + [
            "engage-financial-support",
        ]

    def test_dependency_shape(self):
        deps = {bp.step_key: bp.depends_on_keys for bp in build_blueprints(IntakeFlags(True, True, True))}
        assert deps["collect-civil-records"] == ()
        assert deps["gather-estate-inventory"] == ()
        assert deps["submit-succession-notification"] == (
            "collect-civil-records", "gather-estate-inventory",
        )
        assert deps["validate-will"] == ("collect-civil-records",)
        assert deps["engage-legal-support"] == ("submit-succession-notification",)
        assert deps["engage-financial-support"] == ("gather-estate-inventory",)

    def test_will_and_legal_support_gives_five_steps_four_edges(self):
        blueprints = build_blueprints(IntakeFlags(has_will=True, requires_legal_support=True))
        assert len(blueprints) == 5
        assert sum(len(bp.depends_on_keys) for bp in blueprints) == 4

    @pytest.mark.parametrize("flags", list(itertools.product([False, True], repeat=3)))
    def test_deterministic_and_closed_over_every_flag_combination(self, flags):
        first = build_blueprints(IntakeFlags(*flags))
        second = build_blueprints(IntakeFlags(*flags))
        assert first == second
        keys = {bp.step_key for bp in first}
        assert len(keys) == len(first)
        for bp in first:
            assert set(bp.depends_on_keys) <= keys

    def test_titles_are_human_readable(self):
        titles = {bp.step_key: bp.title for bp in build_blueprints(IntakeFlags())}
        assert titles["collect-civil-records"] == "Collect civil records"


class TestIntakeFlags:
    def test_snake_case_snapshot(self):
        flags = IntakeFlags.from_snapshot({"has_will": True, "requires_legal_support": False})
        assert flags == IntakeFlags(has_will=True)

    def test_pascal_case_snapshot(self):
        flags = IntakeFlags.from_snapshot({"HasWill": True, "RequiresFinancialSupport": "true"})
        assert flags == IntakeFlags(has_will=True, requires_financial_support=True)

    @pytest.mark.parametrize("snapshot", [None, {}, [], "has_will"])
    def test_missing_snapshot_is_invalid_case_state(self, snapshot):
        with pytest.raises(InvalidCaseStateError, match="intake not completed"):
            IntakeFlags.from_snapshot(snapshot)


class TestAssertAcyclic:
    def test_returns_dependency_first_order(self):
        order = assert_acyclic(["c", "b", "a"], [("c", "b"), ("b", "a")])
        assert order == ["a", "b", "c"]

    def test_cycle_is_rejected(self):
        with pytest.raises(PlanIntegrityError, match="cycle"):
            assert_acyclic(["a", "b"], [("a", "b"), ("b", "a")])

    def test_dangling_reference_is_rejected(self):
        with pytest.raises(PlanIntegrityError):
            assert_acyclic(["a"], [("a", "missing")])

    def test_self_loop_is_rejected(self):
        with pytest.raises(PlanIntegrityError):
            assert_acyclic(["a"], [("a", "a")])
