"""
Blueprint Catalog — intake flags → ordered step templates + dependency keys.

Pure mapping, no I/O. The base chain is always present; each conditional
step is appended iff its intake flag is set, in flag-check order. The output
order becomes ``WorkflowStep.sequence`` downstream.

Usage:
    from caseflow.services.blueprint_catalog import IntakeFlags, build_blueprints

    flags = IntakeFlags(has_will=True)
    for bp in build_blueprints(flags):
        print(bp.step_key, bp.depends_on_keys)
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable

from caseflow.core.exceptions import InvalidCaseStateError, PlanIntegrityError


@dataclass(frozen=True)
class StepBlueprint:
    """Catalog template for one step."""
    step_key: str
    title: str
    depends_on_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class IntakeFlags:
    """The three intake answers that shape a case plan."""
    has_will: bool = False
    requires_legal_support: bool = False
    requires_financial_support: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: Any) -> IntakeFlags:
        """Read flags from a structured intake snapshot.

        Accepts snake_case or the PascalCase keys of older intake payloads.
        An empty or non-mapping snapshot means intake was never completed.
        """
        if not isinstance(snapshot, dict) or not snapshot:
            raise InvalidCaseStateError("Case plan cannot be generated: intake not completed")

        def _flag(snake: str, pascal: str) -> bool:
            value = snapshot.get(snake, snapshot.get(pascal, False))
            if isinstance(value, str):
                return value.strip().lower() in ("true", "1", "yes")
            return bool(value)

        return cls(
            has_will=_flag("has_will", "HasWill"),
            requires_legal_support=_flag("requires_legal_support", "RequiresLegalSupport"),
            requires_financial_support=_flag("requires_financial_support", "RequiresFinancialSupport"),
        )


# ── Catalog ──────────────────────────────────────────────────────────────────

COLLECT_CIVIL_RECORDS = StepBlueprint(
    "collect-civil-records", "Collect civil records",
)
GATHER_ESTATE_INVENTORY = StepBlueprint(
    "gather-estate-inventory", "Gather estate inventory",
)
SUBMIT_SUCCESSION_NOTIFICATION = StepBlueprint(
    "submit-succession-notification", "Submit succession notification",
    ("collect-civil-records", "gather-estate-inventory"),
)

BASE_CHAIN: tuple[StepBlueprint, ...] = (
    COLLECT_CIVIL_RECORDS,
    GATHER_ESTATE_INVENTORY,
    SUBMIT_SUCCESSION_NOTIFICATION,
)

# (flag attribute, blueprint) in flag-check order
CONDITIONAL_STEPS: tuple[tuple[str, StepBlueprint], ...] = (
    ("has_will", StepBlueprint(
        "validate-will", "Validate will",
        ("collect-civil-records",),
    )),
    ("requires_legal_support", StepBlueprint(
        "engage-legal-support", "Engage legal support",
        ("submit-succession-notification",),
    )),
    ("requires_financial_support", StepBlueprint(
        "engage-financial-support", "Engage financial support",
        ("gather-estate-inventory",),
    )),
)


def build_blueprints(flags: IntakeFlags) -> list[StepBlueprint]:
    """Return the ordered blueprint list for the given intake flags.

    Total over the boolean input space; the acyclicity assertion only fires
    if the catalog itself is edited into an invalid shape.
    """
    blueprints = list(BASE_CHAIN)
    for flag_name, blueprint in CONDITIONAL_STEPS:
        if getattr(flags, flag_name):
            blueprints.append(blueprint)
    assert_acyclic(
        (bp.step_key for bp in blueprints),
        ((bp.step_key, dep) for bp in blueprints for dep in bp.depends_on_keys),
    )
    return blueprints


# ── Graph checks ─────────────────────────────────────────────────────────────


def assert_acyclic(nodes: Iterable, edges: Iterable[tuple]) -> list:
    """Kahn's algorithm over (node, depends_on) edges.

    Returns the nodes in dependency-first order. Fails closed: a dangling
    reference or any residual in-degree raises PlanIntegrityError.
    """
    node_list = list(dict.fromkeys(nodes))
    known = set(node_list)
    in_degree = {n: 0 for n in node_list}
    successors: dict = {n: [] for n in node_list}

    for node, depends_on in edges:
        if node not in known or depends_on not in known:
            raise PlanIntegrityError(
                f"Dependency {node} → {depends_on} references a step outside the plan"
            )
        if node == depends_on:
            raise PlanIntegrityError(f"Step {node} depends on itself")
        successors[depends_on].append(node)
        in_degree[node] += 1

    queue = deque(n for n in node_list if in_degree[n] == 0)
    order = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for nxt in successors[current]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                queue.append(nxt)

    if len(order) != len(node_list):
        residual = sorted(str(n) for n, d in in_degree.items() if d > 0)
        raise PlanIntegrityError(
            f"Dependency cycle detected among: {', '.join(residual)}",
            details={"steps": residual},
        )
    return order
