"""Pure approval-workflow rules.

A trip request carries an ordered list of approval steps, one per level.
Levels are signed off strictly in order; the first step that is not yet
approved is the active one.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from tripdesk.common.enums import ApprovalStatus, ApproverRole
from tripdesk.common.utils import extract, to_number
from tripdesk.core.config import ApprovalSettings, settings


def build_approval_levels(estimated_cost: Any, rules: ApprovalSettings | None = None) -> List[str]:
    """Return the approver roles a request needs, in sign-off order."""
    rules = rules or settings.approvals
    levels: List[str] = []
    if rules.manager_required:
        levels.append(ApproverRole.MANAGER.value)
    if rules.department_required:
        levels.append(ApproverRole.HEAD_OF_DEPARTMENT.value)
    if rules.finance_required or to_number(estimated_cost) > rules.cost_threshold:
        levels.append(ApproverRole.FINANCE.value)
    return levels


def sort_steps(steps: Iterable[Any]) -> List[Any]:
    return sorted(steps or [], key=lambda step: extract(step, "approval_level", 0))


def calculate_final_status(steps: Iterable[Any]) -> str:
    statuses = [extract(step, "status") for step in steps or []]
    if not statuses:
        return ApprovalStatus.PENDING.value
    if ApprovalStatus.REJECTED.value in statuses:
        return ApprovalStatus.REJECTED.value
    if all(status == ApprovalStatus.APPROVED.value for status in statuses):
        return ApprovalStatus.APPROVED.value
    return ApprovalStatus.PENDING.value


def calculate_current_level(steps: Iterable[Any]) -> int:
    ordered = sort_steps(steps)
    for step in ordered:
        if extract(step, "status") != ApprovalStatus.APPROVED.value:
            return extract(step, "approval_level", 0)
    return len(ordered) + 1


def approval_rules_payload(rules: ApprovalSettings | None = None) -> Dict[str, Any]:
    rules = rules or settings.approvals
    return {
        "costThreshold": rules.cost_threshold,
        "requiresDepartmentApproval": rules.department_required,
        "requiresManagerApproval": rules.manager_required,
        "requiresFinanceApproval": rules.finance_required,
    }
