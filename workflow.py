# workflow.py — Explicit status transition tables
"""
Each status field is driven by a StateMachine whose table maps a source
state to the target states reachable from it and the policy action that
guards each edge. A self-edge (state -> state) marks a state in which the
record's other fields may still be edited.

    attempt_transition(LEAVE, leave, LeaveStatus.APPROVED, actor)

checks the target, the caller's right to take the edge, and the legality of
the edge from the stored status, then applies it in memory. The caller owns
the surrounding transaction.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Type

from auth import CurrentUser
from errors import IllegalTransition, PermissionDenied, ValidationFailed
from models import (
    ApprovalStatus, ExpenseStatus, HseReportStatus, LeaveStatus,
    ProjectStatus, ProposalStatus, TaskStatus, utcnow,
)
from policy import can


@dataclass(frozen=True)
class StateMachine:
    name: str
    states: Type[Enum]
    transitions: Dict[Enum, Dict[Enum, str]]
    attribute: str = "status"
    deletable_from: FrozenSet[Enum] = field(default_factory=frozenset)
    delete_action: Optional[str] = None

    def parse(self, value) -> Enum:
        try:
            return self.states(value)
        except ValueError:
            allowed = ", ".join(s.value for s in self.states)
            raise ValidationFailed(f"Invalid {self.name} status '{value}'. Allowed: {allowed}")

    def edge(self, source: Enum, target: Enum) -> Optional[str]:
        return self.transitions.get(source, {}).get(target)


def _everywhere(states: Type[Enum], action: str) -> Dict[Enum, Dict[Enum, str]]:
    return {source: {target: action for target in states} for source in states}


LEAVE = StateMachine(
    name="leave",
    states=LeaveStatus,
    transitions={
        LeaveStatus.PENDING: {
            LeaveStatus.PENDING: "leave.update",
            LeaveStatus.APPROVED: "leave.decide",
            LeaveStatus.REJECTED: "leave.decide",
        },
    },
)

PROPOSAL = StateMachine(
    name="proposal",
    states=ProposalStatus,
    transitions={
        ProposalStatus.DRAFT: {
            ProposalStatus.DRAFT: "proposal.edit",
            ProposalStatus.SUBMITTED: "proposal.submit",
        },
        ProposalStatus.SUBMITTED: {
            ProposalStatus.SUBMITTED: "proposal.edit",
            ProposalStatus.APPROVED: "proposal.decide",
            ProposalStatus.REJECTED: "proposal.decide",
            ProposalStatus.WON: "proposal.decide",
            ProposalStatus.LOST: "proposal.decide",
        },
    },
    deletable_from=frozenset({ProposalStatus.DRAFT, ProposalStatus.REJECTED}),
    delete_action="proposal.delete",
)

PROJECT = StateMachine(
    name="project",
    states=ProjectStatus,
    transitions=_everywhere(ProjectStatus, "project.status"),
)

CLIENT_APPROVAL = StateMachine(
    name="client approval",
    states=ApprovalStatus,
    attribute="approval_status",
    transitions={
        ApprovalStatus.PENDING: {
            ApprovalStatus.PENDING: "client.resubmit",
            ApprovalStatus.APPROVED: "client.approve",
            ApprovalStatus.REJECTED: "client.approve",
        },
        ApprovalStatus.APPROVED: {ApprovalStatus.PENDING: "client.resubmit"},
        ApprovalStatus.REJECTED: {ApprovalStatus.PENDING: "client.resubmit"},
    },
)

HSE_REPORT = StateMachine(
    name="HSE report",
    states=HseReportStatus,
    transitions=_everywhere(HseReportStatus, "hse.status"),
)

EXPENSE = StateMachine(
    name="expense",
    states=ExpenseStatus,
    transitions={
        ExpenseStatus.PENDING: {
            ExpenseStatus.APPROVED: "expense.decide",
            ExpenseStatus.REJECTED: "expense.decide",
        },
    },
)

TASK = StateMachine(
    name="task",
    states=TaskStatus,
    transitions=_everywhere(TaskStatus, "task.status"),
)


def _guard(machine: StateMachine, current: Enum, target: Enum, actor: CurrentUser, owns: bool) -> None:
    action = machine.edge(current, target)
    if action is None:
        raise IllegalTransition(
            f"Cannot change {machine.name} from '{current.value}' to '{target.value}'",
            details={"from": current.value, "to": target.value},
        )
    if not can(actor, action, owns):
        raise PermissionDenied("You are not allowed to perform this action")


def current_state(machine: StateMachine, entity) -> Enum:
    return machine.states(getattr(entity, machine.attribute))


def attempt_transition(machine: StateMachine, entity, target, actor: CurrentUser, owns: bool = False) -> Enum:
    """Move entity to target if the table allows it; return the previous state."""
    target = machine.parse(target)
    current = current_state(machine, entity)
    _guard(machine, current, target, actor, owns)
    setattr(entity, machine.attribute, target)
    if target != current and hasattr(entity, "updated_at"):
        entity.updated_at = utcnow()
    return current


def ensure_editable(machine: StateMachine, entity, actor: CurrentUser, owns: bool = False) -> None:
    """Field edits are the self-edge of the current state."""
    current = current_state(machine, entity)
    action = machine.edge(current, current)
    if action is None:
        raise IllegalTransition(
            f"{machine.name.capitalize()} can no longer be edited once it is '{current.value}'",
            details={"status": current.value},
        )
    if not can(actor, action, owns):
        raise PermissionDenied("You are not allowed to perform this action")


def ensure_deletable(machine: StateMachine, entity, actor: CurrentUser, owns: bool = False) -> None:
    if machine.delete_action and not can(actor, machine.delete_action, owns):
        raise PermissionDenied("You are not allowed to perform this action")
    current = current_state(machine, entity)
    if current not in machine.deletable_from:
        raise IllegalTransition(
            f"{machine.name.capitalize()} cannot be deleted while '{current.value}'",
            details={"status": current.value},
        )
