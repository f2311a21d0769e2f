# policy.py — Declarative authorization table
"""
Every guarded action is listed once here.

A Policy grants its action either outright (``permission``) or only to the
owner / assigned member of the target resource (``owner_permission``, with
``None`` meaning any owner). Route dependencies built with ``require()`` run
before the handler loads anything, so a caller who could never perform the
action gets a 403 without learning whether the resource exists. Once a record
is loaded, ``authorize_or_hide()`` gives callers with no claim on it the same
404 as an unknown id.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Depends

from auth import CurrentUser, get_current_user
from errors import NotFound, PermissionDenied

ANY_OWNER = "*"


@dataclass(frozen=True)
class Policy:
    permission: Optional[str] = None
    owner_permission: Optional[str] = None


POLICIES: Dict[str, Policy] = {
    # Staff accounts
    "user.register": Policy("users:create"),
    "user.update": Policy("users:update", owner_permission=ANY_OWNER),
    "user.change_role": Policy("users:update"),
    "user.delete": Policy("users:delete"),
    # Clients
    "client.approve": Policy("clients:approve"),
    "client.resubmit": Policy(owner_permission="client:self"),
    # Projects & tasks
    "project.view": Policy("projects:update", owner_permission="projects:read"),
    "project.status": Policy("projects:status", owner_permission="projects:read"),
    "task.status": Policy("tasks:status"),
    "task.view": Policy("tasks:write", owner_permission="tasks:read"),
    # Work logs, project documents & reports
    "worklog.log": Policy("worklogs:manage", owner_permission="worklogs:create"),
    "worklog.delete": Policy("worklogs:manage", owner_permission="worklogs:create"),
    "document.edit": Policy("documents:manage", owner_permission="projects:read"),
    "document.delete": Policy("documents:manage", owner_permission="projects:read"),
    "document.status": Policy("documents:manage"),
    "report.view": Policy("reports:manage", owner_permission="reports:create"),
    "report.update": Policy("reports:manage", owner_permission="reports:create"),
    "report.delete": Policy("reports:manage", owner_permission="reports:create"),
    "report.assign": Policy("reports:manage"),
    # Leave
    "leave.view": Policy("leaves:manage", owner_permission="leaves:read"),
    "leave.update": Policy("leaves:manage", owner_permission="leaves:create"),
    "leave.delete": Policy("leaves:manage", owner_permission="leaves:create"),
    "leave.decide": Policy("leaves:decide"),
    # Proposals
    "proposal.edit": Policy(owner_permission="proposals:create"),
    "proposal.submit": Policy(owner_permission="proposals:submit"),
    "proposal.decide": Policy("proposals:approve"),
    "proposal.delete": Policy(owner_permission="proposals:create"),
    # HSE
    "hse.status": Policy("hse:reports:update"),
    # Finance
    "expense.view": Policy("finance:approve", owner_permission="finance:submit"),
    "expense.decide": Policy("finance:approve"),
}


def _policy(action: str) -> Policy:
    try:
        return POLICIES[action]
    except KeyError:
        raise KeyError(f"No policy registered for action {action!r}")


def could_ever(actor: CurrentUser, action: str) -> bool:
    """True if the actor holds a permission that can grant the action on some resource."""
    policy = _policy(action)
    if policy.permission and policy.permission in actor.permissions:
        return True
    if policy.owner_permission == ANY_OWNER:
        return True
    return bool(policy.owner_permission) and policy.owner_permission in actor.permissions


def can(actor: CurrentUser, action: str, owns: bool = False) -> bool:
    policy = _policy(action)
    if policy.permission and policy.permission in actor.permissions:
        return True
    if owns and policy.owner_permission:
        return policy.owner_permission == ANY_OWNER or policy.owner_permission in actor.permissions
    return False


def authorize(actor: CurrentUser, action: str, owns: bool = False) -> None:
    if not can(actor, action, owns):
        raise PermissionDenied("You are not allowed to perform this action")


def authorize_or_hide(actor: CurrentUser, action: str, owns: bool, label: str) -> None:
    """authorize() for a loaded record the caller has no claim on: answer as if the id were unknown"""
    if not can(actor, action, owns):
        raise NotFound(f"{label} not found")


def require(action: str):
    """Dependency factory: reject callers who can never perform the action, before any lookup"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not could_ever(user, action):
            raise PermissionDenied("You are not allowed to perform this action")
        return user
    return _check
