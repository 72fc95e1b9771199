"""Authorization guard: pure decisions over a requester's permissions and ownership.

Nothing here touches the database or the request. Callers build an
``AccessContext`` from the requester's permission set and the *persisted*
record, then ask for a ``Decision``. ``enforce`` turns a denial into a
``ForbiddenError``.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from ..errors import ForbiddenError
from ..utils.logging import get_logger
from .permissions import (
    PERM_INCIDENTS_ASSIGN,
    PERM_INCIDENTS_AUDIT_READ,
    PERM_INCIDENTS_CREATE,
    PERM_INCIDENTS_DELETE,
    PERM_INCIDENTS_EDIT_ANY,
    PERM_INCIDENTS_EDIT_OWN,
    PERM_INCIDENTS_READ,
    PERM_INCIDENTS_RESTORE,
    PERM_INCIDENTS_SEVERITY_ANY,
    PERM_INCIDENTS_STATUS_ANY,
    PERM_INCIDENTS_STATUS_LIMITED,
)

logger = get_logger("auth.guard")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


@dataclass(frozen=True)
class AccessContext:
    """What the guard knows about one requester and one record."""

    permissions: frozenset[str]
    is_creator: bool = False
    is_assignee: bool = False

    @property
    def is_owner(self) -> bool:
        return self.is_creator or self.is_assignee

    def has(self, permission: str) -> bool:
        return permission in self.permissions

    @classmethod
    def for_record(
        cls,
        permissions: Iterable[str],
        user_id: Optional[uuid.UUID],
        created_by: Optional[uuid.UUID],
        assigned_to: Optional[uuid.UUID] = None,
    ) -> "AccessContext":
        """Build a context from the requester id and the persisted owner fields."""
        return cls(
            permissions=frozenset(permissions),
            is_creator=user_id is not None and created_by == user_id,
            is_assignee=user_id is not None and assigned_to == user_id,
        )


@dataclass(frozen=True)
class ChangeShape:
    """Which incident fields an update request populates."""

    title: bool = False
    description: bool = False
    status: bool = False
    severity: bool = False
    assignment: bool = False

    @property
    def is_status_only(self) -> bool:
        return (
            self.status
            and not self.title
            and not self.description
            and not self.severity
            and not self.assignment
        )


def _require(ctx: AccessContext, permission: str) -> Decision:
    if ctx.has(permission):
        return ALLOW
    return _deny(f"Permission required: {permission}")


def can_read(ctx: AccessContext) -> Decision:
    return _require(ctx, PERM_INCIDENTS_READ)


def can_create(ctx: AccessContext, with_assignee: bool) -> Decision:
    decision = _require(ctx, PERM_INCIDENTS_CREATE)
    if decision and with_assignee:
        decision = _require(ctx, PERM_INCIDENTS_ASSIGN)
    return decision


def _can_set_status(ctx: AccessContext) -> Decision:
    if ctx.has(PERM_INCIDENTS_STATUS_ANY):
        return ALLOW
    if ctx.has(PERM_INCIDENTS_STATUS_LIMITED) and ctx.is_owner:
        return ALLOW
    return _deny("Status changes require incidents:status:any, or incidents:status:limited on an owned incident")


def can_update(ctx: AccessContext, change: ChangeShape) -> Decision:
    """Decide an incident update.

    Status-only requests skip the general edit gate. Everything else needs
    edit:any, or edit:own on an incident the requester created. Assignment,
    severity and status each add their own check; the first failure wins.
    """
    if change.is_status_only:
        return _can_set_status(ctx)

    if not ctx.has(PERM_INCIDENTS_EDIT_ANY):
        if not (ctx.has(PERM_INCIDENTS_EDIT_OWN) and ctx.is_creator):
            return _deny("Editing requires incidents:edit:any, or incidents:edit:own on an incident you created")

    if change.assignment:
        decision = _require(ctx, PERM_INCIDENTS_ASSIGN)
        if not decision:
            return decision

    if change.severity:
        decision = _require(ctx, PERM_INCIDENTS_SEVERITY_ANY)
        if not decision:
            return decision

    if change.status:
        return _can_set_status(ctx)

    return ALLOW


def can_delete(ctx: AccessContext) -> Decision:
    return _require(ctx, PERM_INCIDENTS_DELETE)


def can_restore(ctx: AccessContext) -> Decision:
    return _require(ctx, PERM_INCIDENTS_RESTORE)


def _author_or_edit_any(ctx: AccessContext, subject: str) -> Decision:
    if ctx.is_creator or ctx.has(PERM_INCIDENTS_EDIT_ANY):
        return ALLOW
    return _deny(f"Only the author or an incidents:edit:any holder may change this {subject}")


def can_write_comment(ctx: AccessContext) -> Decision:
    """Comments belong to their author, not to the incident."""
    return _author_or_edit_any(ctx, "comment")


def can_add_comment(ctx: AccessContext) -> Decision:
    if ctx.permissions & {PERM_INCIDENTS_EDIT_ANY, PERM_INCIDENTS_EDIT_OWN, PERM_INCIDENTS_CREATE}:
        return ALLOW
    return _deny("Commenting requires incidents:edit:any, incidents:edit:own or incidents:create")


def can_read_audit(ctx: AccessContext) -> Decision:
    return _require(ctx, PERM_INCIDENTS_AUDIT_READ)


def can_edit_log_entry(ctx: AccessContext) -> Decision:
    """Administrative log edits: audit-read plus performer-or-edit:any."""
    decision = can_read_audit(ctx)
    if decision:
        decision = _author_or_edit_any(ctx, "log entry")
    return decision


def enforce(decision: Decision, operation: str, **context) -> None:
    """Raise ``ForbiddenError`` if the decision denies the operation."""
    if decision.allowed:
        return
    logger.warning("authorization_denied", operation=operation, reason=decision.reason, **context)
    raise ForbiddenError(decision.reason)
