"""
HiveTask — Data Models.

Plain records mirrored from the remote document store. The store is the
source of truth; these objects are the local, observable copy that the
session and workspace containers hold.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class TaskStatus(Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class NotificationKind(Enum):
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    GROUP_INVITE = "group_invite"
    COMMENT = "comment"
    TASK_UPDATED = "task_updated"


@dataclass
class Identity:
    """A signed-in user record."""

    id: str
    name: str
    email: str = ""
    external_id: str | None = None     # identity-provider subject
    is_online: bool = False
    last_seen: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ExternalCredential:
    """A verified assertion handed over by the identity provider.

    Only consumed here, never issued or validated.
    """

    external_id: str
    given_name: str | None = None
    family_name: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.given_name or ''} {self.family_name or ''}".strip()


@dataclass
class WorkspaceGroup:
    """A named set of identities sharing group-scoped tasks.

    ``member_ids`` is the source of truth for membership; ``members`` is a
    denormalized view filled in once the member ids have been resolved.
    """

    id: str
    name: str
    admin_id: str
    invite_code: str
    description: str = ""
    member_ids: list[str] = field(default_factory=list)
    color: str = "#007AFF"
    is_private: bool = False
    created_at: datetime = field(default_factory=utcnow)
    members: list[Identity] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.admin_id and self.admin_id not in self.member_ids:
            self.member_ids.insert(0, self.admin_id)

    def has_member(self, identity_id: str) -> bool:
        return identity_id in self.member_ids


@dataclass
class Subtask:
    id: str
    title: str
    is_completed: bool = False


@dataclass
class Attachment:
    id: str
    name: str
    url: str
    uploaded_by: str = ""
    uploaded_at: datetime = field(default_factory=utcnow)


@dataclass
class Comment:
    id: str
    author_id: str
    text: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Task:
    """A personal (``group_id is None``) or group-scoped task.

    ``is_completed`` and ``status`` must always agree: go through
    ``set_status`` / ``set_completed`` rather than assigning either field.
    """

    id: str
    title: str
    created_by: str
    assignee_id: str
    description: str = ""
    is_completed: bool = False
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None
    group_id: str | None = None
    color: str = ""
    tags: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        # Reconcile records that arrive with only one of the two fields set.
        if self.status is TaskStatus.COMPLETED:
            self.is_completed = True
        elif self.is_completed:
            self.status = TaskStatus.COMPLETED

    @property
    def is_personal(self) -> bool:
        return self.group_id is None

    def set_status(self, status: TaskStatus) -> None:
        self.status = status
        self.is_completed = status is TaskStatus.COMPLETED

    def set_completed(self, completed: bool) -> None:
        self.set_status(TaskStatus.COMPLETED if completed else TaskStatus.TODO)


@dataclass
class Notification:
    id: str
    recipient_id: str
    kind: NotificationKind
    title: str
    message: str
    sender_id: str | None = None
    task_id: str | None = None
    group_id: str | None = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)
