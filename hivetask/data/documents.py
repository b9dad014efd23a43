"""
HiveTask — Document mapping.

Converts models to the plain dicts stored in the remote document store and
back. Document ids travel under the ``id`` key and are never written as a
field.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from hivetask.data.models import (
    Attachment,
    Comment,
    Identity,
    Notification,
    NotificationKind,
    Priority,
    Subtask,
    Task,
    TaskStatus,
    WorkspaceGroup,
    utcnow,
)

logger = logging.getLogger(__name__)

USERS = "users"
GROUPS = "groups"
TASKS = "tasks"
NOTIFICATIONS = "notifications"

E = TypeVar("E", bound=Enum)


def _enum(enum_cls: type[E], raw: Any, default: E) -> E:
    try:
        return enum_cls(raw)
    except ValueError:
        logger.debug("Unknown %s value %r, using %s", enum_cls.__name__, raw, default)
        return default


def _timestamp(raw: Any, default: datetime | None = None) -> datetime | None:
    if raw is None:
        return default
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, str):
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def identity_to_document(identity: Identity) -> dict:
    return {
        "name": identity.name,
        "email": identity.email,
        "external_id": identity.external_id,
        "is_online": identity.is_online,
        "last_seen": identity.last_seen,
        "created_at": identity.created_at,
    }


def document_to_identity(doc: dict) -> Identity:
    return Identity(
        id=doc["id"],
        name=doc.get("name", ""),
        email=doc.get("email") or "",
        external_id=doc.get("external_id"),
        is_online=bool(doc.get("is_online", False)),
        last_seen=_timestamp(doc.get("last_seen")),
        created_at=_timestamp(doc.get("created_at"), utcnow()),
    )


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


def group_to_document(group: WorkspaceGroup) -> dict:
    # members is a derived view and is never persisted
    return {
        "name": group.name,
        "description": group.description,
        "member_ids": list(group.member_ids),
        "admin_id": group.admin_id,
        "invite_code": group.invite_code,
        "color": group.color,
        "is_private": group.is_private,
        "created_at": group.created_at,
    }


def document_to_group(doc: dict) -> WorkspaceGroup:
    return WorkspaceGroup(
        id=doc["id"],
        name=doc.get("name", ""),
        description=doc.get("description", ""),
        member_ids=list(doc.get("member_ids") or []),
        admin_id=doc.get("admin_id", ""),
        invite_code=(doc.get("invite_code") or "").upper(),
        color=doc.get("color") or "#007AFF",
        is_private=bool(doc.get("is_private", False)),
        created_at=_timestamp(doc.get("created_at"), utcnow()),
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def task_to_document(task: Task) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "is_completed": task.is_completed,
        "status": task.status.value,
        "priority": task.priority.value,
        "due_date": task.due_date,
        "assignee_id": task.assignee_id,
        "group_id": task.group_id,
        "created_by": task.created_by,
        "color": task.color,
        "tags": list(task.tags),
        "subtasks": [
            {"id": s.id, "title": s.title, "is_completed": s.is_completed}
            for s in task.subtasks
        ],
        "attachments": [
            {
                "id": a.id,
                "name": a.name,
                "url": a.url,
                "uploaded_by": a.uploaded_by,
                "uploaded_at": a.uploaded_at,
            }
            for a in task.attachments
        ],
        "comments": [
            {
                "id": c.id,
                "author_id": c.author_id,
                "text": c.text,
                "created_at": c.created_at,
            }
            for c in task.comments
        ],
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


def document_to_task(doc: dict) -> Task:
    return Task(
        id=doc["id"],
        title=doc.get("title", ""),
        description=doc.get("description", ""),
        is_completed=bool(doc.get("is_completed", False)),
        status=_enum(TaskStatus, doc.get("status"), TaskStatus.TODO),
        priority=_enum(Priority, doc.get("priority"), Priority.MEDIUM),
        due_date=_timestamp(doc.get("due_date")),
        assignee_id=doc.get("assignee_id", ""),
        group_id=doc.get("group_id"),
        created_by=doc.get("created_by", ""),
        color=doc.get("color") or "",
        tags=list(doc.get("tags") or []),
        subtasks=[
            Subtask(
                id=s.get("id", ""),
                title=s.get("title", ""),
                is_completed=bool(s.get("is_completed", False)),
            )
            for s in doc.get("subtasks") or []
        ],
        attachments=[
            Attachment(
                id=a.get("id", ""),
                name=a.get("name", ""),
                url=a.get("url", ""),
                uploaded_by=a.get("uploaded_by", ""),
                uploaded_at=_timestamp(a.get("uploaded_at"), utcnow()),
            )
            for a in doc.get("attachments") or []
        ],
        comments=[
            Comment(
                id=c.get("id", ""),
                author_id=c.get("author_id", ""),
                text=c.get("text", ""),
                created_at=_timestamp(c.get("created_at"), utcnow()),
            )
            for c in doc.get("comments") or []
        ],
        created_at=_timestamp(doc.get("created_at"), utcnow()),
        updated_at=_timestamp(doc.get("updated_at"), utcnow()),
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def notification_to_document(notification: Notification) -> dict:
    return {
        "recipient_id": notification.recipient_id,
        "sender_id": notification.sender_id,
        "kind": notification.kind.value,
        "title": notification.title,
        "message": notification.message,
        "task_id": notification.task_id,
        "group_id": notification.group_id,
        "is_read": notification.is_read,
        "created_at": notification.created_at,
    }


def document_to_notification(doc: dict) -> Notification:
    return Notification(
        id=doc["id"],
        recipient_id=doc.get("recipient_id", ""),
        sender_id=doc.get("sender_id"),
        kind=_enum(NotificationKind, doc.get("kind"), NotificationKind.TASK_UPDATED),
        title=doc.get("title", ""),
        message=doc.get("message", ""),
        task_id=doc.get("task_id"),
        group_id=doc.get("group_id"),
        is_read=bool(doc.get("is_read", False)),
        created_at=_timestamp(doc.get("created_at"), utcnow()),
    )
