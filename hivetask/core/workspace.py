"""
HiveTask — Workspace Container.

Mirrors the signed-in identity's tasks, groups and notifications from the
remote document store into local collections, and applies every mutation
optimistically:

    apply locally -> await the remote write -> on failure revert that change

All state lives on one event loop. Local effects happen before the first
``await`` of a mutation, so later local reads see them at once. Snapshot
callbacks run on the same loop, so no two updates interleave on a
collection. While a record has a write in flight, snapshots never overwrite
its local copy.

Live streams:
  - personal tasks       assignee_id == me
  - groups               member_ids contains me (members resolved per group)
  - group tasks          group_id in <loaded group ids>, rebuilt when the set changes
  - notifications        recipient_id == me, newest first
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import Counter
from functools import partial
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from hivetask.core.errors import (
    AlreadyMember,
    InvalidInput,
    InvalidInviteCode,
    MutationResult,
    NotFound,
    NotPermitted,
    TransientFailure,
    Unauthenticated,
)
from hivetask.core.invite_codes import generate_invite_code, normalize_invite_code
from hivetask.core.ordering import (
    TaskFilter,
    TaskStats,
    compute_stats,
    filter_tasks,
    sort_tasks,
)
from hivetask.data.documents import (
    GROUPS,
    NOTIFICATIONS,
    TASKS,
    USERS,
    document_to_group,
    document_to_identity,
    document_to_notification,
    document_to_task,
    group_to_document,
    notification_to_document,
    task_to_document,
)
from hivetask.data.models import (
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
from hivetask.ports.document_store import (
    Document,
    FieldFilter,
    OrderBy,
    StoreError,
    Subscription,
)

if TYPE_CHECKING:
    from datetime import datetime

    from hivetask.core.session import SessionContainer
    from hivetask.ports.document_store import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCAL_PREFIX = "local-"
IN_QUERY_LIMIT = 30          # max values in one "in" filter
INVITE_CODE_ATTEMPTS = 5

_PERSONAL = "personal"
_CARRY = "carry"


def _provisional_id() -> str:
    return f"{LOCAL_PREFIX}{uuid.uuid4().hex}"


def is_provisional(record_id: str) -> bool:
    return record_id.startswith(LOCAL_PREFIX)


class WorkspaceContainer:
    """Live, optimistically-updated view of one identity's workspace."""

    def __init__(
        self,
        store: DocumentStore,
        session: SessionContainer,
        invite_code_length: int = 8,
        notification_limit: int = 30,
    ) -> None:
        self._store = store
        self._session = session
        self._invite_code_length = invite_code_length
        self._notification_limit = notification_limit

        self._tasks: dict[str, Task] = {}
        self._groups: dict[str, WorkspaceGroup] = {}
        self._notifications: dict[str, Notification] = {}
        self._users: dict[str, Identity] = {}

        # Ids each task stream delivered last, keyed by stream name.
        self._stream_ids: dict[str, set[str]] = {}
        # Latest remote version of a task skipped while its write was in flight.
        self._deferred: dict[str, Task | None] = {}
        self._in_flight: Counter[tuple[str, str]] = Counter()
        # Provisional ids deleted locally before their add was confirmed.
        self._cancelled: set[str] = set()

        self._identity: Identity | None = None
        self._personal_sub: Subscription | None = None
        self._groups_sub: Subscription | None = None
        self._notifications_sub: Subscription | None = None
        self._group_task_subs: list[Subscription] = []
        self._group_task_ids: tuple[str, ...] = ()
        self._group_task_generation = 0
        self._active_chunks: set[str] = set()
        self._awaiting_chunks: set[str] = set()
        self._groups_generation = 0

        self._background: set[asyncio.Task] = set()
        self._join_lock = asyncio.Lock()
        self._listeners: list[Callable[[str], None]] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> list[Task]:
        return sort_tasks(self._tasks.values())

    @property
    def groups(self) -> list[WorkspaceGroup]:
        return sorted(self._groups.values(), key=lambda g: g.created_at)

    @property
    def notifications(self) -> list[Notification]:
        return sorted(
            self._notifications.values(), key=lambda n: n.created_at, reverse=True,
        )

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications.values() if not n.is_read)

    @property
    def is_listening(self) -> bool:
        return self._identity is not None

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(section)``; section is tasks, groups or notifications."""
        self._listeners.append(callback)

    def _changed(self, section: str) -> None:
        for callback in list(self._listeners):
            callback(section)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def filtered_tasks(self, task_filter: TaskFilter = TaskFilter.ALL) -> list[Task]:
        return filter_tasks(self.tasks, task_filter)

    def tasks_for_group(self, group_id: str) -> list[Task]:
        return [t for t in self.tasks if t.group_id == group_id]

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_group(self, group_id: str | None) -> WorkspaceGroup | None:
        if group_id is None:
            return None
        return self._groups.get(group_id)

    def get_user_name(self, user_id: str | None) -> str | None:
        if user_id is None:
            return None
        me = self._session.current
        if me is not None and me.id == user_id:
            return me.name
        user = self._users.get(user_id)
        return user.name if user else None

    def is_admin(self, group: WorkspaceGroup) -> bool:
        me = self._session.current
        return me is not None and group.admin_id == me.id

    def stats(self) -> TaskStats:
        return compute_stats(list(self._tasks.values()), len(self._groups))

    async def list_all_users(self) -> list[Identity]:
        """All known identities; used to pick an assignee for personal tasks."""
        try:
            docs = await self._store.query(USERS, [])
        except StoreError as exc:
            logger.warning("Failed to load users: %s", exc)
            return list(self._users.values())
        users = [document_to_identity(d) for d in docs]
        for user in users:
            self._users[user.id] = user
        return users

    async def assignable_users(self, task: Task) -> list[Identity]:
        group = self.get_group(task.group_id)
        if group is not None:
            return list(group.members)
        return await self.list_all_users()

    # ------------------------------------------------------------------
    # Optimistic write helper
    # ------------------------------------------------------------------

    async def _write(
        self,
        description: str,
        remote: Callable[[], Awaitable[T]],
        revert: Callable[[], None],
        task_ids: list[str] | tuple[str, ...] = (),
        group_ids: list[str] | tuple[str, ...] = (),
        notification_ids: list[str] | tuple[str, ...] = (),
    ) -> MutationResult[T]:
        """Run ``remote`` with the given records held; revert on failure."""
        keys = (
            [(TASKS, i) for i in task_ids]
            + [(GROUPS, i) for i in group_ids]
            + [(NOTIFICATIONS, i) for i in notification_ids]
        )
        for key in keys:
            self._in_flight[key] += 1
        try:
            try:
                value = await remote()
            finally:
                self._release(keys)
        except StoreError as exc:
            revert()
            self._apply_deferred(task_ids)
            self._changed(TASKS)
            self._changed(GROUPS)
            logger.warning("%s failed, local change reverted: %s", description, exc)
            return MutationResult.failure(TransientFailure(str(exc)))
        for task_id in task_ids:
            if not self._in_flight[(TASKS, task_id)]:
                self._deferred.pop(task_id, None)
        return MutationResult.success(value)

    def _release(self, keys: list[tuple[str, str]]) -> None:
        for key in keys:
            self._in_flight[key] -= 1
            if self._in_flight[key] <= 0:
                del self._in_flight[key]

    def _held(self, collection: str, record_id: str) -> bool:
        return self._in_flight[(collection, record_id)] > 0

    def _apply_deferred(self, task_ids: list[str] | tuple[str, ...]) -> None:
        # A snapshot skipped during the failed write is newer than our revert.
        for task_id in task_ids:
            if self._held(TASKS, task_id) or task_id not in self._deferred:
                continue
            remote_task = self._deferred.pop(task_id)
            if remote_task is None:
                self._tasks.pop(task_id, None)
            else:
                self._tasks[task_id] = remote_task

    def _acting_identity(self) -> Identity:
        return self._session.require_identity()

    # ------------------------------------------------------------------
    # Task mutations
    # ------------------------------------------------------------------

    async def add_task(
        self,
        title: str,
        description: str = "",
        priority: Priority = Priority.MEDIUM,
        due_date: datetime | None = None,
        group_id: str | None = None,
        assignee_id: str | None = None,
        tags: list[str] | None = None,
        subtasks: list[str] | None = None,
        color: str = "",
    ) -> MutationResult[Task]:
        """Create a task; it is visible locally before the store confirms it."""
        try:
            identity = self._acting_identity()
        except Unauthenticated as exc:
            return MutationResult.failure(exc)

        if not title.strip():
            return MutationResult.failure(InvalidInput("Task title is required"))
        if not self._group_saved(group_id):
            return MutationResult.failure(NotFound(f"Group {group_id} not loaded"))

        now = utcnow()
        task = Task(
            id=_provisional_id(),
            title=title.strip(),
            description=description,
            priority=priority,
            due_date=due_date,
            group_id=group_id,
            assignee_id=assignee_id or identity.id,
            created_by=identity.id,
            tags=list(tags or []),
            subtasks=[Subtask(id=uuid.uuid4().hex, title=s) for s in subtasks or []],
            color=color,
            created_at=now,
            updated_at=now,
        )
        provisional = task.id
        self._tasks[provisional] = task
        self._changed(TASKS)

        result = await self._write(
            f"Add task '{task.title}'",
            lambda: self._store.add(TASKS, task_to_document(task)),
            lambda: self._tasks.pop(provisional, None),
            task_ids=[provisional],
        )
        if not result.ok:
            self._cancelled.discard(provisional)
            return MutationResult.failure(result.error)

        if provisional in self._cancelled:
            self._cancelled.discard(provisional)
            self._tasks.pop(result.value, None)
            self._changed(TASKS)
            await self._discard_created(TASKS, result.value)
            return MutationResult.failure(NotFound(f"Task '{task.title}' was deleted"))

        confirmed = self._rekey_task(task, provisional, result.value)
        logger.info("Task added: %s '%s'", confirmed.id, confirmed.title)
        return MutationResult.success(confirmed)

    def _rekey_task(self, task: Task, provisional: str, server_id: str) -> Task:
        if self._tasks.pop(provisional, None) is None:
            # Cleared while the add was in flight; the record stays remote only.
            task.id = server_id
            return task
        if server_id in self._tasks:
            # The stream already delivered the authoritative copy.
            confirmed = self._tasks[server_id]
        else:
            task.id = server_id
            self._tasks[server_id] = task
            confirmed = task
        self._changed(TASKS)
        return confirmed

    def _group_saved(self, group_id: str | None) -> bool:
        return group_id is None or (group_id in self._groups and not is_provisional(group_id))

    async def _discard_created(self, collection: str, server_id: str) -> None:
        """Remove a record whose provisional copy was deleted before it was saved."""
        try:
            await self._store.delete(collection, server_id)
        except StoreError as exc:
            logger.error("Failed to discard %s/%s: %s", collection, server_id, exc)
            return
        logger.info("Discarded %s/%s deleted before it was saved", collection, server_id)

    async def delete_task(self, task: Task) -> MutationResult[Task]:
        current = self._tasks.get(task.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Task {task.id} not found"))

        del self._tasks[task.id]
        self._changed(TASKS)

        if is_provisional(current.id):
            # Nothing remote yet; add_task discards the record once it lands.
            self._cancelled.add(current.id)
            return MutationResult.success(current)

        def revert() -> None:
            self._tasks[current.id] = current

        result = await self._write(
            f"Delete task {current.id}",
            lambda: self._store.delete(TASKS, current.id),
            revert,
            task_ids=[current.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)
        logger.info("Task deleted: %s", current.id)
        return MutationResult.success(current)

    async def toggle_task_completion(self, task: Task) -> MutationResult[Task]:
        """Flip a task between todo and completed."""
        current = self._tasks.get(task.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Task {task.id} not found"))

        updated = copy.deepcopy(current)
        updated.set_completed(not current.is_completed)
        updated.updated_at = utcnow()
        self._tasks[updated.id] = updated
        self._changed(TASKS)

        result = await self._write(
            f"Toggle task {updated.id}",
            lambda: self._store.update(TASKS, updated.id, {
                "is_completed": updated.is_completed,
                "status": updated.status.value,
                "updated_at": updated.updated_at,
            }),
            partial(self._restore_task, current),
            task_ids=[updated.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)

        me = self._session.current
        if updated.is_completed and me is not None and updated.created_by != me.id:
            await self._send_notification(
                recipient_id=updated.created_by,
                kind=NotificationKind.TASK_COMPLETED,
                title="Task completed",
                message=f'{me.name} completed "{updated.title}"',
                task_id=updated.id,
                group_id=updated.group_id,
            )
        return MutationResult.success(updated)

    def _restore_task(self, task: Task) -> None:
        self._tasks[task.id] = task

    async def update_task(self, task: Task) -> MutationResult[Task]:
        """Replace a task with an edited copy of it."""
        current = self._tasks.get(task.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Task {task.id} not found"))
        if not task.title.strip():
            return MutationResult.failure(InvalidInput("Task title is required"))
        if not self._group_saved(task.group_id):
            return MutationResult.failure(NotFound(f"Group {task.group_id} not loaded"))

        updated = copy.deepcopy(task)
        if updated.status is not current.status:
            updated.set_status(updated.status)
        elif updated.is_completed != current.is_completed:
            updated.set_completed(updated.is_completed)
        else:
            updated.set_status(updated.status)
        updated.updated_at = utcnow()
        self._tasks[updated.id] = updated
        self._changed(TASKS)

        result = await self._write(
            f"Update task {updated.id}",
            lambda: self._store.set(TASKS, updated.id, task_to_document(updated)),
            partial(self._restore_task, current),
            task_ids=[updated.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)
        return MutationResult.success(updated)

    async def set_task_status(self, task: Task, status: TaskStatus) -> MutationResult[Task]:
        current = self._tasks.get(task.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Task {task.id} not found"))
        edited = copy.deepcopy(current)
        edited.set_status(status)
        return await self.update_task(edited)

    async def assign_task(self, task: Task, assignee_id: str) -> MutationResult[Task]:
        """Reassign a task and notify the new assignee.

        Group membership of the assignee is not checked.
        """
        try:
            identity = self._acting_identity()
        except Unauthenticated as exc:
            return MutationResult.failure(exc)

        current = self._tasks.get(task.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Task {task.id} not found"))

        updated = copy.deepcopy(current)
        updated.assignee_id = assignee_id
        updated.updated_at = utcnow()
        self._tasks[updated.id] = updated
        self._changed(TASKS)

        result = await self._write(
            f"Assign task {updated.id}",
            lambda: self._store.update(TASKS, updated.id, {
                "assignee_id": assignee_id,
                "updated_at": updated.updated_at,
            }),
            partial(self._restore_task, current),
            task_ids=[updated.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)

        logger.info("Task %s assigned to %s", updated.id, assignee_id)
        if assignee_id != identity.id:
            await self._send_notification(
                recipient_id=assignee_id,
                kind=NotificationKind.TASK_ASSIGNED,
                title="New task assigned",
                message=f'{identity.name} assigned you "{updated.title}"',
                task_id=updated.id,
                group_id=updated.group_id,
            )
        return MutationResult.success(updated)

    # ------------------------------------------------------------------
    # Group mutations
    # ------------------------------------------------------------------

    async def add_group(
        self,
        name: str,
        description: str = "",
        color: str = "#007AFF",
        is_private: bool = False,
    ) -> MutationResult[WorkspaceGroup]:
        """Create a group administered by the current identity."""
        try:
            identity = self._acting_identity()
        except Unauthenticated as exc:
            return MutationResult.failure(exc)
        if not name.strip():
            return MutationResult.failure(InvalidInput("Group name is required"))

        group = WorkspaceGroup(
            id=_provisional_id(),
            name=name.strip(),
            description=description,
            admin_id=identity.id,
            member_ids=[identity.id],
            invite_code=generate_invite_code(self._invite_code_length),
            color=color,
            is_private=is_private,
            members=[identity],
        )
        provisional = group.id
        self._groups[provisional] = group
        self._changed(GROUPS)

        async def create() -> str:
            group.invite_code = await self._unique_invite_code(group.invite_code)
            return await self._store.add(GROUPS, group_to_document(group))

        result = await self._write(
            f"Add group '{group.name}'",
            create,
            lambda: self._groups.pop(provisional, None),
            group_ids=[provisional],
        )
        if not result.ok:
            self._cancelled.discard(provisional)
            return MutationResult.failure(result.error)

        server_id = result.value
        if provisional in self._cancelled:
            self._cancelled.discard(provisional)
            self._groups.pop(server_id, None)
            self._changed(GROUPS)
            await self._discard_created(GROUPS, server_id)
            return MutationResult.failure(NotFound(f"Group '{group.name}' was deleted"))
        if self._groups.pop(provisional, None) is None:
            group.id = server_id
            return MutationResult.success(group)

        if server_id in self._groups:
            confirmed = self._groups[server_id]
        else:
            group.id = server_id
            self._groups[server_id] = group
            confirmed = group
        self._changed(GROUPS)
        self._refresh_group_task_subscription()
        logger.info("Group created: %s '%s' (code %s)", confirmed.id, confirmed.name,
                    confirmed.invite_code)
        return MutationResult.success(confirmed)

    async def _unique_invite_code(self, candidate: str) -> str:
        for _ in range(INVITE_CODE_ATTEMPTS):
            taken = await self._store.query(
                GROUPS, [FieldFilter("invite_code", "==", candidate)], limit=1,
            )
            if not taken:
                return candidate
            logger.debug("Invite code %s already taken, regenerating", candidate)
            candidate = generate_invite_code(self._invite_code_length)
        raise StoreError("Could not allocate a unique invite code")

    async def delete_group(self, group: WorkspaceGroup) -> MutationResult[WorkspaceGroup]:
        """Delete a group and every task scoped to it. Admin only."""
        try:
            identity = self._acting_identity()
        except Unauthenticated as exc:
            return MutationResult.failure(exc)

        current = self._groups.get(group.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Group {group.id} not found"))
        if current.admin_id != identity.id:
            return MutationResult.failure(NotPermitted(f"{identity.id} is not admin"))

        removed = {tid: t for tid, t in self._tasks.items() if t.group_id == current.id}
        del self._groups[current.id]
        for task_id in removed:
            del self._tasks[task_id]
        self._changed(GROUPS)
        self._changed(TASKS)

        if is_provisional(current.id):
            self._cancelled.add(current.id)
            return MutationResult.success(current)

        def remote() -> Awaitable[int]:
            return self._store.delete_cascade(
                GROUPS, current.id, TASKS, [FieldFilter("group_id", "==", current.id)],
            )

        def revert() -> None:
            self._groups[current.id] = current
            self._tasks.update(removed)

        result = await self._write(
            f"Delete group {current.id}",
            remote,
            revert,
            task_ids=list(removed),
            group_ids=[current.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)

        self._refresh_group_task_subscription()
        logger.info("Group %s deleted with %d tasks", current.id, result.value)
        return MutationResult.success(current)

    async def add_member_to_group(
        self, group: WorkspaceGroup, identity_id: str,
    ) -> MutationResult[WorkspaceGroup]:
        try:
            self._acting_identity()
        except Unauthenticated as exc:
            return MutationResult.failure(exc)

        current = self._groups.get(group.id)
        if current is None or not self._group_saved(current.id):
            return MutationResult.failure(NotFound(f"Group {group.id} not found"))
        if current.has_member(identity_id):
            return MutationResult.failure(AlreadyMember(f"{identity_id} already in {group.id}"))

        updated = self._with_member(current, identity_id)
        self._groups[updated.id] = updated
        self._changed(GROUPS)

        result = await self._write(
            f"Add member {identity_id} to {updated.id}",
            lambda: self._store.array_union(GROUPS, updated.id, "member_ids", identity_id),
            partial(self._restore_group, current),
            group_ids=[updated.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)

        me = self._session.current
        if me is None or me.id != identity_id:
            await self._send_notification(
                recipient_id=identity_id,
                kind=NotificationKind.GROUP_INVITE,
                title="Added to group",
                message=f"You were added to {updated.name}",
                group_id=updated.id,
            )
        return MutationResult.success(updated)

    async def join_group_by_invite_code(self, code: str) -> MutationResult[WorkspaceGroup]:
        """Join the group holding ``code`` (case-insensitive).

        Either the membership is added and reflected in the returned group,
        or an error comes back and no membership change is visible.
        """
        async with self._join_lock:
            try:
                identity = self._acting_identity()
            except Unauthenticated as exc:
                return MutationResult.failure(exc)

            normalized = normalize_invite_code(code)
            if not normalized:
                return MutationResult.failure(InvalidInviteCode("Empty invite code"))

            try:
                docs = await self._store.query(
                    GROUPS, [FieldFilter("invite_code", "==", normalized)], limit=1,
                )
            except StoreError as exc:
                logger.warning("Invite code lookup failed: %s", exc)
                return MutationResult.failure(TransientFailure(str(exc)))
            if not docs:
                logger.info("No group for invite code %s", normalized)
                return MutationResult.failure(InvalidInviteCode(normalized))

            found = document_to_group(docs[0])
            local = self._groups.get(found.id)
            if found.has_member(identity.id) or (local and local.has_member(identity.id)):
                return MutationResult.failure(
                    AlreadyMember(f"{identity.id} already in {found.id}"),
                )

            if local is not None:
                found.members = list(local.members)
            joined = self._with_member(found, identity.id)
            self._groups[joined.id] = joined
            self._changed(GROUPS)

            def revert() -> None:
                if local is None:
                    self._groups.pop(joined.id, None)
                else:
                    self._groups[local.id] = local

            result = await self._write(
                f"Join group {joined.id}",
                lambda: self._store.array_union(GROUPS, joined.id, "member_ids", identity.id),
                revert,
                group_ids=[joined.id],
            )
            if not result.ok:
                return MutationResult.failure(result.error)

        logger.info("%s joined group %s", identity.id, joined.id)
        self._refresh_group_task_subscription()
        await self._send_notification(
            recipient_id=joined.admin_id,
            kind=NotificationKind.GROUP_INVITE,
            title="New member joined",
            message=f"{identity.name} joined {joined.name}",
            group_id=joined.id,
        )
        return MutationResult.success(joined)

    def _with_member(self, group: WorkspaceGroup, identity_id: str) -> WorkspaceGroup:
        updated = copy.deepcopy(group)
        updated.member_ids.append(identity_id)
        member = self._users.get(identity_id)
        me = self._session.current
        if member is None and me is not None and me.id == identity_id:
            member = me
        if member is not None:
            updated.members.append(member)
        return updated

    def _restore_group(self, group: WorkspaceGroup) -> None:
        self._groups[group.id] = group

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def mark_notification_read(
        self, notification: Notification,
    ) -> MutationResult[Notification]:
        current = self._notifications.get(notification.id)
        if current is None:
            return MutationResult.failure(NotFound(f"Notification {notification.id} not found"))
        if current.is_read:
            return MutationResult.success(current)

        updated = copy.deepcopy(current)
        updated.is_read = True
        self._notifications[updated.id] = updated
        self._changed(NOTIFICATIONS)

        def revert() -> None:
            self._notifications[current.id] = current
            self._changed(NOTIFICATIONS)

        result = await self._write(
            f"Mark notification {updated.id} read",
            lambda: self._store.update(NOTIFICATIONS, updated.id, {"is_read": True}),
            revert,
            notification_ids=[updated.id],
        )
        if not result.ok:
            return MutationResult.failure(result.error)
        return MutationResult.success(updated)

    async def mark_all_notifications_read(self) -> MutationResult[int]:
        unread = [n for n in self._notifications.values() if not n.is_read]
        results = await asyncio.gather(*(self.mark_notification_read(n) for n in unread))
        failed = [r for r in results if not r.ok]
        if failed:
            return MutationResult.failure(failed[0].error)
        return MutationResult.success(len(unread))

    async def _send_notification(
        self,
        recipient_id: str,
        kind: NotificationKind,
        title: str,
        message: str,
        task_id: str | None = None,
        group_id: str | None = None,
    ) -> None:
        me = self._session.current
        notification = Notification(
            id="",
            recipient_id=recipient_id,
            sender_id=me.id if me else None,
            kind=kind,
            title=title,
            message=message,
            task_id=task_id,
            group_id=group_id,
        )
        try:
            await self._store.add(NOTIFICATIONS, notification_to_document(notification))
        except StoreError as exc:
            logger.error("Failed to send %s notification to %s: %s",
                         kind.value, recipient_id, exc)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def start_listening(self, identity: Identity) -> None:
        """Open the live streams for ``identity``, replacing any previous ones."""
        if self._identity is not None:
            if self._identity.id == identity.id:
                return
            self.clear()

        self._identity = identity
        self._users[identity.id] = identity
        self._personal_sub = self._store.listen(
            TASKS,
            [FieldFilter("assignee_id", "==", identity.id)],
            on_snapshot=partial(self._on_tasks_snapshot, _PERSONAL),
            on_error=partial(self._on_stream_error, "personal tasks"),
        )
        self._groups_sub = self._store.listen(
            GROUPS,
            [FieldFilter("member_ids", "array_contains", identity.id)],
            on_snapshot=self._on_groups_snapshot,
            on_error=partial(self._on_stream_error, "groups"),
        )
        self._notifications_sub = self._store.listen(
            NOTIFICATIONS,
            [FieldFilter("recipient_id", "==", identity.id)],
            on_snapshot=self._on_notifications_snapshot,
            on_error=partial(self._on_stream_error, "notifications"),
            order_by=OrderBy("created_at", descending=True),
            limit=self._notification_limit,
        )
        logger.info("Listening for workspace of %s", identity.id)

    def stop_listening(self) -> None:
        for sub in (self._personal_sub, self._groups_sub, self._notifications_sub):
            if sub is not None:
                sub.cancel()
        for sub in self._group_task_subs:
            sub.cancel()
        self._personal_sub = self._groups_sub = self._notifications_sub = None
        self._group_task_subs = []
        self._group_task_ids = ()
        self._active_chunks = set()
        self._awaiting_chunks = set()
        self._groups_generation += 1
        for bg in list(self._background):
            bg.cancel()
        if self._identity is not None:
            logger.info("Stopped listening for %s", self._identity.id)
        self._identity = None

    def clear(self) -> None:
        """Stop every stream and empty all collections."""
        self.stop_listening()
        self._tasks.clear()
        self._groups.clear()
        self._notifications.clear()
        self._users.clear()
        self._stream_ids.clear()
        self._deferred.clear()
        self._cancelled.clear()
        self._changed(TASKS)
        self._changed(GROUPS)
        self._changed(NOTIFICATIONS)

    async def drain(self) -> bool:
        """Wait for background work (member resolution); True if any ran."""
        if not self._background:
            return False
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        return True

    def _spawn(self, coro: Awaitable[Any]) -> None:
        bg = asyncio.get_running_loop().create_task(coro)
        self._background.add(bg)
        bg.add_done_callback(self._background_done)

    def _background_done(self, bg: asyncio.Task) -> None:
        self._background.discard(bg)
        if not bg.cancelled() and bg.exception() is not None:
            logger.error("Background workspace job failed: %s", bg.exception())

    def _on_stream_error(self, stream: str, exc: Exception) -> None:
        # Local collections stay as they are until the stream recovers.
        logger.warning("Subscription to %s failed, keeping local state: %s", stream, exc)

    # --- tasks ---------------------------------------------------------

    def _on_tasks_snapshot(self, stream: str, docs: list[Document]) -> None:
        incoming: dict[str, Task] = {}
        for doc in docs:
            try:
                task = document_to_task(doc)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed task %s: %s", doc.get("id"), exc)
                continue
            incoming[task.id] = task

        previous = self._stream_ids.get(stream, set())
        self._stream_ids[stream] = set(incoming)

        for task_id in previous - incoming.keys():
            self._drop_if_unreferenced(task_id)
        for task_id, task in incoming.items():
            if self._held(TASKS, task_id):
                self._deferred[task_id] = task
                continue
            self._tasks[task_id] = task

        logger.debug("Merged %d tasks from %s stream", len(incoming), stream)
        self._changed(TASKS)

    def _drop_if_unreferenced(self, task_id: str) -> None:
        if any(task_id in ids for ids in self._stream_ids.values()):
            return
        if self._held(TASKS, task_id):
            self._deferred[task_id] = None
            return
        self._tasks.pop(task_id, None)

    def _on_group_tasks_snapshot(self, chunk: str, docs: list[Document]) -> None:
        if chunk not in self._active_chunks:
            return
        self._on_tasks_snapshot(chunk, docs)
        self._awaiting_chunks.discard(chunk)
        if not self._awaiting_chunks and _CARRY in self._stream_ids:
            for task_id in self._stream_ids.pop(_CARRY):
                self._drop_if_unreferenced(task_id)
            self._changed(TASKS)

    def _refresh_group_task_subscription(self) -> None:
        """Re-scope the group-task stream to the loaded group ids, if they changed."""
        if self._identity is None:
            return
        group_ids = tuple(sorted(g for g in self._groups if not is_provisional(g)))
        if group_ids == self._group_task_ids:
            return
        self._group_task_ids = group_ids

        for sub in self._group_task_subs:
            sub.cancel()
        self._group_task_subs = []

        # Keep tasks of groups still loaded visible until the new streams report.
        keep = set(group_ids)
        old_ids: set[str] = set()
        for key in [k for k in self._stream_ids if k == _CARRY or k.startswith("group:")]:
            old_ids |= self._stream_ids.pop(key)
        carried = {
            tid for tid in old_ids
            if tid in self._tasks and self._tasks[tid].group_id in keep
        }
        if carried:
            self._stream_ids[_CARRY] = carried
        for task_id in old_ids - carried:
            self._drop_if_unreferenced(task_id)

        self._group_task_generation += 1
        chunks = [
            list(group_ids[i:i + IN_QUERY_LIMIT])
            for i in range(0, len(group_ids), IN_QUERY_LIMIT)
        ]
        keys = [f"group:{self._group_task_generation}:{n}" for n in range(len(chunks))]
        self._active_chunks = set(keys)
        self._awaiting_chunks = set(keys)
        for key, chunk in zip(keys, chunks):
            self._group_task_subs.append(self._store.listen(
                TASKS,
                [FieldFilter("group_id", "in", chunk)],
                on_snapshot=partial(self._on_group_tasks_snapshot, key),
                on_error=partial(self._on_stream_error, "group tasks"),
            ))
        logger.debug("Group-task stream rescoped to %d groups", len(group_ids))
        self._changed(TASKS)

    # --- groups --------------------------------------------------------

    def _on_groups_snapshot(self, docs: list[Document]) -> None:
        groups: list[WorkspaceGroup] = []
        for doc in docs:
            try:
                groups.append(document_to_group(doc))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed group %s: %s", doc.get("id"), exc)
        self._groups_generation += 1
        self._spawn(self._load_groups(groups, self._groups_generation))

    async def _load_groups(self, groups: list[WorkspaceGroup], generation: int) -> None:
        await self._resolve_members(groups)
        if generation != self._groups_generation or self._identity is None:
            return  # superseded by a newer snapshot

        incoming = {g.id: g for g in groups}
        for group_id in list(self._groups):
            if group_id in incoming or self._held(GROUPS, group_id):
                continue
            if is_provisional(group_id):
                continue
            del self._groups[group_id]
        for group_id, group in incoming.items():
            if not self._held(GROUPS, group_id):
                self._groups[group_id] = group

        logger.debug("Loaded %d groups", len(incoming))
        self._changed(GROUPS)
        self._refresh_group_task_subscription()

    async def _resolve_members(self, groups: list[WorkspaceGroup]) -> None:
        missing = sorted({
            member_id
            for g in groups for member_id in g.member_ids
            if member_id not in self._users
        })
        if missing:
            results = await asyncio.gather(
                *(self._store.get(USERS, member_id) for member_id in missing),
                return_exceptions=True,
            )
            for member_id, doc in zip(missing, results):
                if isinstance(doc, Exception):
                    logger.warning("Could not resolve member %s: %s", member_id, doc)
                elif doc is not None:
                    self._users[member_id] = document_to_identity(doc)
        for group in groups:
            group.members = [
                self._users[m] for m in group.member_ids if m in self._users
            ]

    # --- notifications -------------------------------------------------

    def _on_notifications_snapshot(self, docs: list[Document]) -> None:
        incoming: dict[str, Notification] = {}
        for doc in docs:
            try:
                note = document_to_notification(doc)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed notification %s: %s", doc.get("id"), exc)
                continue
            incoming[note.id] = note

        for note_id in list(self._notifications):
            if note_id not in incoming and not self._held(NOTIFICATIONS, note_id):
                del self._notifications[note_id]
        for note_id, note in incoming.items():
            if not self._held(NOTIFICATIONS, note_id):
                self._notifications[note_id] = note
        self._changed(NOTIFICATIONS)
