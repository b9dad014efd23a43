"""Tests for hivetask.data.documents — model <-> document mapping."""

from datetime import datetime, timezone

from hivetask.data.documents import (
    document_to_group,
    document_to_identity,
    document_to_notification,
    document_to_task,
    group_to_document,
    task_to_document,
)
from hivetask.data.models import (
    Comment,
    NotificationKind,
    Priority,
    Subtask,
    Task,
    TaskStatus,
    WorkspaceGroup,
)


class TestTaskDocuments:
    def test_task_document_has_no_id_field(self):
        task = Task(id="t1", title="A", created_by="u1", assignee_id="u1")
        doc = task_to_document(task)
        assert "id" not in doc
        assert doc["status"] == "todo"
        assert doc["priority"] == "medium"

    def test_nested_lists_survive(self):
        task = Task(
            id="t1", title="A", created_by="u1", assignee_id="u1",
            subtasks=[Subtask(id="s1", title="step", is_completed=True)],
            comments=[Comment(id="c1", author_id="u2", text="nice")],
            tags=["home"],
        )
        restored = document_to_task({"id": "t1", **task_to_document(task)})
        assert restored.subtasks[0].title == "step"
        assert restored.subtasks[0].is_completed is True
        assert restored.comments[0].author_id == "u2"
        assert restored.tags == ["home"]

    def test_unknown_enum_values_fall_back(self):
        task = document_to_task({
            "id": "t1", "title": "A", "priority": "critical", "status": "archived",
        })
        assert task.priority is Priority.MEDIUM
        assert task.status is TaskStatus.TODO

    def test_missing_optional_fields(self):
        task = document_to_task({"id": "t1", "title": "Bare"})
        assert task.due_date is None
        assert task.group_id is None
        assert task.subtasks == []

    def test_iso_string_timestamps_parsed(self):
        task = document_to_task({
            "id": "t1", "title": "A", "due_date": "2026-03-01T09:00:00Z",
        })
        assert task.due_date == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_naive_timestamp_gets_utc(self):
        task = document_to_task({
            "id": "t1", "title": "A", "created_at": datetime(2026, 1, 1, 8, 0),
        })
        assert task.created_at.tzinfo is timezone.utc

    def test_completed_flag_reconciles_status(self):
        task = document_to_task({"id": "t1", "title": "A", "is_completed": True})
        assert task.status is TaskStatus.COMPLETED


class TestGroupDocuments:
    def test_members_not_persisted(self):
        group = WorkspaceGroup(id="g1", name="Home", admin_id="u1", invite_code="AB12CD34")
        assert "members" not in group_to_document(group)

    def test_invite_code_uppercased(self):
        group = document_to_group({
            "id": "g1", "name": "Home", "admin_id": "u1", "invite_code": "ab12cd34",
            "member_ids": ["u1"],
        })
        assert group.invite_code == "AB12CD34"

    def test_admin_added_to_members_on_read(self):
        group = document_to_group({
            "id": "g1", "name": "Home", "admin_id": "u1", "invite_code": "X",
            "member_ids": ["u2"],
        })
        assert "u1" in group.member_ids


class TestOtherDocuments:
    def test_identity_defaults(self):
        identity = document_to_identity({"id": "u1", "name": "Om"})
        assert identity.email == ""
        assert identity.is_online is False
        assert identity.last_seen is None

    def test_notification_kind(self):
        note = document_to_notification({
            "id": "n1", "recipient_id": "u1", "kind": "group_invite",
            "title": "t", "message": "m",
        })
        assert note.kind is NotificationKind.GROUP_INVITE
        assert note.is_read is False
