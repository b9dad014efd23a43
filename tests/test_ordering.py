"""Tests for hivetask.core.ordering — canonical task order and filters."""

from datetime import datetime, timedelta, timezone

from hivetask.core.ordering import (
    TaskFilter,
    compute_stats,
    filter_tasks,
    sort_tasks,
)
from hivetask.data.models import Priority, Task, TaskStatus

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _task(task_id, priority=Priority.MEDIUM, due=None, completed=False, created=NOW):
    task = Task(
        id=task_id, title=task_id, created_by="u1", assignee_id="u1",
        priority=priority, due_date=due, created_at=created,
    )
    task.set_completed(completed)
    return task


class TestSortTasks:
    def test_canonical_order(self):
        a = _task("A", Priority.HIGH, due=NOW + timedelta(days=1))
        b = _task("B", Priority.HIGH, due=NOW)
        c = _task("C", Priority.URGENT, completed=True)
        d = _task("D", Priority.LOW)
        ordered = sort_tasks([c, a, d, b])
        assert [t.id for t in ordered] == ["B", "A", "D", "C"]

    def test_order_is_reproducible(self):
        tasks = [
            _task("A", Priority.HIGH, due=NOW + timedelta(days=1)),
            _task("B", Priority.HIGH, due=NOW),
            _task("C", Priority.URGENT, completed=True),
            _task("D", Priority.LOW),
        ]
        first = [t.id for t in sort_tasks(tasks)]
        second = [t.id for t in sort_tasks(reversed(tasks))]
        assert first == second

    def test_due_date_before_no_due_date(self):
        undated = _task("undated", Priority.HIGH)
        dated = _task("dated", Priority.HIGH, due=NOW + timedelta(days=30))
        assert [t.id for t in sort_tasks([undated, dated])] == ["dated", "undated"]

    def test_newest_first_on_tie(self):
        old = _task("old", created=NOW - timedelta(hours=2))
        new = _task("new", created=NOW)
        assert [t.id for t in sort_tasks([old, new])] == ["new", "old"]

    def test_priority_beats_due_date(self):
        urgent = _task("urgent", Priority.URGENT, due=NOW + timedelta(days=10))
        low = _task("low", Priority.LOW, due=NOW)
        assert [t.id for t in sort_tasks([low, urgent])] == ["urgent", "low"]


class TestFilterTasks:
    def setup_method(self):
        self.tasks = [
            _task("pending-high", Priority.HIGH),
            _task("pending-low", Priority.LOW),
            _task("done-urgent", Priority.URGENT, completed=True),
        ]

    def test_all(self):
        assert len(filter_tasks(self.tasks, TaskFilter.ALL)) == 3

    def test_pending(self):
        ids = [t.id for t in filter_tasks(self.tasks, TaskFilter.PENDING)]
        assert ids == ["pending-high", "pending-low"]

    def test_completed(self):
        ids = [t.id for t in filter_tasks(self.tasks, TaskFilter.COMPLETED)]
        assert ids == ["done-urgent"]

    def test_high_priority_includes_urgent(self):
        ids = [t.id for t in filter_tasks(self.tasks, TaskFilter.HIGH_PRIORITY)]
        assert ids == ["pending-high", "done-urgent"]


def test_compute_stats():
    tasks = [_task("a"), _task("b", completed=True), _task("c", completed=True)]
    stats = compute_stats(tasks, group_count=2)
    assert stats.total == 3
    assert stats.completed == 2
    assert stats.pending == 1
    assert stats.groups == 2
    assert tasks[1].status is TaskStatus.COMPLETED
