"""
HiveTask — Task ordering and list filters.

Canonical order for every task list:
  1. incomplete before complete
  2. priority, highest first
  3. due date, soonest first; tasks without a due date after those with one
  4. creation time, newest first
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from hivetask.data.models import Priority, Task


def task_sort_key(task: Task) -> tuple:
    due = task.due_date.timestamp() if task.due_date is not None else 0.0
    return (
        task.is_completed,
        -task.priority.rank,
        task.due_date is None,
        due,
        -task.created_at.timestamp(),
        task.id,
    )


def sort_tasks(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=task_sort_key)


class TaskFilter(Enum):
    ALL = "all"
    PENDING = "pending"
    COMPLETED = "completed"
    HIGH_PRIORITY = "high_priority"


def filter_tasks(tasks: Iterable[Task], task_filter: TaskFilter) -> list[Task]:
    if task_filter is TaskFilter.PENDING:
        return [t for t in tasks if not t.is_completed]
    if task_filter is TaskFilter.COMPLETED:
        return [t for t in tasks if t.is_completed]
    if task_filter is TaskFilter.HIGH_PRIORITY:
        return [t for t in tasks if t.priority.rank >= Priority.HIGH.rank]
    return list(tasks)


@dataclass
class TaskStats:
    total: int
    completed: int
    pending: int
    groups: int


def compute_stats(tasks: list[Task], group_count: int) -> TaskStats:
    completed = sum(1 for t in tasks if t.is_completed)
    return TaskStats(
        total=len(tasks),
        completed=completed,
        pending=len(tasks) - completed,
        groups=group_count,
    )
