"""Board and backlog views.

A card moves between columns only through ``tasks.update_task_status`` and
between the board and the backlog only through ``tasks.assign_to_sprint``.
"""
from __future__ import annotations

from typing import Dict, Iterable, List

from . import db as store
from .errors import StorageError
from .models import TaskStatus

COLUMNS = (TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE)


def partition(tasks: Iterable) -> Dict[str, List]:
    """Split tasks into the three board columns, keyed strictly by status."""
    columns: Dict[str, List] = {status.value: [] for status in COLUMNS}
    for task in tasks:
        try:
            columns[TaskStatus(task.status).value].append(task)
        except ValueError:
            raise StorageError(
                'Stored task has an unknown status',
                {'task_id': getattr(task, 'id', None), 'status': task.status},
            ) from None
    return columns


def _serialize(columns: Dict[str, List]) -> Dict[str, List[dict]]:
    return {status: [task.to_dict() for task in tasks] for status, tasks in columns.items()}


def sprint_board(sprint_id: int) -> dict:
    sprint = store.get_sprint(sprint_id)
    columns = partition(store.fetch_sprint_tasks(sprint.id))
    return {'sprint': sprint.to_dict(), 'columns': _serialize(columns)}


def backlog_board(workspace_id: int) -> dict:
    store.get_workspace(workspace_id)
    columns = partition(store.fetch_backlog_tasks(workspace_id))
    return {'workspace_id': workspace_id, 'columns': _serialize(columns)}
