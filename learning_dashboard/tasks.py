"""Task transitions: status, progress, sprint membership and field edits.

Status and sprint membership are changed by separate operations so the board
can move a card between columns (``update_task_status``) or between the board
and the backlog (``assign_to_sprint``) without touching the other.

Tasks that belong to a completed sprint are read-only. The sprint state is
read inside the same transaction as the write, so an edit that races a sprint
completion fails with ``InvalidStateError`` rather than slipping through.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional

from . import db as store
from .db import transaction
from .errors import InvalidStateError, ValidationError
from .models import Role, SprintState, Task, TaskStatus, db, utcnow
from .permissions import require_facilitator, require_task_participant

logger = logging.getLogger(__name__)

# todo -> done is the board shortcut; done -> todo is not a supported flow.
ALLOWED_TRANSITIONS = {
    TaskStatus.TODO: {TaskStatus.IN_PROGRESS, TaskStatus.DONE},
    TaskStatus.IN_PROGRESS: {TaskStatus.TODO, TaskStatus.DONE},
    TaskStatus.DONE: {TaskStatus.IN_PROGRESS},
}

EDITABLE_FIELDS = ('title', 'description', 'subject_id', 'assigned_to', 'estimated_time', 'time_spent')
DEDICATED_FIELDS = {
    'status': 'update_task_status',
    'progress': 'update_task_progress',
    'sprint_id': 'assign_to_sprint',
}


def parse_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(
            f'Unknown task status {value!r}',
            {'allowed': [status.value for status in TaskStatus]},
        ) from None


def clamp_progress(value: Any) -> int:
    try:
        progress = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError('Progress must be a number', {'value': value}) from None
    if math.isnan(progress):
        raise ValidationError('Progress must be a number', {'value': value})
    return int(round(max(0.0, min(100.0, progress))))


def _clean_title(title: Optional[str]) -> str:
    title = (title or '').strip()
    if not title:
        raise ValidationError('Task title is required', {'field': 'title'})
    return title


def _clean_duration(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _sprint_for_write(workspace_id: int, sprint_id: Optional[int]):
    """Resolve a sprint a task may be written into, or None for the backlog."""
    if sprint_id is None:
        return None
    sprint = store.get_sprint(sprint_id)
    if sprint.workspace_id != workspace_id:
        raise ValidationError('Sprint belongs to a different workspace', {'sprint_id': sprint_id})
    if sprint.state == SprintState.COMPLETED:
        raise InvalidStateError('Completed sprints do not accept tasks', {'sprint_id': sprint_id})
    return sprint


def _check_subject(workspace_id: int, subject_id: Optional[int]) -> None:
    if subject_id is None:
        return
    subject = store.get_subject(subject_id)
    if subject.workspace_id != workspace_id:
        raise ValidationError('Subject belongs to a different workspace', {'subject_id': subject_id})


def _check_assignee(workspace_id: int, user_id: Optional[int]) -> None:
    if user_id is None:
        return
    membership = store.fetch_membership(workspace_id, user_id)
    if membership is None:
        raise ValidationError('Assignee is not a member of this workspace', {'assigned_to': user_id})
    if membership.user.role != Role.LEARNER:
        raise ValidationError('Tasks can only be assigned to learners', {'assigned_to': user_id})


def _ensure_writable(task: Task) -> None:
    if task.sprint_id is not None and store.get_sprint(task.sprint_id).state == SprintState.COMPLETED:
        raise InvalidStateError(
            'Tasks of a completed sprint are read-only',
            {'task_id': task.id, 'sprint_id': task.sprint_id},
        )


# ---- reads ----

def get_task(task_id: int) -> Task:
    return store.get_task(task_id)


def list_workspace_tasks(workspace_id: int) -> List[Task]:
    return store.fetch_workspace_tasks(workspace_id)


def list_sprint_tasks(sprint_id: int) -> List[Task]:
    return store.fetch_sprint_tasks(sprint_id)


def list_backlog_tasks(workspace_id: int) -> List[Task]:
    return store.fetch_backlog_tasks(workspace_id)


def list_learner_tasks(workspace_id: int, user_id: int) -> List[Task]:
    return store.fetch_learner_tasks(workspace_id, user_id)


# ---- writes ----

def create_task(workspace_id: int, sprint_id: Optional[int], subject_id: Optional[int],
                assigned_to: Optional[int], estimated_time: Optional[str], actor, *,
                title: str, description: Optional[str] = None, time_spent: Optional[str] = None) -> Task:
    require_facilitator(actor, 'create tasks')
    title = _clean_title(title)
    store.get_workspace(workspace_id)

    with transaction():
        _sprint_for_write(workspace_id, sprint_id)
        _check_subject(workspace_id, subject_id)
        _check_assignee(workspace_id, assigned_to)
        now = utcnow()
        task = Task(
            workspace_id=workspace_id,
            sprint_id=sprint_id,
            title=title,
            description=description,
            subject_id=subject_id,
            status=TaskStatus.TODO.value,
            estimated_time=_clean_duration(estimated_time),
            time_spent=_clean_duration(time_spent),
            progress=0,
            assigned_to=assigned_to,
            created_by=actor.id,
            completed_at=None,
            created_at=now,
            updated_at=now,
        )
        db.session.add(task)
    logger.info('Created task id=%s in workspace=%s sprint=%s', task.id, workspace_id, sprint_id)
    return task


def update_task(task_id: int, patch: Dict[str, Any], actor) -> Task:
    """Edit descriptive fields. Status, progress and sprint have their own operations."""
    require_facilitator(actor, 'edit tasks')
    dedicated = sorted(set(patch) & set(DEDICATED_FIELDS))
    if dedicated:
        raise ValidationError(
            'Use the dedicated operation to change these fields',
            {field: DEDICATED_FIELDS[field] for field in dedicated},
        )
    unknown = sorted(set(patch) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError('These task fields cannot be updated', {'fields': unknown})

    with transaction():
        task = store.get_task(task_id)
        _ensure_writable(task)
        if 'title' in patch:
            task.title = _clean_title(patch['title'])
        if 'description' in patch:
            task.description = patch['description']
        if 'subject_id' in patch:
            _check_subject(task.workspace_id, patch['subject_id'])
            task.subject_id = patch['subject_id']
        if 'assigned_to' in patch:
            _check_assignee(task.workspace_id, patch['assigned_to'])
            task.assigned_to = patch['assigned_to']
        if 'estimated_time' in patch:
            task.estimated_time = _clean_duration(patch['estimated_time'])
        if 'time_spent' in patch:
            task.time_spent = _clean_duration(patch['time_spent'])
        task.updated_at = utcnow()
    return task


def update_task_status(task_id: int, new_status, actor) -> Task:
    new_status = parse_status(new_status)
    with transaction():
        task = store.get_task(task_id)
        require_task_participant(task, actor, 'move')
        _ensure_writable(task)
        current = TaskStatus(task.status)
        if new_status != current and new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f'Cannot move a task from {current.value} to {new_status.value}',
                {'task_id': task.id, 'from': current.value, 'to': new_status.value},
            )
        now = utcnow()
        if new_status != current:
            task.status = new_status.value
            if new_status == TaskStatus.DONE:
                task.completed_at = now
            else:
                task.completed_at = None
        task.updated_at = now
    logger.info('Task id=%s status %s -> %s', task.id, current.value, new_status.value)
    return task


def update_task_progress(task_id: int, progress, actor) -> Task:
    value = clamp_progress(progress)
    with transaction():
        task = store.get_task(task_id)
        require_task_participant(task, actor, 'update progress on')
        _ensure_writable(task)
        if task.status != TaskStatus.IN_PROGRESS:
            raise InvalidStateError(
                'Progress can only be recorded while a task is in progress',
                {'task_id': task.id, 'status': task.status},
            )
        task.progress = value
        task.updated_at = utcnow()
    return task


def assign_to_sprint(task_id: int, sprint_id: Optional[int], actor) -> Task:
    require_facilitator(actor, 'plan sprints')
    with transaction():
        task = store.get_task(task_id)
        _ensure_writable(task)
        _sprint_for_write(task.workspace_id, sprint_id)
        previous = task.sprint_id
        task.sprint_id = sprint_id
        task.updated_at = utcnow()
    logger.info('Task id=%s moved from sprint=%s to sprint=%s', task.id, previous, sprint_id)
    return task


def delete_task(task_id: int, actor) -> None:
    require_facilitator(actor, 'delete tasks')
    with transaction():
        task = store.get_task(task_id)
        _ensure_writable(task)
        db.session.delete(task)
    logger.info('Deleted task id=%s', task_id)
