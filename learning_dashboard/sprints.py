"""Sprint lifecycle: draft -> active -> completed.

Only facilitators create or transition sprints. A workspace has at most one
active sprint; the check runs inside the writing transaction and the partial
unique index on ``sprints`` catches the case where two starts race past it.
Completion is terminal and makes the sprint and its tasks read-only.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from . import db as store
from .db import transaction
from .errors import ConflictError, InvalidStateError, ValidationError
from .models import Sprint, SprintState, Task, TaskStatus, db, utcnow
from .permissions import require_facilitator

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'description', 'start_date', 'end_date')
ACTIVE_CONFLICT = 'There is already an active sprint in this workspace'


def _coerce_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            # Accept full timestamps as sent by date pickers, keep the day.
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f'{field} must be a date (YYYY-MM-DD)', {'field': field, 'value': value})


def _check_dates(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError(
            'End date cannot be before start date',
            {'start_date': start_date.isoformat(), 'end_date': end_date.isoformat()},
        )


def _clean_name(name: Optional[str]) -> str:
    name = (name or '').strip()
    if not name:
        raise ValidationError('Sprint name is required', {'field': 'name'})
    return name


def get_sprint(sprint_id: int) -> Sprint:
    return store.get_sprint(sprint_id)


def list_sprints(workspace_id: int) -> List[Sprint]:
    return store.fetch_sprints(workspace_id)


def active_sprint(workspace_id: int) -> Optional[Sprint]:
    return store.fetch_active_sprint(workspace_id)


def create_sprint(workspace_id: int, name: str, description: Optional[str], start_date, end_date, actor) -> Sprint:
    require_facilitator(actor, 'create sprints')
    name = _clean_name(name)
    start = _coerce_date(start_date, 'start_date')
    end = _coerce_date(end_date, 'end_date')
    _check_dates(start, end)
    store.get_workspace(workspace_id)

    with transaction():
        sprint = Sprint(
            workspace_id=workspace_id,
            name=name,
            description=description,
            start_date=start,
            end_date=end,
            state=SprintState.DRAFT.value,
            created_by=actor.id,
        )
        db.session.add(sprint)
    logger.info('Created sprint id=%s %r in workspace=%s', sprint.id, sprint.name, workspace_id)
    return sprint


def update_sprint(sprint_id: int, patch: Dict[str, Any], actor) -> Sprint:
    require_facilitator(actor, 'update sprints')
    unknown = sorted(set(patch) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError('These sprint fields cannot be updated', {'fields': unknown})

    with transaction():
        sprint = store.get_sprint(sprint_id)
        if sprint.is_completed:
            raise InvalidStateError('Completed sprints cannot be edited', {'sprint_id': sprint.id})
        start = _coerce_date(patch['start_date'], 'start_date') if 'start_date' in patch else sprint.start_date
        end = _coerce_date(patch['end_date'], 'end_date') if 'end_date' in patch else sprint.end_date
        _check_dates(start, end)
        if 'name' in patch:
            sprint.name = _clean_name(patch['name'])
        if 'description' in patch:
            sprint.description = patch['description']
        sprint.start_date = start
        sprint.end_date = end
    logger.info('Updated sprint id=%s fields=%s', sprint.id, sorted(patch))
    return sprint


def start_sprint(sprint_id: int, actor) -> Sprint:
    require_facilitator(actor, 'start sprints')
    with transaction(ACTIVE_CONFLICT):
        sprint = store.get_sprint(sprint_id)
        if sprint.state != SprintState.DRAFT:
            raise InvalidStateError(
                f'Only draft sprints can be started (sprint is {sprint.state})',
                {'sprint_id': sprint.id, 'state': sprint.state},
            )
        current = store.fetch_active_sprint(sprint.workspace_id, for_update=True)
        if current is not None:
            logger.info('Refused to start sprint id=%s: sprint id=%s is active', sprint.id, current.id)
            raise ConflictError(ACTIVE_CONFLICT, {'active_sprint_id': current.id})
        sprint.state = SprintState.ACTIVE.value
        # Flush so the unique index is checked before commit.
        db.session.flush()
    logger.info('Started sprint id=%s in workspace=%s', sprint.id, sprint.workspace_id)
    return sprint


def complete_sprint(sprint_id: int, actor, carry_over: Optional[bool] = None) -> Sprint:
    """Complete an active sprint.

    Unfinished tasks are copied into the backlog as fresh ``todo`` tasks so
    they can be planned into a later sprint; the originals stay with the
    completed sprint for its history.
    """
    require_facilitator(actor, 'complete sprints')
    if carry_over is None:
        carry_over = current_app.config.get('CARRY_OVER_UNFINISHED_TASKS', True)

    with transaction():
        sprint = store.get_sprint(sprint_id)
        if sprint.state != SprintState.ACTIVE:
            raise InvalidStateError(
                f'Only active sprints can be completed (sprint is {sprint.state})',
                {'sprint_id': sprint.id, 'state': sprint.state},
            )
        copied = 0
        if carry_over:
            copied = _carry_over_unfinished(sprint)
        sprint.state = SprintState.COMPLETED.value
    logger.info('Completed sprint id=%s; %d unfinished task(s) copied to backlog', sprint.id, copied)
    return sprint


def _carry_over_unfinished(sprint: Sprint) -> int:
    unfinished = (Task.query
                  .filter(Task.sprint_id == sprint.id,
                          Task.status.in_([TaskStatus.TODO.value, TaskStatus.IN_PROGRESS.value]))
                  .all())
    now = utcnow()
    for task in unfinished:
        db.session.add(Task(
            workspace_id=task.workspace_id,
            sprint_id=None,
            title=task.title,
            description=task.description,
            subject_id=task.subject_id,
            status=TaskStatus.TODO.value,
            estimated_time=task.estimated_time,
            time_spent=task.time_spent,
            progress=0,
            assigned_to=task.assigned_to,
            created_by=task.created_by,
            completed_at=None,
            created_at=now,
            updated_at=now,
        ))
    return len(unfinished)
