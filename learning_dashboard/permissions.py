"""Capability checks. Identity is trusted as given; only the role is inspected."""
from __future__ import annotations

import logging

from . import db as store
from .errors import AuthorizationError
from .models import Role

logger = logging.getLogger(__name__)


def require_facilitator(actor, action: str) -> None:
    if actor is None or getattr(actor, 'role', None) != Role.FACILITATOR:
        logger.info('Denied %s for user=%s (facilitator required)', action, getattr(actor, 'id', None))
        raise AuthorizationError(f'Only facilitators can {action}')


def require_member(workspace_id: int, actor) -> None:
    if actor is None or not store.is_workspace_member(workspace_id, actor.id):
        raise AuthorizationError('You are not a member of this workspace')


def require_task_participant(task, actor, action: str) -> None:
    """Facilitators may act on any task; learners only on tasks assigned to them."""
    if actor is not None and actor.role == Role.FACILITATOR:
        return
    if actor is not None and actor.role == Role.LEARNER and task.assigned_to == actor.id:
        return
    logger.info('Denied %s on task=%s for user=%s', action, task.id, getattr(actor, 'id', None))
    raise AuthorizationError(f'You can only {action} tasks assigned to you')
