"""Workspaces and their membership."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from . import db as store
from .db import transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Role, User, Workspace, WorkspaceMember, db
from .permissions import require_facilitator

logger = logging.getLogger(__name__)


def create_workspace(name: str, description: Optional[str], actor) -> Workspace:
    """Create a workspace; the creator joins it as a facilitator."""
    require_facilitator(actor, 'create workspaces')
    name = (name or '').strip()
    if not name:
        raise ValidationError('Workspace name is required', {'field': 'name'})
    with transaction():
        workspace = Workspace(name=name, description=description, created_by=actor.id)
        db.session.add(workspace)
        db.session.flush()
        db.session.add(WorkspaceMember(workspace_id=workspace.id, user_id=actor.id, role=Role.FACILITATOR.value))
    logger.info('Created workspace id=%s %r', workspace.id, workspace.name)
    return workspace


def update_workspace(workspace_id: int, patch: Dict[str, Any], actor) -> Workspace:
    require_facilitator(actor, 'update workspaces')
    unknown = sorted(set(patch) - {'name', 'description'})
    if unknown:
        raise ValidationError('These workspace fields cannot be updated', {'fields': unknown})
    with transaction():
        workspace = store.get_workspace(workspace_id)
        if 'name' in patch:
            name = (patch['name'] or '').strip()
            if not name:
                raise ValidationError('Workspace name is required', {'field': 'name'})
            workspace.name = name
        if 'description' in patch:
            workspace.description = patch['description']
    return workspace


def add_member_by_email(workspace_id: int, email: str, actor) -> WorkspaceMember:
    require_facilitator(actor, 'add members')
    if not email or not email.strip():
        raise ValidationError('Email is required', {'field': 'email'})
    store.get_workspace(workspace_id)
    user = store.get_user_by_email(email)
    if user is None:
        raise NotFoundError('User not found with this email', {'email': email})
    with transaction('User is already a member of this workspace'):
        if store.is_workspace_member(workspace_id, user.id):
            raise ConflictError('User is already a member of this workspace', {'user_id': user.id})
        member = WorkspaceMember(workspace_id=workspace_id, user_id=user.id, role=user.role)
        db.session.add(member)
    logger.info('Added user=%s to workspace=%s as %s', user.id, workspace_id, user.role)
    return member


def list_members(workspace_id: int) -> List[WorkspaceMember]:
    return store.fetch_members(workspace_id)


def list_learners(workspace_id: int) -> List[User]:
    return store.fetch_learners(workspace_id)


def is_member(workspace_id: int, user_id: int) -> bool:
    return store.is_workspace_member(workspace_id, user_id)


def user_workspaces(user) -> List[Workspace]:
    return store.fetch_user_workspaces(user.id)
