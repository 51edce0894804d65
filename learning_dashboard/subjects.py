"""Subjects and their colour palette."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from . import db as store
from .db import transaction
from .errors import ConflictError, InvalidStateError, ValidationError
from .models import Subject, db
from .permissions import require_facilitator

logger = logging.getLogger(__name__)

# Background/text pairs with readable contrast.
SUBJECT_COLORS = (
    'bg-red-500 text-white',
    'bg-yellow-500 text-black',
    'bg-lime-500 text-black',
    'bg-teal-500 text-black',
    'bg-blue-500 text-white',
    'bg-indigo-500 text-white',
    'bg-fuchsia-500 text-white',
    'bg-slate-500 text-white',
)

DUPLICATE_NAME = 'Subject name already exists in this workspace'


def next_available_color(used_colors: Iterable[str] = ()) -> str:
    used = set(used_colors)
    for color in SUBJECT_COLORS:
        if color not in used:
            return color
    return SUBJECT_COLORS[0]


def color_by_index(index: int) -> str:
    return SUBJECT_COLORS[index % len(SUBJECT_COLORS)]


def list_subjects(workspace_id: int) -> List[Subject]:
    return store.fetch_subjects(workspace_id)


def _clean_name(name: Optional[str]) -> str:
    name = (name or '').strip()
    if not name:
        raise ValidationError('Subject name is required', {'field': 'name'})
    return name


def _name_taken(workspace_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    query = Subject.query.filter(Subject.workspace_id == workspace_id,
                                 db.func.lower(Subject.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Subject.id != exclude_id)
    return query.first() is not None


def create_subject(workspace_id: int, name: str, color: Optional[str], actor) -> Subject:
    require_facilitator(actor, 'create subjects')
    name = _clean_name(name)
    store.get_workspace(workspace_id)
    with transaction(DUPLICATE_NAME):
        if _name_taken(workspace_id, name):
            raise ConflictError(DUPLICATE_NAME, {'name': name})
        if not color:
            color = next_available_color(s.color for s in store.fetch_subjects(workspace_id))
        subject = Subject(workspace_id=workspace_id, name=name, color=color)
        db.session.add(subject)
    logger.info('Created subject %r in workspace=%s', subject.name, workspace_id)
    return subject


def update_subject(subject_id: int, patch: Dict[str, Any], actor) -> Subject:
    require_facilitator(actor, 'edit subjects')
    unknown = sorted(set(patch) - {'name', 'color'})
    if unknown:
        raise ValidationError('These subject fields cannot be updated', {'fields': unknown})
    with transaction(DUPLICATE_NAME):
        subject = store.get_subject(subject_id)
        if 'name' in patch:
            name = _clean_name(patch['name'])
            if _name_taken(subject.workspace_id, name, exclude_id=subject.id):
                raise ConflictError(DUPLICATE_NAME, {'name': name})
            subject.name = name
        if patch.get('color'):
            subject.color = patch['color']
    return subject


def delete_subject(subject_id: int, actor) -> None:
    require_facilitator(actor, 'delete subjects')
    with transaction():
        subject = store.get_subject(subject_id)
        if store.subject_in_use(subject.id):
            raise InvalidStateError(
                'Subject is used by existing tasks and cannot be deleted',
                {'subject_id': subject.id},
            )
        db.session.delete(subject)
    logger.info('Deleted subject id=%s', subject_id)
