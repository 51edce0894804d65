"""SQLAlchemy helpers for persisting workspaces, sprints and tasks."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .data import SeedTask, SeedWorkspace, demo_workspace
from .errors import ConflictError, NotFoundError, StorageError
from .models import (
    Role,
    Sprint,
    SprintState,
    Subject,
    Task,
    TaskStatus,
    User,
    Workspace,
    WorkspaceMember,
    db,
    utcnow,
)

logger = logging.getLogger(__name__)


def ensure_db() -> None:
    """Create tables if they are missing."""
    try:
        db.create_all()
    except SQLAlchemyError as exc:
        raise StorageError('Database is unavailable') from exc


@contextmanager
def transaction(conflict_message: str = 'The change conflicts with the current data') -> Iterator:
    """Commit the session on success, roll back on any failure.

    ``IntegrityError`` means a uniqueness guard fired (for example a second
    active sprint) and surfaces as ``ConflictError``; every other driver
    failure is a ``StorageError``. Nothing is retried here.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning('Integrity guard rejected write: %s', exc.orig)
        raise ConflictError(conflict_message) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception('Storage failure')
        raise StorageError('The database could not complete the request') from exc
    except Exception:
        db.session.rollback()
        raise


def _read(query_fn):
    try:
        return query_fn()
    except SQLAlchemyError as exc:
        logger.exception('Storage failure while reading')
        raise StorageError('The database could not complete the request') from exc


# ---- lookups ----

def get_user(user_id: int) -> Optional[User]:
    return _read(lambda: db.session.get(User, user_id))


def get_user_by_email(email: str) -> Optional[User]:
    return _read(lambda: User.query.filter(db.func.lower(User.email) == email.strip().lower()).first())


def get_workspace(workspace_id: int) -> Workspace:
    workspace = _read(lambda: db.session.get(Workspace, workspace_id))
    if workspace is None:
        raise NotFoundError('Workspace not found', {'workspace_id': workspace_id})
    return workspace


def get_sprint(sprint_id: int) -> Sprint:
    sprint = _read(lambda: db.session.get(Sprint, sprint_id))
    if sprint is None:
        raise NotFoundError('Sprint not found', {'sprint_id': sprint_id})
    return sprint


def get_task(task_id: int) -> Task:
    task = _read(lambda: db.session.get(Task, task_id))
    if task is None:
        raise NotFoundError('Task not found', {'task_id': task_id})
    return task


def get_subject(subject_id: int) -> Subject:
    subject = _read(lambda: db.session.get(Subject, subject_id))
    if subject is None:
        raise NotFoundError('Subject not found', {'subject_id': subject_id})
    return subject


def fetch_membership(workspace_id: int, user_id: int) -> Optional[WorkspaceMember]:
    return _read(lambda: WorkspaceMember.query.filter_by(workspace_id=workspace_id, user_id=user_id).first())


def is_workspace_member(workspace_id: int, user_id: int) -> bool:
    return fetch_membership(workspace_id, user_id) is not None


def fetch_members(workspace_id: int) -> List[WorkspaceMember]:
    return _read(lambda: WorkspaceMember.query.filter_by(workspace_id=workspace_id)
                 .order_by(WorkspaceMember.joined_at, WorkspaceMember.id).all())


def fetch_learners(workspace_id: int) -> List[User]:
    return _read(lambda: User.query.join(WorkspaceMember, WorkspaceMember.user_id == User.id)
                 .filter(WorkspaceMember.workspace_id == workspace_id, User.role == Role.LEARNER.value)
                 .order_by(User.first_name, User.id).all())


def fetch_user_workspaces(user_id: int) -> List[Workspace]:
    return _read(lambda: Workspace.query.join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
                 .filter(WorkspaceMember.user_id == user_id)
                 .order_by(Workspace.created_at.desc(), Workspace.id.desc()).all())


def fetch_sprints(workspace_id: int) -> List[Sprint]:
    return _read(lambda: Sprint.query.filter_by(workspace_id=workspace_id)
                 .order_by(Sprint.created_at.desc(), Sprint.id.desc()).all())


def fetch_sprints_by_state(workspace_id: int) -> List[Sprint]:
    """Active first, then drafts, then completed; newest first in each group."""
    order = case(
        (Sprint.state == SprintState.ACTIVE.value, 1),
        (Sprint.state == SprintState.DRAFT.value, 2),
        else_=3,
    )
    return _read(lambda: Sprint.query.filter_by(workspace_id=workspace_id)
                 .order_by(order, Sprint.created_at.desc(), Sprint.id.desc()).all())


def fetch_active_sprint(workspace_id: int, for_update: bool = False) -> Optional[Sprint]:
    def query():
        q = Sprint.query.filter_by(workspace_id=workspace_id, state=SprintState.ACTIVE.value)
        if for_update:
            q = q.with_for_update()
        return q.first()
    return _read(query)


def fetch_workspace_tasks(workspace_id: int) -> List[Task]:
    return _read(lambda: Task.query.filter_by(workspace_id=workspace_id).order_by(Task.created_at, Task.id).all())


def fetch_sprint_tasks(sprint_id: int) -> List[Task]:
    return _read(lambda: Task.query.filter_by(sprint_id=sprint_id).order_by(Task.created_at, Task.id).all())


def fetch_backlog_tasks(workspace_id: int) -> List[Task]:
    return _read(lambda: Task.query.filter(Task.workspace_id == workspace_id, Task.sprint_id.is_(None))
                 .order_by(Task.created_at, Task.id).all())


def fetch_learner_tasks(workspace_id: int, user_id: int) -> List[Task]:
    return _read(lambda: Task.query.filter_by(workspace_id=workspace_id, assigned_to=user_id)
                 .order_by(Task.created_at, Task.id).all())


def fetch_subjects(workspace_id: int) -> List[Subject]:
    return _read(lambda: Subject.query.filter_by(workspace_id=workspace_id).order_by(Subject.name).all())


def subject_in_use(subject_id: int) -> bool:
    return _read(lambda: Task.query.filter_by(subject_id=subject_id).first()) is not None


# ---- demo data ----

def seed_demo(seed: SeedWorkspace = demo_workspace) -> Workspace:
    """Load the demo workspace from data.py into the database."""
    with transaction('Demo data already loaded'):
        users = {}
        for seed_user in [seed.facilitator] + seed.learners:
            user = User(
                username=seed_user.username,
                email=seed_user.email,
                first_name=seed_user.first_name,
                last_name=seed_user.last_name,
                role=seed_user.role,
            )
            user.set_password(seed_user.password)
            db.session.add(user)
            users[seed_user.username] = user
        facilitator = users[seed.facilitator.username]

        workspace = Workspace(name=seed.name, description=seed.description, creator=facilitator)
        db.session.add(workspace)
        for user in users.values():
            db.session.add(WorkspaceMember(workspace=workspace, user=user, role=user.role))

        subjects = {}
        for seed_subject in seed.subjects:
            subject = Subject(workspace=workspace, name=seed_subject.name, color=seed_subject.color)
            db.session.add(subject)
            subjects[seed_subject.name] = subject

        for seed_sprint in seed.sprints:
            sprint = Sprint(
                workspace=workspace,
                name=seed_sprint.name,
                description=seed_sprint.description,
                start_date=date.fromisoformat(seed_sprint.start),
                end_date=date.fromisoformat(seed_sprint.end),
                state=seed_sprint.state,
                creator=facilitator,
            )
            db.session.add(sprint)
            for seed_task in seed_sprint.tasks:
                db.session.add(_seed_task(seed_task, workspace, sprint, subjects, users, facilitator))
        for seed_task in seed.backlog:
            db.session.add(_seed_task(seed_task, workspace, None, subjects, users, facilitator))
    logger.info('Seeded demo workspace %r (id=%s)', workspace.name, workspace.id)
    return workspace


def _seed_task(seed_task: SeedTask, workspace, sprint, subjects, users, facilitator) -> Task:
    now = utcnow()
    return Task(
        workspace=workspace,
        sprint=sprint,
        title=seed_task.title,
        subject=subjects.get(seed_task.subject),
        status=seed_task.status,
        estimated_time=seed_task.estimated_time,
        time_spent=seed_task.time_spent,
        progress=seed_task.progress,
        assignee=users.get(seed_task.assignee) if seed_task.assignee else None,
        creator=facilitator,
        completed_at=now if seed_task.status == TaskStatus.DONE else None,
        created_at=now,
        updated_at=now,
    )
