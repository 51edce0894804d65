# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from learning_dashboard import sprints, subjects, workspaces
from learning_dashboard.app import create_app
from learning_dashboard.config import TestConfig
from learning_dashboard.models import Role, User, db

PASSWORD = 'secret123'


def make_user(username: str, role: str, first_name: str = 'Test', last_name: str = 'User') -> User:
    user = User(
        username=username,
        email=f'{username}@example.com',
        first_name=first_name,
        last_name=last_name,
        role=role,
    )
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def app(tmp_path: Path):
    """
    App backed by a SQLite file per test.

    A file (rather than an in-memory database) lets the concurrency tests open
    independent connections from worker threads.
    """
    app = create_app(TestConfig, SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'learning.db'}")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def ctx(app):
    """Application context for tests that call the core directly.

    HTTP tests must not use this: a pushed context is shared by every request
    made through the test client.
    """
    with app.app_context():
        yield app


@pytest.fixture()
def facilitator(ctx) -> User:
    return make_user('maria', Role.FACILITATOR.value, 'Maria', 'Rivera')


@pytest.fixture()
def learner(ctx) -> User:
    return make_user('sofia', Role.LEARNER.value, 'Sofia', 'Rivera')


@pytest.fixture()
def other_learner(ctx) -> User:
    return make_user('leo', Role.LEARNER.value, 'Leo', 'Rivera')


@pytest.fixture()
def workspace(facilitator, learner, other_learner):
    ws = workspaces.create_workspace('Rivera Family School', 'Weekdays', facilitator)
    workspaces.add_member_by_email(ws.id, learner.email, facilitator)
    workspaces.add_member_by_email(ws.id, other_learner.email, facilitator)
    return ws


@pytest.fixture()
def math_subject(workspace, facilitator):
    return subjects.create_subject(workspace.id, 'Math', None, facilitator)


@pytest.fixture()
def science_subject(workspace, facilitator):
    return subjects.create_subject(workspace.id, 'Science', None, facilitator)


@pytest.fixture()
def draft_sprint(workspace, facilitator):
    return sprints.create_sprint(workspace.id, 'Week 1', 'Fractions', '2026-09-07', '2026-09-11', facilitator)


@pytest.fixture()
def seeded(app) -> SimpleNamespace:
    """Users, a workspace and a subject for HTTP tests, returned as plain ids."""
    with app.app_context():
        maria = make_user('maria', Role.FACILITATOR.value, 'Maria', 'Rivera')
        sofia = make_user('sofia', Role.LEARNER.value, 'Sofia', 'Rivera')
        outsider = make_user('olga', Role.FACILITATOR.value, 'Olga', 'Stone')
        ws = workspaces.create_workspace('Rivera Family School', None, maria)
        workspaces.add_member_by_email(ws.id, sofia.email, maria)
        math = subjects.create_subject(ws.id, 'Math', None, maria)
        return SimpleNamespace(
            facilitator_id=maria.id,
            learner_id=sofia.id,
            outsider_id=outsider.id,
            workspace_id=ws.id,
            subject_id=math.id,
        )


def login(client, username: str, password: str = PASSWORD):
    response = client.post('/api/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response
