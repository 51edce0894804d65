# tests/test_seed.py

from __future__ import annotations

import pytest

from learning_dashboard import board, sprints, stats
from learning_dashboard import db as store
from learning_dashboard.data import demo_workspace
from learning_dashboard.errors import ConflictError
from learning_dashboard.models import TaskStatus


def test_seed_demo(ctx):
    workspace = store.seed_demo()

    assert workspace.name == demo_workspace.name
    assert len(store.fetch_members(workspace.id)) == 3
    assert [s.name for s in store.fetch_subjects(workspace.id)] == ['English', 'History', 'Math', 'Science']

    active = sprints.active_sprint(workspace.id)
    assert active.name.startswith('Week 2')
    assert [s['state'] for s in stats.sprints_with_stats(workspace.id)] == ['active', 'draft', 'completed']

    for task in store.fetch_workspace_tasks(workspace.id):
        assert (task.status == TaskStatus.DONE) == (task.completed_at is not None)

    assert len(board.backlog_board(workspace.id)['columns']['todo']) == 2
    assert stats.compute_workspace_dashboard(workspace.id)['active_sprint']['stats']['completion_rate'] == 25


def test_seed_demo_twice_conflicts(ctx):
    store.seed_demo()
    with pytest.raises(ConflictError):
        store.seed_demo()


def test_seed_command(app):
    result = app.test_cli_runner().invoke(args=['seed-demo'])
    assert 'Seeded workspace' in result.output
