# tests/test_sprints.py

from __future__ import annotations

import threading
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from learning_dashboard import db as store
from learning_dashboard import sprints, tasks
from learning_dashboard.errors import AuthorizationError, ConflictError, InvalidStateError, ValidationError
from learning_dashboard.models import Sprint, SprintState, Task, TaskStatus, User, db


def _sprint(workspace, facilitator, name='Sprint'):
    return sprints.create_sprint(workspace.id, name, None, '2026-09-14', '2026-09-18', facilitator)


class TestCreateSprint:
    def test_created_in_draft(self, workspace, facilitator):
        sprint = sprints.create_sprint(workspace.id, ' Week 2 ', 'Forces', '2026-09-14', date(2026, 9, 18), facilitator)
        assert sprint.state == SprintState.DRAFT
        assert sprint.name == 'Week 2'
        assert sprint.start_date == date(2026, 9, 14)
        assert sprint.end_date == date(2026, 9, 18)
        assert sprint.created_by == facilitator.id

    def test_end_before_start_is_rejected(self, workspace, facilitator):
        with pytest.raises(ValidationError):
            sprints.create_sprint(workspace.id, 'Backwards', None, '2026-09-18', '2026-09-14', facilitator)

    def test_single_day_sprint_is_allowed(self, workspace, facilitator):
        sprint = sprints.create_sprint(workspace.id, 'Field trip', None, '2026-09-18', '2026-09-18', facilitator)
        assert sprint.start_date == sprint.end_date

    def test_learner_cannot_create(self, workspace, learner):
        with pytest.raises(AuthorizationError):
            _sprint(workspace, learner)

    def test_bad_date_is_a_validation_error(self, workspace, facilitator):
        with pytest.raises(ValidationError):
            sprints.create_sprint(workspace.id, 'Week', None, 'next monday', '2026-09-18', facilitator)


class TestLifecycle:
    def test_start_and_complete_scenario(self, workspace, facilitator, draft_sprint):
        s1 = sprints.start_sprint(draft_sprint.id, facilitator)
        assert s1.state == SprintState.ACTIVE

        s2 = _sprint(workspace, facilitator, 'Week 2')
        assert s2.state == SprintState.DRAFT
        with pytest.raises(ConflictError):
            sprints.start_sprint(s2.id, facilitator)
        assert store.get_sprint(s2.id).state == SprintState.DRAFT

        assert sprints.complete_sprint(s1.id, facilitator).state == SprintState.COMPLETED
        assert sprints.start_sprint(s2.id, facilitator).state == SprintState.ACTIVE

    def test_complete_twice_fails_and_state_stays(self, facilitator, draft_sprint):
        sprints.start_sprint(draft_sprint.id, facilitator)
        sprints.complete_sprint(draft_sprint.id, facilitator)
        with pytest.raises(InvalidStateError):
            sprints.complete_sprint(draft_sprint.id, facilitator)
        assert store.get_sprint(draft_sprint.id).state == SprintState.COMPLETED

    def test_completed_sprint_cannot_restart(self, facilitator, draft_sprint):
        sprints.start_sprint(draft_sprint.id, facilitator)
        sprints.complete_sprint(draft_sprint.id, facilitator)
        with pytest.raises(InvalidStateError):
            sprints.start_sprint(draft_sprint.id, facilitator)

    def test_draft_cannot_be_completed(self, facilitator, draft_sprint):
        with pytest.raises(InvalidStateError):
            sprints.complete_sprint(draft_sprint.id, facilitator)

    def test_active_sprint_cannot_be_started_again(self, facilitator, draft_sprint):
        sprints.start_sprint(draft_sprint.id, facilitator)
        with pytest.raises(InvalidStateError):
            sprints.start_sprint(draft_sprint.id, facilitator)

    def test_learner_cannot_transition(self, learner, draft_sprint):
        with pytest.raises(AuthorizationError):
            sprints.start_sprint(draft_sprint.id, learner)

    def test_active_sprints_are_per_workspace(self, facilitator, draft_sprint):
        from learning_dashboard import workspaces

        other = workspaces.create_workspace('Co-op', None, facilitator)
        other_sprint = _sprint(other, facilitator)
        sprints.start_sprint(draft_sprint.id, facilitator)
        assert sprints.start_sprint(other_sprint.id, facilitator).state == SprintState.ACTIVE

    def test_active_sprint_lookup(self, workspace, facilitator, draft_sprint):
        assert sprints.active_sprint(workspace.id) is None
        sprints.start_sprint(draft_sprint.id, facilitator)
        assert sprints.active_sprint(workspace.id).id == draft_sprint.id


class TestUpdateSprint:
    def test_draft_is_editable(self, facilitator, draft_sprint):
        sprint = sprints.update_sprint(draft_sprint.id, {'name': 'Week 1b', 'end_date': '2026-09-12'}, facilitator)
        assert sprint.name == 'Week 1b'
        assert sprint.end_date == date(2026, 9, 12)

    def test_dates_checked_against_existing_values(self, facilitator, draft_sprint):
        with pytest.raises(ValidationError):
            sprints.update_sprint(draft_sprint.id, {'end_date': '2026-09-01'}, facilitator)

    def test_completed_sprint_is_immutable(self, facilitator, draft_sprint):
        sprints.start_sprint(draft_sprint.id, facilitator)
        sprints.complete_sprint(draft_sprint.id, facilitator)
        with pytest.raises(InvalidStateError):
            sprints.update_sprint(draft_sprint.id, {'name': 'Rewrite history'}, facilitator)
        assert store.get_sprint(draft_sprint.id).name == 'Week 1'

    def test_state_is_not_patchable(self, facilitator, draft_sprint):
        with pytest.raises(ValidationError):
            sprints.update_sprint(draft_sprint.id, {'state': 'active'}, facilitator)


class TestCarryOver:
    def _fill(self, workspace, facilitator, learner, sprint):
        ids = {}
        for status in ('todo', 'in_progress', 'done'):
            task = tasks.create_task(workspace.id, sprint.id, None, learner.id, '1h', facilitator,
                                     title=f'{status} task', time_spent='20min')
            ids[status] = task.id
        tasks.update_task_status(ids['in_progress'], 'in_progress', learner)
        tasks.update_task_progress(ids['in_progress'], 60, learner)
        tasks.update_task_status(ids['done'], 'in_progress', learner)
        tasks.update_task_status(ids['done'], 'done', learner)
        return ids

    def test_unfinished_tasks_copied_to_backlog(self, workspace, facilitator, learner, draft_sprint):
        sprints.start_sprint(draft_sprint.id, facilitator)
        ids = self._fill(workspace, facilitator, learner, draft_sprint)

        sprints.complete_sprint(draft_sprint.id, facilitator)

        backlog = tasks.list_backlog_tasks(workspace.id)
        assert sorted(t.title for t in backlog) == ['in_progress task', 'todo task']
        for copy in backlog:
            assert copy.status == TaskStatus.TODO
            assert copy.progress == 0
            assert copy.completed_at is None
            assert copy.assigned_to == learner.id
            assert copy.id not in ids.values()
        # Originals keep their state in the completed sprint.
        assert store.get_task(ids['in_progress']).status == TaskStatus.IN_PROGRESS
        assert store.get_task(ids['in_progress']).sprint_id == draft_sprint.id
        assert len(tasks.list_sprint_tasks(draft_sprint.id)) == 3

    def test_carry_over_can_be_disabled(self, workspace, facilitator, learner, draft_sprint):
        sprints.start_sprint(draft_sprint.id, facilitator)
        self._fill(workspace, facilitator, learner, draft_sprint)
        sprints.complete_sprint(draft_sprint.id, facilitator, carry_over=False)
        assert tasks.list_backlog_tasks(workspace.id) == []

    def test_config_default(self, app, workspace, facilitator, learner, draft_sprint):
        app.config['CARRY_OVER_UNFINISHED_TASKS'] = False
        sprints.start_sprint(draft_sprint.id, facilitator)
        self._fill(workspace, facilitator, learner, draft_sprint)
        sprints.complete_sprint(draft_sprint.id, facilitator)
        assert tasks.list_backlog_tasks(workspace.id) == []


class TestSingleActiveGuard:
    def test_database_rejects_second_active_sprint(self, workspace, facilitator):
        first = _sprint(workspace, facilitator, 'A')
        second = _sprint(workspace, facilitator, 'B')
        first.state = SprintState.ACTIVE.value
        second.state = SprintState.ACTIVE.value
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_race_past_the_check_is_a_conflict(self, monkeypatch, workspace, facilitator):
        first = _sprint(workspace, facilitator, 'A')
        second = _sprint(workspace, facilitator, 'B')
        sprints.start_sprint(first.id, facilitator)

        # Simulate a concurrent start that read "no active sprint" before ours committed.
        monkeypatch.setattr(store, 'fetch_active_sprint', lambda *args, **kwargs: None)
        with pytest.raises(ConflictError):
            sprints.start_sprint(second.id, facilitator)
        monkeypatch.undo()

        assert store.get_sprint(second.id).state == SprintState.DRAFT
        assert Sprint.query.filter_by(workspace_id=workspace.id, state='active').count() == 1

    def test_concurrent_starts_leave_one_active(self, app, workspace, facilitator):
        sprint_ids = [_sprint(workspace, facilitator, name).id for name in ('A', 'B', 'C')]
        facilitator_id = facilitator.id
        barrier = threading.Barrier(len(sprint_ids))
        results = []
        lock = threading.Lock()

        def worker(sprint_id):
            with app.app_context():
                actor = db.session.get(User, facilitator_id)
                barrier.wait()
                try:
                    sprints.start_sprint(sprint_id, actor)
                    outcome = 'started'
                except ConflictError:
                    outcome = 'conflict'
                with lock:
                    results.append(outcome)

        threads = [threading.Thread(target=worker, args=(sprint_id,)) for sprint_id in sprint_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(results) == ['conflict', 'conflict', 'started']
        db.session.expire_all()
        assert Sprint.query.filter_by(workspace_id=workspace.id, state='active').count() == 1


def test_list_sprints_newest_first(workspace, facilitator):
    a = _sprint(workspace, facilitator, 'A')
    b = _sprint(workspace, facilitator, 'B')
    assert [s.id for s in sprints.list_sprints(workspace.id)][:2] == [b.id, a.id]


def test_completing_a_sprint_blocks_task_edits(workspace, facilitator, learner, draft_sprint):
    sprints.start_sprint(draft_sprint.id, facilitator)
    task = tasks.create_task(workspace.id, draft_sprint.id, None, learner.id, None, facilitator, title='Essay')
    sprints.complete_sprint(draft_sprint.id, facilitator)
    with pytest.raises(InvalidStateError):
        tasks.update_task_status(task.id, 'in_progress', learner)
    assert db.session.get(Task, task.id).status == TaskStatus.TODO
