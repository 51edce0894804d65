"""Statistics derived from the current task set.

Nothing here is stored. The ``compute_*`` functions over task lists are pure;
the loaders further down read the store and feed them. Every dashboard view is
rebuilt from the full task set on each request, so a sprint transition is
visible on the next read with no invalidation step.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from . import db as store
from .errors import NotFoundError
from .models import Role, SprintState, TaskStatus, utcnow

logger = logging.getLogger(__name__)

_DURATION = re.compile(r'^\s*(\d+(?:\.\d+)?|\.\d+)\s*(h|min)\s*$', re.IGNORECASE)


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def completion_rate(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return int(round_half_up(100 * completed / total))


@dataclass
class SprintStats:
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    todo_tasks: int = 0
    completion_rate: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SubjectProgress:
    subject_id: int
    name: Optional[str]
    color: Optional[str]
    completed: int = 0
    total: int = 0
    rate: int = 0


@dataclass
class LearnerProgress:
    id: int
    name: str
    initials: str
    total_tasks: int = 0
    tasks_completed: int = 0
    in_progress_tasks: int = 0
    todo_tasks: int = 0
    completion_rate: int = 0
    time_spent_hours: float = 0.0
    sprint_count: int = 0
    subjects: List[SubjectProgress] = field(default_factory=list)

    def subject(self, subject_id: int) -> Optional[SubjectProgress]:
        for entry in self.subjects:
            if entry.subject_id == subject_id:
                return entry
        return None

    def to_dict(self) -> dict:
        data = asdict(self)
        data['time_spent'] = format_hours(self.time_spent_hours)
        return data


@dataclass
class WorkspaceStats:
    learner_count: int = 0
    active_sprint_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ---- pure computations ----

def compute_sprint_stats(tasks: Iterable) -> SprintStats:
    stats = SprintStats()
    for task in tasks:
        stats.total_tasks += 1
        if task.status == TaskStatus.DONE:
            stats.completed_tasks += 1
        elif task.status == TaskStatus.IN_PROGRESS:
            stats.in_progress_tasks += 1
        elif task.status == TaskStatus.TODO:
            stats.todo_tasks += 1
    stats.completion_rate = completion_rate(stats.completed_tasks, stats.total_tasks)
    return stats


def parse_duration_minutes(value: Optional[str]) -> Optional[float]:
    """Minutes for ``"<number>h"`` or ``"<number>min"``; None if unparsable."""
    if not value or not isinstance(value, str):
        return None
    match = _DURATION.match(value)
    if match is None:
        return None
    minutes = float(match.group(1))
    if match.group(2).lower() == 'h':
        minutes *= 60
    if not math.isfinite(minutes):
        return None
    return minutes


def compute_time_spent(tasks: Iterable) -> float:
    """Total ``time_spent`` in hours, one decimal. Bad values count as zero."""
    minutes = 0.0
    for task in tasks:
        parsed = parse_duration_minutes(task.time_spent)
        if parsed is None or not math.isfinite(minutes + parsed):
            if task.time_spent:
                logger.debug('Ignoring unparsable time_spent %r on task=%s', task.time_spent, getattr(task, 'id', None))
            continue
        minutes += parsed
    return round_half_up(minutes / 60, 1)


def format_hours(hours: float) -> str:
    if hours <= 0:
        return '0h'
    if float(hours).is_integer():
        return f'{int(hours)}h'
    return f'{hours}h'


def compute_learner_progress(learner, tasks: Iterable, subjects: Iterable) -> LearnerProgress:
    """Progress of one learner over the tasks assigned to them."""
    own = [task for task in tasks if task.assigned_to == learner.id]
    counts = compute_sprint_stats(own)
    subject_lookup = {subject.id: subject for subject in subjects}

    buckets: Dict[int, SubjectProgress] = {}
    for task in own:
        if task.subject_id is None:
            continue
        bucket = buckets.get(task.subject_id)
        if bucket is None:
            subject = subject_lookup.get(task.subject_id)
            bucket = buckets[task.subject_id] = SubjectProgress(
                subject_id=task.subject_id,
                name=subject.name if subject is not None else None,
                color=subject.color if subject is not None else None,
            )
        bucket.total += 1
        if task.status == TaskStatus.DONE:
            bucket.completed += 1
    for bucket in buckets.values():
        bucket.rate = completion_rate(bucket.completed, bucket.total)

    return LearnerProgress(
        id=learner.id,
        name=learner.full_name,
        initials=learner.initials,
        total_tasks=counts.total_tasks,
        tasks_completed=counts.completed_tasks,
        in_progress_tasks=counts.in_progress_tasks,
        todo_tasks=counts.todo_tasks,
        completion_rate=counts.completion_rate,
        time_spent_hours=compute_time_spent(own),
        sprint_count=len({task.sprint_id for task in own if task.sprint_id is not None}),
        subjects=sorted(buckets.values(), key=lambda b: ((b.name or '').lower(), b.subject_id)),
    )


def compute_workspace_stats(members: Iterable, sprints: Iterable) -> WorkspaceStats:
    return WorkspaceStats(
        learner_count=sum(1 for member in members if member.user.role == Role.LEARNER),
        active_sprint_count=sum(1 for sprint in sprints if sprint.state == SprintState.ACTIVE),
    )


def _learner_progress_for(learners: Sequence, tasks: Sequence, subjects: Sequence) -> List[LearnerProgress]:
    return [compute_learner_progress(learner, tasks, subjects) for learner in learners]


# ---- loaders ----

def compute_workspace_dashboard(workspace_id: int) -> dict:
    """Payload behind the workspace dashboard and its progress widgets."""
    store.get_workspace(workspace_id)
    tasks = store.fetch_workspace_tasks(workspace_id)
    subjects = store.fetch_subjects(workspace_id)
    learners = store.fetch_learners(workspace_id)
    active = store.fetch_active_sprint(workspace_id)

    active_summary = None
    if active is not None:
        sprint_tasks = [task for task in tasks if task.sprint_id == active.id]
        active_summary = dict(active.to_dict())
        active_summary['stats'] = compute_sprint_stats(sprint_tasks).to_dict()
        active_summary['time_spent'] = format_hours(compute_time_spent(sprint_tasks))

    return {
        'workspace_id': workspace_id,
        'task_stats': compute_sprint_stats(tasks).to_dict(),
        'time_spent': format_hours(compute_time_spent(tasks)),
        'active_sprint': active_summary,
        'learners': [p.to_dict() for p in _learner_progress_for(learners, tasks, subjects)],
    }


def compute_sprint_progress(sprint_id: int) -> dict:
    sprint = store.get_sprint(sprint_id)
    tasks = store.fetch_sprint_tasks(sprint.id)
    subjects = store.fetch_subjects(sprint.workspace_id)
    learners = store.fetch_learners(sprint.workspace_id)
    return {
        'sprint': sprint.to_dict(),
        'stats': compute_sprint_stats(tasks).to_dict(),
        'time_spent': format_hours(compute_time_spent(tasks)),
        'learners': [p.to_dict() for p in _learner_progress_for(learners, tasks, subjects)],
    }


def compute_learner_report(workspace_id: int, learner_id: int) -> dict:
    learner = store.get_user(learner_id)
    if learner is None or not store.is_workspace_member(workspace_id, learner_id):
        raise NotFoundError('Learner not found in this workspace', {'user_id': learner_id})
    tasks = store.fetch_learner_tasks(workspace_id, learner_id)
    subjects = store.fetch_subjects(workspace_id)
    return compute_learner_progress(learner, tasks, subjects).to_dict()


def sprints_with_stats(workspace_id: int) -> List[dict]:
    sprints = store.fetch_sprints_by_state(workspace_id)
    by_sprint: Dict[int, list] = {}
    for task in store.fetch_workspace_tasks(workspace_id):
        if task.sprint_id is not None:
            by_sprint.setdefault(task.sprint_id, []).append(task)
    result = []
    for sprint in sprints:
        data = sprint.to_dict()
        data['task_stats'] = compute_sprint_stats(by_sprint.get(sprint.id, [])).to_dict()
        result.append(data)
    return result


def user_workspaces_with_stats(user) -> List[dict]:
    result = []
    for workspace in store.fetch_user_workspaces(user.id):
        stats = compute_workspace_stats(store.fetch_members(workspace.id), store.fetch_sprints(workspace.id))
        data = workspace.to_dict()
        data.update(stats.to_dict())
        result.append(data)
    return result


def compute_global_dashboard(user, weekly_window: timedelta = timedelta(days=7)) -> dict:
    """Totals across every workspace the user belongs to."""
    since = utcnow() - weekly_window
    totals = {
        'total_tasks': 0,
        'completed_tasks': 0,
        'total_sprints': 0,
        'active_sprints': 0,
        'total_learners': 0,
        'weekly_hours': 0.0,
    }
    learner_ids = set()
    recent = []
    for workspace in store.fetch_user_workspaces(user.id):
        tasks = store.fetch_workspace_tasks(workspace.id)
        counts = compute_sprint_stats(tasks)
        totals['total_tasks'] += counts.total_tasks
        totals['completed_tasks'] += counts.completed_tasks
        sprints = store.fetch_sprints(workspace.id)
        totals['total_sprints'] += len(sprints)
        totals['active_sprints'] += sum(1 for sprint in sprints if sprint.state == SprintState.ACTIVE)
        learner_ids.update(learner.id for learner in store.fetch_learners(workspace.id))
        recent.extend(task for task in tasks if task.completed_at is not None and task.completed_at >= since)
    totals['total_learners'] = len(learner_ids)
    totals['weekly_hours'] = compute_time_spent(recent)
    return totals
