from datetime import datetime, timezone
from enum import Enum

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    FACILITATOR = 'facilitator'
    LEARNER = 'learner'


class SprintState(str, Enum):
    DRAFT = 'draft'
    ACTIVE = 'active'
    COMPLETED = 'completed'


class TaskStatus(str, Enum):
    TODO = 'todo'
    IN_PROGRESS = 'in_progress'
    DONE = 'done'


class User(UserMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.LEARNER.value)
    created_at = db.Column(db.DateTime, default=utcnow)

    memberships = db.relationship('WorkspaceMember', backref='user', lazy='dynamic', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_facilitator(self):
        return self.role == Role.FACILITATOR

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    @property
    def initials(self):
        return f'{self.first_name[:1]}{self.last_name[:1]}'.upper()

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'role': self.role,
        }

    def __repr__(self):
        return f'<User {self.username}>'


class Workspace(db.Model):
    __tablename__ = 'workspaces'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])
    members = db.relationship('WorkspaceMember', backref='workspace', lazy='dynamic', cascade='all, delete-orphan')
    sprints = db.relationship('Sprint', backref='workspace', lazy='dynamic', cascade='all, delete-orphan')
    tasks = db.relationship('Task', backref='workspace', lazy='dynamic', cascade='all, delete-orphan')
    subjects = db.relationship('Subject', backref='workspace', lazy='dynamic', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Workspace {self.name}>'


class WorkspaceMember(db.Model):
    __tablename__ = 'workspace_members'
    __table_args__ = (db.UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_members_user'),)
    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('workspaces.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)
    joined_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'workspace_id': self.workspace_id,
            'user_id': self.user_id,
            'role': self.role,
            'joined_at': _iso(self.joined_at),
            'user': self.user.to_dict() if self.user else None,
        }

    def __repr__(self):
        return f'<WorkspaceMember {self.user_id}@{self.workspace_id}>'


class Sprint(db.Model):
    __tablename__ = 'sprints'
    # At most one active sprint per workspace, enforced by the database as well.
    __table_args__ = (
        db.Index(
            'uq_sprints_one_active_per_workspace',
            'workspace_id',
            unique=True,
            sqlite_where=text("state = 'active'"),
            postgresql_where=text("state = 'active'"),
        ),
    )
    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('workspaces.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    state = db.Column(db.String(20), nullable=False, default=SprintState.DRAFT.value)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])
    tasks = db.relationship('Task', backref='sprint', lazy='dynamic')

    @property
    def is_completed(self):
        return self.state == SprintState.COMPLETED

    def to_dict(self):
        return {
            'id': self.id,
            'workspace_id': self.workspace_id,
            'name': self.name,
            'description': self.description,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'state': self.state,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Sprint {self.name} ({self.state})>'


class Subject(db.Model):
    __tablename__ = 'subjects'
    __table_args__ = (db.UniqueConstraint('workspace_id', 'name', name='uq_subjects_workspace_name'),)
    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('workspaces.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(60), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {'id': self.id, 'workspace_id': self.workspace_id, 'name': self.name, 'color': self.color}

    def __repr__(self):
        return f'<Subject {self.name}>'


class Task(db.Model):
    __tablename__ = 'tasks'
    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('workspaces.id'), nullable=False, index=True)
    sprint_id = db.Column(db.Integer, db.ForeignKey('sprints.id'), nullable=True, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id', ondelete='RESTRICT'), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.TODO.value)
    # Free text as typed by facilitators, e.g. "30min" or "1.5h".
    estimated_time = db.Column(db.String(40))
    time_spent = db.Column(db.String(40))
    progress = db.Column(db.Integer, nullable=False, default=0)
    assigned_to = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    subject = db.relationship('Subject')
    assignee = db.relationship('User', foreign_keys=[assigned_to])
    creator = db.relationship('User', foreign_keys=[created_by])

    def to_dict(self):
        return {
            'id': self.id,
            'workspace_id': self.workspace_id,
            'sprint_id': self.sprint_id,
            'title': self.title,
            'description': self.description,
            'subject_id': self.subject_id,
            'status': self.status,
            'estimated_time': self.estimated_time,
            'time_spent': self.time_spent,
            'progress': self.progress,
            'assigned_to': self.assigned_to,
            'created_by': self.created_by,
            'completed_at': _iso(self.completed_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'assignee': self.assignee.to_dict() if self.assignee else None,
        }

    def __repr__(self):
        return f'<Task {self.title}>'


def _iso(value):
    return value.isoformat() if value is not None else None
