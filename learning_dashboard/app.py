import logging

import click
from flask import Blueprint, Flask, jsonify, request
from flask_login import LoginManager, current_user, login_required, login_user, logout_user
from flask_wtf.csrf import CSRFProtect, generate_csrf
from werkzeug.datastructures import MultiDict

from . import board, sprints, stats, subjects, tasks, workspaces
from . import db as store
from .config import Config
from .errors import LearningDashboardError, ValidationError
from .forms import (
    AddMemberForm,
    AssignSprintForm,
    LoginForm,
    SignupForm,
    SprintForm,
    SubjectForm,
    TaskForm,
    TaskProgressForm,
    TaskStatusForm,
    WorkspaceForm,
)
from .logging_setup import setup_logging
from .models import User, db
from .permissions import require_member

logger = logging.getLogger(__name__)

login_manager = LoginManager()
csrf = CSRFProtect()
api = Blueprint('api', __name__, url_prefix='/api')


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'message': 'Unauthorized', 'error': 'unauthorized'}), 401


# ---- request helpers ----

def _payload():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('Expected a JSON object')
    return payload


def _formdata(payload):
    data = MultiDict()
    for key, value in payload.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        data[key] = value if isinstance(value, bool) else str(value)
    return data


def _load_form(form_cls):
    """Validate the JSON body against every field of ``form_cls``."""
    form = form_cls(formdata=_formdata(_payload()), meta={'csrf': False})
    if not form.validate():
        raise ValidationError('Invalid input', form.errors)
    return form


def _load_patch(form_cls, exclude=()):
    """Validate only the fields present in the JSON body; null clears a field."""
    payload = _payload()
    form = form_cls(formdata=_formdata(payload), meta={'csrf': False})
    present = [name for name in payload if name in form._fields and name not in exclude]
    errors = {}
    for name in present:
        if payload[name] is not None and not form[name].validate(form):
            errors[name] = form[name].errors
    if errors:
        raise ValidationError('Invalid input', errors)
    return {name: (None if payload[name] is None else form[name].data) for name in present}


def _no_store(response):
    response.headers['Cache-Control'] = 'no-store'
    return response


def _sprint_for_member(sprint_id):
    sprint = sprints.get_sprint(sprint_id)
    require_member(sprint.workspace_id, current_user)
    return sprint


def _task_for_member(task_id):
    task = tasks.get_task(task_id)
    require_member(task.workspace_id, current_user)
    return task


# ---- identity ----

@api.route('/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@api.route('/register', methods=['POST'])
def register():
    form = _load_form(SignupForm)
    user = User(
        username=form.username.data,
        email=form.email.data,
        first_name=form.first_name.data,
        last_name=form.last_name.data,
        role=form.role.data,
    )
    user.set_password(form.password.data)
    with store.transaction('Username or email already registered'):
        db.session.add(user)
    login_user(user)
    logger.info('Registered user=%s as %s', user.id, user.role)
    return jsonify(user.to_dict()), 201


@api.route('/login', methods=['POST'])
def login():
    form = _load_form(LoginForm)
    user = User.query.filter_by(username=form.username.data).first()
    if user is None or not user.check_password(form.password.data):
        return jsonify({'message': 'Invalid username or password', 'error': 'unauthorized'}), 401
    login_user(user, remember=form.remember_me.data)
    return jsonify(user.to_dict())


@api.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return '', 204


@api.route('/user')
@login_required
def me():
    return jsonify(current_user.to_dict())


# ---- workspaces ----

@api.route('/workspaces')
@login_required
def list_workspaces():
    return _no_store(jsonify(stats.user_workspaces_with_stats(current_user)))


@api.route('/workspaces', methods=['POST'])
@login_required
def create_workspace():
    form = _load_form(WorkspaceForm)
    workspace = workspaces.create_workspace(form.name.data, form.description.data, current_user)
    return jsonify(workspace.to_dict()), 201


@api.route('/workspaces/<int:workspace_id>', methods=['PATCH'])
@login_required
def update_workspace(workspace_id):
    require_member(workspace_id, current_user)
    workspace = workspaces.update_workspace(workspace_id, _load_patch(WorkspaceForm), current_user)
    return jsonify(workspace.to_dict())


@api.route('/workspaces/<int:workspace_id>/members')
@login_required
def list_members(workspace_id):
    require_member(workspace_id, current_user)
    return jsonify([member.to_dict() for member in workspaces.list_members(workspace_id)])


@api.route('/workspaces/<int:workspace_id>/members', methods=['POST'])
@login_required
def add_member(workspace_id):
    require_member(workspace_id, current_user)
    form = _load_form(AddMemberForm)
    member = workspaces.add_member_by_email(workspace_id, form.email.data, current_user)
    return jsonify(member.to_dict()), 201


# ---- subjects ----

@api.route('/workspaces/<int:workspace_id>/subjects')
@login_required
def list_subjects(workspace_id):
    require_member(workspace_id, current_user)
    return jsonify([subject.to_dict() for subject in subjects.list_subjects(workspace_id)])


@api.route('/workspaces/<int:workspace_id>/subjects', methods=['POST'])
@login_required
def create_subject(workspace_id):
    require_member(workspace_id, current_user)
    form = _load_form(SubjectForm)
    subject = subjects.create_subject(workspace_id, form.name.data, form.color.data, current_user)
    return jsonify(subject.to_dict()), 201


@api.route('/subjects/<int:subject_id>', methods=['PATCH'])
@login_required
def update_subject(subject_id):
    require_member(store.get_subject(subject_id).workspace_id, current_user)
    subject = subjects.update_subject(subject_id, _load_patch(SubjectForm), current_user)
    return jsonify(subject.to_dict())


@api.route('/subjects/<int:subject_id>', methods=['DELETE'])
@login_required
def delete_subject(subject_id):
    require_member(store.get_subject(subject_id).workspace_id, current_user)
    subjects.delete_subject(subject_id, current_user)
    return '', 204


# ---- sprints ----

@api.route('/workspaces/<int:workspace_id>/sprints')
@login_required
def list_sprints(workspace_id):
    require_member(workspace_id, current_user)
    return _no_store(jsonify(stats.sprints_with_stats(workspace_id)))


@api.route('/workspaces/<int:workspace_id>/sprints/active')
@login_required
def get_active_sprint(workspace_id):
    require_member(workspace_id, current_user)
    sprint = sprints.active_sprint(workspace_id)
    return _no_store(jsonify(sprint.to_dict() if sprint else None))


@api.route('/workspaces/<int:workspace_id>/sprints', methods=['POST'])
@login_required
def create_sprint(workspace_id):
    require_member(workspace_id, current_user)
    form = _load_form(SprintForm)
    sprint = sprints.create_sprint(
        workspace_id, form.name.data, form.description.data, form.start_date.data, form.end_date.data, current_user
    )
    return jsonify(sprint.to_dict()), 201


@api.route('/sprints/<int:sprint_id>', methods=['PATCH'])
@login_required
def update_sprint(sprint_id):
    _sprint_for_member(sprint_id)
    sprint = sprints.update_sprint(sprint_id, _load_patch(SprintForm), current_user)
    return jsonify(sprint.to_dict())


@api.route('/sprints/<int:sprint_id>/start', methods=['POST'])
@login_required
def start_sprint(sprint_id):
    _sprint_for_member(sprint_id)
    return jsonify(sprints.start_sprint(sprint_id, current_user).to_dict())


@api.route('/sprints/<int:sprint_id>/complete', methods=['POST'])
@login_required
def complete_sprint(sprint_id):
    _sprint_for_member(sprint_id)
    carry_over = _payload().get('carry_over')
    if carry_over is not None and not isinstance(carry_over, bool):
        raise ValidationError('carry_over must be true or false', {'carry_over': carry_over})
    return jsonify(sprints.complete_sprint(sprint_id, current_user, carry_over=carry_over).to_dict())


@api.route('/sprints/<int:sprint_id>/tasks')
@login_required
def list_sprint_tasks(sprint_id):
    _sprint_for_member(sprint_id)
    return jsonify([task.to_dict() for task in tasks.list_sprint_tasks(sprint_id)])


@api.route('/sprints/<int:sprint_id>/board')
@login_required
def sprint_board(sprint_id):
    _sprint_for_member(sprint_id)
    return _no_store(jsonify(board.sprint_board(sprint_id)))


@api.route('/sprints/<int:sprint_id>/progress')
@login_required
def sprint_progress(sprint_id):
    _sprint_for_member(sprint_id)
    return _no_store(jsonify(stats.compute_sprint_progress(sprint_id)))


# ---- tasks ----

@api.route('/workspaces/<int:workspace_id>/tasks')
@login_required
def list_workspace_tasks(workspace_id):
    require_member(workspace_id, current_user)
    return jsonify([task.to_dict() for task in tasks.list_workspace_tasks(workspace_id)])


@api.route('/workspaces/<int:workspace_id>/backlog')
@login_required
def backlog(workspace_id):
    require_member(workspace_id, current_user)
    return _no_store(jsonify(board.backlog_board(workspace_id)))


@api.route('/workspaces/<int:workspace_id>/tasks', methods=['POST'])
@login_required
def create_task(workspace_id):
    require_member(workspace_id, current_user)
    form = _load_form(TaskForm)
    task = tasks.create_task(
        workspace_id,
        form.sprint_id.data,
        form.subject_id.data,
        form.assigned_to.data,
        form.estimated_time.data,
        current_user,
        title=form.title.data,
        description=form.description.data,
        time_spent=form.time_spent.data,
    )
    return jsonify(task.to_dict()), 201


@api.route('/tasks/<int:task_id>', methods=['PATCH'])
@login_required
def update_task(task_id):
    _task_for_member(task_id)
    payload = _payload()
    patch = _load_patch(TaskForm, exclude=('sprint_id',))
    # Passed through so the caller is told which operation to use instead.
    patch.update({key: payload[key] for key in tasks.DEDICATED_FIELDS if key in payload})
    return jsonify(tasks.update_task(task_id, patch, current_user).to_dict())


@api.route('/tasks/<int:task_id>/status', methods=['POST'])
@login_required
def update_task_status(task_id):
    _task_for_member(task_id)
    form = _load_form(TaskStatusForm)
    return jsonify(tasks.update_task_status(task_id, form.status.data, current_user).to_dict())


@api.route('/tasks/<int:task_id>/progress', methods=['POST'])
@login_required
def update_task_progress(task_id):
    _task_for_member(task_id)
    form = _load_form(TaskProgressForm)
    return jsonify(tasks.update_task_progress(task_id, form.progress.data, current_user).to_dict())


@api.route('/tasks/<int:task_id>/sprint', methods=['POST'])
@login_required
def assign_task_to_sprint(task_id):
    _task_for_member(task_id)
    form = _load_form(AssignSprintForm)
    return jsonify(tasks.assign_to_sprint(task_id, form.sprint_id.data, current_user).to_dict())


@api.route('/tasks/<int:task_id>', methods=['DELETE'])
@login_required
def delete_task(task_id):
    _task_for_member(task_id)
    tasks.delete_task(task_id, current_user)
    return '', 204


# ---- dashboards ----

@api.route('/workspaces/<int:workspace_id>/dashboard')
@login_required
def workspace_dashboard(workspace_id):
    require_member(workspace_id, current_user)
    return _no_store(jsonify(stats.compute_workspace_dashboard(workspace_id)))


@api.route('/workspaces/<int:workspace_id>/learners/<int:user_id>/progress')
@login_required
def learner_progress(workspace_id, user_id):
    require_member(workspace_id, current_user)
    return _no_store(jsonify(stats.compute_learner_report(workspace_id, user_id)))


@api.route('/dashboard')
@login_required
def global_dashboard():
    return _no_store(jsonify(stats.compute_global_dashboard(current_user)))


def handle_domain_error(error):
    return jsonify(error.to_dict()), error.http_status


def create_app(config_object=Config, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.config.update(overrides)

    if not app.testing:
        setup_logging(app.config.get('LOG_LEVEL', 'INFO'), app.config.get('LOG_FILE'))

    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)
    app.register_blueprint(api)
    app.register_error_handler(LearningDashboardError, handle_domain_error)

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        store.ensure_db()
        click.echo('Database ready.')

    @app.cli.command('seed-demo')
    def seed_demo_command():
        """Load the demo homeschool workspace."""
        store.ensure_db()
        workspace = store.seed_demo()
        click.echo(f'Seeded workspace "{workspace.name}" (id={workspace.id}).')

    with app.app_context():
        store.ensure_db()
        logger.info('Database ready (%s)', app.config['SQLALCHEMY_DATABASE_URI'])

    return app


if __name__ == '__main__':
    create_app().run(debug=True)
