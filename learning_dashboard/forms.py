# forms.py
from flask_wtf import FlaskForm
from wtforms import BooleanField, DateField, IntegerField, PasswordField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Email, EqualTo, InputRequired, Length, Optional, ValidationError

from .db import get_user_by_email
from .models import Role, TaskStatus, User


class LoginForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired(), Length(min=3, max=80)])
    password = PasswordField('Password', validators=[DataRequired()])
    remember_me = BooleanField('Remember Me')


class SignupForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired(), Length(min=3, max=80)])
    email = StringField('Email', validators=[DataRequired(), Email()])
    first_name = StringField('First Name', validators=[DataRequired(), Length(max=80)])
    last_name = StringField('Last Name', validators=[DataRequired(), Length(max=80)])
    role = SelectField('Role', choices=[(Role.FACILITATOR.value, 'Facilitator'), (Role.LEARNER.value, 'Learner')])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=6)])
    password_confirm = PasswordField('Confirm Password', validators=[DataRequired(), EqualTo('password')])

    def validate_username(self, username):
        user = User.query.filter_by(username=username.data).first()
        if user:
            raise ValidationError('Username already taken.')

    def validate_email(self, email):
        # Emails are unique ignoring case.
        if get_user_by_email(email.data) is not None:
            raise ValidationError('Email already registered.')


class WorkspaceForm(FlaskForm):
    name = StringField('Workspace Name', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description')


class AddMemberForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])


class SubjectForm(FlaskForm):
    name = StringField('Subject', validators=[DataRequired(), Length(max=100)])
    color = StringField('Color', validators=[Optional(), Length(max=60)])


class SprintForm(FlaskForm):
    name = StringField('Sprint Name', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description')
    start_date = DateField('Start Date', format='%Y-%m-%d', validators=[DataRequired()])
    end_date = DateField('End Date', format='%Y-%m-%d', validators=[DataRequired()])

    def validate_end_date(self, end_date):
        if self.start_date.data and end_date.data and end_date.data < self.start_date.data:
            raise ValidationError('End date cannot be before start date.')


class TaskForm(FlaskForm):
    title = StringField('Task Title', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description')
    subject_id = IntegerField('Subject', validators=[Optional()])
    sprint_id = IntegerField('Sprint', validators=[Optional()])
    assigned_to = IntegerField('Assigned To', validators=[Optional()])
    estimated_time = StringField('Estimated Time', validators=[Optional(), Length(max=40)])
    time_spent = StringField('Time Spent', validators=[Optional(), Length(max=40)])


class TaskStatusForm(FlaskForm):
    status = SelectField('Status', choices=[
        (TaskStatus.TODO.value, 'To Do'),
        (TaskStatus.IN_PROGRESS.value, 'In Progress'),
        (TaskStatus.DONE.value, 'Done'),
    ])


class TaskProgressForm(FlaskForm):
    progress = IntegerField('Progress', validators=[InputRequired()])


class AssignSprintForm(FlaskForm):
    sprint_id = IntegerField('Sprint', validators=[Optional()])
