"""Homeschool learning sprints: lifecycle, task transitions and progress statistics."""

__version__ = '0.1.0'
