"""Error taxonomy shared by the lifecycle, transition and aggregation code.

Every error carries a user-facing ``message``; the HTTP layer renders it
together with ``kind`` and the optional ``details`` payload.
"""
from __future__ import annotations

from typing import Any, Optional


class LearningDashboardError(Exception):
    kind = 'error'
    http_status = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {'message': self.message, 'error': self.kind}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class ValidationError(LearningDashboardError):
    """Malformed input or a reference that crosses workspaces."""

    kind = 'validation_error'
    http_status = 400


class AuthorizationError(LearningDashboardError):
    kind = 'authorization_error'
    http_status = 403


class NotFoundError(LearningDashboardError):
    kind = 'not_found'
    http_status = 404


class InvalidStateError(LearningDashboardError):
    """The operation is illegal for the current sprint or task state."""

    kind = 'invalid_state'
    http_status = 409


class ConflictError(LearningDashboardError):
    """An invariant would be broken, e.g. a second active sprint."""

    kind = 'conflict'
    http_status = 409


class StorageError(LearningDashboardError):
    kind = 'storage_error'
    http_status = 503
