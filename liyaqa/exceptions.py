"""
Liyaqa - Domain Exceptions
Raised by services, translated to JSON error responses by the app factory
"""


class LiyaqaError(Exception):
    """Base class for errors that map to an HTTP response"""
    status_code = 400
    error = 'Bad request'

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {'error': self.error, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(LiyaqaError):
    status_code = 400
    error = 'Validation failed'


class AuthenticationError(LiyaqaError):
    status_code = 401
    error = 'Unauthorized'


class PermissionDeniedError(LiyaqaError):
    status_code = 403
    error = 'Forbidden'


class NotFoundError(LiyaqaError):
    status_code = 404
    error = 'Not found'

    def __init__(self, resource: str, resource_id: str = None):
        message = f"{resource} not found" if resource_id is None else f"{resource} {resource_id} not found"
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(LiyaqaError):
    status_code = 409
    error = 'Conflict'
