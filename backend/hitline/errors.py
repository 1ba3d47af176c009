"""Rejections raised by game actions.

Every subclass maps to one HTTP status so routes can re-raise without
translating. Raising any of these leaves session state untouched.
"""


class GameError(Exception):
    status_code = 400
    code = 'bad_request'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class NotFound(GameError):
    status_code = 404
    code = 'not_found'


class BadState(GameError):
    """Action attempted in the wrong lifecycle state or phase."""
    status_code = 400
    code = 'bad_state'


class Forbidden(GameError):
    status_code = 403
    code = 'forbidden'


class Conflict(GameError):
    status_code = 409
    code = 'conflict'


class ResourceExhausted(GameError):
    status_code = 400
    code = 'resource_exhausted'


class InsufficientTokens(ResourceExhausted):
    code = 'insufficient_tokens'


class InvalidInput(GameError):
    status_code = 400
    code = 'invalid_input'
