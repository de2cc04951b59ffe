"""Session-scoped errors.

Each error maps to the named rejection event sent back to the client that
issued the offending intent. None of them is fatal to the server.
"""


class SessionError(Exception):
    event = 'invalid_request'

    def __init__(self, session_id=None, message=None):
        self.session_id = session_id
        super().__init__(message or self.__class__.__doc__ or self.event)

    def to_dict(self):
        return {'session_id': self.session_id, 'message': str(self)}


class SessionAlreadyExists(SessionError):
    """A session with this id already exists."""
    event = 'session_already_exists'


class SessionNotFound(SessionError):
    """No active session with this id."""
    event = 'session_not_found'


class SessionFull(SessionError):
    """This session already has two participants."""
    event = 'session_full'


class ProtocolViolation(SessionError):
    """Intent is malformed or not valid in the session's current phase."""
    event = 'invalid_request'


class NotPaired(ProtocolViolation):
    """Choices are only accepted once both participants are present."""
    event = 'not_paired'


class InvalidChoice(ProtocolViolation):
    """Choice must be one of rock, paper or scissors."""
    event = 'invalid_choice'
