"""Caller-visible failures raised by the game core.

Every error here is local and recoverable: the operation that raises it has
not mutated any state, and the dispatcher reports it back to the originating
connection as an ``error`` event.
"""


class GameError(Exception):
    type = 'game_error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'message': self.message, 'type': self.type}


class InvalidInput(GameError):
    type = 'invalid_input'


class NotFound(GameError):
    type = 'not_found'


class Unauthorized(GameError):
    type = 'unauthorized'


class Conflict(GameError):
    type = 'conflict'


class ResourceExhausted(GameError):
    type = 'resource_exhausted'


class InvalidPhase(GameError):
    type = 'invalid_phase'


class InvalidDuration(InvalidInput):
    pass


class InvalidNickname(InvalidInput):
    pass


class SessionNotFound(NotFound):
    def __init__(self, message: str = 'Session not found'):
        super().__init__(message)


class RegistrationClosed(Conflict):
    def __init__(self, message: str = 'Registration is closed'):
        super().__init__(message)


class DuplicateNickname(Conflict):
    def __init__(self, message: str = 'Nickname already taken'):
        super().__init__(message)


class TooFewPlayers(Conflict):
    pass


class EmptyPoolError(ResourceExhausted):
    def __init__(self, message: str = 'No words available'):
        super().__init__(message)
