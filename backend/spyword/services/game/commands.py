"""Inbound commands, one frozen dataclass per session operation.

``parse_command`` is the only place raw Socket.IO event names and payloads
are interpreted; everything past it works on these typed variants.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from .errors import InvalidInput


@dataclass(frozen=True)
class CreateSession:
    duration: Any


@dataclass(frozen=True)
class JoinSession:
    session_id: str
    nickname: Any


@dataclass(frozen=True)
class ReclaimHost:
    session_id: str


@dataclass(frozen=True)
class StartGame:
    session_id: str


@dataclass(frozen=True)
class StartTimer:
    session_id: str


@dataclass(frozen=True)
class NewRound:
    session_id: str


@dataclass(frozen=True)
class AbortGame:
    session_id: str


@dataclass(frozen=True)
class CloseGame:
    session_id: str


@dataclass(frozen=True)
class Ping:
    payload: Optional[dict] = None


@dataclass(frozen=True)
class Disconnect:
    pass


Command = Union[
    CreateSession,
    JoinSession,
    ReclaimHost,
    StartGame,
    StartTimer,
    NewRound,
    AbortGame,
    CloseGame,
    Ping,
    Disconnect,
]


def _session_id(data: Dict[str, Any]) -> str:
    session_id = data.get('sessionId')
    if not isinstance(session_id, str) or not session_id.strip():
        raise InvalidInput('Session ID is required')
    return session_id.strip().upper()


def _create(data):
    if data.get('duration') is None:
        raise InvalidInput('Game duration is required')
    return CreateSession(duration=data.get('duration'))


def _join(data):
    session_id = data.get('sessionId')
    if not session_id or not data.get('nickname'):
        raise InvalidInput('Session ID and nickname are required')
    return JoinSession(session_id=_session_id(data), nickname=data.get('nickname'))


# Socket.IO event name -> payload parser
PARSERS: Dict[str, Callable[[Dict[str, Any]], Command]] = {
    'createSession': _create,
    'joinSession': _join,
    'joinSessionAsHost': lambda data: ReclaimHost(_session_id(data)),
    'startGame': lambda data: StartGame(_session_id(data)),
    'startTimer': lambda data: StartTimer(_session_id(data)),
    'newRound': lambda data: NewRound(_session_id(data)),
    'abortGame': lambda data: AbortGame(_session_id(data)),
    'closeGame': lambda data: CloseGame(_session_id(data)),
    'ping': lambda data: Ping(data or None),
}


def parse_command(event_name: str, data: Any) -> Command:
    parser = PARSERS.get(event_name)
    if parser is None:
        raise InvalidInput(f'Unknown command: {event_name}')
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidInput('Payload must be an object')
    return parser(data)
