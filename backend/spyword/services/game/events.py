from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Audience(str, Enum):
    CALLER = 'caller'    # the connection that issued the command
    PLAYER = 'player'    # one specific connection (private role reveal)
    SESSION = 'session'  # every connection in the session


@dataclass(frozen=True)
class Outbound:
    name: str
    payload: Optional[Dict[str, Any]] = field(default=None)
    audience: Audience = Audience.SESSION
    target: Optional[str] = None


def to_caller(name: str, payload: Optional[Dict[str, Any]] = None) -> Outbound:
    return Outbound(name, payload, Audience.CALLER)


def to_player(connection_id: str, name: str, payload: Optional[Dict[str, Any]] = None) -> Outbound:
    return Outbound(name, payload, Audience.PLAYER, target=connection_id)


def to_session(name: str, payload: Optional[Dict[str, Any]] = None) -> Outbound:
    return Outbound(name, payload, Audience.SESSION)
