"""Game domain services: sessions, roles, words and timers.

This package contains the transport-free core that socket handlers and
HTTP routes call into. Operations return outbound events; delivering them
is the caller's job.
"""

from .errors import GameError  # noqa: F401
from .registry import SessionRegistry  # noqa: F401
from .session import GameSession, Phase, SessionRules  # noqa: F401
from .words import CsvWordStore, WordSupplier  # noqa: F401
