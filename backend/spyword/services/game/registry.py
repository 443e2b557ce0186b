import logging
import threading
from typing import Callable, Dict, List, Optional

from .errors import ResourceExhausted
from .events import Outbound
from .random_source import generate_session_code
from .session import GameSession, SessionRules, validate_duration
from .words import WordSupplier

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 32

Listener = Callable[[str, List[Outbound]], None]


class SessionRegistry:
    """Owns every live session, keyed by its session code.

    Sessions reach the outside world only through ``publish``: events raised
    outside a command (a round timer elapsing) are handed to the subscribed
    listeners, normally the connection dispatcher.
    """

    def __init__(
        self,
        words: WordSupplier,
        scheduler,
        rules: Optional[SessionRules] = None,
        code_factory: Callable[[], str] = generate_session_code,
    ):
        self.words = words
        self.scheduler = scheduler
        self.rules = rules or SessionRules()
        self._code_factory = code_factory
        self._sessions: Dict[str, GameSession] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._sessions

    def create(self, duration_minutes, host_connection_id: str) -> GameSession:
        duration_seconds = validate_duration(duration_minutes, self.rules)
        with self._lock:
            for _ in range(MAX_CODE_ATTEMPTS):
                code = self._code_factory()
                if code not in self._sessions:
                    break
                logger.warning(f"[session-create] code collision code={code}")
            else:
                raise ResourceExhausted('Could not allocate a session code')
            session = GameSession(
                code,
                duration_seconds,
                host_connection_id,
                self.words,
                self.scheduler,
                registry=self,
                rules=self.rules,
            )
            self._sessions[code] = session
        logger.info(f"[session-create] code={code} duration={duration_seconds}s active={len(self._sessions)}")
        return session

    def get(self, code: Optional[str]) -> Optional[GameSession]:
        if not code:
            return None
        with self._lock:
            return self._sessions.get(code.upper())

    def remove(self, code: str) -> Optional[GameSession]:
        with self._lock:
            session = self._sessions.pop(code, None)
        if session is not None:
            logger.info(f"[session-remove] code={code} active={len(self._sessions)}")
        return session

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, code: str, events: List[Outbound]) -> None:
        for listener in list(self._listeners):
            try:
                listener(code, events)
            except Exception:
                # Delivery failures are not retried
                logger.exception(f"[publish-failed] session={code}")
