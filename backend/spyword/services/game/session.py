"""Game session state machine.

Phases run ``lobby -> active -> ended``. ``new_round`` re-enters ``active``
from ``active`` or ``ended``; the lobby is never revisited. Every public
method holds the session lock end to end, validates before mutating, and
returns the outbound events to deliver, in order.
"""

import logging
import threading
import time
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import (
    Conflict,
    DuplicateNickname,
    InvalidDuration,
    InvalidNickname,
    InvalidPhase,
    RegistrationClosed,
    TooFewPlayers,
    Unauthorized,
)
from .events import Outbound, to_caller, to_player, to_session
from .random_source import secure_shuffle
from .scheduler import ScheduledTask
from .words import WordSupplier

logger = logging.getLogger(__name__)

FORBIDDEN_NICKNAME_CHARS = set('<>"\'')
ZERO_WIDTH_JOINER = '\u200d'


class Phase(str, Enum):
    LOBBY = 'lobby'
    ACTIVE = 'active'
    ENDED = 'ended'


class Role(str, Enum):
    SPY = 'spy'
    CIVILIAN = 'civilian'


@dataclass
class Player:
    connection_id: str
    nickname: str
    is_host: bool = False

    def to_dict(self) -> dict:
        return {'nickname': self.nickname, 'isHost': self.is_host}


@dataclass(frozen=True)
class SessionRules:
    min_players: int = 4
    min_duration_min: int = 5
    max_duration_min: int = 60
    nickname_max_length: int = 20

    @classmethod
    def from_config(cls, config) -> 'SessionRules':
        return cls(
            min_players=int(config.get('MIN_PLAYERS', cls.min_players)),
            min_duration_min=int(config.get('MIN_DURATION_MIN', cls.min_duration_min)),
            max_duration_min=int(config.get('MAX_DURATION_MIN', cls.max_duration_min)),
            nickname_max_length=int(config.get('NICKNAME_MAX_LENGTH', cls.nickname_max_length)),
        )


def spy_count_for(roster_size: int) -> int:
    # Floor division, never rounded up, at least one spy
    return max(roster_size // 3, 1)


def validate_duration(duration, rules: SessionRules) -> int:
    """Return the round length in seconds for a duration given in minutes."""
    message = f'Game duration must be between {rules.min_duration_min} and {rules.max_duration_min} minutes'
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise InvalidDuration(message)
    if not rules.min_duration_min <= duration <= rules.max_duration_min:
        raise InvalidDuration(message)
    return int(duration * 60)


def validate_nickname(nickname, rules: SessionRules) -> str:
    if not isinstance(nickname, str) or not nickname.strip():
        raise InvalidNickname('Nickname is required')
    nickname = nickname.strip()
    if len(nickname) > rules.nickname_max_length:
        raise InvalidNickname(f'Nickname must be {rules.nickname_max_length} characters or less')
    for ch in nickname:
        category = unicodedata.category(ch)
        # Control and format characters, except the joiner used by emoji sequences
        if ch in FORBIDDEN_NICKNAME_CHARS or category == 'Cc' or (category == 'Cf' and ch != ZERO_WIDTH_JOINER):
            raise InvalidNickname('Nickname contains invalid characters')
    return nickname


class GameSession:
    def __init__(
        self,
        code: str,
        duration_seconds: int,
        host_connection_id: str,
        words: WordSupplier,
        scheduler,
        registry=None,
        rules: Optional[SessionRules] = None,
    ):
        self.code = code
        self.duration_seconds = duration_seconds
        self.host_connection_id = host_connection_id
        self.rules = rules or SessionRules()
        self.roster: Dict[str, Player] = {}
        # Every nickname that ever joined; never shrinks
        self.known_nicknames: Set[str] = set()
        # Active spy connections; pruned on leave
        self.spies: Set[str] = set()
        # Spy nicknames for the current round; kept across disconnects for the reveal
        self.spy_nicknames: Set[str] = set()
        self.current_word: Optional[str] = None
        self.previous_word: Optional[str] = None
        self.phase = Phase.LOBBY
        self.registration_open = True
        self.round_timer: Optional[ScheduledTask] = None
        self.round_started_at: Optional[float] = None
        self.removed = False
        self._timer_generation = 0
        self._words = words
        self._scheduler = scheduler
        self._registry = registry
        self._lock = threading.RLock()

    # ---- views ----

    def players_payload(self) -> dict:
        return {
            'players': [p.to_dict() for p in self.roster.values()],
            'count': len(self.roster),
        }

    def snapshot(self) -> dict:
        with self._lock:
            return {
                'sessionId': self.code,
                'phase': self.phase.value,
                'playerCount': len(self.roster),
                'registrationOpen': self.registration_open,
                'duration': self.duration_seconds,
            }

    def _require_host(self, connection_id: str) -> None:
        if connection_id != self.host_connection_id:
            raise Unauthorized('Only the host can control this session')

    # ---- lobby ----

    def join(self, connection_id: str, nickname) -> List[Outbound]:
        with self._lock:
            nickname = validate_nickname(nickname, self.rules)
            if not self.registration_open:
                raise RegistrationClosed()
            if connection_id in self.roster:
                raise Conflict('Already joined this session')
            wanted = nickname.lower()
            if any(p.nickname.lower() == wanted for p in self.roster.values()):
                raise DuplicateNickname()

            self.roster[connection_id] = Player(
                connection_id, nickname, is_host=connection_id == self.host_connection_id
            )
            self.known_nicknames.add(nickname)
            logger.info(f"[join] session={self.code} nickname={nickname} players={len(self.roster)}")
            return [
                to_caller('joinedSession', {
                    'sessionId': self.code,
                    'nickname': nickname,
                    'phase': self.phase.value,
                }),
                to_session('playersUpdated', self.players_payload()),
            ]

    def reclaim_host(self, connection_id: str) -> List[Outbound]:
        with self._lock:
            previous = self.host_connection_id
            self.host_connection_id = connection_id
            for player in self.roster.values():
                player.is_host = player.connection_id == connection_id
            logger.info(f"[host-reclaim] session={self.code} from={previous} to={connection_id}")
            players = self.players_payload()
            return [
                to_caller('hostJoinedSession', {
                    'sessionId': self.code,
                    'phase': self.phase.value,
                    'players': players['players'],
                    'playerCount': players['count'],
                }),
                to_caller('playersUpdated', players),
            ]

    # ---- roles ----

    def _draw_roles(self, connection_ids: List[str]) -> Tuple[str, Set[str]]:
        # Pure: raises (e.g. EmptyPoolError) before anything is mutated
        word = self._words.pick_next(excluding=self.current_word)
        shuffled = secure_shuffle(connection_ids)
        spy_count = min(spy_count_for(len(connection_ids)), len(connection_ids))
        return word, set(shuffled[:spy_count])

    def _commit_roles(self, word: str, spies: Set[str]) -> List[Outbound]:
        self.spies = spies
        self.spy_nicknames = {self.roster[cid].nickname for cid in spies}
        self.previous_word = self.current_word
        self.current_word = word
        self.phase = Phase.ACTIVE
        self.registration_open = False
        self.round_started_at = None
        logger.info(f"[roles] session={self.code} players={len(self.roster)} spies={len(spies)}")
        logger.debug(f"[roles] session={self.code} word={word} spies={sorted(self.spy_nicknames)}")

        events = []
        for cid in self.roster:
            if cid in spies:
                events.append(to_player(cid, 'roleAssigned', {'role': Role.SPY.value}))
            else:
                events.append(to_player(cid, 'roleAssigned', {'role': Role.CIVILIAN.value, 'word': word}))
        return events

    def _round_started(self) -> Outbound:
        return to_session('gameStarted', {'duration': self.duration_seconds})

    def start_game(self, connection_id: str) -> List[Outbound]:
        with self._lock:
            self._require_host(connection_id)
            if self.phase != Phase.LOBBY:
                raise InvalidPhase('Game has already started')
            if len(self.roster) < self.rules.min_players:
                raise TooFewPlayers(f'Minimum {self.rules.min_players} players required')
            word, spies = self._draw_roles(list(self.roster))
            events = self._commit_roles(word, spies)
            events.append(self._round_started())
            return events

    def new_round(self, connection_id: str, is_live: Optional[Callable[[str], bool]] = None) -> List[Outbound]:
        with self._lock:
            self._require_host(connection_id)
            if self.phase == Phase.LOBBY:
                raise InvalidPhase('Game has not started yet')
            live_ids = [cid for cid in self.roster if is_live is None or is_live(cid)]
            word, spies = self._draw_roles(live_ids)

            self._cancel_timer()
            events = []
            dropped = [cid for cid in self.roster if cid not in live_ids]
            for cid in dropped:
                player = self.roster.pop(cid)
                logger.warning(f"[new-round] session={self.code} dropping stale connection nickname={player.nickname}")
            if dropped:
                events.append(to_session('playersUpdated', self.players_payload()))
            events.extend(self._commit_roles(word, spies))
            events.append(to_session('newRoundStarted'))
            events.append(self._round_started())
            return events

    # ---- timer ----

    def _cancel_timer(self) -> None:
        self._timer_generation += 1
        if self.round_timer is not None:
            self.round_timer.cancel()
            self.round_timer = None

    def start_timer(self, connection_id: str) -> List[Outbound]:
        with self._lock:
            self._require_host(connection_id)
            if self.phase != Phase.ACTIVE:
                raise InvalidPhase('Roles have not been assigned for this round')
            self._cancel_timer()
            generation = self._timer_generation
            self.round_started_at = time.time()
            self.round_timer = self._scheduler.call_later(
                self.duration_seconds,
                lambda: self._round_elapsed(generation),
                label=f'round:{self.code}',
            )
            return [to_session('timerStarted', {
                'duration': self.duration_seconds,
                'startTime': int(self.round_started_at * 1000),
            })]

    def _round_elapsed(self, generation: int) -> None:
        with self._lock:
            if self.removed or generation != self._timer_generation or self.phase != Phase.ACTIVE:
                logger.info(f"[timer-stale] session={self.code} generation={generation}")
                return
            self.phase = Phase.ENDED
            self.round_timer = None
            events = [to_session('gameEnded', {'spies': sorted(self.spy_nicknames)})]
            logger.info(f"[round-end] session={self.code} spies={len(self.spy_nicknames)}")
            # Delivered under the lock so a following newRound cannot overtake it
            if self._registry is not None:
                self._registry.publish(self.code, events)

    # ---- teardown ----

    def _terminate(self, event_name: str) -> List[Outbound]:
        self._cancel_timer()
        self.removed = True
        if self._registry is not None:
            self._registry.remove(self.code)
        logger.info(f"[session-end] session={self.code} reason={event_name}")
        return [to_session(event_name)]

    def abort(self, connection_id: str) -> List[Outbound]:
        with self._lock:
            self._require_host(connection_id)
            return self._terminate('gameAborted')

    def close(self, connection_id: str) -> List[Outbound]:
        with self._lock:
            self._require_host(connection_id)
            return self._terminate('gameClosed')

    def leave(self, connection_id: str) -> List[Outbound]:
        with self._lock:
            if self.removed:
                return []
            player = self.roster.pop(connection_id, None)
            self.spies.discard(connection_id)
            if connection_id == self.host_connection_id:
                return self._terminate('gameAborted')
            if player is None:
                return []
            logger.info(f"[leave] session={self.code} nickname={player.nickname} players={len(self.roster)}")
            return [to_session('playersUpdated', self.players_payload())]
