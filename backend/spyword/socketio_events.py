import logging
import threading
from typing import Dict, List, Optional, Set

from flask import current_app, request
from flask_socketio import emit

from spyword.services.game import commands as cmd
from spyword.services.game.errors import GameError, SessionNotFound
from spyword.services.game.events import Audience, Outbound, to_caller
from spyword.services.game.registry import SessionRegistry
from spyword.services.game.session import GameSession

NAMESPACE = '/ws'

logger = logging.getLogger(__name__)


def room_for(code: str) -> str:
    return f"session:{code}"


class SocketIOTransport:
    """Thin Flask-SocketIO adapter. Emit failures are logged, never raised."""

    def __init__(self, socketio, namespace: str = NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def _emit(self, name: str, payload, to: str) -> None:
        args = () if payload is None else (payload,)
        try:
            self.socketio.emit(name, *args, to=to, namespace=self.namespace)
        except Exception:
            logger.warning(f"[emit-failed] event={name} to={to}", exc_info=True)

    def send(self, sid: str, name: str, payload=None) -> None:
        self._emit(name, payload, to=sid)

    def broadcast(self, code: str, name: str, payload=None) -> None:
        self._emit(name, payload, to=room_for(code))

    def join(self, sid: str, code: str) -> None:
        self.socketio.server.enter_room(sid, room_for(code), namespace=self.namespace)

    def leave(self, sid: str, code: str) -> None:
        try:
            self.socketio.server.leave_room(sid, room_for(code), namespace=self.namespace)
        except Exception:
            logger.warning(f"[room-leave-failed] sid={sid} session={code}", exc_info=True)

    def close(self, code: str) -> None:
        try:
            self.socketio.close_room(room_for(code), namespace=self.namespace)
        except Exception:
            logger.warning(f"[room-close-failed] session={code}", exc_info=True)


class ConnectionDispatcher:
    """Maps connections to sessions, routes commands and fans out events."""

    def __init__(self, registry: SessionRegistry, transport, host_grace_sec: float = 0.0):
        self.registry = registry
        self.transport = transport
        self.host_grace_sec = host_grace_sec
        self._sid_to_code: Dict[str, str] = {}
        self._live: Set[str] = set()
        self._lock = threading.Lock()
        self._handlers = {
            cmd.CreateSession: self._create_session,
            cmd.JoinSession: self._join_session,
            cmd.ReclaimHost: self._reclaim_host,
            cmd.StartGame: self._start_game,
            cmd.StartTimer: self._start_timer,
            cmd.NewRound: self._new_round,
            cmd.AbortGame: self._abort_game,
            cmd.CloseGame: self._close_game,
            cmd.Ping: self._ping,
            cmd.Disconnect: self._disconnect,
        }
        registry.subscribe(self.deliver)

    # ---- connection bookkeeping ----

    def connect(self, sid: str) -> None:
        with self._lock:
            self._live.add(sid)

    def is_live(self, sid: str) -> bool:
        return sid in self._live

    def session_code_for(self, sid: str) -> Optional[str]:
        return self._sid_to_code.get(sid)

    def _bind(self, sid: str, code: str) -> None:
        with self._lock:
            self._sid_to_code[sid] = code
        self.transport.join(sid, code)

    def _forget(self, code: str) -> None:
        self.transport.close(code)
        with self._lock:
            for sid in [s for s, c in self._sid_to_code.items() if c == code]:
                del self._sid_to_code[sid]

    def _lookup(self, code: str) -> GameSession:
        session = self.registry.get(code)
        if session is None:
            raise SessionNotFound()
        return session

    # ---- inbound ----

    def handle(self, sid: str, event_name: str, data=None) -> None:
        """Parse and dispatch one raw event; failures go back to the caller."""
        try:
            self.dispatch(sid, cmd.parse_command(event_name, data))
        except GameError as exc:
            logger.info(f"[rejected] sid={sid} event={event_name} type={exc.type} message={exc.message}")
            self.transport.send(sid, 'error', exc.to_dict())

    def disconnect(self, sid: str) -> None:
        self.dispatch(sid, cmd.Disconnect())

    def dispatch(self, sid: str, command: cmd.Command) -> None:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"No handler for command {type(command).__name__}")
        handler(sid, command)

    def _create_session(self, sid: str, command: cmd.CreateSession) -> None:
        session = self.registry.create(command.duration, sid)
        previous = self.session_code_for(sid)
        if previous:
            self._leave(sid, previous)
        self._bind(sid, session.code)
        self.deliver(session.code, [to_caller('sessionCreated', {'sessionId': session.code})], caller=sid)

    def _join_session(self, sid: str, command: cmd.JoinSession) -> None:
        session = self._lookup(command.session_id)
        events = session.join(sid, command.nickname)
        previous = self.session_code_for(sid)
        if previous and previous != session.code:
            self._leave(sid, previous)
        self._bind(sid, session.code)
        self.deliver(session.code, events, caller=sid)

    def _reclaim_host(self, sid: str, command: cmd.ReclaimHost) -> None:
        session = self._lookup(command.session_id)
        events = session.reclaim_host(sid)
        previous = self.session_code_for(sid)
        if previous and previous != session.code:
            self._leave(sid, previous)
        self._bind(sid, session.code)
        self.deliver(session.code, events, caller=sid)

    def _start_game(self, sid: str, command: cmd.StartGame) -> None:
        session = self._lookup(command.session_id)
        self.deliver(session.code, session.start_game(sid), caller=sid)

    def _start_timer(self, sid: str, command: cmd.StartTimer) -> None:
        session = self._lookup(command.session_id)
        self.deliver(session.code, session.start_timer(sid), caller=sid)

    def _new_round(self, sid: str, command: cmd.NewRound) -> None:
        session = self._lookup(command.session_id)
        self.deliver(session.code, session.new_round(sid, is_live=self.is_live), caller=sid)

    def _abort_game(self, sid: str, command: cmd.AbortGame) -> None:
        session = self._lookup(command.session_id)
        self.deliver(session.code, session.abort(sid), caller=sid)

    def _close_game(self, sid: str, command: cmd.CloseGame) -> None:
        session = self._lookup(command.session_id)
        self.deliver(session.code, session.close(sid), caller=sid)

    def _ping(self, sid: str, command: cmd.Ping) -> None:
        self.transport.send(sid, 'pong', command.payload)

    def _disconnect(self, sid: str, command: cmd.Disconnect) -> None:
        with self._lock:
            self._live.discard(sid)
            code = self._sid_to_code.pop(sid, None)
        session = self.registry.get(code)
        if session is None:
            return
        if sid == session.host_connection_id and self.host_grace_sec > 0:
            # Give the host a window to reconnect and reclaim before aborting
            logger.info(f"[host-disconnect] session={code} grace={self.host_grace_sec}s")
            self.registry.scheduler.call_later(
                self.host_grace_sec,
                lambda: self._leave(sid, code),
                label=f'host-grace:{code}',
            )
            return
        self._leave(sid, code)

    def _leave(self, sid: str, code: str) -> None:
        session = self.registry.get(code)
        if session is None:
            return
        self.transport.leave(sid, code)
        self.deliver(code, session.leave(sid), caller=sid)

    # ---- outbound ----

    def deliver(self, code: str, events: List[Outbound], caller: Optional[str] = None) -> None:
        for event in events:
            if event.audience == Audience.CALLER:
                if caller is not None:
                    self.transport.send(caller, event.name, event.payload)
            elif event.audience == Audience.PLAYER:
                self.transport.send(event.target, event.name, event.payload)
            else:
                self.transport.broadcast(code, event.name, event.payload)
        if events and code not in self.registry:
            self._forget(code)


# ---- Socket.IO bindings ----

def get_dispatcher() -> ConnectionDispatcher:
    return current_app.extensions['spyword']


def handle_connect(auth=None):
    get_dispatcher().connect(request.sid)
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(reason=None):
    get_dispatcher().disconnect(request.sid)


def _command_handler(event_name: str):
    def handler(data=None):
        get_dispatcher().handle(request.sid, event_name, data)
    handler.__name__ = f"handle_{event_name}"
    return handler


def register_socketio_handlers(socketio, namespace: str = NAMESPACE) -> None:
    """Register Socket.IO event handlers on ``namespace``.

    One handler per command name in ``commands.PARSERS``; each resolves the
    app's dispatcher at call time so re-created apps never see stale state.
    """
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    for event_name in cmd.PARSERS:
        socketio.on_event(event_name, _command_handler(event_name), namespace=namespace)
