import threading

import pytest

from spyword.services.game.errors import (
    Conflict,
    DuplicateNickname,
    EmptyPoolError,
    InvalidNickname,
    InvalidPhase,
    RegistrationClosed,
    TooFewPlayers,
    Unauthorized,
)
from spyword.services.game.events import Audience
from spyword.services.game.session import Phase, spy_count_for
from spyword.services.game.words import WordSupplier

HOST = 'host-sid'


def _lobby(registry, players=('A', 'B', 'C', 'D')):
    session = registry.create(10, HOST)
    for nickname in players:
        session.join(f'sid-{nickname}', nickname)
    return session


def _roles(events):
    return {e.target: e.payload for e in events if e.name == 'roleAssigned'}


def _state(session):
    return (
        dict(session.roster),
        session.phase,
        set(session.spies),
        set(session.spy_nicknames),
        session.current_word,
        session.registration_open,
    )


def test_spy_count_floor_clamped_to_one():
    assert spy_count_for(3) == 1
    assert spy_count_for(4) == 1
    assert spy_count_for(5) == 1
    assert spy_count_for(6) == 2
    assert spy_count_for(8) == 2
    assert spy_count_for(9) == 3
    assert spy_count_for(12) == 4


@pytest.mark.parametrize('size', range(4, 13))
def test_role_assignment_spy_count_and_subset(registry, size):
    session = _lobby(registry, [f'P{i}' for i in range(size)])
    session.start_game(HOST)
    assert len(session.spies) == max(size // 3, 1)
    assert session.spies <= set(session.roster)
    assert session.spy_nicknames == {session.roster[cid].nickname for cid in session.spies}


def test_four_player_scenario(registry):
    session = _lobby(registry)
    events = session.start_game(HOST)

    assert session.phase == Phase.ACTIVE
    assert not session.registration_open
    roles = _roles(events)
    assert set(roles) == set(session.roster)
    spies = [cid for cid, payload in roles.items() if payload['role'] == 'spy']
    assert len(spies) == 1
    assert 'word' not in roles[spies[0]]
    for cid, payload in roles.items():
        if cid not in spies:
            assert payload == {'role': 'civilian', 'word': session.current_word}
    assert all(e.audience == Audience.PLAYER for e in events if e.name == 'roleAssigned')
    assert events[-1].name == 'gameStarted'
    assert events[-1].payload == {'duration': 600}


def test_join_broadcasts_roster(registry):
    session = registry.create(10, HOST)
    events = session.join('sid-1', '  Alice ')
    assert events[0].audience == Audience.CALLER
    assert events[0].payload == {'sessionId': session.code, 'nickname': 'Alice', 'phase': 'lobby'}
    assert events[1].name == 'playersUpdated'
    assert events[1].payload == {'players': [{'nickname': 'Alice', 'isHost': False}], 'count': 1}
    assert 'Alice' in session.known_nicknames


def test_host_joining_as_player_is_flagged(registry):
    session = registry.create(10, HOST)
    session.join(HOST, 'Hosty')
    assert session.roster[HOST].is_host


def test_duplicate_active_nickname_is_case_insensitive(registry):
    session = registry.create(10, HOST)
    session.join('sid-1', 'Bob')
    with pytest.raises(DuplicateNickname) as exc:
        session.join('sid-2', 'bOB')
    assert isinstance(exc.value, Conflict)
    assert list(session.roster) == ['sid-1']


def test_nickname_of_disconnected_player_can_be_reused(registry):
    session = registry.create(10, HOST)
    session.join('sid-1', 'Bob')
    session.leave('sid-1')
    events = session.join('sid-2', 'Bob')
    assert events[0].name == 'joinedSession'
    assert session.roster['sid-2'].nickname == 'Bob'
    assert session.known_nicknames == {'Bob'}


@pytest.mark.parametrize('nickname', ['', '   ', None, 'x' * 21, '<script>', 'Bo"b', "O'Neil", 'tab\there', 'rtl\u202eevil', 'zero\u200bwidth'])
def test_invalid_nicknames_rejected(registry, nickname):
    session = registry.create(10, HOST)
    with pytest.raises(InvalidNickname):
        session.join('sid-1', nickname)
    assert session.roster == {}
    assert session.known_nicknames == set()


def test_nickname_at_length_limit_accepted(registry):
    session = registry.create(10, HOST)
    session.join('sid-1', 'x' * 20)
    assert session.roster['sid-1'].nickname == 'x' * 20


def test_emoji_sequence_nickname_accepted(registry):
    family = '\U0001F468\u200d\U0001F469\u200d\U0001F467'
    session = registry.create(10, HOST)
    session.join('sid-1', f'Team {family}')
    assert session.roster['sid-1'].nickname == f'Team {family}'


def test_same_connection_cannot_join_twice(registry):
    session = registry.create(10, HOST)
    session.join('sid-1', 'Bob')
    with pytest.raises(Conflict):
        session.join('sid-1', 'Robert')


def test_registration_closes_at_game_start(registry):
    session = _lobby(registry)
    session.start_game(HOST)
    with pytest.raises(RegistrationClosed):
        session.join('sid-late', 'Late')
    assert 'sid-late' not in session.roster


def test_start_with_too_few_players_mutates_nothing(registry):
    session = _lobby(registry, ['A', 'B', 'C'])
    before = _state(session)
    with pytest.raises(TooFewPlayers):
        session.start_game(HOST)
    assert _state(session) == before
    assert session.phase == Phase.LOBBY


def test_start_with_empty_word_pool_mutates_nothing(scheduler):
    from spyword.services.game.registry import SessionRegistry

    registry = SessionRegistry(WordSupplier([]), scheduler)
    session = _lobby(registry)
    before = _state(session)
    with pytest.raises(EmptyPoolError):
        session.start_game(HOST)
    assert _state(session) == before


def test_second_start_is_rejected(registry):
    session = _lobby(registry)
    session.start_game(HOST)
    with pytest.raises(InvalidPhase):
        session.start_game(HOST)


@pytest.mark.parametrize('operation', ['start_game', 'start_timer', 'new_round', 'abort', 'close'])
def test_host_only_operations_reject_other_connections(registry, operation):
    session = _lobby(registry)
    if operation != 'start_game':
        session.start_game(HOST)
    before = _state(session)
    with pytest.raises(Unauthorized):
        getattr(session, operation)('sid-A')
    assert _state(session) == before
    assert session.code in registry
    assert session.round_timer is None


def test_start_timer_requires_active_round(registry, scheduler):
    session = _lobby(registry)
    with pytest.raises(InvalidPhase):
        session.start_timer(HOST)
    assert scheduler.tasks == []


def test_start_timer_schedules_single_round_timer(registry, scheduler):
    session = _lobby(registry)
    session.start_game(HOST)
    events = session.start_timer(HOST)

    assert events[0].name == 'timerStarted'
    assert events[0].payload['duration'] == 600
    assert events[0].payload['startTime'] == int(session.round_started_at * 1000)
    assert len(scheduler.pending) == 1
    assert scheduler.pending[0].delay == 600

    session.start_timer(HOST)
    assert len(scheduler.pending) == 1
    assert scheduler.tasks[0].cancelled


def test_timer_elapse_ends_round_and_reveals_spies(registry, scheduler):
    published = []
    registry.subscribe(lambda code, events: published.append((code, events)))
    session = _lobby(registry)
    session.start_game(HOST)
    session.start_timer(HOST)

    scheduler.fire_all()

    assert session.phase == Phase.ENDED
    assert session.round_timer is None
    code, events = published[0]
    assert code == session.code
    assert events[0].name == 'gameEnded'
    assert events[0].payload == {'spies': sorted(session.spy_nicknames)}


def test_disconnected_spy_is_still_revealed(registry, scheduler):
    published = []
    registry.subscribe(lambda code, events: published.append(events))
    session = _lobby(registry)
    session.start_game(HOST)
    spy_sid = next(iter(session.spies))
    spy_name = session.roster[spy_sid].nickname

    session.leave(spy_sid)
    assert spy_sid not in session.roster
    assert spy_sid not in session.spies
    session.start_timer(HOST)
    scheduler.fire_all()

    assert spy_name in published[0][0].payload['spies']


def test_stale_timer_callback_is_a_noop(registry, scheduler):
    published = []
    registry.subscribe(lambda code, events: published.append(events))
    session = _lobby(registry)
    session.start_game(HOST)
    session.start_timer(HOST)
    stale = scheduler.tasks[0]

    session.new_round(HOST)
    # Simulate a worker that already woke up before the cancel landed
    stale.callback()

    assert session.phase == Phase.ACTIVE
    assert published == []


def test_round_end_is_delivered_before_a_racing_new_round(registry, scheduler):
    delivered = []
    session = _lobby(registry)
    session.start_game(HOST)
    session.start_timer(HOST)

    def racing_new_round():
        delivered.extend(e.name for e in session.new_round(HOST))

    def listener(code, events):
        worker = threading.Thread(target=racing_new_round)
        worker.start()
        worker.join(timeout=0.2)
        delivered.extend(e.name for e in events)
        listener.worker = worker

    registry.subscribe(listener)
    scheduler.fire_all()
    listener.worker.join(timeout=2)

    assert delivered[0] == 'gameEnded'
    assert delivered[-2:] == ['newRoundStarted', 'gameStarted']
    assert session.phase == Phase.ACTIVE


def test_cancel_is_idempotent(registry, scheduler):
    session = _lobby(registry)
    session.start_game(HOST)
    session.start_timer(HOST)
    task = scheduler.tasks[0]
    assert task.cancel() is True
    assert task.cancel() is False
    assert task.run() is False


def test_new_round_draws_a_different_word_each_round(registry):
    session = _lobby(registry)
    session.start_game(HOST)
    for _ in range(25):
        last = session.current_word
        session.new_round(HOST)
        assert session.current_word != last
        assert session.previous_word == last


def test_new_round_event_order(registry):
    session = _lobby(registry)
    session.start_game(HOST)
    names = [e.name for e in session.new_round(HOST)]
    assert names.count('roleAssigned') == 4
    assert names[-2:] == ['newRoundStarted', 'gameStarted']


def test_new_round_cancels_timer_and_keeps_registration_closed(registry, scheduler):
    session = _lobby(registry)
    session.start_game(HOST)
    session.start_timer(HOST)
    scheduler.fire_all()
    assert session.phase == Phase.ENDED

    session.new_round(HOST)
    assert session.phase == Phase.ACTIVE
    assert session.round_started_at is None
    assert not session.registration_open

    session.start_timer(HOST)
    session.new_round(HOST)
    assert scheduler.pending == []


def test_new_round_rebuilds_spy_nicknames_from_current_roster(registry):
    session = _lobby(registry, ['A', 'B', 'C', 'D', 'E', 'F'])
    session.start_game(HOST)
    for cid in list(session.spies):
        session.leave(cid)
    session.new_round(HOST)
    assert session.spy_nicknames == {session.roster[cid].nickname for cid in session.spies}
    assert session.spies <= set(session.roster)


def test_new_round_drops_dead_connections(registry):
    session = _lobby(registry)
    session.start_game(HOST)
    events = session.new_round(HOST, is_live=lambda sid: sid != 'sid-D')
    assert 'sid-D' not in session.roster
    assert 'sid-D' not in session.spies
    assert 'sid-D' not in _roles(events)
    assert events[0].name == 'playersUpdated'
    assert events[0].payload['count'] == 3


def test_new_round_from_lobby_is_rejected(registry):
    session = _lobby(registry)
    with pytest.raises(InvalidPhase):
        session.new_round(HOST)
    assert session.phase == Phase.LOBBY
    assert session.registration_open


@pytest.mark.parametrize('operation,event', [('abort', 'gameAborted'), ('close', 'gameClosed')])
def test_abort_and_close_remove_session(registry, scheduler, operation, event):
    session = _lobby(registry)
    session.start_game(HOST)
    session.start_timer(HOST)
    events = getattr(session, operation)(HOST)
    assert [e.name for e in events] == [event]
    assert session.code not in registry
    assert scheduler.pending == []


def test_host_leave_aborts(registry):
    session = _lobby(registry)
    events = session.leave(HOST)
    assert [e.name for e in events] == ['gameAborted']
    assert registry.get(session.code) is None
    assert session.leave('sid-A') == []


def test_leave_is_idempotent(registry):
    session = _lobby(registry)
    assert session.leave('sid-A')[0].name == 'playersUpdated'
    assert session.leave('sid-A') == []
    assert session.leave('nobody') == []
    assert 'A' in session.known_nicknames


def test_reclaim_host_transfers_authority(registry):
    session = _lobby(registry)
    session.join(HOST, 'Hosty')
    events = session.reclaim_host('new-host')
    assert session.host_connection_id == 'new-host'
    assert not session.roster[HOST].is_host
    assert events[0].name == 'hostJoinedSession'
    assert events[0].payload['playerCount'] == 5
    assert all(e.audience == Audience.CALLER for e in events)

    with pytest.raises(Unauthorized):
        session.start_game(HOST)
    session.start_game('new-host')
    assert session.phase == Phase.ACTIVE
