import pytest

from arena.models import SessionPhase
from arena.protocol import SessionProtocol
from arena.services.games.scheduler import MOVE


@pytest.fixture()
def protocol(store, supervisor, emitter):
    return SessionProtocol(store, supervisor, emitter)


def _pair(protocol, emitter, sid='ABCDEF'):
    protocol.create_session('host', sid)
    protocol.join_session('guest', {'session_id': sid})
    emitter.clear()


def test_create_session_replies(protocol, emitter):
    protocol.create_session('host', 'abcdef')
    assert emitter.events_for('host') == [
        ('participant_number', {'session_id': 'ABCDEF', 'participant_number': 1}),
        ('session_created', {'session_id': 'ABCDEF'}),
        ('membership_changed', {'session_id': 'ABCDEF', 'count': 1}),
    ]


def test_create_existing_session_rejected(protocol, emitter, store):
    protocol.create_session('h1', 'X')
    emitter.clear()
    protocol.create_session('h2', {'session_id': 'x'})
    assert emitter.names_for('h2') == ['session_already_exists']
    assert store.get('X').connections == ['h1']


def test_missing_session_id_is_invalid_request(protocol, emitter):
    protocol.create_session('host', {})
    assert emitter.names_for('host') == ['invalid_request']


def test_join_broadcasts_and_starts_match_once(protocol, emitter):
    protocol.create_session('host', 'ABCDEF')
    emitter.clear()
    protocol.join_session('guest', {'room_id': 'ABCDEF'})
    assert emitter.events_for('guest')[0] == (
        'participant_number', {'session_id': 'ABCDEF', 'participant_number': 2})
    assert emitter.count('membership_changed', 'host') == 1
    assert emitter.count('membership_changed', 'guest') == 1
    assert emitter.count('match_start', 'host') == 1
    assert emitter.count('match_start', 'guest') == 1

    # Client retry of the same join
    protocol.join_session('guest', 'ABCDEF')
    assert emitter.count('match_start') == 2
    assert emitter.events_for('guest')[-2][1]['participant_number'] == 2


def test_join_rejections(protocol, emitter):
    protocol.join_session('guest', 'NOPE')
    assert emitter.names_for('guest') == ['session_not_found']
    protocol.create_session('host', 'ABCDEF')
    protocol.join_session('guest', 'ABCDEF')
    protocol.join_session('third', 'ABCDEF')
    assert emitter.names_for('third') == ['session_full']


def test_end_to_end_round(protocol, emitter):
    _pair(protocol, emitter)
    protocol.submit_choice('host', {'session_id': 'ABCDEF', 'choice': 'rock', 'participant_number': 1})
    assert emitter.names_for('guest') == ['opponent_moved']
    assert emitter.names_for('host') == []
    protocol.submit_choice('guest', {'session_id': 'ABCDEF', 'move': 'scissors', 'playerNumber': 2})
    expected = {'session_id': 'ABCDEF', 'choices': {'1': 'rock', '2': 'scissors'}, 'outcome': 'p1'}
    assert emitter.events_for('host') == [('round_resolved', expected)]
    assert emitter.events_for('guest')[-1] == ('round_resolved', expected)


def test_submit_without_opponent_is_not_paired(protocol, emitter, store):
    protocol.create_session('host', 'ABCDEF')
    emitter.clear()
    protocol.submit_choice('host', {'session_id': 'ABCDEF', 'choice': 'rock'})
    assert emitter.names_for('host') == ['not_paired']
    assert store.get('ABCDEF').pending_choices == {}


def test_submit_for_opponent_number_rejected(protocol, emitter, store):
    _pair(protocol, emitter)
    protocol.submit_choice('host', {'session_id': 'ABCDEF', 'choice': 'rock', 'participant_number': 2})
    assert emitter.names_for('host') == ['invalid_request']
    assert emitter.names_for('guest') == []
    assert store.get('ABCDEF').pending_choices == {}


def test_submit_invalid_choice(protocol, emitter, store):
    _pair(protocol, emitter)
    protocol.submit_choice('host', {'session_id': 'ABCDEF', 'choice': 'lizard'})
    assert emitter.names_for('host') == ['invalid_choice']
    assert store.get('ABCDEF').pending_choices == {}


def test_submit_for_gone_session_from_untracked_connection_is_dropped(protocol, emitter):
    protocol.submit_choice('ghost', {'session_id': 'GONE', 'choice': 'rock'})
    assert emitter.sent == []


def test_submit_for_unknown_session_from_tracked_connection_is_rejected(protocol, emitter):
    protocol.create_session('host', 'ABCDEF')
    emitter.clear()
    protocol.submit_choice('host', {'session_id': 'OTHER', 'choice': 'rock'})
    assert emitter.names_for('host') == ['session_not_found']


def test_leave_notifies_remaining_once(protocol, emitter, store):
    _pair(protocol, emitter)
    protocol.leave_session('guest', 'ABCDEF')
    protocol.leave_session('guest', 'ABCDEF')
    protocol.disconnect('guest')
    assert emitter.count('opponent_left', 'host') == 1
    assert emitter.events_for('host')[0] == ('membership_changed', {'session_id': 'ABCDEF', 'count': 1})
    assert emitter.names_for('guest') == ['left']
    assert store.get('ABCDEF').connections == ['host']


def test_leave_from_non_member_sends_nothing(protocol, emitter, store):
    _pair(protocol, emitter)
    protocol.leave_session('stranger', 'ABCDEF')
    protocol.leave_session('stranger', 'NOPE')
    assert emitter.sent == []
    assert store.get('ABCDEF').connections == ['host', 'guest']


def test_disconnect_equivalent_to_leave(store, supervisor, emitter):
    outcomes = []
    for depart in ('leave', 'disconnect'):
        from arena.sessions import SessionStore
        s = SessionStore(supervisor)
        p = SessionProtocol(s, supervisor, emitter)
        emitter.clear()
        p.create_session('host', 'ABCDEF')
        p.join_session('guest', 'ABCDEF')
        emitter.clear()
        if depart == 'leave':
            p.leave_session('guest', 'ABCDEF')
        else:
            p.disconnect('guest')
        session = s.get('ABCDEF')
        outcomes.append((emitter.events_for('host'), session.connections, session.phase))
    assert outcomes[0] == outcomes[1]
    assert outcomes[0][0].count(('opponent_left', {'session_id': 'ABCDEF'})) == 1


def test_leave_before_pairing_has_no_opponent_left(protocol, emitter, store):
    protocol.create_session('host', 'ABCDEF')
    protocol.leave_session('host', 'ABCDEF')
    assert emitter.count('opponent_left') == 0
    assert 'ABCDEF' not in store


def test_joining_other_session_leaves_current(protocol, emitter, store):
    _pair(protocol, emitter)
    protocol.create_session('other', 'SECOND')
    emitter.clear()
    protocol.join_session('guest', 'SECOND')
    assert emitter.count('opponent_left', 'host') == 1
    assert store.session_of('guest') == 'SECOND'
    assert store.get('ABCDEF').connections == ['host']


def test_creating_other_session_leaves_current(protocol, emitter, store):
    _pair(protocol, emitter)
    protocol.create_session('guest', 'SECOND')
    assert emitter.count('opponent_left', 'host') == 1
    assert emitter.names_for('guest') == ['participant_number', 'session_created', 'membership_changed']
    assert store.session_of('guest') == 'SECOND'
    assert store.get('ABCDEF').connections == ['host']


def test_rejected_create_keeps_current_session(protocol, emitter, store):
    _pair(protocol, emitter, 'ONE')
    protocol.create_session('owner', 'TWO')
    emitter.clear()
    protocol.create_session('host', 'TWO')
    assert emitter.names_for('host') == ['session_already_exists']
    assert emitter.names_for('guest') == []
    assert store.get('ONE').connections == ['host', 'guest']
    assert store.get('TWO').connections == ['owner']
    assert store.session_of('host') == 'ONE'


def test_rejected_join_keeps_current_session(protocol, emitter, store):
    _pair(protocol, emitter, 'ONE')
    protocol.create_session('p1', 'TWO')
    protocol.join_session('p2', 'TWO')
    emitter.clear()
    protocol.join_session('host', 'NOPE')
    assert emitter.names_for('host') == ['session_not_found']
    protocol.join_session('host', 'TWO')
    assert emitter.names_for('host') == ['session_not_found', 'session_full']
    assert emitter.names_for('guest') == []
    assert store.get('ONE').connections == ['host', 'guest']
    assert store.get('ONE').phase is SessionPhase.ACTIVE
    assert store.session_of('host') == 'ONE'


def test_query_state(protocol, emitter):
    protocol.create_session('host', 'ABCDEF')
    emitter.clear()
    protocol.query_state('host', 'ABCDEF')
    assert emitter.events_for('host') == [('session_state', {'session_id': 'ABCDEF', 'started': False})]
    protocol.join_session('guest', 'ABCDEF')
    protocol.query_state('guest', {'session_id': 'abcdef'})
    assert emitter.events_for('guest')[-1] == ('session_state', {'session_id': 'ABCDEF', 'started': True})
    protocol.query_state('guest', 'NOPE')
    assert emitter.events_for('guest')[-1][0] == 'session_not_found'


def test_move_timeout_scenario(protocol, emitter, store, timers):
    _pair(protocol, emitter)
    protocol.submit_choice('host', {'session_id': 'ABCDEF', 'choice': 'paper'})
    timers.fire('ABCDEF', MOVE)
    assert emitter.count('move_timed_out', 'host') == 1
    assert emitter.count('move_timed_out', 'guest') == 1
    session = store.get('ABCDEF')
    assert session.pending_choices == {}
    assert session.phase is SessionPhase.ACTIVE
