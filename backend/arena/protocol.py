import logging
from functools import wraps
from typing import Callable, Optional

from arena.errors import ProtocolViolation, SessionError, SessionNotFound
from arena.models import RoundOutcome, normalize_session_id
from arena.services.games.resolver import parse_choice
from arena.sessions import LeaveResult, Pending

Emit = Callable[[str, dict, str], None]


def _rejecting(handler):
    """Turn SessionError raised by an intent into a named event for the sender."""
    @wraps(handler)
    def wrapper(self, connection, data=None):
        try:
            return handler(self, connection, data)
        except SessionError as exc:
            self.reject(connection, exc)
            return None
    return wrapper


def _session_id(data) -> str:
    # Clients send either the bare id or a dict
    if isinstance(data, dict):
        raw = data.get('session_id') or data.get('room_id') or data.get('roomId')
    else:
        raw = data
    sid = normalize_session_id(raw)
    if not sid:
        raise ProtocolViolation(None, 'session_id is required')
    return sid


def _participant_number(data) -> Optional[int]:
    if not isinstance(data, dict):
        return None
    raw = data.get('participant_number', data.get('player_number', data.get('playerNumber')))
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ProtocolViolation(data.get('session_id'), f'bad participant_number {raw!r}') from None


class SessionProtocol:
    """Server side of the session protocol.

    Validates each intent against the store, mutates it, and emits the
    resulting events through ``emit(event, payload, to)``. It knows nothing
    about the transport beyond a connection id.
    """

    def __init__(self, store, supervisor, emit: Emit, logger: Optional[logging.Logger] = None):
        self.store = store
        self.supervisor = supervisor
        self.emit = emit
        self.logger = logger or logging.getLogger(__name__)

    def reject(self, connection: str, error: SessionError) -> None:
        self.logger.info(f"[reject] connection={connection} event={error.event} session={error.session_id} reason={error}")
        self.emit(error.event, error.to_dict(), connection)

    # ---- intents ----

    @_rejecting
    def create_session(self, connection: str, data=None) -> None:
        sid = _session_id(data)
        previous = self.store.session_of(connection)
        self.store.create(sid, connection, switch=True)
        self._leave_previous(connection, previous, sid)
        self.emit('participant_number', {'session_id': sid, 'participant_number': 1}, connection)
        self.emit('session_created', {'session_id': sid}, connection)
        self.emit('membership_changed', {'session_id': sid, 'count': 1}, connection)

    @_rejecting
    def join_session(self, connection: str, data=None) -> None:
        sid = _session_id(data)
        previous = self.store.session_of(connection)
        result = self.store.join(sid, connection, switch=True)
        self._leave_previous(connection, previous, sid)
        self.emit('participant_number', {'session_id': sid, 'participant_number': result.number}, connection)
        count = len(result.connections)
        for member in result.connections:
            self.emit('membership_changed', {'session_id': sid, 'count': count}, member)
        if count == 2:
            # match_start goes out once per pairing; the store guards retries
            self.supervisor.arm_start(sid)

    @_rejecting
    def submit_choice(self, connection: str, data=None) -> None:
        sid = _session_id(data)
        raw_choice = data.get('choice', data.get('move')) if isinstance(data, dict) else None
        choice = parse_choice(raw_choice, sid)
        number = _participant_number(data)
        try:
            result = self.store.submit_choice(sid, number, choice, connection=connection)
        except SessionNotFound:
            if self.store.session_of(connection) is None:
                # Session vanished in a race and this connection was cleaned up with it
                self.logger.info(f"[drop] connection={connection} submit_choice for gone session={sid}")
                return
            raise
        if isinstance(result, Pending):
            if result.opponent is not None:
                self.emit('opponent_moved', {'session_id': sid}, result.opponent)
            return
        self._broadcast_outcome(result)

    @_rejecting
    def leave_session(self, connection: str, data=None) -> None:
        sid = _session_id(data)
        result = self.store.leave(connection, sid)
        if result is None:
            self.logger.info(f"[leave-noop] connection={connection} not in session={sid}")
            return
        self.emit('left', {'session_id': sid}, connection)
        self._announce_departure(result)

    @_rejecting
    def query_state(self, connection: str, data=None) -> None:
        sid = _session_id(data)
        started = self.store.is_started(sid)
        self.emit('session_state', {'session_id': sid, 'started': started}, connection)

    def disconnect(self, connection: str) -> None:
        result = self.store.disconnect(connection)
        if result is not None:
            self._announce_departure(result)

    # ---- helpers ----

    def _leave_previous(self, connection: str, previous: Optional[str], target: str) -> None:
        """A connection occupies one session at a time; drop the one it switched away from."""
        if previous is None or previous == target:
            return
        self.logger.info(f"[session-switch] connection={connection} from={previous} to={target}")
        result = self.store.leave(connection, previous)
        if result is not None:
            self._announce_departure(result)

    def _announce_departure(self, result: LeaveResult) -> None:
        count = len(result.remaining)
        for member in result.remaining:
            self.emit('membership_changed', {'session_id': result.session_id, 'count': count}, member)
        if result.notify_opponent is not None:
            self.emit('opponent_left', {'session_id': result.session_id}, result.notify_opponent)

    def _broadcast_outcome(self, outcome: RoundOutcome) -> None:
        payload = outcome.to_dict()
        for member in self.store.connections(outcome.session_id):
            self.emit('round_resolved', payload, member)
