"""In-memory session registry.

The store is the only owner of Session records and of the reverse index
from connection id to session id. Every mutation of a session happens
while holding that session's lock; the registry lock is only taken for
short dict operations and never while waiting for a session lock, so the
two can not deadlock.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

from arena.errors import NotPaired, ProtocolViolation, SessionAlreadyExists, SessionFull, SessionNotFound
from arena.models import (
    GUEST_NUMBER,
    HOST_NUMBER,
    Choice,
    Participant,
    RoundOutcome,
    Session,
    SessionPhase,
    normalize_session_id,
)
from arena.services.games.resolver import resolve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    session_id: str
    number: int
    connections: List[str]
    rejoined: bool = False


@dataclass(frozen=True)
class Pending:
    """A choice was recorded; the round waits for the other participant."""
    session_id: str
    number: int
    opponent: Optional[str] = None


@dataclass(frozen=True)
class LeaveResult:
    session_id: str
    connection: str
    remaining: List[str] = field(default_factory=list)
    deleted: bool = False
    # Connection that must be told its opponent left, if any
    notify_opponent: Optional[str] = None


class SessionStore:

    def __init__(self, supervisor):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._index: Dict[str, str] = {}
        self.supervisor = supervisor
        supervisor.attach(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id) -> bool:
        with self._lock:
            return normalize_session_id(session_id) in self._sessions

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[Optional[Session]]:
        """Yield the live session holding its lock, or None if it is gone."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            yield None
            return
        with session.lock:
            # Closed between the lookup and acquiring the lock
            yield None if session.phase is SessionPhase.CLOSED else session

    def _close(self, session: Session) -> None:
        session.phase = SessionPhase.CLOSED
        with self._lock:
            if self._sessions.get(session.id) is session:
                del self._sessions[session.id]
            for connection in session.connections:
                if self._index.get(connection) == session.id:
                    del self._index[connection]
        self.supervisor.release(session.id)
        logger.info(f"[session-close] session={session.id}")

    # ---- lookups ----

    def get(self, session_id) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(normalize_session_id(session_id))

    def session_of(self, connection: str) -> Optional[str]:
        with self._lock:
            return self._index.get(connection)

    def connections(self, session_id) -> List[str]:
        with self._locked(normalize_session_id(session_id)) as session:
            return session.connections if session else []

    def is_started(self, session_id) -> bool:
        sid = normalize_session_id(session_id)
        with self._locked(sid) as session:
            if session is None:
                raise SessionNotFound(sid)
            return session.started

    def snapshot(self) -> List[dict]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.to_dict() for s in sessions]

    # ---- membership ----

    def create(self, session_id, host: str, switch: bool = False) -> Session:
        """Register a new session hosted by ``host``.

        A connection indexed to another session is refused unless ``switch``
        is set. Then the index moves to the new session once it is registered,
        and leaving the old one is up to the caller.
        """
        sid = normalize_session_id(session_id)
        if not sid:
            raise ProtocolViolation(None, 'session id is required')
        session = Session(id=sid, participants=[Participant(host, HOST_NUMBER)])
        with session.lock:
            with self._lock:
                if sid in self._sessions:
                    raise SessionAlreadyExists(sid)
                current = self._index.get(host)
                if current is not None and not switch:
                    raise ProtocolViolation(sid, f'connection is already in session {current}')
                self._sessions[sid] = session
                self._index[host] = sid
            self.supervisor.arm_join(sid)
        logger.info(f"[session-create] session={sid} host={host}")
        return session

    def join(self, session_id, guest: str, switch: bool = False) -> JoinResult:
        sid = normalize_session_id(session_id)
        with self._locked(sid) as session:
            if session is None:
                raise SessionNotFound(sid)
            existing = session.number_of(guest)
            if existing is not None:
                logger.info(f"[session-rejoin] session={sid} connection={guest} number={existing}")
                return JoinResult(sid, existing, session.connections, rejoined=True)
            if session.is_full:
                raise SessionFull(sid)
            with self._lock:
                current = self._index.get(guest)
                if current is not None and not switch:
                    raise ProtocolViolation(sid, f'connection is already in session {current}')
                self._index[guest] = sid
            number = session.free_number()
            session.participants.append(Participant(guest, number))
            session.phase = SessionPhase.ACTIVE
            self.supervisor.disarm_join(sid)
            logger.info(f"[session-join] session={sid} connection={guest} number={number}")
            return JoinResult(sid, number, session.connections)

    def leave(self, connection: str, session_id) -> Optional[LeaveResult]:
        """Remove a connection from a session. Safe to call more than once."""
        sid = normalize_session_id(session_id)
        with self._locked(sid) as session:
            if session is None or session.participant(connection) is None:
                with self._lock:
                    if self._index.get(connection) == sid:
                        del self._index[connection]
                return None
            was_active = session.phase is SessionPhase.ACTIVE
            session.participants = [p for p in session.participants if p.connection != connection]
            # A round with a missing participant can never complete
            session.pending_choices.clear()
            self.supervisor.disarm_move(sid)
            with self._lock:
                if self._index.get(connection) == sid:
                    del self._index[connection]
            remaining = session.connections
            if not remaining:
                self._close(session)
                logger.info(f"[session-leave] session={sid} connection={connection} deleted")
                return LeaveResult(sid, connection, deleted=True)
            session.phase = SessionPhase.AWAITING_GUEST
            session.started = False
            self.supervisor.disarm_start(sid)
            self.supervisor.arm_join(sid)
            logger.info(f"[session-leave] session={sid} connection={connection} remaining={remaining}")
            return LeaveResult(
                sid,
                connection,
                remaining=remaining,
                notify_opponent=remaining[0] if was_active else None,
            )

    def disconnect(self, connection: str) -> Optional[LeaveResult]:
        with self._lock:
            sid = self._index.get(connection)
        if sid is None:
            return None
        return self.leave(connection, sid)

    # ---- rounds ----

    def submit_choice(self, session_id, participant_number: Optional[int], choice: Choice,
                      connection: Optional[str] = None) -> Union[RoundOutcome, Pending]:
        """Record a choice; resolve the round once both participants chose.

        When ``connection`` is given it must be a participant and may only
        choose for itself; its own number is used if ``participant_number``
        is None.
        """
        sid = normalize_session_id(session_id)
        with self._locked(sid) as session:
            if session is None:
                raise SessionNotFound(sid)
            if len(session.participants) < 2:
                raise NotPaired(sid)
            if connection is not None:
                own = session.number_of(connection)
                if own is None:
                    raise ProtocolViolation(sid, 'connection is not a participant of this session')
                if participant_number is None:
                    participant_number = own
                elif participant_number != own:
                    raise ProtocolViolation(sid, f'connection is participant {own}, not {participant_number}')
            mover = next((p.connection for p in session.participants if p.number == participant_number), None)
            if mover is None:
                raise ProtocolViolation(sid, f'participant {participant_number} is not in this session')

            session.pending_choices[participant_number] = choice
            if len(session.pending_choices) < 2:
                self.supervisor.arm_move(sid)
                return Pending(sid, participant_number, session.opponent_of(mover))

            choices = dict(session.pending_choices)
            session.pending_choices.clear()
            self.supervisor.disarm_move(sid)
            outcome = resolve(choices[HOST_NUMBER], choices[GUEST_NUMBER])
            logger.info(f"[round] session={sid} p1={choices[HOST_NUMBER].value} p2={choices[GUEST_NUMBER].value} outcome={outcome.value}")
            return RoundOutcome(sid, choices, outcome)

    # ---- timer expiry (called by the supervisor) ----

    def expire_join(self, session_id: str) -> Optional[str]:
        """Delete a session still waiting for its guest. Returns the lone connection."""
        with self._locked(session_id) as session:
            if session is None or session.phase is not SessionPhase.AWAITING_GUEST:
                return None
            if len(session.participants) != 1:
                return None
            lone = session.participants[0].connection
            self._close(session)
            return lone

    def expire_move(self, session_id: str) -> List[str]:
        """Abandon a round that is still missing a choice. Returns who to notify."""
        with self._locked(session_id) as session:
            if session is None or len(session.participants) < 2:
                return []
            if not 0 < len(session.pending_choices) < 2:
                return []
            session.pending_choices.clear()
            return session.connections

    def mark_started(self, session_id: str) -> List[str]:
        """Check-and-set the started flag. Returns recipients of match_start, if due."""
        with self._locked(session_id) as session:
            if session is None or session.started or len(session.participants) < 2:
                return []
            session.started = True
            return session.connections
