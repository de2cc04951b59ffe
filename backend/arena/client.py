"""Socket.IO client that plays one match against the session server.

Drives a MatchEngine from server events. Useful for bots and for
end-to-end checks against a running server:

    client = MatchClient('http://localhost:3001', 'ABCDEF', host=True)
    client.connect()
    client.choose('rock')
"""
import logging
from typing import Callable, Optional

import socketio

from arena.match import MatchEngine, MatchMode, MatchPhase
from arena.models import normalize_session_id
from arena.services.games.resolver import parse_choice

logger = logging.getLogger(__name__)

MAX_JOIN_ATTEMPTS = 5
JOIN_RETRY_DELAY_SEC = 0.7
COUNTDOWN_SEC = 3.0


class JoinFailed(Exception):
    pass


class MatchClient:
    # Events that end the client's part in the session
    TERMINAL_EVENTS = ('session_already_exists', 'session_full', 'session_expired', 'opponent_left')

    def __init__(self, url: str, session_id: str, host: bool = False, mode: Optional[MatchMode] = None,
                 namespace: str = '/ws', sio=None,
                 on_round_start: Optional[Callable[['MatchClient'], None]] = None,
                 countdown: float = COUNTDOWN_SEC, display_delay: float = 3.0,
                 max_join_attempts: int = MAX_JOIN_ATTEMPTS, join_retry_delay: float = JOIN_RETRY_DELAY_SEC):
        self.url = url
        self.session_id = normalize_session_id(session_id)
        self.host = host
        self.mode = mode or MatchMode()
        self.namespace = namespace
        self.sio = sio or socketio.Client()
        self.on_round_start = on_round_start
        self.countdown = countdown
        self.display_delay = display_delay
        self.max_join_attempts = max_join_attempts
        self.join_retry_delay = join_retry_delay

        self.participant_number: Optional[int] = None
        self.engine: Optional[MatchEngine] = None
        self.status = 'idle'
        self.error: Optional[Exception] = None
        self.join_attempts = 0
        self.last_round: Optional[dict] = None
        self._register()

    def _register(self):
        handlers = {
            'connect': self._on_connect,
            'participant_number': self._on_participant_number,
            'session_created': self._on_session_created,
            'membership_changed': self._on_membership_changed,
            'match_start': self._on_match_start,
            'session_state': self._on_session_state,
            'round_resolved': self._on_round_resolved,
            'move_timed_out': self._on_move_timed_out,
            'session_not_found': self._on_session_not_found,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler, namespace=self.namespace)
        for event in self.TERMINAL_EVENTS:
            self.sio.on(event, self._terminal(event), namespace=self.namespace)

    # ---- outbound ----

    def connect(self):
        self.status = 'connecting'
        self.sio.connect(self.url, namespaces=[self.namespace])

    def disconnect(self):
        self.sio.disconnect()

    def _send(self, event, payload):
        self.sio.emit(event, payload, namespace=self.namespace)

    def choose(self, choice):
        choice = parse_choice(choice, self.session_id)
        if self.engine is None or self.engine.phase is not MatchPhase.AWAITING_CHOICE:
            logger.warning(f"[client] choice {choice.value} ignored, not awaiting a choice")
            return False
        self._send('submit_choice', {
            'session_id': self.session_id,
            'choice': choice.value,
            'participant_number': self.participant_number,
        })
        return True

    def quit(self):
        self._send('leave_session', {'session_id': self.session_id})
        if self.engine is not None:
            self.engine.quit()
        self.status = 'left'

    def query_state(self):
        self._send('query_state', {'session_id': self.session_id})

    # ---- scheduling ----

    def _schedule(self, delay: float, fn: Callable[[], None]):
        def _later():
            self.sio.sleep(delay)
            fn()
        self.sio.start_background_task(_later)

    def _next_round(self):
        self._schedule(self.countdown, self._countdown_done)

    def _countdown_done(self):
        if self.engine is None:
            return
        self.engine.countdown_finished()
        if self.engine.phase is MatchPhase.AWAITING_CHOICE and self.on_round_start is not None:
            self.on_round_start(self)

    # ---- inbound ----

    def _on_connect(self):
        if self.host:
            self._send('create_session', {'session_id': self.session_id})
        else:
            self._try_join(1)

    def _try_join(self, attempt: int):
        if attempt > self.max_join_attempts:
            self.status = 'join_failed'
            self.error = JoinFailed(f'session {self.session_id} not found after {self.max_join_attempts} attempts')
            logger.warning(f"[client] {self.error}")
            return
        self.join_attempts = attempt
        logger.info(f"[client] join attempt {attempt} session={self.session_id}")
        self._send('join_session', {'session_id': self.session_id})

    def _on_session_not_found(self, data=None):
        if self.host or self.participant_number is not None:
            self.status = 'session_not_found'
            return
        attempt = self.join_attempts + 1
        # Linear backoff between attempts
        self._schedule(self.join_retry_delay * self.join_attempts, lambda: self._try_join(attempt))

    def _on_participant_number(self, data):
        number = int(data['participant_number'])
        if self.engine is None or number != self.participant_number:
            self.engine = MatchEngine(
                number,
                self.mode,
                request_next_round=self._next_round,
                schedule=self._schedule,
                display_delay=self.display_delay,
            )
        self.participant_number = number
        self.status = 'waiting'

    def _on_session_created(self, data=None):
        self.status = 'waiting'

    def _on_membership_changed(self, data):
        logger.info(f"[client] session={self.session_id} participants={data.get('count')}")

    def _on_match_start(self, data=None):
        if self.engine is None:
            return
        self.status = 'playing'
        self.engine.start()

    def _on_session_state(self, data):
        # Late subscriber: the match may already have started without us seeing match_start
        if data.get('started'):
            self._on_match_start(data)

    def _on_round_resolved(self, data):
        if self.engine is None:
            return
        self.last_round = data
        self.engine.record_outcome(data['outcome'])
        if self.engine.is_over:
            self.status = 'match_over'

    def _on_move_timed_out(self, data=None):
        if self.engine is not None:
            self.engine.round_abandoned()

    def _terminal(self, event: str):
        def handler(data=None):
            self.status = event
            if self.engine is not None:
                self.engine.quit()
        return handler
