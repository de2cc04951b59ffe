import itertools
import logging
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional, Tuple

JOIN = 'join'
MOVE = 'move'
START = 'start'


@dataclass
class _Timer:
    token: int
    deadline: float
    callback: Callable[[], None]


class TimerTable:
    """Cancellable one-shot timers keyed by (session_id, purpose).

    - At most one timer per key; scheduling again replaces the previous one
    - Each timer carries a token. A background task whose token is no longer
      current when it wakes up does nothing, so cancel() never races a fire
    - With autostart off nothing runs on its own; fire() expires a timer
      through the same path the background task uses
    """

    def __init__(self, start_task: Callable = None, sleep: Callable = None,
                 autostart: bool = True, logger: Optional[logging.Logger] = None):
        self._start_task = start_task
        self._sleep = sleep or time.sleep
        self._autostart = autostart and start_task is not None
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._timers: Dict[Tuple[str, str], _Timer] = {}
        self._tokens = itertools.count(1)

    def schedule(self, session_id: str, purpose: str, delay: float, callback: Callable[[], None]) -> int:
        key = (session_id, purpose)
        timer = _Timer(token=next(self._tokens), deadline=time.time() + delay, callback=callback)
        with self._lock:
            replaced = self._timers.get(key)
            self._timers[key] = timer
        if replaced is not None:
            self._logger.info(f"[timer-replace] session={session_id} purpose={purpose} old_token={replaced.token}")
        self._logger.info(
            f"[timer-set] session={session_id} purpose={purpose} token={timer.token} delay={delay}s deadline={timer.deadline}"
        )
        if self._autostart:
            self._start_task(self._run, key, timer.token, delay)
        return timer.token

    def cancel(self, session_id: str, purpose: str) -> bool:
        with self._lock:
            timer = self._timers.pop((session_id, purpose), None)
        if timer is not None:
            self._logger.info(f"[timer-cancel] session={session_id} purpose={purpose} token={timer.token}")
        return timer is not None

    def cancel_all(self, session_id: str) -> None:
        with self._lock:
            keys = [k for k in self._timers if k[0] == session_id]
            for key in keys:
                self._timers.pop(key, None)
        for _, purpose in keys:
            self._logger.info(f"[timer-cancel] session={session_id} purpose={purpose}")

    def is_pending(self, session_id: str, purpose: str) -> bool:
        with self._lock:
            return (session_id, purpose) in self._timers

    def deadline(self, session_id: str, purpose: str) -> Optional[float]:
        with self._lock:
            timer = self._timers.get((session_id, purpose))
        return timer.deadline if timer else None

    def fire(self, session_id: str, purpose: str) -> bool:
        """Expire the current timer for this key now. Returns False if none is armed."""
        with self._lock:
            timer = self._timers.get((session_id, purpose))
        if timer is None:
            return False
        return self._fire_if_current((session_id, purpose), timer.token)

    def _run(self, key: Tuple[str, str], token: int, delay: float) -> None:
        self._sleep(delay)
        self._fire_if_current(key, token)

    def _fire_if_current(self, key: Tuple[str, str], token: int) -> bool:
        with self._lock:
            timer = self._timers.get(key)
            if timer is None or timer.token != token:
                current = timer.token if timer else None
                self._logger.info(f"[timer-abort] session={key[0]} purpose={key[1]} token={token} current={current}")
                return False
            del self._timers[key]
        self._logger.info(f"[timer-fire] session={key[0]} purpose={key[1]} token={token}")
        timer.callback()
        return True


class TimeoutSupervisor:
    """Join deadline, move deadline and match-start settle delay per session.

    The supervisor never keeps session state of its own. Every expiry looks
    the session up through the store, which re-checks under the session lock
    that the watched condition still holds before mutating anything.
    """

    def __init__(self, timers: TimerTable, notify: Callable[[str, dict, str], None],
                 join_timeout: float = 60, move_timeout: float = 30, start_delay: float = 1.0,
                 logger: Optional[logging.Logger] = None):
        self.timers = timers
        self.notify = notify
        self.join_timeout = join_timeout
        self.move_timeout = move_timeout
        self.start_delay = start_delay
        self.logger = logger or logging.getLogger(__name__)
        self.store = None

    def attach(self, store) -> None:
        self.store = store

    # ---- arming / disarming ----

    def arm_join(self, session_id: str) -> None:
        self.timers.schedule(session_id, JOIN, self.join_timeout, partial(self._on_join_expired, session_id))

    def disarm_join(self, session_id: str) -> None:
        self.timers.cancel(session_id, JOIN)

    def arm_move(self, session_id: str) -> None:
        self.timers.schedule(session_id, MOVE, self.move_timeout, partial(self._on_move_expired, session_id))

    def disarm_move(self, session_id: str) -> None:
        self.timers.cancel(session_id, MOVE)

    def arm_start(self, session_id: str) -> None:
        if self.start_delay <= 0:
            self._on_start(session_id)
            return
        self.timers.schedule(session_id, START, self.start_delay, partial(self._on_start, session_id))

    def disarm_start(self, session_id: str) -> None:
        self.timers.cancel(session_id, START)

    def release(self, session_id: str) -> None:
        """Drop every timer of a session that no longer exists."""
        self.timers.cancel_all(session_id)

    # ---- expiry handlers ----

    def _on_join_expired(self, session_id: str) -> None:
        lone = self.store.expire_join(session_id)
        if lone is None:
            self.logger.info(f"[timer-abort] session={session_id} purpose={JOIN} condition no longer holds")
            return
        self.logger.info(f"[session-expired] session={session_id} lone={lone}")
        self.notify('session_expired', {'session_id': session_id}, lone)

    def _on_move_expired(self, session_id: str) -> None:
        connections = self.store.expire_move(session_id)
        if not connections:
            self.logger.info(f"[timer-abort] session={session_id} purpose={MOVE} condition no longer holds")
            return
        self.logger.info(f"[move-timeout] session={session_id} round abandoned")
        for connection in connections:
            self.notify('move_timed_out', {'session_id': session_id}, connection)

    def _on_start(self, session_id: str) -> None:
        connections = self.store.mark_started(session_id)
        if not connections:
            self.logger.info(f"[match-start-skip] session={session_id} already started or not paired")
            return
        self.logger.info(f"[match-start] session={session_id} participants={connections}")
        for connection in connections:
            self.notify('match_start', {'session_id': session_id}, connection)
