"""Client-side match progression.

A match is a sequence of rounds played under a round-limit policy: a fixed
odd number of rounds (first to a majority wins, equal non-zero scores after
the scheduled rounds go to a sudden-death tiebreaker) or unlimited, which
only ends when the player quits. The engine folds one round outcome at a
time and decides whether to advance to the next round or stop.
"""
import logging
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from arena.models import Choice, Outcome
from arena.services.games.resolver import play_computer_round, random_choice

logger = logging.getLogger(__name__)

ROUND_DISPLAY_DELAY_SEC = 3.0

Scheduler = Callable[[float, Callable[[], None]], None]


class MatchPhase(str, Enum):
    IDLE = 'Idle'
    COUNTDOWN = 'Countdown'
    AWAITING_CHOICE = 'AwaitingChoice'
    ROUND_RESOLVED = 'RoundResolved'
    MATCH_OVER = 'MatchOver'


class Side(str, Enum):
    SELF = 'self'
    OPPONENT = 'opponent'
    TIE = 'tie'


@dataclass(frozen=True)
class MatchMode:
    rounds: Optional[int] = 3

    def __post_init__(self):
        if self.rounds is not None and (self.rounds < 1 or self.rounds % 2 == 0):
            raise ValueError(f'round count must be a positive odd number, got {self.rounds}')

    @classmethod
    def best_of(cls, rounds: int) -> 'MatchMode':
        return cls(rounds)

    @classmethod
    def unlimited(cls) -> 'MatchMode':
        return cls(None)

    @property
    def limited(self) -> bool:
        return self.rounds is not None

    @property
    def majority(self) -> Optional[int]:
        return self.rounds // 2 + 1 if self.rounds is not None else None


def to_side(outcome: Union[Outcome, Side, str], participant_number: int) -> Side:
    """Map a server-relative outcome (p1/p2/tie) to this player's view."""
    if isinstance(outcome, Side):
        return outcome
    if isinstance(outcome, str) and outcome in {s.value for s in Side}:
        return Side(outcome)
    outcome = Outcome(outcome)
    if outcome is Outcome.TIE:
        return Side.TIE
    mine = Outcome.P1 if participant_number == 1 else Outcome.P2
    return Side.SELF if outcome is mine else Side.OPPONENT


@dataclass
class MatchState:
    mode: MatchMode = field(default_factory=MatchMode)
    rounds_won: Dict[Side, int] = field(default_factory=lambda: {Side.SELF: 0, Side.OPPONENT: 0})
    ties: int = 0
    round_history: List[Side] = field(default_factory=list)
    tiebreaker_active: bool = False
    tiebreaker_history: List[Side] = field(default_factory=list)
    winner: Optional[Side] = None
    quit: bool = False

    @property
    def history(self) -> List[Side]:
        return self.round_history + self.tiebreaker_history

    @property
    def rounds_played(self) -> int:
        return len(self.round_history) + len(self.tiebreaker_history)

    @property
    def current_round(self) -> int:
        return self.rounds_played + 1

    @property
    def is_over(self) -> bool:
        return self.winner is not None or self.quit

    def scoreboard(self) -> dict:
        wins = self.rounds_won[Side.SELF]
        losses = self.rounds_won[Side.OPPONENT]
        total = wins + losses + self.ties
        return {
            'wins': wins,
            'losses': losses,
            'ties': self.ties,
            'win_percentage': round(wins / total * 100) if total else 0,
        }

    def to_dict(self):
        return {
            'mode': self.mode.rounds,
            'rounds_won': {'self': self.rounds_won[Side.SELF], 'opponent': self.rounds_won[Side.OPPONENT]},
            'round_history': [s.value for s in self.round_history],
            'tiebreaker_active': self.tiebreaker_active,
            'tiebreaker_history': [s.value for s in self.tiebreaker_history],
            'winner': self.winner.value if self.winner else None,
            'current_round': self.current_round,
            'scoreboard': self.scoreboard(),
        }


class MatchEngine:
    """Folds round outcomes into MatchState.

    ``schedule(delay, fn)`` runs fn later; it is used to auto-advance to the
    next round after a result has been on screen for ``display_delay``.
    Without a scheduler the caller drives ``advance()`` itself.
    ``request_next_round()`` is called every time a new round begins.
    """

    def __init__(self, participant_number: int = 1, mode: Optional[MatchMode] = None,
                 request_next_round: Optional[Callable[[], None]] = None,
                 schedule: Optional[Scheduler] = None,
                 display_delay: float = ROUND_DISPLAY_DELAY_SEC):
        self.participant_number = participant_number
        self.mode = mode or MatchMode()
        self.request_next_round = request_next_round
        self.schedule = schedule
        self.display_delay = display_delay
        self.state = MatchState(self.mode)
        self.phase = MatchPhase.IDLE
        self._lock = threading.RLock()
        # Bumped whenever a pending auto-advance must be ignored
        self._advance_token = 0

    @property
    def is_over(self) -> bool:
        return self.phase is MatchPhase.MATCH_OVER

    def start(self) -> None:
        with self._lock:
            if self.phase is not MatchPhase.IDLE:
                logger.info(f"[match] start ignored in phase={self.phase.value}")
                return
            self.phase = MatchPhase.COUNTDOWN
        self._notify_next_round()

    def countdown_finished(self) -> None:
        with self._lock:
            if self.phase is MatchPhase.COUNTDOWN:
                self.phase = MatchPhase.AWAITING_CHOICE

    def record_outcome(self, outcome) -> Optional[Side]:
        """Fold one round outcome. Returns this player's side of it."""
        with self._lock:
            if self.phase is MatchPhase.MATCH_OVER:
                logger.warning(f"[match] outcome {outcome} after match end ignored")
                return None
            side = to_side(outcome, self.participant_number)
            state = self.state
            if state.tiebreaker_active:
                state.tiebreaker_history.append(side)
            else:
                state.round_history.append(side)
            if side is Side.TIE:
                state.ties += 1
            else:
                state.rounds_won[side] += 1
            self.phase = MatchPhase.ROUND_RESOLVED
            self._check_termination(side)
            if state.is_over:
                self.phase = MatchPhase.MATCH_OVER
                self._advance_token += 1
                logger.info(f"[match] over winner={state.winner.value} after {state.rounds_played} rounds")
                return side
            self._advance_token += 1
            token = self._advance_token
        if self.schedule is not None:
            self.schedule(self.display_delay, lambda: self._advance_if_current(token))
        return side

    def _check_termination(self, side: Side) -> None:
        state = self.state
        mode = state.mode
        if not mode.limited:
            return
        if state.tiebreaker_active:
            if side is not Side.TIE:
                state.winner = side
            return
        for candidate in (Side.SELF, Side.OPPONENT):
            if state.rounds_won[candidate] >= mode.majority:
                state.winner = candidate
                return
        wins = state.rounds_won[Side.SELF]
        if wins > 0 and wins == state.rounds_won[Side.OPPONENT] and state.rounds_played >= mode.rounds:
            state.tiebreaker_active = True
            logger.info(f"[match] tiebreaker at {wins}-{wins}")

    def _advance_if_current(self, token: int) -> None:
        with self._lock:
            if token != self._advance_token:
                return
        self.advance()

    def advance(self) -> None:
        """Move from a shown result to the next round's countdown."""
        with self._lock:
            if self.phase is not MatchPhase.ROUND_RESOLVED:
                return
            self.phase = MatchPhase.COUNTDOWN
        self._notify_next_round()

    def round_abandoned(self) -> None:
        """The server dropped the round (move timeout); replay it unscored."""
        with self._lock:
            if self.phase in (MatchPhase.IDLE, MatchPhase.MATCH_OVER):
                return
            self._advance_token += 1
            self.phase = MatchPhase.COUNTDOWN
        self._notify_next_round()

    def quit(self) -> None:
        with self._lock:
            if self.phase is MatchPhase.MATCH_OVER:
                return
            self.state.quit = True
            self.phase = MatchPhase.MATCH_OVER
            self._advance_token += 1

    def reset(self) -> None:
        with self._lock:
            self.state = MatchState(self.mode)
            self.phase = MatchPhase.IDLE
            self._advance_token += 1

    def _notify_next_round(self) -> None:
        if self.request_next_round is not None:
            self.request_next_round()


def simulate_offline_match(mode: MatchMode, seed: Optional[int] = None, max_rounds: int = 25,
                           player: Optional[Callable[[], Choice]] = None) -> MatchEngine:
    """Play a match against the computer without a server.

    The player is participant 1. ``max_rounds`` bounds unlimited matches,
    which then end as if the player quit.
    """
    rng = random.Random(seed)
    player = player or (lambda: random_choice(rng))
    engine = MatchEngine(1, mode)
    engine.start()
    while not engine.is_over:
        if engine.state.rounds_played >= max_rounds:
            engine.quit()
            break
        engine.countdown_finished()
        _, outcome = play_computer_round(player(), rng)
        engine.record_outcome(outcome)
        engine.advance()
    return engine
