import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Choice(str, Enum):
    ROCK = 'rock'
    PAPER = 'paper'
    SCISSORS = 'scissors'


class Outcome(str, Enum):
    P1 = 'p1'
    P2 = 'p2'
    TIE = 'tie'


class SessionPhase(str, Enum):
    AWAITING_GUEST = 'AwaitingGuest'
    ACTIVE = 'Active'
    CLOSED = 'Closed'


HOST_NUMBER = 1
GUEST_NUMBER = 2
MAX_PARTICIPANTS = 2


def normalize_session_id(session_id) -> str:
    """Session ids compare case-insensitively; store them upper-cased."""
    return str(session_id or '').strip().upper()


@dataclass
class Participant:
    connection: str
    number: int


@dataclass
class Session:
    id: str
    participants: List[Participant] = field(default_factory=list)
    pending_choices: Dict[int, Choice] = field(default_factory=dict)
    phase: SessionPhase = SessionPhase.AWAITING_GUEST
    created_at: float = field(default_factory=time.time)
    # Set once match_start has been emitted for the current pairing
    started: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def connections(self) -> List[str]:
        return [p.connection for p in self.participants]

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= MAX_PARTICIPANTS

    def participant(self, connection: str) -> Optional[Participant]:
        for p in self.participants:
            if p.connection == connection:
                return p
        return None

    def number_of(self, connection: str) -> Optional[int]:
        p = self.participant(connection)
        return p.number if p else None

    def free_number(self) -> int:
        taken = {p.number for p in self.participants}
        return HOST_NUMBER if HOST_NUMBER not in taken else GUEST_NUMBER

    def opponent_of(self, connection: str) -> Optional[str]:
        for p in self.participants:
            if p.connection != connection:
                return p.connection
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'participants': [{'connection': p.connection, 'number': p.number} for p in self.participants],
            'pending': sorted(self.pending_choices),
            'phase': self.phase.value,
            'created_at': self.created_at,
            'started': self.started,
        }


@dataclass(frozen=True)
class RoundOutcome:
    """Result of one resolved round, keyed by participant number."""
    session_id: str
    choices: Dict[int, Choice]
    outcome: Outcome

    def to_dict(self):
        # Participant numbers travel as string keys over JSON
        return {
            'session_id': self.session_id,
            'choices': {str(n): c.value for n, c in sorted(self.choices.items())},
            'outcome': self.outcome.value,
        }
