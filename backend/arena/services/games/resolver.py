import random
from typing import Optional

from arena.errors import InvalidChoice
from arena.models import Choice, Outcome

# (winner, loser)
BEATS = frozenset({
    (Choice.ROCK, Choice.SCISSORS),
    (Choice.SCISSORS, Choice.PAPER),
    (Choice.PAPER, Choice.ROCK),
})


def resolve(choice_a: Choice, choice_b: Choice) -> Outcome:
    """Resolve one round between participant 1 (a) and participant 2 (b).

    Equal choices tie. Anything that is not a win for the first participant
    is credited to the second.
    """
    if choice_a == choice_b:
        return Outcome.TIE
    if (choice_a, choice_b) in BEATS:
        return Outcome.P1
    return Outcome.P2


def parse_choice(value, session_id: Optional[str] = None) -> Choice:
    if isinstance(value, Choice):
        return value
    try:
        return Choice(str(value).strip().lower())
    except ValueError:
        raise InvalidChoice(session_id, f"Unknown choice {value!r}") from None


def random_choice(rng: Optional[random.Random] = None) -> Choice:
    rng = rng or random
    return rng.choice(list(Choice))


def play_computer_round(choice: Choice, rng: Optional[random.Random] = None):
    """Offline round against a random opponent. The player is participant 1.

    Returns (computer_choice, outcome).
    """
    computer = random_choice(rng)
    return computer, resolve(choice, computer)
