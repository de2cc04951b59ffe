"""Game domain services: round resolution and session timers.

This package contains pure(ish) domain logic that should be imported by
the session store and socket handlers, keeping transport concerns separated
from core game mechanics.
"""
