"""
Cycle Arithmetic for the Shift Calendar

Pure date-to-cycle-position math used by the fixed rotating roster, by
CYCLE recurrence rules and by custom patterns. Every function only reads
its arguments, so it is safe to call from any number of threads.
"""

from datetime import date, timedelta

from .models import ConfigurationError


def days_between(start: date, end: date) -> int:
    """Signed number of days from start to end"""
    return (end - start).days


def cycle_position(target: date, cycle_start: date, cycle_length: int) -> int:
    """
    Position of target inside a cycle anchored at cycle_start.

    The result is always in [0, cycle_length), including for dates before
    the anchor, which wrap backwards into the previous repetition.
    """
    if cycle_length < 1:
        raise ConfigurationError(f"Cycle length must be at least 1, got {cycle_length}")
    return ((days_between(cycle_start, target) % cycle_length) + cycle_length) % cycle_length


def cycle_index(target: date, cycle_start: date, cycle_length: int) -> int:
    """Number of complete cycles between cycle_start and target (negative before the anchor)"""
    if cycle_length < 1:
        raise ConfigurationError(f"Cycle length must be at least 1, got {cycle_length}")
    return days_between(cycle_start, target) // cycle_length


def is_work_day(position: int, work_days: int, rest_days: int) -> bool:
    """
    Whether a cycle position is a work position.

    The first work_days positions of a cycle are work and the remaining
    rest_days positions are rest. Consistency of the counts is checked by
    validate_cycle when the rule is created, not here.
    """
    return 0 <= position < work_days


def validate_cycle(cycle_length: int, work_days: int, rest_days: int):
    """Reject cycle definitions whose work and rest counts do not add up"""
    if cycle_length is None or cycle_length < 1:
        raise ConfigurationError(f"Cycle length must be at least 1, got {cycle_length}")
    if work_days is None or rest_days is None:
        raise ConfigurationError("Cycle rules need both work_days and rest_days")
    if work_days < 0 or rest_days < 0:
        raise ConfigurationError("Work and rest day counts cannot be negative")
    if work_days + rest_days != cycle_length:
        raise ConfigurationError(
            f"Work days ({work_days}) plus rest days ({rest_days}) "
            f"must equal the cycle length ({cycle_length})"
        )


def team_cycle_start(cycle_start: date, offset_days: int) -> date:
    """Effective anchor of a team: the shared anchor moved back by the team offset"""
    return cycle_start - timedelta(days=offset_days)


def team_cycle_position(target: date, cycle_start: date, offset_days: int, cycle_length: int) -> int:
    """Phase-shifted cycle position seen by a team with the given offset"""
    return cycle_position(target, team_cycle_start(cycle_start, offset_days), cycle_length)
