"""
Pattern Sequencer for the Shift Calendar

Resolves a finite repeating sequence of pattern days (work shift or rest)
to the slot active on a given date, and defines the built-in QuattroDue
roster: an 18-day sequence of three 4-work/2-rest blocks that every team
follows with its own phase offset.
"""

from datetime import date
from typing import Dict, List, Sequence

from .cycle import cycle_position, team_cycle_start
from .models import ConfigurationError, PatternDay


SHIFT_MORNING = "morning"
SHIFT_AFTERNOON = "afternoon"
SHIFT_NIGHT = "night"

QUATTRODUE_SEQUENCE = (
    (PatternDay.work(SHIFT_MORNING),) * 4 + (PatternDay.rest(),) * 2 +
    (PatternDay.work(SHIFT_NIGHT),) * 4 + (PatternDay.rest(),) * 2 +
    (PatternDay.work(SHIFT_AFTERNOON),) * 4 + (PatternDay.rest(),) * 2
)

# Offsets for teams A-I; with these phases every day has two teams on each
# of the three shifts and three teams off.
QUATTRODUE_TEAM_OFFSETS: Dict[str, int] = {
    "A": 0,
    "B": 2,
    "C": 14,
    "D": 12,
    "E": 8,
    "F": 6,
    "G": 4,
    "H": 16,
    "I": 10,
}


def validate_pattern(pattern: Sequence[PatternDay]):
    if not pattern:
        raise ConfigurationError("A pattern must contain at least one day")


def slot_for(pattern: Sequence[PatternDay], pattern_start: date, target: date) -> PatternDay:
    """
    Pattern day active on target.

    Dates before pattern_start resolve by wrapping backwards, so moving the
    start date re-derives history instead of failing.
    """
    validate_pattern(pattern)
    return pattern[cycle_position(target, pattern_start, len(pattern))]


def roster_slot(target: date, scheme_start: date, team_offset: int,
                sequence: Sequence[PatternDay] = QUATTRODUE_SEQUENCE) -> PatternDay:
    """Slot of the fixed roster for a team with the given offset"""
    return slot_for(sequence, team_cycle_start(scheme_start, team_offset), target)


def work_day_count(pattern: Sequence[PatternDay]) -> int:
    return sum(1 for day in pattern if not day.is_rest)


def pattern_shift_ids(pattern: Sequence[PatternDay]) -> List[str]:
    """Distinct shift ids referenced by a pattern, in first-use order"""
    seen = []
    for day in pattern:
        if day.shift_id is not None and day.shift_id not in seen:
            seen.append(day.shift_id)
    return seen
