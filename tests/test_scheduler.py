"""
Test Suite for the Schedule Assembler

Covers the fixed roster fallback, team and user assignments, assignment
selection, pattern rules, placeholders for unknown shifts and the
no-schedule result.
"""

import pytest
from datetime import date, datetime, timedelta
import sys
from pathlib import Path
import tempfile
import os
import json

# Setup import path for src
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_calendar.data_manager import DataManager
from shift_calendar.models import (
    AssignmentStatus,
    Frequency,
    PatternDay,
    RecurrenceRule,
    ScheduleNotAvailable,
    UNKNOWN_SHIFT_NAME,
    UserScheduleAssignment,
)
from shift_calendar.scheduler_logic import ScheduleAssembler, select_assignment


SCHEME_START = date(2018, 11, 7)


@pytest.fixture
def data_manager():
    """Clean DataManager for each test - isolated temp file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as temp:
        temp_path = temp.name
        json.dump({}, temp)
    dm = DataManager(temp_path)
    yield dm
    os.unlink(temp_path)


@pytest.fixture
def assembler(data_manager):
    return ScheduleAssembler(data_manager)


def cycle_rule(shift_id="night", start=date(2024, 1, 1), length=2, work=1, rest=1) -> RecurrenceRule:
    return RecurrenceRule(id=None, name="cycle", frequency=Frequency.CYCLE, start_date=start,
                          cycle_length=length, work_days=work, rest_days=rest, shift_id=shift_id)


def teams_by_shift(day):
    return {instance.shift_id: instance.teams for instance in day.shifts}


def test_fixed_roster_day_zero(assembler):
    day = assembler.assemble(SCHEME_START)
    assert day.available and not day.degraded
    assert teams_by_shift(day) == {
        "morning": ("A", "B"),
        "afternoon": ("C", "D"),
        "night": ("E", "F"),
    }
    assert day.off_teams == ("G", "H", "I")
    assert [instance.shift_id for instance in day.shifts] == ["morning", "afternoon", "night"]


def test_fixed_roster_day_two_and_before_start(assembler):
    day = assembler.assemble(SCHEME_START + timedelta(days=2))
    assert teams_by_shift(day) == {"morning": ("A", "H"), "afternoon": ("D", "I"), "night": ("F", "G")}
    assert day.off_teams == ("B", "C", "E")

    before = assembler.assemble(SCHEME_START - timedelta(days=1))
    assert teams_by_shift(before) == {"morning": ("B", "G"), "afternoon": ("C", "H"), "night": ("E", "I")}
    assert before.off_teams == ("A", "D", "F")


def test_team_assignment_overrides_roster(data_manager, assembler):
    rule = data_manager.add_recurrence_rule(cycle_rule())
    data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                       team_id="A", rule_id=rule.id))

    working = assembler.assemble(date(2024, 1, 1), team_id="A")
    assert working.is_working
    assert working.shifts_for_team("A")[0].shift_id == "night"

    resting = assembler.assemble(date(2024, 1, 2), team_id="A")
    assert not resting.is_working
    assert "A" in resting.off_teams

    # Before the assignment window the fixed roster applies again
    earlier = assembler.assemble(date(2023, 12, 31), team_id="A")
    assert earlier.available


def test_missing_team_rule_is_not_available(data_manager, assembler):
    rule = data_manager.add_recurrence_rule(cycle_rule())
    data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                       team_id="B", rule_id=rule.id))
    data_manager.data["recurrenceRules"] = []

    result = assembler.assemble(date(2024, 1, 5), team_id="B")
    assert isinstance(result, ScheduleNotAvailable)
    assert not result.available

    # Other subjects degrade to the fixed roster instead
    overview = assembler.assemble(date(2024, 1, 5))
    assert overview.available and overview.degraded


def test_user_without_assignment_or_team_has_no_schedule(assembler):
    result = assembler.assemble(SCHEME_START, user_id=42)
    assert isinstance(result, ScheduleNotAvailable)
    assert result.is_working is False


def test_user_follows_team_roster(data_manager, assembler):
    data_manager.add_user_team(1, "A", date(2018, 1, 1))
    data_manager.add_user_team(2, "G", date(2018, 1, 1))

    working = assembler.assemble(SCHEME_START, user_id=1)
    assert working.user_team_id == "A"
    assert [instance.shift_id for instance in working.user_shifts] == ["morning"]

    resting = assembler.assemble(SCHEME_START, user_id=2)
    assert resting.available and not resting.is_working


def test_team_change_applies_from_its_start(data_manager, assembler):
    data_manager.add_user_team(1, "A", date(2018, 1, 1))
    data_manager.add_user_team(1, "G", SCHEME_START)

    assert assembler.assemble(SCHEME_START - timedelta(days=1), user_id=1).user_team_id == "A"
    assert assembler.assemble(SCHEME_START, user_id=1).user_team_id == "G"


def test_user_pattern_rule(data_manager, assembler):
    pattern = (PatternDay.work("morning"), PatternDay.work("afternoon"), PatternDay.rest())
    rule = data_manager.add_recurrence_rule(RecurrenceRule(
        id=None, name="custom", frequency=Frequency.PATTERN, start_date=date(2024, 1, 1), pattern=pattern
    ))
    data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                       user_id=7, rule_id=rule.id))

    shifts = [
        [instance.shift_id for instance in assembler.assemble(date(2024, 1, d), user_id=7).user_shifts]
        for d in range(1, 5)
    ]
    assert shifts == [["morning"], ["afternoon"], [], ["morning"]]


def test_unknown_shift_becomes_placeholder(data_manager, assembler):
    rule = data_manager.add_recurrence_rule(RecurrenceRule(
        id=None, name="ghost", frequency=Frequency.DAILY, start_date=date(2024, 1, 1), shift_id="ghost"
    ))
    data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                       user_id=3, rule_id=rule.id))

    day = assembler.assemble(date(2024, 1, 2), user_id=3)
    assert day.available and day.degraded
    assert day.user_shifts[0].shift.name == UNKNOWN_SHIFT_NAME
    assert day.user_shifts[0].shift_id == "ghost"


def test_select_assignment_prefers_active_then_most_recent():
    target = date(2024, 6, 1)
    old_active = UserScheduleAssignment(id=1, start_date=date(2024, 1, 1), user_id=1, rule_id=1,
                                        created_at=datetime(2024, 1, 1))
    new_active = UserScheduleAssignment(id=2, start_date=date(2024, 1, 1), user_id=1, rule_id=2,
                                        created_at=datetime(2024, 2, 1))
    newer_draft = UserScheduleAssignment(id=3, start_date=date(2024, 1, 1), user_id=1, rule_id=3,
                                         status=AssignmentStatus.DRAFT, created_at=datetime(2024, 3, 1))
    expired = UserScheduleAssignment(id=4, start_date=date(2024, 1, 1), user_id=1, rule_id=4,
                                     status=AssignmentStatus.EXPIRED, created_at=datetime(2024, 4, 1))

    assert select_assignment([old_active, new_active, newer_draft, expired], target) is new_active
    assert select_assignment([newer_draft, expired], target) is newer_draft
    assert select_assignment([expired], target) is None


def test_assignment_end_date_is_inclusive():
    assignment = UserScheduleAssignment(id=1, start_date=date(2024, 1, 1), user_id=1,
                                        end_date=date(2024, 1, 31))
    assert select_assignment([assignment], date(2024, 1, 31)) is assignment
    assert select_assignment([assignment], date(2024, 2, 1)) is None
