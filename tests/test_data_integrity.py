import pytest
import sys
from datetime import date, time
from pathlib import Path
import tempfile
import os
import json

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_calendar.data_manager import DataManager
from shift_calendar.models import (
    ApprovalStatus,
    AssignmentStatus,
    ConfigurationError,
    ExceptionType,
    Frequency,
    RecurrenceRule,
    RuleInUseError,
    ShiftException,
    UserScheduleAssignment,
)


@pytest.fixture
def data_manager():
    """Fixture for a clean, isolated DataManager instance for each test."""
    with tempfile.NamedTemporaryFile(
        mode="w", suffix=".json", delete=False
    ) as temp_file:
        temp_path = temp_file.name
        json.dump({}, temp_file)

    dm = DataManager(temp_path)
    yield dm
    for suffix in (".bak", ".tmp"):
        leftover = Path(temp_path).with_suffix(suffix)
        if leftover.exists():
            leftover.unlink()
    os.unlink(temp_path)


def weekly_rule(shift_id="morning") -> RecurrenceRule:
    return RecurrenceRule(id=None, name="weekdays", frequency=Frequency.WEEKLY,
                          start_date=date(2024, 1, 1), by_day=(0, 1, 2, 3, 4), shift_id=shift_id)


def test_empty_file_is_migrated_to_defaults(data_manager):
    """
    Why this is important: A new installation starts from an empty file. The
    engine must still see the nine roster teams and the three standard
    shifts, otherwise no schedule can be computed at all.
    """
    teams = data_manager.load_team_catalog()
    assert [team.id for team in teams] == list("ABCDEFGHI")
    assert [shift.id for shift in data_manager.load_shift_catalog()] == ["morning", "afternoon", "night"]
    settings = data_manager.get_settings()
    assert settings.cycle_length == 18
    assert settings.scheme_start_date == date(2018, 11, 7)


def test_saved_data_survives_reload(data_manager):
    rule = data_manager.add_recurrence_rule(weekly_rule())
    data_manager.add_user_team(1, "C", date(2024, 1, 1))
    data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                       user_id=1, rule_id=rule.id))
    data_manager.save_data()

    reloaded = DataManager(data_manager.data_file)
    assert reloaded.load_recurrence_rule(rule.id) == rule
    assert reloaded.find_user_team(1, date(2024, 6, 1)).team_id == "C"
    assert [a.rule_id for a in reloaded.get_assignments(user_id=1)] == [rule.id]


def test_corrupted_file_recovers_from_backup(data_manager):
    """
    Why this is important: A crash while writing must never lose the roster.
    The previous save is kept as a backup and used when the main file is
    unreadable.
    """
    data_manager.add_team("J", "Team J", 3)
    data_manager.save_data()
    data_manager.save_data()

    with open(data_manager.data_file, "w", encoding="utf-8") as f:
        f.write("{ not json")

    recovered = DataManager(data_manager.data_file)
    assert recovered.get_team("J") is not None


def test_rule_in_use_cannot_be_changed(data_manager):
    """
    Why this is important: Editing a rule in place would silently rewrite
    history for every assignment that uses it.
    """
    rule = data_manager.add_recurrence_rule(weekly_rule())
    data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                       user_id=1, rule_id=rule.id))

    with pytest.raises(RuleInUseError):
        changed = RecurrenceRule.from_dict({**weekly_rule("night").to_dict(), "id": rule.id})
        data_manager.update_recurrence_rule(changed)
    with pytest.raises(RuleInUseError):
        data_manager.delete_recurrence_rule(rule.id)


def test_unused_rule_can_be_deleted(data_manager):
    rule = data_manager.add_recurrence_rule(weekly_rule())
    assert data_manager.delete_recurrence_rule(rule.id)
    assert data_manager.load_recurrence_rule(rule.id) is None


def test_replace_assignment_rule_keeps_history(data_manager):
    rule = data_manager.add_recurrence_rule(weekly_rule())
    assignment = data_manager.add_assignment(UserScheduleAssignment(
        id=None, start_date=date(2024, 1, 1), user_id=1, rule_id=rule.id
    ))

    new_rule, new_assignment = data_manager.replace_assignment_rule(
        assignment.id, weekly_rule("night"), date(2024, 3, 1)
    )

    old = data_manager.get_assignment(assignment.id)
    assert old.end_date == date(2024, 2, 29)
    assert old.rule_id == rule.id
    assert new_assignment.rule_id == new_rule.id
    assert new_assignment.start_date == date(2024, 3, 1)

    assert data_manager.find_active_assignment(date(2024, 2, 29), user_id=1).id == assignment.id
    assert data_manager.find_active_assignment(date(2024, 3, 1), user_id=1).id == new_assignment.id


def test_supersede_from_start_expires_old_assignment(data_manager):
    assignment = data_manager.add_assignment(UserScheduleAssignment(
        id=None, start_date=date(2024, 1, 1), team_id="B"
    ))
    data_manager.supersede_assignment(assignment.id, date(2024, 1, 1))
    assert data_manager.get_assignment(assignment.id).status is AssignmentStatus.EXPIRED


def test_assignment_ending_before_start_is_rejected(data_manager):
    with pytest.raises(ConfigurationError):
        data_manager.add_assignment(UserScheduleAssignment(
            id=None, start_date=date(2024, 2, 1), end_date=date(2024, 1, 31), user_id=1
        ))


def test_assignment_needs_known_rule_and_subject(data_manager):
    with pytest.raises(ConfigurationError):
        data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1)))
    with pytest.raises(ConfigurationError):
        data_manager.add_assignment(UserScheduleAssignment(id=None, start_date=date(2024, 1, 1),
                                                           user_id=1, rule_id=99))


def test_team_change_closes_previous_membership(data_manager):
    data_manager.add_user_team(1, "A", date(2024, 1, 1))
    data_manager.add_user_team(1, "D", date(2024, 4, 1))

    first, second = data_manager.get_user_teams(1)
    assert first.end_date == date(2024, 3, 31)
    assert second.end_date is None
    assert data_manager.get_team_members("A", date(2024, 3, 31)) == [1]
    assert data_manager.get_team_members("A", date(2024, 4, 1)) == []


def test_team_offset_must_fit_cycle(data_manager):
    with pytest.raises(ConfigurationError):
        data_manager.add_team("J", "Team J", 18)
    with pytest.raises(ConfigurationError):
        data_manager.add_team("A", "Duplicate", 0)


def test_recurring_exception_is_loaded_on_matching_days(data_manager):
    rule = data_manager.add_recurrence_rule(RecurrenceRule(
        id=None, name="mondays", frequency=Frequency.WEEKLY, start_date=date(2024, 1, 1), by_day=(0,)
    ))
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.REDUCTION_ROL,
        status=ApprovalStatus.APPROVED, new_end_time=time(11, 0), recurrence_rule_id=rule.id
    ))

    assert len(data_manager.load_exceptions(1, date(2024, 1, 8))) == 1
    assert data_manager.load_exceptions(1, date(2024, 1, 9)) == []
    assert data_manager.load_exceptions(1, date(2023, 12, 25)) == []
    # The rule is now referenced by an approved exception
    assert data_manager.is_rule_in_use(rule.id)


def test_exception_validation(data_manager):
    with pytest.raises(ConfigurationError):
        data_manager.add_exception(ShiftException(
            id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.OVERTIME
        ))
    with pytest.raises(ConfigurationError):
        data_manager.add_exception(ShiftException(
            id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.SWAP
        ))
    with pytest.raises(ConfigurationError):
        data_manager.add_exception(ShiftException(
            id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.SWAP,
            swap_with_user_id=1
        ))
    with pytest.raises(ConfigurationError):
        data_manager.add_exception(ShiftException(
            id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.REDUCTION_PERSONAL
        ))


def test_exception_status_changes_notify_listeners(data_manager):
    reasons = []
    data_manager.add_change_listener(reasons.append)
    stored = data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.VACATION
    ))
    assert data_manager.update_exception_status(stored.id, ApprovalStatus.APPROVED)
    assert data_manager.get_exception(stored.id).status is ApprovalStatus.APPROVED
    assert len(reasons) == 2


def test_settings_validation(data_manager):
    with pytest.raises(ConfigurationError):
        data_manager.update_settings(max_range_days=0)
    with pytest.raises(ConfigurationError):
        data_manager.update_settings(no_such_setting=1)
    assert data_manager.update_settings(max_range_days=90).max_range_days == 90
    assert data_manager.get_settings().max_range_days == 90


def test_cycle_length_is_fixed_by_roster(data_manager):
    """
    Why this is important: Team positions index the 18-day QuattroDue
    sequence. Any other cycle length would make the cycle day drift away
    from the shift the roster actually assigns.
    """
    with pytest.raises(ConfigurationError):
        data_manager.update_settings(cycle_length=20)
    assert data_manager.get_settings().cycle_length == 18


def test_stored_cycle_length_is_reset_on_load(data_manager):
    with open(data_manager.data_file, "w", encoding="utf-8") as f:
        json.dump({"settings": {"cycleLength": 20}}, f)

    reloaded = DataManager(data_manager.data_file)
    assert reloaded.get_settings().cycle_length == 18


def test_counterpart_sees_swap_and_replacement(data_manager):
    swap = data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.SWAP,
        status=ApprovalStatus.APPROVED, swap_with_user_id=2
    ))
    replacement = data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.REPLACEMENT,
        status=ApprovalStatus.APPROVED, original_shift_id="morning", replacement_user_id=3
    ))
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=date(2024, 1, 1), exception_type=ExceptionType.VACATION,
        status=ApprovalStatus.APPROVED
    ))

    assert [e.id for e in data_manager.load_exceptions(2, date(2024, 1, 1))] == [swap.id]
    assert [e.id for e in data_manager.load_exceptions(3, date(2024, 1, 1))] == [replacement.id]
    assert len(data_manager.load_exceptions(1, date(2024, 1, 1))) == 3
    assert data_manager.load_exceptions(2, date(2024, 1, 2)) == []
