"""
Data Manager for the Shift Calendar

Handles JSON persistence and CRUD operations for teams, shifts, recurrence
rules, team memberships, schedule assignments, exceptions and settings.
Implements the repository interface read by the schedule engine and
notifies listeners whenever schedule data changes.
"""

import json
import logging
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import __version__
from .models import (
    ApprovalStatus,
    AssignmentStatus,
    ConfigurationError,
    ExceptionEffect,
    Frequency,
    RecurrenceRule,
    RuleInUseError,
    ScheduleSettings,
    Shift,
    ShiftException,
    Team,
    UserScheduleAssignment,
    UserTeamAssignment,
    format_date,
)
from .patterns import (
    QUATTRODUE_SEQUENCE,
    QUATTRODUE_TEAM_OFFSETS,
    SHIFT_AFTERNOON,
    SHIFT_MORNING,
    SHIFT_NIGHT,
    pattern_shift_ids,
)
from .exception_resolver import involves_user
from .recurrence import occurs_on, validate_recurrence_rule, within_end_condition
from .scheduler_logic import ScheduleRepository

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = [
    "settings", "teams", "shifts", "recurrenceRules", "userTeams", "assignments", "exceptions"
]


class DataManagerError(Exception):
    """Base exception for DataManager operations"""
    pass


class DataFileCorruptedError(DataManagerError):
    """Raised when the data file is corrupted"""
    pass


class DataFileNotFoundError(DataManagerError):
    """Raised when the data file is not found"""
    pass


class DataSaveError(DataManagerError):
    """Raised when saving data fails"""
    pass


class DataValidationError(DataManagerError):
    """Raised when data validation fails"""
    pass


def default_shifts() -> List[Shift]:
    """The three standard QuattroDue shifts"""
    return [
        Shift.from_dict({"id": SHIFT_MORNING, "name": "Morning", "startTime": "05:00",
                         "endTime": "13:00", "color": "#FFC107", "shortCode": "M"}),
        Shift.from_dict({"id": SHIFT_AFTERNOON, "name": "Afternoon", "startTime": "13:00",
                         "endTime": "21:00", "color": "#FF9800", "shortCode": "P"}),
        Shift.from_dict({"id": SHIFT_NIGHT, "name": "Night", "startTime": "21:00",
                         "endTime": "05:00", "color": "#3F51B5", "shortCode": "N"}),
    ]


def default_teams() -> List[Team]:
    return [
        Team(id=team_id, name=f"Team {team_id}", offset=offset)
        for team_id, offset in QUATTRODUE_TEAM_OFFSETS.items()
    ]


class DataManager(ScheduleRepository):
    """Manages all data persistence and CRUD operations"""

    def __init__(self, data_file: str = "data/shift_calendar.json"):
        if data_file == "data/shift_calendar.json":
            # Use path relative to the package directory
            data_file = Path(__file__).parent.parent / "data" / "shift_calendar.json"
        self.data_file = Path(data_file)
        self._lock = threading.RLock()
        self._listeners: List[Callable[[str], None]] = []
        self.data = self._load_or_create_data()

    def _load_or_create_data(self) -> Dict[str, Any]:
        """Load existing data or create default structure with recovery from backup"""
        backup_file = self.data_file.with_suffix('.bak')
        if self.data_file.exists():
            try:
                with open(self.data_file, 'r', encoding='utf-8') as f:
                    return self._validate_and_migrate_data(json.load(f))
            except (json.JSONDecodeError, IOError) as e:
                logger.error(f"Error loading main data file {self.data_file}: {e}")
                if not backup_file.exists():
                    raise DataFileCorruptedError(f"Main data file corrupted and no backup available: {e}")
                return self._recover_from_backup(backup_file)

        if backup_file.exists():
            logger.info(f"Main data file missing, attempting recovery from backup {backup_file}")
            return self._recover_from_backup(backup_file)

        logger.info("No data file found, creating default data")
        return self._create_default_data()

    def _recover_from_backup(self, backup_file: Path) -> Dict[str, Any]:
        try:
            logger.info(f"Attempting recovery from backup file {backup_file}")
            with open(backup_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            backup_file.replace(self.data_file)
            logger.info("Successfully recovered data from backup")
            return self._validate_and_migrate_data(data)
        except (json.JSONDecodeError, IOError) as backup_e:
            logger.error(f"Backup file also corrupted: {backup_e}")
            logger.info("Creating default data due to corrupted files")
            return self._create_default_data()

    def _validate_and_migrate_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Fill in missing sections and settings keys from the defaults"""
        default_data = self._create_default_data()

        for key in default_data:
            if key not in data:
                data[key] = default_data[key]

        for key, value in default_data["settings"].items():
            data["settings"].setdefault(key, value)

        if data["settings"].get("cycleLength") != len(QUATTRODUE_SEQUENCE):
            logger.warning(
                f"Stored cycle length {data['settings'].get('cycleLength')} does not match the roster; "
                f"using {len(QUATTRODUE_SEQUENCE)}"
            )
            data["settings"]["cycleLength"] = len(QUATTRODUE_SEQUENCE)

        return data

    def _create_default_data(self) -> Dict[str, Any]:
        """Create default data structure with the QuattroDue teams and shifts"""
        return {
            "settings": {
                "appVersion": __version__,
                **ScheduleSettings().to_dict()
            },
            "teams": [team.to_dict() for team in default_teams()],
            "shifts": [shift.to_dict() for shift in default_shifts()],
            "recurrenceRules": [],
            "userTeams": [],
            "assignments": [],
            "exceptions": []
        }

    def _validate_saved_data(self) -> bool:
        """Validate that the saved data file matches current data"""
        try:
            if not self.data_file.exists():
                raise DataFileNotFoundError(f"Saved data file {self.data_file} does not exist")

            with open(self.data_file, 'r', encoding='utf-8') as f:
                saved_data = json.load(f)

            for key in REQUIRED_SECTIONS:
                if key not in saved_data:
                    raise DataValidationError(f"Required section '{key}' missing from saved data")

            if saved_data.get("settings", {}).get("appVersion") != self.data.get("settings", {}).get("appVersion"):
                raise DataValidationError("App version mismatch in saved data")

            return True

        except (json.JSONDecodeError, IOError) as e:
            raise DataValidationError(f"Failed to validate saved data: {e}")

    def save_data(self) -> bool:
        """Save current data to file atomically with validation"""
        temp_file = None
        backup_file = self.data_file.with_suffix('.bak')

        with self._lock:
            try:
                self.data_file.parent.mkdir(parents=True, exist_ok=True)

                if self.data_file.exists():
                    self.data_file.replace(backup_file)

                # Write to a temporary file first, then rename over the target
                temp_file = self.data_file.with_suffix('.tmp')
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(self.data, f, indent=2, ensure_ascii=False)
                temp_file.replace(self.data_file)

                self._validate_saved_data()
                logger.info(f"Saved schedule data to {self.data_file}")
                return True

            except DataValidationError as e:
                logger.error(f"Data validation failed after save: {e}", exc_info=True)
                if backup_file.exists():
                    try:
                        backup_file.replace(self.data_file)
                    except OSError as restore_e:
                        logger.error(f"Failed to restore from backup: {restore_e}", exc_info=True)
                raise DataSaveError(f"Save operation failed validation: {e}")

            except (IOError, OSError) as e:
                logger.error(f"I/O error during save operation: {e}", exc_info=True)
                raise DataSaveError(f"Failed to save data due to I/O error: {e}")

            except (TypeError, ValueError) as e:
                logger.error(f"Unexpected error during save operation: {e}", exc_info=True)
                raise DataSaveError(f"Unexpected error during save: {e}")

            finally:
                if temp_file and temp_file.exists():
                    try:
                        temp_file.unlink()
                    except OSError as cleanup_e:
                        logger.error(f"Failed to clean up temporary file {temp_file}: {cleanup_e}", exc_info=True)

    # Change notification
    def add_change_listener(self, callback: Callable[[str], None]):
        """Register a callback invoked with a reason string after every data change"""
        self._listeners.append(callback)

    def remove_change_listener(self, callback: Callable[[str], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify_change(self, reason: str):
        logger.debug(f"Schedule data changed: {reason}")
        for callback in list(self._listeners):
            callback(reason)

    def _next_id(self, section: str) -> int:
        existing_ids = [item["id"] for item in self.data.get(section, []) if item.get("id") is not None]
        return max(existing_ids, default=0) + 1

    # Settings
    def get_settings(self) -> ScheduleSettings:
        with self._lock:
            return ScheduleSettings.from_dict(self.data.get("settings", {}))

    def load_settings(self) -> ScheduleSettings:
        return self.get_settings()

    def update_settings(self, **changes) -> ScheduleSettings:
        """
        Update engine settings.

        Args:
            **changes: ScheduleSettings field names and their new values

        Returns:
            The updated settings
        """
        settings = self.get_settings()
        for name, value in changes.items():
            if not hasattr(settings, name):
                raise ConfigurationError(f"Unknown setting: {name}")
            setattr(settings, name, value)

        if settings.cycle_length != len(QUATTRODUE_SEQUENCE):
            raise ConfigurationError(
                f"The cycle length is fixed by the roster sequence at {len(QUATTRODUE_SEQUENCE)} days, "
                f"got {settings.cycle_length}"
            )
        if settings.max_range_days < 1:
            raise ConfigurationError("The maximum range must be at least one day")
        if settings.range_workers < 1:
            raise ConfigurationError("At least one range worker is required")

        with self._lock:
            self.data["settings"].update(settings.to_dict())
        self._notify_change("settings updated")
        return settings

    # Team Management
    def load_team_catalog(self) -> List[Team]:
        with self._lock:
            return [Team.from_dict(item) for item in self.data.get("teams", [])]

    def get_team(self, team_id: str) -> Optional[Team]:
        for team in self.load_team_catalog():
            if team.id == team_id:
                return team
        return None

    def add_team(self, team_id: str, name: str, offset: int) -> Team:
        """Add a team with its roster offset; teams are immutable once created"""
        cycle_length = self.get_settings().cycle_length
        if not 0 <= offset < cycle_length:
            raise ConfigurationError(f"Team offset must be in 0..{cycle_length - 1}, got {offset}")
        if self.get_team(team_id) is not None:
            raise ConfigurationError(f"Team {team_id} already exists")

        team = Team(id=team_id, name=name, offset=offset)
        with self._lock:
            self.data.setdefault("teams", []).append(team.to_dict())
        self._notify_change(f"team {team_id} added")
        return team

    def set_team_active(self, team_id: str, active: bool) -> bool:
        with self._lock:
            for item in self.data.get("teams", []):
                if item["id"] == team_id:
                    item["active"] = active
                    break
            else:
                return False
        self._notify_change(f"team {team_id} {'activated' if active else 'deactivated'}")
        return True

    # Shift Management
    def load_shift_catalog(self) -> List[Shift]:
        with self._lock:
            return [Shift.from_dict(item) for item in self.data.get("shifts", [])]

    def get_shift(self, shift_id: str) -> Optional[Shift]:
        for shift in self.load_shift_catalog():
            if shift.id == shift_id:
                return shift
        return None

    def add_shift(self, shift: Shift) -> Shift:
        if self.get_shift(shift.id) is not None:
            raise ConfigurationError(f"Shift {shift.id} already exists")
        if shift.break_minutes < 0 or shift.break_minutes >= shift.duration_minutes:
            raise ConfigurationError("The break must be shorter than the shift")
        with self._lock:
            self.data.setdefault("shifts", []).append(shift.to_dict())
        self._notify_change(f"shift {shift.id} added")
        return shift

    def update_shift(self, shift: Shift) -> bool:
        with self._lock:
            shifts = self.data.get("shifts", [])
            for index, item in enumerate(shifts):
                if item["id"] == shift.id:
                    shifts[index] = shift.to_dict()
                    break
            else:
                return False
        self._notify_change(f"shift {shift.id} updated")
        return True

    def delete_shift(self, shift_id: str) -> bool:
        """Delete a shift; days still referencing it fall back to a placeholder"""
        with self._lock:
            shifts = self.data.get("shifts", [])
            remaining = [item for item in shifts if item["id"] != shift_id]
            if len(remaining) == len(shifts):
                return False
            self.data["shifts"] = remaining
        self._notify_change(f"shift {shift_id} deleted")
        return True

    # Recurrence Rule Management
    def get_recurrence_rules(self) -> List[RecurrenceRule]:
        with self._lock:
            return [RecurrenceRule.from_dict(item) for item in self.data.get("recurrenceRules", [])]

    def load_recurrence_rule(self, rule_id: int) -> Optional[RecurrenceRule]:
        with self._lock:
            for item in self.data.get("recurrenceRules", []):
                if item["id"] == rule_id:
                    return RecurrenceRule.from_dict(item)
        return None

    def add_recurrence_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        """
        Validate and store a new rule.

        Returns:
            The stored rule with its assigned id
        """
        self._validate_rule(rule)
        with self._lock:
            stored = RecurrenceRule.from_dict({**rule.to_dict(), "id": self._next_id("recurrenceRules")})
            self.data.setdefault("recurrenceRules", []).append(stored.to_dict())
        self._notify_change(f"rule {stored.id} added")
        return stored

    def update_recurrence_rule(self, rule: RecurrenceRule) -> bool:
        """Update a rule that no active assignment references"""
        if self.is_rule_in_use(rule.id):
            raise RuleInUseError(
                f"Rule {rule.id} is referenced by an active assignment; "
                "create a new rule and re-point the assignment instead"
            )
        self._validate_rule(rule)
        with self._lock:
            rules = self.data.get("recurrenceRules", [])
            for index, item in enumerate(rules):
                if item["id"] == rule.id:
                    rules[index] = rule.to_dict()
                    break
            else:
                return False
        self._notify_change(f"rule {rule.id} updated")
        return True

    def delete_recurrence_rule(self, rule_id: int) -> bool:
        if self.is_rule_in_use(rule_id):
            raise RuleInUseError(f"Rule {rule_id} is referenced by an active assignment")
        with self._lock:
            rules = self.data.get("recurrenceRules", [])
            remaining = [item for item in rules if item["id"] != rule_id]
            if len(remaining) == len(rules):
                return False
            self.data["recurrenceRules"] = remaining
        self._notify_change(f"rule {rule_id} deleted")
        return True

    def is_rule_in_use(self, rule_id: Optional[int]) -> bool:
        """Whether an ACTIVE assignment or exception references the rule"""
        if rule_id is None:
            return False
        with self._lock:
            in_assignments = any(
                item.get("ruleId") == rule_id and item.get("status") == AssignmentStatus.ACTIVE.value
                for item in self.data.get("assignments", [])
            )
            in_exceptions = any(
                item.get("recurrenceRuleId") == rule_id
                and item.get("status") in (ApprovalStatus.APPROVED.value, ApprovalStatus.PENDING.value)
                for item in self.data.get("exceptions", [])
            )
        return in_assignments or in_exceptions

    def _validate_rule(self, rule: RecurrenceRule):
        for warning in validate_recurrence_rule(rule):
            logger.warning(f"Rule '{rule.name}': {warning}")

        known_shifts = {shift.id for shift in self.load_shift_catalog()}
        referenced = pattern_shift_ids(rule.pattern) if rule.frequency is Frequency.PATTERN else [rule.shift_id]
        for shift_id in referenced:
            if shift_id is not None and shift_id not in known_shifts:
                logger.warning(f"Rule '{rule.name}' references unknown shift '{shift_id}'")

    # Team Membership
    def add_user_team(self, user_id: int, team_id: str, start_date: date,
                      end_date: Optional[date] = None) -> UserTeamAssignment:
        """Put a user in a team from start_date, closing their previous open membership"""
        if self.get_team(team_id) is None:
            raise ConfigurationError(f"Unknown team {team_id}")
        if end_date is not None and end_date < start_date:
            raise ConfigurationError("A membership cannot end before it starts")

        with self._lock:
            for item in self.data.get("userTeams", []):
                membership = UserTeamAssignment.from_dict(item)
                if membership.user_id == user_id and membership.end_date is None \
                        and membership.start_date < start_date:
                    item["endDate"] = format_date(start_date - timedelta(days=1))

            membership = UserTeamAssignment(
                id=self._next_id("userTeams"),
                user_id=user_id,
                team_id=team_id,
                start_date=start_date,
                end_date=end_date
            )
            self.data.setdefault("userTeams", []).append(membership.to_dict())
        self._notify_change(f"user {user_id} joined team {team_id}")
        return membership

    def get_user_teams(self, user_id: int) -> List[UserTeamAssignment]:
        with self._lock:
            return [
                UserTeamAssignment.from_dict(item) for item in self.data.get("userTeams", [])
                if item["userId"] == user_id
            ]

    def find_user_team(self, user_id: int, target: date) -> Optional[UserTeamAssignment]:
        # Latest start wins when memberships overlap
        matching = [membership for membership in self.get_user_teams(user_id) if membership.covers(target)]
        return max(matching, key=lambda membership: (membership.start_date, membership.id or 0), default=None)

    def get_team_members(self, team_id: str, target: date) -> List[int]:
        with self._lock:
            items = list(self.data.get("userTeams", []))
        return sorted({
            membership.user_id for membership in map(UserTeamAssignment.from_dict, items)
            if membership.team_id == team_id and membership.covers(target)
        })

    # Schedule Assignments
    def add_assignment(self, assignment: UserScheduleAssignment) -> UserScheduleAssignment:
        """
        Validate and store a schedule assignment.

        Returns:
            The stored assignment with its assigned id
        """
        self._validate_assignment(assignment)
        with self._lock:
            stored = UserScheduleAssignment.from_dict({
                **assignment.to_dict(), "id": self._next_id("assignments")
            })
            self.data.setdefault("assignments", []).append(stored.to_dict())
        self._notify_change(f"assignment {stored.id} added")
        return stored

    def get_assignment(self, assignment_id: int) -> Optional[UserScheduleAssignment]:
        with self._lock:
            for item in self.data.get("assignments", []):
                if item["id"] == assignment_id:
                    return UserScheduleAssignment.from_dict(item)
        return None

    def get_assignments(self, user_id: Optional[int] = None,
                        team_id: Optional[str] = None) -> List[UserScheduleAssignment]:
        """Assignments of a user, of a team (team-level only), or all of them"""
        with self._lock:
            assignments = [UserScheduleAssignment.from_dict(item) for item in self.data.get("assignments", [])]
        if user_id is not None:
            return [assignment for assignment in assignments if assignment.user_id == user_id]
        if team_id is not None:
            return [
                assignment for assignment in assignments
                if assignment.user_id is None and assignment.team_id == team_id
            ]
        return assignments

    def find_assignments(self, target: date, user_id: Optional[int] = None,
                         team_id: Optional[str] = None) -> List[UserScheduleAssignment]:
        if user_id is None and team_id is None:
            return []
        return [
            assignment for assignment in self.get_assignments(user_id=user_id, team_id=team_id)
            if assignment.covers(target)
        ]

    def supersede_assignment(self, assignment_id: int, effective_date: date,
                             rule_id: Optional[int] = None, end_date: Optional[date] = None,
                             notes: str = "") -> UserScheduleAssignment:
        """
        Replace an assignment from effective_date on, keeping it for history.

        The old assignment is closed the day before effective_date, or
        expired when the replacement starts on or before its own start.

        Returns:
            The new assignment
        """
        old = self.get_assignment(assignment_id)
        if old is None:
            raise ConfigurationError(f"Unknown assignment {assignment_id}")

        replacement = UserScheduleAssignment(
            id=None,
            start_date=effective_date,
            user_id=old.user_id,
            team_id=old.team_id,
            rule_id=rule_id,
            end_date=end_date,
            status=AssignmentStatus.ACTIVE,
            notes=notes or f"Supersedes assignment {assignment_id}"
        )
        self._validate_assignment(replacement)

        with self._lock:
            for item in self.data.get("assignments", []):
                if item["id"] != assignment_id:
                    continue
                if effective_date <= old.start_date:
                    item["status"] = AssignmentStatus.EXPIRED.value
                elif old.end_date is None or old.end_date >= effective_date:
                    item["endDate"] = format_date(effective_date - timedelta(days=1))
                break

            stored = UserScheduleAssignment.from_dict({
                **replacement.to_dict(), "id": self._next_id("assignments")
            })
            self.data["assignments"].append(stored.to_dict())

        self._notify_change(f"assignment {assignment_id} superseded by {stored.id}")
        return stored

    def replace_assignment_rule(self, assignment_id: int, rule: RecurrenceRule,
                                effective_date: date) -> Tuple[RecurrenceRule, UserScheduleAssignment]:
        """Store a new rule and re-point the assignment to it from effective_date"""
        old = self.get_assignment(assignment_id)
        if old is None:
            raise ConfigurationError(f"Unknown assignment {assignment_id}")
        stored_rule = self.add_recurrence_rule(rule)
        new_assignment = self.supersede_assignment(
            assignment_id, effective_date, rule_id=stored_rule.id, end_date=old.end_date,
            notes=f"Rule {old.rule_id} replaced by {stored_rule.id}"
        )
        return stored_rule, new_assignment

    def expire_assignment(self, assignment_id: int) -> bool:
        with self._lock:
            for item in self.data.get("assignments", []):
                if item["id"] == assignment_id:
                    item["status"] = AssignmentStatus.EXPIRED.value
                    break
            else:
                return False
        self._notify_change(f"assignment {assignment_id} expired")
        return True

    def _validate_assignment(self, assignment: UserScheduleAssignment):
        if assignment.user_id is None and assignment.team_id is None:
            raise ConfigurationError("An assignment needs a user or a team")
        if assignment.end_date is not None and assignment.end_date < assignment.start_date:
            raise ConfigurationError(
                f"Assignment window ends ({assignment.end_date}) before it starts ({assignment.start_date}); "
                "end dates are inclusive"
            )
        if assignment.team_id is not None and self.get_team(assignment.team_id) is None:
            raise ConfigurationError(f"Unknown team {assignment.team_id}")
        if assignment.rule_id is not None and self.load_recurrence_rule(assignment.rule_id) is None:
            raise ConfigurationError(f"Unknown recurrence rule {assignment.rule_id}")

    # Exceptions
    def add_exception(self, exception: ShiftException) -> ShiftException:
        """
        Validate and store an exception.

        Returns:
            The stored exception with its assigned id
        """
        self._validate_exception(exception)
        with self._lock:
            stored = ShiftException.from_dict({**exception.to_dict(), "id": self._next_id("exceptions")})
            self.data.setdefault("exceptions", []).append(stored.to_dict())
        self._notify_change(f"exception {stored.id} added")
        return stored

    def get_exception(self, exception_id: int) -> Optional[ShiftException]:
        with self._lock:
            for item in self.data.get("exceptions", []):
                if item["id"] == exception_id:
                    return ShiftException.from_dict(item)
        return None

    def get_exceptions(self, user_id: Optional[int] = None, start_date: Optional[date] = None,
                       end_date: Optional[date] = None) -> List[ShiftException]:
        """Stored exceptions filtered by user and target date window"""
        with self._lock:
            exceptions = [ShiftException.from_dict(item) for item in self.data.get("exceptions", [])]
        return [
            exception for exception in exceptions
            if (user_id is None or exception.user_id == user_id)
            and (start_date is None or exception.target_date >= start_date)
            and (end_date is None or exception.target_date <= end_date)
        ]

    def load_exceptions(self, user_id: int, target: date) -> List[ShiftException]:
        """
        Exceptions that change a user's day on target, including recurring
        ones that occur on it and swaps or replacements naming the user as
        counterpart.
        """
        result = []
        candidates = [exception for exception in self.get_exceptions() if involves_user(exception, user_id)]
        for exception in candidates:
            if exception.recurrence_rule_id is None:
                if exception.target_date == target:
                    result.append(exception)
                continue
            if exception.target_date > target:
                continue
            rule = self.load_recurrence_rule(exception.recurrence_rule_id)
            if rule is None:
                logger.warning(f"Exception {exception.id} references missing rule {exception.recurrence_rule_id}")
                continue
            if self._rule_fires(rule, target):
                result.append(exception)
        return result

    def update_exception_status(self, exception_id: int, status: ApprovalStatus) -> bool:
        with self._lock:
            for item in self.data.get("exceptions", []):
                if item["id"] == exception_id:
                    item["status"] = status.value
                    break
            else:
                return False
        self._notify_change(f"exception {exception_id} {status.value}")
        return True

    def delete_exception(self, exception_id: int) -> bool:
        with self._lock:
            exceptions = self.data.get("exceptions", [])
            remaining = [item for item in exceptions if item["id"] != exception_id]
            if len(remaining) == len(exceptions):
                return False
            self.data["exceptions"] = remaining
        self._notify_change(f"exception {exception_id} deleted")
        return True

    def _rule_fires(self, rule: RecurrenceRule, target: date) -> bool:
        try:
            if rule.frequency is Frequency.PATTERN:
                return within_end_condition(rule, target) and occurs_on(rule, target)
            return occurs_on(rule, target)
        except ConfigurationError as e:
            logger.warning(f"Rule {rule.id} could not be evaluated: {e}")
            return False

    def _validate_exception(self, exception: ShiftException):
        effect = exception.effect
        if effect is ExceptionEffect.ADD and exception.new_shift_id is None:
            raise ConfigurationError(f"{exception.exception_type.value} exceptions need a new shift")
        if effect is ExceptionEffect.SUBSTITUTE and exception.new_shift_id is None \
                and exception.counterpart_user_id is None:
            raise ConfigurationError(
                f"{exception.exception_type.value} exceptions need a new shift or a counterpart user"
            )
        if effect is ExceptionEffect.ADJUST_TIME and exception.new_start_time is None \
                and exception.new_end_time is None:
            raise ConfigurationError("Time reductions need a new start or end time")
        if exception.counterpart_user_id == exception.user_id:
            raise ConfigurationError("A user cannot swap with or replace themselves")
        if exception.recurrence_rule_id is not None \
                and self.load_recurrence_rule(exception.recurrence_rule_id) is None:
            raise ConfigurationError(f"Unknown recurrence rule {exception.recurrence_rule_id}")
        for shift_id in (exception.original_shift_id, exception.new_shift_id):
            if shift_id is not None and self.get_shift(shift_id) is None:
                logger.warning(f"Exception for user {exception.user_id} references unknown shift '{shift_id}'")

    def get_data_summary(self) -> Dict[str, Any]:
        """Counts per section, for diagnostics"""
        with self._lock:
            summary = {section: len(self.data.get(section, [])) for section in REQUIRED_SECTIONS[1:]}
        summary["dataFile"] = str(self.data_file)
        summary["loadedAt"] = datetime.now().isoformat()
        return summary
