"""
Schedule Assembler for the Shift Calendar

Builds the base schedule of a date: for every team in the catalog it
works out which shift (if any) the team covers, then resolves the shift of
the requested user or team. Rules come from the winning schedule
assignment, with the fixed QuattroDue roster as fallback.
"""

from abc import ABC, abstractmethod
from datetime import date
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .models import (
    AssignmentStatus,
    ConfigurationError,
    Frequency,
    RecurrenceRule,
    ScheduleNotAvailable,
    ScheduleSettings,
    Shift,
    ShiftException,
    ShiftInstance,
    Team,
    UserScheduleAssignment,
    UserTeamAssignment,
    WorkScheduleDay,
)
from .patterns import QUATTRODUE_SEQUENCE, roster_slot, slot_for
from .recurrence import occurs_on, within_end_condition

logger = logging.getLogger(__name__)

ScheduleResult = Union[WorkScheduleDay, ScheduleNotAvailable]

# Lower rank wins; expired assignments never take part
STATUS_RANK = {
    AssignmentStatus.ACTIVE: 0,
    AssignmentStatus.DRAFT: 1,
}


class ScheduleRepository(ABC):
    """Data the engine reads from the storage layer"""

    @abstractmethod
    def find_assignments(self, target: date, user_id: Optional[int] = None,
                         team_id: Optional[str] = None) -> List[UserScheduleAssignment]:
        """
        Assignments of a user or team whose window contains target.

        Args:
            target: Date of interest
            user_id: User whose own assignments are requested
            team_id: Team whose team-level assignments are requested (user_id is None)

        Returns:
            List of candidate assignments in any status
        """
        pass

    @abstractmethod
    def load_recurrence_rule(self, rule_id: int) -> Optional[RecurrenceRule]:
        """Rule by id, or None when it does not exist"""
        pass

    @abstractmethod
    def load_exceptions(self, user_id: int, target: date) -> List[ShiftException]:
        """Exceptions of a user that apply on target, including recurring ones"""
        pass

    @abstractmethod
    def load_team_catalog(self) -> List[Team]:
        pass

    @abstractmethod
    def load_shift_catalog(self) -> List[Shift]:
        pass

    @abstractmethod
    def find_user_team(self, user_id: int, target: date) -> Optional[UserTeamAssignment]:
        """Team membership of a user on target"""
        pass

    def load_settings(self) -> ScheduleSettings:
        return ScheduleSettings()

    def add_change_listener(self, callback: Callable[[str], None]):
        """Register a callback for data changes; read-only repositories never call it"""
        pass

    def find_active_assignment(self, target: date, user_id: Optional[int] = None,
                               team_id: Optional[str] = None) -> Optional[UserScheduleAssignment]:
        """Winning assignment of a user or team on target"""
        return select_assignment(self.find_assignments(target, user_id=user_id, team_id=team_id), target)


def select_assignment(candidates: Sequence[UserScheduleAssignment],
                      target: date) -> Optional[UserScheduleAssignment]:
    """
    Pick the assignment that governs target.

    Only assignments whose window contains target and which are not expired
    take part; ACTIVE beats DRAFT, then the most recently created wins.
    """
    eligible = [
        assignment for assignment in candidates
        if assignment.status in STATUS_RANK and assignment.covers(target)
    ]
    if not eligible:
        return None
    # Newest first, so min() keeps the most recent among equal statuses
    eligible.sort(key=lambda assignment: (assignment.created_at, assignment.id or 0), reverse=True)
    return min(eligible, key=lambda assignment: STATUS_RANK[assignment.status])


class ScheduleAssembler:
    """Computes base schedule days from catalogs, assignments and rules"""

    def __init__(self, repository: ScheduleRepository, settings: Optional[ScheduleSettings] = None):
        self.repository = repository
        self.settings = settings or repository.load_settings()

    def assemble(self, target: date, user_id: Optional[int] = None,
                 team_id: Optional[str] = None) -> ScheduleResult:
        """
        Build the base schedule of target for a user, a team, or every team.

        Args:
            target: Date to compute
            user_id: User whose own shifts are resolved (optional)
            team_id: Team the caller is interested in (optional)

        Returns:
            WorkScheduleDay, or ScheduleNotAvailable when the assignment or
            rule data the subject depends on is missing
        """
        teams = [team for team in self.repository.load_team_catalog() if team.active]
        if not teams:
            return ScheduleNotAvailable(target, "No team catalog available", user_id=user_id, team_id=team_id)

        catalog = {shift.id: shift for shift in self.repository.load_shift_catalog()}
        teams_by_id = {team.id: team for team in teams}
        issues: List[str] = []

        # Per-team slots, remembering teams whose own rule data is missing
        team_slots: Dict[str, Optional[str]] = {}
        missing_team_rules: Dict[str, str] = {}
        for team in teams:
            slot, missing = self._team_slot(team, target, issues)
            team_slots[team.id] = slot
            if missing:
                missing_team_rules[team.id] = missing

        if team_id is not None:
            if team_id not in teams_by_id:
                return ScheduleNotAvailable(target, f"Unknown team {team_id}", user_id=user_id, team_id=team_id)
            if team_id in missing_team_rules:
                return ScheduleNotAvailable(target, missing_team_rules[team_id], user_id=user_id, team_id=team_id)

        shifts, off_teams = self._merge_team_slots(teams, team_slots, catalog, issues)

        user_team_id = None
        user_shifts: Tuple[ShiftInstance, ...] = ()
        if user_id is not None:
            resolved = self._user_slot(user_id, target, teams_by_id, team_slots, issues)
            if isinstance(resolved, ScheduleNotAvailable):
                return resolved
            user_team_id, shift_id = resolved
            if shift_id is not None:
                user_shifts = (ShiftInstance(
                    shift=self._lookup_shift(shift_id, catalog, issues),
                    teams=(user_team_id,) if user_team_id else (),
                    user_ids=(user_id,)
                ),)

        for issue in issues:
            logger.warning(f"{target}: {issue}")

        return WorkScheduleDay(
            date=target,
            shifts=shifts,
            off_teams=off_teams,
            user_id=user_id,
            team_id=team_id,
            user_team_id=user_team_id,
            user_shifts=user_shifts,
            issues=tuple(issues)
        )

    def evaluate_rule(self, rule: RecurrenceRule, target: date) -> Optional[str]:
        """Shift id a rule yields on target, or None for rest"""
        if rule.frequency is Frequency.PATTERN:
            if not within_end_condition(rule, target):
                return None
            return slot_for(rule.pattern, rule.start_date, target).shift_id
        if occurs_on(rule, target):
            return rule.shift_id or ""
        return None

    def roster_shift(self, team: Team, target: date) -> Optional[str]:
        """Shift id of the fixed rotating roster for a team"""
        return roster_slot(target, self.settings.scheme_start_date, team.offset, QUATTRODUE_SEQUENCE).shift_id

    def _team_slot(self, team: Team, target: date, issues: List[str]) -> Tuple[Optional[str], Optional[str]]:
        """Shift of a team on target and, when its rule is missing, the reason"""
        assignment = self.repository.find_active_assignment(target, team_id=team.id)
        if assignment is None or assignment.uses_fixed_roster:
            return self.roster_shift(team, target), None

        rule = self.repository.load_recurrence_rule(assignment.rule_id)
        if rule is None:
            reason = f"Rule {assignment.rule_id} of team {team.id} assignment {assignment.id} is missing"
            issues.append(f"{reason}; using the fixed roster")
            return self.roster_shift(team, target), reason

        return self._safe_evaluate(rule, target, issues), None

    def _user_slot(self, user_id: int, target: date, teams_by_id: Dict[str, Team],
                   team_slots: Dict[str, Optional[str]],
                   issues: List[str]) -> Union[Tuple[Optional[str], Optional[str]], ScheduleNotAvailable]:
        """Team and shift id of a user on target"""
        assignment = self.repository.find_active_assignment(target, user_id=user_id)
        membership = self.repository.find_user_team(user_id, target)
        team_id = None
        if assignment is not None and assignment.team_id:
            team_id = assignment.team_id
        elif membership is not None:
            team_id = membership.team_id

        if assignment is not None and not assignment.uses_fixed_roster:
            rule = self.repository.load_recurrence_rule(assignment.rule_id)
            if rule is None:
                return ScheduleNotAvailable(
                    target, f"Rule {assignment.rule_id} of assignment {assignment.id} is missing",
                    user_id=user_id
                )
            return team_id, self._safe_evaluate(rule, target, issues)

        # Fixed roster: the user follows their team
        if team_id is None:
            return ScheduleNotAvailable(target, f"No schedule assignment or team for user {user_id}",
                                        user_id=user_id)
        team = teams_by_id.get(team_id)
        if team is None:
            return ScheduleNotAvailable(target, f"Team {team_id} of user {user_id} is not in the catalog",
                                        user_id=user_id)
        if assignment is not None:
            return team_id, self.roster_shift(team, target)
        return team_id, team_slots.get(team_id)

    def _safe_evaluate(self, rule: RecurrenceRule, target: date, issues: List[str]) -> Optional[str]:
        try:
            return self.evaluate_rule(rule, target)
        except ConfigurationError as e:
            issues.append(f"Rule {rule.id} is malformed ({e}); treated as rest")
            return None

    def _merge_team_slots(self, teams: Sequence[Team], team_slots: Dict[str, Optional[str]],
                          catalog: Dict[str, Shift],
                          issues: List[str]) -> Tuple[Tuple[ShiftInstance, ...], Tuple[str, ...]]:
        """Group teams by shift, in catalog order, and collect the teams off"""
        working: Dict[str, List[str]] = {}
        off_teams = []
        for team in teams:
            shift_id = team_slots[team.id]
            if shift_id is None:
                off_teams.append(team.id)
            else:
                working.setdefault(shift_id, []).append(team.id)

        order = list(catalog)
        ordered_ids = sorted(working, key=lambda shift_id: (
            order.index(shift_id) if shift_id in catalog else len(order), shift_id
        ))
        shifts = tuple(
            ShiftInstance(
                shift=self._lookup_shift(shift_id, catalog, issues),
                teams=tuple(working[shift_id])
            )
            for shift_id in ordered_ids
        )
        return shifts, tuple(off_teams)

    def _lookup_shift(self, shift_id: str, catalog: Dict[str, Shift], issues: List[str]) -> Shift:
        shift = catalog.get(shift_id)
        if shift is None:
            issues.append(f"Shift '{shift_id}' is not in the catalog; using a placeholder")
            return Shift.unknown(shift_id)
        return shift

