"""
Main Entry Point for the Shift Calendar

Command line front end over the schedule engine: print the roster of a
day or a range, check whether a team works, and export a range.
"""

import argparse
import sys
import logging
from pathlib import Path
from datetime import date, datetime
from typing import List, Optional

from shift_calendar.data_manager import DataManager, DataManagerError
from shift_calendar.models import ScheduleError, format_time
from shift_calendar.reporting import ExportManager
from shift_calendar.service import ScheduleService


def setup_logging(verbose: bool = False):
    """Setup application logging"""
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    log_file = log_dir / f"shift_calendar_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def handle_exception(exc_type, exc_value, exc_traceback):
    """Global exception handler"""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logger = logging.getLogger(__name__)
    logger.error(
        "Uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback)
    )


def parse_cli_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shift-calendar",
        description="Compute QuattroDue rotating shift schedules"
    )
    parser.add_argument('--data-file', default="data/shift_calendar.json",
                        help='JSON data file (created with the default roster if missing)')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--include-pending', action='store_true',
                        help='Preview pending exceptions as if approved')

    subparsers = parser.add_subparsers(dest='command', required=True)

    day_parser = subparsers.add_parser('day', help='Show the schedule of one date')
    day_parser.add_argument('date', type=parse_cli_date)
    day_parser.add_argument('--user', type=int, help='User id')
    day_parser.add_argument('--team', help='Team id')

    range_parser = subparsers.add_parser('range', help='Show the schedule of a date range')
    range_parser.add_argument('start', type=parse_cli_date)
    range_parser.add_argument('end', type=parse_cli_date)
    range_parser.add_argument('--user', type=int, help='User id')
    range_parser.add_argument('--team', help='Team id')
    range_parser.add_argument('--timeout', type=float, help='Advisory timeout in seconds')

    team_parser = subparsers.add_parser('team', help='Check whether a team works on a date')
    team_parser.add_argument('team')
    team_parser.add_argument('date', type=parse_cli_date)

    export_parser = subparsers.add_parser('export', help='Export the roster of a date range')
    export_parser.add_argument('start', type=parse_cli_date)
    export_parser.add_argument('end', type=parse_cli_date)
    export_parser.add_argument('--format', dest='format_type', choices=['pdf', 'excel', 'csv'], default='pdf')
    export_parser.add_argument('--output', help='Output file (defaults to a timestamped name)')
    export_parser.add_argument('--user', type=int, help='User id')
    export_parser.add_argument('--team', help='Team id')

    return parser


class ShiftCalendarApp:
    """Main application class"""

    def __init__(self, data_file: str):
        self.logger = logging.getLogger(__name__)
        self.data_file = data_file
        self.data_manager = None
        self.service = None
        self.export_manager = None

    def initialize(self) -> bool:
        """Initialize application components"""
        try:
            self.logger.info("Initializing Shift Calendar")
            self.data_manager = DataManager(self.data_file)
            self.logger.info(f"Data manager initialized with {self.data_manager.data_file}")

            self.service = ScheduleService(self.data_manager)
            self.export_manager = ExportManager(self.service)
            return True

        except DataManagerError as e:
            self.logger.error(f"Failed to initialize application: {e}", exc_info=True)
            return False

    def run(self, args: argparse.Namespace) -> bool:
        if not self.initialize():
            return False

        try:
            if args.command == 'day':
                return self.show_day(args.date, args.user, args.team, args.include_pending)
            if args.command == 'range':
                return self.show_range(args.start, args.end, args.user, args.team, args.timeout,
                                       args.include_pending)
            if args.command == 'team':
                working = self.service.is_working_day(args.date, args.team)
                print(f"Team {args.team} {'works' if working else 'is off'} on {args.date} "
                      f"(cycle day {self.service.day_in_cycle(args.date, args.team) + 1})")
                return True
            if args.command == 'export':
                return self.export(args)
        except ScheduleError as e:
            self.logger.error(f"{args.command} failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return False

        return False

    def show_day(self, target: date, user_id: Optional[int], team_id: Optional[str],
                 include_pending: bool) -> bool:
        day = self.service.get_schedule_for_date(target, user_id=user_id, team_id=team_id,
                                                 include_pending=include_pending or None)
        for line in self.format_day(day, user_id, team_id):
            print(line)
        return day.available

    def show_range(self, start: date, end: date, user_id: Optional[int], team_id: Optional[str],
                   timeout: Optional[float], include_pending: bool = False) -> bool:
        result = self.service.get_schedule_for_range(start, end, user_id=user_id, team_id=team_id,
                                                     timeout=timeout, include_pending=include_pending or None)
        for day in result.days.values():
            for line in self.format_day(day, user_id, team_id):
                print(line)
        for target, reason in result.failures.items():
            print(f"{target}  FAILED: {reason}")
        print(result.message)
        return result.success

    def format_day(self, day, user_id: Optional[int], team_id: Optional[str]) -> List[str]:
        if not day.available:
            return [f"{day.date}  no schedule available: {day.reason}"]

        header = f"{day.date} {day.date.strftime('%a')}  cycle day {self.service.day_in_cycle(day.date) + 1}"
        if user_id is not None:
            instances = day.user_shifts
        elif team_id is not None:
            instances = day.shifts_for_team(team_id)
        else:
            lines = [header]
            for instance in day.shifts:
                lines.append(f"  {instance.shift.name:<12} {format_time(instance.effective_start)}-"
                             f"{format_time(instance.effective_end)}  {', '.join(instance.teams)}")
            lines.append(f"  {'Off':<12} {'':11}  {', '.join(day.off_teams)}")
            lines.extend(f"  ! {issue}" for issue in day.issues)
            return lines

        lines = [header]
        if not instances:
            lines.append("  Rest")
        for instance in instances:
            lines.append(f"  {instance.shift.name:<12} {format_time(instance.effective_start)}-"
                         f"{format_time(instance.effective_end)}")
        for applied in day.applied_exceptions:
            lines.append(f"  * {applied.exception_type.value} ({applied.effect.value})")
        lines.extend(f"  ! {issue}" for issue in day.issues)
        return lines

    def export(self, args: argparse.Namespace) -> bool:
        output = args.output or self.export_manager.get_default_filename(args.start, args.end, args.format_type)
        success = self.export_manager.export_roster(
            args.start, args.end, args.format_type, output, user_id=args.user, team_id=args.team
        )
        if success:
            self.logger.info(f"Exported roster to {output}")
            print(f"Exported roster to {output}")
        else:
            print(f"Export to {output} failed; see the log for details", file=sys.stderr)
        return success


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    args = build_parser().parse_args(argv)

    # Setup global exception handling
    sys.excepthook = handle_exception

    logger = setup_logging(args.verbose)
    logger.debug(f"Starting Shift Calendar with {args}")

    app = ShiftCalendarApp(args.data_file)
    success = app.run(args)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
