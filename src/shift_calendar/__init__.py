"""
Shift Calendar: QuattroDue Rotating Shift Schedules

Recurrence and resolution engine for work-shift calendars. Combines the
fixed 18-day rotating roster, calendar recurrence rules, custom repeating
patterns and per-user exceptions into the schedule of any date.
"""

__version__ = "1.0.0"
__author__ = "Shift Calendar Team"
