"""
Reporting and Export Module for the Shift Calendar

Exports the computed roster of a date range, for the whole roster, a team
or a single user, to PDF, Excel and CSV, together with the range statistics.
"""

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer, PageBreak
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from openpyxl.styles import Font, PatternFill
from datetime import datetime, date
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

from .models import Shift, format_time
from .service import ScheduleRangeResult, ScheduleService

logger = logging.getLogger(__name__)

FILE_EXTENSIONS = {
    "pdf": "pdf",
    "excel": "xlsx",
    "csv": "csv",
}


class ReportGenerator:
    """Main class for generating roster reports and exports"""

    def __init__(self, service: ScheduleService):
        self.service = service
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom report styles"""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=18,
            spaceAfter=30,
            alignment=1  # Center alignment
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceAfter=12
        ))

    def _shift_catalog(self) -> List[Shift]:
        return self.service.repository.load_shift_catalog()

    def create_roster_dataframe(self, result: ScheduleRangeResult, user_id: Optional[int] = None,
                                team_id: Optional[str] = None) -> pd.DataFrame:
        """
        One row per date of a computed range.

        The whole-roster view has one column per shift listing the working
        teams; the user and team views list the subject's own shifts.
        """
        catalog = self._shift_catalog()
        data = []

        for target in sorted(set(result.days) | set(result.failures)):
            row = {
                'Date': target.strftime("%Y-%m-%d"),
                'Day': target.strftime("%A"),
                'Cycle_Day': self.service.day_in_cycle(target, team_id) + 1,
            }
            day = result.days.get(target)

            if day is None or not day.available:
                note = result.failures.get(target) if day is None else f"Not available: {day.reason}"
                if user_id is None and team_id is None:
                    row.update({shift.name: '' for shift in catalog})
                    row['Off'] = ''
                else:
                    row.update({'Shifts': '', 'Start': '', 'End': '', 'Work_Minutes': 0})
                row['Notes'] = note
                data.append(row)
                continue

            if user_id is None and team_id is None:
                teams_by_shift = {instance.shift_id: ', '.join(instance.teams) for instance in day.shifts}
                for shift in catalog:
                    row[shift.name] = teams_by_shift.get(shift.id, '')
                for instance in day.shifts:
                    if instance.shift.is_placeholder:
                        row[f"{instance.shift.name} ({instance.shift_id})"] = ', '.join(instance.teams)
                row['Off'] = ', '.join(day.off_teams)
            else:
                instances = list(day.user_shifts) if user_id is not None else day.shifts_for_team(team_id)
                row['Shifts'] = ', '.join(instance.shift.name for instance in instances) or 'Rest'
                row['Start'] = ', '.join(format_time(instance.effective_start) for instance in instances)
                row['End'] = ', '.join(format_time(instance.effective_end) for instance in instances)
                row['Work_Minutes'] = sum(instance.work_minutes for instance in instances)
                if user_id is not None:
                    row['Team'] = day.user_team_id or ''
                    row['Exceptions'] = ', '.join(
                        applied.exception_type.value for applied in day.applied_exceptions
                    )
            row['Notes'] = '; '.join(day.issues)
            data.append(row)

        return pd.DataFrame(data)

    def create_statistics_dataframe(self, stats: Dict[str, Any]) -> pd.DataFrame:
        data = [
            {'Metric': 'Total days', 'Value': stats['totalDays']},
            {'Metric': 'Work days', 'Value': stats['workDays']},
            {'Metric': 'Rest days', 'Value': stats['restDays']},
            {'Metric': 'Unavailable days', 'Value': stats['unavailableDays']},
            {'Metric': 'Failed days', 'Value': stats['failedDays']},
            {'Metric': 'Degraded days', 'Value': stats['degradedDays']},
            {'Metric': 'Worked hours', 'Value': round(stats['workMinutes'] / 60, 1)},
            {'Metric': 'Exceptions applied', 'Value': stats['exceptionsApplied']},
        ]
        for shift_id, count in sorted(stats['shiftsById'].items()):
            data.append({'Metric': f"Shifts: {shift_id}", 'Value': count})
        return pd.DataFrame(data)

    def create_shift_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([
            {
                'Id': shift.id,
                'Name': shift.name,
                'Code': shift.short_code,
                'Start': format_time(shift.start_time),
                'End': format_time(shift.end_time),
                'Break_Minutes': shift.break_minutes,
                'Work_Minutes': shift.work_minutes,
            }
            for shift in self._shift_catalog()
        ])

    def export_roster_pdf(self, start: date, end: date, output_path: str,
                          user_id: Optional[int] = None, team_id: Optional[str] = None) -> bool:
        """Export the roster of a range to PDF with a legend and statistics"""
        try:
            result = self.service.get_schedule_for_range(start, end, user_id=user_id, team_id=team_id)
            stats = self.service.get_schedule_stats(start, end, user_id=user_id, team_id=team_id)

            doc = SimpleDocTemplate(
                output_path,
                pagesize=landscape(A4),
                rightMargin=0.5*inch,
                leftMargin=0.5*inch,
                topMargin=0.5*inch,
                bottomMargin=0.5*inch
            )

            story = []
            title = Paragraph(self._title(start, end, user_id, team_id), self.styles['CustomTitle'])
            story.append(title)

            if not result.success or result.degraded_dates:
                story.append(Paragraph(result.message, self.styles['Normal']))
            story.append(Spacer(1, 20))

            story.append(self._create_roster_table(self.create_roster_dataframe(result, user_id, team_id)))

            story.append(Spacer(1, 20))
            story.append(self._create_legend())

            story.append(PageBreak())
            story.append(Paragraph("Statistics", self.styles['CustomHeading']))
            story.append(self._create_statistics_table(stats))

            doc.build(story)
            return True

        except Exception as e:
            logger.error(f"Error creating PDF: {e}", exc_info=True)
            return False

    def _title(self, start: date, end: date, user_id: Optional[int], team_id: Optional[str]) -> str:
        subject = "Shift Roster"
        if user_id is not None:
            subject = f"Shift Schedule - User {user_id}"
        elif team_id is not None:
            subject = f"Shift Schedule - Team {team_id}"
        return f"{subject} - {start.strftime('%d %b %Y')} to {end.strftime('%d %b %Y')}"

    def _create_roster_table(self, df: pd.DataFrame) -> Table:
        """Create the roster table for PDF"""
        data = [[column.replace('_', ' ') for column in df.columns]]
        data.extend([str(value) for value in row] for row in df.itertuples(index=False))

        table = Table(data, repeatRows=1)
        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#366092')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ]
        # Shade weekends
        for row_index, row in enumerate(df.itertuples(index=False), start=1):
            if getattr(row, 'Day') in ('Saturday', 'Sunday'):
                style.append(('BACKGROUND', (0, row_index), (-1, row_index), colors.lightgrey))
        table.setStyle(TableStyle(style))
        return table

    def _create_legend(self) -> Table:
        """Create shift legend for PDF"""
        legend_data = [['Shift', 'Code', 'Hours']]
        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
        ]
        for index, shift in enumerate(self._shift_catalog(), start=1):
            legend_data.append([
                shift.name,
                shift.short_code,
                f"{format_time(shift.start_time)} - {format_time(shift.end_time)}"
            ])
            style.append(('BACKGROUND', (1, index), (1, index), colors.HexColor(shift.color)))

        legend_table = Table(legend_data, colWidths=[2*inch, 0.8*inch, 1.5*inch])
        legend_table.setStyle(TableStyle(style))
        return legend_table

    def _create_statistics_table(self, stats: Dict[str, Any]) -> Table:
        df = self.create_statistics_dataframe(stats)
        data = [['Metric', 'Value']] + [[row.Metric, str(row.Value)] for row in df.itertuples(index=False)]
        table = Table(data, colWidths=[3*inch, 1.5*inch])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
        ]))
        return table

    def export_roster_excel(self, start: date, end: date, output_path: str,
                            user_id: Optional[int] = None, team_id: Optional[str] = None) -> bool:
        """Export the roster of a range to Excel with statistics and shift sheets"""
        try:
            result = self.service.get_schedule_for_range(start, end, user_id=user_id, team_id=team_id)
            stats = self.service.get_schedule_stats(start, end, user_id=user_id, team_id=team_id)

            with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
                self.create_roster_dataframe(result, user_id, team_id).to_excel(
                    writer, sheet_name='Roster', index=False)
                self.create_statistics_dataframe(stats).to_excel(writer, sheet_name='Statistics', index=False)
                self.create_shift_dataframe().to_excel(writer, sheet_name='Shifts', index=False)
                self._format_excel_worksheets(writer)

            return True

        except Exception as e:
            logger.error(f"Error exporting to Excel: {e}", exc_info=True)
            return False

    def _format_excel_worksheets(self, writer):
        """Format Excel worksheets"""
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(color="FFFFFF", bold=True)

        for worksheet in writer.sheets.values():
            for cell in worksheet[1]:
                cell.fill = header_fill
                cell.font = header_font

            # Auto-adjust column widths
            for column in worksheet.columns:
                max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
                worksheet.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

    def export_roster_csv(self, start: date, end: date, output_path: str,
                          user_id: Optional[int] = None, team_id: Optional[str] = None) -> bool:
        """Export the roster of a range to CSV format"""
        try:
            result = self.service.get_schedule_for_range(start, end, user_id=user_id, team_id=team_id)
            self.create_roster_dataframe(result, user_id, team_id).to_csv(output_path, index=False)
            return True

        except Exception as e:
            logger.error(f"Error exporting to CSV: {e}", exc_info=True)
            return False


class ExportManager:
    """Manager class for handling all export operations"""

    def __init__(self, service: ScheduleService):
        self.service = service
        self.report_generator = ReportGenerator(service)

    def export_roster(self, start: date, end: date, format_type: str, output_path: str,
                      user_id: Optional[int] = None, team_id: Optional[str] = None) -> bool:
        """Export the roster of a range in the specified format"""
        if format_type.lower() == 'pdf':
            return self.report_generator.export_roster_pdf(start, end, output_path, user_id, team_id)
        elif format_type.lower() == 'excel':
            return self.report_generator.export_roster_excel(start, end, output_path, user_id, team_id)
        elif format_type.lower() == 'csv':
            return self.report_generator.export_roster_csv(start, end, output_path, user_id, team_id)
        else:
            raise ValueError(f"Unsupported format: {format_type}")

    def get_default_filename(self, start: date, end: date, format_type: str) -> str:
        """Generate default filename for export"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        extension = FILE_EXTENSIONS.get(format_type.lower(), format_type.lower())
        return f"shift_roster_{start:%Y%m%d}_{end:%Y%m%d}_{timestamp}.{extension}"

    def batch_export(self, start: date, end: date, output_dir: str,
                     formats: List[str] = None) -> Dict[str, bool]:
        """Export the roster in multiple formats"""
        if formats is None:
            formats = ['pdf', 'excel', 'csv']

        results = {}
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        for format_type in formats:
            file_path = output_path / self.get_default_filename(start, end, format_type)
            try:
                results[format_type] = self.export_roster(start, end, format_type, str(file_path))
            except ValueError as e:
                logger.error(f"Error exporting {format_type}: {e}", exc_info=True)
                results[format_type] = False

        return results
