"""
Report Generator Module - School Portal

This module builds the office reports: the monthly attendance register of
a class and the fee collection report. Fee reports are exported through
pandas to CSV or Excel, or rendered to PDF with reportlab.

Features:
- Monthly class attendance sheet (P/A/L/E grid with totals)
- Fee collection report in CSV, Excel and PDF
- Collection statistics sheet
"""

import pandas as pd
import io
import os
import logging
from datetime import datetime, date
from typing import Dict, List, Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

STATUS_SYMBOLS = {
    'present': 'P',
    'absent': 'A',
    'late': 'L',
    'excused': 'E'
}

SYMBOL_COLORS = {
    'P': colors.Color(34 / 255, 139 / 255, 34 / 255),
    'A': colors.Color(220 / 255, 53 / 255, 69 / 255),
    'L': colors.Color(1, 165 / 255, 0),
    'E': colors.Color(70 / 255, 130 / 255, 180 / 255)
}

HEADER_COLOR = colors.HexColor('#1A365D')


class ReportGenerator:
    """
    Attendance and fee reports for the school office.
    """

    def __init__(self, attendance_manager, fee_ledger, school_info: Dict[str, str],
                 output_dir: str = 'reports', currency_code: str = 'PKR'):
        """
        Initialize the report generator.

        Args:
            attendance_manager: AttendanceManager providing the monthly grid
            fee_ledger: FeeLedger providing fee rows and statistics
            school_info (Dict[str, str]): name, address, phone and email
            output_dir (str): Directory for exported files
            currency_code (str): Currency shown in fee reports
        """
        self.attendance = attendance_manager
        self.fee_ledger = fee_ledger
        self.school = school_info
        self.currency_code = currency_code
        self.logger = logging.getLogger(__name__)

        # Report configuration
        self.output_dir = str(output_dir)
        self.supported_formats = ['excel', 'csv', 'pdf']

        # Ensure output directory exists
        os.makedirs(self.output_dir, exist_ok=True)

        self.styles = getSampleStyleSheet()
        self.title_style = ParagraphStyle(
            'ReportTitle',
            parent=self.styles['Heading1'],
            fontSize=16,
            spaceAfter=4,
            alignment=1  # Center alignment
        )
        self.subtitle_style = ParagraphStyle(
            'ReportSubtitle',
            parent=self.styles['Normal'],
            fontSize=9,
            alignment=1,
            textColor=colors.HexColor('#4B5563')
        )

    # Attendance

    def generate_attendance_sheet(self, class_id: int, year: int, month: int) -> Dict[str, Any]:
        """
        Generate the monthly attendance register of a class as PDF.

        Args:
            class_id (int): Class row ID
            year (int): Calendar year
            month (int): Calendar month (1-12)

        Returns:
            Dict[str, Any]: Generation result with the PDF bytes in 'content'
        """
        try:
            if not 1 <= int(month) <= 12:
                return {'success': False, 'error': 'Month must be between 1 and 12'}

            grid = self.attendance.get_class_attendance_month(class_id, int(year), int(month))
            if not grid.get('class_name'):
                return {'success': False, 'error': 'Class not found'}

            class_label = grid['class_name'] + (f" - {grid['section']}" if grid.get('section') else '')
            month_label = date(int(year), int(month), 1).strftime('%B %Y')

            day_headers = [str(int(day[-2:])) for day in grid['days']]
            table_data = [['#', 'Roll', 'Student Name', 'Father Name'] + day_headers + ['P', 'A', 'L', 'E', '%']]

            for index, student in enumerate(grid['students'], 1):
                symbols = [STATUS_SYMBOLS.get(student['attendance'].get(day), '') for day in grid['days']]
                counts = {symbol: symbols.count(symbol) for symbol in ('P', 'A', 'L', 'E')}
                marked = sum(counts.values())
                rate = round((counts['P'] + counts['L']) / marked * 100) if marked else 0

                table_data.append(
                    [str(index), str(student.get('roll_number') or '-'),
                     (student['student_name'] or '')[:22], (student.get('father_name') or '-')[:18]]
                    + symbols
                    + [str(counts['P']), str(counts['A']), str(counts['L']), str(counts['E']), f"{rate}%"]
                )

            buffer = io.BytesIO()
            doc = SimpleDocTemplate(buffer, pagesize=landscape(A4), leftMargin=8 * mm, rightMargin=8 * mm,
                                    topMargin=10 * mm, bottomMargin=10 * mm,
                                    title=f"Attendance {class_label} {month_label}")
            elements = [
                Paragraph(escape(self.school.get('name', '')), self.title_style),
                Paragraph(escape(self.school.get('address', '')), self.subtitle_style),
                Spacer(1, 6),
                Paragraph(escape(f"ATTENDANCE REGISTER: {class_label}, {month_label}"), self.styles['Heading3']),
                Spacer(1, 4)
            ]

            day_count = len(day_headers)
            col_widths = [7 * mm, 10 * mm, 34 * mm, 24 * mm] + [5.2 * mm] * day_count + [7 * mm] * 4 + [10 * mm]
            sheet = Table(table_data, colWidths=col_widths, repeatRows=1)

            style = [
                ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 6.5),
                ('ALIGN', (4, 0), (-1, -1), 'CENTER'),
                ('GRID', (0, 0), (-1, -1), 0.25, colors.grey),
                ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F3F4F6')]),
                ('TOPPADDING', (0, 0), (-1, -1), 2),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 2)
            ]
            for row_index, row in enumerate(table_data[1:], 1):
                for col_index in range(4, 4 + day_count):
                    symbol = row[col_index]
                    if symbol:
                        style.append(('TEXTCOLOR', (col_index, row_index), (col_index, row_index),
                                      SYMBOL_COLORS[symbol]))
            sheet.setStyle(TableStyle(style))
            elements.append(sheet)

            elements.append(Spacer(1, 8))
            legend = '   '.join(f"{symbol} = {status.title()}" for status, symbol in STATUS_SYMBOLS.items())
            elements.append(Paragraph(f"{legend}   |   Total Students: {len(grid['students'])}",
                                      self.styles['Normal']))

            doc.build(elements)
            content = buffer.getvalue()

            filename = f"attendance_{class_id}_{int(year)}_{int(month):02d}.pdf"
            self.logger.info(f"Attendance sheet generated: {filename}")

            return {
                'success': True,
                'filename': filename,
                'format': 'pdf',
                'content': content,
                'size': len(content)
            }

        except Exception as e:
            self.logger.error(f"Attendance sheet generation failed: {str(e)}")
            return {'success': False, 'error': str(e)}

    # Fees

    def generate_fee_report(self, output_format: str = 'excel', status: Optional[str] = None,
                            class_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Export the fee collection report.

        Args:
            output_format (str): excel, csv or pdf
            status (str): Only fees with this status
            class_id (int): Only students of this class

        Returns:
            Dict[str, Any]: Report generation result
        """
        try:
            if output_format not in self.supported_formats:
                return {
                    'success': False,
                    'error': f'Unsupported output format: {output_format}'
                }

            records = self.fee_ledger.get_fee_report_rows(status=status, class_id=class_id)
            if not records:
                return {
                    'success': False,
                    'error': 'No data found for the specified criteria'
                }

            data = {
                'records': records,
                'statistics': self._fee_summary(records),
                'filters': {'status': status, 'class_id': class_id}
            }

            if output_format == 'excel':
                result = self._generate_excel_report(data)
            elif output_format == 'csv':
                result = self._generate_csv_report(data)
            else:
                result = self._generate_pdf_report(data)

            if result['success']:
                self.logger.info(f"Report generated successfully: {result['filename']}")

            return result

        except Exception as e:
            self.logger.error(f"Report generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }

    def _fee_summary(self, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        frame = pd.DataFrame(records)
        status_counts = frame['Status'].value_counts()
        return {
            'Total Fees': len(frame),
            'Total Billed': round(float(frame['Final Amount'].sum()), 2),
            'Total Collected': round(float(frame['Paid'].sum()), 2),
            'Total Outstanding': round(float(frame['Balance'].sum()), 2),
            'Paid': int(status_counts.get('paid', 0)),
            'Partial': int(status_counts.get('partial', 0)),
            'Pending': int(status_counts.get('pending', 0)),
            'Overdue': int(status_counts.get('overdue', 0))
        }

    def _report_filename(self, extension: str) -> str:
        return f"fee_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{extension}"

    def _generate_excel_report(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate Excel report from data.

        Args:
            data (Dict[str, Any]): Report data

        Returns:
            Dict[str, Any]: Excel generation result
        """
        try:
            filename = self._report_filename('xlsx')
            filepath = os.path.join(self.output_dir, filename)

            with pd.ExcelWriter(filepath, engine='openpyxl') as writer:
                pd.DataFrame(data['records']).to_excel(writer, sheet_name='Fees', index=False)

                stats = [{'Metric': key, 'Value': value} for key, value in data['statistics'].items()]
                pd.DataFrame(stats).to_excel(writer, sheet_name='Summary', index=False)

                filters_data = [{'Filter': k, 'Value': v} for k, v in data['filters'].items() if v]
                if filters_data:
                    pd.DataFrame(filters_data).to_excel(writer, sheet_name='Applied Filters', index=False)

            return {
                'success': True,
                'filename': filename,
                'filepath': filepath,
                'format': 'excel',
                'size': os.path.getsize(filepath)
            }

        except Exception as e:
            self.logger.error(f"Excel report generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }

    def _generate_csv_report(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            filename = self._report_filename('csv')
            filepath = os.path.join(self.output_dir, filename)

            pd.DataFrame(data['records']).to_csv(filepath, index=False, encoding='utf-8')

            return {
                'success': True,
                'filename': filename,
                'filepath': filepath,
                'format': 'csv',
                'size': os.path.getsize(filepath)
            }

        except Exception as e:
            self.logger.error(f"CSV report generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }

    def _generate_pdf_report(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate PDF fee collection report.

        Args:
            data (Dict[str, Any]): Report data

        Returns:
            Dict[str, Any]: PDF generation result
        """
        try:
            filename = self._report_filename('pdf')
            filepath = os.path.join(self.output_dir, filename)

            doc = SimpleDocTemplate(filepath, pagesize=landscape(A4), leftMargin=10 * mm,
                                    rightMargin=10 * mm, title='Fee Collection Report')
            elements = [
                Paragraph(escape(self.school.get('name', '')), self.title_style),
                Paragraph(escape(self.school.get('address', '')), self.subtitle_style),
                Paragraph(escape(f"Phone: {self.school.get('phone', '')}"), self.subtitle_style),
                Spacer(1, 8),
                Paragraph('FEE COLLECTION REPORT', self.styles['Heading2']),
                Paragraph(f"Report Date: {date.today().strftime('%d %b %Y')}", self.styles['Normal']),
                Spacer(1, 8)
            ]

            stats = data['statistics']
            money = lambda value: f"{self.currency_code} {value:,.0f}"
            stats_table = Table([
                ['Total Billed', 'Collected', 'Outstanding', 'Paid / Partial / Pending / Overdue'],
                [money(stats['Total Billed']), money(stats['Total Collected']),
                 money(stats['Total Outstanding']),
                 f"{stats['Paid']} / {stats['Partial']} / {stats['Pending']} / {stats['Overdue']}"]
            ])
            stats_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
                ('FONTSIZE', (0, 0), (-1, -1), 10),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
                ('GRID', (0, 0), (-1, -1), 1, colors.black)
            ]))
            elements.append(stats_table)
            elements.append(Spacer(1, 12))

            columns = ['Student ID', 'Student Name', 'Class', 'Fee', 'Final Amount',
                       'Paid', 'Balance', 'Due Date', 'Status']
            table_data = [['#'] + columns]
            for index, record in enumerate(data['records'], 1):
                row = [str(index)]
                for column in columns:
                    value = record.get(column, '')
                    if column in ('Final Amount', 'Paid', 'Balance'):
                        value = f"{float(value or 0):,.0f}"
                    elif column == 'Status':
                        value = str(value).upper()
                    row.append(str(value)[:28])
                table_data.append(row)

            data_table = Table(table_data, repeatRows=1)
            data_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
                ('ALIGN', (5, 1), (7, -1), 'RIGHT'),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 8),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
                ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F3F4F6')]),
                ('GRID', (0, 0), (-1, -1), 0.5, colors.grey)
            ]))
            elements.append(data_table)

            elements.append(Spacer(1, 12))
            elements.append(Paragraph('This is a computer-generated report.', self.subtitle_style))

            doc.build(elements)

            return {
                'success': True,
                'filename': filename,
                'filepath': filepath,
                'format': 'pdf',
                'size': os.path.getsize(filepath)
            }

        except Exception as e:
            self.logger.error(f"PDF report generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }

