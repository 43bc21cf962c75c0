"""
Document Generator Module - School Portal

This module renders the printable school documents. Each generator takes a
plain dictionary and returns the finished PDF as bytes; there is exactly one
fixed layout per document type.

Features:
- Fee payment receipts
- Student and teacher ID cards with QR codes
- Roll number slips
- Provisional marks certificates
"""

import io
import logging
from datetime import date, datetime
from typing import Dict, List, Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from school_portal.modules.qr_generator import QRGenerator

# CR80 card size
ID_CARD_SIZE = (85.6 * mm, 54 * mm)

BRAND_COLOR = colors.HexColor('#1A365D')
ACCENT_COLOR = colors.HexColor('#16A34A')
DANGER_COLOR = colors.HexColor('#DC2626')

_ONES = ['', 'One', 'Two', 'Three', 'Four', 'Five', 'Six', 'Seven', 'Eight', 'Nine', 'Ten',
         'Eleven', 'Twelve', 'Thirteen', 'Fourteen', 'Fifteen', 'Sixteen', 'Seventeen',
         'Eighteen', 'Nineteen']
_TENS = ['', '', 'Twenty', 'Thirty', 'Forty', 'Fifty', 'Sixty', 'Seventy', 'Eighty', 'Ninety']

GRADE_SCALE = [
    (90, 'A+'),
    (80, 'A'),
    (70, 'B'),
    (60, 'C'),
    (50, 'D'),
    (40, 'E'),
]


def number_to_words(number: int) -> str:
    """
    Spell out a whole number in English.

    Args:
        number (int): Value between 0 and 999,999

    Returns:
        str: e.g. 'Four Hundred Fifty Two'; larger values are returned as digits
    """
    number = int(number)
    if number < 0:
        return 'Minus ' + number_to_words(-number)
    if number == 0:
        return 'Zero'
    if number < 20:
        return _ONES[number]
    if number < 100:
        return _TENS[number // 10] + (' ' + _ONES[number % 10] if number % 10 else '')
    if number < 1000:
        rest = number % 100
        return _ONES[number // 100] + ' Hundred' + (' ' + number_to_words(rest) if rest else '')
    if number < 1000000:
        rest = number % 1000
        return number_to_words(number // 1000) + ' Thousand' + (' ' + number_to_words(rest) if rest else '')
    return str(number)


def ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(day % 10, 'th')
    return f"{day}{suffix}"


def date_to_words(value: Optional[str]) -> str:
    """'2010-03-05' -> '5th March 2010'; '-' when missing."""
    if not value:
        return '-'
    try:
        parsed = date.fromisoformat(str(value)[:10])
    except ValueError:
        return str(value)
    return f"{ordinal(parsed.day)} {parsed.strftime('%B')} {parsed.year}"


def grade_for_percentage(percentage: float) -> str:
    for threshold, grade in GRADE_SCALE:
        if percentage >= threshold:
            return grade
    return 'F'


def summarize_marks(subjects: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Total a marks sheet.

    Args:
        subjects (List[Dict]): Items of {'name', 'maxMarks', 'marksObtained'}

    Returns:
        Dict[str, Any]: total_max, total_obtained, percentage and grade
    """
    total_max = sum(float(subject.get('maxMarks') or 0) for subject in subjects)
    total_obtained = sum(float(subject.get('marksObtained') or 0) for subject in subjects)
    percentage = round(total_obtained / total_max * 100, 2) if total_max else 0.0
    return {
        'total_max': total_max,
        'total_obtained': total_obtained,
        'percentage': percentage,
        'grade': grade_for_percentage(percentage)
    }


def _number(value) -> str:
    value = float(value or 0)
    return str(int(value)) if value.is_integer() else f"{value:g}"


class DocumentGenerator:
    """
    PDF documents for the school office.
    """

    def __init__(self, school_info: Dict[str, str], currency_code: str = 'PKR',
                 qr_generator: QRGenerator = None):
        """
        Initialize the document generator.

        Args:
            school_info (Dict[str, str]): name, address, phone and email of the school
            currency_code (str): Prefix for amounts
            qr_generator (QRGenerator): Renders the ID card QR codes
        """
        self.school = school_info
        self.currency_code = currency_code
        self.qr_generator = qr_generator or QRGenerator()
        self.logger = logging.getLogger(__name__)

        self.styles = getSampleStyleSheet()
        self.styles.add(ParagraphStyle(
            'SchoolTitle',
            parent=self.styles['Heading1'],
            fontSize=18,
            textColor=BRAND_COLOR,
            alignment=1,  # Center alignment
            spaceAfter=2
        ))
        self.styles.add(ParagraphStyle(
            'Centered',
            parent=self.styles['Normal'],
            alignment=1,
            fontSize=9,
            textColor=colors.HexColor('#4B5563')
        ))
        self.styles.add(ParagraphStyle(
            'DocTitle',
            parent=self.styles['Heading2'],
            alignment=1,
            spaceBefore=10,
            spaceAfter=10
        ))

    def money(self, amount) -> str:
        return f"{self.currency_code} {float(amount or 0):,.2f}"

    # Payment receipt

    def generate_receipt(self, data: Dict[str, Any]) -> bytes:
        """
        Render a fee payment receipt.

        Args:
            data (Dict[str, Any]): Receipt fields as returned by
                FeeLedger.get_receipt_data

        Returns:
            bytes: PDF document
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Receipt {data['receipt_number']}",
                                topMargin=15 * mm, bottomMargin=15 * mm)
        elements = self._school_header()
        elements.append(self._p('PAYMENT RECEIPT', 'DocTitle'))

        info_table = Table([
            ['Receipt No:', data['receipt_number'], 'Date:', self._format_date(data.get('payment_date'))]
        ], colWidths=[28 * mm, 62 * mm, 20 * mm, 60 * mm])
        info_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, 0), 'Helvetica-Bold'),
            ('FONTNAME', (2, 0), (2, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 8)
        ]))
        elements.append(info_table)
        elements.append(Spacer(1, 8))

        class_name = data.get('class_name') or '-'
        if data.get('section'):
            class_name = f"{class_name} - {data['section']}"

        elements.append(self._p('<b>RECEIVED FROM</b>', 'Normal', raw=True))
        received_table = Table([
            ['Student Name:', data['student_name']],
            ['Student ID:', data['student_id']],
            ['Class:', class_name]
        ], colWidths=[35 * mm, 135 * mm])
        received_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#F3F4F6')),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6)
        ]))
        elements.append(received_table)
        elements.append(Spacer(1, 12))

        payment_table = Table([
            ['Description', 'Fee Type', 'Payment Method', 'Amount Paid'],
            [data['fee_name'], (data.get('fee_type') or '-').title(),
             (data.get('payment_method') or 'cash').replace('_', ' ').title(),
             self.money(data['amount_paid'])]
        ], colWidths=[65 * mm, 30 * mm, 35 * mm, 40 * mm])
        payment_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), BRAND_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (-1, 0), (-1, -1), 'RIGHT'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey)
        ]))
        elements.append(payment_table)
        elements.append(Spacer(1, 12))

        balance = float(data.get('balance') or 0)
        summary_rows = [
            ['Total Fee Amount:', self.money(data['total_amount'])],
            ['Previously Paid:', self.money(data.get('previously_paid'))],
            ['This Payment:', self.money(data['amount_paid'])],
            ['FULLY PAID', ''] if balance <= 0 else ['Balance Due:', self.money(balance)]
        ]
        summary_table = Table(summary_rows, colWidths=[50 * mm, 40 * mm], hAlign='RIGHT')
        summary_table.setStyle(TableStyle([
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('BOX', (0, 0), (-1, -1), 1, BRAND_COLOR),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('TEXTCOLOR', (0, -1), (-1, -1), ACCENT_COLOR if balance <= 0 else DANGER_COLOR),
            ('LINEABOVE', (0, -1), (-1, -1), 0.5, colors.grey),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6)
        ]))
        elements.append(summary_table)

        if data.get('transaction_id'):
            elements.append(Spacer(1, 8))
            elements.append(self._p(f"Transaction ID: {data['transaction_id']}", 'Normal'))
        if data.get('remarks'):
            elements.append(self._p(f"Remarks: {data['remarks']}", 'Normal'))

        elements.append(Spacer(1, 30))
        elements.append(self._p('This is a computer-generated receipt and does not require a signature.',
                                'Centered'))
        elements.append(self._p(f"Thank you for your payment. {self.school.get('name', '')}", 'Centered'))

        doc.build(elements)
        self.logger.info(f"Receipt PDF generated: {data['receipt_number']}")
        return buffer.getvalue()

    # ID cards

    def generate_student_card(self, data: Dict[str, Any]) -> bytes:
        """
        Render a student ID card with a QR code of the student ID.

        Args:
            data (Dict[str, Any]): studentId, studentName, fatherName, className,
                section, bloodGroup, phone, address, dateOfBirth, validUntil

        Returns:
            bytes: Single-page PDF at ID card size
        """
        class_name = data.get('className') or '-'
        if data.get('section'):
            class_name = f"{class_name} - {data['section']}"

        fields = [
            ('Name', data['studentName']),
            ('Father', data.get('fatherName')),
            ('Class', class_name),
            ('DOB', self._format_date(data.get('dateOfBirth')) if data.get('dateOfBirth') else None),
            ('Blood', data.get('bloodGroup')),
            ('Phone', data.get('phone')),
        ]
        return self._render_card('STUDENT IDENTITY CARD', data['studentId'], 'ID', fields,
                                 data.get('validUntil'), data.get('address'))

    def generate_teacher_card(self, data: Dict[str, Any]) -> bytes:
        """
        Render a staff ID card with a QR code of the employee ID.

        Args:
            data (Dict[str, Any]): employeeId, teacherName, designation,
                department, phone, bloodGroup, validUntil

        Returns:
            bytes: Single-page PDF at ID card size
        """
        fields = [
            ('Name', data['teacherName']),
            ('Post', data.get('designation')),
            ('Dept', data.get('department')),
            ('Blood', data.get('bloodGroup')),
            ('Phone', data.get('phone')),
        ]
        return self._render_card('STAFF IDENTITY CARD', data['employeeId'], 'Emp ID', fields,
                                 data.get('validUntil'), data.get('address'))

    def _render_card(self, title: str, identifier: str, id_label: str, fields, valid_until,
                     address: Optional[str]) -> bytes:
        buffer = io.BytesIO()
        width, height = ID_CARD_SIZE
        pdf = canvas.Canvas(buffer, pagesize=ID_CARD_SIZE)
        pdf.setTitle(f"{title.title()} {identifier}")

        # Header band
        pdf.setFillColor(BRAND_COLOR)
        pdf.rect(0, height - 12 * mm, width, 12 * mm, stroke=0, fill=1)
        pdf.setFillColor(colors.white)
        pdf.setFont('Helvetica-Bold', 7.5)
        pdf.drawCentredString(width / 2, height - 5.5 * mm, self.school.get('name', '')[:48])
        pdf.setFont('Helvetica', 6)
        pdf.drawCentredString(width / 2, height - 9.5 * mm, title)

        # QR code of the identifier
        qr_size = 22 * mm
        qr_png = self.qr_generator.generate_qr_png(identifier)
        pdf.drawImage(ImageReader(io.BytesIO(qr_png)), width - qr_size - 3 * mm,
                      height - 14 * mm - qr_size, qr_size, qr_size)
        pdf.setFillColor(colors.black)
        pdf.setFont('Helvetica-Bold', 6.5)
        pdf.drawCentredString(width - qr_size / 2 - 3 * mm, height - 17 * mm - qr_size,
                              f"{id_label}: {identifier}")

        y = height - 17 * mm
        for label, value in fields:
            if not value:
                continue
            pdf.setFont('Helvetica-Bold', 6.5)
            pdf.drawString(4 * mm, y, f"{label}:")
            pdf.setFont('Helvetica', 6.5)
            pdf.drawString(15 * mm, y, str(value)[:30])
            y -= 4 * mm

        if address:
            pdf.setFont('Helvetica', 5.5)
            pdf.drawString(4 * mm, y, str(address)[:55])

        # Footer band
        pdf.setFillColor(BRAND_COLOR)
        pdf.rect(0, 0, width, 5 * mm, stroke=0, fill=1)
        pdf.setFillColor(colors.white)
        pdf.setFont('Helvetica', 5.5)
        footer = f"Valid until: {self._format_date(valid_until)}" if valid_until else self.school.get('phone', '')
        pdf.drawCentredString(width / 2, 1.7 * mm, footer)

        pdf.showPage()
        pdf.save()
        self.logger.info(f"ID card PDF generated for {identifier}")
        return buffer.getvalue()

    # Exams

    def generate_roll_number_slip(self, data: Dict[str, Any]) -> bytes:
        """
        Render an examination roll number slip.

        Args:
            data (Dict[str, Any]): studentName, studentId, fatherName, className,
                section, rollNumber, examName, examDate, subjects [{name, date, time}]

        Returns:
            bytes: PDF document
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Roll Number Slip {data['studentId']}",
                                topMargin=15 * mm, bottomMargin=15 * mm)
        elements = self._school_header()
        elements.append(self._p(f"ROLL NUMBER SLIP: {data['examName']}", 'DocTitle'))

        class_name = data.get('className') or '-'
        if data.get('section'):
            class_name = f"{class_name} - {data['section']}"

        details_table = Table([
            ['Roll Number:', data.get('rollNumber') or data['studentId'], 'Student ID:', data['studentId']],
            ['Student Name:', data['studentName'], 'Father Name:', data.get('fatherName') or '-'],
            ['Class:', class_name, 'Exam Date:', self._format_date(data.get('examDate'))
             if data.get('examDate') else '-']
        ], colWidths=[30 * mm, 55 * mm, 28 * mm, 57 * mm])
        details_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTNAME', (2, 0), (2, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 8)
        ]))
        elements.append(details_table)
        elements.append(Spacer(1, 14))

        subjects = data.get('subjects') or []
        if subjects:
            schedule = [['#', 'Subject', 'Date', 'Time']]
            for index, subject in enumerate(subjects, 1):
                schedule.append([
                    str(index),
                    subject.get('name', '-'),
                    self._format_date(subject.get('date')) if subject.get('date') else '-',
                    subject.get('time') or '-'
                ])
            schedule_table = Table(schedule, colWidths=[10 * mm, 70 * mm, 45 * mm, 45 * mm])
            schedule_table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), BRAND_COLOR),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 10),
                ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
                ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F3F4F6')]),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 6)
            ]))
            elements.append(schedule_table)

        elements.append(Spacer(1, 16))
        for rule in (
            'Bring this slip to every paper; candidates without it will not be admitted.',
            'Reach the examination hall 15 minutes before the paper starts.',
            'Mobile phones and electronic devices are not allowed in the hall.'
        ):
            elements.append(self._p(f"• {rule}", 'Normal'))

        elements.append(Spacer(1, 36))
        elements.append(self._signature_row('Class Teacher', 'Controller of Examination'))

        doc.build(elements)
        self.logger.info(f"Roll number slip generated for {data['studentId']}")
        return buffer.getvalue()

    def generate_marks_certificate(self, data: Dict[str, Any]) -> bytes:
        """
        Render a provisional and detailed marks certificate.

        Args:
            data (Dict[str, Any]): studentName, fatherName, studentId, rollNumber,
                className, section, session, dateOfBirth, examName, resultDate,
                preparedBy, subjects [{name, maxMarks, marksObtained}]

        Returns:
            bytes: PDF document
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Marks Certificate {data['studentId']}",
                                topMargin=15 * mm, bottomMargin=15 * mm)
        elements = self._school_header()
        elements.append(self._p('PROVISIONAL AND DETAILED MARKS CERTIFICATE', 'DocTitle'))

        class_name = data.get('className') or '-'
        if data.get('section'):
            class_name = f"{class_name} - {data['section']}"

        certificate_text = (
            f"This is to certify that <b>{escape(data['studentName'])}</b>"
            + (f" son/daughter of <b>{escape(data['fatherName'])}</b>" if data.get('fatherName') else '')
            + f", Roll No. <b>{escape(str(data.get('rollNumber') or data['studentId']))}</b>, of class "
            f"<b>{escape(class_name)}</b> has obtained the following marks in the "
            f"<b>{escape(data['examName'])}</b> held in session {escape(str(data.get('session') or '-'))}."
        )
        elements.append(self._p(certificate_text, 'Normal', raw=True))
        elements.append(Spacer(1, 10))

        subjects = data.get('subjects') or []
        summary = summarize_marks(subjects)

        marks = [['#', 'Subject', 'Max Marks', 'Marks Obtained', 'In Words']]
        for index, subject in enumerate(subjects, 1):
            obtained = subject.get('marksObtained') or 0
            marks.append([
                str(index),
                subject.get('name', '-'),
                _number(subject.get('maxMarks')),
                _number(obtained),
                number_to_words(round(float(obtained)))
            ])
        marks.append(['', 'TOTAL', _number(summary['total_max']), _number(summary['total_obtained']),
                      number_to_words(round(summary['total_obtained']))])

        marks_table = Table(marks, colWidths=[10 * mm, 55 * mm, 25 * mm, 30 * mm, 55 * mm])
        marks_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), BRAND_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('BACKGROUND', (0, -1), (-1, -1), colors.HexColor('#E5E7EB')),
            ('ALIGN', (2, 0), (3, -1), 'CENTER'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6)
        ]))
        elements.append(marks_table)
        elements.append(Spacer(1, 10))

        result_table = Table([
            ['Percentage:', f"{summary['percentage']:.2f}%", 'Grade:', summary['grade']],
            ['Date of Birth (In Figures):', data.get('dateOfBirth') or '-', '', ''],
            ['(In Words):', date_to_words(data.get('dateOfBirth')), '', '']
        ], colWidths=[45 * mm, 70 * mm, 20 * mm, 40 * mm])
        result_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTNAME', (2, 0), (2, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6)
        ]))
        elements.append(result_table)
        elements.append(Spacer(1, 20))

        today = datetime.now().strftime('%d %b %Y').upper()
        elements.append(self._p(f"Prepared and Checked by: {data.get('preparedBy') or 'SCHOOL ADMINISTRATION'}",
                                'Normal'))
        elements.append(self._p(f"Date Prepared: {today}", 'Normal'))
        elements.append(self._p(f"Result Declaration Date: {data.get('resultDate') or today}", 'Normal'))
        elements.append(Spacer(1, 30))
        elements.append(self._signature_row('Principal', 'Controller of Examination'))

        doc.build(elements)
        self.logger.info(f"Marks certificate generated for {data['studentId']}")
        return buffer.getvalue()

    # Shared pieces

    def _school_header(self) -> list:
        contact = ' | '.join(filter(None, [self.school.get('phone'), self.school.get('email')]))
        return [
            self._p(self.school.get('name', ''), 'SchoolTitle'),
            self._p(self.school.get('address', ''), 'Centered'),
            self._p(contact, 'Centered'),
            Spacer(1, 6)
        ]

    def _signature_row(self, left: str, right: str) -> Table:
        table = Table([['________________________', '________________________'], [left, right]],
                      colWidths=[85 * mm, 85 * mm])
        table.setStyle(TableStyle([
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTSIZE', (0, 0), (-1, -1), 9)
        ]))
        return table

    def _p(self, text: str, style: str, raw: bool = False) -> Paragraph:
        return Paragraph(text if raw else escape(str(text)), self.styles[style])

    @staticmethod
    def _format_date(value) -> str:
        if not value:
            return datetime.now().strftime('%d %b %Y')
        try:
            return date.fromisoformat(str(value)[:10]).strftime('%d %b %Y')
        except ValueError:
            return str(value)
