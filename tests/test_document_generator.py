from __future__ import annotations

import pytest

from school_portal.modules.document_generator import (
    DocumentGenerator,
    date_to_words,
    grade_for_percentage,
    number_to_words,
    summarize_marks,
)


SCHOOL = {'name': 'Green Valley School & College', 'address': 'Main Road, Lahore',
          'phone': '042-1234567', 'email': 'office@example.com'}


@pytest.fixture
def documents():
    return DocumentGenerator(SCHOOL)


@pytest.mark.parametrize('number, words', [
    (0, 'Zero'),
    (13, 'Thirteen'),
    (40, 'Forty'),
    (452, 'Four Hundred Fifty Two'),
    (2010, 'Two Thousand Ten'),
])
def test_number_to_words(number, words):
    assert number_to_words(number) == words


def test_date_to_words():
    assert date_to_words('2012-03-05') == '5th March 2012'
    assert date_to_words('2012-03-22') == '22nd March 2012'
    assert date_to_words('2012-03-13') == '13th March 2012'
    assert date_to_words(None) == '-'


@pytest.mark.parametrize('percentage, grade', [
    (95, 'A+'), (90, 'A+'), (89.99, 'A'), (70, 'B'), (60, 'C'), (50, 'D'), (40, 'E'), (39.5, 'F'),
])
def test_grade_scale(percentage, grade):
    assert grade_for_percentage(percentage) == grade


def test_summarize_marks():
    summary = summarize_marks([
        {'name': 'English', 'maxMarks': 100, 'marksObtained': 81},
        {'name': 'Urdu', 'maxMarks': 100, 'marksObtained': 74},
    ])
    assert summary['total_obtained'] == 155
    assert summary['percentage'] == 77.5
    assert summary['grade'] == 'B'


def test_summarize_marks_without_subjects():
    assert summarize_marks([])['grade'] == 'F'


def test_money_uses_currency_code(documents):
    assert documents.money(4500) == 'PKR 4,500.00'


def test_receipt_pdf(documents):
    pdf = documents.generate_receipt({
        'receipt_number': 'RCP-1718000000000-3F9A',
        'payment_date': '2030-03-05',
        'student_name': 'Ali Khan',
        'student_id': 'STU-001',
        'class_name': 'Class 5',
        'section': 'A',
        'fee_name': 'Tuition Fee - March',
        'fee_type': 'tuition',
        'payment_method': 'bank_transfer',
        'transaction_id': 'TX-1',
        'total_amount': 4500,
        'previously_paid': 2000,
        'amount_paid': 2500,
        'balance': 0,
    })
    assert pdf.startswith(b'%PDF')


def test_id_cards(documents):
    student_card = documents.generate_student_card({
        'studentId': 'STU-001', 'studentName': 'Ali Khan', 'fatherName': 'Imran Khan',
        'className': 'Class 5', 'section': 'A', 'dateOfBirth': '2012-03-05', 'bloodGroup': 'B+',
        'validUntil': '2031-03-31',
    })
    teacher_card = documents.generate_teacher_card({
        'employeeId': 'EMP-01', 'teacherName': 'Ayesha Malik', 'designation': 'Senior Teacher',
    })
    assert student_card.startswith(b'%PDF')
    assert teacher_card.startswith(b'%PDF')


def test_roll_number_slip(documents):
    pdf = documents.generate_roll_number_slip({
        'studentId': 'STU-001', 'studentName': 'Ali Khan', 'examName': 'Annual Exam 2030',
        'rollNumber': '1201', 'examDate': '2030-03-20',
        'subjects': [{'name': 'English', 'date': '2030-03-20', 'time': '09:00'}],
    })
    assert pdf.startswith(b'%PDF')


def test_marks_certificate(documents):
    pdf = documents.generate_marks_certificate({
        'studentId': 'STU-001', 'studentName': 'Ali Khan', 'fatherName': 'Imran Khan',
        'examName': 'Annual Exam 2030', 'session': '2029-2030', 'dateOfBirth': '2012-03-05',
        'subjects': [
            {'name': 'English', 'maxMarks': 100, 'marksObtained': 81},
            {'name': 'Mathematics', 'maxMarks': 100, 'marksObtained': 92},
        ],
    })
    assert pdf.startswith(b'%PDF')
