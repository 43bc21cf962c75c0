from __future__ import annotations

import os

import pandas as pd
import pytest

from school_portal.modules.report_generator import ReportGenerator


@pytest.fixture
def reports(tmp_path, attendance, ledger):
    return ReportGenerator(attendance, ledger, {'name': 'Test School', 'address': 'Main Road'},
                           output_dir=tmp_path / 'reports')


def test_attendance_sheet_pdf(reports, attendance, school):
    attendance.mark_attendance(school['student']['id'], 'present', attendance_date='2030-03-04')
    attendance.mark_attendance(school['student']['id'], 'absent', attendance_date='2030-03-05')

    result = reports.generate_attendance_sheet(school['class_id'], 2030, 3)

    assert result['success']
    assert result['filename'] == f"attendance_{school['class_id']}_2030_03.pdf"
    assert result['content'].startswith(b'%PDF')
    assert result['size'] == len(result['content'])


def test_attendance_sheet_rejects_bad_input(reports, school):
    assert reports.generate_attendance_sheet(school['class_id'], 2030, 13)['error'] == 'Month must be between 1 and 12'
    assert reports.generate_attendance_sheet(9999, 2030, 3)['error'] == 'Class not found'


def test_fee_report_excel(reports, ledger, assigned_fee):
    ledger.record_payment(assigned_fee['student_fee_id'], 2000)

    result = reports.generate_fee_report('excel', status='partial')

    assert result['success']
    assert os.path.exists(result['filepath'])
    frame = pd.read_excel(result['filepath'], sheet_name='Fees')
    assert list(frame['Balance']) == [2500]
    summary = pd.read_excel(result['filepath'], sheet_name='Summary')
    assert 'Total Outstanding' in list(summary['Metric'])


def test_fee_report_csv(reports, assigned_fee):
    result = reports.generate_fee_report('csv')

    frame = pd.read_csv(result['filepath'])
    assert list(frame['Student ID']) == ['STU-001']
    assert list(frame['Final Amount']) == [4500]


def test_fee_report_pdf(reports, assigned_fee):
    result = reports.generate_fee_report('pdf')

    assert result['success']
    with open(result['filepath'], 'rb') as handle:
        assert handle.read(4) == b'%PDF'


def test_fee_report_without_matches(reports, assigned_fee):
    result = reports.generate_fee_report('csv', status='paid')
    assert result == {'success': False, 'error': 'No data found for the specified criteria'}


def test_fee_report_unknown_format(reports, assigned_fee):
    assert not reports.generate_fee_report('docx')['success']
