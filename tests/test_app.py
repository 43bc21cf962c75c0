from __future__ import annotations

from datetime import time

import pytest


def login(client, username, password):
    return client.post('/login', json={'username': username, 'password': password})


@pytest.fixture
def admin(client, seeded_portal):
    assert login(client, 'admin', 'admin123').status_code == 200
    return client


def _create_fee(client, student_pk, amount=5000, discount=500, due_date='2030-03-10'):
    structure = client.post('/api/fees/structures', json={
        'name': 'Tuition Fee - March', 'amount': amount, 'due_date': due_date
    }).get_json()
    return client.post('/api/fees/assign', json={
        'student_id': student_pk, 'fee_structure_id': structure['fee_structure_id'], 'discount': discount
    })


def test_login_requires_credentials(client):
    assert client.post('/login', json={'username': 'admin'}).status_code == 400
    assert login(client, 'admin', 'wrong').status_code == 401

    response = login(client, 'admin', 'admin123')
    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'admin'


def test_protected_routes_need_login(client):
    assert client.get('/api/me').status_code == 401
    assert client.post('/api/attendance/scan', json={'qr_code': 'STU-001'}).status_code == 401


def test_logout_clears_session(admin):
    assert admin.post('/logout').status_code == 200
    assert admin.get('/api/me').status_code == 401


def test_deactivated_account_is_rejected_on_next_request(client, seeded_portal, portal):
    login(client, 'STU-002', 'student123')
    assert client.get('/api/me').status_code == 200

    portal['auth_manager'].deactivate_user(seeded_portal['other']['user_id'])
    assert client.get('/api/me').status_code == 401


def test_scan_records_then_reports_already_marked(admin, portal):
    first = admin.post('/api/attendance/scan', json={'qr_code': 'STU-001'})
    assert first.status_code == 200
    assert first.get_json()['status'] in ('present', 'late')

    suppressed = admin.post('/api/attendance/scan', json={'qr_code': 'STU-001'}).get_json()
    assert suppressed['status'] == 'suppressed'

    portal['scan_debouncer'].reset()
    repeat = admin.post('/api/attendance/scan', json={'qr_code': '{"student_id": "STU-001"}'})
    assert repeat.status_code == 200
    assert repeat.get_json()['status'] == 'already_marked'

    rows = portal['db_manager'].execute_query("SELECT * FROM attendance")
    assert len(rows) == 1


def test_scan_errors(admin):
    assert admin.post('/api/attendance/scan', json={}).status_code == 400
    assert admin.post('/api/attendance/scan', json={'qr_code': 'UNKNOWN-1'}).status_code == 404
    assert admin.post('/api/attendance/scan', json={'qr_code': 12345}).status_code == 404


def test_teacher_scan_is_check_in(admin):
    result = admin.post('/api/attendance/scan', json={'qr_code': 'EMP-01'}).get_json()
    assert result['user_type'] == 'teacher'


def test_students_cannot_scan(client, seeded_portal):
    login(client, 'STU-001', 'student123')
    assert client.post('/api/attendance/scan', json={'qr_code': 'STU-002'}).status_code == 403


def test_manual_mark_and_edit(admin, seeded_portal):
    student_pk = seeded_portal['student']['id']

    created = admin.post('/api/attendance/mark', json={
        'student_id': student_pk, 'status': 'absent', 'date': '2030-03-04'
    })
    assert created.status_code == 201

    duplicate = admin.post('/api/attendance/mark', json={
        'student_id': student_pk, 'status': 'present', 'date': '2030-03-04'
    })
    assert duplicate.status_code == 409

    attendance_id = created.get_json()['attendance']['id']
    assert admin.put(f'/api/attendance/{attendance_id}', json={'status': 'excused'}).status_code == 200

    summary = admin.get('/api/attendance/summary?date=2030-03-04').get_json()['summary']
    assert summary['excused'] == 1


def test_class_register_endpoint(admin, seeded_portal):
    response = admin.post('/api/attendance/mark', json={
        'class_id': seeded_portal['class_id'], 'date': '2030-03-04',
        'entries': [
            {'student_id': seeded_portal['student']['id'], 'status': 'present'},
            {'student_id': seeded_portal['other']['id'], 'status': 'absent'},
        ]
    })
    assert response.status_code == 200
    assert response.get_json()['marked'] == 2


def test_fee_assignment_and_payment_flow(admin, seeded_portal, email_sender, sms_sender):
    student_pk = seeded_portal['student']['id']

    assigned = _create_fee(admin, student_pk)
    assert assigned.status_code == 201
    fee = assigned.get_json()
    assert fee['final_amount'] == 4500
    assert email_sender.sent[-1]['recipients'] == ['imran@example.com']

    fee_id = fee['student_fee_id']
    partial = admin.post(f'/api/fees/{fee_id}/payments', json={'amount': 2000, 'payment_method': 'cash'})
    assert partial.status_code == 201
    assert partial.get_json()['status'] == 'partial'
    assert partial.get_json()['balance'] == 2500
    assert 'Receipt' in sms_sender.sent[-1]['body']

    over = admin.post(f'/api/fees/{fee_id}/payments', json={'amount': 3000})
    assert over.status_code == 400

    paid = admin.post(f'/api/fees/{fee_id}/payments', json={'amount': 2500}).get_json()
    assert paid['status'] == 'paid'

    detail = admin.get(f'/api/fees/{fee_id}').get_json()
    assert detail['fee']['balance'] == 0
    assert len(detail['payments']) == 2

    receipt = admin.get(f"/api/documents/receipt/{paid['payment_id']}")
    assert receipt.status_code == 200
    assert receipt.mimetype == 'application/pdf'
    assert receipt.data.startswith(b'%PDF')


def test_payment_on_unknown_fee(admin):
    assert admin.post('/api/fees/9999/payments', json={'amount': 100}).status_code == 404


def test_parent_sees_only_linked_child(client, seeded_portal, portal):
    fee = portal['fee_ledger']
    structure = fee.create_fee_structure('Tuition', 1000, due_date='2030-03-10')
    own = fee.assign_fee(seeded_portal['student']['id'], structure['fee_structure_id'])
    other = fee.assign_fee(seeded_portal['other']['id'], structure['fee_structure_id'])

    login(client, 'imran', 'parent123')

    assert client.get(f"/api/fees/{own['student_fee_id']}").status_code == 200
    assert client.get(f"/api/fees/{other['student_fee_id']}").status_code == 403
    assert client.get(f"/api/students/{seeded_portal['other']['id']}/attendance").status_code == 403
    assert client.get(f"/api/students/{seeded_portal['student']['id']}/fees").status_code == 200
    assert client.post('/api/fees/structures', json={'name': 'X', 'amount': 1}).status_code == 403


def test_parent_updates_sms_preference(client, seeded_portal, portal):
    login(client, 'imran', 'parent123')

    response = client.put('/api/me/sms-preference', json={'enabled': False})
    assert response.status_code == 200
    user = portal['auth_manager'].get_user(seeded_portal['parent']['user_id'])
    assert user['sms_notifications_enabled'] == 0


def test_student_inbox(client, seeded_portal, portal):
    notification_id = portal['notification_system'].create_in_app_notification(
        seeded_portal['student']['user_id'], 'Fee due', 'Tuition due soon')

    login(client, 'STU-001', 'student123')
    inbox = client.get('/api/notifications?unread=1').get_json()['notifications']
    assert [item['id'] for item in inbox] == [notification_id]

    assert client.post(f'/api/notifications/{notification_id}/read').status_code == 200
    assert client.get('/api/notifications?unread=1').get_json()['notifications'] == []


def test_fee_notification_endpoint(admin, seeded_portal):
    bad = admin.post('/api/notifications/fee', json={'type': 'birthday'})
    assert bad.status_code == 400

    response = admin.post('/api/notifications/fee', json={
        'type': 'fee_assigned', 'studentId': seeded_portal['student']['id'],
        'feeDetails': {'feeName': 'Exam Fee', 'amount': 1200, 'dueDate': '2030-04-01'}
    })
    assert response.status_code == 200
    body = response.get_json()
    assert body['emailsSent'] == 1
    assert body['smsSent'] == 1


def test_absence_notification_endpoint(admin, seeded_portal, sms_sender):
    admin.post('/api/attendance/mark', json={
        'student_id': seeded_portal['student']['id'], 'status': 'absent', 'date': '2030-03-04'
    })

    body = admin.post('/api/notifications/attendance', json={'date': '2030-03-04'}).get_json()
    assert body['totalAbsent'] == 1
    assert body['smsSent'] == 1
    assert sms_sender.sent[-1]['channel'] == 'sms'


def test_documents(admin, seeded_portal):
    card = admin.get(f"/api/documents/id-card/{seeded_portal['student']['id']}")
    assert card.status_code == 200
    assert card.data.startswith(b'%PDF')

    assert admin.get('/api/documents/teacher-card/EMP-01').status_code == 200
    assert admin.get('/api/documents/teacher-card/EMP-99').status_code == 404
    assert admin.get('/api/documents/id-card/9999').status_code == 404

    slip = admin.post('/api/documents/roll-number-slip', json={
        'studentName': 'Ali Khan', 'studentId': 'STU-001', 'examName': 'Annual 2030'
    })
    assert slip.status_code == 200

    missing = admin.post('/api/documents/marks-certificate', json={
        'studentName': 'Ali Khan', 'studentId': 'STU-001', 'examName': 'Annual 2030'
    })
    assert missing.status_code == 400


def test_reports(admin, seeded_portal):
    sheet = admin.get(f"/api/reports/attendance/{seeded_portal['class_id']}?year=2030&month=3")
    assert sheet.status_code == 200
    assert sheet.data.startswith(b'%PDF')

    assert admin.get('/api/reports/attendance/9999?year=2030&month=3').status_code == 404
    assert admin.get('/api/reports/fees?format=csv').status_code == 400

    _create_fee(admin, seeded_portal['student']['id'])
    report = admin.get('/api/reports/fees?format=csv')
    assert report.status_code == 200
    assert b'STU-001' in report.data


def test_unknown_route_returns_json(client):
    response = client.get('/nope')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_attendance_settings_come_from_database_when_unset(portal):
    assert portal['attendance_manager'].late_cutoff == time(8, 30)
    assert portal['scan_debouncer'].window_seconds == 3.0


def test_attendance_settings_from_config(tmp_path):
    from app import create_app

    application = create_app(
        'testing',
        DATABASE_PATH=str(tmp_path / 'configured.db'),
        REPORTS_FOLDER=str(tmp_path / 'reports'),
        ATTENDANCE_LATE_CUTOFF='09:15',
        ATTENDANCE_SCAN_DEBOUNCE_SECONDS='1.5',
    )
    components = application.extensions['school_portal']
    try:
        assert components['attendance_manager'].late_cutoff == time(9, 15)
        assert components['scan_debouncer'].window_seconds == 1.5
    finally:
        components['db_manager'].close_all_connections()


def test_config_validation_flags_bad_attendance_values():
    from config import Config, validate_config

    class BadAttendanceConfig(Config):
        ATTENDANCE_LATE_CUTOFF = 'half past eight'
        ATTENDANCE_SCAN_DEBOUNCE_SECONDS = '-2'

    errors = validate_config(BadAttendanceConfig)
    assert "ATTENDANCE_LATE_CUTOFF must be a time like 08:30" in errors
    assert "ATTENDANCE_SCAN_DEBOUNCE_SECONDS must not be negative" in errors
