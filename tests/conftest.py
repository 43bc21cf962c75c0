from __future__ import annotations

import pytest

from school_portal.modules.database_manager import DatabaseManager
from school_portal.modules.qr_generator import QRGenerator
from school_portal.modules.auth_manager import AuthManager
from school_portal.modules.student_manager import StudentManager
from school_portal.modules.attendance_manager import AttendanceManager
from school_portal.modules.fee_ledger import FeeLedger
from school_portal.modules.notification_system import NotificationSystem


class FakeEmailSender:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    def send(self, recipients, subject, html):
        self.sent.append({'recipients': list(recipients), 'subject': subject, 'html': html})
        return self.succeed


class FakeSmsSender:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    def send(self, to, body, channel='sms'):
        self.sent.append({'to': to, 'body': body, 'channel': channel})
        return self.succeed


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'school.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def auth(db):
    return AuthManager(db)


@pytest.fixture
def students(db, auth):
    return StudentManager(db, auth, QRGenerator())


@pytest.fixture
def school(students):
    """One class with a student, a guardian with SMS enabled, a guardian without, and a teacher."""
    class_id = students.create_class('Class 5', 'A')['class_id']

    student = students.create_student({
        'student_id': 'STU-001',
        'full_name': 'Ali Khan',
        'password': 'student123',
        'class_id': class_id,
        'father_name': 'Imran Khan',
        'roll_number': '12',
        'date_of_birth': '2012-03-05',
    })

    father = students.create_parent({
        'username': 'imran',
        'password': 'parent123',
        'full_name': 'Imran Khan',
        'email': 'imran@example.com',
        'phone': '+923001234567',
        'sms_notifications_enabled': True,
    })
    mother = students.create_parent({
        'username': 'sara',
        'password': 'parent123',
        'full_name': 'Sara Khan',
        'email': 'sara@example.com',
        'phone': '+923007654321',
        'sms_notifications_enabled': False,
    })
    students.link_parent(student['id'], father['id'], 'father')
    students.link_parent(student['id'], mother['id'], 'mother')

    teacher = students.create_teacher({
        'employee_id': 'EMP-01',
        'full_name': 'Ayesha Malik',
        'password': 'teacher123',
        'designation': 'Senior Teacher',
    })

    return {
        'class_id': class_id,
        'student': student,
        'father': father,
        'mother': mother,
        'teacher': teacher,
    }


@pytest.fixture
def attendance(db, students):
    return AttendanceManager(db, students)


@pytest.fixture
def ledger(db):
    return FeeLedger(db)


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def sms_sender():
    return FakeSmsSender()


@pytest.fixture
def notifications(db, email_sender, sms_sender, ledger, attendance):
    return NotificationSystem(db, email_sender, sms_sender, fee_ledger=ledger,
                              attendance_manager=attendance, school_name='Test School',
                              async_enabled=False)


@pytest.fixture
def assigned_fee(ledger, school):
    structure = ledger.create_fee_structure('Tuition Fee - March', 5000, 'tuition', due_date='2030-03-10')
    return ledger.assign_fee(school['student']['id'], structure['fee_structure_id'], discount=500)


@pytest.fixture
def app(tmp_path, email_sender, sms_sender):
    from app import create_app

    application = create_app(
        'testing',
        email_sender=email_sender,
        sms_sender=sms_sender,
        DATABASE_PATH=str(tmp_path / 'app.db'),
        REPORTS_FOLDER=str(tmp_path / 'reports'),
    )
    yield application
    application.extensions['school_portal']['db_manager'].close_all_connections()


@pytest.fixture
def portal(app):
    return app.extensions['school_portal']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seeded_portal(portal):
    """Same people as the school fixture, created through the app's managers."""
    students = portal['student_manager']
    class_id = students.create_class('Class 5', 'A')['class_id']
    student = students.create_student({
        'student_id': 'STU-001', 'full_name': 'Ali Khan', 'password': 'student123',
        'class_id': class_id, 'father_name': 'Imran Khan',
    })
    parent = students.create_parent({
        'username': 'imran', 'password': 'parent123', 'full_name': 'Imran Khan',
        'email': 'imran@example.com', 'phone': '+923001234567', 'sms_notifications_enabled': True,
    })
    students.link_parent(student['id'], parent['id'], 'father')
    other = students.create_student({
        'student_id': 'STU-002', 'full_name': 'Bilal Ahmed', 'password': 'student123',
        'class_id': class_id,
    })
    teacher = students.create_teacher({
        'employee_id': 'EMP-01', 'full_name': 'Ayesha Malik', 'password': 'teacher123',
    })
    return {'class_id': class_id, 'student': student, 'parent': parent, 'other': other, 'teacher': teacher}

