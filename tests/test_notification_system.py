from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from school_portal.modules.notification_system import NotificationSystem, SmsSender, EmailSender


@dataclass
class FakeResponse:
    ok: bool = True
    status_code: int = 201
    text: str = ''


@dataclass
class FakeSession:
    response: FakeResponse = field(default_factory=FakeResponse)
    calls: list = field(default_factory=list)

    def post(self, url, data=None, auth=None, timeout=None):
        self.calls.append({'url': url, 'data': data, 'auth': auth, 'timeout': timeout})
        return self.response


def test_guardian_contacts_respect_sms_preference(notifications, school):
    contacts = notifications.get_guardian_contacts(school['student']['id'])

    assert sorted(contacts['emails']) == ['imran@example.com', 'sara@example.com']
    assert contacts['phones'] == [{'phone': '+923001234567', 'name': 'Imran Khan'}]
    assert len(contacts['user_ids']) == 2


def test_fee_assigned_notifies_all_channels(notifications, school, email_sender, sms_sender):
    result = notifications.notify_fee_event('fee_assigned', school['student']['id'], fee_details={
        'feeName': 'Tuition Fee - March', 'amount': 4500, 'dueDate': '2030-03-10'
    })

    assert result['success']
    assert result['emailsSent'] == 2
    assert result['smsSent'] == 1

    assert email_sender.sent[0]['subject'] == '\U0001F4B0 New Fee Assigned: Tuition Fee - March'
    assert 'PKR 4,500' in email_sender.sent[0]['html']
    assert sms_sender.sent[0]['body'] == ('New Fee: Tuition Fee - March of PKR 4,500 assigned to '
                                          'Ali Khan. Due: 10 Mar 2030')

    inbox = notifications.get_user_notifications(school['student']['user_id'])
    assert len(inbox) == 1
    assert inbox[0]['type'] == 'fee'
    assert inbox[0]['link'] == '/student/fees'


def test_payment_received_message(notifications, school, sms_sender):
    result = notifications.notify_fee_event('payment_received', school['student']['id'], payment_details={
        'amount': 2000, 'receiptNumber': 'RCP-1-ABCD', 'paymentMethod': 'cash'
    })

    assert result['success']
    assert sms_sender.sent[0]['body'] == ('Payment of PKR 2,000 received for Ali Khan. '
                                          'Receipt: RCP-1-ABCD. Thank you!')


def test_fee_event_requires_details_and_student(notifications, school):
    assert not notifications.notify_fee_event('fee_assigned', school['student']['id'])['success']
    assert not notifications.notify_fee_event('fee_assigned', 9999, fee_details={'feeName': 'X', 'amount': 1})['success']
    assert not notifications.notify_fee_event('absence', school['student']['id'], fee_details={})['success']


def test_failed_delivery_is_counted_not_raised(db, ledger, attendance, school, email_sender, sms_sender):
    email_sender.succeed = False
    sms_sender.succeed = False
    system = NotificationSystem(db, email_sender, sms_sender,
                                fee_ledger=ledger, attendance_manager=attendance, async_enabled=False)
    result = system.notify_fee_event('fee_assigned', school['student']['id'], fee_details={
        'feeName': 'Tuition', 'amount': 100, 'dueDate': '2030-03-10'
    })

    assert result['success']
    assert result['emailsSent'] == 0
    assert result['smsSent'] == 0


def test_disabled_system_sends_nothing(db, ledger, attendance, school, email_sender, sms_sender):
    system = NotificationSystem(db, email_sender, sms_sender, enabled=False, async_enabled=False)
    result = system.notify_fee_event('fee_assigned', school['student']['id'], fee_details={
        'feeName': 'Tuition', 'amount': 100, 'dueDate': '2030-03-10'
    })

    assert result['emailsSent'] == 0
    assert email_sender.sent == []
    assert sms_sender.sent == []


def test_payment_reminders_only_for_overdue_fees(notifications, ledger, school, sms_sender):
    student_pk = school['student']['id']
    overdue = ledger.create_fee_structure('Transport', 1000, 'transport', due_date='2030-03-01')
    due_today = ledger.create_fee_structure('Library', 300, 'library', due_date='2030-03-11')
    ledger.assign_fee(student_pk, overdue['fee_structure_id'])
    ledger.assign_fee(student_pk, due_today['fee_structure_id'])

    result = notifications.send_payment_reminders(today=date(2030, 3, 11))

    assert result['success']
    assert result['overdueCount'] == 1
    assert result['smsSent'] == 1
    assert 'is 10 days overdue' in sms_sender.sent[0]['body']


def test_overdue_alias_dispatches_reminders(notifications, school):
    result = notifications.dispatch({'type': 'overdue'})
    assert result['success']
    assert result['overdueCount'] == 0


def test_absence_alerts_use_configured_channel(db, ledger, attendance, school, email_sender, sms_sender):
    system = NotificationSystem(db, email_sender, sms_sender, fee_ledger=ledger,
                                attendance_manager=attendance, school_name='Test School',
                                absence_channel='whatsapp', async_enabled=False)
    attendance.mark_attendance(school['student']['id'], 'absent', attendance_date='2030-03-04')

    result = system.notify_absences('2030-03-04')

    assert result['totalAbsent'] == 1
    assert result['smsSent'] == 1
    assert sms_sender.sent[0]['channel'] == 'whatsapp'
    assert 'marked ABSENT on 04 Mar 2030. Class: Class 5 - A.' in sms_sender.sent[0]['body']
    assert email_sender.sent[0]['subject'] == 'Absence Notification - Ali Khan'


def test_no_absences(notifications, school):
    result = notifications.notify_absences('2030-03-04')
    assert result['totalAbsent'] == 0
    assert result['emailsSent'] == 0


def test_results_published_reaches_students_and_guardians(notifications, school):
    result = notifications.dispatch({'type': 'results_published', 'classId': school['class_id'],
                                     'examName': 'Mid Term 2030'})

    assert result['success']
    assert result['inAppNotifications'] == 3
    assert notifications.get_user_notifications(school['student']['user_id'])[0]['type'] == 'result'


def test_unknown_dispatch_type(notifications):
    assert not notifications.dispatch({'type': 'birthday'})['success']


def test_mark_notification_read_only_for_owner(notifications, school):
    user_id = school['student']['user_id']
    notification_id = notifications.create_in_app_notification(user_id, 'Hello', 'Body')

    assert not notifications.mark_notification_read(notification_id, user_id + 100)
    assert notifications.mark_notification_read(notification_id, user_id)
    assert notifications.get_user_notifications(user_id, unread_only=True) == []


def test_async_dispatch_runs_jobs(db, email_sender, sms_sender, school):
    system = NotificationSystem(db, email_sender, sms_sender, async_enabled=True)
    system.notify_async(system.notify_fee_event, 'fee_assigned', school['student']['id'],
                        fee_details={'feeName': 'Tuition', 'amount': 100, 'dueDate': '2030-03-10'})
    system.notification_queue.join()
    system.shutdown()

    assert len(email_sender.sent) == 1


def test_currency_and_date_formatting(notifications):
    assert notifications.format_currency(4500) == 'PKR 4,500'
    assert notifications.format_currency(None) == 'PKR 0'
    assert notifications.format_date('2030-03-10') == '10 Mar 2030'


def test_sms_sender_posts_to_twilio():
    session = FakeSession()
    sender = SmsSender('AC123', 'secret', '+15550000000', session=session)

    assert sender.send('+923001234567', 'Hello', channel='whatsapp')

    call = session.calls[0]
    assert call['url'] == 'https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json'
    assert call['auth'] == ('AC123', 'secret')
    assert call['data'] == {'To': 'whatsapp:+923001234567', 'From': 'whatsapp:+15550000000', 'Body': 'Hello'}


def test_sms_sender_reports_rejection_and_missing_credentials():
    rejected = SmsSender('AC123', 'secret', '+15550000000',
                         session=FakeSession(response=FakeResponse(ok=False, status_code=400)))
    assert not rejected.send('+923001234567', 'Hello')

    session = FakeSession()
    assert not SmsSender(session=session).send('+923001234567', 'Hello')
    assert session.calls == []


def test_email_sender_without_server_skips():
    sender = EmailSender(smtp_server=None)
    assert not sender.is_configured()
    assert not sender.send(['a@example.com'], 'Subject', '<p>Hi</p>')
