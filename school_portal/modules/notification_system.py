"""
Notification System Module - School Portal

This module tells guardians and students about attendance and fee events.
Each event is rendered from a fixed template and goes out by email (SMTP),
by SMS (Twilio) to guardians who opted in, and as an in-app notification
row. Delivery never blocks or undoes the database write that triggered it:
every failure is caught, logged and reported as a count.

Features:
- Guardian contact resolution through parent links
- Email delivery over SMTP with HTML templates
- SMS / WhatsApp delivery through the Twilio REST API
- Fee, payment, reminder, absence and results templates
- In-app notification rows
- Background dispatch queue
"""

import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from datetime import datetime, date
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, field
from queue import Queue
import logging
import threading

import requests
from jinja2 import Template

EVENT_ABSENCE = 'absence'
EVENT_FEE_ASSIGNED = 'fee_assigned'
EVENT_PAYMENT_RECEIVED = 'payment_received'
EVENT_PAYMENT_REMINDER = 'payment_reminder'
EVENT_RESULTS_PUBLISHED = 'results_published'

# 'overdue' is accepted as another name for payment reminders
EVENT_ALIASES = {'overdue': EVENT_PAYMENT_REMINDER}

TWILIO_MESSAGES_URL = 'https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json'


@dataclass
class RenderedNotification:
    """One event rendered for every channel."""
    subject: str
    html: str
    sms: str
    in_app_title: str
    in_app_message: str
    data: Dict[str, Any] = field(default_factory=dict)


class EmailSender:
    """
    SMTP email delivery.
    """

    def __init__(self, smtp_server: str, smtp_port: int = 587, username: str = None,
                 password: str = None, default_sender: str = None, use_tls: bool = True,
                 enabled: bool = True, timeout: int = 30):
        self.logger = logging.getLogger(__name__)
        self.email_config = {
            'smtp_server': smtp_server,
            'smtp_port': smtp_port,
            'username': username,
            'password': password,
            'default_sender': default_sender or username,
            'use_tls': use_tls,
            'timeout': timeout
        }
        self.enabled = enabled

    @classmethod
    def from_config(cls, config) -> 'EmailSender':
        """Build from a Flask config mapping."""
        return cls(
            smtp_server=config['MAIL_SERVER'],
            smtp_port=config['MAIL_PORT'],
            username=config['MAIL_USERNAME'],
            password=config['MAIL_PASSWORD'],
            default_sender=config['MAIL_DEFAULT_SENDER'],
            use_tls=config['MAIL_USE_TLS'],
            enabled=config['NOTIFICATIONS_EMAIL_ENABLED']
        )

    def is_configured(self) -> bool:
        """Check if email configuration is complete."""
        return bool(self.enabled and self.email_config['smtp_server']
                    and self.email_config['default_sender'])

    def send(self, recipients: List[str], subject: str, html: str) -> bool:
        """
        Send one HTML email to a list of recipients.

        Args:
            recipients (List[str]): Email addresses
            subject (str): Subject line
            html (str): HTML body

        Returns:
            bool: True if the SMTP server accepted the message
        """
        recipients = [address for address in recipients if address]
        if not recipients:
            return False

        if not self.is_configured():
            self.logger.warning("Email not configured, skipping email notification")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['From'] = self.email_config['default_sender']
            msg['To'] = ', '.join(recipients)
            msg['Subject'] = subject
            msg.attach(MIMEText(html, 'html', 'utf-8'))

            with smtplib.SMTP(self.email_config['smtp_server'], self.email_config['smtp_port'],
                              timeout=self.email_config['timeout']) as server:
                if self.email_config['use_tls']:
                    context = ssl.create_default_context()
                    server.starttls(context=context)

                if self.email_config['username'] and self.email_config['password']:
                    server.login(self.email_config['username'], self.email_config['password'])
                server.send_message(msg)

            self.logger.info(f"Email '{subject}' sent to {len(recipients)} recipient(s)")
            return True

        except Exception as e:
            self.logger.error(f"Failed to send email notification: {str(e)}")
            return False


class SmsSender:
    """
    SMS and WhatsApp delivery through the Twilio Messages API.
    """

    def __init__(self, account_sid: str = None, auth_token: str = None, from_number: str = None,
                 timeout: int = 15, enabled: bool = True, session: requests.Session = None):
        self.logger = logging.getLogger(__name__)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self.enabled = enabled
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> 'SmsSender':
        return cls(
            account_sid=config['TWILIO_ACCOUNT_SID'],
            auth_token=config['TWILIO_AUTH_TOKEN'],
            from_number=config['TWILIO_PHONE_NUMBER'],
            timeout=config['SMS_TIMEOUT'],
            enabled=config['NOTIFICATIONS_SMS_ENABLED']
        )

    def is_configured(self) -> bool:
        return bool(self.enabled and self.account_sid and self.auth_token and self.from_number)

    def send(self, to: str, body: str, channel: str = 'sms') -> bool:
        """
        Send a text message.

        Args:
            to (str): Phone number in international format
            body (str): Message text
            channel (str): 'sms' or 'whatsapp'

        Returns:
            bool: True if Twilio accepted the message
        """
        if not to:
            return False

        if not self.is_configured():
            self.logger.warning("Twilio credentials not configured, skipping SMS")
            return False

        sender, recipient = self.from_number, to
        if channel == 'whatsapp':
            sender, recipient = f"whatsapp:{sender}", f"whatsapp:{to}"

        try:
            response = self.session.post(
                TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                data={'To': recipient, 'From': sender, 'Body': body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout
            )

            if response.ok:
                self.logger.info(f"{channel.upper()} sent to {to}")
                return True

            self.logger.error(f"Twilio rejected {channel} to {to}: {response.status_code} {response.text}")
            return False

        except requests.RequestException as e:
            self.logger.error(f"Failed to send {channel} to {to}: {str(e)}")
            return False


class NotificationSystem:
    """
    Guardian and student notifications for school events.
    """

    def __init__(self, database_manager, email_sender: EmailSender, sms_sender: SmsSender,
                 fee_ledger=None, attendance_manager=None, school_name: str = 'School',
                 currency_code: str = 'PKR', absence_channel: str = 'sms',
                 enabled: bool = True, async_enabled: bool = True):
        """
        Initialize the notification system.

        Args:
            database_manager: Database manager instance
            email_sender (EmailSender): Email channel
            sms_sender (SmsSender): SMS channel
            fee_ledger: FeeLedger used by the payment reminder sweep
            attendance_manager: AttendanceManager used by the absence sweep
            school_name (str): Name printed in messages
            currency_code (str): Currency prefix for amounts
            absence_channel (str): 'sms' or 'whatsapp' for absence alerts
            enabled (bool): Master switch for outgoing email and SMS
            async_enabled (bool): Run notify_async work on a background thread
        """
        self.db = database_manager
        self.email = email_sender
        self.sms = sms_sender
        self.fee_ledger = fee_ledger
        self.attendance = attendance_manager
        self.school_name = school_name
        self.currency_code = currency_code
        self.absence_channel = absence_channel
        self.enabled = enabled
        self.async_enabled = async_enabled
        self.logger = logging.getLogger(__name__)

        self.templates = {
            EVENT_FEE_ASSIGNED: Template(FEE_ASSIGNED_TEMPLATE),
            EVENT_PAYMENT_RECEIVED: Template(PAYMENT_RECEIVED_TEMPLATE),
            EVENT_PAYMENT_REMINDER: Template(PAYMENT_REMINDER_TEMPLATE),
            EVENT_ABSENCE: Template(ABSENCE_TEMPLATE),
            EVENT_RESULTS_PUBLISHED: Template(RESULTS_PUBLISHED_TEMPLATE)
        }

        # Notification queue for background processing
        self.notification_queue = Queue()
        self.notification_processor = None
        if async_enabled:
            self.notification_processor = threading.Thread(
                target=self._process_notifications,
                name='notification-dispatch',
                daemon=True
            )
            self.notification_processor.start()

        self.logger.info("Notification system initialized")

    # Dispatch

    def notify_async(self, func: Callable, *args, **kwargs) -> None:
        """
        Run a notification call off the request thread.

        Runs inline when background dispatch is disabled (tests, CLI).

        Args:
            func (Callable): Bound notification method, e.g. self.notify_fee_event
        """
        if self.notification_processor is None:
            self._run_job(func, args, kwargs)
            return
        self.notification_queue.put((func, args, kwargs))

    def _process_notifications(self) -> None:
        """Background thread to process notification queue."""
        while True:
            job = self.notification_queue.get()
            try:
                if job is None:  # Shutdown signal
                    break
                func, args, kwargs = job
                self._run_job(func, args, kwargs)
            finally:
                self.notification_queue.task_done()

    def _run_job(self, func: Callable, args, kwargs) -> None:
        try:
            result = func(*args, **kwargs)
            if isinstance(result, dict):
                self.logger.info(f"{getattr(func, '__name__', 'notification')}: {result.get('message')}")
        except Exception as e:
            self.logger.error(f"Error processing notification: {str(e)}")

    def dispatch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle a notification request body.

        Args:
            payload (Dict): {'type', 'studentId', 'feeDetails' | 'paymentDetails',
                'classId', 'examName', 'date'}

        Returns:
            Dict[str, Any]: {'success', 'emailsSent', 'smsSent', 'message'}
        """
        event_type = EVENT_ALIASES.get(payload.get('type'), payload.get('type'))

        if event_type in (EVENT_FEE_ASSIGNED, EVENT_PAYMENT_RECEIVED):
            return self.notify_fee_event(event_type, payload.get('studentId'),
                                         payload.get('feeDetails'), payload.get('paymentDetails'))
        if event_type == EVENT_PAYMENT_REMINDER:
            return self.send_payment_reminders()
        if event_type == EVENT_ABSENCE:
            return self.notify_absences(payload.get('date'))
        if event_type == EVENT_RESULTS_PUBLISHED:
            return self.notify_results_published(payload.get('classId'), payload.get('examName'))

        return self._result(False, 0, 0, f"Unknown notification type: {payload.get('type')}")

    # Events

    def notify_fee_event(self, event_type: str, student_id: int,
                         fee_details: Optional[Dict[str, Any]] = None,
                         payment_details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Notify guardians and the student about an assigned fee or a payment.

        Args:
            event_type (str): 'fee_assigned' or 'payment_received'
            student_id (int): Student row ID
            fee_details (Dict): {'feeName', 'amount', 'dueDate'}
            payment_details (Dict): {'amount', 'receiptNumber', 'paymentMethod'}

        Returns:
            Dict[str, Any]: {'success', 'emailsSent', 'smsSent', 'message'}
        """
        try:
            if event_type not in (EVENT_FEE_ASSIGNED, EVENT_PAYMENT_RECEIVED):
                return self._result(False, 0, 0, f"Unsupported fee event: {event_type}")

            details = fee_details if event_type == EVENT_FEE_ASSIGNED else payment_details
            if not student_id or not details:
                return self._result(False, 0, 0, "studentId and event details are required")

            student = self._get_student(student_id)
            if not student:
                return self._result(False, 0, 0, "Student not found")

            rendered = self.render(event_type, student=student, details=details)
            contacts = self.get_guardian_contacts(student_id)

            emails_sent = self._send_email(contacts['emails'], rendered)
            sms_sent = self._send_sms(contacts['phones'], rendered.sms)

            self.create_in_app_notification(
                student['user_id'], rendered.in_app_title, rendered.in_app_message,
                notification_type='fee', link='/student/fees'
            )

            return self._result(True, emails_sent, sms_sent,
                                f"Sent {emails_sent} emails and {sms_sent} SMS notifications")

        except Exception as e:
            self.logger.error(f"Fee notification failed for student {student_id}: {str(e)}")
            return self._result(False, 0, 0, f"Notification failed: {str(e)}")

    def send_payment_reminders(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Remind guardians about every unpaid fee that is past due.

        Args:
            today (date): Reference day (defaults to today)

        Returns:
            Dict[str, Any]: Counts plus 'overdueCount'
        """
        emails_sent = sms_sent = 0
        try:
            if self.fee_ledger is None:
                return self._result(False, 0, 0, "Fee ledger not available")

            due_fees = self.fee_ledger.refresh_overdue_fees(today)
            for fee in due_fees:
                if fee['days_overdue'] <= 0:
                    continue

                student = {'full_name': fee['student_name'], 'student_id': fee['student_code']}
                rendered = self.render(EVENT_PAYMENT_REMINDER, student=student, details={
                    'feeName': fee['fee_name'],
                    'amount': fee['balance'],
                    'dueDate': fee['due_date'],
                    'daysOverdue': fee['days_overdue']
                })
                contacts = self.get_guardian_contacts(fee['student_id'])
                emails_sent += self._send_email(contacts['emails'], rendered)
                sms_sent += self._send_sms(contacts['phones'], rendered.sms)
                self.create_in_app_notification(
                    fee['student_user_id'], rendered.in_app_title, rendered.in_app_message,
                    notification_type='fee', link='/student/fees'
                )

            overdue_count = sum(1 for fee in due_fees if fee['days_overdue'] > 0)
            result = self._result(True, emails_sent, sms_sent,
                                  f"Sent {emails_sent} reminder emails and {sms_sent} SMS")
            result['overdueCount'] = overdue_count
            return result

        except Exception as e:
            self.logger.error(f"Payment reminder sweep failed: {str(e)}")
            return self._result(False, emails_sent, sms_sent, f"Reminder sweep failed: {str(e)}")

    def notify_absences(self, attendance_date=None) -> Dict[str, Any]:
        """
        Tell guardians that their child was marked absent.

        Args:
            attendance_date: Day to process (defaults to today)

        Returns:
            Dict[str, Any]: Counts plus 'totalAbsent'
        """
        emails_sent = sms_sent = 0
        try:
            if self.attendance is None:
                return self._result(False, 0, 0, "Attendance manager not available")

            absent = self.attendance.get_absent_students(attendance_date)
            if not absent:
                result = self._result(True, 0, 0, "No absent students found")
                result['totalAbsent'] = 0
                return result

            for row in absent:
                class_name = row['class_name'] or 'N/A'
                if row['class_name'] and row['class_section']:
                    class_name = f"{row['class_name']} - {row['class_section']}"

                rendered = self.render(EVENT_ABSENCE, student={
                    'full_name': row['student_name'],
                    'student_id': row['student_id']
                }, details={'className': class_name, 'date': row['date']})

                contacts = self.get_guardian_contacts(row['student_pk'])
                emails_sent += self._send_email(contacts['emails'], rendered)
                sms_sent += self._send_sms(contacts['phones'], rendered.sms, channel=self.absence_channel)

            result = self._result(True, emails_sent, sms_sent,
                                  f"Sent {emails_sent} absence emails and {sms_sent} messages")
            result['totalAbsent'] = len(absent)
            return result

        except Exception as e:
            self.logger.error(f"Absence notification sweep failed: {str(e)}")
            return self._result(False, emails_sent, sms_sent, f"Absence notifications failed: {str(e)}")

    def notify_results_published(self, class_id: int, exam_name: str) -> Dict[str, Any]:
        """
        Announce published exam results to a class and its guardians.

        Args:
            class_id (int): Class row ID
            exam_name (str): Exam title

        Returns:
            Dict[str, Any]: Counts plus 'inAppNotifications'
        """
        emails_sent = sms_sent = in_app = 0
        try:
            if not class_id or not exam_name:
                return self._result(False, 0, 0, "classId and examName are required")

            students = self.db.execute_query(
                """SELECT s.id, s.student_id, s.user_id, u.full_name
                   FROM students s JOIN users u ON s.user_id = u.id
                   WHERE s.class_id = ? AND s.status = 'active'""",
                (class_id,)
            )
            if not students:
                return self._result(True, 0, 0, "No students to notify")

            for student in students:
                rendered = self.render(EVENT_RESULTS_PUBLISHED, student=student,
                                       details={'examName': exam_name})
                contacts = self.get_guardian_contacts(student['id'])

                emails_sent += self._send_email(contacts['emails'], rendered)
                sms_sent += self._send_sms(contacts['phones'], rendered.sms)

                recipients = [student['user_id']] + contacts['user_ids']
                for user_id in recipients:
                    if self.create_in_app_notification(user_id, rendered.in_app_title,
                                                       rendered.in_app_message,
                                                       notification_type='result', link='/results'):
                        in_app += 1

            result = self._result(True, emails_sent, sms_sent,
                                  f"Sent {emails_sent} emails, {sms_sent} SMS, and {in_app} in-app notifications")
            result['inAppNotifications'] = in_app
            return result

        except Exception as e:
            self.logger.error(f"Results notification failed for class {class_id}: {str(e)}")
            return self._result(False, emails_sent, sms_sent, f"Results notification failed: {str(e)}")

    # Contacts and rendering

    def get_guardian_contacts(self, student_id: int) -> Dict[str, Any]:
        """
        Resolve the guardians linked to a student.

        Every linked guardian's email is returned; phone numbers only for
        guardians who enabled SMS notifications.

        Args:
            student_id (int): Student row ID

        Returns:
            Dict[str, Any]: {'emails': [...], 'phones': [{'phone', 'name'}], 'user_ids': [...]}
        """
        contacts = {'emails': [], 'phones': [], 'user_ids': []}
        try:
            guardians = self.db.execute_query(
                """SELECT u.id AS user_id, u.full_name, u.email, u.phone, u.sms_notifications_enabled
                   FROM student_parents sp
                   JOIN parents p ON sp.parent_id = p.id
                   JOIN users u ON p.user_id = u.id
                   WHERE sp.student_id = ? AND u.is_active = 1""",
                (student_id,)
            )

            for guardian in guardians:
                contacts['user_ids'].append(guardian['user_id'])
                if guardian['email']:
                    contacts['emails'].append(guardian['email'])
                if guardian['sms_notifications_enabled'] and guardian['phone']:
                    contacts['phones'].append({'phone': guardian['phone'], 'name': guardian['full_name']})

            return contacts

        except Exception as e:
            self.logger.error(f"Failed to resolve guardians for student {student_id}: {str(e)}")
            return contacts

    def render(self, event_type: str, student: Dict[str, Any], details: Dict[str, Any]) -> RenderedNotification:
        """
        Render an event for every channel.

        Args:
            event_type (str): One of the EVENT_* types
            student (Dict): Needs 'full_name' and 'student_id'
            details (Dict): Event-specific values

        Returns:
            RenderedNotification: Subject, HTML, SMS text and in-app text
        """
        name = student['full_name']
        money = self.format_currency

        if event_type == EVENT_FEE_ASSIGNED:
            due = self.format_date(details.get('dueDate'))
            subject = f"\U0001F4B0 New Fee Assigned: {details['feeName']}"
            sms = (f"New Fee: {details['feeName']} of {money(details['amount'])} "
                   f"assigned to {name}. Due: {due}")
            in_app = f"{details['feeName']}: {money(details['amount'])} due by {due}"
        elif event_type == EVENT_PAYMENT_RECEIVED:
            subject = f"✅ Payment Received - Receipt #{details['receiptNumber']}"
            sms = (f"Payment of {money(details['amount'])} received for {name}. "
                   f"Receipt: {details['receiptNumber']}. Thank you!")
            in_app = f"Payment of {money(details['amount'])} received. Receipt: {details['receiptNumber']}"
        elif event_type == EVENT_PAYMENT_REMINDER:
            subject = f"⚠️ Fee Payment Reminder: {details['feeName']}"
            sms = (f"Fee Reminder: {details['feeName']} of {money(details['amount'])} for {name} "
                   f"is {details['daysOverdue']} days overdue. Please make payment soon.")
            in_app = (f"{details['feeName']}: {money(details['amount'])} is "
                      f"{details['daysOverdue']} days overdue")
        elif event_type == EVENT_ABSENCE:
            subject = f"Absence Notification - {name}"
            sms = (f"{self.school_name}: Your child {name} (ID: {student['student_id']}) was marked "
                   f"ABSENT on {self.format_date(details.get('date'))}. Class: {details['className']}. "
                   f"If this absence is due to a valid reason, please inform the school administration.")
            in_app = f"{name} was marked absent on {self.format_date(details.get('date'))}"
        elif event_type == EVENT_RESULTS_PUBLISHED:
            subject = f"\U0001F4CA Results Published: {details['examName']}"
            sms = f"{self.school_name}: Results for {details['examName']} are now available for {name}."
            in_app = f"Results for {details['examName']} are now available."
        else:
            raise ValueError(f"Unknown notification type: {event_type}")

        html = self.templates[event_type].render(
            student=student,
            details=details,
            school_name=self.school_name,
            money=money,
            format_date=self.format_date,
            generated_at=datetime.now().strftime('%d %b %Y %H:%M')
        )

        return RenderedNotification(subject=subject, html=html, sms=sms,
                                    in_app_title=subject, in_app_message=in_app, data=details)

    def format_currency(self, amount) -> str:
        try:
            return f"{self.currency_code} {float(amount or 0):,.0f}"
        except (TypeError, ValueError):
            return f"{self.currency_code} {amount}"

    @staticmethod
    def format_date(value) -> str:
        if not value:
            return date.today().strftime('%d %b %Y')
        try:
            return date.fromisoformat(str(value)[:10]).strftime('%d %b %Y')
        except ValueError:
            return str(value)

    # Channels

    def _send_email(self, recipients: List[str], rendered: RenderedNotification) -> int:
        if not self.enabled or not recipients:
            return 0
        return len(recipients) if self.email.send(recipients, rendered.subject, rendered.html) else 0

    def _send_sms(self, phones: List[Dict[str, str]], body: str, channel: str = 'sms') -> int:
        if not self.enabled:
            return 0
        return sum(1 for contact in phones if self.sms.send(contact['phone'], body, channel=channel))

    # In-app notifications

    def create_in_app_notification(self, user_id: int, title: str, message: str,
                                   notification_type: str = 'info', link: str = None) -> Optional[int]:
        """
        Store an in-app notification.

        Returns:
            int: Notification ID, or None if the insert failed
        """
        if not user_id:
            return None
        try:
            return self.db.execute_update(
                "INSERT INTO notifications (user_id, title, message, type, link) VALUES (?, ?, ?, ?, ?)",
                (user_id, title, message, notification_type, link)
            )
        except Exception as e:
            self.logger.error(f"Failed to store notification for user {user_id}: {str(e)}")
            return None

    def get_user_notifications(self, user_id: int, limit: int = 20,
                               unread_only: bool = False) -> List[Dict[str, Any]]:
        """
        Get a user's notifications, newest first.

        Args:
            user_id (int): User ID
            limit (int): Maximum number of notifications
            unread_only (bool): Skip notifications already read

        Returns:
            List[Dict[str, Any]]: Notification rows
        """
        try:
            query = "SELECT * FROM notifications WHERE user_id = ?"
            if unread_only:
                query += " AND is_read = 0"
            query += " ORDER BY created_at DESC, id DESC LIMIT ?"
            return self.db.execute_query(query, (user_id, limit))
        except Exception as e:
            self.logger.error(f"Failed to get notifications for user {user_id}: {str(e)}")
            return []

    def mark_notification_read(self, notification_id: int, user_id: int) -> bool:
        """
        Mark notification as read.

        Args:
            notification_id (int): Notification ID
            user_id (int): Owner of the notification

        Returns:
            bool: Success status
        """
        try:
            affected_rows = self.db.execute_update(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id)
            )
            return affected_rows > 0
        except Exception as e:
            self.logger.error(f"Failed to mark notification {notification_id} as read: {str(e)}")
            return False

    def _get_student(self, student_id: int) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT s.id, s.student_id, s.user_id, u.full_name
               FROM students s JOIN users u ON s.user_id = u.id
               WHERE s.id = ?""",
            (student_id,),
            fetch_all=False
        )

    @staticmethod
    def _result(success: bool, emails_sent: int, sms_sent: int, message: str) -> Dict[str, Any]:
        return {'success': success, 'emailsSent': emails_sent, 'smsSent': sms_sent, 'message': message}

    def shutdown(self) -> None:
        """Shutdown the notification system gracefully."""
        if self.notification_processor is None:
            return
        try:
            self.notification_queue.put(None)
            if self.notification_processor.is_alive():
                self.notification_processor.join(timeout=5)
            self.logger.info("Notification system shut down")
        except Exception as e:
            self.logger.error(f"Error during notification system shutdown: {str(e)}")


_EMAIL_FOOTER = """
            <hr style="border: none; border-top: 1px solid #ddd; margin: 30px 0;">
            <p style="color: #6c757d; font-size: 12px; text-align: center;">
                {{ school_name | e }} &middot; Generated on {{ generated_at }}
            </p>
        </body>
        </html>
"""

FEE_ASSIGNED_TEMPLATE = """
        <html>
        <body style="font-family: Arial, sans-serif;">
            <h1 style="color: #2563eb;">New Fee Assigned</h1>
            <p>Dear Parent/Guardian,</p>
            <p>A new fee has been assigned to <strong>{{ student.full_name | e }}</strong>:</p>
            <div style="background: #f3f4f6; padding: 15px; border-radius: 8px;">
                <p><strong>Fee Type:</strong> {{ details.feeName | e }}</p>
                <p><strong>Amount:</strong> {{ money(details.amount) }}</p>
                <p><strong>Due Date:</strong> {{ format_date(details.dueDate) }}</p>
            </div>
            <p>Please ensure timely payment to avoid any late fees.</p>
            <p>Best regards,<br>School Administration</p>
""" + _EMAIL_FOOTER

PAYMENT_RECEIVED_TEMPLATE = """
        <html>
        <body style="font-family: Arial, sans-serif;">
            <h1 style="color: #16a34a;">Payment Received</h1>
            <p>Dear Parent/Guardian,</p>
            <p>We have received a payment for <strong>{{ student.full_name | e }}</strong>:</p>
            <div style="background: #f0fdf4; padding: 15px; border-radius: 8px;">
                <p><strong>Amount Paid:</strong> {{ money(details.amount) }}</p>
                <p><strong>Receipt Number:</strong> {{ details.receiptNumber | e }}</p>
                <p><strong>Payment Method:</strong> {{ (details.paymentMethod or 'cash') | replace('_', ' ') | title }}</p>
                <p><strong>Date:</strong> {{ format_date(details.paymentDate) }}</p>
            </div>
            <p>Thank you for your payment!</p>
            <p>Best regards,<br>School Administration</p>
""" + _EMAIL_FOOTER

PAYMENT_REMINDER_TEMPLATE = """
        <html>
        <body style="font-family: Arial, sans-serif;">
            <h1 style="color: #dc2626;">Fee Payment Reminder</h1>
            <p>Dear Parent/Guardian,</p>
            <p>This is a reminder that the following fee for <strong>{{ student.full_name | e }}</strong> is overdue:</p>
            <div style="background: #fef2f2; padding: 15px; border-radius: 8px;">
                <p><strong>Fee Type:</strong> {{ details.feeName | e }}</p>
                <p><strong>Amount Due:</strong> {{ money(details.amount) }}</p>
                <p><strong>Due Date:</strong> {{ format_date(details.dueDate) }}</p>
                <p style="color: #dc2626;"><strong>Days Overdue:</strong> {{ details.daysOverdue }} days</p>
            </div>
            <p>Please make the payment at your earliest convenience to avoid any inconvenience.</p>
            <p>Best regards,<br>School Administration</p>
""" + _EMAIL_FOOTER

ABSENCE_TEMPLATE = """
        <html>
        <body style="font-family: Arial, sans-serif;">
            <div style="background: #1e40af; padding: 20px; text-align: center;">
                <h1 style="color: white; margin: 0; font-size: 24px;">{{ school_name | e }}</h1>
            </div>
            <p style="font-size: 16px;">Dear Parent/Guardian,</p>
            <p style="font-size: 16px;">This is to inform you that your child <strong>{{ student.full_name | e }}</strong>
               (ID: {{ student.student_id | e }}) was marked <strong style="color: #dc2626;">absent</strong>.</p>
            <div style="background: #f3f4f6; padding: 15px; border-radius: 8px;">
                <p style="margin: 5px 0;"><strong>Student:</strong> {{ student.full_name | e }}</p>
                <p style="margin: 5px 0;"><strong>Student ID:</strong> {{ student.student_id | e }}</p>
                <p style="margin: 5px 0;"><strong>Class:</strong> {{ details.className | e }}</p>
                <p style="margin: 5px 0;"><strong>Date:</strong> {{ format_date(details.date) }}</p>
            </div>
            <p style="font-size: 14px; color: #666;">If your child was absent due to illness or any valid reason,
               please inform the school administration as soon as possible.</p>
""" + _EMAIL_FOOTER

RESULTS_PUBLISHED_TEMPLATE = """
        <html>
        <body style="font-family: Arial, sans-serif;">
            <h1 style="color: #7c3aed;">Results Published</h1>
            <p>Dear Parent/Guardian,</p>
            <p>The results for <strong>{{ details.examName | e }}</strong> have been published for
               <strong>{{ student.full_name | e }}</strong>.</p>
            <p>Log in to the school portal to view detailed marks.</p>
            <p>Best regards,<br><strong>{{ school_name | e }}</strong></p>
""" + _EMAIL_FOOTER
