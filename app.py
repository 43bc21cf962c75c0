"""
School Portal - Main Application

This module builds the Flask application for the school portal. It wires the
managers together and exposes the JSON API used by the scanner screen, the
fee office and the guardian/student portals.

Features:
- Session login with per-request role checks
- QR / manual attendance scanning with repeat-scan debounce
- Fee structures, assignments and payments
- Guardian notifications (email, SMS, in-app)
- PDF receipts, ID cards, roll number slips and marks certificates
- Attendance sheets and fee report export
"""

from flask import Flask, request, jsonify, session, g, send_file
from datetime import datetime, date
from functools import wraps
import io
import logging
import os

from config import init_config
from school_portal.modules.database_manager import DatabaseManager
from school_portal.modules.qr_generator import QRGenerator
from school_portal.modules.auth_manager import AuthManager
from school_portal.modules.student_manager import StudentManager
from school_portal.modules.attendance_manager import AttendanceManager, ScanDebouncer
from school_portal.modules.fee_ledger import FeeLedger
from school_portal.modules.notification_system import NotificationSystem, EmailSender, SmsSender
from school_portal.modules.document_generator import DocumentGenerator
from school_portal.modules.report_generator import ReportGenerator

logger = logging.getLogger(__name__)

# HTTP status for manager failure types
ERROR_STATUS = {
    'validation': 400,
    'invalid_status': 400,
    'invalid_date': 400,
    'missing_identifier': 400,
    'not_found': 404,
    'duplicate': 409,
    'system_error': 500
}

REPORT_MIMETYPES = {
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'csv': 'text/csv',
    'pdf': 'application/pdf'
}


def _failure(result, default_status=400):
    message = result.get('error') or result.get('message') or 'Request failed'
    body = dict(result, success=False, message=message)
    return jsonify(body), ERROR_STATUS.get(result.get('error_type'), default_status)


def _pdf_response(content: bytes, filename: str, as_attachment: bool = False):
    return send_file(io.BytesIO(content), mimetype='application/pdf',
                     as_attachment=as_attachment, download_name=filename)


def create_app(config_name=None, email_sender=None, sms_sender=None, **overrides):
    """
    Create and configure the Flask application.

    Args:
        config_name (str): development, testing or production
        email_sender: Replaces the SMTP sender (tests)
        sms_sender: Replaces the Twilio sender (tests)
        **overrides: Config values applied on top of the config class

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    config_class = init_config(app, config_name)

    app.config.update({key: getattr(config_class, key) for key in dir(config_class) if key.isupper()})
    app.config.update(overrides)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    )

    school_info = {
        'name': app.config['SCHOOL_NAME'],
        'address': app.config['SCHOOL_ADDRESS'],
        'phone': app.config['SCHOOL_PHONE'],
        'email': app.config['SCHOOL_EMAIL']
    }

    # Initialize system components
    db_manager = DatabaseManager(app.config['DATABASE_PATH'])
    qr_generator = QRGenerator()
    auth_manager = AuthManager(db_manager, password_min_length=app.config['PASSWORD_MIN_LENGTH'])
    student_manager = StudentManager(db_manager, auth_manager, qr_generator)
    attendance_manager = AttendanceManager(db_manager, student_manager,
                                           late_cutoff=app.config['ATTENDANCE_LATE_CUTOFF'])
    try:
        debounce_seconds = float(app.config['ATTENDANCE_SCAN_DEBOUNCE_SECONDS'])
    except (TypeError, ValueError):
        debounce_seconds = attendance_manager.scan_debounce_seconds
    scan_debouncer = ScanDebouncer(debounce_seconds)
    fee_ledger = FeeLedger(db_manager)
    notification_system = NotificationSystem(
        db_manager,
        email_sender or EmailSender.from_config(app.config),
        sms_sender or SmsSender.from_config(app.config),
        fee_ledger=fee_ledger,
        attendance_manager=attendance_manager,
        school_name=app.config['SCHOOL_NAME'],
        currency_code=app.config['CURRENCY_CODE'],
        absence_channel=app.config['NOTIFICATIONS_ABSENCE_CHANNEL'],
        enabled=app.config['NOTIFICATIONS_ENABLED'],
        async_enabled=app.config['NOTIFICATIONS_ASYNC']
    )
    document_generator = DocumentGenerator(school_info, app.config['CURRENCY_CODE'], qr_generator)
    report_generator = ReportGenerator(attendance_manager, fee_ledger, school_info,
                                       output_dir=app.config['REPORTS_FOLDER'],
                                       currency_code=app.config['CURRENCY_CODE'])

    app.extensions['school_portal'] = {
        'db_manager': db_manager,
        'qr_generator': qr_generator,
        'auth_manager': auth_manager,
        'student_manager': student_manager,
        'attendance_manager': attendance_manager,
        'scan_debouncer': scan_debouncer,
        'fee_ledger': fee_ledger,
        'notification_system': notification_system,
        'document_generator': document_generator,
        'report_generator': report_generator
    }

    def login_required(f):
        """Decorator to require an active login for protected routes"""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if 'user_id' not in session:
                return jsonify({'success': False, 'message': 'Authentication required'}), 401

            # Role comes from the database so deactivation and role changes apply immediately
            role = auth_manager.get_user_role(session['user_id'])
            if role is None:
                session.clear()
                return jsonify({'success': False, 'message': 'Account is not active'}), 401

            g.user_id = session['user_id']
            g.user_role = role
            return f(*args, **kwargs)
        return decorated_function

    def roles_required(*roles):
        """Decorator to restrict a route to the given roles"""
        def decorator(f):
            @wraps(f)
            @login_required
            def decorated_function(*args, **kwargs):
                if g.user_role not in roles:
                    logger.warning(f"User {g.user_id} ({g.user_role}) denied access to {request.path}")
                    return jsonify({'success': False, 'message': 'Insufficient privileges'}), 403
                return f(*args, **kwargs)
            return decorated_function
        return decorator

    def can_view_student(student_pk, staff_roles=('admin', 'teacher')):
        if g.user_role in staff_roles:
            return True
        if g.user_role == 'student':
            own = student_manager.get_student_by_user_id(g.user_id)
            return bool(own) and own['id'] == student_pk
        if g.user_role == 'parent':
            return any(child['id'] == student_pk
                       for child in student_manager.get_children_of_parent_user(g.user_id))
        return False

    def queue_notification(func, *args):
        if app.config['NOTIFICATIONS_ENABLED']:
            notification_system.notify_async(func, *args)

    # Authentication

    @app.route('/login', methods=['POST'])
    def login():
        """User login"""
        try:
            data = request.get_json(silent=True) or request.form
            username = (data.get('username') or '').strip()
            password = data.get('password') or ''

            if not username or not password:
                return jsonify({'success': False, 'message': 'Please provide both username and password.'}), 400

            user = auth_manager.authenticate_user(username, password)
            if not user:
                return jsonify({'success': False, 'message': 'Invalid username or password.'}), 401

            session.clear()
            session['user_id'] = user['id']
            session['username'] = user['username']
            session.permanent = True

            logger.info(f"User {username} logged in successfully")
            return jsonify({'success': True, 'user': user})

        except Exception as e:
            logger.error(f"Login error: {str(e)}")
            return jsonify({'success': False, 'message': 'An error occurred during login.'}), 500

    @app.route('/logout', methods=['POST'])
    @login_required
    def logout():
        """User logout"""
        username = session.get('username', 'Unknown')
        session.clear()
        logger.info(f"User {username} logged out")
        return jsonify({'success': True, 'message': 'You have been logged out successfully.'})

    @app.route('/api/me')
    @login_required
    def current_user():
        user = auth_manager.get_user(g.user_id)
        user['permissions'] = auth_manager.get_user_permissions(g.user_role)
        return jsonify({'success': True, 'user': user})

    @app.route('/api/me/sms-preference', methods=['PUT'])
    @roles_required('parent')
    def update_sms_preference():
        data = request.get_json(silent=True) or {}
        if 'enabled' not in data:
            return jsonify({'success': False, 'message': 'enabled is required'}), 400
        updated = auth_manager.set_sms_preference(g.user_id, bool(data['enabled']))
        return jsonify({'success': updated, 'sms_notifications_enabled': bool(data['enabled'])})

    # Students

    @app.route('/api/students', methods=['POST'])
    @roles_required('admin')
    def create_student():
        try:
            result = student_manager.create_student(request.get_json(silent=True) or {})
            if not result['success']:
                return _failure(result)
            return jsonify(result), 201
        except Exception as e:
            logger.error(f"Student creation error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to create student'}), 500

    # Attendance

    @app.route('/api/attendance/scan', methods=['POST'])
    @roles_required('admin', 'teacher')
    def scan_attendance():
        """Process an ID card scan or a typed-in ID"""
        try:
            data = request.get_json(silent=True) or {}
            identifier = qr_generator.parse_scan_payload(data.get('qr_code') or data.get('identifier'))

            if not identifier:
                return jsonify({'success': False, 'status': 'error',
                                'message': 'No QR code data provided'}), 400

            if not scan_debouncer.should_process(identifier):
                return jsonify({'success': False, 'status': 'suppressed',
                                'message': 'Duplicate scan ignored'})

            result = attendance_manager.process_scan(identifier, scanned_by=g.user_id)

            if result['success'] or result['status'] == 'already_marked':
                return jsonify(result)
            return _failure(result)

        except Exception as e:
            logger.error(f"Scan processing error: {str(e)}")
            return jsonify({'success': False, 'status': 'error',
                            'message': 'An error occurred while processing the scan'}), 500

    @app.route('/api/attendance/mark', methods=['POST'])
    @roles_required('admin', 'teacher')
    def mark_attendance():
        """Manual entry for one student or a whole class register"""
        try:
            data = request.get_json(silent=True) or {}

            if 'entries' in data:
                if not data.get('class_id'):
                    return jsonify({'success': False, 'message': 'class_id is required'}), 400
                result = attendance_manager.mark_class_attendance(
                    data['class_id'], data['entries'], g.user_id, data.get('date')
                )
                return jsonify(result), 200 if result['success'] else 207

            result = attendance_manager.mark_attendance(
                data.get('student_id'), data.get('status'), g.user_id,
                data.get('date'), data.get('class_id'), data.get('notes')
            )
            if not result['success']:
                return _failure(result)
            return jsonify(result), 201

        except Exception as e:
            logger.error(f"Manual attendance error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to record attendance'}), 500

    @app.route('/api/attendance/<int:attendance_id>', methods=['PUT'])
    @roles_required('admin', 'teacher')
    def edit_attendance(attendance_id):
        data = request.get_json(silent=True) or {}
        if attendance_manager.update_attendance_status(attendance_id, data.get('status'),
                                                       data.get('notes'), g.user_id):
            return jsonify({'success': True, 'message': 'Attendance updated'})
        return jsonify({'success': False, 'message': 'Attendance record not found or invalid status'}), 400

    @app.route('/api/attendance/summary')
    @roles_required('admin', 'teacher')
    def attendance_summary():
        try:
            return jsonify({'success': True,
                            'summary': attendance_manager.get_daily_summary(request.args.get('date'))})
        except ValueError:
            return jsonify({'success': False, 'message': 'Invalid date'}), 400

    @app.route('/api/students/<int:student_id>/attendance')
    @login_required
    def student_attendance(student_id):
        if not can_view_student(student_id):
            return jsonify({'success': False, 'message': 'Insufficient privileges'}), 403
        try:
            history = attendance_manager.get_student_attendance(
                student_id, request.args.get('start_date'), request.args.get('end_date')
            )
            return jsonify(dict(history, success='error' not in history))
        except ValueError:
            return jsonify({'success': False, 'message': 'Invalid date'}), 400

    # Fees

    @app.route('/api/fees/structures', methods=['POST'])
    @roles_required('admin')
    def create_fee_structure():
        data = request.get_json(silent=True) or {}
        result = fee_ledger.create_fee_structure(
            data.get('name'), data.get('amount'), data.get('fee_type', 'tuition'),
            data.get('due_date'), data.get('class_id'), data.get('description')
        )
        if not result['success']:
            return _failure(result)
        return jsonify(result), 201

    @app.route('/api/fees/assign', methods=['POST'])
    @roles_required('admin')
    def assign_fee():
        data = request.get_json(silent=True) or {}
        result = fee_ledger.assign_fee(data.get('student_id'), data.get('fee_structure_id'),
                                       data.get('discount', 0), data.get('due_date'))
        if not result['success']:
            return _failure(result)

        queue_notification(notification_system.notify_fee_event, 'fee_assigned', result['student_id'], {
            'feeName': result['fee_name'],
            'amount': result['final_amount'],
            'dueDate': result['due_date']
        })
        return jsonify(result), 201

    @app.route('/api/fees/<int:student_fee_id>/payments', methods=['POST'])
    @roles_required('admin')
    def record_payment(student_fee_id):
        data = request.get_json(silent=True) or {}
        result = fee_ledger.record_payment(
            student_fee_id, data.get('amount'), data.get('payment_method', 'cash'),
            data.get('transaction_id'), data.get('remarks'), g.user_id, data.get('payment_date')
        )
        if not result['success']:
            return _failure(result)

        queue_notification(notification_system.notify_fee_event, 'payment_received', result['student_id'],
                           None, {
                               'amount': result['amount'],
                               'receiptNumber': result['receipt_number'],
                               'paymentMethod': result['payment_method']
                           })
        return jsonify(result), 201

    @app.route('/api/fees/<int:student_fee_id>')
    @login_required
    def get_student_fee(student_fee_id):
        fee = fee_ledger.get_student_fee(student_fee_id)
        if not fee:
            return jsonify({'success': False, 'message': 'Fee not found'}), 404
        if not can_view_student(fee['student_id'], staff_roles=('admin',)):
            return jsonify({'success': False, 'message': 'Insufficient privileges'}), 403
        return jsonify({'success': True, 'fee': fee, 'payments': fee_ledger.get_payments(student_fee_id)})

    @app.route('/api/students/<int:student_id>/fees')
    @login_required
    def get_student_fees(student_id):
        if not can_view_student(student_id, staff_roles=('admin',)):
            return jsonify({'success': False, 'message': 'Insufficient privileges'}), 403
        return jsonify({'success': True, 'fees': fee_ledger.get_student_fees(student_id)})

    @app.route('/api/fees/refresh-overdue', methods=['POST'])
    @roles_required('admin')
    def refresh_overdue():
        due_fees = fee_ledger.refresh_overdue_fees()
        return jsonify({'success': True, 'due_count': len(due_fees), 'fees': due_fees})

    @app.route('/api/fees/statistics')
    @roles_required('admin')
    def fee_statistics():
        return jsonify({'success': True, 'statistics': fee_ledger.get_fee_statistics()})

    # Notifications

    @app.route('/api/notifications/fee', methods=['POST'])
    @roles_required('admin')
    def send_fee_notification():
        """Send a fee_assigned, payment_received or payment_reminder notification"""
        payload = request.get_json(silent=True) or {}
        if payload.get('type') not in ('fee_assigned', 'payment_received', 'payment_reminder', 'overdue'):
            return jsonify({'success': False, 'emailsSent': 0, 'smsSent': 0,
                            'message': f"Unsupported notification type: {payload.get('type')}"}), 400

        result = notification_system.dispatch(payload)
        return jsonify(result), 200 if result['success'] else 400

    @app.route('/api/notifications/attendance', methods=['POST'])
    @roles_required('admin', 'teacher')
    def send_attendance_notification():
        payload = request.get_json(silent=True) or {}
        try:
            result = notification_system.notify_absences(payload.get('date'))
        except ValueError:
            return jsonify({'success': False, 'message': 'Invalid date'}), 400
        return jsonify(result), 200 if result['success'] else 400

    @app.route('/api/notifications/results', methods=['POST'])
    @roles_required('admin', 'teacher')
    def send_results_notification():
        payload = request.get_json(silent=True) or {}
        result = notification_system.notify_results_published(payload.get('classId'), payload.get('examName'))
        return jsonify(result), 200 if result['success'] else 400

    @app.route('/api/notifications')
    @login_required
    def list_notifications():
        unread_only = request.args.get('unread') in ('1', 'true')
        return jsonify({'success': True,
                        'notifications': notification_system.get_user_notifications(
                            g.user_id, unread_only=unread_only)})

    @app.route('/api/notifications/<int:notification_id>/read', methods=['POST'])
    @login_required
    def read_notification(notification_id):
        if notification_system.mark_notification_read(notification_id, g.user_id):
            return jsonify({'success': True})
        return jsonify({'success': False, 'message': 'Notification not found'}), 404

    # Documents

    @app.route('/api/documents/receipt/<int:payment_id>')
    @login_required
    def payment_receipt(payment_id):
        data = fee_ledger.get_receipt_data(payment_id)
        if not data:
            return jsonify({'success': False, 'message': 'Payment not found'}), 404
        if not can_view_student(data['student_pk'], staff_roles=('admin',)):
            return jsonify({'success': False, 'message': 'Insufficient privileges'}), 403
        try:
            return _pdf_response(document_generator.generate_receipt(data), f"{data['receipt_number']}.pdf")
        except Exception as e:
            logger.error(f"Receipt generation error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to generate receipt'}), 500

    @app.route('/api/documents/id-card/<int:student_id>')
    @roles_required('admin', 'teacher')
    def student_id_card(student_id):
        student = student_manager.get_student_by_id(student_id)
        if not student:
            return jsonify({'success': False, 'message': 'Student not found'}), 404
        try:
            pdf = document_generator.generate_student_card({
                'studentId': student['student_id'],
                'studentName': student['full_name'],
                'fatherName': student.get('father_name'),
                'className': student.get('class_name'),
                'section': student.get('class_section'),
                'bloodGroup': student.get('blood_group'),
                'phone': student.get('phone'),
                'address': student.get('address'),
                'dateOfBirth': student.get('date_of_birth'),
                'validUntil': request.args.get('valid_until') or date(date.today().year, 12, 31).isoformat()
            })
            return _pdf_response(pdf, f"id_card_{student['student_id']}.pdf")
        except Exception as e:
            logger.error(f"ID card generation error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to generate ID card'}), 500

    @app.route('/api/documents/teacher-card/<employee_id>')
    @roles_required('admin')
    def teacher_id_card(employee_id):
        teacher = student_manager.get_teacher_by_employee_id(employee_id)
        if not teacher:
            return jsonify({'success': False, 'message': 'Teacher not found'}), 404
        try:
            pdf = document_generator.generate_teacher_card({
                'employeeId': teacher['employee_id'],
                'teacherName': teacher['full_name'],
                'designation': teacher.get('designation'),
                'phone': teacher.get('phone'),
                'validUntil': request.args.get('valid_until') or date(date.today().year, 12, 31).isoformat()
            })
            return _pdf_response(pdf, f"staff_card_{teacher['employee_id']}.pdf")
        except Exception as e:
            logger.error(f"Teacher card generation error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to generate ID card'}), 500

    def _document_from_json(required, builder, filename_key, prefix):
        data = request.get_json(silent=True) or {}
        missing = [key for key in required if not data.get(key)]
        if missing:
            return jsonify({'success': False, 'message': f"Missing required fields: {', '.join(missing)}"}), 400
        try:
            return _pdf_response(builder(data), f"{prefix}_{data[filename_key]}.pdf")
        except Exception as e:
            logger.error(f"{prefix} generation error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to generate document'}), 500

    @app.route('/api/documents/roll-number-slip', methods=['POST'])
    @roles_required('admin', 'teacher')
    def roll_number_slip():
        return _document_from_json(('studentName', 'studentId', 'examName'),
                                   document_generator.generate_roll_number_slip, 'studentId', 'roll_slip')

    @app.route('/api/documents/marks-certificate', methods=['POST'])
    @roles_required('admin', 'teacher')
    def marks_certificate():
        return _document_from_json(('studentName', 'studentId', 'examName', 'subjects'),
                                   document_generator.generate_marks_certificate, 'studentId',
                                   'marks_certificate')

    # Reports

    @app.route('/api/reports/attendance/<int:class_id>')
    @roles_required('admin', 'teacher')
    def attendance_report(class_id):
        today = date.today()
        try:
            year = int(request.args.get('year', today.year))
            month = int(request.args.get('month', today.month))
        except ValueError:
            return jsonify({'success': False, 'message': 'year and month must be numbers'}), 400

        result = report_generator.generate_attendance_sheet(class_id, year, month)
        if not result['success']:
            status_code = 404 if result['error'] == 'Class not found' else 400
            return jsonify(dict(result, message=result['error'])), status_code
        return _pdf_response(result['content'], result['filename'], as_attachment=True)

    @app.route('/api/reports/fees')
    @roles_required('admin')
    def fee_report():
        output_format = request.args.get('format', 'excel')
        result = report_generator.generate_fee_report(
            output_format, status=request.args.get('status'),
            class_id=request.args.get('class_id', type=int)
        )
        if not result['success']:
            return jsonify(dict(result, message=result['error'])), 400
        return send_file(os.path.abspath(result['filepath']), mimetype=REPORT_MIMETYPES[output_format],
                         as_attachment=True, download_name=result['filename'])

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    logger.info(f"School portal initialized ({config_class.__name__}) at {datetime.now().isoformat(timespec='seconds')}")
    return app


if __name__ == '__main__':
    application = create_app()

    # Run the application
    application.run(
        host=os.environ.get('HOST', '127.0.0.1'),
        port=int(os.environ.get('PORT', 5000)),
        debug=application.config['DEBUG']
    )
