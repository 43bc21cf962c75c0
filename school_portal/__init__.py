# School Portal - App Package
"""
Main application package for the School Portal.
This package contains the attendance, fee, notification and document modules
used by the Flask application.
"""

__version__ = "1.0.0"
__author__ = "School Portal Team"
__description__ = "Flask-based school management with QR attendance, fee ledger and guardian notifications"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.qr_generator import QRGenerator
from .modules.attendance_manager import AttendanceManager, ScanDebouncer, resolve_attendance_status
from .modules.fee_ledger import FeeLedger, FeeBalance, calculate_fee_balance
from .modules.notification_system import NotificationSystem, EmailSender, SmsSender
from .modules.document_generator import DocumentGenerator
from .modules.report_generator import ReportGenerator
from .modules.auth_manager import AuthManager
from .modules.student_manager import StudentManager

__all__ = [
    'DatabaseManager',
    'QRGenerator',
    'AttendanceManager',
    'ScanDebouncer',
    'resolve_attendance_status',
    'FeeLedger',
    'FeeBalance',
    'calculate_fee_balance',
    'NotificationSystem',
    'EmailSender',
    'SmsSender',
    'DocumentGenerator',
    'ReportGenerator',
    'AuthManager',
    'StudentManager'
]
