# School Portal - Modules Package
"""
Core business logic modules for the School Portal.
"""

__version__ = "1.0.0"
__description__ = "Core modules for attendance, fees, notifications and documents"

# Module descriptions
MODULES = {
    'database_manager': 'Database operations and schema management',
    'qr_generator': 'ID card QR codes and scan payload decoding',
    'attendance_manager': 'Scan and manual attendance with late detection',
    'fee_ledger': 'Fee structures, assignments, payments and balances',
    'notification_system': 'Guardian email, SMS and in-app notifications',
    'document_generator': 'Receipts, ID cards, roll number slips and marks certificates',
    'report_generator': 'Attendance sheets and fee report export',
    'auth_manager': 'Authentication and role-based authorization',
    'student_manager': 'Classes, students, teachers and guardians'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
