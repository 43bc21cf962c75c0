"""
Student Manager Module - School Portal

This module handles enrolment records: classes, students, teachers,
parents and the links between students and their guardians. Every person
gets a user account (through AuthManager) plus a role-specific row.

Features:
- Class creation and listing
- Student registration with ID-card QR code
- Teacher and parent registration
- Guardian linking
- Lookups by visible ID (the value printed on ID cards)
"""

from typing import Dict, List, Any, Optional
import logging
import re
import secrets
from school_portal.modules.qr_generator import QRGenerator


class StudentManager:
    """
    Enrolment management for students, teachers, parents and classes.
    """

    def __init__(self, database_manager, auth_manager, qr_generator: QRGenerator = None):
        """
        Initialize the student manager.

        Args:
            database_manager: Database manager instance
            auth_manager: AuthManager used to create the login accounts
            qr_generator: QR generator for ID-card codes
        """
        self.db = database_manager
        self.auth = auth_manager
        self.qr_generator = qr_generator or QRGenerator()
        self.logger = logging.getLogger(__name__)

    def create_class(self, name: str, section: str = None,
                     class_teacher_id: int = None) -> Dict[str, Any]:
        """
        Create a class (grade plus optional section).

        Args:
            name (str): Class name, e.g. "Class 5"
            section (str): Section letter
            class_teacher_id (int): Teacher row ID

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            if not name or not name.strip():
                return {'success': False, 'error': 'Class name is required'}

            class_id = self.db.execute_update(
                "INSERT INTO classes (name, section, class_teacher_id) VALUES (?, ?, ?)",
                (name.strip(), section, class_teacher_id)
            )

            self.logger.info(f"Class created: {self.format_class_name(name, section)} (ID: {class_id})")
            return {'success': True, 'class_id': class_id}

        except Exception as e:
            self.logger.error(f"Class creation failed for {name}: {str(e)}")
            return {'success': False, 'error': 'Failed to create class'}

    def create_student(self, student_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a student: login account, student row and ID-card QR code.

        Args:
            student_data (Dict[str, Any]): Student information. Requires
                'student_id' and 'full_name'; 'username' and 'password'
                default to the student ID and a generated password.

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            for field in ('student_id', 'full_name'):
                if not student_data.get(field):
                    return {
                        'success': False,
                        'error': f'Missing required field: {field}'
                    }

            validation_result = self._validate_student_data(student_data)
            if not validation_result['valid']:
                return {'success': False, 'error': validation_result['error']}

            if self.get_student_by_visible_id(student_data['student_id'], active_only=False):
                return {'success': False, 'error': 'Student ID already exists'}

            password = student_data.get('password') or secrets.token_urlsafe(8)
            account = self.auth.create_user(
                username=student_data.get('username') or student_data['student_id'],
                password=password,
                full_name=student_data['full_name'],
                role='student',
                email=student_data.get('email'),
                phone=student_data.get('phone')
            )
            if not account['success']:
                return account

            student_pk = self.db.execute_update(
                """INSERT INTO students (student_id, user_id, class_id, father_name, roll_number,
                                         date_of_birth, blood_group, address)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    student_data['student_id'],
                    account['user_id'],
                    student_data.get('class_id'),
                    student_data.get('father_name'),
                    student_data.get('roll_number'),
                    student_data.get('date_of_birth'),
                    student_data.get('blood_group'),
                    student_data.get('address')
                )
            )

            qr_result = self.qr_generator.generate_student_qr_code(student_data)

            self.logger.info(f"Student created successfully: {student_data['student_id']} (ID: {student_pk})")

            result = {
                'success': True,
                'id': student_pk,
                'student_id': student_data['student_id'],
                'user_id': account['user_id'],
                'qr_image': qr_result.get('image_base64') if qr_result.get('success') else None,
                'message': 'Student created successfully'
            }
            if not student_data.get('password'):
                result['initial_password'] = password
            return result

        except Exception as e:
            self.logger.error(f"Student creation failed for {student_data.get('student_id', 'unknown')}: {str(e)}")
            return {'success': False, 'error': 'Failed to create student record'}

    def create_teacher(self, teacher_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a teacher account and teacher row.

        Args:
            teacher_data (Dict[str, Any]): Requires 'employee_id' and 'full_name'

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            for field in ('employee_id', 'full_name'):
                if not teacher_data.get(field):
                    return {'success': False, 'error': f'Missing required field: {field}'}

            existing = self.db.execute_query(
                "SELECT id FROM teachers WHERE employee_id = ?",
                (teacher_data['employee_id'],),
                fetch_all=False
            )
            if existing:
                return {'success': False, 'error': 'Employee ID already exists'}

            account = self.auth.create_user(
                username=teacher_data.get('username') or teacher_data['employee_id'],
                password=teacher_data.get('password') or secrets.token_urlsafe(8),
                full_name=teacher_data['full_name'],
                role='teacher',
                email=teacher_data.get('email'),
                phone=teacher_data.get('phone')
            )
            if not account['success']:
                return account

            teacher_pk = self.db.execute_update(
                "INSERT INTO teachers (employee_id, user_id, designation) VALUES (?, ?, ?)",
                (teacher_data['employee_id'], account['user_id'], teacher_data.get('designation'))
            )

            self.logger.info(f"Teacher created successfully: {teacher_data['employee_id']} (ID: {teacher_pk})")
            return {'success': True, 'id': teacher_pk, 'user_id': account['user_id']}

        except Exception as e:
            self.logger.error(f"Teacher creation failed for {teacher_data.get('employee_id', 'unknown')}: {str(e)}")
            return {'success': False, 'error': 'Failed to create teacher record'}

    def create_parent(self, parent_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register a parent/guardian account.

        Args:
            parent_data (Dict[str, Any]): Requires 'username', 'password' and
                'full_name'; 'email', 'phone' and 'sms_notifications_enabled'
                drive notification delivery.

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            for field in ('username', 'password', 'full_name'):
                if not parent_data.get(field):
                    return {'success': False, 'error': f'Missing required field: {field}'}

            account = self.auth.create_user(
                username=parent_data['username'],
                password=parent_data['password'],
                full_name=parent_data['full_name'],
                role='parent',
                email=parent_data.get('email'),
                phone=parent_data.get('phone'),
                sms_notifications_enabled=bool(parent_data.get('sms_notifications_enabled'))
            )
            if not account['success']:
                return account

            parent_pk = self.db.execute_update(
                "INSERT INTO parents (user_id, occupation) VALUES (?, ?)",
                (account['user_id'], parent_data.get('occupation'))
            )

            self.logger.info(f"Parent created successfully: {parent_data['username']} (ID: {parent_pk})")
            return {'success': True, 'id': parent_pk, 'user_id': account['user_id']}

        except Exception as e:
            self.logger.error(f"Parent creation failed for {parent_data.get('username', 'unknown')}: {str(e)}")
            return {'success': False, 'error': 'Failed to create parent record'}

    def link_parent(self, student_id: int, parent_id: int,
                    relationship: str = 'guardian') -> bool:
        """
        Link a guardian to a student.

        Args:
            student_id (int): Student row ID
            parent_id (int): Parent row ID
            relationship (str): father, mother, guardian...

        Returns:
            bool: Success status (True if the link already existed)
        """
        try:
            self.db.execute_update(
                """INSERT OR IGNORE INTO student_parents (student_id, parent_id, relationship)
                   VALUES (?, ?, ?)""",
                (student_id, parent_id, relationship)
            )
            return True
        except Exception as e:
            self.logger.error(f"Failed to link parent {parent_id} to student {student_id}: {str(e)}")
            return False

    def get_student_by_id(self, student_id: int) -> Optional[Dict[str, Any]]:
        """
        Get a student with account and class details by row ID.

        Args:
            student_id (int): Student row ID

        Returns:
            Dict[str, Any]: Student profile or None
        """
        try:
            return self.db.execute_query(
                self._profile_query("s.id = ?"),
                (student_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get student {student_id}: {str(e)}")
            return None

    def get_student_by_visible_id(self, visible_id: str,
                                  active_only: bool = True) -> Optional[Dict[str, Any]]:
        """
        Get a student by the ID printed on the card.

        Args:
            visible_id (str): Student ID
            active_only (bool): Ignore withdrawn students

        Returns:
            Dict[str, Any]: Student profile or None
        """
        try:
            condition = "s.student_id = ?"
            if active_only:
                condition += " AND s.status = 'active'"
            return self.db.execute_query(
                self._profile_query(condition),
                (visible_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get student {visible_id}: {str(e)}")
            return None

    def get_teacher_by_employee_id(self, employee_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.db.execute_query(
                """SELECT t.*, u.full_name, u.email, u.phone
                   FROM teachers t
                   JOIN users u ON t.user_id = u.id
                   WHERE t.employee_id = ? AND t.status = 'active'""",
                (employee_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get teacher {employee_id}: {str(e)}")
            return None

    def get_students_by_class(self, class_id: int) -> List[Dict[str, Any]]:
        """
        Get the active students of a class ordered by roll number.

        Args:
            class_id (int): Class row ID

        Returns:
            List[Dict[str, Any]]: Student profiles
        """
        try:
            return self.db.execute_query(
                self._profile_query("s.class_id = ? AND s.status = 'active'")
                + " ORDER BY s.roll_number, u.full_name",
                (class_id,)
            )
        except Exception as e:
            self.logger.error(f"Failed to get students for class {class_id}: {str(e)}")
            return []

    def get_class(self, class_id: int) -> Optional[Dict[str, Any]]:
        try:
            return self.db.execute_query(
                "SELECT * FROM classes WHERE id = ?",
                (class_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get class {class_id}: {str(e)}")
            return None

    def get_children_of_parent_user(self, user_id: int) -> List[Dict[str, Any]]:
        """Students linked to the parent who owns this login."""
        try:
            return self.db.execute_query(
                self._profile_query(
                    """s.id IN (SELECT sp.student_id FROM student_parents sp
                                JOIN parents p ON sp.parent_id = p.id
                                WHERE p.user_id = ?)"""
                ),
                (user_id,)
            )
        except Exception as e:
            self.logger.error(f"Failed to get children for parent user {user_id}: {str(e)}")
            return []

    def get_student_by_user_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        try:
            return self.db.execute_query(
                self._profile_query("s.user_id = ?"),
                (user_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get student for user {user_id}: {str(e)}")
            return None

    def get_student_count(self) -> int:
        try:
            result = self.db.execute_query(
                "SELECT COUNT(*) as count FROM students WHERE status = 'active'",
                fetch_all=False
            )
            return result['count'] if result else 0
        except Exception as e:
            self.logger.error(f"Failed to get student count: {str(e)}")
            return 0

    @staticmethod
    def format_class_name(name: Optional[str], section: Optional[str]) -> str:
        """Render "Class 5 - A" style names; "Unassigned" without a class."""
        if not name:
            return 'Unassigned'
        return f"{name} - {section}" if section else name

    @staticmethod
    def _profile_query(condition: str) -> str:
        return f"""
            SELECT s.*, u.full_name, u.email, u.phone,
                   c.name AS class_name, c.section AS class_section
            FROM students s
            JOIN users u ON s.user_id = u.id
            LEFT JOIN classes c ON s.class_id = c.id
            WHERE {condition}
        """

    def _validate_student_data(self, student_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate student data.

        Args:
            student_data (Dict[str, Any]): Student data to validate

        Returns:
            Dict[str, Any]: Validation result
        """
        student_id = student_data['student_id']
        if not re.match(r'^[A-Za-z0-9-]{3,20}$', student_id):
            return {'valid': False, 'error': 'Student ID must be 3-20 letters, digits or hyphens'}

        if len(student_data['full_name'].strip()) < 2:
            return {'valid': False, 'error': 'Full name must be at least 2 characters'}

        if student_data.get('class_id') and not self.get_class(student_data['class_id']):
            return {'valid': False, 'error': 'Class not found'}

        if student_data.get('email'):
            if not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', student_data['email']):
                return {'valid': False, 'error': 'Invalid email address format'}

        return {'valid': True}
