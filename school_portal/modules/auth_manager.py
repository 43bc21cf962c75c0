"""
Authentication Manager Module - School Portal

This module handles user authentication and role-based authorization for
the school portal. Roles are admin, teacher, student and parent; the role
is read from the database on every request so that a role change takes
effect without waiting for the session to expire.

Features:
- Password hashing and verification (werkzeug)
- Account creation with validation
- Per-request role lookup
- Role permission map
- Login attempt tracking and lockout
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
import logging
import re


class AuthManager:
    """
    Authentication and authorization manager.
    Handles login, account creation and role checks.
    """

    ROLES = ('admin', 'teacher', 'student', 'parent')

    PERMISSIONS = {
        'admin': [
            'manage_users', 'manage_students', 'manage_classes', 'manage_fees',
            'record_payments', 'mark_attendance', 'scan_attendance', 'edit_attendance',
            'send_notifications', 'generate_documents', 'view_reports'
        ],
        'teacher': [
            'mark_attendance', 'scan_attendance', 'edit_attendance',
            'send_notifications', 'generate_documents', 'view_reports'
        ],
        'student': [
            'view_own_attendance', 'view_own_fees', 'view_notifications'
        ],
        'parent': [
            'view_child_attendance', 'view_child_fees', 'view_notifications'
        ]
    }

    def __init__(self, database_manager, password_min_length: int = 6,
                 max_login_attempts: int = 5, lockout_minutes: int = 15):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            password_min_length (int): Minimum accepted password length
            max_login_attempts (int): Failed attempts before lockout
            lockout_minutes (int): Lockout duration
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.security_config = {
            'password_min_length': password_min_length,
            'max_login_attempts': max_login_attempts,
            'lockout_duration_minutes': lockout_minutes
        }

        # Failed login attempts tracking, keyed by username
        self.failed_attempts = {}

    def authenticate_user(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate user with username and password.

        Args:
            username (str): Username
            password (str): Password

        Returns:
            Dict[str, Any]: User information if authenticated, None otherwise
        """
        try:
            if self._is_account_locked(username):
                self.logger.warning(f"Authentication attempt for locked account: {username}")
                return None

            user = self.db.execute_query(
                "SELECT * FROM users WHERE username = ? AND is_active = 1",
                (username,),
                fetch_all=False
            )

            if not user or not check_password_hash(user['password_hash'], password):
                self._record_failed_attempt(username)
                self.logger.warning(f"Authentication failed for username: {username}")
                return None

            self.failed_attempts.pop(username, None)

            self.logger.info(f"User authenticated successfully: {username}")

            return {
                'id': user['id'],
                'username': user['username'],
                'full_name': user['full_name'],
                'email': user['email'],
                'role': user['role'],
                'permissions': self.get_user_permissions(user['role'])
            }

        except Exception as e:
            self.logger.error(f"Authentication error for user {username}: {str(e)}")
            return None

    def create_user(self, username: str, password: str, full_name: str,
                    role: str = 'student', email: str = None, phone: str = None,
                    sms_notifications_enabled: bool = False) -> Dict[str, Any]:
        """
        Create a new user account.

        Args:
            username (str): Username
            password (str): Password
            full_name (str): Full name
            role (str): One of admin, teacher, student, parent
            email (str): Email address
            phone (str): Phone number in international format
            sms_notifications_enabled (bool): Guardian opted in to SMS

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            validation_result = self._validate_user_data(username, password, email, role)
            if not validation_result['valid']:
                return {
                    'success': False,
                    'error': validation_result['error']
                }

            existing_user = self.db.execute_query(
                "SELECT id FROM users WHERE username = ?",
                (username,),
                fetch_all=False
            )

            if existing_user:
                return {
                    'success': False,
                    'error': 'Username already exists'
                }

            user_id = self.db.execute_update(
                """INSERT INTO users (username, password_hash, full_name, email, phone,
                                      role, sms_notifications_enabled)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (username, generate_password_hash(password), full_name, email, phone,
                 role, 1 if sms_notifications_enabled else 0)
            )

            self.logger.info(f"User created successfully: {username} (ID: {user_id}, role: {role})")

            return {
                'success': True,
                'user_id': user_id,
                'username': username,
                'message': 'User account created successfully'
            }

        except Exception as e:
            self.logger.error(f"User creation failed for {username}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create user account'
            }

    def get_user_role(self, user_id: int) -> Optional[str]:
        """
        Look up the current role of an active user.

        Args:
            user_id (int): User ID

        Returns:
            str: Role name, or None for unknown or inactive users
        """
        try:
            row = self.db.execute_query(
                "SELECT role FROM users WHERE id = ? AND is_active = 1",
                (user_id,),
                fetch_all=False
            )
            return row['role'] if row else None

        except Exception as e:
            self.logger.error(f"Failed to look up role for user {user_id}: {str(e)}")
            return None

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Get an account without its password hash."""
        try:
            return self.db.execute_query(
                """SELECT id, username, full_name, email, phone, role,
                          sms_notifications_enabled, is_active
                   FROM users WHERE id = ?""",
                (user_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get user {user_id}: {str(e)}")
            return None

    def get_user_permissions(self, role: str) -> List[str]:
        return self.PERMISSIONS.get(role, [])

    def has_permission(self, role: str, permission: str) -> bool:
        return permission in self.get_user_permissions(role)

    def set_sms_preference(self, user_id: int, enabled: bool) -> bool:
        """
        Update a guardian's SMS opt-in.

        Args:
            user_id (int): User ID
            enabled (bool): New preference

        Returns:
            bool: Success status
        """
        try:
            affected_rows = self.db.execute_update(
                """UPDATE users SET sms_notifications_enabled = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (1 if enabled else 0, user_id)
            )
            return affected_rows > 0
        except Exception as e:
            self.logger.error(f"Failed to update SMS preference for user {user_id}: {str(e)}")
            return False

    def deactivate_user(self, user_id: int, deactivated_by: int = None) -> bool:
        """
        Deactivate user account.

        Args:
            user_id (int): User ID to deactivate
            deactivated_by (int): ID of user performing deactivation

        Returns:
            bool: Success status
        """
        try:
            affected_rows = self.db.execute_update(
                "UPDATE users SET is_active = 0, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (user_id,)
            )

            if affected_rows > 0:
                self.logger.info(f"User {user_id} deactivated by {deactivated_by}")
                return True

            return False

        except Exception as e:
            self.logger.error(f"Failed to deactivate user {user_id}: {str(e)}")
            return False

    def _validate_user_data(self, username: str, password: str, email: Optional[str],
                            role: str) -> Dict[str, Any]:
        """
        Validate user registration data.

        Returns:
            Dict[str, Any]: Validation result
        """
        if not username or len(username) < 3:
            return {'valid': False, 'error': 'Username must be at least 3 characters long'}

        if not re.match(r'^[a-zA-Z0-9_.-]+$', username):
            return {'valid': False, 'error': 'Username can only contain letters, numbers, dots, hyphens, and underscores'}

        if role not in self.ROLES:
            return {'valid': False, 'error': f'Unknown role: {role}'}

        if not password or len(password) < self.security_config['password_min_length']:
            return {'valid': False, 'error': f'Password must be at least {self.security_config["password_min_length"]} characters long'}

        if email and not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', email):
            return {'valid': False, 'error': 'Invalid email address format'}

        return {'valid': True}

    def _is_account_locked(self, username: str) -> bool:
        attempts = self.failed_attempts.get(username)
        if not attempts:
            return False

        window_start = datetime.now() - timedelta(minutes=self.security_config['lockout_duration_minutes'])
        recent = [moment for moment in attempts if moment > window_start]
        self.failed_attempts[username] = recent
        return len(recent) >= self.security_config['max_login_attempts']

    def _record_failed_attempt(self, username: str) -> None:
        self.failed_attempts.setdefault(username, []).append(datetime.now())
