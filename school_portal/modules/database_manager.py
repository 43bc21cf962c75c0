"""
Database Manager Module - School Portal

This module handles all database operations for the school portal.
It owns the SQLite schema for accounts, classes, students, guardians,
attendance and the fee ledger, and exposes a small query interface with
transaction support to the other managers.

Features:
- SQLite connection management (thread-local connections)
- Idempotent schema creation with default data
- Query/update helpers returning plain dictionaries
- Transaction context manager with rollback on error
- System settings storage
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
from werkzeug.security import generate_password_hash
import os

MEMORY_DATABASE = ':memory:'


class DatabaseManager:
    """
    Database management class for the school portal.
    Handles connection management, schema creation and data access with
    transaction support.
    """

    def __init__(self, db_path):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file, or ':memory:'
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._shared_connection = None
        self._shared_lock = threading.RLock()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if self.db_path != MEMORY_DATABASE and directory:
            os.makedirs(directory, exist_ok=True)

        # Initialize database schema if it doesn't exist
        self.initialize_database()

    def _connect(self):
        connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0
        )
        connection.row_factory = sqlite3.Row
        # Enable foreign key constraints
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    def _current_connection(self):
        # An in-memory database only exists inside one connection, so every
        # thread has to share it.
        if self.db_path == MEMORY_DATABASE:
            if self._shared_connection is None:
                self._shared_connection = self._connect()
            return self._shared_connection

        if not hasattr(self._local, 'connection'):
            self._local.connection = self._connect()
        return self._local.connection

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Connections stay open for reuse within the thread.

        Yields:
            sqlite3.Connection: Database connection object
        """
        connection = self._current_connection()
        try:
            yield connection
        except Exception as e:
            connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all necessary tables and initial data.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                # Accounts for every role; the role is read per request
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        username VARCHAR(50) UNIQUE NOT NULL,
                        password_hash VARCHAR(255) NOT NULL,
                        full_name VARCHAR(100) NOT NULL,
                        email VARCHAR(100),
                        phone VARCHAR(20),
                        role VARCHAR(20) NOT NULL DEFAULT 'student',
                        sms_notifications_enabled BOOLEAN DEFAULT 0,
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        CHECK (role IN ('admin', 'teacher', 'student', 'parent'))
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS teachers (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        employee_id VARCHAR(20) UNIQUE NOT NULL,
                        user_id INTEGER NOT NULL,
                        designation VARCHAR(100),
                        status VARCHAR(20) DEFAULT 'active',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (user_id) REFERENCES users(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS classes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name VARCHAR(50) NOT NULL,
                        section VARCHAR(10),
                        class_teacher_id INTEGER,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (class_teacher_id) REFERENCES teachers(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS students (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id VARCHAR(20) UNIQUE NOT NULL,
                        user_id INTEGER NOT NULL,
                        class_id INTEGER,
                        father_name VARCHAR(100),
                        roll_number VARCHAR(20),
                        date_of_birth DATE,
                        blood_group VARCHAR(5),
                        address TEXT,
                        status VARCHAR(20) DEFAULT 'active',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (user_id) REFERENCES users(id),
                        FOREIGN KEY (class_id) REFERENCES classes(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS parents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER UNIQUE NOT NULL,
                        occupation VARCHAR(100),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (user_id) REFERENCES users(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS student_parents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        parent_id INTEGER NOT NULL,
                        relationship VARCHAR(20) DEFAULT 'guardian',
                        FOREIGN KEY (student_id) REFERENCES students(id),
                        FOREIGN KEY (parent_id) REFERENCES parents(id),
                        UNIQUE(student_id, parent_id)
                    )
                """)

                # One row per student per day
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        class_id INTEGER,
                        date DATE NOT NULL,
                        status VARCHAR(20) NOT NULL DEFAULT 'present',
                        marked_at TIME,
                        marked_by INTEGER,
                        notes TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES students(id),
                        FOREIGN KEY (class_id) REFERENCES classes(id),
                        FOREIGN KEY (marked_by) REFERENCES users(id),
                        UNIQUE(student_id, date),
                        CHECK (status IN ('present', 'absent', 'late', 'excused'))
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS fee_structures (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name VARCHAR(100) NOT NULL,
                        description TEXT,
                        amount REAL NOT NULL,
                        fee_type VARCHAR(30) DEFAULT 'tuition',
                        due_date DATE,
                        class_id INTEGER,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (class_id) REFERENCES classes(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS student_fees (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        fee_structure_id INTEGER NOT NULL,
                        amount REAL NOT NULL,
                        discount REAL NOT NULL DEFAULT 0,
                        final_amount REAL NOT NULL,
                        due_date DATE NOT NULL,
                        status VARCHAR(20) NOT NULL DEFAULT 'pending',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES students(id),
                        FOREIGN KEY (fee_structure_id) REFERENCES fee_structures(id),
                        CHECK (status IN ('pending', 'partial', 'paid', 'overdue'))
                    )
                """)

                # Append-only
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS fee_payments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_fee_id INTEGER NOT NULL,
                        amount REAL NOT NULL,
                        payment_method VARCHAR(30) NOT NULL DEFAULT 'cash',
                        transaction_id VARCHAR(100),
                        receipt_number VARCHAR(40) UNIQUE NOT NULL,
                        remarks TEXT,
                        payment_date DATE NOT NULL,
                        recorded_by INTEGER,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_fee_id) REFERENCES student_fees(id),
                        FOREIGN KEY (recorded_by) REFERENCES users(id)
                    )
                """)

                # In-app notifications
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        title VARCHAR(200) NOT NULL,
                        message TEXT NOT NULL,
                        type VARCHAR(50) DEFAULT 'info',
                        link VARCHAR(200),
                        is_read BOOLEAN DEFAULT 0,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (user_id) REFERENCES users(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS system_settings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        setting_key VARCHAR(100) UNIQUE NOT NULL,
                        setting_value TEXT,
                        description TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Create indexes for better performance
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_class ON attendance(class_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_student_fees_student ON student_fees(student_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_fee_payments_fee ON fee_payments(student_fee_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)")

                conn.commit()

                # Insert default data if tables are empty
                self._insert_default_data(cursor)
                conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def _insert_default_data(self, cursor):
        """
        Insert the default admin account and system settings.

        Args:
            cursor: Database cursor object
        """
        try:
            cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'")
            if cursor.fetchone()[0] == 0:
                admin_password = generate_password_hash('admin123')
                cursor.execute("""
                    INSERT INTO users (username, password_hash, full_name, email, role)
                    VALUES (?, ?, ?, ?, ?)
                """, ('admin', admin_password, 'System Administrator', 'admin@school.local', 'admin'))

            cursor.execute("SELECT COUNT(*) FROM system_settings")
            if cursor.fetchone()[0] == 0:
                default_settings = [
                    ('school_name', 'The Suffah Public School & College', 'Name printed on documents'),
                    ('late_cutoff', '08:30', 'Arrivals after this time are marked late'),
                    ('scan_debounce_seconds', '3', 'Repeat scans of one ID inside this window are ignored'),
                    ('notification_enabled', '1', 'Enable guardian notifications'),
                    ('export_formats', 'excel,csv,pdf', 'Supported export formats')
                ]

                cursor.executemany("""
                    INSERT INTO system_settings (setting_key, setting_value, description)
                    VALUES (?, ?, ?)
                """, default_settings)

            self.logger.info("Default data inserted successfully")

        except Exception as e:
            self.logger.error(f"Failed to insert default data: {str(e)}")
            raise

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]

                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Last inserted row ID for INSERT, affected row count otherwise
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())
                conn.commit()

                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    def execute_many(self, query, params_list):
        """
        Execute a query multiple times with different parameters.

        Args:
            query (str): SQL query string
            params_list (list): List of parameter tuples

        Returns:
            int: Number of affected rows
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany(query, params_list)
                conn.commit()
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Batch execution failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self, immediate=False):
        """
        Context manager for database transactions with automatic rollback on error.

        Args:
            immediate (bool): Take the write lock up front (BEGIN IMMEDIATE) so a
                read-then-write sequence cannot interleave with another writer

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        lock = self._shared_lock if self.db_path == MEMORY_DATABASE else None
        if lock:
            lock.acquire()
        try:
            with self.get_connection() as conn:
                if immediate and not conn.in_transaction:
                    conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.commit()
                except Exception as e:
                    conn.rollback()
                    self.logger.error(f"Transaction rolled back: {str(e)}")
                    raise
        finally:
            if lock:
                lock.release()

    def get_system_setting(self, key, default_value=None):
        """
        Get a system setting value by key.

        Args:
            key (str): Setting key
            default_value: Default value if setting not found

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except Exception as e:
            self.logger.error(f"Failed to get system setting {key}: {str(e)}")
            return default_value

    def update_system_setting(self, key, value, description=None):
        """
        Update or insert a system setting.

        Args:
            key (str): Setting key
            value (str): Setting value
            description (str): Setting description

        Returns:
            bool: Success status
        """
        try:
            with self.transaction() as conn:
                conn.execute("""
                    INSERT INTO system_settings (setting_key, setting_value, description)
                    VALUES (?, ?, ?)
                    ON CONFLICT(setting_key) DO UPDATE SET
                        setting_value = excluded.setting_value,
                        description = COALESCE(excluded.description, system_settings.description),
                        updated_at = CURRENT_TIMESTAMP
                """, (key, value, description))
                return True

        except Exception as e:
            self.logger.error(f"Failed to update system setting {key}: {str(e)}")
            return False

    def close_all_connections(self):
        """Close the database connections owned by this manager."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
            if self._shared_connection is not None:
                self._shared_connection.close()
                self._shared_connection = None
        except Exception as e:
            self.logger.error(f"Error closing connections: {str(e)}")
