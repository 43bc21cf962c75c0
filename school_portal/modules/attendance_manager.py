"""
Attendance Manager Module - School Portal

This module records daily attendance, either from an ID-card scan or from a
teacher's manual entry. A student has at most one attendance row per day;
the row is created once and afterwards only changes through an explicit
edit.

Features:
- Scan processing for students (recorded) and teachers (logged check-in)
- On-time / late classification against a daily cutoff
- Repeat-scan debounce per identifier
- Manual and whole-class marking
- Explicit status edits
- Daily summaries, absence lists and monthly class sheets
"""

from datetime import datetime, date, time, timedelta
import calendar
import logging
import sqlite3
import threading
import time as time_module
from typing import Dict, List, Optional, Any, Callable, Union
from dataclasses import dataclass

STATUS_PRESENT = 'present'
STATUS_LATE = 'late'
STATUS_ABSENT = 'absent'
STATUS_EXCUSED = 'excused'
VALID_STATUSES = (STATUS_PRESENT, STATUS_ABSENT, STATUS_LATE, STATUS_EXCUSED)

# Scan outcomes reported to the scanner screen
SCAN_ALREADY_MARKED = 'already_marked'
SCAN_ERROR = 'error'

DEFAULT_LATE_CUTOFF = time(8, 30)
DEFAULT_SCAN_DEBOUNCE_SECONDS = 3.0

DateLike = Union[date, str, None]


@dataclass
class AttendanceRecord:
    """Data class for attendance record structure."""
    id: Optional[int]
    student_id: int
    class_id: Optional[int]
    date: str
    status: str
    marked_by: Optional[int]
    marked_at: Optional[str] = None
    notes: Optional[str] = None


def resolve_attendance_status(moment: datetime, cutoff: time = DEFAULT_LATE_CUTOFF) -> str:
    """
    Classify an arrival as present or late.

    The cutoff itself counts as on time, so 08:30:00 is present and
    08:30:01 is late.

    Args:
        moment (datetime): Local time of the scan or entry
        cutoff (time): Latest on-time arrival

    Returns:
        str: 'present' or 'late'
    """
    return STATUS_LATE if moment.time() > cutoff else STATUS_PRESENT


def parse_cutoff(value: Union[str, time, None], default: time = DEFAULT_LATE_CUTOFF) -> time:
    """Parse an 'HH:MM' or 'HH:MM:SS' setting into a time."""
    if isinstance(value, time):
        return value
    if not value:
        return default
    for fmt in ('%H:%M:%S', '%H:%M'):
        try:
            return datetime.strptime(value.strip(), fmt).time()
        except ValueError:
            continue
    return default


def as_date_string(value: DateLike, default: Optional[date] = None) -> str:
    """Normalise a date or ISO string to 'YYYY-MM-DD'."""
    if value is None:
        value = default or date.today()
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value).strip()).isoformat()


class ScanDebouncer:
    """
    Drops repeat reads of the same identifier inside a short window.

    A camera keeps decoding the same card for as long as it is held up, so
    the scanner ignores the same ID for a few seconds after processing it.
    This only reduces noise; the attendance table's unique (student, date)
    constraint is what guarantees a single row.
    """

    def __init__(self, window_seconds: float = 3.0, clock: Callable[[], float] = None):
        self.window_seconds = window_seconds
        self._clock = clock or time_module.monotonic
        self._last_processed: Dict[str, float] = {}
        self._lock = threading.Lock()

    def should_process(self, identifier: str, now: float = None) -> bool:
        """
        Decide whether a read should be processed.

        Args:
            identifier (str): Scanned ID
            now (float): Clock reading in seconds (defaults to the monotonic clock)

        Returns:
            bool: False if the same ID was processed less than window_seconds ago
        """
        if now is None:
            now = self._clock()

        with self._lock:
            last = self._last_processed.get(identifier)
            if last is not None and now - last < self.window_seconds:
                return False
            self._last_processed[identifier] = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_processed.clear()


class AttendanceManager:
    """
    Attendance recording and reporting.
    """

    def __init__(self, database_manager, student_manager, late_cutoff: Union[str, time, None] = None,
                 clock: Callable[[], datetime] = None):
        """
        Initialize the attendance manager.

        Args:
            database_manager: Database manager instance
            student_manager: StudentManager used for ID lookups
            late_cutoff: Overrides the 'late_cutoff' system setting (time or 'HH:MM')
            clock: Returns the current local datetime
        """
        self.db = database_manager
        self.students = student_manager
        self.logger = logging.getLogger(__name__)
        self.clock = clock or datetime.now

        self.late_cutoff = parse_cutoff(late_cutoff)
        self.scan_debounce_seconds = DEFAULT_SCAN_DEBOUNCE_SECONDS
        self._load_system_settings(load_cutoff=not late_cutoff)

    def _load_system_settings(self, load_cutoff: bool = True):
        """Load attendance-related system settings from database."""
        try:
            if load_cutoff:
                self.late_cutoff = parse_cutoff(self.db.get_system_setting('late_cutoff', '08:30'))
            self.scan_debounce_seconds = float(
                self.db.get_system_setting('scan_debounce_seconds', DEFAULT_SCAN_DEBOUNCE_SECONDS)
            )
            self.logger.info(f"Attendance late cutoff set to {self.late_cutoff.strftime('%H:%M')}")
        except Exception as e:
            self.logger.error(f"Failed to load system settings: {str(e)}")

    def process_scan(self, identifier: str, scanned_by: Optional[int] = None,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Process an ID read from the scanner or typed in manually.

        Students get today's attendance row (present or late); a second scan
        on the same day reports the existing status and changes nothing.
        Teachers are checked in without a stored row.

        Args:
            identifier (str): Student ID or teacher employee ID
            scanned_by (int): User operating the scanner
            now (datetime): Scan time (defaults to the clock)

        Returns:
            Dict[str, Any]: Scan result with 'status' in present, late,
            already_marked or error
        """
        now = now or self.clock()
        identifier = str(identifier or '').strip()

        try:
            if not identifier:
                return self._scan_error('No identifier provided', 'missing_identifier', identifier, now)

            student = self.students.get_student_by_visible_id(identifier)
            if student:
                return self._mark_scanned_student(student, scanned_by, now)

            teacher = self.students.get_teacher_by_employee_id(identifier)
            if teacher:
                self.logger.info(f"Teacher checked in: {teacher['employee_id']} at {now.strftime('%H:%M:%S')}")
                return {
                    'success': True,
                    'status': STATUS_PRESENT,
                    'user_type': 'teacher',
                    'message': f"{teacher['full_name']} checked in",
                    'person': {
                        'id': teacher['id'],
                        'visible_id': teacher['employee_id'],
                        'name': teacher['full_name'],
                        'class_name': 'Teacher'
                    },
                    'timestamp': now.isoformat(timespec='seconds')
                }

            self.logger.warning(f"Scan rejected, unknown identifier: {identifier}")
            return self._scan_error(
                f"No active student or teacher found with ID: {identifier}",
                'not_found', identifier, now
            )

        except Exception as e:
            self.logger.error(f"Attendance scan processing failed: {str(e)}")
            return self._scan_error('An error occurred while processing the scan', 'system_error', identifier, now)

    def _mark_scanned_student(self, student: Dict[str, Any], scanned_by: Optional[int],
                              now: datetime) -> Dict[str, Any]:
        status = resolve_attendance_status(now, self.late_cutoff)
        result = self._insert_attendance(
            student, status, scanned_by, now.date().isoformat(),
            marked_at=now.strftime('%H:%M:%S')
        )
        result['user_type'] = 'student'
        result['timestamp'] = now.isoformat(timespec='seconds')
        return result

    def mark_attendance(self, student_id: int, status: str, marked_by: Optional[int] = None,
                        attendance_date: DateLike = None, class_id: Optional[int] = None,
                        notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Record a teacher's manual entry for one student.

        Args:
            student_id (int): Student row ID
            status (str): present, absent, late or excused
            marked_by (int): Teacher user ID
            attendance_date: Day being marked (defaults to today)
            class_id (int): Overrides the student's current class
            notes (str): Free-text remark

        Returns:
            Dict[str, Any]: Marking result
        """
        try:
            if status not in VALID_STATUSES:
                return {'success': False, 'status': SCAN_ERROR, 'error_type': 'invalid_status',
                        'message': f'Invalid attendance status: {status}'}

            student = self.students.get_student_by_id(student_id)
            if not student:
                return {'success': False, 'status': SCAN_ERROR, 'error_type': 'not_found',
                        'message': 'Student not found'}

            day = as_date_string(attendance_date, self.clock().date())
            if class_id is not None:
                student = dict(student, class_id=class_id)

            return self._insert_attendance(
                student, status, marked_by, day,
                marked_at=self.clock().strftime('%H:%M:%S'), notes=notes
            )

        except ValueError:
            return {'success': False, 'status': SCAN_ERROR, 'error_type': 'invalid_date',
                    'message': f'Invalid date: {attendance_date}'}
        except Exception as e:
            self.logger.error(f"Manual attendance failed for student {student_id}: {str(e)}")
            return {'success': False, 'status': SCAN_ERROR, 'error_type': 'system_error',
                    'message': 'Failed to record attendance'}

    def mark_class_attendance(self, class_id: int, entries: List[Dict[str, Any]],
                              marked_by: Optional[int] = None,
                              attendance_date: DateLike = None) -> Dict[str, Any]:
        """
        Mark a whole class from a register.

        Args:
            class_id (int): Class row ID
            entries (List[Dict]): Items of {'student_id': int, 'status': str, 'notes': str}
            marked_by (int): Teacher user ID
            attendance_date: Day being marked

        Returns:
            Dict[str, Any]: Counts plus per-student outcomes
        """
        results = {
            'success': True,
            'class_id': class_id,
            'marked': 0,
            'already_marked': [],
            'errors': []
        }

        for entry in entries:
            outcome = self.mark_attendance(
                entry.get('student_id'), entry.get('status'), marked_by,
                attendance_date, class_id, entry.get('notes')
            )
            if outcome['success']:
                results['marked'] += 1
            elif outcome['status'] == SCAN_ALREADY_MARKED:
                results['already_marked'].append(entry.get('student_id'))
            else:
                results['errors'].append({'student_id': entry.get('student_id'),
                                          'error': outcome['message']})

        if results['errors']:
            results['success'] = False

        self.logger.info(f"Class {class_id} register: {results['marked']} marked, "
                         f"{len(results['already_marked'])} already marked, {len(results['errors'])} errors")
        return results

    def _insert_attendance(self, student: Dict[str, Any], status: str, marked_by: Optional[int],
                           day: str, marked_at: Optional[str] = None,
                           notes: Optional[str] = None) -> Dict[str, Any]:
        person = {
            'id': student['id'],
            'visible_id': student['student_id'],
            'name': student['full_name'],
            'class_name': self.students.format_class_name(student.get('class_name'),
                                                          student.get('class_section'))
        }

        existing = self.get_attendance_record(student['id'], day)
        if existing:
            return self._already_marked(person, existing)

        try:
            attendance_id = self.db.execute_update(
                """INSERT INTO attendance (student_id, class_id, date, status, marked_at, marked_by, notes)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (student['id'], student.get('class_id'), day, status, marked_at, marked_by, notes)
            )
        except sqlite3.IntegrityError:
            # Another scanner inserted the row between our check and insert
            existing = self.get_attendance_record(student['id'], day)
            if existing:
                return self._already_marked(person, existing)
            raise

        self.logger.info(f"Attendance recorded: student {student['student_id']}, {day}, status {status}")

        return {
            'success': True,
            'status': status,
            'message': f"{person['name']} marked {status}",
            'person': person,
            'attendance': {
                'id': attendance_id,
                'date': day,
                'time': marked_at,
                'status': status
            }
        }

    def _already_marked(self, person: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'success': False,
            'status': SCAN_ALREADY_MARKED,
            'error_type': 'duplicate',
            'message': f"{person['name']} was already marked {existing['status']} today",
            'person': person,
            'existing_record': existing
        }

    def _scan_error(self, message: str, error_type: str, identifier: str,
                    now: datetime) -> Dict[str, Any]:
        return {
            'success': False,
            'status': SCAN_ERROR,
            'error_type': error_type,
            'message': message,
            'person': {'visible_id': identifier, 'name': 'Unknown', 'class_name': '-'},
            'timestamp': now.isoformat(timespec='seconds')
        }

    def get_attendance_record(self, student_id: int, attendance_date: DateLike) -> Optional[Dict[str, Any]]:
        """
        Get a student's attendance row for one day.

        Args:
            student_id (int): Student row ID
            attendance_date: Day to look up

        Returns:
            Dict[str, Any]: Attendance row or None
        """
        return self.db.execute_query(
            "SELECT * FROM attendance WHERE student_id = ? AND date = ?",
            (student_id, as_date_string(attendance_date)),
            fetch_all=False
        )

    def update_attendance_status(self, attendance_id: int, new_status: str,
                                 notes: str = None, updated_by: int = None) -> bool:
        """
        Explicitly edit an attendance record.

        Args:
            attendance_id (int): Attendance record ID
            new_status (str): New attendance status
            notes (str): Optional notes
            updated_by (int): ID of user making the update

        Returns:
            bool: Success status
        """
        try:
            if new_status not in VALID_STATUSES:
                self.logger.error(f"Invalid attendance status: {new_status}")
                return False

            affected_rows = self.db.execute_update(
                """UPDATE attendance
                   SET status = ?, notes = COALESCE(?, notes),
                       marked_by = COALESCE(?, marked_by),
                       updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (new_status, notes, updated_by, attendance_id)
            )

            if affected_rows > 0:
                self.logger.info(f"Attendance record {attendance_id} updated to {new_status} by {updated_by}")
                return True

            self.logger.warning(f"No attendance record found with ID: {attendance_id}")
            return False

        except Exception as e:
            self.logger.error(f"Failed to update attendance status: {str(e)}")
            return False

    def get_daily_summary(self, attendance_date: DateLike = None) -> Dict[str, Any]:
        """
        Get the status breakdown for one day.

        Args:
            attendance_date: Day to summarise (defaults to today)

        Returns:
            Dict[str, Any]: Counts per status plus unmarked students
        """
        day = as_date_string(attendance_date, self.clock().date())
        summary = {'date': day, 'total_marked': 0, 'total_students': 0, 'unmarked': 0}
        summary.update({status: 0 for status in VALID_STATUSES})

        try:
            rows = self.db.execute_query(
                "SELECT status, COUNT(*) AS count FROM attendance WHERE date = ? GROUP BY status",
                (day,)
            )
            for row in rows:
                summary[row['status']] = row['count']
                summary['total_marked'] += row['count']

            summary['total_students'] = self.students.get_student_count()
            summary['unmarked'] = max(0, summary['total_students'] - summary['total_marked'])
            return summary

        except Exception as e:
            self.logger.error(f"Failed to get attendance summary for {day}: {str(e)}")
            return summary

    def get_absent_students(self, attendance_date: DateLike = None) -> List[Dict[str, Any]]:
        """
        List students marked absent on a day, with class names.

        Args:
            attendance_date: Day to check (defaults to today)

        Returns:
            List[Dict[str, Any]]: Absent students
        """
        day = as_date_string(attendance_date, self.clock().date())
        try:
            return self.db.execute_query(
                """SELECT a.id AS attendance_id, a.date, a.class_id,
                          s.id AS student_pk, s.student_id, s.user_id,
                          u.full_name AS student_name,
                          c.name AS class_name, c.section AS class_section
                   FROM attendance a
                   JOIN students s ON a.student_id = s.id
                   JOIN users u ON s.user_id = u.id
                   LEFT JOIN classes c ON a.class_id = c.id
                   WHERE a.date = ? AND a.status = 'absent'
                   ORDER BY c.name, u.full_name""",
                (day,)
            )
        except Exception as e:
            self.logger.error(f"Failed to get absent students for {day}: {str(e)}")
            return []

    def get_student_attendance(self, student_id: int, start_date: DateLike = None,
                               end_date: DateLike = None) -> Dict[str, Any]:
        """
        Get a student's attendance history with statistics.

        Args:
            student_id (int): Student row ID
            start_date: First day (defaults to 30 days ago)
            end_date: Last day (defaults to today)

        Returns:
            Dict[str, Any]: Records and counts; attendance_rate counts late as attended
        """
        today = self.clock().date()
        start = as_date_string(start_date, today - timedelta(days=30))
        end = as_date_string(end_date, today)

        try:
            records = self.db.execute_query(
                """SELECT * FROM attendance
                   WHERE student_id = ? AND date BETWEEN ? AND ?
                   ORDER BY date DESC""",
                (student_id, start, end)
            )

            counts = {status: 0 for status in VALID_STATUSES}
            for record in records:
                counts[record['status']] += 1

            attended = counts[STATUS_PRESENT] + counts[STATUS_LATE]
            rate = round(attended / len(records) * 100, 1) if records else 0.0

            return {
                'student_id': student_id,
                'date_range': {'start_date': start, 'end_date': end},
                'records': records,
                'statistics': dict(counts, total=len(records), attendance_rate=rate)
            }

        except Exception as e:
            self.logger.error(f"Failed to get attendance history for student {student_id}: {str(e)}")
            return {'student_id': student_id, 'records': [], 'statistics': {}, 'error': str(e)}

    def get_class_attendance_month(self, class_id: int, year: int, month: int) -> Dict[str, Any]:
        """
        Build the monthly register grid for a class.

        Args:
            class_id (int): Class row ID
            year (int): Calendar year
            month (int): Calendar month (1-12)

        Returns:
            Dict[str, Any]: Class info, the days of the month and one entry
            per student mapping ISO dates to statuses
        """
        days_in_month = calendar.monthrange(year, month)[1]
        days = [date(year, month, day).isoformat() for day in range(1, days_in_month + 1)]

        class_info = self.students.get_class(class_id) or {}
        students = self.students.get_students_by_class(class_id)

        rows = self.db.execute_query(
            """SELECT student_id, date, status FROM attendance
               WHERE class_id = ? AND date BETWEEN ? AND ?""",
            (class_id, days[0], days[-1])
        )

        by_student: Dict[int, Dict[str, str]] = {}
        for row in rows:
            by_student.setdefault(row['student_id'], {})[row['date']] = row['status']

        return {
            'class_id': class_id,
            'class_name': class_info.get('name'),
            'section': class_info.get('section'),
            'year': year,
            'month': month,
            'days': days,
            'students': [
                {
                    'id': student['id'],
                    'student_id': student['student_id'],
                    'student_name': student['full_name'],
                    'father_name': student.get('father_name'),
                    'roll_number': student.get('roll_number'),
                    'attendance': by_student.get(student['id'], {})
                }
                for student in students
            ]
        }
