"""
Fee Ledger Module - School Portal

This module keeps the fee accounts: fee structures, the fees assigned to
each student, and the payments recorded against them. Payments are
append-only; a fee's paid-to-date is the sum of its payments and its status
is recomputed from that sum every time a payment is recorded.

Features:
- Fee structures and per-student assignment with discounts
- Transactional payment recording with receipt numbers
- Balance and status calculation
- Overdue sweep for payment reminders
- Receipt data and collection statistics
"""

from datetime import datetime, date
from dataclasses import dataclass, asdict
import logging
import secrets
from typing import Dict, List, Optional, Any, Iterable, Union

STATUS_PENDING = 'pending'
STATUS_PARTIAL = 'partial'
STATUS_PAID = 'paid'
STATUS_OVERDUE = 'overdue'
FEE_STATUSES = (STATUS_PENDING, STATUS_PARTIAL, STATUS_PAID, STATUS_OVERDUE)

PAYMENT_METHODS = ('cash', 'bank_transfer', 'cheque', 'card', 'online')
FEE_TYPES = ('tuition', 'admission', 'exam', 'transport', 'library', 'sports', 'other')


@dataclass(frozen=True)
class FeeBalance:
    """Paid-to-date, outstanding balance and derived status of one fee."""
    paid: float
    balance: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_date(value: Union[date, str, None]) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def calculate_fee_balance(final_amount: float, payments: Iterable[float],
                          due_date: Union[date, str, None] = None,
                          today: Optional[date] = None) -> FeeBalance:
    """
    Derive a fee's balance and status from its payments.

    A fully covered fee is paid; a partly covered one is partial even after
    its due date; an untouched fee is overdue once the due date has passed
    and pending until then.

    Args:
        final_amount (float): Amount due after discount
        payments (Iterable[float]): Payment amounts recorded against the fee
        due_date: Due date of the fee
        today (date): Reference day (defaults to today)

    Returns:
        FeeBalance: paid, balance (never negative) and status
    """
    paid = round(sum(float(amount) for amount in payments), 2)
    outstanding = round(float(final_amount) - paid, 2)

    if outstanding <= 0:
        status = STATUS_PAID
    elif paid > 0:
        status = STATUS_PARTIAL
    else:
        due = _as_date(due_date)
        today = today or date.today()
        status = STATUS_OVERDUE if due is not None and due < today else STATUS_PENDING

    return FeeBalance(paid=paid, balance=max(0.0, outstanding), status=status)


def generate_receipt_number(moment: Optional[datetime] = None) -> str:
    """Receipt numbers look like RCP-1718000000000-3F9A."""
    moment = moment or datetime.now()
    millis = int(moment.timestamp() * 1000)
    return f"RCP-{millis}-{secrets.token_hex(2).upper()}"


class FeeLedger:
    """
    Fee structures, student fees and payments.
    """

    def __init__(self, database_manager):
        """
        Initialize the fee ledger.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def create_fee_structure(self, name: str, amount: float, fee_type: str = 'tuition',
                             due_date: Union[date, str, None] = None, class_id: Optional[int] = None,
                             description: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a fee structure that can be assigned to students.

        Args:
            name (str): Fee name, e.g. "Tuition Fee - March"
            amount (float): Full amount before discounts
            fee_type (str): Category of the fee
            due_date: Default due date for assignments
            class_id (int): Class the structure applies to, if any
            description (str): Free text

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            if not name or not name.strip():
                return {'success': False, 'error': 'Fee name is required', 'error_type': 'validation'}

            amount = float(amount)
            if amount <= 0:
                return {'success': False, 'error': 'Fee amount must be greater than zero',
                        'error_type': 'validation'}

            if fee_type not in FEE_TYPES:
                return {'success': False, 'error': f'Unknown fee type: {fee_type}',
                        'error_type': 'validation'}

            due = _as_date(due_date)

            structure_id = self.db.execute_update(
                """INSERT INTO fee_structures (name, description, amount, fee_type, due_date, class_id)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (name.strip(), description, round(amount, 2), fee_type,
                 due.isoformat() if due else None, class_id)
            )

            self.logger.info(f"Fee structure created: {name} ({amount:.2f}, ID: {structure_id})")

            return {
                'success': True,
                'fee_structure_id': structure_id,
                'message': 'Fee structure created successfully'
            }

        except (TypeError, ValueError):
            return {'success': False, 'error': 'Invalid amount or due date', 'error_type': 'validation'}
        except Exception as e:
            self.logger.error(f"Fee structure creation failed: {str(e)}")
            return {'success': False, 'error': 'Failed to create fee structure', 'error_type': 'system_error'}

    def get_fee_structure(self, fee_structure_id: int) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM fee_structures WHERE id = ?",
            (fee_structure_id,),
            fetch_all=False
        )

    def assign_fee(self, student_id: int, fee_structure_id: int, discount: float = 0,
                   due_date: Union[date, str, None] = None,
                   today: Optional[date] = None) -> Dict[str, Any]:
        """
        Assign a fee structure to a student.

        The final amount is the structure amount minus the discount. The due
        date falls back to the structure's due date, then to today.

        Args:
            student_id (int): Student row ID
            fee_structure_id (int): Fee structure ID
            discount (float): Discount in currency units
            due_date: Overrides the structure's due date
            today (date): Reference day

        Returns:
            Dict[str, Any]: Assignment result with the stored amounts
        """
        try:
            structure = self.get_fee_structure(fee_structure_id)
            if not structure:
                return {'success': False, 'error': 'Fee structure not found', 'error_type': 'not_found'}

            student = self.db.execute_query(
                "SELECT id FROM students WHERE id = ?",
                (student_id,),
                fetch_all=False
            )
            if not student:
                return {'success': False, 'error': 'Student not found', 'error_type': 'not_found'}

            amount = round(float(structure['amount']), 2)
            discount = round(float(discount or 0), 2)
            if discount < 0 or discount > amount:
                return {'success': False, 'error': 'Discount must be between zero and the fee amount',
                        'error_type': 'validation'}

            final_amount = round(amount - discount, 2)
            due = _as_date(due_date) or _as_date(structure['due_date']) or today or date.today()
            status = calculate_fee_balance(final_amount, [], due, today).status

            student_fee_id = self.db.execute_update(
                """INSERT INTO student_fees (student_id, fee_structure_id, amount, discount,
                                             final_amount, due_date, status)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (student_id, fee_structure_id, amount, discount, final_amount,
                 due.isoformat(), status)
            )

            self.logger.info(f"Fee {structure['name']} assigned to student {student_id}: "
                             f"{final_amount:.2f} due {due.isoformat()}")

            return {
                'success': True,
                'student_fee_id': student_fee_id,
                'student_id': student_id,
                'fee_name': structure['name'],
                'fee_type': structure['fee_type'],
                'amount': amount,
                'discount': discount,
                'final_amount': final_amount,
                'due_date': due.isoformat(),
                'status': status,
                'message': 'Fee assigned successfully'
            }

        except (TypeError, ValueError):
            return {'success': False, 'error': 'Invalid discount or due date', 'error_type': 'validation'}
        except Exception as e:
            self.logger.error(f"Fee assignment failed for student {student_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to assign fee', 'error_type': 'system_error'}

    def record_payment(self, student_fee_id: int, amount: float, payment_method: str = 'cash',
                       transaction_id: Optional[str] = None, remarks: Optional[str] = None,
                       recorded_by: Optional[int] = None,
                       payment_date: Union[date, str, None] = None) -> Dict[str, Any]:
        """
        Record a payment against a student fee.

        The balance check, the payment insert and the status update run in
        one write transaction, so two cashiers cannot both take the last
        instalment of the same fee.

        Args:
            student_fee_id (int): Student fee ID
            amount (float): Amount received
            payment_method (str): cash, bank_transfer, cheque, card or online
            transaction_id (str): Bank or gateway reference
            remarks (str): Free text
            recorded_by (int): Cashier user ID
            payment_date: Day of payment (defaults to today)

        Returns:
            Dict[str, Any]: Payment result with receipt number, paid, balance and status
        """
        try:
            amount = round(float(amount), 2)
        except (TypeError, ValueError):
            return {'success': False, 'error': 'Invalid payment amount', 'error_type': 'validation'}

        if amount <= 0:
            return {'success': False, 'error': 'Payment amount must be greater than zero',
                    'error_type': 'validation'}

        if payment_method not in PAYMENT_METHODS:
            return {'success': False, 'error': f'Unknown payment method: {payment_method}',
                    'error_type': 'validation'}

        try:
            paid_on = _as_date(payment_date) or date.today()
            receipt_number = generate_receipt_number()

            with self.db.transaction(immediate=True) as conn:
                fee = conn.execute(
                    "SELECT * FROM student_fees WHERE id = ?",
                    (student_fee_id,)
                ).fetchone()
                if not fee:
                    return {'success': False, 'error': 'Student fee not found', 'error_type': 'not_found'}

                previous = [row['amount'] for row in conn.execute(
                    "SELECT amount FROM fee_payments WHERE student_fee_id = ?",
                    (student_fee_id,)
                )]
                before = calculate_fee_balance(fee['final_amount'], previous, fee['due_date'])

                if before.balance <= 0:
                    return {'success': False, 'error': 'This fee is already fully paid',
                            'error_type': 'validation'}

                if amount > before.balance:
                    return {'success': False,
                            'error': f'Payment exceeds the outstanding balance of {before.balance:.2f}',
                            'error_type': 'validation'}

                cursor = conn.execute(
                    """INSERT INTO fee_payments (student_fee_id, amount, payment_method, transaction_id,
                                                 receipt_number, remarks, payment_date, recorded_by)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (student_fee_id, amount, payment_method, transaction_id, receipt_number,
                     remarks, paid_on.isoformat(), recorded_by)
                )
                payment_id = cursor.lastrowid

                after = calculate_fee_balance(fee['final_amount'], previous + [amount], fee['due_date'])
                conn.execute(
                    "UPDATE student_fees SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (after.status, student_fee_id)
                )

            self.logger.info(f"Payment {receipt_number} recorded for fee {student_fee_id}: "
                             f"{amount:.2f} via {payment_method}, status {after.status}")

            return {
                'success': True,
                'payment_id': payment_id,
                'student_fee_id': student_fee_id,
                'student_id': fee['student_id'],
                'receipt_number': receipt_number,
                'amount': amount,
                'payment_method': payment_method,
                'paid': after.paid,
                'balance': after.balance,
                'status': after.status,
                'message': 'Payment recorded successfully'
            }

        except ValueError:
            return {'success': False, 'error': 'Invalid payment date', 'error_type': 'validation'}
        except Exception as e:
            self.logger.error(f"Payment recording failed for fee {student_fee_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to record payment', 'error_type': 'system_error'}

    def get_student_fee(self, student_fee_id: int, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """
        Get a student fee with its structure details and computed balance.

        Args:
            student_fee_id (int): Student fee ID
            today (date): Reference day for the overdue check

        Returns:
            Dict[str, Any]: Fee details or None
        """
        try:
            fee = self.db.execute_query(
                self._fee_query("sf.id = ?"),
                (student_fee_id,),
                fetch_all=False
            )
            if not fee:
                return None
            return self._with_balance(fee, self.get_payments(student_fee_id), today)

        except Exception as e:
            self.logger.error(f"Failed to get student fee {student_fee_id}: {str(e)}")
            return None

    def get_student_fees(self, student_id: int, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Get every fee assigned to a student, newest due date first.

        Args:
            student_id (int): Student row ID
            today (date): Reference day for the overdue check

        Returns:
            List[Dict[str, Any]]: Fees with paid, balance and status
        """
        try:
            fees = self.db.execute_query(
                self._fee_query("sf.student_id = ?") + " ORDER BY sf.due_date DESC, sf.id DESC",
                (student_id,)
            )
            return [self._with_balance(fee, self.get_payments(fee['id']), today) for fee in fees]

        except Exception as e:
            self.logger.error(f"Failed to get fees for student {student_id}: {str(e)}")
            return []

    def get_payments(self, student_fee_id: int) -> List[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM fee_payments WHERE student_fee_id = ? ORDER BY id",
            (student_fee_id,)
        )

    def get_receipt_data(self, payment_id: int) -> Optional[Dict[str, Any]]:
        """
        Collect everything printed on a payment receipt.

        Args:
            payment_id (int): Payment ID

        Returns:
            Dict[str, Any]: Payment, fee and student details with the amount
            paid before this payment and the balance left after it
        """
        try:
            payment = self.db.execute_query(
                "SELECT * FROM fee_payments WHERE id = ?",
                (payment_id,),
                fetch_all=False
            )
            if not payment:
                return None

            fee = self.db.execute_query(
                self._fee_query("sf.id = ?"),
                (payment['student_fee_id'],),
                fetch_all=False
            )

            earlier = self.db.execute_query(
                "SELECT amount FROM fee_payments WHERE student_fee_id = ? AND id < ?",
                (payment['student_fee_id'], payment_id)
            )
            previously_paid = round(sum(row['amount'] for row in earlier), 2)
            balance_after = max(0.0, round(fee['final_amount'] - previously_paid - payment['amount'], 2))

            return {
                'payment_id': payment_id,
                'student_pk': fee['student_id'],
                'receipt_number': payment['receipt_number'],
                'payment_date': payment['payment_date'],
                'student_name': fee['student_name'],
                'student_id': fee['student_code'],
                'class_name': fee['class_name'],
                'section': fee['class_section'],
                'fee_name': fee['fee_name'],
                'fee_type': fee['fee_type'],
                'payment_method': payment['payment_method'],
                'transaction_id': payment['transaction_id'],
                'remarks': payment['remarks'],
                'total_amount': fee['final_amount'],
                'previously_paid': previously_paid,
                'amount_paid': payment['amount'],
                'balance': balance_after
            }

        except Exception as e:
            self.logger.error(f"Failed to load receipt data for payment {payment_id}: {str(e)}")
            return None

    def refresh_overdue_fees(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Recompute the status of unpaid fees that are due.

        Every fee that is not paid and is due on or before today is
        returned with its balance and days overdue, so the caller can send
        reminders. Untouched fees past their due date become overdue.

        Args:
            today (date): Reference day (defaults to today)

        Returns:
            List[Dict[str, Any]]: Due fees with balance and days_overdue
        """
        today = today or date.today()
        due_fees = []

        try:
            fees = self.db.execute_query(
                self._fee_query("sf.status != 'paid' AND sf.due_date <= ?") + " ORDER BY sf.due_date",
                (today.isoformat(),)
            )

            updates = []
            for fee in fees:
                fee = self._with_balance(fee, self.get_payments(fee['id']), today)
                if fee['balance'] <= 0:
                    continue

                fee['days_overdue'] = (today - _as_date(fee['due_date'])).days
                if fee['status'] != fee['stored_status']:
                    updates.append((fee['status'], fee['id']))
                due_fees.append(fee)

            if updates:
                self.db.execute_many(
                    "UPDATE student_fees SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    updates
                )

            self.logger.info(f"Overdue sweep for {today.isoformat()}: {len(due_fees)} due, "
                             f"{len(updates)} status changes")
            return due_fees

        except Exception as e:
            self.logger.error(f"Overdue fee refresh failed: {str(e)}")
            return due_fees

    def get_fee_statistics(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Get collection totals across all student fees.

        Status counts use the status derived from each fee's payments and due
        date, so fees past due are counted as overdue before the sweep runs.

        Args:
            today (date): Reference day for the overdue check

        Returns:
            Dict[str, Any]: total billed, collected, outstanding and counts per status
        """
        statistics = {
            'total_billed': 0.0,
            'total_collected': 0.0,
            'total_outstanding': 0.0,
            'status_counts': {status: 0 for status in FEE_STATUSES}
        }

        try:
            billed = self.db.execute_query(
                "SELECT COALESCE(SUM(final_amount), 0) AS total FROM student_fees",
                fetch_all=False
            )
            collected = self.db.execute_query(
                "SELECT COALESCE(SUM(amount), 0) AS total FROM fee_payments",
                fetch_all=False
            )
            fees = self.db.execute_query(
                """SELECT sf.final_amount, sf.due_date, COALESCE(SUM(fp.amount), 0) AS paid
                   FROM student_fees sf
                   LEFT JOIN fee_payments fp ON fp.student_fee_id = sf.id
                   GROUP BY sf.id"""
            )

            statistics['total_billed'] = round(billed['total'], 2)
            statistics['total_collected'] = round(collected['total'], 2)
            statistics['total_outstanding'] = round(
                max(0.0, statistics['total_billed'] - statistics['total_collected']), 2
            )
            for fee in fees:
                balance = calculate_fee_balance(fee['final_amount'], [fee['paid']], fee['due_date'], today)
                statistics['status_counts'][balance.status] += 1

            return statistics

        except Exception as e:
            self.logger.error(f"Failed to get fee statistics: {str(e)}")
            return statistics

    def get_fee_report_rows(self, status: Optional[str] = None,
                            class_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Flat rows for the fee report export.

        Args:
            status (str): Only fees whose computed status matches
            class_id (int): Only students in this class

        Returns:
            List[Dict[str, Any]]: One row per student fee
        """
        condition = "1 = 1"
        params = []
        if class_id is not None:
            condition += " AND s.class_id = ?"
            params.append(class_id)

        rows = []
        for fee in self.db.execute_query(self._fee_query(condition) + " ORDER BY sf.due_date, sf.id",
                                         tuple(params)):
            fee = self._with_balance(fee, self.get_payments(fee['id']))
            if status and fee['status'] != status:
                continue
            rows.append({
                'Student ID': fee['student_code'],
                'Student Name': fee['student_name'],
                'Class': fee['class_name'] or '',
                'Fee': fee['fee_name'],
                'Fee Type': fee['fee_type'],
                'Amount': fee['amount'],
                'Discount': fee['discount'],
                'Final Amount': fee['final_amount'],
                'Paid': fee['paid'],
                'Balance': fee['balance'],
                'Due Date': fee['due_date'],
                'Status': fee['status']
            })
        return rows

    def _with_balance(self, fee: Dict[str, Any], payments: List[Dict[str, Any]],
                      today: Optional[date] = None) -> Dict[str, Any]:
        balance = calculate_fee_balance(
            fee['final_amount'], [payment['amount'] for payment in payments],
            fee['due_date'], today
        )
        fee = dict(fee)
        fee['stored_status'] = fee['status']
        fee.update(balance.to_dict())
        return fee

    @staticmethod
    def _fee_query(condition: str) -> str:
        return f"""
            SELECT sf.*, fs.name AS fee_name, fs.fee_type, fs.description AS fee_description,
                   s.student_id AS student_code, s.user_id AS student_user_id,
                   u.full_name AS student_name,
                   c.name AS class_name, c.section AS class_section
            FROM student_fees sf
            JOIN fee_structures fs ON sf.fee_structure_id = fs.id
            JOIN students s ON sf.student_id = s.id
            JOIN users u ON s.user_id = u.id
            LEFT JOIN classes c ON s.class_id = c.id
            WHERE {condition}
        """
