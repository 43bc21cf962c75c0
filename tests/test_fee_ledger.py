from __future__ import annotations

import re
import threading
from datetime import date, datetime

import pytest

from school_portal.modules.fee_ledger import calculate_fee_balance, generate_receipt_number


def test_balance_of_untouched_fee_before_due_date():
    balance = calculate_fee_balance(4500, [], '2030-03-10', today=date(2030, 3, 1))
    assert (balance.paid, balance.balance, balance.status) == (0.0, 4500.0, 'pending')


def test_balance_after_due_date_is_overdue():
    balance = calculate_fee_balance(4500, [], '2030-03-10', today=date(2030, 3, 11))
    assert balance.status == 'overdue'


def test_due_date_itself_is_not_overdue():
    assert calculate_fee_balance(4500, [], '2030-03-10', today=date(2030, 3, 10)).status == 'pending'


def test_partial_payment_stays_partial_after_due_date():
    balance = calculate_fee_balance(4500, [2000], '2030-03-10', today=date(2030, 4, 1))
    assert balance.status == 'partial'
    assert balance.balance == 2500.0


def test_covered_fee_is_paid_and_balance_never_negative():
    balance = calculate_fee_balance(4500, [2000, 3000], '2030-03-10')
    assert balance.status == 'paid'
    assert balance.balance == 0.0
    assert balance.paid == 5000.0


def test_receipt_number_format():
    number = generate_receipt_number(datetime(2030, 3, 4, 10, 0, 0))
    assert re.fullmatch(r'RCP-\d{13}-[0-9A-F]{4}', number)


def test_fee_structure_validation(ledger):
    assert ledger.create_fee_structure('', 100)['error_type'] == 'validation'
    assert ledger.create_fee_structure('Lab Fee', -5)['error_type'] == 'validation'

    created = ledger.create_fee_structure('Lab Fee', 750, 'other')
    assert created['success']
    assert ledger.get_fee_structure(created['fee_structure_id'])['amount'] == 750


def test_assign_fee_applies_discount(assigned_fee):
    assert assigned_fee['success']
    assert assigned_fee['amount'] == 5000
    assert assigned_fee['discount'] == 500
    assert assigned_fee['final_amount'] == 4500
    assert assigned_fee['due_date'] == '2030-03-10'
    assert assigned_fee['status'] == 'pending'


@pytest.mark.parametrize('discount', [-1, 5001])
def test_assign_fee_rejects_out_of_range_discount(ledger, school, discount):
    structure = ledger.create_fee_structure('Tuition Fee', 5000)
    result = ledger.assign_fee(school['student']['id'], structure['fee_structure_id'], discount=discount)
    assert result['error_type'] == 'validation'


def test_assign_fee_unknown_student_or_structure(ledger, school):
    structure = ledger.create_fee_structure('Tuition Fee', 5000)
    assert ledger.assign_fee(9999, structure['fee_structure_id'])['error_type'] == 'not_found'
    assert ledger.assign_fee(school['student']['id'], 9999)['error_type'] == 'not_found'


def test_assign_fee_due_date_override(ledger, school):
    structure = ledger.create_fee_structure('Exam Fee', 1200, 'exam', due_date='2030-05-01')
    result = ledger.assign_fee(school['student']['id'], structure['fee_structure_id'], due_date='2030-06-15')
    assert result['due_date'] == '2030-06-15'


def test_full_payment_marks_fee_paid(ledger, assigned_fee):
    result = ledger.record_payment(assigned_fee['student_fee_id'], 4500, 'cash')

    assert result['success']
    assert result['status'] == 'paid'
    assert result['balance'] == 0
    assert result['receipt_number'].startswith('RCP-')

    fee = ledger.get_student_fee(assigned_fee['student_fee_id'])
    assert fee['stored_status'] == 'paid'
    assert fee['paid'] == 4500


def test_partial_then_remaining_payment(ledger, assigned_fee):
    fee_id = assigned_fee['student_fee_id']

    first = ledger.record_payment(fee_id, 2000, 'bank_transfer', transaction_id='TX-1')
    assert first['status'] == 'partial'
    assert first['balance'] == 2500

    second = ledger.record_payment(fee_id, 2500, 'card')
    assert second['status'] == 'paid'
    assert second['paid'] == 4500
    assert second['receipt_number'] != first['receipt_number']
    assert len(ledger.get_payments(fee_id)) == 2


def test_overpayment_is_rejected_and_nothing_stored(ledger, assigned_fee):
    fee_id = assigned_fee['student_fee_id']
    ledger.record_payment(fee_id, 2000)

    result = ledger.record_payment(fee_id, 3000)

    assert not result['success']
    assert result['error_type'] == 'validation'
    assert len(ledger.get_payments(fee_id)) == 1
    assert ledger.get_student_fee(fee_id)['stored_status'] == 'partial'


def test_payment_on_paid_fee_is_rejected(ledger, assigned_fee):
    fee_id = assigned_fee['student_fee_id']
    ledger.record_payment(fee_id, 4500)

    result = ledger.record_payment(fee_id, 1)
    assert result['error'] == 'This fee is already fully paid'


@pytest.mark.parametrize('amount, method', [(0, 'cash'), (-10, 'cash'), ('abc', 'cash'), (100, 'bitcoin')])
def test_invalid_payment_input(ledger, assigned_fee, amount, method):
    result = ledger.record_payment(assigned_fee['student_fee_id'], amount, method)
    assert result['error_type'] == 'validation'


def test_payment_against_unknown_fee(ledger, school):
    assert ledger.record_payment(9999, 100)['error_type'] == 'not_found'


def test_receipt_data_tracks_previous_payments(ledger, assigned_fee):
    fee_id = assigned_fee['student_fee_id']
    ledger.record_payment(fee_id, 1500, payment_date='2030-03-01')
    second = ledger.record_payment(fee_id, 1000, payment_date='2030-03-05')

    receipt = ledger.get_receipt_data(second['payment_id'])

    assert receipt['student_id'] == 'STU-001'
    assert receipt['student_name'] == 'Ali Khan'
    assert receipt['fee_name'] == 'Tuition Fee - March'
    assert receipt['total_amount'] == 4500
    assert receipt['previously_paid'] == 1500
    assert receipt['amount_paid'] == 1000
    assert receipt['balance'] == 2000
    assert receipt['payment_date'] == '2030-03-05'
    assert ledger.get_receipt_data(9999) is None


def test_overdue_sweep(ledger, school):
    student_pk = school['student']['id']
    structure = ledger.create_fee_structure('Transport', 1000, 'transport', due_date='2030-03-01')
    untouched = ledger.assign_fee(student_pk, structure['fee_structure_id'])
    part_paid = ledger.assign_fee(student_pk, structure['fee_structure_id'])
    settled = ledger.assign_fee(student_pk, structure['fee_structure_id'])
    later = ledger.assign_fee(student_pk, structure['fee_structure_id'], due_date='2030-04-01')
    ledger.record_payment(part_paid['student_fee_id'], 400)
    ledger.record_payment(settled['student_fee_id'], 1000)

    due = ledger.refresh_overdue_fees(today=date(2030, 3, 11))

    by_id = {fee['id']: fee for fee in due}
    assert set(by_id) == {untouched['student_fee_id'], part_paid['student_fee_id']}
    assert by_id[untouched['student_fee_id']]['days_overdue'] == 10
    assert by_id[part_paid['student_fee_id']]['balance'] == 600

    assert ledger.get_student_fee(untouched['student_fee_id'])['stored_status'] == 'overdue'
    assert ledger.get_student_fee(part_paid['student_fee_id'])['stored_status'] == 'partial'
    assert ledger.get_student_fee(later['student_fee_id'])['stored_status'] == 'pending'


def test_student_fees_and_statistics(ledger, assigned_fee, school):
    ledger.record_payment(assigned_fee['student_fee_id'], 1000)

    fees = ledger.get_student_fees(school['student']['id'])
    assert len(fees) == 1
    assert fees[0]['balance'] == 3500

    statistics = ledger.get_fee_statistics()
    assert statistics['total_billed'] == 4500
    assert statistics['total_collected'] == 1000
    assert statistics['total_outstanding'] == 3500
    assert statistics['status_counts']['partial'] == 1


def test_report_rows_filter_by_status(ledger, assigned_fee, school):
    structure = ledger.create_fee_structure('Library', 300, 'library', due_date='2030-03-10')
    library = ledger.assign_fee(school['student']['id'], structure['fee_structure_id'])
    ledger.record_payment(library['student_fee_id'], 300)

    paid_rows = ledger.get_fee_report_rows(status='paid')
    assert [row['Fee'] for row in paid_rows] == ['Library']
    assert paid_rows[0]['Class'] == 'Class 5'
    assert len(ledger.get_fee_report_rows()) == 2
    assert ledger.get_fee_report_rows(class_id=9999) == []


def test_fully_discounted_fee_is_paid_on_assignment(ledger, school):
    structure = ledger.create_fee_structure('Scholarship Tuition', 5000, due_date='2030-03-10')

    result = ledger.assign_fee(school['student']['id'], structure['fee_structure_id'], discount=5000)

    assert result['final_amount'] == 0
    assert result['status'] == 'paid'
    assert ledger.get_student_fee(result['student_fee_id'])['stored_status'] == 'paid'
    assert ledger.get_fee_statistics()['status_counts']['paid'] == 1
    assert ledger.get_fee_statistics()['status_counts']['pending'] == 0


def test_fee_assigned_past_due_is_overdue_without_sweep(ledger, school):
    structure = ledger.create_fee_structure('Transport', 1000, 'transport', due_date='2030-03-01')

    result = ledger.assign_fee(school['student']['id'], structure['fee_structure_id'], today=date(2030, 3, 11))

    assert result['status'] == 'overdue'
    assert ledger.get_student_fee(result['student_fee_id'])['stored_status'] == 'overdue'

    counts = ledger.get_fee_statistics(today=date(2030, 3, 11))['status_counts']
    assert counts['overdue'] == 1
    assert counts['pending'] == 0


def test_statistics_count_derived_status(ledger, assigned_fee):
    counts = ledger.get_fee_statistics(today=date(2030, 4, 1))['status_counts']
    assert counts == {'pending': 0, 'partial': 0, 'paid': 0, 'overdue': 1}


def test_concurrent_payments_cannot_overpay(ledger, assigned_fee):
    fee_id = assigned_fee['student_fee_id']
    barrier = threading.Barrier(4)
    results = []

    def pay():
        barrier.wait()
        results.append(ledger.record_payment(fee_id, 3000, 'cash'))

    threads = [threading.Thread(target=pay) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for result in results if result['success']) == 1
    assert len(ledger.get_payments(fee_id)) == 1

    fee = ledger.get_student_fee(fee_id)
    assert fee['paid'] == 3000
    assert fee['stored_status'] == 'partial'
