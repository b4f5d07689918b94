import random

from conftest import make_student
from receipts import ReceiptNumberGenerator
from stores import ROLE_ADMIN, ROLE_TEACHER, filter_payments, filter_students, scope_records


def sort_key(student):
    return student['class'], student['division'], student['name']


def test_students_listed_by_class_division_name(ledger):
    rows = [(7, 'B', 'Meera'), (1, 'A', 'Zubin'), (7, 'A', 'Kiran'), (1, 'A', 'Arjun'), (12, 'E', 'Divya')]
    random.shuffle(rows)
    for number, (class_number, division, name) in enumerate(rows):
        make_student(ledger, str(2000 + number), name, class_number, division)

    listed = ledger.students.list()
    assert listed == sorted(listed, key=sort_key)

    make_student(ledger, '2999', 'Bharat', 7, 'A')
    listed = ledger.students.list()
    assert listed == sorted(listed, key=sort_key)
    assert [s['name'] for s in listed if (s['class'], s['division']) == (7, 'A')] == ['Bharat', 'Kiran']


def test_teacher_sees_only_own_class_and_division(ledger):
    make_student(ledger, '1', 'Asha', 10, 'A')
    make_student(ledger, '2', 'Binu', 10, 'B')
    make_student(ledger, '3', 'Chitra', 9, 'A')

    teacher_view = ledger.students.list(ROLE_TEACHER, 10, 'A')
    assert [s['name'] for s in teacher_view] == ['Asha']

    admin_view = ledger.students.list(ROLE_ADMIN, 10, 'A')
    assert len(admin_view) == 3


def test_teacher_without_class_gets_unfiltered_list():
    records = [{'class': 1, 'division': 'A'}, {'class': 2, 'division': 'B'}]
    assert scope_records(records, ROLE_TEACHER, None, 'A') == records
    assert scope_records(records, ROLE_TEACHER, 1, None) == records


def test_payments_scoped_by_owning_student(ledger):
    mine = make_student(ledger, '1', 'Asha', 10, 'A')
    other = make_student(ledger, '2', 'Binu', 11, 'A')
    ledger.checkout(mine, 'admin', development=True)
    ledger.checkout(other, 'admin', development=True, bus=True)

    teacher_payments = ledger.payments.list(ROLE_TEACHER, 10, 'A')
    assert len(teacher_payments) == 1
    assert teacher_payments[0]['student']['id'] == mine['id']
    assert len(ledger.payments.list(ROLE_ADMIN, 10, 'A')) == 3


def test_payments_listed_most_recent_first(ledger):
    student = make_student(ledger, '1', 'Asha')
    for _ in range(4):
        ledger.checkout(student, 'admin', development=True)
    stamps = [p['createdAt'] for p in ledger.payments.list()]
    assert stamps == sorted(stamps, reverse=True)


def test_duplicate_admission_number_is_rejected(ledger):
    assert make_student(ledger, '1001', 'Asha') is not None
    assert make_student(ledger, '1001', 'Someone Else') is None
    assert len(ledger.students.list()) == 1


def test_update_student(ledger):
    student = make_student(ledger, '1001', 'Asha')
    make_student(ledger, '1002', 'Binu')

    updated = ledger.students.update(student['id'], {'name': 'Asha K', 'busNumber': 4})
    assert updated['name'] == 'Asha K'
    assert updated['busNumber'] == 4
    assert updated['admissionNumber'] == '1001'
    assert updated['updatedAt'] >= student['updatedAt']

    assert ledger.students.update(student['id'], {'admissionNumber': '1002'}) is None
    assert ledger.students.update('missing', {'name': 'x'}) is None


def test_delete_student(ledger):
    student = make_student(ledger, '1001', 'Asha')
    assert ledger.students.delete(student['id']) is True
    assert ledger.students.list() == []
    assert ledger.students.delete(student['id']) is False


def test_deleting_bus_stop_removes_exactly_that_row(ledger):
    stops = ledger.bus_stops.list()
    assert len(stops) == 7
    target = stops[3]

    assert ledger.bus_stops.delete(target['id']) is True

    remaining = ledger.bus_stops.list()
    assert [s['id'] for s in remaining] == [s['id'] for s in stops if s['id'] != target['id']]


def test_bus_stops_sorted_by_name_and_unique(ledger):
    names = [s['name'] for s in ledger.bus_stops.list()]
    assert names == sorted(names)
    assert ledger.bus_stops.add('City Center', 100) is None

    stop = ledger.bus_stops.add('Airport', 700)
    assert ledger.bus_stops.list()[0]['id'] == stop['id']
    assert ledger.bus_stops.update(stop['id'], 'Airport Road', 750)['amount'] == 750
    assert ledger.bus_stops.update(stop['id'], 'School Gate', 1) is None


def test_fee_configuration_update_by_class(ledger):
    configs = ledger.fees.list()
    assert [c['class'] for c in configs] == list(range(1, 13))
    assert configs[9]['developmentFee'] == 2000

    updated = ledger.fees.update(10, 2500)
    assert updated['developmentFee'] == 2500
    assert ledger.fees.get_for_class(10)['developmentFee'] == 2500
    assert ledger.fees.update(13, 100) is None
    assert ledger.fees.add(10, 1) is None


def test_payments_are_create_only(ledger):
    assert not hasattr(ledger.payments, 'update')
    assert not hasattr(ledger.payments, 'delete')


def test_payment_validation(ledger):
    student = make_student(ledger, '1001', 'Asha')
    base = {'studentId': student['id'], 'description': 'x', 'createdBy': 'admin'}

    assert ledger.payments.add(dict(base, paymentType='tuition', amount=10)) is None
    assert ledger.payments.add(dict(base, paymentType='bus', amount=-1)) is None
    assert ledger.payments.add(dict(base, paymentType='bus', amount=10.5)) is None
    assert ledger.payments.add(dict(base, paymentType='bus', amount=10, studentId='missing')) is None

    bus = ledger.payments.add(dict(base, paymentType='bus', amount=10, specialPaymentType='Tour'))
    assert bus['specialPaymentType'] is None
    special = ledger.payments.add(dict(base, paymentType='special', amount=10, specialPaymentType='Tour'))
    assert special['specialPaymentType'] == 'Tour'
    assert bus['receiptNumber'] != special['receiptNumber']


def test_checkout_uses_class_fee_and_bus_stop(ledger):
    student = make_student(ledger, '1001', 'Asha', 10, 'A', bus_stop='Railway Station')

    created = ledger.checkout(student, 'admin', development=True, bus=True,
                              special_type='Tour', special_amount=250)

    assert [(p['paymentType'], p['amount']) for p in created] == [
        ('development', 2000), ('bus', 600), ('special', 250),
    ]
    assert [p['description'] for p in created] == [
        'Development Fee - Class 10', 'Bus Fee - Railway Station', 'Special Payment - Tour',
    ]
    assert len({p['receiptNumber'] for p in created}) == 3
    assert all(p['createdBy'] == 'admin' for p in created)


def test_checkout_skips_special_without_amount(ledger):
    student = make_student(ledger, '1001', 'Asha')
    assert ledger.checkout(student, 'admin', special_type='Tour', special_amount=0) == []


def test_checkout_keeps_partial_writes(ledger, monkeypatch):
    student = make_student(ledger, '1001', 'Asha')
    original_add = ledger.payments.add
    calls = []

    def flaky_add(fields):
        calls.append(fields['paymentType'])
        if len(calls) == 2:
            return None
        return original_add(fields)

    monkeypatch.setattr(ledger.payments, 'add', flaky_add)
    created = ledger.checkout(student, 'admin', development=True, bus=True,
                              special_type='Tour', special_amount=100)

    assert [p['paymentType'] for p in created] == ['development']
    assert calls == ['development', 'bus']
    assert [p['paymentType'] for p in ledger.payments.list()] == ['development']


def test_dangling_payment_is_reported_not_masked(ledger):
    student = make_student(ledger, '1001', 'Asha', 10, 'A')
    ledger.checkout(student, 'admin', development=True)
    ledger.students.delete(student['id'])

    admin_payments = ledger.payments.list()
    assert len(admin_payments) == 1
    assert admin_payments[0]['student'] is None
    assert ledger.payments.list(ROLE_TEACHER, 10, 'A') == []
    assert [p['id'] for p in ledger.payments.orphaned()] == [admin_payments[0]['id']]


def test_filter_students():
    students = [
        {'name': 'Asha Nair', 'admissionNumber': '1001', 'mobile': '98111', 'class': 1, 'division': 'A',
         'busStop': 'City Center', 'busNumber': 1, 'tripNumber': 1},
        {'name': 'Binu', 'admissionNumber': '1002', 'mobile': '98222', 'class': 2, 'division': 'B',
         'busStop': 'Bus Stand', 'busNumber': 2, 'tripNumber': 2},
    ]
    assert filter_students(students, search='nair') == [students[0]]
    assert filter_students(students, search='1002') == [students[1]]
    assert filter_students(students, class_=2) == [students[1]]
    assert filter_students(students, bus_stop='City Center', trip_number=1) == [students[0]]
    assert filter_students(students) == students


def test_filter_payments_by_type_student_and_date():
    student = {'class': 10, 'division': 'A', 'busStop': 'City Center', 'busNumber': 3, 'tripNumber': 1}
    payments = [
        {'paymentType': 'bus', 'createdAt': '2024-06-01T10:00:00.000000', 'student': student},
        {'paymentType': 'development', 'createdAt': '2024-06-03T23:59:00.000000', 'student': student},
        {'paymentType': 'bus', 'createdAt': '2024-06-05T00:00:00.000000', 'student': None},
    ]
    assert filter_payments(payments, payment_type='bus') == [payments[0], payments[2]]
    assert filter_payments(payments, bus_number=3) == payments[:2]
    assert filter_payments(payments, date_from='2024-06-02', date_to='2024-06-03') == [payments[1]]


def test_receipt_suffix_wraparound_draws_a_new_number(ledger):
    student = make_student(ledger, '1001', 'Asha')
    now = [1717236000.5]
    ledger.payments.receipt_numbers = ReceiptNumberGenerator('SHSS', clock=lambda: now[0])
    base = {'studentId': student['id'], 'paymentType': 'bus', 'amount': 500, 'description': 'Bus Fee'}

    first = ledger.payments.add(base)
    now[0] += 1000
    second = ledger.payments.add(base)

    assert first['receiptNumber'].endswith('000500')
    assert second is not None
    assert second['receiptNumber'] != first['receiptNumber']
    assert second['receiptNumber'].endswith('000501')


def test_explicit_receipt_number_must_be_unused(ledger):
    student = make_student(ledger, '1001', 'Asha')
    base = {'studentId': student['id'], 'paymentType': 'bus', 'amount': 500, 'receiptNumber': 'SHSS1'}
    assert ledger.payments.add(base) is not None
    assert ledger.payments.add(base) is None
