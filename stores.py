"""
Entity stores and the role-scoped query layer.

Each store is a thin collection over the injected storage backend; the same
code runs whatever backend was selected at startup. Records are dicts with
camelCase keys (see ``app_models``).
"""
import logging
from datetime import date, datetime

from app_models import format_timestamp, utcnow
from receipts import ReceiptNumberGenerator

logger = logging.getLogger(__name__)

ROLE_ADMIN = 'admin'
ROLE_TEACHER = 'teacher'
ROLES = (ROLE_ADMIN, ROLE_TEACHER)

PAYMENT_DEVELOPMENT = 'development'
PAYMENT_BUS = 'bus'
PAYMENT_SPECIAL = 'special'
PAYMENT_TYPES = (PAYMENT_DEVELOPMENT, PAYMENT_BUS, PAYMENT_SPECIAL)

CLASSES = range(1, 13)
DIVISIONS = ('A', 'B', 'C', 'D', 'E')

STUDENT_EDITABLE = ('admissionNumber', 'name', 'mobile', 'class', 'division',
                    'busStop', 'busNumber', 'tripNumber')

RECEIPT_NUMBER_ATTEMPTS = 10


def now_stamp():
    return format_timestamp(utcnow())


# Role scoping

def _self(record):
    return record


def payment_owner(payment):
    return payment.get('student')


def scope_records(records, role, class_=None, division=None, key=_self):
    """Restrict ``records`` to a teacher's own class and division.

    ``key`` returns the dict carrying ``class`` and ``division`` for a record
    (the record itself for students, the joined student for payments).
    Admins, and teachers missing either value, get the unfiltered sequence.
    """
    if role != ROLE_TEACHER or not class_ or not division:
        return list(records)
    scoped = []
    for record in records:
        owner = key(record)
        if owner and owner.get('class') == class_ and owner.get('division') == division:
            scoped.append(record)
    return scoped


def _as_date(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def filter_students(students, class_=None, division=None, bus_stop=None,
                    bus_number=None, trip_number=None, search=None):
    filtered = list(students)
    if search:
        term = search.lower()
        filtered = [
            s for s in filtered
            if term in (s.get('name') or '').lower()
            or search in (s.get('admissionNumber') or '')
            or search in (s.get('mobile') or '')
        ]
    if class_:
        filtered = [s for s in filtered if s.get('class') == class_]
    if division:
        filtered = [s for s in filtered if s.get('division') == division]
    if bus_stop:
        filtered = [s for s in filtered if s.get('busStop') == bus_stop]
    if bus_number:
        filtered = [s for s in filtered if s.get('busNumber') == bus_number]
    if trip_number:
        filtered = [s for s in filtered if s.get('tripNumber') == trip_number]
    return filtered


def filter_payments(payments, payment_type=None, class_=None, division=None,
                    bus_stop=None, bus_number=None, trip_number=None,
                    date_from=None, date_to=None):
    """Report filters over joined payments; student filters skip orphans."""
    filtered = list(payments)
    if payment_type:
        filtered = [p for p in filtered if p.get('paymentType') == payment_type]

    student_filters = {
        'class': class_,
        'division': division,
        'busStop': bus_stop,
        'busNumber': bus_number,
        'tripNumber': trip_number,
    }
    for field, wanted in student_filters.items():
        if wanted:
            filtered = [p for p in filtered if p.get('student') and p['student'].get(field) == wanted]

    start, end = _as_date(date_from), _as_date(date_to)
    if start:
        filtered = [p for p in filtered if _as_date(p.get('createdAt')) >= start]
    if end:
        filtered = [p for p in filtered if _as_date(p.get('createdAt')) <= end]
    return filtered


# Stores

class Store:
    collection = None
    order_by = ()

    def __init__(self, backend):
        self.backend = backend

    def list(self):
        return self.backend.fetch_all(self.collection, self.order_by)

    def get(self, record_id):
        return self.backend.get(self.collection, record_id)


class UserStore(Store):
    collection = 'users'
    order_by = (('username', False),)

    def find_by_username(self, username):
        matches = self.backend.find(self.collection, username=username)
        return matches[0] if matches else None

    def add(self, fields):
        role = fields.get('role')
        if role not in ROLES:
            logger.warning(f"Rejected user {fields.get('username')}: unknown role {role}")
            return None
        record = dict(fields)
        if role == ROLE_TEACHER:
            if not record.get('class') or not record.get('division'):
                logger.warning(f"Rejected teacher {fields.get('username')}: class and division required")
                return None
        else:
            record['class'] = None
            record['division'] = None
        if self.find_by_username(record.get('username')):
            logger.warning(f"Rejected user {record.get('username')}: username already exists")
            return None
        record.setdefault('createdAt', now_stamp())
        record.setdefault('lastLogin', None)
        return self.backend.insert(self.collection, record)

    def update(self, user_id, fields):
        return self.backend.update(self.collection, user_id, fields)


class StudentStore(Store):
    collection = 'students'
    order_by = (('class', False), ('division', False), ('name', False))

    def list(self, role=ROLE_ADMIN, class_=None, division=None):
        return scope_records(super().list(), role, class_, division)

    def get_by_admission_number(self, admission_number):
        matches = self.backend.find(self.collection, admissionNumber=admission_number)
        return matches[0] if matches else None

    def add(self, fields):
        record = {field: fields.get(field) for field in STUDENT_EDITABLE}
        if self.get_by_admission_number(record['admissionNumber']):
            logger.warning(f"Admission number {record['admissionNumber']} already exists")
            return None
        stamp = now_stamp()
        record['createdAt'] = stamp
        record['updatedAt'] = stamp
        return self.backend.insert(self.collection, record)

    def update(self, student_id, fields):
        changes = {field: fields[field] for field in STUDENT_EDITABLE if field in fields}
        if 'admissionNumber' in changes:
            existing = self.get_by_admission_number(changes['admissionNumber'])
            if existing and existing['id'] != student_id:
                logger.warning(f"Admission number {changes['admissionNumber']} already exists")
                return None
        changes['updatedAt'] = now_stamp()
        return self.backend.update(self.collection, student_id, changes)

    def delete(self, student_id):
        return self.backend.delete(self.collection, student_id)


class PaymentStore(Store):
    collection = 'payments'
    order_by = (('createdAt', True),)

    def __init__(self, backend, receipt_numbers=None):
        super().__init__(backend)
        self.receipt_numbers = receipt_numbers or ReceiptNumberGenerator()

    def _join_students(self, payments):
        students = {s['id']: s for s in self.backend.fetch_all('students')}
        joined = []
        for payment in payments:
            payment = dict(payment)
            payment['student'] = students.get(payment.get('studentId'))
            if payment['student'] is None:
                logger.warning(
                    f"Payment {payment.get('receiptNumber')} references missing student {payment.get('studentId')}"
                )
            joined.append(payment)
        return joined

    def list(self, role=ROLE_ADMIN, class_=None, division=None):
        payments = self._join_students(super().list())
        return scope_records(payments, role, class_, division, key=payment_owner)

    def get(self, payment_id):
        payment = super().get(payment_id)
        if payment is None:
            return None
        return self._join_students([payment])[0]

    def orphaned(self):
        """Payments whose student no longer exists"""
        return [p for p in self._join_students(super().list()) if p['student'] is None]

    def _fresh_receipt_number(self):
        # The 6-digit suffix repeats every 1000 seconds; draw again on a clash
        for _ in range(RECEIPT_NUMBER_ATTEMPTS):
            receipt_number = self.receipt_numbers.next()
            if not self.backend.find(self.collection, receiptNumber=receipt_number):
                return receipt_number
            logger.info(f'Receipt number {receipt_number} already issued, drawing another')
        return None

    def add(self, fields):
        payment_type = fields.get('paymentType')
        amount = fields.get('amount')
        if payment_type not in PAYMENT_TYPES:
            logger.warning(f'Rejected payment: unknown payment type {payment_type}')
            return None
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            logger.warning(f'Rejected payment: invalid amount {amount!r}')
            return None
        student = self.backend.get('students', fields.get('studentId'))
        if student is None:
            logger.warning(f"Rejected payment: unknown student {fields.get('studentId')}")
            return None

        receipt_number = fields.get('receiptNumber') or self._fresh_receipt_number()
        if receipt_number is None or self.backend.find(self.collection, receiptNumber=receipt_number):
            logger.warning(f'Rejected payment: receipt number {receipt_number} already used')
            return None

        record = {
            'studentId': student['id'],
            'paymentType': payment_type,
            'amount': amount,
            'description': fields.get('description') or '',
            'receiptNumber': receipt_number,
            'specialPaymentType': fields.get('specialPaymentType') if payment_type == PAYMENT_SPECIAL else None,
            'createdAt': now_stamp(),
            'createdBy': fields.get('createdBy') or 'system',
        }
        created = self.backend.insert(self.collection, record)
        if created is None:
            return None
        created['student'] = student
        return created


class FeeConfigurationStore(Store):
    collection = 'fee_configurations'
    order_by = (('class', False),)

    def get_for_class(self, class_number):
        matches = self.backend.find(self.collection, **{'class': class_number})
        return matches[0] if matches else None

    def add(self, class_number, development_fee):
        """Seed the configuration row for ``class_number``."""
        if self.get_for_class(class_number):
            return None
        return self.backend.insert(self.collection, {
            'class': class_number,
            'developmentFee': development_fee,
            'updatedAt': now_stamp(),
        })

    def update(self, class_number, development_fee):
        config = self.get_for_class(class_number)
        if config is None:
            logger.warning(f'No fee configuration for class {class_number}')
            return None
        return self.backend.update(self.collection, config['id'], {
            'developmentFee': development_fee,
            'updatedAt': now_stamp(),
        })


class BusStopStore(Store):
    collection = 'bus_stops'
    order_by = (('name', False),)

    def get_by_name(self, name):
        matches = self.backend.find(self.collection, name=name)
        return matches[0] if matches else None

    def add(self, name, amount):
        if self.get_by_name(name):
            logger.warning(f'Bus stop {name} already exists')
            return None
        return self.backend.insert(self.collection, {
            'name': name,
            'amount': amount,
            'createdAt': now_stamp(),
        })

    def update(self, stop_id, name, amount):
        existing = self.get_by_name(name)
        if existing and existing['id'] != stop_id:
            logger.warning(f'Bus stop {name} already exists')
            return None
        return self.backend.update(self.collection, stop_id, {'name': name, 'amount': amount})

    def delete(self, stop_id):
        return self.backend.delete(self.collection, stop_id)


class Ledger:
    """All entity stores over one backend"""

    def __init__(self, backend, receipt_prefix='SHSS'):
        self.backend = backend
        self.users = UserStore(backend)
        self.students = StudentStore(backend)
        self.payments = PaymentStore(backend, ReceiptNumberGenerator(receipt_prefix))
        self.fees = FeeConfigurationStore(backend)
        self.bus_stops = BusStopStore(backend)

    @property
    def backend_kind(self):
        return self.backend.kind

    def checkout(self, student, created_by, development=False, bus=False,
                 special_type=None, special_amount=0):
        """Record the selected fees for ``student`` as separate payments.

        Inserts run one after another without a transaction; if one fails the
        payments already written stay and the rest are not attempted.
        """
        lines = []
        if development:
            config = self.fees.get_for_class(student['class'])
            lines.append({
                'paymentType': PAYMENT_DEVELOPMENT,
                'amount': config['developmentFee'] if config else 0,
                'description': f"Development Fee - Class {student['class']}",
            })
        if bus:
            stop = self.bus_stops.get_by_name(student['busStop'])
            lines.append({
                'paymentType': PAYMENT_BUS,
                'amount': stop['amount'] if stop else 0,
                'description': f"Bus Fee - {student['busStop']}",
            })
        if special_type is not None and special_amount and special_amount > 0:
            lines.append({
                'paymentType': PAYMENT_SPECIAL,
                'amount': special_amount,
                'description': f'Special Payment - {special_type}',
                'specialPaymentType': special_type,
            })

        created = []
        for line in lines:
            payment = self.payments.add(dict(line, studentId=student['id'], createdBy=created_by))
            if payment is None:
                logger.error(
                    f"Checkout for {student['admissionNumber']} stopped after {len(created)} of {len(lines)} payments"
                )
                break
            created.append(payment)
        return created
