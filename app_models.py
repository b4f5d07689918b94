from collections import namedtuple
from datetime import datetime, timezone
import uuid

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, the form stored in every table"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid():
    return str(uuid.uuid4())


# Database Models
class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(64), primary_key=True, default=new_uuid)
    username = db.Column(db.String(50), nullable=False, unique=True)
    password = db.Column(db.String(100), nullable=False)  # bcrypt hash
    role = db.Column(db.String(20), nullable=False, default='teacher')  # 'admin' or 'teacher'
    class_number = db.Column('class', db.Integer, nullable=True)
    division = db.Column(db.String(1), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    last_login = db.Column(db.DateTime, nullable=True)


class Student(db.Model):
    __tablename__ = 'students'
    id = db.Column(db.String(64), primary_key=True, default=new_uuid)
    admission_number = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    mobile = db.Column(db.String(20), nullable=False, default='')
    class_number = db.Column('class', db.Integer, nullable=False)  # 1-12
    division = db.Column(db.String(1), nullable=False)
    bus_stop = db.Column(db.String(100), nullable=False, default='')
    bus_number = db.Column(db.Integer, nullable=False, default=1)
    trip_number = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Payment(db.Model):
    __tablename__ = 'payments'
    id = db.Column(db.String(64), primary_key=True, default=new_uuid)
    student_id = db.Column(db.String(64), db.ForeignKey('students.id'), nullable=False)
    payment_type = db.Column(db.String(20), nullable=False)  # development, bus or special
    amount = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(400), nullable=False, default='')
    receipt_number = db.Column(db.String(40), nullable=False, unique=True)
    special_payment_type = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    created_by = db.Column(db.String(50), nullable=False)


class FeeConfiguration(db.Model):
    __tablename__ = 'fee_configurations'
    id = db.Column(db.String(64), primary_key=True, default=new_uuid)
    class_number = db.Column('class', db.Integer, nullable=False, unique=True)
    development_fee = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class BusStop(db.Model):
    __tablename__ = 'bus_stops'
    id = db.Column(db.String(64), primary_key=True, default=new_uuid)
    name = db.Column(db.String(100), nullable=False, unique=True)
    amount = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)


# Row column name -> record field name. Every column of a table appears exactly
# once so the mapping is lossless in both directions.
USER_FIELDS = {
    'id': 'id',
    'username': 'username',
    'password': 'password',
    'role': 'role',
    'class': 'class',
    'division': 'division',
    'created_at': 'createdAt',
    'last_login': 'lastLogin',
}

STUDENT_FIELDS = {
    'id': 'id',
    'admission_number': 'admissionNumber',
    'name': 'name',
    'mobile': 'mobile',
    'class': 'class',
    'division': 'division',
    'bus_stop': 'busStop',
    'bus_number': 'busNumber',
    'trip_number': 'tripNumber',
    'created_at': 'createdAt',
    'updated_at': 'updatedAt',
}

PAYMENT_FIELDS = {
    'id': 'id',
    'student_id': 'studentId',
    'payment_type': 'paymentType',
    'amount': 'amount',
    'description': 'description',
    'receipt_number': 'receiptNumber',
    'special_payment_type': 'specialPaymentType',
    'created_at': 'createdAt',
    'created_by': 'createdBy',
}

FEE_CONFIGURATION_FIELDS = {
    'id': 'id',
    'class': 'class',
    'development_fee': 'developmentFee',
    'updated_at': 'updatedAt',
}

BUS_STOP_FIELDS = {
    'id': 'id',
    'name': 'name',
    'amount': 'amount',
    'created_at': 'createdAt',
}

TIMESTAMP_COLUMNS = {'created_at', 'updated_at', 'last_login'}

Collection = namedtuple('Collection', ['name', 'storage_key', 'model', 'fields', 'id_prefix'])

COLLECTIONS = {
    'users': Collection('users', 'school_users', User, USER_FIELDS, 'user'),
    'students': Collection('students', 'school_students', Student, STUDENT_FIELDS, 'student'),
    'payments': Collection('payments', 'school_payments', Payment, PAYMENT_FIELDS, 'payment'),
    'fee_configurations': Collection('fee_configurations', 'school_fee_configurations',
                                     FeeConfiguration, FEE_CONFIGURATION_FIELDS, 'fee_config'),
    'bus_stops': Collection('bus_stops', 'school_bus_stops', BusStop, BUS_STOP_FIELDS, 'stop'),
}


def format_timestamp(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec='microseconds')
    return value


def parse_timestamp(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def row_to_record(row, fields):
    """Map a snake_case row onto a camelCase record"""
    record = {}
    for column, field in fields.items():
        value = row.get(column)
        if column in TIMESTAMP_COLUMNS:
            value = format_timestamp(value)
        record[field] = value
    return record


def record_to_row(record, fields):
    """Map the camelCase fields present in ``record`` back onto columns"""
    row = {}
    for column, field in fields.items():
        if field not in record:
            continue
        value = record[field]
        if column in TIMESTAMP_COLUMNS:
            value = parse_timestamp(value)
        row[column] = value
    return row
