#!/usr/bin/env python3
"""
First-run seeding for the school ledger.
Creates the default users, fee configurations and bus stops when the store is
empty. Safe to run repeatedly; existing data is never overwritten.
"""
import logging
import random

from auth import hash_password
from stores import CLASSES, DIVISIONS, ROLE_ADMIN, ROLE_TEACHER

logger = logging.getLogger(__name__)

DEFAULT_BUS_STOPS = [
    ('City Center', 500),
    ('Railway Station', 600),
    ('Bus Stand', 450),
    ('Market Square', 550),
    ('Hospital Junction', 650),
    ('Temple Road', 400),
    ('School Gate', 300),
]

SAMPLE_NAMES = [
    'Rahul Sharma', 'Priya Patel', 'Amit Kumar', 'Sneha Gupta', 'Ravi Singh',
    'Kavya Reddy', 'Arjun Nair', 'Pooja Joshi', 'Vikram Yadav', 'Divya Agarwal',
]


def development_fee_for(class_number):
    return 1000 + class_number * 100


def create_default_users(ledger, password, rounds=12):
    """An admin plus one teacher account per class and division (class1a ... class12e)."""
    if ledger.users.list():
        return 0
    logger.info('No users found. Creating default admin and class teacher accounts...')
    hashed = hash_password(password, rounds)
    created = 0
    if ledger.users.add({'id': 'admin', 'username': 'admin', 'password': hashed, 'role': ROLE_ADMIN}):
        created += 1
    for class_number in CLASSES:
        for division in DIVISIONS:
            username = f'class{class_number}{division.lower()}'
            user = ledger.users.add({
                'id': username,
                'username': username,
                'password': hashed,
                'role': ROLE_TEACHER,
                'class': class_number,
                'division': division,
            })
            if user:
                created += 1
    return created


def create_default_fee_configurations(ledger):
    if ledger.fees.list():
        return 0
    return sum(1 for class_number in CLASSES
               if ledger.fees.add(class_number, development_fee_for(class_number)))


def create_default_bus_stops(ledger):
    if ledger.bus_stops.list():
        return 0
    return sum(1 for name, amount in DEFAULT_BUS_STOPS if ledger.bus_stops.add(name, amount))


def create_sample_students(ledger, per_division=2):
    if ledger.students.list():
        return 0
    admission_number = 1001
    created = 0
    for class_number in CLASSES:
        for division in DIVISIONS:
            for _ in range(per_division):
                student = ledger.students.add({
                    'admissionNumber': str(admission_number),
                    'name': random.choice(SAMPLE_NAMES),
                    'mobile': f'98{random.randint(0, 99999999):08d}',
                    'class': class_number,
                    'division': division,
                    'busStop': 'City Center',
                    'busNumber': random.randint(1, 6),
                    'tripNumber': random.randint(1, 3),
                })
                if student:
                    created += 1
                admission_number += 1
    return created


def seed_defaults(ledger, config):
    users = create_default_users(ledger, config['DEFAULT_ADMIN_PASSWORD'], config['BCRYPT_LOG_ROUNDS'])
    fees = create_default_fee_configurations(ledger)
    stops = create_default_bus_stops(ledger)
    students = create_sample_students(ledger) if config.get('SEED_SAMPLE_STUDENTS') else 0
    if users or fees or stops or students:
        logger.info(f'Seeded {users} users, {fees} fee configurations, {stops} bus stops, {students} students')


def initialize_database():
    """Create tables (relational backend) and seed defaults."""
    from app import create_app

    app = create_app()
    with app.app_context():
        seed_defaults(app.extensions['ledger'], app.config)
    logger.info('Database initialization completed successfully!')


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    initialize_database()
