import pytest

from app import create_app
from config import TestingConfig


def make_app(kind, tmp_path):
    if kind == 'remote':
        return create_app(TestingConfig, DATABASE_URL='sqlite://')
    return create_app(TestingConfig, LOCAL_STORE_DIR=str(tmp_path / 'local_store'))


@pytest.fixture(params=['local', 'remote'])
def app(request, tmp_path):
    return make_app(request.param, tmp_path)


@pytest.fixture
def ledger(app):
    with app.app_context():
        yield app.extensions['ledger']


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password='admin'):
    return client.post('/login', json={'username': username, 'password': password})


@pytest.fixture
def admin_client(client):
    assert login(client, 'admin').status_code == 200
    return client


@pytest.fixture
def teacher_client(app):
    client = app.test_client()
    assert login(client, 'class10a').status_code == 200
    return client


def make_student(ledger, admission_number, name, class_number=10, division='A', bus_stop='City Center'):
    return ledger.students.add({
        'admissionNumber': admission_number,
        'name': name,
        'mobile': '9876543210',
        'class': class_number,
        'division': division,
        'busStop': bus_stop,
        'busNumber': 1,
        'tripNumber': 1,
    })
