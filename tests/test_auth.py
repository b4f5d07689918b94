import itertools

import pytest

import auth
from auth import UserSession, change_password, hash_password, login, logout, verify_password


@pytest.fixture
def ticking_clock(monkeypatch):
    ticks = itertools.count(1)
    monkeypatch.setattr(auth, 'now_stamp', lambda: f'2024-06-01T10:00:{next(ticks):02d}.000000')


def test_hash_and_verify():
    hashed = hash_password('secret', rounds=4)
    assert hashed != 'secret'
    assert verify_password('secret', hashed)
    assert not verify_password('wrong', hashed)
    assert not verify_password('secret', 'not-a-bcrypt-hash')
    assert not verify_password('', hashed)


def test_login_returns_session_and_stamps_last_login(ledger, ticking_clock):
    first = login(ledger.users, 'admin', 'admin')
    assert first.active
    assert first.role == 'admin'
    assert first.user['lastLogin'] == '2024-06-01T10:00:01.000000'

    second = login(ledger.users, 'admin', 'admin')
    assert second.user['lastLogin'] == '2024-06-01T10:00:02.000000'
    assert ledger.users.find_by_username('admin')['lastLogin'] == '2024-06-01T10:00:02.000000'


def test_failed_login_changes_nothing(ledger):
    before = ledger.users.find_by_username('class10a')

    assert login(ledger.users, 'class10a', 'wrong') is None
    assert login(ledger.users, 'nobody', 'admin') is None

    assert ledger.users.find_by_username('class10a') == before


def test_teacher_session_scope(ledger):
    session = login(ledger.users, 'class10a', 'admin')
    assert session.is_teacher
    assert session.scope() == ('teacher', 10, 'A')
    assert session.user['password']


def test_logout_clears_session(ledger):
    session = login(ledger.users, 'admin', 'admin')
    logout(session)
    assert not session.active
    assert session.role is None
    assert UserSession.from_dict(session.to_dict()) is None


def test_change_password(ledger):
    session = login(ledger.users, 'class10a', 'admin')
    old_hash = session.user['password']

    assert change_password(ledger.users, session.user_id, 'admin', 'newpass', session, rounds=4)

    assert session.user['password'] != old_hash
    assert session.user['password'] == ledger.users.get(session.user_id)['password']
    assert login(ledger.users, 'class10a', 'admin') is None
    assert login(ledger.users, 'class10a', 'newpass') is not None
    # Other accounts sharing the seeded password are untouched
    assert login(ledger.users, 'class10b', 'admin') is not None


def test_change_password_with_wrong_current_password(ledger):
    session = login(ledger.users, 'class10a', 'admin')
    old_hash = session.user['password']

    assert not change_password(ledger.users, session.user_id, 'wrong', 'newpass', session, rounds=4)

    assert session.user['password'] == old_hash
    assert ledger.users.get(session.user_id)['password'] == old_hash


def test_change_password_for_unknown_user(ledger):
    assert not change_password(ledger.users, 'missing', 'admin', 'newpass', rounds=4)


def test_user_role_invariant(ledger):
    hashed = hash_password('x', rounds=4)
    assert ledger.users.add({'username': 't1', 'password': hashed, 'role': 'teacher'}) is None
    assert ledger.users.add({'username': 'u1', 'password': hashed, 'role': 'clerk'}) is None
    assert ledger.users.add({'username': 'admin', 'password': hashed, 'role': 'admin'}) is None

    admin = ledger.users.add({'username': 'office', 'password': hashed, 'role': 'admin',
                              'class': 3, 'division': 'B'})
    assert admin['class'] is None
    assert admin['division'] is None
