"""
Login sessions and credential changes.

A ``UserSession`` is created by ``login`` and cleared by ``logout``; callers
pass it explicitly instead of reading a global current user. The session
carries the full user record, stored password hash included.
"""
import logging

import bcrypt

from stores import ROLE_TEACHER, now_stamp

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 4


def hash_password(password, rounds=12):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds)).decode('utf-8')


def verify_password(password, hashed):
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


class UserSession:
    def __init__(self, user):
        self.user = dict(user) if user else None

    @property
    def active(self):
        return self.user is not None

    @property
    def user_id(self):
        return self.user['id'] if self.user else None

    @property
    def username(self):
        return self.user['username'] if self.user else None

    @property
    def role(self):
        return self.user['role'] if self.user else None

    @property
    def class_(self):
        return self.user.get('class') if self.user else None

    @property
    def division(self):
        return self.user.get('division') if self.user else None

    @property
    def is_teacher(self):
        return self.role == ROLE_TEACHER

    def scope(self):
        """(role, class, division) triple for the role-scoped list calls"""
        return self.role, self.class_, self.division

    def to_dict(self):
        return dict(self.user) if self.user else None

    @classmethod
    def from_dict(cls, data):
        return cls(data) if data else None


def login(users, username, password):
    """Return a new session for valid credentials, otherwise None"""
    user = users.find_by_username(username)
    if user is None:
        logger.info(f'Login failed for unknown user {username}')
        return None
    if not verify_password(password, user['password']):
        logger.info(f'Login failed for {username}: bad password')
        return None

    stamp = now_stamp()
    stamped = users.update(user['id'], {'lastLogin': stamp})
    if stamped is None:
        logger.warning(f'Could not record last login for {username}')
        stamped = dict(user, lastLogin=stamp)
    logger.info(f'{username} logged in')
    return UserSession(stamped)


def logout(session):
    if session is not None and session.active:
        logger.info(f'{session.username} logged out')
        session.user = None


def change_password(users, user_id, old_password, new_password, session=None, rounds=12):
    """Replace the stored hash after re-checking ``old_password``.

    The active ``session`` is refreshed when it belongs to the same user.
    Length and confirmation rules are the caller's to enforce.
    """
    user = users.get(user_id)
    if user is None:
        return False
    if not verify_password(old_password, user['password']):
        logger.info(f"Password change refused for {user['username']}: bad current password")
        return False

    updated = users.update(user_id, {'password': hash_password(new_password, rounds)})
    if updated is None:
        return False
    if session is not None and session.user_id == user_id:
        session.user = dict(session.user, password=updated['password'])
    logger.info(f"Password changed for {user['username']}")
    return True
