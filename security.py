from functools import wraps

from flask import jsonify, session
from flask_wtf.csrf import CSRFProtect

from auth import UserSession
from stores import ROLE_ADMIN

csrf = CSRFProtect()

SESSION_KEY = 'user'


def add_security_headers(response):
    """Add security headers to response"""
    # Receipts are printed from an inline onclick handler
    response.headers['Content-Security-Policy'] = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data:; "
        "form-action 'self'"
    )
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'same-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'

    # Ledger data and downloads are never cached
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    return response


def init_security(app):
    """Initialize CSRF protection and response headers for the Flask app"""
    csrf.init_app(app)
    app.after_request(add_security_headers)


def current_user_session():
    """The logged-in UserSession for this request, or None"""
    return UserSession.from_dict(session.get(SESSION_KEY))


def store_user_session(user_session):
    session.clear()
    session[SESSION_KEY] = user_session.to_dict()


def clear_user_session():
    session.clear()


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user_session() is None:
            return jsonify({'error': 'Login required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_session = current_user_session()
        if user_session is None:
            return jsonify({'error': 'Login required'}), 401
        if user_session.role != ROLE_ADMIN:
            return jsonify({'error': 'Administrator access required'}), 403
        return f(*args, **kwargs)
    return decorated_function
