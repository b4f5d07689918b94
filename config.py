"""
Configuration for the SmartFee School Ledger
"""
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'your-secret-key-here')

    # Security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    WTF_CSRF_ENABLED = True
    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_LOG_ROUNDS', 12))

    # Storage: a DATABASE_URL selects the relational backend, otherwise the
    # local key-value store under LOCAL_STORE_DIR is used
    DATABASE_URL = os.environ.get('DATABASE_URL')
    LOCAL_STORE_DIR = os.environ.get('LOCAL_STORE_DIR', os.path.join(BASE_DIR, 'instance', 'local_store'))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # School
    SCHOOL_NAME = os.environ.get('SCHOOL_NAME', 'SARVODAYA HIGHER SECONDARY SCHOOL')
    RECEIPT_PREFIX = os.environ.get('RECEIPT_PREFIX', 'SHSS')
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'admin')
    SEED_SAMPLE_STUDENTS = os.environ.get('SEED_SAMPLE_STUDENTS') == 'True'

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class ProductionConfig(Config):
    SECRET_KEY = os.environ.get('SECRET_KEY', os.urandom(24))
    PREFERRED_URL_SCHEME = 'https'
    SESSION_COOKIE_SECURE = True
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_timeout': 30,
        'pool_recycle': 1800,  # Recycle connections after 30 minutes
        'max_overflow': 2
    }


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    DATABASE_URL = None
    LOCAL_STORE_DIR = None
    SEED_SAMPLE_STUDENTS = False
    LOG_LEVEL = 'DEBUG'
