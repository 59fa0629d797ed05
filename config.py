import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-key-full')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL',
        'sqlite:///' + os.path.join(os.path.dirname(__file__), 'instance', 'app.db'))
    # Serialise writers on SQLite so the per-sale read-then-write stays atomic
    SQLITE_BEGIN_IMMEDIATE = True
    RATELIMIT_ENABLED = True
    REVERSAL_RATE_LIMIT = '10 per minute'
    DEFAULT_REVERSAL_REASON = 'Wrong order - bill reversed'
    CHEQUE_ALERT_DAYS = 7
    ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'admin123')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    # In-memory SQLite runs on one shared connection
    SQLITE_BEGIN_IMMEDIATE = False
    RATELIMIT_ENABLED = False
    ADMIN_PASSWORD = 'admin123'
