"""
Configuration for the Saanify society ledger service
"""
import os


def _database_url(default):
    database_url = os.environ.get('DATABASE_URL')
    if database_url and database_url.startswith("postgres://"):
        # Hosted Postgres hands out the old scheme, SQLAlchemy wants postgresql://
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url or default


class Config:
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-in-production')

    # Session
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour

    # Database
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    # Platform super admin seeded by build.py
    SUPER_ADMIN_EMAIL = os.environ.get('SUPER_ADMIN_EMAIL')
    SUPER_ADMIN_PASSWORD = os.environ.get('SUPER_ADMIN_PASSWORD')

    # Society defaults, each society may override the financial ones
    CURRENCY = 'INR'
    DEFAULT_INTEREST_RATE = 12.0      # % per annum on approved loans
    LOAN_LIMIT_PERCENT = 80.0         # max loan as % of member deposits
    MIN_LOAN_AMOUNT = 1000.0
    MONTHLY_LOAN_INTEREST = 0.01      # interest due per month on remaining balance
    DEFAULT_LOAN_TENURE = 12          # months
    FINE_AMOUNT = 10.0
    GRACE_PERIOD_DAY = 15
    MAINTENANCE_FEE = 200.0
    LOW_CASH_THRESHOLD = 5000.0
    MATURITY_TENURE_MONTHS = 36
    MATURITY_INTEREST_PERCENT = 12.0


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(os.path.dirname(os.path.abspath(__file__)), 'instance', 'saanify.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    LOG_FILE = None


class ProductionConfig(Config):
    PREFERRED_URL_SCHEME = 'https'
    SESSION_COOKIE_SECURE = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(os.path.dirname(os.path.abspath(__file__)), 'instance', 'saanify.db')}"
    )
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_timeout': 30,
        'pool_recycle': 1800,  # Recycle connections after 30 minutes
        'max_overflow': 2
    }
    LOG_FILE = os.environ.get('LOG_FILE', os.path.join('logs', 'application.log'))

    @staticmethod
    def init_app(app):
        # Every gunicorn worker must sign sessions and CSRF tokens with the same key
        if not os.environ.get('SECRET_KEY'):
            raise RuntimeError('SECRET_KEY must be set when running with the production config')


CONFIGS = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(name=None):
    """Resolve a config class from a name, APP_CONFIG or FLASK_ENV."""
    name = name or os.environ.get('APP_CONFIG') or os.environ.get('FLASK_ENV') or 'development'
    return CONFIGS.get(name, DevelopmentConfig)
