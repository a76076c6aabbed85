"""
Liyaqa - Configuration
Environment-based configuration for different deployment stages
"""
import os
from datetime import timedelta


def _database_url(default: str) -> str:
    """Normalize DATABASE_URL for the psycopg v3 driver"""
    db_url = os.environ.get('DATABASE_URL', '')
    if not db_url:
        return default
    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql+psycopg://
    if db_url.startswith('postgres://'):
        db_url = db_url.replace('postgres://', 'postgresql+psycopg://', 1)
    elif db_url.startswith('postgresql://'):
        db_url = db_url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return db_url


class BaseConfig:
    """Base configuration"""

    # Flask - Secret key (required in production)
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    _is_production = os.environ.get('RENDER') or os.environ.get('FLASK_ENV') == 'production'
    if SECRET_KEY == 'dev-secret-key-change-in-production' and _is_production:
        import warnings
        warnings.warn("SECRET_KEY is using default dev value in production! Set SECRET_KEY env var.")

    # CORS
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        return _database_url('sqlite:///liyaqa.db')

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Public URL used for tracking pixels and invite links
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5000')

    # Rate limiting
    RATELIMIT_ENABLED = os.environ.get('RATE_LIMIT_ENABLED', 'true').lower() == 'true'
    RATELIMIT_DEFAULT = os.environ.get('RATE_LIMIT_DEFAULT', '2000 per day;300 per hour')
    LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '10 per minute')

    # JWT Auth
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', SECRET_KEY)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.environ.get('JWT_EXPIRES_HOURS', '24')))

    # Platform security
    IMPERSONATION_SESSION_MINUTES = int(os.environ.get('IMPERSONATION_SESSION_MINUTES', '30'))
    INVITE_EXPIRY_DAYS = int(os.environ.get('INVITE_EXPIRY_DAYS', '7'))
    TRIAL_DAYS = int(os.environ.get('TRIAL_DAYS', '14'))

    # Marketing engine
    MARKETING_BATCH_SIZE = int(os.environ.get('MARKETING_BATCH_SIZE', '100'))
    MARKETING_DEFAULT_AB_SPLIT = int(os.environ.get('MARKETING_DEFAULT_AB_SPLIT', '50'))
    AB_TEST_MIN_SAMPLE = int(os.environ.get('AB_TEST_MIN_SAMPLE', '20'))

    # Billing / ZATCA
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'SAR')
    VAT_RATE = os.environ.get('VAT_RATE', '15.00')
    INVOICE_DUE_DAYS = int(os.environ.get('INVOICE_DUE_DAYS', '7'))
    ZATCA_API_URL = os.environ.get('ZATCA_API_URL', '')
    ZATCA_API_USERNAME = os.environ.get('ZATCA_API_USERNAME', '')
    ZATCA_API_SECRET = os.environ.get('ZATCA_API_SECRET', '')
    ZATCA_TIMEOUT = int(os.environ.get('ZATCA_TIMEOUT', '30'))

    # Email (SendGrid preferred, SMTP otherwise)
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
    FROM_EMAIL = os.environ.get('FROM_EMAIL', 'noreply@liyaqa.com')
    FROM_NAME = os.environ.get('FROM_NAME', 'Liyaqa')
    SMTP_HOST = os.environ.get('SMTP_HOST', '')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', '587'))
    SMTP_USER = os.environ.get('SMTP_USER', '')
    SMTP_PASS = os.environ.get('SMTP_PASS', '')

    # SMS / WhatsApp (Twilio)
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID', '')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN', '')
    TWILIO_FROM_NUMBER = os.environ.get('TWILIO_FROM_NUMBER', '')
    TWILIO_WHATSAPP_FROM = os.environ.get('TWILIO_WHATSAPP_FROM', '')

    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'Asia/Riyadh')

    # Background jobs
    ENABLE_SCHEDULER = os.environ.get('ENABLE_SCHEDULER', '0') == '1'
    AUDIT_RETENTION_DAYS = int(os.environ.get('AUDIT_RETENTION_DAYS', '365'))


class DevelopmentConfig(BaseConfig):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(BaseConfig):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        return _database_url('')


class TestingConfig(BaseConfig):
    """Testing configuration"""
    DEBUG = True
    TESTING = True

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        return 'sqlite:///:memory:'

    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    ENABLE_SCHEDULER = False
    JWT_SECRET_KEY = 'test-secret'

    SENDGRID_API_KEY = ''
    SMTP_HOST = ''
    TWILIO_ACCOUNT_SID = ''
    ZATCA_API_URL = ''


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get current config object"""
    env = os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])
