# School Portal Configuration

import os
from datetime import time, timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'school-portal-secret-key-change-me'

    # Database Configuration
    DATABASE_PATH = BASE_DIR / 'database' / 'school.db'

    # Export Configuration
    REPORTS_FOLDER = BASE_DIR / 'reports'
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max request size

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Security Configuration
    PASSWORD_MIN_LENGTH = 6

    # Email Configuration (guardian notifications)
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@school.local'

    # SMS Configuration (Twilio REST API)
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER')
    SMS_TIMEOUT = 15  # seconds

    # Attendance Configuration (unset values fall back to the system_settings table)
    ATTENDANCE_LATE_CUTOFF = os.environ.get('ATTENDANCE_LATE_CUTOFF')  # HH:MM
    ATTENDANCE_SCAN_DEBOUNCE_SECONDS = os.environ.get('ATTENDANCE_SCAN_DEBOUNCE_SECONDS')

    # Notification Configuration
    NOTIFICATIONS_ENABLED = True
    NOTIFICATIONS_EMAIL_ENABLED = _env_flag('NOTIFICATIONS_EMAIL_ENABLED')
    NOTIFICATIONS_SMS_ENABLED = _env_flag('NOTIFICATIONS_SMS_ENABLED')
    NOTIFICATIONS_ASYNC = True
    NOTIFICATIONS_ABSENCE_CHANNEL = os.environ.get('NOTIFICATIONS_ABSENCE_CHANNEL') or 'sms'  # sms or whatsapp

    # School details printed on documents and messages
    SCHOOL_NAME = os.environ.get('SCHOOL_NAME') or 'The Suffah Public School & College'
    SCHOOL_ADDRESS = os.environ.get('SCHOOL_ADDRESS') or 'Madyan Swat, Pakistan'
    SCHOOL_PHONE = os.environ.get('SCHOOL_PHONE') or '+92 000 000 0000'
    SCHOOL_EMAIL = os.environ.get('SCHOOL_EMAIL') or 'info@suffah.edu.pk'
    CURRENCY_CODE = os.environ.get('CURRENCY_CODE') or 'PKR'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'school.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        # Create necessary directories
        directories = [
            Path(cls.REPORTS_FOLDER),
            Path(cls.LOG_FILE).parent
        ]
        if str(cls.DATABASE_PATH) != ':memory:':
            directories.append(Path(cls.DATABASE_PATH).parent)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

        # Set Flask configuration
        app.config.update({
            'SECRET_KEY': cls.SECRET_KEY,
            'TESTING': cls.TESTING,
            'PERMANENT_SESSION_LIFETIME': cls.PERMANENT_SESSION_LIFETIME,
            'SESSION_COOKIE_SECURE': cls.SESSION_COOKIE_SECURE,
            'SESSION_COOKIE_HTTPONLY': cls.SESSION_COOKIE_HTTPONLY,
            'SESSION_COOKIE_SAMESITE': cls.SESSION_COOKIE_SAMESITE,
            'MAX_CONTENT_LENGTH': cls.MAX_CONTENT_LENGTH,
        })


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'school_dev.db'

    # More verbose logging
    LOG_LEVEL = 'DEBUG'

    # Email configuration for development (MailHog)
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    DATABASE_PATH = ':memory:'

    # Outbound channels stay off in tests
    NOTIFICATIONS_EMAIL_ENABLED = False
    NOTIFICATIONS_SMS_ENABLED = False
    NOTIFICATIONS_ASYNC = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    DATABASE_PATH = BASE_DIR / 'database' / 'school_prod.db'

    LOG_LEVEL = 'WARNING'

    NOTIFICATIONS_EMAIL_ENABLED = True
    NOTIFICATIONS_SMS_ENABLED = True

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Production-specific initialization
        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('School portal startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


# Environment-specific configurations
def get_config(config_name=None):
    """Get configuration based on name or the FLASK_ENV environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


# Validation functions
def validate_config(config_class=Config):
    """Validate configuration settings"""
    errors = []

    # Check email configuration if enabled
    if config_class.NOTIFICATIONS_EMAIL_ENABLED:
        if not config_class.MAIL_SERVER:
            errors.append("MAIL_SERVER is required when email notifications are enabled")
        if not config_class.MAIL_USERNAME:
            errors.append("MAIL_USERNAME is required when email notifications are enabled")

    # Check SMS configuration if enabled
    if config_class.NOTIFICATIONS_SMS_ENABLED:
        for key in ('TWILIO_ACCOUNT_SID', 'TWILIO_AUTH_TOKEN', 'TWILIO_PHONE_NUMBER'):
            if not getattr(config_class, key):
                errors.append(f"{key} is required when SMS notifications are enabled")

    cutoff = config_class.ATTENDANCE_LATE_CUTOFF
    if cutoff and not isinstance(cutoff, time):
        try:
            time.fromisoformat(str(cutoff))
        except ValueError:
            errors.append("ATTENDANCE_LATE_CUTOFF must be a time like 08:30")

    debounce = config_class.ATTENDANCE_SCAN_DEBOUNCE_SECONDS
    if debounce is not None:
        try:
            if float(debounce) < 0:
                errors.append("ATTENDANCE_SCAN_DEBOUNCE_SECONDS must not be negative")
        except ValueError:
            errors.append("ATTENDANCE_SCAN_DEBOUNCE_SECONDS must be a number")

    return errors


# Initialize configuration
def init_config(app, config_name=None):
    """Initialize application with configuration"""
    config_class = get_config(config_name)
    config_class.init_app(app)

    # Missing channel credentials disable the channel rather than the app
    for error in validate_config(config_class):
        app.logger.warning(f"Configuration warning: {error}")

    return config_class
