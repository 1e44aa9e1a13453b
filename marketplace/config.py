import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _decimal_env(name, default):
    return Decimal(os.environ.get(name) or default)


def _int_env(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///marketplace.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'dev-jwt-secret-key-change-me-please'
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')
    AUTO_INIT_DB = os.environ.get('AUTO_INIT_DB', '1') == '1'

    APP_URL = os.environ.get('APP_URL', 'http://localhost:5021')
    LOG_DIR = os.environ.get('LOG_DIR')
    # Reverse proxies in front of the app; X-Forwarded-For is ignored when 0
    TRUSTED_PROXY_HOPS = _int_env('TRUSTED_PROXY_HOPS', 0)

    # Commission and payout policy
    DEFAULT_COMMISSION_RATE = _decimal_env('DEFAULT_COMMISSION_RATE', '0.15')
    DEFAULT_MINIMUM_PAYOUT = _decimal_env('DEFAULT_MINIMUM_PAYOUT', '50')
    PAYOUT_CURRENCY = os.environ.get('PAYOUT_CURRENCY', 'usd')

    # Trial fraud scoring
    TRIAL_LOOKBACK_DAYS = _int_env('TRIAL_LOOKBACK_DAYS', 30)
    FRAUD_HIGH_THRESHOLD = _int_env('FRAUD_HIGH_THRESHOLD', 70)
    FRAUD_DENY_THRESHOLD = _int_env('FRAUD_DENY_THRESHOLD', 40)
    FRAUD_FLAG_THRESHOLD = _int_env('FRAUD_FLAG_THRESHOLD', 20)
    FRAUD_MAX_TRIALS_PER_IP = _int_env('FRAUD_MAX_TRIALS_PER_IP', 3)
    FRAUD_MAX_TRIALS_PER_DOMAIN = _int_env('FRAUD_MAX_TRIALS_PER_DOMAIN', 5)

    # Notifications
    SMTP_HOST = os.environ.get('SMTP_HOST')
    SMTP_PORT = _int_env('SMTP_PORT', 587)
    SMTP_USER = os.environ.get('SMTP_USER')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD')
    MAIL_FROM = os.environ.get('MAIL_FROM', 'Marketplace <payouts@marketplace.local>')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    STRIPE_WEBHOOK_SECRET = 'whsec_test'
    AUTO_INIT_DB = False
    SMTP_HOST = None
    BCRYPT_LOG_ROUNDS = 4
