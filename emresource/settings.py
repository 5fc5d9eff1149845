"""
Django settings for emresource project.

Values come from the process environment; ``manage.py``, ``wsgi.py``,
``asgi.py`` and the Celery app load a local ``.env`` file before this module
is imported.
"""

import os
from datetime import timedelta
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-emresource-dev-key-change-me')

DEBUG = _env_bool('DEBUG', True)

ALLOWED_HOSTS = [host.strip() for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if host.strip()]


INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'accounts',
    'donor',
    'emergency',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'emresource.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'emresource.wsgi.application'


# Database
# Every store operation is bounded: SQLite waits at most DATABASE_TIMEOUT_SECONDS
# for a lock, PostgreSQL aborts statements after the same number of seconds.

DATABASE_TIMEOUT_SECONDS = _env_int('DATABASE_TIMEOUT_SECONDS', 5)

if os.getenv('POSTGRES_DB'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv('POSTGRES_DB'),
            'USER': os.getenv('POSTGRES_USER', 'postgres'),
            'PASSWORD': os.getenv('POSTGRES_PASSWORD', ''),
            'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
            'PORT': os.getenv('POSTGRES_PORT', '5432'),
            'OPTIONS': {
                'connect_timeout': DATABASE_TIMEOUT_SECONDS,
                'options': f'-c statement_timeout={DATABASE_TIMEOUT_SECONDS * 1000}',
            },
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / os.getenv('SQLITE_NAME', 'db.sqlite3'),
            'OPTIONS': {
                'timeout': DATABASE_TIMEOUT_SECONDS,
            },
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Authentication

AUTH_USER_MODEL = 'accounts.Identity'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator', 'OPTIONS': {'min_length': 6}},
]

SESSION_COOKIE_NAME = 'emresource.sid'
SESSION_COOKIE_AGE = _env_int('SESSION_COOKIE_AGE', 60 * 60 * 24)

# Unsafe methods need the token from GET /auth/csrf in an X-CSRFToken header.
CSRF_FAILURE_VIEW = 'emresource.api.csrf_failure'
CSRF_TRUSTED_ORIGINS = [origin.strip() for origin in os.getenv('CSRF_TRUSTED_ORIGINS', '').split(',') if origin.strip()]


# Internationalization

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True


# Static files

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'


# Email (OTP delivery collaborator)

EMAIL_BACKEND = os.getenv('EMAIL_BACKEND', 'django.core.mail.backends.console.EmailBackend')
EMAIL_HOST = os.getenv('EMAIL_HOST', 'smtp.gmail.com')
EMAIL_PORT = _env_int('EMAIL_PORT', 587)
EMAIL_HOST_USER = os.getenv('EMAIL_USER', '')
EMAIL_HOST_PASSWORD = os.getenv('EMAIL_PASSWORD', '')
EMAIL_USE_TLS = _env_bool('EMAIL_USE_TLS', True)
EMAIL_TIMEOUT = _env_int('EMAIL_TIMEOUT', 10)
DEFAULT_FROM_EMAIL = os.getenv('DEFAULT_FROM_EMAIL', 'EMResource <no-reply@emresource.local>')

OTP_TTL_SECONDS = _env_int('OTP_TTL_SECONDS', 300)
OTP_DELIVERY_ASYNC = _env_bool('OTP_DELIVERY_ASYNC', False)
OTP_EMAIL_SUBJECT_PREFIX = os.getenv('OTP_EMAIL_SUBJECT_PREFIX', '[EMResource] ')


# Proximity search

PROXIMITY_DEFAULT_RADIUS_METERS = _env_int('PROXIMITY_DEFAULT_RADIUS_METERS', 50_000)
DONOR_SEARCH_DEFAULT_RADIUS_METERS = _env_int('DONOR_SEARCH_DEFAULT_RADIUS_METERS', 25_000)
FACILITY_SEARCH_DEFAULT_RADIUS_METERS = _env_int('FACILITY_SEARCH_DEFAULT_RADIUS_METERS', 25_000)
PROXIMITY_MAX_RADIUS_METERS = _env_int('PROXIMITY_MAX_RADIUS_METERS', 100_000)
PROXIMITY_RESULT_LIMIT = _env_int('PROXIMITY_RESULT_LIMIT', 50)
PROXIMITY_READ_RETRIES = _env_int('PROXIMITY_READ_RETRIES', 2)

PRIVACY_GRID_DECIMALS = _env_int('PRIVACY_GRID_DECIMALS', 2)

DONATION_RECOVERY_DAYS = _env_int('DONATION_RECOVERY_DAYS', 56)


# Geocoding

GEOCODER_ALLOW_REMOTE = _env_bool('GEOCODER_ALLOW_REMOTE', True)
GEOCODER_USER_AGENT = os.getenv('GEOCODER_USER_AGENT', 'emresource-geocoder')
GEOCODER_TIMEOUT = _env_int('GEOCODER_TIMEOUT', 10)
GEOCODER_MIN_DELAY_SECONDS = float(os.getenv('GEOCODER_MIN_DELAY_SECONDS', '1.0'))
GEOCODER_COUNTRY_BIAS = os.getenv('GEOCODER_COUNTRY_BIAS') or None
GEOCODER_STATIC_FIXTURES = {
    'Test Address': (12.971599, 77.594566),
}


# Celery

CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = _env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TASK_TIME_LIMIT = _env_int('CELERY_TASK_TIME_LIMIT', 60)
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    'purge-expired-credentials': {
        'task': 'accounts.tasks.purge_expired_credentials',
        'schedule': timedelta(minutes=1),
    },
    'expire-overdue-requests': {
        'task': 'emergency.tasks.expire_overdue_requests',
        'schedule': timedelta(minutes=5),
    },
}


# Logging

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'WARNING'),
            'propagate': False,
        },
        'accounts': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'donor': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'emergency': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'emresource': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
