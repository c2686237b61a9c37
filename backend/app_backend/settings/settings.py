"""
Django settings for app_backend project.

Base settings used for local development and tests. Production overrides
live in prod.py (DJANGO_SETTINGS_MODULE=app_backend.settings.prod).
"""

import os
from datetime import timedelta
from pathlib import Path

from celery.schedules import crontab

BASE_DIR = Path(__file__).resolve().parent.parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-dev-only-key-change-me")

DEBUG = os.getenv("DJANGO_DEBUG", "True") == "True"

ALLOWED_HOSTS = ["*"]


# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third party
    'rest_framework',
    'rest_framework_simplejwt',
    'corsheaders',
    'channels',

    # Local apps
    'accounts',
    'drivers',
    'rides',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'app_backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'app_backend.wsgi.application'
ASGI_APPLICATION = 'app_backend.asgi.application'


# Database

DATABASES = {
    'default': {
        'ENGINE': os.getenv("DB_ENGINE", 'django.db.backends.sqlite3'),
        'NAME': os.getenv("DB_NAME", str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv("DB_USER", ""),
        'PASSWORD': os.getenv("DB_PASSWORD", ""),
        'HOST': os.getenv("DB_HOST", ""),
        'PORT': os.getenv("DB_PORT", ""),
    }
}

AUTH_USER_MODEL = 'accounts.User'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]


# Internationalization

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# REST framework / JWT

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=12),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
}

CORS_ALLOW_ALL_ORIGINS = True


# Channels (in-memory for development; Redis in prod.py)

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")


# Celery

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    'expire-stale-rides': {
        'task': 'rides.tasks.expire_stale_rides_task',
        'schedule': crontab(minute='*/5'),
    },
}


# Ride dispatch

RIDE_DISPATCH_INTERVAL_SECONDS = int(os.getenv("RIDE_DISPATCH_INTERVAL_SECONDS", 10))
RIDE_DISPATCH_MAX_RETRIES = int(os.getenv("RIDE_DISPATCH_MAX_RETRIES", 60))
DRIVER_DISCONNECT_GRACE_SECONDS = float(os.getenv("DRIVER_DISCONNECT_GRACE_SECONDS", 5))
DISTANCE_RADIUS_CACHE_SECONDS = float(os.getenv("DISTANCE_RADIUS_CACHE_SECONDS", 30))
DEFAULT_DISTANCE_RADIUS_KM = float(os.getenv("DEFAULT_DISTANCE_RADIUS_KM", 3))
NEARBY_REFRESH_MIN_INTERVAL = float(os.getenv("NEARBY_REFRESH_MIN_INTERVAL", 2))

# Used when no FareRate row exists for a vehicle type
DEFAULT_FARE_RATES = {
    "Single Motorcycle": {"minimum_rate": 15.0, "per_km_rate": 2.5},
    "Tricycle": {"minimum_rate": 20.0, "per_km_rate": 2.8},
    "Cab": {"minimum_rate": 30.0, "per_km_rate": 3.0},
}

RIDE_VEHICLE_CAPACITY = {
    "Single Motorcycle": 1,
    "Tricycle": int(os.getenv("TRICYCLE_CAPACITY", 3)),
    "Cab": 4,
}


# Logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
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
            'level': 'INFO',
            'propagate': False,
        },
        'services': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'realtime': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'rides': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}
