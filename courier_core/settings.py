"""
Django settings for the courier dispatch platform.

Configuration covers:
- Role-scoped delivery dispatch (businesses, couriers, admins)
- Redis/Celery (periodic maintenance tasks)
- Channels (live delivery and courier-location push)
- JWT Authentication (API)
"""

from pathlib import Path
from decouple import config, Csv
from datetime import timedelta

# ===========================================
# BASE CONFIGURATION
# ===========================================
BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config('SECRET_KEY', default='dev-secret-key-change-in-production')
DEBUG = config('DEBUG', default=True, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,0.0.0.0', cast=Csv())

# ===========================================
# APPLICATION DEFINITION
# ===========================================
INSTALLED_APPS = [
    # Django Core
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',

    # Daphne MUST be before staticfiles
    'daphne',
    'channels',

    'django.contrib.staticfiles',

    # Third Party
    'rest_framework',
    'rest_framework_simplejwt',
    'corsheaders',
    'django_filters',
    'drf_spectacular',

    # Dispatch Apps
    'core.apps.CoreConfig',
    'logistics.apps.LogisticsConfig',
    'reports.apps.ReportsConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'courier_core.urls'

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

WSGI_APPLICATION = 'courier_core.wsgi.application'

# ===========================================
# DATABASE
# ===========================================
# SQLite for local development and tests, PostgreSQL in deployment.
DB_ENGINE = config('DB_ENGINE', default='django.db.backends.sqlite3')

if DB_ENGINE == 'django.db.backends.sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': config('DB_NAME', default=str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': config('DB_NAME', default='dispatch_db'),
            'USER': config('DB_USER', default='dispatch_user'),
            'PASSWORD': config('DB_PASSWORD', default=''),
            'HOST': config('DB_HOST', default='db'),
            'PORT': config('DB_PORT', default='5432'),
        }
    }

# ===========================================
# CUSTOM USER MODEL
# ===========================================
AUTH_USER_MODEL = 'core.User'

# ===========================================
# PASSWORD VALIDATION
# ===========================================
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# ===========================================
# INTERNATIONALIZATION
# ===========================================
LANGUAGE_CODE = 'en-us'
TIME_ZONE = config('TIME_ZONE', default='Asia/Jerusalem')
USE_I18N = True
USE_TZ = True

# ===========================================
# STATIC FILES
# ===========================================
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# ===========================================
# DEFAULT PRIMARY KEY
# ===========================================
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===========================================
# REDIS (cache + channel layer)
# ===========================================
# Leave REDIS_URL empty to run on in-process backends (development, tests).
REDIS_URL = config('REDIS_URL', default='')

if REDIS_URL:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.redis.RedisCache',
            'LOCATION': REDIS_URL,
        }
    }
else:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'courier-dispatch',
        }
    }

# ===========================================
# DJANGO CHANNELS (WebSocket Real-time)
# ===========================================
ASGI_APPLICATION = 'courier_core.asgi.application'

if REDIS_URL:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels_redis.core.RedisChannelLayer',
            'CONFIG': {
                'hosts': [config('CHANNELS_REDIS_URL', default=REDIS_URL)],
                'capacity': 1500,
                'expiry': 10,
            },
        },
    }
else:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels.layers.InMemoryChannelLayer',
        },
    }

# ===========================================
# DJANGO REST FRAMEWORK
# ===========================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_FILTER_BACKENDS': [
        'django_filters.rest_framework.DjangoFilterBackend',
        'rest_framework.filters.OrderingFilter',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': config('API_PAGE_SIZE', default=20, cast=int),
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

# ===========================================
# API DOCUMENTATION (drf-spectacular)
# ===========================================
SPECTACULAR_SETTINGS = {
    'TITLE': 'Courier Dispatch API',
    'DESCRIPTION': 'Deliveries posted by businesses, claimed and fulfilled by couriers',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
}

# ===========================================
# JWT CONFIGURATION
# ===========================================
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=config('JWT_ACCESS_HOURS', default=12, cast=int)),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
    'ROTATE_REFRESH_TOKENS': True,
    'AUTH_HEADER_TYPES': ('Bearer',),
}

# ===========================================
# CORS (Cross-Origin Resource Sharing)
# ===========================================
CORS_ALLOWED_ORIGINS = config(
    'CORS_ALLOWED_ORIGINS',
    default='http://localhost:3000,http://127.0.0.1:3000',
    cast=Csv()
)
CORS_ALLOW_CREDENTIALS = True

# ===========================================
# CELERY CONFIGURATION
# ===========================================
CELERY_BROKER_URL = config('CELERY_BROKER_URL', default='redis://redis:6379/0')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default='redis://redis:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ALWAYS_EAGER = config('CELERY_TASK_ALWAYS_EAGER', default=False, cast=bool)

# Celery Beat Schedule (Periodic Tasks)
from celery.schedules import crontab  # noqa: E402

CELERY_BEAT_SCHEDULE = {
    # Drop courier location history past the retention window, nightly at 03:30
    'prune-location-history': {
        'task': 'logistics.tasks.prune_location_history',
        'schedule': crontab(hour=3, minute=30),
    },
}

# ===========================================
# BUSINESS RULES - PRICING ENGINE
# ===========================================
PRICING_BASE_FEE = config('PRICING_BASE_FEE', default='10')
PRICING_RATE_NEAR = config('PRICING_RATE_NEAR', default='3.2')          # per km, first tier
PRICING_RATE_FAR = config('PRICING_RATE_FAR', default='2.6')            # per km, beyond tier
PRICING_NEAR_LIMIT_KM = config('PRICING_NEAR_LIMIT_KM', default='15')
PRICING_MINIMUM_FARE = config('PRICING_MINIMUM_FARE', default='15')
PRICING_MIN_DISTANCE_KM = config('PRICING_MIN_DISTANCE_KM', default='1')
PRICING_ROUNDING_STEP = config('PRICING_ROUNDING_STEP', default='0.5')
PRICING_RUSH_SURCHARGE = config('PRICING_RUSH_SURCHARGE', default='1.25')
PRICING_NIGHT_SURCHARGE = config('PRICING_NIGHT_SURCHARGE', default='1.15')
PRICING_WEEKEND_SURCHARGE = config('PRICING_WEEKEND_SURCHARGE', default='1.10')

# ===========================================
# BUSINESS RULES - COURIER FEED & TRACKING
# ===========================================
COURIER_DEFAULT_RADIUS_KM = config('COURIER_DEFAULT_RADIUS_KM', default=5.0, cast=float)
COURIER_MAX_RADIUS_KM = config('COURIER_MAX_RADIUS_KM', default=100.0, cast=float)
LOCATION_HISTORY_INTERVAL_SECONDS = config('LOCATION_HISTORY_INTERVAL_SECONDS', default=60, cast=int)
LOCATION_HISTORY_RETENTION_DAYS = config('LOCATION_HISTORY_RETENTION_DAYS', default=30, cast=int)

# ===========================================
# MAINTENANCE COMMANDS
# ===========================================
ADMIN_EMAIL = config('ADMIN_EMAIL', default='admin@example.com')
ADMIN_PASSWORD = config('ADMIN_PASSWORD', default='')
ADMIN_NAME = config('ADMIN_NAME', default='Admin')
SEED_PASSWORD = config('SEED_PASSWORD', default='Passw0rd!')
SEED_HISTORY_PINGS = config('COURIER_LOC_HISTORY_PINGS', default=0, cast=int)
SEED_HISTORY_STEP_MINUTES = config('COURIER_LOC_STEP_MIN', default=5, cast=int)

# ===========================================
# LOGGING CONFIGURATION
# ===========================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
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
        'level': config('LOG_LEVEL', default='INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': config('DJANGO_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
