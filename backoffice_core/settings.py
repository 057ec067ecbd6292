"""
Django settings for the fund back-office platform.
"""
from pathlib import Path

from decouple import config

BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = config('SECRET_KEY', default='dev-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config('DEBUG', default=False, cast=bool)

ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1', cast=lambda v: [s.strip() for s in v.split(',')])

# Application definition
DJANGO_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
]

THIRD_PARTY_APPS = [
    'rest_framework',
]

BUSINESS_APPS = [
    'business_modules.data_rooms',
]

INSTALLED_APPS = DJANGO_APPS + THIRD_PARTY_APPS + BUSINESS_APPS

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'backoffice_core.urls'

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

WSGI_APPLICATION = 'backoffice_core.wsgi.application'

# Database
DATABASES = {
    'default': {
        'ENGINE': config('DB_ENGINE', default='django.db.backends.postgresql'),
        'NAME': config('DB_NAME', default='backoffice'),
        'USER': config('DB_USER', default='postgres'),
        'PASSWORD': config('DB_PASSWORD', default='password'),
        'HOST': config('DB_HOST', default='localhost'),
        'PORT': config('DB_PORT', default='5432'),
    }
}

# Cache (rate limiting history lives here)
CACHES = {
    'default': {
        'BACKEND': config('CACHE_BACKEND', default='django.core.cache.backends.redis.RedisCache'),
        'LOCATION': config('REDIS_URL', default='redis://localhost:6379/1'),
    }
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# REST Framework
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_THROTTLE_RATES': {
        'shared_link': config('DATA_ROOMS_SHARED_LINK_RATE', default='60/hour'),
        'nda_sign': config('DATA_ROOMS_NDA_SIGN_RATE', default='5/hour'),
    },
}

# Data room sharing
DATA_ROOMS_TABLE_BACKEND = config('DATA_ROOMS_TABLE_BACKEND', default='django')
DATA_ROOMS_TABLE_NAME = config('DATA_ROOMS_TABLE_NAME', default='aifm-datarooms')
DATA_ROOMS_TABLE_REGION = config('DATA_ROOMS_TABLE_REGION', default='eu-north-1')
DATA_ROOMS_ACCESS_GRANT_TTL = config('DATA_ROOMS_ACCESS_GRANT_TTL', default=300, cast=int)  # 5 minutes
DATA_ROOMS_LINK_ROOM_PAGE_SIZE = config('DATA_ROOMS_LINK_ROOM_PAGE_SIZE', default=200, cast=int)
DATA_ROOMS_DEFAULT_EXPIRY_DAYS = config('DATA_ROOMS_DEFAULT_EXPIRY_DAYS', default=7, cast=int)
DATA_ROOMS_ROOM_DIRECTORY = config(
    'DATA_ROOMS_ROOM_DIRECTORY',
    default='business_modules.data_rooms.services.room_directory.TableRoomDirectory'
)
DATA_ROOMS_CONTENT_PROVIDER = config(
    'DATA_ROOMS_CONTENT_PROVIDER',
    default='business_modules.data_rooms.services.content.S3ContentUrlProvider'
)
DATA_ROOMS_S3_BUCKET = config('DATA_ROOMS_S3_BUCKET', default='')
DATA_ROOMS_PRESIGNED_URL_TTL = config('DATA_ROOMS_PRESIGNED_URL_TTL', default=300, cast=int)

# Logging
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'level': 'INFO',
            'class': 'logging.StreamHandler',
            'formatter': config('LOG_FORMAT', default='verbose'),
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'business_modules.data_rooms': {
            'handlers': ['console'],
            'level': config('DATA_ROOMS_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
    },
}
