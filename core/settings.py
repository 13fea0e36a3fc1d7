import sys
from pathlib import Path

from environs import Env
from loguru import logger

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'escrow',
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

ROOT_URLCONF = 'core.urls'

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

WSGI_APPLICATION = 'core.wsgi.application'


if env.str('DATABASE_ENGINE', ''):
    DATABASES = {
        'default': {
            'ENGINE': env.str('DATABASE_ENGINE'),
            'NAME': env.str('PGSQL_DATABASE', 'escrow_reconciler'),
            'USER': env.str('PGSQL_USER', 'postgres'),
            'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
            'HOST': env.str('PGSQL_HOST', 'localhost'),
            'PORT': env.int('PGSQL_PORT', 5432),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
]


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'UNAUTHENTICATED_USER': None,
}

logger.remove()
logger.add(sys.stderr, level=env.str('LOG_LEVEL', 'INFO').upper())

SUI_NETWORK = env.str('SUI_NETWORK', 'testnet')
SUI_RPC_URL = env.str('SUI_RPC_URL', '')
SUI_ADMIN_PRIVATE_KEY = env.str('SUI_ADMIN_PRIVATE_KEY', '')
SUI_PACKAGE_ID = env.str('SUI_PACKAGE_ID', '')
SUI_DAPP_HUB_ID = env.str('SUI_DAPP_HUB_ID', '')
SUI_GAS_BUDGET = env.int('SUI_GAS_BUDGET', 50_000_000)
SUI_RPC_TIMEOUT_SECONDS = env.int('SUI_RPC_TIMEOUT_SECONDS', 30)
SUI_DEFAULT_COMPANION = env.str('SUI_DEFAULT_COMPANION', '')

ADMIN_API_TOKEN = env.str('ADMIN_API_TOKEN', '')
ADMIN_AUDIT_LOG_LIMIT = env.int('ADMIN_AUDIT_LOG_LIMIT', 5000)
ADMIN_CHAIN_EVENT_LIMIT = env.int('ADMIN_CHAIN_EVENT_LIMIT', 1000)
ADMIN_CHAIN_OVERVIEW_CACHE_TTL_MS = env.int('ADMIN_CHAIN_OVERVIEW_CACHE_TTL_MS', 5000)

CHAIN_ORDER_CACHE_TTL_MS = env.int('CHAIN_ORDER_CACHE_TTL_MS', 30000)
CHAIN_ORDER_MAX_CACHE_AGE_MS = env.int('CHAIN_ORDER_MAX_CACHE_AGE_MS', 300000)
CHAIN_ORDER_AUTO_CANCEL_HOURS = env.float('CHAIN_ORDER_AUTO_CANCEL_HOURS', 0)
CHAIN_ORDER_AUTO_CANCEL_MAX = env.int('CHAIN_ORDER_AUTO_CANCEL_MAX', 10)
CHAIN_ORDER_AUTO_COMPLETE_HOURS = env.float('CHAIN_ORDER_AUTO_COMPLETE_HOURS', 24)
CHAIN_ORDER_AUTO_COMPLETE_MAX = env.int('CHAIN_ORDER_AUTO_COMPLETE_MAX', 10)
CHAIN_ORDER_AUTO_FINALIZE_MAX = env.int('CHAIN_ORDER_AUTO_FINALIZE_MAX', 10)
CHAIN_MISSING_CLEANUP_ENABLED = env.bool('CHAIN_MISSING_CLEANUP_ENABLED', False)
CHAIN_MISSING_CLEANUP_MAX_AGE_HOURS = env.float('CHAIN_MISSING_CLEANUP_MAX_AGE_HOURS', 0)
CHAIN_MISSING_CLEANUP_MAX = env.int('CHAIN_MISSING_CLEANUP_MAX', 500)

CRON_SECRET = env.str('CRON_SECRET', '')
CRON_LOCK_TTL_MS = env.int('CRON_LOCK_TTL_MS', 600000)
