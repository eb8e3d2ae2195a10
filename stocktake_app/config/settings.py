import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-insecure-stocktake-key")
DEBUG = os.environ.get("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    "counts",
    "ledger",
    "api",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "config.middleware.StaticTokenMiddleware",
    "config.middleware.ActorMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DATABASE_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
MEDIA_URL = "/media/"
MEDIA_ROOT = Path(os.environ.get("MEDIA_ROOT", str(BASE_DIR / "media")))

# Uploaded label photos; reject anything a phone camera would not produce.
DATA_UPLOAD_MAX_MEMORY_SIZE = 25 * 1024 * 1024
IMAGE_UPLOAD_MIN_WIDTH = 64
IMAGE_UPLOAD_MIN_HEIGHT = 64
IMAGE_UPLOAD_MAX_WIDTH = 8192
IMAGE_UPLOAD_MAX_HEIGHT = 8192

REST_FRAMEWORK = {
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "api.exceptions.stocktake_exception_handler",
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "UNAUTHENTICATED_USER": None,
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Fabric Stock-Take API",
    "DESCRIPTION": "Roll capture, triage, OCR re-processing and reconciliation for stock-take sessions.",
    "VERSION": "1.0.0",
}

# API access
API_PATH_PREFIX = "/api/"
API_STATIC_TOKEN = os.environ.get("STOCKTAKE_API_TOKEN", "")
ACTOR_HEADER = "X-Actor-Id"

STOCKTAKE = {
    "OCR_ENGINE": os.environ.get("STOCKTAKE_OCR_ENGINE", "tesseract"),
    "OCR_REMOTE_URL": os.environ.get("STOCKTAKE_OCR_REMOTE_URL", ""),
    "OCR_REMOTE_API_KEY": os.environ.get("STOCKTAKE_OCR_REMOTE_API_KEY", ""),
    "OCR_RERUN_ASYNC": os.environ.get("STOCKTAKE_OCR_RERUN_ASYNC", "true").lower() == "true",
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "counts": {"handlers": ["console"], "level": os.environ.get("STOCKTAKE_LOG_LEVEL", "INFO"), "propagate": False},
        "ledger": {"handlers": ["console"], "level": os.environ.get("STOCKTAKE_LOG_LEVEL", "INFO"), "propagate": False},
        "api": {"handlers": ["console"], "level": os.environ.get("STOCKTAKE_LOG_LEVEL", "INFO"), "propagate": False},
        "label_ocr": {"handlers": ["console"], "level": os.environ.get("STOCKTAKE_LOG_LEVEL", "INFO"), "propagate": False},
    },
}
