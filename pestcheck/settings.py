import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# =========================
# CORE
# =========================
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-this")

DEBUG = os.environ.get("DEBUG", "False") == "True"

INSTALLED_APPS = [
    'rest_framework',
]

# The client keeps no relational data; everything lives on the REST API
DATABASES = {}

# =========================
# INTERNATIONALIZATION
# =========================
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Manila'
USE_I18N = True
USE_TZ = True

# =========================
# BACKEND API
# =========================
API_URL = os.environ.get(
    "PESTCHECK_API_URL",
    os.environ.get("VITE_API_URL", "https://pestcheck-api.onrender.com/api"),
).rstrip('/')

# Swap the HTTP transport for the in-memory mock backend
USE_MOCK_API = os.environ.get("USE_MOCK_API", "False") == "True"

# Long enough for a cold-starting ML service
API_TIMEOUT = int(os.environ.get("API_TIMEOUT", 120))

STATIC_BASE_URL = os.environ.get(
    "PESTCHECK_STATIC_URL",
    "https://pestcheck-backend.onrender.com",
).rstrip('/')

# =========================
# WIDGETS
# =========================
ALERT_POLL_INTERVAL = int(os.environ.get("ALERT_POLL_INTERVAL", 5 * 60))
NOTIFICATION_POLL_INTERVAL = int(os.environ.get("NOTIFICATION_POLL_INTERVAL", 30))

# Admin screens load whole collections and filter locally
ADMIN_PAGE_SIZE = int(os.environ.get("ADMIN_PAGE_SIZE", 1000))

# Used when the device has no location fix
DEFAULT_LOCATION = {
    'latitude': 15.2047,
    'longitude': 120.5947,
    'address': 'Magalang, Pampanga',
}

MIN_IMAGE_DIMENSION = 100

# =========================
# LOCAL STORAGE
# =========================
STORAGE_DIR = Path(os.environ.get("PESTCHECK_STORAGE_DIR", Path.home() / '.pestcheck'))

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.filebased.FileBasedCache',
        'LOCATION': str(STORAGE_DIR),
        'TIMEOUT': None,
    },
}

# =========================
# LOGGING
# =========================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'client': {
            'handlers': ['console'],
            'level': os.environ.get("LOG_LEVEL", "INFO"),
            'propagate': False,
        },
    },
}
