import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() == "true"

ALLOWED_HOSTS = [host.strip() for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host.strip()]
if "*" not in ALLOWED_HOSTS and "backend" not in ALLOWED_HOSTS:
    ALLOWED_HOSTS.append("backend")

# Respect proxy headers from nginx so absolute URLs use https.
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "corsheaders",
    "solostore_pipeline.apps.SolostorePipelineConfig",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "solostore.urls"

WSGI_APPLICATION = "solostore.wsgi.application"

if os.environ.get("POSTGRES_HOST", "").strip():
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("POSTGRES_DB", "solostore"),
            "USER": os.environ.get("POSTGRES_USER", "solostore"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", "solostore"),
            "HOST": os.environ.get("POSTGRES_HOST", "db"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
            # Threads write concurrently; writers queue on the lock taken at BEGIN.
            "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
            "TEST": {"NAME": os.environ.get("SQLITE_TEST_PATH", str(BASE_DIR / "test_db.sqlite3"))},
        }
    }

AUTHENTICATION_BACKENDS = [
    "django.contrib.auth.backends.ModelBackend",
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

MEDIA_URL = "/media/"
MEDIA_ROOT = BASE_DIR / "media"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
CORS_ALLOW_CREDENTIALS = True

CSRF_TRUSTED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CSRF_TRUSTED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "root": {"handlers": ["console"], "level": os.environ.get("DJANGO_LOG_LEVEL", "INFO")},
    "loggers": {
        "solostore_pipeline": {
            "handlers": ["console"],
            "level": os.environ.get("PIPELINE_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# Publication pipeline.
PIPELINE_ASYNC_MODE = os.environ.get("PIPELINE_ASYNC_MODE", "").strip().lower() or (
    "inprocess" if DEBUG else "redis"
)
PIPELINE_JOBS_REDIS_URL = os.environ.get("PIPELINE_JOBS_REDIS_URL", "redis://redis:6379/0")
PIPELINE_JOB_TIMEOUT_SECONDS = int(os.environ.get("PIPELINE_JOB_TIMEOUT_SECONDS", "900"))
PIPELINE_BUILD_TIMEOUT_SECONDS = int(os.environ.get("PIPELINE_BUILD_TIMEOUT_SECONDS", "1800"))
PIPELINE_SIGNING_KEY = os.environ.get("PIPELINE_SIGNING_KEY", SECRET_KEY)
PIPELINE_SIGNING_KEY_ID = os.environ.get("PIPELINE_SIGNING_KEY_ID", "default")
PIPELINE_POLL_INTERVAL_MS = int(os.environ.get("PIPELINE_POLL_INTERVAL_MS", "2000"))

PIPELINE_DRAFT_DEBOUNCE_SECONDS = float(os.environ.get("PIPELINE_DRAFT_DEBOUNCE_SECONDS", "0.6"))

PIPELINE_VERIFICATION_TIMEOUT_SECONDS = float(os.environ.get("PIPELINE_VERIFICATION_TIMEOUT_SECONDS", "10"))
PIPELINE_DOH_URL = os.environ.get("PIPELINE_DOH_URL", "https://cloudflare-dns.com/dns-query")
PIPELINE_DNS_RECORD_PREFIX = os.environ.get("PIPELINE_DNS_RECORD_PREFIX", "_solostore-verification")
PIPELINE_DNS_VALUE_PREFIX = os.environ.get("PIPELINE_DNS_VALUE_PREFIX", "solostore-verification=")
PIPELINE_VERIFICATION_FILE_PATH = os.environ.get(
    "PIPELINE_VERIFICATION_FILE_PATH", "/.well-known/solostore-verification.txt"
)

PIPELINE_STORAGE = {
    "storage": {
        "primary": {"name": os.environ.get("PIPELINE_STORAGE_PRIMARY", "local")},
        "providers": [
            {
                "name": "local",
                "type": "local",
                "local": {"base_path": os.environ.get("PIPELINE_STORAGE_LOCAL_PATH", str(MEDIA_ROOT / "pipeline"))},
            },
            {
                "name": "s3",
                "type": "s3",
                "s3": {
                    "bucket": os.environ.get("PIPELINE_STORAGE_S3_BUCKET", ""),
                    "region": os.environ.get("PIPELINE_STORAGE_S3_REGION", ""),
                    "prefix": os.environ.get("PIPELINE_STORAGE_S3_PREFIX", "solostore"),
                    "kms_key_id": os.environ.get("PIPELINE_STORAGE_S3_KMS_KEY_ID", ""),
                },
            },
        ],
    }
}

PIPELINE_NOTIFICATIONS = {
    "notifications": {
        "enabled": os.environ.get("PIPELINE_NOTIFICATIONS_ENABLED", "true").lower() == "true",
        "channels": [
            {
                "type": "discord",
                "enabled": bool(os.environ.get("PIPELINE_DISCORD_WEBHOOK_URL", "").strip()),
                "discord": {
                    "webhook_url": os.environ.get("PIPELINE_DISCORD_WEBHOOK_URL", ""),
                    "username": os.environ.get("PIPELINE_DISCORD_USERNAME", "SoloStore"),
                    "audiences": ["operators"],
                },
            },
            {
                "type": "aws_sns",
                "enabled": bool(os.environ.get("PIPELINE_SNS_TOPIC_ARN", "").strip()),
                "aws_sns": {
                    "topic_arn": os.environ.get("PIPELINE_SNS_TOPIC_ARN", ""),
                    "region": os.environ.get("PIPELINE_SNS_REGION", ""),
                    "subject_prefix": "[solostore]",
                },
            },
        ],
    }
}
