"""
Django settings for the Harmonic background execution core.

Values that differ between deployments are read from the environment.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-harmonic-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "False") == "True"
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third party
    "organizations",
    "django_q",
    # Local
    "accounts",
    "agents",
    "automations",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "harmonic.urls"

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
        "NAME": os.getenv("HARMONIC_SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

if os.getenv("POSTGRES_DB"):
    DATABASES["default"] = {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ["POSTGRES_DB"],
        "USER": os.getenv("POSTGRES_USER", "postgres"),
        "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
        "HOST": os.getenv("POSTGRES_HOST", "localhost"),
        "PORT": os.getenv("POSTGRES_PORT", "5432"),
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

# Django-Q2 cluster. The ORM broker keeps the queue in the primary database.
Q_CLUSTER = {
    "name": "harmonic",
    "workers": int(os.getenv("HARMONIC_Q_WORKERS", "4")),
    "timeout": 600,
    "retry": 660,
    "max_attempts": 1,
    "orm": "default",
    "catch_up": False,
}

# Agent task queue
HARMONIC_AGENT_NAVIGATOR = os.getenv(
    "HARMONIC_AGENT_NAVIGATOR", "agents.navigator.NullNavigator"
)
HARMONIC_AGENT_STUCK_TIMEOUT_MINUTES = int(
    os.getenv("HARMONIC_AGENT_STUCK_TIMEOUT_MINUTES", "15")
)
HARMONIC_AGENT_DEFAULT_MAX_STEPS = 30

# Automation chains
HARMONIC_AUTOMATION_MAX_CHAIN_DEPTH = 3
HARMONIC_AUTOMATION_MAX_RULES_PER_CHAIN = 10
HARMONIC_AUTOMATION_RATE_LIMITS = {
    "agent": 3,
    "general": 10,
}

# USD per million tokens
HARMONIC_LLM_PRICING = {
    "default": {"input": 3.00, "output": 15.00},
    "claude-sonnet-4": {"input": 3.00, "output": 15.00},
    "claude-haiku-4": {"input": 1.00, "output": 5.00},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("HARMONIC_LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django_q": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

# Automation webhooks
HARMONIC_WEBHOOK_TRANSPORT = os.getenv(
    "HARMONIC_WEBHOOK_TRANSPORT", "automations.webhooks.RequestsTransport"
)

# Seconds a condition regex may run before it is abandoned
HARMONIC_AUTOMATION_REGEX_TIMEOUT = 1.0
