import logging.config

from core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once at process start (API and Celery worker)."""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": level or settings.LOG_LEVEL,
        },
        "loggers": {
            # SQL echo is controlled by SQLALCHEMY_ECHO, keep the engine quiet otherwise
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })
