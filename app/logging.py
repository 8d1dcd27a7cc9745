"""Process-wide logging configuration."""

from __future__ import annotations

import logging.config

from app.config import settings


def logging_config(json_output: bool, level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "rename_fields": {"asctime": "ts", "levelname": "level", "name": "logger"},
            },
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "json" if json_output else "plain"},
        },
        "root": {"handlers": ["console"], "level": level.upper()},
        # Celery and SQLAlchemy are noisy at INFO.
        "loggers": {
            "sqlalchemy.engine": {"level": "WARNING"},
            "celery": {"level": "WARNING"},
        },
    }


def configure_logging() -> None:
    logging.config.dictConfig(logging_config(settings.log_json, settings.log_level))
