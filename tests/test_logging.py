"""Tests for the logging configuration."""

import io
import json
import logging
import logging.config

from app.logging import logging_config


def test_json_formatter_renames_standard_fields():
    config = logging_config(json_output=True, level="debug")
    logging.config.dictConfig(config)
    handler = next(h for h in logging.getLogger().handlers if h.name == "console")
    stream = io.StringIO()
    handler.setStream(stream)
    try:
        logging.getLogger("app.tests").info("backup %s written", "b-1", extra={"backup_id": "b-1"})
    finally:
        logging.config.dictConfig(logging_config(json_output=False))

    record = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert record["message"] == "backup b-1 written"
    assert record["level"] == "INFO"
    assert record["logger"] == "app.tests"
    assert record["backup_id"] == "b-1"
    assert "ts" in record


def test_plain_config_keeps_noisy_loggers_quiet():
    config = logging_config(json_output=False)

    assert config["handlers"]["console"]["formatter"] == "plain"
    assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
