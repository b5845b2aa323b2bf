"""Tests for logging setup."""

import json
import logging
from pathlib import Path

from couch_sync.config import LoggingConfig
from couch_sync.utils.logger import (
    JsonFormatter,
    get_run_logger,
    logger,
    setup_logging_from_config,
)


class TestJsonFormatter:
    """Tests for JsonFormatter class."""

    def test_extra_fields_are_top_level(self) -> None:
        record = logging.makeLogRecord(
            {"name": "couch_sync.run", "levelname": "INFO", "msg": "Finished %s", "args": ("a",)}
        )
        record.stats = {"num_records": 3}

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Finished a"
        assert data["logger"] == "couch_sync.run"
        assert data["stats"] == {"num_records": 3}
        assert "args" not in data


class TestRunLogger:
    """Tests for the run logger adapter."""

    def test_pipe_id_attached(self, caplog) -> None:
        run_logger = get_run_logger("orders")

        with caplog.at_level(logging.INFO, logger="couch_sync.run"):
            run_logger.info("hello", extra={"table": "t"})

        record = caplog.records[-1]
        assert record.pipe == "orders"
        assert record.table == "t"


class TestSetupLogging:
    """Tests for setup_logging_from_config()."""

    def test_file_handler_json(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "run.log"
        setup_logging_from_config(LoggingConfig(format="json", file=log_file))
        try:
            logger.info("copied", extra={"copied": 5})
            for handler in logger.handlers:
                handler.flush()

            line = log_file.read_text().strip().splitlines()[-1]
            assert json.loads(line)["copied"] == 5
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)

    def test_quiet(self) -> None:
        setup_logging_from_config(LoggingConfig(level="DEBUG"), quiet=True)
        try:
            assert logger.level == logging.WARNING
        finally:
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)
