import logging

import pytest

from plasmafurnace.logging_config import PACKAGE_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_log_file_receives_engine_records(tmp_path):
    path = tmp_path / "run.log"
    logger = setup_logging(level=logging.DEBUG, log_file=str(path))
    logging.getLogger("plasmafurnace.controller.engine").warning("Wall temperature out of range")
    for handler in logger.handlers:
        handler.flush()

    text = path.read_text(encoding="utf-8")
    assert "plasmafurnace.controller.engine - WARNING - Wall temperature out of range" in text


def test_repeated_setup_replaces_handlers(tmp_path):
    setup_logging(log_file=str(tmp_path / "first.log"))
    logger = setup_logging(level=logging.WARNING)
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING
    assert all(h.level == logging.WARNING for h in logger.handlers)
