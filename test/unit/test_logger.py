import logging

import pytest

from hls_offline.logger import LOGGER_NAME, setup_logging


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_repeated_setup_replaces_handlers(tmp_path):
    setup_logging()
    logger = setup_logging(verbose=True, log_file=str(tmp_path / "run.log"))

    assert logger.level == logging.DEBUG
    assert [type(handler) for handler in logger.handlers] == [logging.StreamHandler, logging.FileHandler]


def test_records_reach_the_log_file(tmp_path):
    log_file = tmp_path / "run.log"
    setup_logging(log_file=str(log_file))

    logging.getLogger("hls_offline.manager").info("[*] DOWNLOAD: FINISHED")
    logging.getLogger("hls_offline.manager").debug("hidden")
    for handler in logging.getLogger(LOGGER_NAME).handlers:
        handler.flush()

    text = log_file.read_text(encoding="utf-8")
    assert "INFO - [*] DOWNLOAD: FINISHED" in text
    assert "hidden" not in text
