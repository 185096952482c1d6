import logging

import pytest

from sorter_stack.l0_core import logging_config


@pytest.fixture
def root_logger(monkeypatch):
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    monkeypatch.setattr(logging_config, "_configured", False)
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_level_comes_from_the_environment(root_logger, monkeypatch):
    monkeypatch.setenv("SORTER_LOG_LEVEL", "DEBUG")
    logging_config.setup_logging()
    assert root_logger.level == logging.DEBUG


def test_second_call_is_a_no_op(root_logger):
    logging_config.setup_logging("WARNING")
    handlers = root_logger.handlers[:]
    logging_config.setup_logging("DEBUG")
    assert root_logger.level == logging.WARNING
    assert root_logger.handlers == handlers
