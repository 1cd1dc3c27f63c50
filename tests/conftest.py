"""Shared fixtures.

``setup_logging`` rewires the root logger and per-module levels. Tests that
call it, directly or through the CLI, must not leak that state into later
tests, where log lines would end up in captured command output.
"""

import logging

import pytest


@pytest.fixture(autouse=True)
def isolated_logging():
    """Restore root handlers and every logger level after each test."""
    root = logging.getLogger()
    root_level = root.level
    root_handlers = list(root.handlers)
    levels = {
        name: logger.level
        for name, logger in logging.root.manager.loggerDict.items()
        if isinstance(logger, logging.Logger)
    }

    yield

    for handler in list(root.handlers):
        if handler not in root_handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in root_handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(root_level)

    for name, logger in logging.root.manager.loggerDict.items():
        if isinstance(logger, logging.Logger):
            logger.setLevel(levels.get(name, logging.NOTSET))
