import functools
import logging

import click.testing
import pytest

from helmset._core.actions.loggers import ResourceFormatter
from helmset.cli import main


@pytest.fixture(autouse=True)
def _clear_own_handlers():
    # Every invocation adds its own handler with a stream into the runner's interceptor.
    logger = logging.getLogger()
    original_handlers = logger.handlers[:]
    original_level = logger.level
    yield
    logger.handlers[:] = [
        handler for handler in original_handlers
        if not isinstance(handler.formatter, ResourceFormatter)
    ]
    logger.setLevel(original_level)


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('helmset._core.reactor.hosting.run', return_value=[])
