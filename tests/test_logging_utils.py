"""Tests for logging_utils.py"""

import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from logging_utils import configure_cli_logging

log = logging.getLogger('schema_loader')


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_quiet_by_default(capsys):
    configure_cli_logging()
    log.info("loaded")
    log.warning("missing import")
    captured = capsys.readouterr()
    assert captured.out == ''
    assert '[WARNING] schema_loader: missing import' in captured.err


def test_verbose_splits_streams(capsys):
    configure_cli_logging(verbose=True)
    log.debug("loaded unit")
    log.error("bad schema")
    captured = capsys.readouterr()
    assert '[DEBUG] schema_loader: loaded unit' in captured.out
    assert 'bad schema' not in captured.out
    assert '[ERROR] schema_loader: bad schema' in captured.err
    assert 'loaded unit' not in captured.err


def test_machine_output_keeps_stdout_clean(capsys):
    configure_cli_logging(verbose=True, machine_output=True)
    log.debug("loaded unit")
    log.warning("skipped field")
    captured = capsys.readouterr()
    assert captured.out == ''
    assert 'loaded unit' in captured.err
    assert 'skipped field' in captured.err


def test_reconfigure_replaces_handlers():
    configure_cli_logging()
    configure_cli_logging(verbose=True)
    root = logging.getLogger()
    assert len(root.handlers) == 2
    assert root.level == logging.DEBUG
