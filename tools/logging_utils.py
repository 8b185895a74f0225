#!/usr/bin/env python3
"""
logging_utils.py - Root logger setup for schema-cli

Library modules only create loggers with logging.getLogger(__name__);
handlers are installed here, once, by the command line entry point.

Progress messages (DEBUG/INFO) normally go to stdout next to the human
readable report. When stdout carries machine output (JSON, hex payloads)
every record goes to stderr so the output stays parseable.

Usage:
    from logging_utils import configure_cli_logging

    configure_cli_logging(verbose=args.verbose, machine_output=args.json)
"""

import logging
import sys

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_cli_logging(verbose: bool = False, machine_output: bool = False) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setFormatter(formatter)
    if not machine_output:
        stderr_handler.setLevel(logging.WARNING)

        stdout_handler = logging.StreamHandler(stream=sys.stdout)
        stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
        stdout_handler.setFormatter(formatter)
        root.addHandler(stdout_handler)

    root.addHandler(stderr_handler)
