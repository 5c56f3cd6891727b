#!/usr/bin/env python

import logging
import sys
from logging.handlers import RotatingFileHandler

LOG_FORMAT = '%(asctime)s %(module)s[%(process)d]:%(lineno)d %(levelname)s: %(message)s'


def setup_logging(logger, logfile=None, max_bytes=None, backup_count=None, verbose=False):
    """Sets up logging and associated handlers."""

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if logfile and backup_count is not None and max_bytes is not None:
        ch = RotatingFileHandler(logfile, 'a', max_bytes, backup_count)
    elif logfile:
        ch = logging.FileHandler(logfile, 'a')
    else:  # Setup stream handler.
        ch = logging.StreamHandler(sys.stdout)

    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(ch)
    return ch
