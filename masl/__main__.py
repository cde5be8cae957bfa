#!/usr/bin/env python

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# Copyright 2018 Nextdoor.com, Inc
# Copyright 2018 Nathan V
"""Main function that passes off to the Masl module."""

import logging
import os
import sys

import colorlog

from masl.masl import Masl

LOG_FILE = '~/.masl/masl.log'


def setup_logging(log_file=LOG_FILE):
    """Colored console logging, plus a plain log file of every run."""
    logger = logging.getLogger()
    logger.setLevel(logging.INFO)
    handler = colorlog.StreamHandler()
    fmt = (
        '%(asctime)-8s (%(bold)s%(log_color)s%(levelname)s%(reset)s) '
        '%(message)s')
    formatter = colorlog.ColoredFormatter(fmt, datefmt='%H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    log_path = os.path.expanduser(log_file)
    try:
        log_dir = os.path.dirname(log_path)
        if not os.path.exists(log_dir):
            os.makedirs(log_dir, 0o700)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(name)s (%(levelname)s) %(message)s',
            datefmt='%d-%m-%Y %H:%M:%S'))
        logger.addHandler(file_handler)
    except OSError as err:
        logger.warning('Failed to log to {}: {}'.format(log_path, err))
    return logger


def entry_point():
    """Zero-argument entry point for use with setuptools/distribute."""
    setup_logging()
    masl = Masl(sys.argv)
    raise SystemExit(masl.main())


if __name__ == '__main__':
    entry_point()
