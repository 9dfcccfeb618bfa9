# Copyright (C) 2015-2021 Regents of the University of California
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Command line logging configuration shared by every nodeadm entry point."""
import logging
from argparse import ArgumentParser, Namespace
from logging.handlers import RotatingFileHandler
from typing import List, Optional, Set

logger = logging.getLogger(__name__)
root_logger = logging.getLogger()
nodeadm_logger = logging.getLogger('nodeadm')

DEFAULT_LOGLEVEL = logging.INFO
LOG_FORMAT = '[%(asctime)s] [%(threadName)-10s] [%(levelname).1s] [%(name)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S%z'

# The AWS SDK and its HTTP stack log every request at INFO and above.
NOISY_LOGGERS = ['boto3', 'botocore', 'urllib3']
NEVER_SUPPRESS = {'nodeadm', '__init__', '__main__'}

ROTATE_AFTER_BYTES = 1000000

_log_files: List[str] = []


def set_log_level(level: str, set_logger: Optional[logging.Logger] = None) -> None:
    """Set a logger, the root logger by default, to a level name like "INFO". "OFF" means CRITICAL."""
    level = level.upper()
    (set_logger or root_logger).setLevel('CRITICAL' if level == 'OFF' else level)
    suppress_exotic_logging(__name__)


def add_logging_options(parser: ArgumentParser, default_level: Optional[int] = None) -> None:
    """Add the --logLevel family of options, all writing to options.logLevel."""
    group = parser.add_argument_group("Logging Options")
    default = logging.getLevelName(default_level or DEFAULT_LOGLEVEL)

    names = ['Critical', 'Error', 'Warning', 'Debug', 'Info']
    for name in names:
        group.add_argument(f"--log{name}", dest="logLevel", default=default, action="store_const",
                           const=name, help=f"Log at {name.lower()} level and above.")
    group.add_argument("--logOff", dest="logLevel", default=default, action="store_const",
                       const="CRITICAL", help="Only log critical messages.")
    choices = names + [n.lower() for n in names] + [n.upper() for n in names]
    group.add_argument("--logLevel", dest="logLevel", default=default, choices=choices,
                       help="Log level to use.")
    group.add_argument("--logFile", dest="logFile", help="Also write the log to this file.")
    group.add_argument("--rotatingLogging", dest="logRotating", action="store_true", default=False,
                       help=f"Rotate the log file once it grows past {ROTATE_AFTER_BYTES} bytes.")


def configure_root_logger() -> None:
    """Give the root logger nodeadm's format. Entry points call this before logging anything."""
    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root_logger.setLevel(DEFAULT_LOGLEVEL)


def log_to_file(log_file: Optional[str], log_rotation: bool) -> None:
    """Copy the log to a file, once per file no matter how often this is called."""
    if not log_file or log_file in _log_files:
        return
    logger.debug("Logging to file '%s'.", log_file)
    _log_files.append(log_file)
    if log_rotation:
        handler: logging.Handler = RotatingFileHandler(log_file, maxBytes=ROTATE_AFTER_BYTES, backupCount=1)
    else:
        handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(handler)


def set_logging_from_options(options: Namespace) -> None:
    """Apply the logging options a subcommand parsed."""
    configure_root_logger()
    options.logLevel = options.logLevel or logging.getLevelName(root_logger.getEffectiveLevel())
    set_log_level(options.logLevel)
    logger.debug("Root logger is at level '%s', 'nodeadm' logger at level '%s'.",
                 logging.getLevelName(root_logger.getEffectiveLevel()),
                 logging.getLevelName(nodeadm_logger.getEffectiveLevel()))
    log_to_file(options.logFile, options.logRotating)


def suppress_exotic_logging(local_logger: str) -> None:
    """
    Turn every top level logger other than nodeadm's down to CRITICAL.

    Loggers that don't exist yet can't be found, so the noisy AWS ones are
    created here and silenced ahead of time.
    """
    silenced: Set[str] = set()
    for name in list(logging.Logger.manager.loggerDict) + NOISY_LOGGERS:
        if name == local_logger:
            continue
        top_level = name.split('.')[0]
        if top_level not in silenced and top_level not in NEVER_SUPPRESS:
            silenced.add(top_level)
            logging.getLogger(top_level).setLevel(logging.CRITICAL)
    logger.debug("Suppressing the following loggers: %s", silenced)
