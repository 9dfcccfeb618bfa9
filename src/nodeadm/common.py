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
"""Command line plumbing shared by the nodeadm subcommands."""
import logging
import os
from typing import Optional

from configargparse import ArgParser, ArgumentDefaultsHelpFormatter, YAMLConfigFileParser

from nodeadm.lib.logging import add_logging_options
from nodeadm.version import version

logger = logging.getLogger(__name__)

NODEADM_HOME_DIR: str = os.path.join(os.path.expanduser("~"), ".nodeadm")
DEFAULT_CONFIG_FILE: str = os.path.join(NODEADM_HOME_DIR, "default.yaml")


def parser_with_common_options(prog: Optional[str] = None,
                               description: Optional[str] = None,
                               default_log_level: Optional[int] = None) -> ArgParser:
    """
    Make an argument parser with the options every subcommand takes.

    Any long option can also be set from a YAML config file, by default
    ~/.nodeadm/default.yaml, so the usual way to pin a region is a line like
    ``region: us-west-2`` there.
    """
    parser = ArgParser(prog=prog or "nodeadm",
                       description=description,
                       formatter_class=ArgumentDefaultsHelpFormatter,
                       config_file_parser_class=YAMLConfigFileParser,
                       default_config_files=[DEFAULT_CONFIG_FILE])
    parser.add_argument("--config", is_config_file=True,
                        help=f"YAML file of option values to use instead of {DEFAULT_CONFIG_FILE}.")
    add_logging_options(parser, default_log_level)
    parser.add_argument("--version", action="version", version=version)
    return parser
