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
"""Delete the infrastructure of one E2E test cluster, described by a resources file."""
import datetime
import logging
import sys
from typing import Any, Mapping

from ruamel.yaml import YAML

from nodeadm.common import parser_with_common_options
from nodeadm.e2e.cleanup.sweeper import Sweeper, SweeperError, SweeperInput
from nodeadm.lib.logging import set_logging_from_options

logger = logging.getLogger(__name__)


def read_resources_file(path: str) -> Mapping[str, Any]:
    """
    Read a resources file, which names the cluster to clean up::

        clusterName: nodeadm-e2e-1234
        clusterRegion: us-west-2
        endpoint: https://eks.us-west-2.amazonaws.com   # optional
    """
    with open(path) as fh:
        resources = YAML(typ="safe", pure=True).load(fh) or {}
    if not resources.get("clusterName"):
        raise ValueError(f"resources file {path} must set clusterName")
    return resources


def main() -> None:
    parser = parser_with_common_options(prog="nodeadm cleanup", description=__doc__)
    parser.add_argument("-f", "--filename", dest="filename", required=True, help="Path to resources file.")

    options = parser.parse_args()
    set_logging_from_options(options)

    try:
        resources = read_resources_file(options.filename)
    except (OSError, ValueError) as e:
        parser.error(f"failed to open configuration file: {e}")

    sweeper_input = SweeperInput(cluster_name=resources["clusterName"],
                                 instance_age_threshold=datetime.timedelta(0))
    sweeper = Sweeper.from_session(region_name=resources.get("clusterRegion"),
                                   eks_endpoint=resources.get("endpoint") or None)

    logger.info("Cleaning up E2E cluster resources...")
    try:
        sweeper.run(sweeper_input)
    except SweeperError as e:
        logger.error("Error cleaning up e2e resources:\n%s", e)
        sys.exit(1)
    logger.info("Cleanup completed successfully!")
