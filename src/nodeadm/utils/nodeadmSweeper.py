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
"""Sweep leaked E2E test infrastructure out of the AWS account."""
import logging
import sys

from nodeadm.common import parser_with_common_options
from nodeadm.e2e.cleanup.sweeper import Sweeper, SweeperError, SweeperInput
from nodeadm.lib.aws import get_current_aws_region
from nodeadm.lib.logging import set_logging_from_options
from nodeadm.lib.misc import parse_duration

logger = logging.getLogger(__name__)


def main() -> None:
    parser = parser_with_common_options(prog="nodeadm sweeper", description=__doc__)
    parser.add_argument("-p", "--cluster-prefix", dest="clusterPrefix", default="",
                        help="Cluster name prefix to clean up.")
    parser.add_argument("-c", "--cluster-name", dest="clusterName", default="",
                        help="Specific cluster name to clean up. Its resources are deleted regardless of age.")
    parser.add_argument("--age", dest="age", type=parse_duration, default="24h",
                        help="Only delete resources older than this, like 24h or 90m.")
    parser.add_argument("--dry-run", dest="dryRun", action="store_true", default=False,
                        help="List what would be deleted without deleting anything.")
    parser.add_argument("--all", dest="all", action="store_true", default=False,
                        help="Include resources of every test cluster older than --age.")
    parser.add_argument("--region", dest="region", default=None,
                        help="AWS region to sweep. Defaults to the region of the current AWS configuration.")

    options = parser.parse_args()
    set_logging_from_options(options)

    sweeper_input = SweeperInput(all_clusters=options.all,
                                 dry_run=options.dryRun,
                                 cluster_name=options.clusterName,
                                 cluster_name_prefix=options.clusterPrefix,
                                 instance_age_threshold=options.age)
    try:
        sweeper_input.validate()
    except ValueError as e:
        parser.error(str(e))

    logger.info("Cleaning up E2E cluster resources with %s", sweeper_input)
    try:
        Sweeper.from_session(region_name=options.region or get_current_aws_region()).run(sweeper_input)
    except SweeperError as e:
        logger.error("Error cleaning up e2e resources:\n%s", e)
        sys.exit(1)
    logger.info("Cleanup completed successfully!")
