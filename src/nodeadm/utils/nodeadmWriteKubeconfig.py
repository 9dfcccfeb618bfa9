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
"""Write the kubelet kubeconfig described by a NodeConfig file."""
import logging
import sys

from nodeadm.api import NodeConfigError, load_node_config
from nodeadm.common import parser_with_common_options
from nodeadm.iamrolesanywhere import aws_config_from_node_config, ensure_aws_config
from nodeadm.kubelet.kubeconfig import write_kubeconfig
from nodeadm.lib.logging import set_logging_from_options

logger = logging.getLogger(__name__)


def main() -> None:
    parser = parser_with_common_options(prog="nodeadm write-kubeconfig", description=__doc__)
    parser.add_argument("nodeConfig", help="Path to a NodeConfig YAML file.")
    parser.add_argument("--path", dest="path", default=None,
                        help="Where to write the kubeconfig. Defaults to the kubelet's usual location.")

    options = parser.parse_args()
    set_logging_from_options(options)

    try:
        node_config = load_node_config(options.nodeConfig)
    except (OSError, NodeConfigError) as e:
        logger.error("Could not load node config: %s", e)
        sys.exit(1)

    if node_config.is_iam_roles_anywhere():
        try:
            ensure_aws_config(aws_config_from_node_config(node_config))
        except ValueError as e:
            logger.error("%s", e)
            sys.exit(1)

    print(write_kubeconfig(node_config, options.path))
