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
"""Show the latest Kubernetes build in the amazon-eks bucket and its artifact checksums."""
import logging

from nodeadm.common import parser_with_common_options
from nodeadm.lib.aws.eks import find_latest_release
from nodeadm.lib.aws.source import (IAM_AUTHENTICATOR,
                                    IMAGE_CREDENTIAL_PROVIDER,
                                    KUBECTL,
                                    KUBELET)
from nodeadm.lib.logging import set_logging_from_options
from nodeadm.lib.misc import get_arch

logger = logging.getLogger(__name__)

RELEASE_ARTIFACTS = [KUBELET, KUBECTL, IAM_AUTHENTICATOR, IMAGE_CREDENTIAL_PROVIDER]


def main() -> None:
    parser = parser_with_common_options(prog="nodeadm get-eks-release", description=__doc__)
    parser.add_argument("-k", "--kubernetes-version", dest="kubernetesVersion", required=True,
                        help="The Kubernetes version, like 1.30 or 1.30.2.")
    parser.add_argument("--arch", dest="arch", default=get_arch(),
                        help="Architecture to show artifacts for.")

    options = parser.parse_args()
    set_logging_from_options(options)

    release = find_latest_release(options.kubernetesVersion)
    print(f"Version: {release.version}")
    print(f"Release date: {release.release_date}")
    for name in RELEASE_ARTIFACTS:
        print(f"{name}: s3://{release.bucket}/{release.artifact_key(options.arch, name)} "
              f"sha256:{release.get_checksum(options.arch, name)}")
