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
"""
The AWS config file that lets IAM Roles Anywhere nodes get credentials from
their certificate through the signing helper's credential-process mode.
"""
import hashlib
import logging
import os
from dataclasses import dataclass
from typing import List

from nodeadm.api import NodeConfig
from nodeadm.lib.io import write_file_with_dir

logger = logging.getLogger(__name__)

DEFAULT_AWS_CONFIG_PATH = "/etc/aws/hybrid/config"
DEFAULT_CERTIFICATE_PATH = "/etc/iam/pki/server.pem"
DEFAULT_PRIVATE_KEY_PATH = "/etc/iam/pki/server.key"
SIGNING_HELPER_PATH = "/usr/local/bin/aws_signing_helper"

PROFILE_NAME = "hybrid"

# Real configs are a few hundred bytes of ARNs.
MAX_CONFIG_SIZE = 2048

AWS_CONFIG_TEMPLATE = """\
[profile {profile}]
region = {region}
credential_process = {signing_helper} credential-process --certificate {certificate} --private-key {private_key} \
--profile-arn {profile_arn} --role-arn {role_arn} --trust-anchor-arn {trust_anchor_arn}
"""


@dataclass
class AWSConfig:
    trust_anchor_arn: str = ""
    profile_arn: str = ""
    role_arn: str = ""
    region: str = ""
    config_path: str = DEFAULT_AWS_CONFIG_PATH
    signing_helper_bin_path: str = SIGNING_HELPER_PATH
    certificate_path: str = DEFAULT_CERTIFICATE_PATH
    private_key_path: str = DEFAULT_PRIVATE_KEY_PATH

    def render(self) -> str:
        return AWS_CONFIG_TEMPLATE.format(profile=PROFILE_NAME,
                                          region=self.region,
                                          signing_helper=self.signing_helper_bin_path,
                                          certificate=self.certificate_path or DEFAULT_CERTIFICATE_PATH,
                                          private_key=self.private_key_path or DEFAULT_PRIVATE_KEY_PATH,
                                          profile_arn=self.profile_arn,
                                          role_arn=self.role_arn,
                                          trust_anchor_arn=self.trust_anchor_arn)


def aws_config_from_node_config(node_config: NodeConfig) -> AWSConfig:
    ira = node_config.hybrid.iam_roles_anywhere
    return AWSConfig(trust_anchor_arn=ira.trust_anchor_arn,
                     profile_arn=ira.profile_arn,
                     role_arn=ira.role_arn,
                     region=node_config.cluster.region,
                     config_path=ira.aws_config_path or DEFAULT_AWS_CONFIG_PATH,
                     certificate_path=ira.certificate_path or DEFAULT_CERTIFICATE_PATH,
                     private_key_path=ira.private_key_path or DEFAULT_PRIVATE_KEY_PATH)


def validate_aws_config(cfg: AWSConfig) -> None:
    problems: List[str] = []
    if not cfg.trust_anchor_arn:
        problems.append("TrustAnchorARN cannot be empty")
    if not cfg.profile_arn:
        problems.append("ProfileARN cannot be empty")
    if not cfg.role_arn:
        problems.append("RoleARN cannot be empty")
    if not cfg.region:
        problems.append("Region cannot be empty")
    if not cfg.signing_helper_bin_path:
        problems.append("Signing helper path cannot be empty")
    if problems:
        raise ValueError("\n".join(problems))


def _read_config_file(path: str) -> bytes:
    with open(path, "rb") as fh:
        contents = fh.read(MAX_CONFIG_SIZE)
    if len(contents) == MAX_CONFIG_SIZE:
        raise ValueError(f"unexpected amount of data in file: {path}")
    return contents


def ensure_aws_config(cfg: AWSConfig) -> None:
    """
    Make sure the AWS config file for cfg exists.

    An existing file is never overwritten. If it doesn't say exactly what we
    would have written, that's an error.
    """
    if not cfg.config_path:
        cfg.config_path = DEFAULT_AWS_CONFIG_PATH
    validate_aws_config(cfg)

    rendered = cfg.render().encode("utf-8")
    if os.path.exists(cfg.config_path):
        existing = _read_config_file(cfg.config_path)
        if hashlib.sha256(existing).digest() != hashlib.sha256(rendered).digest():
            raise ValueError(f"hybrid profile already exists at {cfg.config_path} but its contents "
                             f"do not align with the expected configuration")
        logger.debug("AWS config at %s is already up to date", cfg.config_path)
        return

    write_file_with_dir(cfg.config_path, rendered, mode=0o644)
    logger.info("Wrote AWS config for profile %s to %s", PROFILE_NAME, cfg.config_path)
