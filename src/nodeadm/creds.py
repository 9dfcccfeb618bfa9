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
How a node proves who it is to AWS: SSM hybrid activations or IAM Roles
Anywhere certificates.
"""
import enum
import logging
import os
from typing import Optional

from boto3 import Session
from botocore.session import get_session

from nodeadm.api import NodeConfig
from nodeadm.iamrolesanywhere import (DEFAULT_AWS_CONFIG_PATH,
                                     PROFILE_NAME,
                                     SIGNING_HELPER_PATH)
from nodeadm.lib.misc import read_os_release

logger = logging.getLogger(__name__)

UBUNTU_OS_NAME = "ubuntu"
RHEL_OS_NAME = "rhel"
AMAZON_OS_NAME = "amzn"

SSM_AGENT_PATHS = ["/usr/bin/amazon-ssm-agent", "/snap/amazon-ssm-agent/current/amazon-ssm-agent"]


class CredentialProvider(enum.Enum):
    SSM = "ssm"
    IAM_ROLES_ANYWHERE = "iam-ra"


def get_credential_provider(name: str) -> CredentialProvider:
    try:
        return CredentialProvider(name)
    except ValueError:
        raise ValueError("invalid credential process provided. Valid options are ssm and iam-ra") from None


def get_credential_provider_from_node_config(node_config: NodeConfig) -> Optional[CredentialProvider]:
    if node_config.is_ssm():
        return CredentialProvider.SSM
    elif node_config.is_iam_roles_anywhere():
        return CredentialProvider.IAM_ROLES_ANYWHERE
    return None


def get_credential_provider_from_installed_artifacts(root: str = "/") -> Optional[CredentialProvider]:
    """
    Guess the credential provider from what is installed under root: the SSM
    agent means ssm, the IAM Roles Anywhere signing helper means iam-ra.
    """
    def installed(path: str) -> bool:
        return os.path.exists(os.path.join(root, path.lstrip("/")))

    if any(installed(p) for p in SSM_AGENT_PATHS):
        return CredentialProvider.SSM
    elif installed(SIGNING_HELPER_PATH):
        return CredentialProvider.IAM_ROLES_ANYWHERE
    return None


def validate_credential_provider(provider: CredentialProvider,
                                 os_name: Optional[str] = None,
                                 os_version: Optional[str] = None) -> None:
    """
    Refuse IAM Roles Anywhere on distributions whose signing helper support is
    broken. OS details default to those in /etc/os-release.
    """
    if provider != CredentialProvider.IAM_ROLES_ANYWHERE:
        return
    if os_name is None or os_version is None:
        os_release = read_os_release()
        os_name = os_name if os_name is not None else os_release.get("ID", "")
        os_version = os_version if os_version is not None else os_release.get("VERSION_ID", "")

    major_version = os_version.split(".")[0]
    if (os_name == RHEL_OS_NAME and major_version == "8") or (os_name == UBUNTU_OS_NAME and major_version == "20"):
        raise ValueError(f"iam-ra credential provider is not supported on {os_name} {os_version} based "
                         f"operating systems. Please use ssm credential provider")


def read_aws_session(node_config: NodeConfig) -> Session:
    """
    Make a boto3 session that authenticates the way this node does.

    IAM Roles Anywhere nodes read the hybrid profile out of their own AWS
    config file, everything else uses the default credential chain.
    """
    region = node_config.cluster.region or None
    if node_config.is_iam_roles_anywhere():
        config_path = node_config.hybrid.iam_roles_anywhere.aws_config_path or DEFAULT_AWS_CONFIG_PATH
        botocore_session = get_session()
        botocore_session.set_config_variable("config_file", config_path)
        logger.debug("Using profile %s from %s", PROFILE_NAME, config_path)
        return Session(botocore_session=botocore_session, profile_name=PROFILE_NAME, region_name=region)
    return Session(region_name=region)
