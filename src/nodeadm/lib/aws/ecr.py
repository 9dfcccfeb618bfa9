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
Working out which ECR registry serves EKS images in a region.

EKS publishes its images from one ECR account per partition or opt-in region.
The account is taken from the release manifest when it names one, then from a
table of known regions, then by region prefix, and finally we fall back to the
commercial account serving us-west-2.
"""
import base64
import logging
import os
import socket
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from nodeadm.lib.aws import (
    get_instance_metadata,
    get_partition_dns_suffix,
    get_partition_from_region_fallback,
)
from nodeadm.lib.aws.manifest import RegionData
from nodeadm.lib.aws.session import client

if TYPE_CHECKING:
    from mypy_boto3_ecr import ECRClient

logger = logging.getLogger(__name__)

NON_OPT_IN_REGION_ACCOUNT = "602401143452"
NON_OPT_IN_REGION = "us-west-2"

ACCOUNTS_BY_REGION: Dict[str, str] = {
    "cn-north-1": "918309763551",
    "cn-northwest-1": "961992271922",
    "eu-isoe-west-1": "249663109785",
    "us-gov-east-1": "151742754352",
    "us-gov-west-1": "013241004608",
    "us-iso-east-1": "725322719131",
    "us-iso-west-1": "608367168043",
    "us-isob-east-1": "187977181151",
    "us-isof-south-1": "676585237158",
}

# (region prefix, account, region hosting that account's registry)
PREFIX_FALLBACKS: List[Tuple[str, str, str]] = [
    ("us-gov-", "013241004608", "us-gov-west-1"),
    ("cn-", "961992271922", "cn-northwest-1"),
    ("us-iso-", "725322719131", "us-iso-east-1"),
    ("us-isob-", "187977181151", "us-isob-east-1"),
    ("us-isof-", "676585237158", "us-isof-south-1"),
]

SANDBOX_IMAGE_REPOSITORY = "eks/pause"
SANDBOX_IMAGE_TAG = "3.5"

FIPS_ENABLED_PATH = "/proc/sys/crypto/fips_enabled"


class ECRRegistry(str):
    """The host name of an ECR registry, like 602401143452.dkr.ecr.us-west-2.amazonaws.com."""

    def get_image_reference(self, repository: str, tag: str) -> str:
        return f"{self}/{repository}:{tag}"

    def get_sandbox_image(self) -> str:
        return self.get_image_reference(SANDBOX_IMAGE_REPOSITORY, SANDBOX_IMAGE_TAG)


def get_registry(account_id: str, ecr_subdomain: str, region: str, services_domain: str) -> str:
    return f"{account_id}.dkr.{ecr_subdomain}.{region}.{services_domain}"


def get_eks_registry_coordinates_fallback(region: str) -> Tuple[str, str]:
    """Get the (account, region) of the EKS registry for a region from the built in tables."""
    if region in ACCOUNTS_BY_REGION:
        return ACCOUNTS_BY_REGION[region], region
    for prefix, account, fallback_region in PREFIX_FALLBACKS:
        if region.startswith(prefix):
            return account, fallback_region
    return NON_OPT_IN_REGION_ACCOUNT, NON_OPT_IN_REGION


def get_eks_registry_coordinates(region: str, region_config: Optional[RegionData] = None) -> Tuple[str, str]:
    """
    Get the (account, region) of the EKS image registry to use from the given
    region. An account named in the manifest's region config always wins.
    """
    if region_config is not None and region_config.ecr_account_id:
        logger.info("Using ECR account %s from manifest for region %s", region_config.ecr_account_id, region)
        return region_config.ecr_account_id, region

    account, fallback_region = get_eks_registry_coordinates_fallback(region)
    if account == NON_OPT_IN_REGION_ACCOUNT:
        logger.warning("Region not found in manifest. Attempting to use default ECR account...")
        logger.info("Using default non-opt-in region ECR account %s in %s for requested region %s",
                    account, fallback_region, region)
    else:
        logger.info("Using region-specific ECR account %s for region %s", account, region)
    return account, fallback_region


def fips_enabled(path: str = FIPS_ENABLED_PATH) -> bool:
    """Return True if the kernel has FIPS mode switched on."""
    if not os.path.exists(path):
        return False
    with open(path) as f:
        return f.read().strip() == "1"


def _registry_for_domain(region: str, services_domain: str,
                         region_config: Optional[RegionData]) -> ECRRegistry:
    account, registry_region = get_eks_registry_coordinates(region, region_config)
    if fips_enabled():
        fips_registry = get_registry(account, "ecr-fips", registry_region, services_domain)
        # socket.gaierror propagates; a FIPS host that can't resolve its FIPS endpoint is misconfigured
        if socket.getaddrinfo(fips_registry, 443):
            return ECRRegistry(fips_registry)
    return ECRRegistry(get_registry(account, "ecr", registry_region, services_domain))


def get_eks_hybrid_registry(region: str, region_config: Optional[RegionData] = None) -> ECRRegistry:
    """
    Get the EKS image registry for a hybrid node, which has no instance
    metadata to ask for the services domain.
    """
    if region_config is not None and region_config.dns_suffix:
        services_domain = region_config.dns_suffix
    else:
        services_domain = get_partition_dns_suffix(get_partition_from_region_fallback(region))
    return _registry_for_domain(region, services_domain, region_config)


def get_eks_registry(region: str, region_config: Optional[RegionData] = None) -> ECRRegistry:
    """Get the EKS image registry for an EC2 instance, using the services domain from instance metadata."""
    services_domain = get_instance_metadata("services/domain")
    if not services_domain:
        raise RuntimeError("could not read services/domain from instance metadata")
    return _registry_for_domain(region, services_domain, region_config)


def get_authorization_token(region: Optional[str] = None,
                            ecr_client: Optional["ECRClient"] = None) -> Tuple[str, str, str]:
    """
    Get credentials for pulling from ECR.

    :return: (user name, password, registry endpoint)
    """
    ecr_client = ecr_client or client("ecr", region_name=region)
    authorization = ecr_client.get_authorization_token()["authorizationData"][0]
    user, _, password = base64.b64decode(authorization["authorizationToken"]).decode("utf-8").partition(":")
    return user, password, authorization.get("proxyEndpoint", "")
