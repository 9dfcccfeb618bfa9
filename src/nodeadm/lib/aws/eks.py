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
EKS lookups: Kubernetes binary releases published to the amazon-eks S3
bucket, and the connection details of a cluster.
"""
import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from packaging.version import InvalidVersion, Version

from nodeadm.lib.aws.session import client
from nodeadm.lib.aws.source import (IAM_AUTHENTICATOR,
                                     IMAGE_CREDENTIAL_PROVIDER,
                                     KUBECTL,
                                     KUBELET,
                                     SourceError,
                                     parse_semver)
from nodeadm.lib.checksum import parse_gnu_checksum, verify_checksum
from nodeadm.lib.misc import get_arch

if TYPE_CHECKING:
    from mypy_boto3_eks import EKSClient
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

RELEASE_BUCKET = "amazon-eks"
RELEASE_BUCKET_REGION = "us-west-2"

CLUSTER_STATUS_ACTIVE = "ACTIVE"


class ClusterNotActiveError(Exception):
    """Raised when a cluster exists but can't take nodes yet."""


def release_bucket_client() -> "S3Client":
    return client("s3", region_name=RELEASE_BUCKET_REGION)


@dataclass(frozen=True)
class EksRelease:
    """A Kubernetes release as published under s3://amazon-eks/<version>/<date>/."""
    version: str
    release_date: str
    s3_client: "S3Client"
    bucket: str = RELEASE_BUCKET

    def artifact_key(self, arch: str, name: str) -> str:
        return f"{self.version}/{self.release_date}/bin/linux/{arch}/{name}"

    def _get_object(self, key: str) -> bytes:
        return self.s3_client.get_object(Bucket=self.bucket, Key=key)["Body"].read()

    def get_checksum(self, arch: str, name: str) -> str:
        """Get the published sha256 digest of an artifact."""
        digest, _ = parse_gnu_checksum(self._get_object(self.artifact_key(arch, name) + ".sha256"))
        return digest

    def get_artifact(self, name: str, arch: Optional[str] = None) -> bytes:
        """Download an artifact, checking it against its published checksum."""
        arch = arch or get_arch()
        data = self._get_object(self.artifact_key(arch, name))
        checksum_file = self._get_object(self.artifact_key(arch, name) + ".sha256")
        verify_checksum(data, checksum_file)
        return data

    def get_kubelet(self) -> bytes:
        return self.get_artifact(KUBELET)

    def get_kubectl(self) -> bytes:
        return self.get_artifact(KUBECTL)

    def get_iam_authenticator(self) -> bytes:
        return self.get_artifact(IAM_AUTHENTICATOR)

    def get_image_credential_provider(self) -> bytes:
        return self.get_artifact(IMAGE_CREDENTIAL_PROVIDER)


def find_latest_release(version: str, s3_client: Optional["S3Client"] = None) -> EksRelease:
    """
    Find the newest release in the amazon-eks bucket whose version starts with
    the given one, so "1.29" finds the latest 1.29.x build.
    """
    if not version:
        raise SourceError("version is empty")
    if parse_semver(version) is None:
        raise SourceError(f"invalid semantic version: {version}")

    s3_client = s3_client or release_bucket_client()
    latest_version = Version("0.0.0")
    latest_name = "0.0.0"
    release_date = ""
    response = s3_client.list_objects_v2(Bucket=RELEASE_BUCKET, Prefix=version)
    for entry in response.get("Contents", []):
        key_parts = entry["Key"].split("/")
        if len(key_parts) < 2:
            raise SourceError(f"unexpected response when listing versions: {entry['Key']}")
        if parse_semver(key_parts[0]) is None:
            raise SourceError(f"unexpected value for kubernetes version: {key_parts[0]}")
        try:
            key_version = Version(key_parts[0])
        except InvalidVersion:
            logger.debug("Skipping %s, its version does not parse", entry["Key"])
            continue
        if latest_version < key_version:
            latest_version = key_version
            latest_name = key_parts[0]
            release_date = key_parts[1]

    logger.debug("Latest release for %s is %s from %s", version, latest_name, release_date)
    return EksRelease(version=latest_name, release_date=release_date, s3_client=s3_client)


@dataclass(frozen=True)
class ClusterDetails:
    name: str
    api_server_endpoint: str
    certificate_authority: bytes
    cidr: str


def read_cluster_details(name: str,
                         region: Optional[str] = None,
                         api_server_endpoint: Optional[str] = None,
                         certificate_authority: Optional[bytes] = None,
                         cidr: Optional[str] = None,
                         eks_client: Optional["EKSClient"] = None) -> ClusterDetails:
    """
    Fill in whatever connection details for a cluster we weren't given by
    asking EKS. Only calls DescribeCluster if something is missing.
    """
    if api_server_endpoint and certificate_authority and cidr:
        return ClusterDetails(name, api_server_endpoint, certificate_authority, cidr)

    eks_client = eks_client or client("eks", region_name=region)
    cluster = eks_client.describe_cluster(name=name)["cluster"]
    if cluster.get("status") != CLUSTER_STATUS_ACTIVE:
        raise ClusterNotActiveError(f"eks cluster {name} is not active")

    return ClusterDetails(
        name=name,
        api_server_endpoint=api_server_endpoint or cluster["endpoint"],
        certificate_authority=certificate_authority or base64.b64decode(cluster["certificateAuthority"]["data"]),
        cidr=cidr or cluster.get("kubernetesNetworkConfig", {}).get("serviceIpv4Cidr", ""),
    )
