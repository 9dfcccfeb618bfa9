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
Choosing release artifacts out of the release manifest.

A Source pairs the EKS patch release chosen for a requested Kubernetes version
with the latest IAM Roles Anywhere signing helper release, and knows how to
find and fetch the artifacts for this machine in them.
"""
import datetime
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from packaging.version import InvalidVersion, Version

from nodeadm.lib.aws.manifest import (
    Artifact,
    EksPatchRelease,
    IamRolesAnywhereRelease,
    Manifest,
    RegionData,
    SsmRelease,
)
from nodeadm.lib.checksum import ChecksumError, decompress_gzip, verify_checksum
from nodeadm.lib.io import write_file_with_dir
from nodeadm.lib.misc import get_arch, get_os
from nodeadm.lib.web import get_url

logger = logging.getLogger(__name__)

RELEASE_DATE_FORMAT = "%Y-%m-%d"

KUBELET = "kubelet"
KUBECTL = "kubectl"
IAM_AUTHENTICATOR = "aws-iam-authenticator"
IMAGE_CREDENTIAL_PROVIDER = "ecr-credential-provider"
CNI_PLUGINS = "cni-plugins"
SIGNING_HELPER = "aws_signing_helper"
SSM_SETUP_CLI = "ssm-setup-cli"

# Full and shorthand (vMAJOR, vMAJOR.MINOR) semantic versions, without the v.
_SEMVER_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*)"
    r"(?:\.(?P<patch>0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?)?)?$"
)


class SourceError(Exception):
    """Raised when the manifest has nothing suitable to offer."""


@dataclass(frozen=True)
class Source:
    eks: EksPatchRelease
    iam: IamRolesAnywhereRelease

    def get_kubelet(self) -> Artifact:
        return select_artifact(self.eks.artifacts, KUBELET)

    def get_kubectl(self) -> Artifact:
        return select_artifact(self.eks.artifacts, KUBECTL)

    def get_iam_authenticator(self) -> Artifact:
        return select_artifact(self.eks.artifacts, IAM_AUTHENTICATOR)

    def get_image_credential_provider(self) -> Artifact:
        return select_artifact(self.eks.artifacts, IMAGE_CREDENTIAL_PROVIDER)

    def get_cni_plugins(self) -> Artifact:
        return select_artifact(self.eks.artifacts, CNI_PLUGINS)

    def get_signing_helper(self) -> Artifact:
        return select_artifact(self.iam.artifacts, SIGNING_HELPER)


def get_ssm_setup_cli(release: SsmRelease) -> Artifact:
    return select_artifact(release.artifacts, SSM_SETUP_CLI)


def select_artifact(artifacts: Iterable[Artifact], name: str,
                    arch: Optional[str] = None, os_name: Optional[str] = None) -> Artifact:
    """
    Find the artifact with the given name built for the given architecture and
    OS, defaulting to those of this machine.
    """
    arch = arch or get_arch()
    os_name = os_name or get_os()
    for artifact in artifacts:
        if artifact.name == name and artifact.arch == arch and artifact.os == os_name:
            return artifact
    raise SourceError(f"could not find artifact for {arch} arch and {os_name} os")


def parse_semver(version: str) -> Optional[Tuple[str, str, Optional[str]]]:
    """Split a version into (major, minor, patch), or None if it isn't semantic."""
    m = _SEMVER_RE.match(version)
    if not m:
        return None
    return m.group("major"), m.group("minor") or "0", m.group("patch")


def get_latest_eks_source(manifest: Manifest, eks_version: str) -> EksPatchRelease:
    """
    Pick the EKS patch release to install for a Kubernetes version like "1.30"
    or "1.30.2".

    A major.minor version selects the release's latest patch version. When
    several releases carry the chosen patch version, the most recently
    released one wins.
    """
    if not eks_version:
        raise SourceError("eks version is empty")
    parsed = parse_semver(eks_version)
    if parsed is None:
        raise SourceError(f"invalid semantic version: {eks_version}")
    major, minor, _ = parsed
    major_minor = f"{major}.{minor}"
    has_patch = eks_version.startswith(major_minor + ".")
    patch = eks_version[len(major_minor) + 1:] if has_patch else None

    matched = []
    for supported in manifest.supported_eks_releases:
        if supported.major_minor_version != major_minor:
            continue
        wanted = patch if has_patch else supported.latest_patch_version
        matched.extend(r for r in supported.patch_releases if r.patch_version == wanted)

    if len(matched) == 1:
        return matched[0]
    elif len(matched) > 1:
        return get_latest_dated_release(matched)

    if has_patch:
        raise SourceError("input semver did not match with available releases. "
                          "Try again with major.minor version")
    raise SourceError("input semver did not match with any available releases")


def get_latest_dated_release(releases: Iterable[EksPatchRelease]) -> EksPatchRelease:
    """
    Return the release with the latest release date. The first one listed wins
    ties. A date that doesn't parse raises ValueError.
    """
    latest = None
    latest_date = None
    for release in releases:
        release_date = datetime.datetime.strptime(release.release_date, RELEASE_DATE_FORMAT)
        if latest is None or release_date > latest_date:
            latest, latest_date = release, release_date
    if latest is None:
        raise SourceError("input semver did not match with any available releases")
    return latest


def _version_key(version: str) -> Tuple[int, Version]:
    # Versions that don't parse sort below all those that do
    try:
        return 1, Version(version)
    except InvalidVersion:
        return 0, Version("0")


def get_latest_iam_roles_anywhere_source(manifest: Manifest) -> IamRolesAnywhereRelease:
    """Get the newest IAM Roles Anywhere signing helper release."""
    if not manifest.iam_roles_anywhere_releases:
        raise SourceError("no iam signer helper releases found")
    latest = manifest.iam_roles_anywhere_releases[0]
    for release in manifest.iam_roles_anywhere_releases:
        if _version_key(latest.version) < _version_key(release.version):
            latest = release
    return latest


def get_latest_ssm_source(manifest: Manifest) -> SsmRelease:
    """Get the newest SSM release."""
    if not manifest.ssm_releases:
        raise SourceError("no ssm releases found")
    latest = manifest.ssm_releases[0]
    for release in manifest.ssm_releases:
        if _version_key(latest.version) < _version_key(release.version):
            latest = release
    return latest


def get_latest_source(manifest: Manifest, eks_version: str) -> Source:
    """Resolve the artifacts to install for the given Kubernetes version."""
    try:
        eks = get_latest_eks_source(manifest, eks_version)
    except (SourceError, ValueError) as e:
        raise SourceError(f"getting latest eks release: {e}") from e
    try:
        iam = get_latest_iam_roles_anywhere_source(manifest)
    except SourceError as e:
        raise SourceError(f"getting iam roles anywhere release: {e}") from e
    logger.debug("Selected EKS release %s (%s) and IAM Roles Anywhere release %s",
                 eks.version, eks.release_date, iam.version)
    return Source(eks=eks, iam=iam)


def get_region_config(manifest: Manifest, region: str) -> RegionData:
    try:
        return manifest.region_config[region]
    except KeyError:
        raise SourceError(f"region {region} not found in manifest") from None


def download_artifact(artifact: Artifact, dest_path: str, mode: int = 0o755) -> str:
    """
    Download an artifact to dest_path, checking it against its published
    sha256 checksum. Gzipped artifacts are checked after decompression.

    :return: the hex digest of the installed file.
    """
    uri = artifact.download_uri()
    logger.info("Downloading %s from %s", artifact.name, uri)
    data = get_url(uri)
    if artifact.gzip_uri:
        data = decompress_gzip(data)
    if artifact.checksum_uri:
        try:
            digest = verify_checksum(data, get_url(artifact.checksum_uri))
        except ChecksumError as e:
            raise ChecksumError(f"verifying {artifact.name} from {uri}: {e}") from e
    else:
        raise ChecksumError(f"artifact {artifact.name} has no checksum to verify against")
    write_file_with_dir(dest_path, data, mode)
    return digest
