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
The release manifest.

The manifest is a YAML document published alongside each release. It lists the
Kubernetes patch releases nodeadm can install, the IAM Roles Anywhere signing
helper and SSM releases, and per-region configuration such as the ECR account
hosting EKS images and the DNS suffix of the region's partition.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from nodeadm.lib.web import get_url

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_URL = "https://hybrid-assets.eks.amazonaws.com/manifest.yaml"

FILE_SCHEME = "file://"
WEB_SCHEMES = ("https://", "http://")


class ManifestError(Exception):
    """Raised when the release manifest can't be read or understood."""


@dataclass(frozen=True)
class Artifact:
    name: str
    arch: str = ""
    os: str = ""
    uri: str = ""
    checksum_uri: str = ""
    gzip_uri: str = ""

    def download_uri(self) -> str:
        """The URI to fetch: the gzipped copy if there is one."""
        return self.gzip_uri or self.uri


@dataclass(frozen=True)
class EksPatchRelease:
    version: str
    patch_version: str = ""
    release_date: str = ""
    artifacts: Tuple[Artifact, ...] = ()


@dataclass(frozen=True)
class SupportedEksRelease:
    major_minor_version: str
    latest_patch_version: str = ""
    patch_releases: Tuple[EksPatchRelease, ...] = ()


@dataclass(frozen=True)
class IamRolesAnywhereRelease:
    version: str
    artifacts: Tuple[Artifact, ...] = ()


@dataclass(frozen=True)
class SsmRelease:
    version: str
    artifacts: Tuple[Artifact, ...] = ()


@dataclass(frozen=True)
class RegionData:
    ecr_account_id: str = ""
    partition: str = ""
    dns_suffix: str = ""
    cred_providers: Mapping[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class Manifest:
    supported_eks_releases: Tuple[SupportedEksRelease, ...] = ()
    iam_roles_anywhere_releases: Tuple[IamRolesAnywhereRelease, ...] = ()
    ssm_releases: Tuple[SsmRelease, ...] = ()
    region_config: Mapping[str, RegionData] = field(default_factory=dict)


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _list(data: Mapping[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ManifestError(f"invalid yaml data in release manifest: {key} must be a list")
    return value


def _artifacts(data: Mapping[str, Any]) -> Tuple[Artifact, ...]:
    return tuple(
        Artifact(
            name=_str(a, "name"),
            arch=_str(a, "arch"),
            os=_str(a, "os"),
            uri=_str(a, "uri"),
            checksum_uri=_str(a, "checksum_uri"),
            gzip_uri=_str(a, "gzip_uri"),
        )
        for a in _list(data, "artifacts")
    )


def manifest_from_dict(data: Optional[Mapping[str, Any]]) -> Manifest:
    """Build a Manifest from the parsed YAML document. Unknown keys are ignored."""
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ManifestError("invalid yaml data in release manifest")

    eks_releases = tuple(
        SupportedEksRelease(
            major_minor_version=_str(r, "major_minor_version"),
            latest_patch_version=_str(r, "latest_patch_version"),
            patch_releases=tuple(
                EksPatchRelease(
                    version=_str(p, "version"),
                    patch_version=_str(p, "patch_version"),
                    release_date=_str(p, "release_date"),
                    artifacts=_artifacts(p),
                )
                for p in _list(r, "patch_releases")
            ),
        )
        for r in _list(data, "supported_eks_releases")
    )
    iam_releases = tuple(
        IamRolesAnywhereRelease(version=_str(r, "version"), artifacts=_artifacts(r))
        for r in _list(data, "iam_roles_anywhere_releases")
    )
    ssm_releases = tuple(
        SsmRelease(version=_str(r, "version"), artifacts=_artifacts(r))
        for r in _list(data, "ssm_releases")
    )
    region_config: Dict[str, RegionData] = {}
    for region, region_data in (data.get("region_config") or {}).items():
        region_data = region_data or {}
        region_config[str(region)] = RegionData(
            ecr_account_id=_str(region_data, "ecr_account_id"),
            partition=_str(region_data, "partition"),
            dns_suffix=_str(region_data, "dns_suffix"),
            cred_providers={str(k): bool(v) for k, v in (region_data.get("cred_providers") or {}).items()},
        )

    return Manifest(
        supported_eks_releases=eks_releases,
        iam_roles_anywhere_releases=iam_releases,
        ssm_releases=ssm_releases,
        region_config=region_config,
    )


def parse_manifest(text: Any) -> Manifest:
    """Parse the text (or bytes) of a release manifest."""
    yaml = YAML(typ="safe", pure=True)
    try:
        data = yaml.load(text)
    except YAMLError as e:
        raise ManifestError(f"invalid yaml data in release manifest: {e}") from e
    try:
        return manifest_from_dict(data)
    except (AttributeError, TypeError) as e:
        raise ManifestError(f"invalid yaml data in release manifest: {e}") from e


def read_manifest(uri: str) -> Manifest:
    """
    Read and parse the release manifest at the given location.

    The location may be a file:// URI, an https:// URL, or (for backward
    compatibility) a plain file path.
    """
    if uri.startswith(FILE_SCHEME):
        path = uri[len(FILE_SCHEME):]
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ManifestError(f"reading manifest file from file:// URI: {uri}: {e}") from e
    elif uri.startswith(WEB_SCHEMES):
        try:
            data = get_url(uri)
        except requests.exceptions.RequestException as e:
            raise ManifestError(f"downloading manifest file from {uri}: {e}") from e
    else:
        try:
            with open(uri, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ManifestError(f"reading manifest file: {uri} (hint: use file:// or https:// prefix): {e}") from e
    logger.debug("Read %d bytes of release manifest from %s", len(data), uri)
    return parse_manifest(data)


def get_manifest_url() -> str:
    """Get the manifest location to use when none is given: NODEADM_MANIFEST_URL or the published manifest."""
    return os.environ.get("NODEADM_MANIFEST_URL") or DEFAULT_MANIFEST_URL


def get_release_manifest(uri: Optional[str] = None) -> Manifest:
    """Read the release manifest from the given location or the default one."""
    return read_manifest(uri or get_manifest_url())
