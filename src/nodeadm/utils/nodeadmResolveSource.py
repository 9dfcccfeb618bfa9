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
"""Resolve which hybrid node artifacts the release manifest offers for a Kubernetes version."""
import logging
import os
import sys
from typing import Any, Dict, Iterable, List, Optional

from ruamel.yaml import YAML

from nodeadm.common import parser_with_common_options
from nodeadm.lib.aws.ecr import get_eks_hybrid_registry
from nodeadm.lib.aws.manifest import Artifact, ManifestError, get_release_manifest
from nodeadm.lib.aws.source import (Source,
                                    SourceError,
                                    download_artifact,
                                    get_latest_source,
                                    get_region_config)
from nodeadm.lib.checksum import ChecksumError
from nodeadm.lib.logging import set_logging_from_options
from nodeadm.lib.misc import get_arch, get_os

logger = logging.getLogger(__name__)


def _local_artifacts(artifacts: Iterable[Artifact], arch: str, os_name: str) -> List[Artifact]:
    return [a for a in artifacts if a.arch == arch and a.os == os_name]


def describe_source(source: Source, arch: str, os_name: str, region: Optional[str] = None,
                    region_config: Any = None) -> Dict[str, Any]:
    """Summarize a resolved Source as plain data, ready to dump."""
    def uris(artifacts: Iterable[Artifact]) -> Dict[str, str]:
        return {a.name: a.download_uri() for a in _local_artifacts(artifacts, arch, os_name)}

    summary: Dict[str, Any] = {
        "eks": {
            "version": source.eks.version,
            "releaseDate": source.eks.release_date,
            "artifacts": uris(source.eks.artifacts),
        },
        "iamRolesAnywhere": {
            "version": source.iam.version,
            "artifacts": uris(source.iam.artifacts),
        },
    }
    if region:
        summary["region"] = {
            "name": region,
            "partition": region_config.partition if region_config else "",
            "ecrRegistry": str(get_eks_hybrid_registry(region, region_config)),
        }
    return summary


def main() -> None:
    parser = parser_with_common_options(prog="nodeadm resolve-source", description=__doc__)
    parser.add_argument("--manifest", dest="manifest", default=None,
                        help="Manifest location, as an https:// or file:// URL. Defaults to the "
                             "published manifest, or $NODEADM_MANIFEST_URL if set.")
    parser.add_argument("-k", "--kubernetes-version", dest="kubernetesVersion", required=True,
                        help="The Kubernetes version, like 1.30 or 1.30.2.")
    parser.add_argument("--region", dest="region", default=None,
                        help="Also show the region configuration and image registry for this region.")
    parser.add_argument("--arch", dest="arch", default=get_arch(),
                        help="Architecture to resolve artifacts for.")
    parser.add_argument("--download", dest="download", default=None, metavar="DIR",
                        help="Download the resolved artifacts into this directory.")

    options = parser.parse_args()
    set_logging_from_options(options)

    os_name = get_os()
    try:
        manifest = get_release_manifest(options.manifest)
        source = get_latest_source(manifest, options.kubernetesVersion)
        region_config = None
        if options.region:
            try:
                region_config = get_region_config(manifest, options.region)
            except SourceError:
                logger.warning("Region %s is not in the manifest; guessing its registry", options.region)
        summary = describe_source(source, options.arch, os_name, options.region, region_config)
    except (ManifestError, SourceError) as e:
        logger.error("Could not resolve source: %s", e)
        sys.exit(1)

    yaml = YAML(typ="safe", pure=True)
    yaml.default_flow_style = False
    yaml.dump(summary, sys.stdout)

    if options.download:
        for artifact in _local_artifacts(source.eks.artifacts + source.iam.artifacts, options.arch, os_name):
            try:
                download_artifact(artifact, os.path.join(options.download, artifact.name))
            except ChecksumError as e:
                logger.error("%s", e)
                sys.exit(1)
