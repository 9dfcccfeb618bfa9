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
The NodeConfig document a node is bootstrapped from.

A NodeConfig is a Kubernetes-style object::

    apiVersion: node.eks.aws/v1alpha1
    kind: NodeConfig
    spec:
      cluster:
        name: my-cluster
        region: us-west-2
      hybrid:
        ssm:
          activationCode: ...
          activationId: ...

It may be written as YAML or JSON.
"""
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

logger = logging.getLogger(__name__)

API_VERSION = "node.eks.aws/v1alpha1"
KIND = "NodeConfig"

NODE_TYPE_SSM = "ssm"
NODE_TYPE_IAM_ROLES_ANYWHERE = "iam-ra"
NODE_TYPE_OUTPOST = "outpost"
NODE_TYPE_EC2 = "ec2"


class NodeConfigError(Exception):
    """Raised when a NodeConfig document can't be understood."""


@dataclass
class ClusterDetails:
    name: str = ""
    region: str = ""
    api_server_endpoint: str = ""
    certificate_authority: bytes = b""
    cidr: str = ""
    enable_outpost: Optional[bool] = None
    id: str = ""


@dataclass
class IAMRolesAnywhere:
    node_name: str = ""
    trust_anchor_arn: str = ""
    profile_arn: str = ""
    role_arn: str = ""
    aws_config_path: str = ""
    certificate_path: str = ""
    private_key_path: str = ""


@dataclass
class SSM:
    activation_code: str = ""
    activation_id: str = ""


@dataclass
class HybridOptions:
    enable_credentials_file: bool = False
    iam_roles_anywhere: Optional[IAMRolesAnywhere] = None
    ssm: Optional[SSM] = None


@dataclass
class InstanceDetails:
    id: str = ""
    region: str = ""
    type: str = ""
    availability_zone: str = ""


@dataclass
class NodeConfigStatus:
    instance: InstanceDetails = field(default_factory=InstanceDetails)


@dataclass
class NodeConfig:
    cluster: ClusterDetails = field(default_factory=ClusterDetails)
    hybrid: Optional[HybridOptions] = None
    status: NodeConfigStatus = field(default_factory=NodeConfigStatus)

    def is_hybrid_node(self) -> bool:
        return self.hybrid is not None

    def is_outpost_node(self) -> bool:
        return bool(self.cluster.enable_outpost)

    def is_iam_roles_anywhere(self) -> bool:
        return self.hybrid is not None and self.hybrid.iam_roles_anywhere is not None

    def is_ssm(self) -> bool:
        return self.hybrid is not None and self.hybrid.ssm is not None

    def get_node_type(self) -> str:
        """
        Work out how this node gets its AWS identity. SSM wins over IAM Roles
        Anywhere if both are somehow set.
        """
        if self.is_ssm():
            return NODE_TYPE_SSM
        elif self.is_iam_roles_anywhere():
            return NODE_TYPE_IAM_ROLES_ANYWHERE
        elif self.is_outpost_node():
            return NODE_TYPE_OUTPOST
        return NODE_TYPE_EC2


def _section(data: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise NodeConfigError(f"{key} must be a mapping, not {type(value).__name__}")
    return value


def _decode_ca(value: Any) -> bytes:
    if not value:
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError) as e:
        raise NodeConfigError(f"certificateAuthority is not valid base64: {e}") from e


def node_config_from_dict(data: Any) -> NodeConfig:
    """Build a NodeConfig from an already-parsed document."""
    if not isinstance(data, Mapping):
        raise NodeConfigError("node config must be a mapping")
    kind = data.get("kind")
    if kind != KIND:
        raise NodeConfigError(f'failed to decode "{kind}" (wrong Kind)')
    api_version = data.get("apiVersion")
    if api_version != API_VERSION:
        raise NodeConfigError(f'failed to decode "{kind}", unexpected apiVersion: {api_version}')

    spec = _section(data, "spec") or {}
    cluster = _section(spec, "cluster") or {}
    config = NodeConfig(cluster=ClusterDetails(
        name=cluster.get("name", ""),
        region=cluster.get("region", ""),
        api_server_endpoint=cluster.get("apiServerEndpoint", ""),
        certificate_authority=_decode_ca(cluster.get("certificateAuthority")),
        cidr=cluster.get("cidr", ""),
        enable_outpost=cluster.get("enableOutpost"),
        id=cluster.get("id", ""),
    ))

    hybrid = _section(spec, "hybrid")
    if hybrid is not None:
        config.hybrid = HybridOptions(enable_credentials_file=bool(hybrid.get("enableCredentialsFile", False)))
        ira = _section(hybrid, "iamRolesAnywhere")
        if ira is not None:
            config.hybrid.iam_roles_anywhere = IAMRolesAnywhere(
                node_name=ira.get("nodeName", ""),
                trust_anchor_arn=ira.get("trustAnchorArn", ""),
                profile_arn=ira.get("profileArn", ""),
                role_arn=ira.get("roleArn", ""),
                aws_config_path=ira.get("awsConfigPath", ""),
                certificate_path=ira.get("certificatePath", ""),
                private_key_path=ira.get("privateKeyPath", ""),
            )
        ssm = _section(hybrid, "ssm")
        if ssm is not None:
            config.hybrid.ssm = SSM(activation_code=ssm.get("activationCode", ""),
                                    activation_id=ssm.get("activationId", ""))
    return config


def load_node_config(path: str) -> NodeConfig:
    """Read a NodeConfig from a YAML or JSON file."""
    yaml = YAML(typ="safe", pure=True)
    try:
        with open(path) as fh:
            data = yaml.load(fh)
    except YAMLError as e:
        raise NodeConfigError(f"invalid node config in {path}: {e}") from e
    config = node_config_from_dict(data)
    logger.debug("Loaded %s node config for cluster %s from %s",
                 config.get_node_type(), config.cluster.name, path)
    return config
