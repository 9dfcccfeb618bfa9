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
"""Generate the kubeconfig the kubelet uses to talk to the cluster."""
import io
import logging
from typing import Any, Dict, List, Optional

from ruamel.yaml import YAML

from nodeadm.api import NodeConfig
from nodeadm.iamrolesanywhere import DEFAULT_AWS_CONFIG_PATH, PROFILE_NAME
from nodeadm.lib.io import write_file_with_dir

logger = logging.getLogger(__name__)

KUBECONFIG_PATH = "/var/lib/kubelet/kubeconfig"
BOOTSTRAP_KUBECONFIG_PATH = "/var/lib/kubelet/bootstrap-kubeconfig"
KUBECONFIG_MODE = 0o644

CA_CERTIFICATE_PATH = "/etc/kubernetes/pki/ca.crt"

EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


def kubeconfig_path_for(node_config: NodeConfig) -> str:
    """Outpost nodes bootstrap with their kubeconfig, everyone else uses it directly."""
    return BOOTSTRAP_KUBECONFIG_PATH if node_config.is_outpost_node() else KUBECONFIG_PATH


def _template_vars(node_config: NodeConfig) -> Dict[str, str]:
    template_vars = {
        "cluster": node_config.cluster.name,
        "region": node_config.status.instance.region,
        "api_server_endpoint": node_config.cluster.api_server_endpoint,
        "ca_cert_path": CA_CERTIFICATE_PATH,
        "session_name": "",
        "assume_role": "",
    }
    if node_config.is_outpost_node():
        # Local outpost clusters authenticate by cluster ID, not name.
        template_vars["cluster"] = node_config.cluster.id
    if node_config.is_hybrid_node():
        template_vars["region"] = node_config.cluster.region
        if node_config.is_iam_roles_anywhere():
            ira = node_config.hybrid.iam_roles_anywhere
            template_vars["session_name"] = ira.node_name
            template_vars["assume_role"] = ira.role_arn
    return template_vars


def _exec_section(node_config: NodeConfig, template_vars: Dict[str, str]) -> Dict[str, Any]:
    args: List[str] = ["token", "-i", template_vars["cluster"], "--region", template_vars["region"]]
    env: Optional[List[Dict[str, str]]] = None
    if template_vars["assume_role"]:
        args += ["--role", template_vars["assume_role"]]
        if template_vars["session_name"]:
            args += ["--session-name", template_vars["session_name"]]
        config_path = node_config.hybrid.iam_roles_anywhere.aws_config_path or DEFAULT_AWS_CONFIG_PATH
        env = [{"name": "AWS_CONFIG_FILE", "value": config_path},
               {"name": "AWS_PROFILE", "value": PROFILE_NAME}]
    section: Dict[str, Any] = {
        "apiVersion": EXEC_API_VERSION,
        "command": "aws-iam-authenticator",
        "args": args,
    }
    if env:
        section["env"] = env
    return section


def generate_kubeconfig(node_config: NodeConfig) -> str:
    template_vars = _template_vars(node_config)
    kubeconfig = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": "kubernetes",
            "cluster": {
                "certificate-authority": template_vars["ca_cert_path"],
                "server": template_vars["api_server_endpoint"],
            },
        }],
        "current-context": "kubelet",
        "contexts": [{
            "name": "kubelet",
            "context": {"cluster": "kubernetes", "user": "kubelet"},
        }],
        "users": [{
            "name": "kubelet",
            "user": {"exec": _exec_section(node_config, template_vars)},
        }],
    }
    yaml = YAML(typ="safe", pure=True)
    yaml.default_flow_style = False
    out = io.StringIO()
    yaml.dump(kubeconfig, out)
    return out.getvalue()


def write_kubeconfig(node_config: NodeConfig, path: Optional[str] = None) -> str:
    """Write the kubeconfig for this node and return where it went."""
    path = path or kubeconfig_path_for(node_config)
    write_file_with_dir(path, generate_kubeconfig(node_config), mode=KUBECONFIG_MODE)
    logger.info("Wrote kubeconfig for cluster %s to %s", node_config.cluster.name, path)
    return path
