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
import os

import pytest

from nodeadm.api import node_config_from_dict
from nodeadm.iamrolesanywhere import (AWSConfig,
                                      aws_config_from_node_config,
                                      ensure_aws_config,
                                      validate_aws_config)
from nodeadm.test import NodeadmTest
from nodeadm.test.nodeConfig import iam_roles_anywhere_document


class AWSConfigTest(NodeadmTest):
    def config(self) -> AWSConfig:
        path = os.path.join(self._createTempDir(), "aws", "config")
        return aws_config_from_node_config(node_config_from_dict(iam_roles_anywhere_document(aws_config_path=path)))

    def test_render(self):
        cfg = self.config()
        self.assertEqual(cfg.render(), (
            "[profile hybrid]\n"
            "region = us-west-2\n"
            "credential_process = /usr/local/bin/aws_signing_helper credential-process "
            "--certificate /etc/iam/pki/server.pem --private-key /etc/iam/pki/server.key "
            "--profile-arn arn:aws:rolesanywhere:us-west-2:123456789012:profile/p "
            "--role-arn arn:aws:iam::123456789012:role/hybrid-node "
            "--trust-anchor-arn arn:aws:rolesanywhere:us-west-2:123456789012:trust-anchor/ta\n"))

    def test_validation_lists_every_problem(self):
        with pytest.raises(ValueError) as info:
            validate_aws_config(AWSConfig(region="us-west-2", signing_helper_bin_path=""))
        self.assertEqual(str(info.value).split("\n"), ["TrustAnchorARN cannot be empty",
                                                       "ProfileARN cannot be empty",
                                                       "RoleARN cannot be empty",
                                                       "Signing helper path cannot be empty"])

    def test_written_once(self):
        cfg = self.config()
        ensure_aws_config(cfg)
        with open(cfg.config_path) as fh:
            self.assertEqual(fh.read(), cfg.render())
        self.assertEqual(os.stat(cfg.config_path).st_mode & 0o777, 0o644)
        # Same contents again is fine
        ensure_aws_config(cfg)

    def test_existing_file_is_never_overwritten(self):
        cfg = self.config()
        os.makedirs(os.path.dirname(cfg.config_path))
        with open(cfg.config_path, "w") as fh:
            fh.write("[profile hybrid]\nregion = eu-west-1\n")
        with pytest.raises(ValueError, match="do not align with the expected configuration"):
            ensure_aws_config(cfg)
        with open(cfg.config_path) as fh:
            assert "eu-west-1" in fh.read()

    def test_oversized_existing_file(self):
        cfg = self.config()
        os.makedirs(os.path.dirname(cfg.config_path))
        with open(cfg.config_path, "w") as fh:
            fh.write("#" * 4096)
        with pytest.raises(ValueError, match="unexpected amount of data in file"):
            ensure_aws_config(cfg)
