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
Tooling for bootstrapping EKS nodes and hybrid nodes, and for sweeping the AWS
resources left behind by the hybrid-node end-to-end tests.
"""
import logging
import os

logger = logging.getLogger(__name__)


def nodeadm_package_dir_path() -> str:
    """Return the absolute path of the directory containing the nodeadm package."""
    return os.path.dirname(os.path.abspath(__file__))
