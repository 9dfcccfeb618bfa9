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
"""Names shared by everything the end-to-end tests create and clean up."""

# Every test resource carries this tag, valued with its cluster's name.
TEST_CLUSTER_TAG_KEY = "Nodeadm-E2E-Tests-Cluster"
CREATION_TIME_TAG_KEY = "CreationTime"

CREDENTIALS_STACK_PREFIX = "EKSHybridCI"
ARCH_STACK_PREFIX = "EKSHybridCI-Arch"
POD_IDENTITY_S3_BUCKET_PREFIX = "podid"

TEST_RESOURCE_PREFIX = CREDENTIALS_STACK_PREFIX
