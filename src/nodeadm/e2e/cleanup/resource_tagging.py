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
import logging
from typing import TYPE_CHECKING, Any, Dict, List

from nodeadm.e2e.cleanup.resource import FilterInput
from nodeadm.e2e.constants import TEST_CLUSTER_TAG_KEY
from nodeadm.lib.aws.utils import boto3_pager, unflatten_tags

if TYPE_CHECKING:
    from mypy_boto3_resourcegroupstaggingapi import ResourceGroupsTaggingAPIClient

logger = logging.getLogger(__name__)


class ResourceTaggingClient:
    """
    Finds test resources through the Resource Groups Tagging API, for
    services whose own APIs can't list tags in bulk.
    """

    def __init__(self, tagging_client: "ResourceGroupsTaggingAPIClient") -> None:
        self.tagging_client = tagging_client

    def get_resources(self, resource_types: List[str], input: FilterInput) -> Dict[str, Dict[str, str]]:
        """Map the ARN of each test resource of the given types to its tags."""
        tag_filter: Dict[str, Any] = {"Key": TEST_CLUSTER_TAG_KEY}
        if input.cluster_name:
            tag_filter["Values"] = [input.cluster_name]
        resources = {}
        for mapping in boto3_pager(self.tagging_client.get_resources, "ResourceTagMappingList",
                                   ResourceTypeFilters=resource_types, TagFilters=[tag_filter]):
            resources[mapping["ResourceARN"]] = unflatten_tags(mapping.get("Tags"))
        return resources
