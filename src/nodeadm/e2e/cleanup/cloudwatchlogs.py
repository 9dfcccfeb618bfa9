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
import datetime
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, List

import pytz

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          should_delete_resource)
from nodeadm.e2e.cleanup.resource_tagging import ResourceTaggingClient
from nodeadm.lib.aws.utils import boto3_pager

if TYPE_CHECKING:
    from mypy_boto3_logs import CloudWatchLogsClient

logger = logging.getLogger(__name__)

CLUSTER_LOG_GROUP_PREFIX = "/aws/eks/"
LOG_GROUP_RESOURCE_TYPE = "logs:log-group"

# Age threshold applied to cluster log groups in place of the instance one.
CLUSTER_LOG_GROUP_RETENTION = datetime.timedelta(days=15)


def parse_log_group_name_from_arn(arn: str) -> str:
    """
    >>> parse_log_group_name_from_arn('arn:aws:logs:us-west-2:123456789012:log-group:/aws/eks/c1/cluster')
    '/aws/eks/c1/cluster'
    """
    return arn[arn.index("/"):]


class CloudWatchLogsCleaner:
    def __init__(self, logs_client: "CloudWatchLogsClient", tagging_client: ResourceTaggingClient) -> None:
        self.logs_client = logs_client
        self.tagging_client = tagging_client

    def list_log_groups(self, input: FilterInput) -> List[str]:
        tagged = {parse_log_group_name_from_arn(arn): tags
                  for arn, tags in self.tagging_client.get_resources([LOG_GROUP_RESOURCE_TYPE], input).items()}

        prefix = CLUSTER_LOG_GROUP_PREFIX + (input.cluster_name or input.cluster_name_prefix)
        retention_input = replace(input, instance_age_threshold=CLUSTER_LOG_GROUP_RETENTION)
        names = []
        for group in boto3_pager(self.logs_client.describe_log_groups, "logGroups", logGroupNamePrefix=prefix):
            name = group["logGroupName"]
            if name not in tagged:
                continue
            created = datetime.datetime.fromtimestamp(group["creationTime"] / 1000, tz=pytz.UTC)
            if should_delete_resource(ResourceWithTags(id=name, creation_time=created, tags=tagged[name]),
                                      retention_input):
                names.append(name)
        return names

    def delete_log_group(self, name: str) -> None:
        self.logs_client.delete_log_group(logGroupName=name)
        logger.info("Deleted log group %s", name)
