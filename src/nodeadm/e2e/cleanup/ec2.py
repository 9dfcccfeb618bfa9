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
from typing import TYPE_CHECKING, Any, List, Mapping

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          should_delete_resource,
                                          tag_filters)
from nodeadm.lib.aws.utils import boto3_pager, unflatten_tags
from nodeadm.lib.retry import ErrorCondition, retry

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

logger = logging.getLogger(__name__)

# Polling every 15s, 40 times, gives instances 10 minutes to go away.
TERMINATE_WAITER_CONFIG = {"Delay": 15, "MaxAttempts": 40}

# EC2 is eventually consistent with IAM and with itself.
INCONSISTENCY_ERRORS = [
    ErrorCondition(boto_error_codes=["InvalidGroup.NotFound"]),
    ErrorCondition(error_message_must_include="Invalid IAM Instance Profile"),
    ErrorCondition(error_message_must_include="no associated IAM Roles"),
]


def _should_terminate_instance(instance: Mapping[str, Any], input: FilterInput) -> bool:
    if instance["State"]["Name"] == "terminated":
        return False
    resource = ResourceWithTags(id=instance["InstanceId"],
                                creation_time=instance["LaunchTime"],
                                tags=unflatten_tags(instance.get("Tags")))
    return should_delete_resource(resource, input)


class EC2Cleaner:
    def __init__(self, ec2_client: "EC2Client") -> None:
        self.ec2_client = ec2_client

    def list_tagged_instances(self, input: FilterInput) -> List[str]:
        instance_ids = []
        for reservation in boto3_pager(self.ec2_client.describe_instances, "Reservations",
                                       Filters=tag_filters(input)):
            for instance in reservation["Instances"]:
                if _should_terminate_instance(instance, input):
                    instance_ids.append(instance["InstanceId"])
        return instance_ids

    @retry(intervals=[5, 5, 10, 20], errors=INCONSISTENCY_ERRORS)
    def _terminate(self, instance_ids: List[str]) -> None:
        self.ec2_client.terminate_instances(InstanceIds=instance_ids)

    def delete_instances(self, instance_ids: List[str]) -> None:
        """Terminate the instances and wait until they are gone."""
        if not instance_ids:
            return
        self._terminate(instance_ids)
        logger.info("Waiting for %i instance(s) to terminate", len(instance_ids))
        self.ec2_client.get_waiter("instance_terminated").wait(InstanceIds=instance_ids,
                                                               WaiterConfig=TERMINATE_WAITER_CONFIG)

    def list_key_pairs(self, input: FilterInput) -> List[str]:
        key_pairs = self.ec2_client.describe_key_pairs(Filters=tag_filters(input))["KeyPairs"]
        key_pair_ids = []
        for key_pair in key_pairs:
            resource = ResourceWithTags(id=key_pair["KeyPairId"],
                                        creation_time=key_pair["CreateTime"],
                                        tags=unflatten_tags(key_pair.get("Tags")))
            if should_delete_resource(resource, input):
                key_pair_ids.append(key_pair["KeyPairId"])
        return key_pair_ids

    def delete_key_pair(self, key_pair_id: str) -> None:
        self.ec2_client.delete_key_pair(KeyPairId=key_pair_id)
        logger.info("Deleted key pair %s", key_pair_id)
