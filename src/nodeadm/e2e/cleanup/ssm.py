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
from typing import TYPE_CHECKING, List

from botocore.exceptions import ClientError

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          should_delete_resource)
from nodeadm.e2e.constants import TEST_CLUSTER_TAG_KEY
from nodeadm.lib.aws.utils import boto3_pager, unflatten_tags
from nodeadm.lib.retry import is_boto_error

if TYPE_CHECKING:
    from mypy_boto3_ssm import SSMClient

logger = logging.getLogger(__name__)

MANAGED_INSTANCE_RESOURCE_TYPE = "ManagedInstance"


class SSMCleaner:
    """Cleans up hybrid activations, the nodes they registered, and test parameters."""

    def __init__(self, ssm_client: "SSMClient") -> None:
        self.ssm_client = ssm_client

    def list_activations(self, input: FilterInput) -> List[str]:
        activation_ids = []
        for activation in boto3_pager(self.ssm_client.describe_activations, "ActivationList"):
            resource = ResourceWithTags(id=activation["ActivationId"],
                                        creation_time=activation["CreatedDate"],
                                        tags=unflatten_tags(activation.get("Tags")))
            if should_delete_resource(resource, input):
                activation_ids.append(activation["ActivationId"])
        return activation_ids

    def delete_activation(self, activation_id: str) -> None:
        logger.info("Deleting activation %s", activation_id)
        try:
            self.ssm_client.delete_activation(ActivationId=activation_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidActivation"):
                logger.info("SSM activation %s already deleted", activation_id)
                return
            raise

    def list_managed_instances(self, input: FilterInput) -> List[str]:
        if input.cluster_name:
            filters = [{"Key": f"tag:{TEST_CLUSTER_TAG_KEY}", "Values": [input.cluster_name]}]
        else:
            filters = [{"Key": "tag-key", "Values": [TEST_CLUSTER_TAG_KEY]}]

        instance_ids = []
        for instance in boto3_pager(self.ssm_client.describe_instance_information, "InstanceInformationList",
                                    Filters=filters):
            if instance.get("ResourceType") != MANAGED_INSTANCE_RESOURCE_TYPE:
                continue
            instance_id = instance["InstanceId"]
            try:
                tags = self.ssm_client.list_tags_for_resource(ResourceType=MANAGED_INSTANCE_RESOURCE_TYPE,
                                                              ResourceId=instance_id)["TagList"]
            except ClientError as e:
                if is_boto_error(e, "InvalidResourceId"):
                    logger.info("SSM managed instance %s already deleted", instance_id)
                    continue
                raise
            resource = ResourceWithTags(id=instance_id,
                                        creation_time=instance["LastPingDateTime"],
                                        tags=unflatten_tags(tags))
            if should_delete_resource(resource, input):
                instance_ids.append(instance_id)
        return instance_ids

    def deregister_managed_instance(self, instance_id: str) -> None:
        logger.info("Deregistering managed instance %s", instance_id)
        try:
            self.ssm_client.deregister_managed_instance(InstanceId=instance_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidInstanceId"):
                logger.info("Managed instance %s already deregistered", instance_id)
                return
            raise

    def list_parameters(self, input: FilterInput) -> List[str]:
        names = []
        for parameter in boto3_pager(self.ssm_client.describe_parameters, "Parameters",
                                     ParameterFilters=[{"Key": "tag-key", "Values": [TEST_CLUSTER_TAG_KEY]}]):
            name = parameter["Name"]
            try:
                tags = self.ssm_client.list_tags_for_resource(ResourceType="Parameter", ResourceId=name)["TagList"]
            except ClientError as e:
                if is_boto_error(e, "InvalidResourceId", "ParameterNotFound"):
                    continue
                raise
            resource = ResourceWithTags(id=name, creation_time=parameter["LastModifiedDate"],
                                        tags=unflatten_tags(tags))
            if should_delete_resource(resource, input):
                names.append(name)
        return names

    def delete_parameter(self, name: str) -> None:
        try:
            self.ssm_client.delete_parameter(Name=name)
        except ClientError as e:
            if is_boto_error(e, "ParameterNotFound"):
                logger.info("SSM parameter %s already deleted", name)
                return
            raise
        logger.info("Deleted SSM parameter %s", name)
