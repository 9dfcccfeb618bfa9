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
from nodeadm.e2e.constants import TEST_RESOURCE_PREFIX
from nodeadm.lib.aws.utils import boto3_pager, unflatten_tags
from nodeadm.lib.retry import is_boto_error

if TYPE_CHECKING:
    from mypy_boto3_iam import IAMClient

logger = logging.getLogger(__name__)


def _no_such_entity(e: Exception) -> bool:
    return is_boto_error(e, "NoSuchEntity", "NoSuchEntityException")


class IAMCleaner:
    def __init__(self, iam_client: "IAMClient") -> None:
        self.iam_client = iam_client

    def list_roles(self, input: FilterInput) -> List[str]:
        roles = []
        for role in boto3_pager(self.iam_client.list_roles, "Roles"):
            name = role["RoleName"]
            if not name.startswith(TEST_RESOURCE_PREFIX):
                continue
            try:
                tags = list(boto3_pager(self.iam_client.list_role_tags, "Tags", RoleName=name))
            except ClientError as e:
                if _no_such_entity(e):
                    continue
                raise
            resource = ResourceWithTags(id=name, creation_time=role["CreateDate"], tags=unflatten_tags(tags))
            if should_delete_resource(resource, input):
                roles.append(name)
        return roles

    def delete_role(self, role_name: str) -> None:
        """
        Delete a role and everything that keeps IAM from deleting it: its
        instance profile memberships and its managed and inline policies.
        """
        try:
            for profile in self.iam_client.list_instance_profiles_for_role(RoleName=role_name)["InstanceProfiles"]:
                self.iam_client.remove_role_from_instance_profile(
                    InstanceProfileName=profile["InstanceProfileName"], RoleName=role_name)
            for policy in boto3_pager(self.iam_client.list_attached_role_policies, "AttachedPolicies",
                                      RoleName=role_name):
                self._ignoring_missing(self.iam_client.detach_role_policy,
                                       RoleName=role_name, PolicyArn=policy["PolicyArn"])
            for policy_name in boto3_pager(self.iam_client.list_role_policies, "PolicyNames", RoleName=role_name):
                self._ignoring_missing(self.iam_client.delete_role_policy,
                                       RoleName=role_name, PolicyName=policy_name)
            self.iam_client.delete_role(RoleName=role_name)
        except ClientError as e:
            if _no_such_entity(e):
                logger.info("IAM role %s already deleted", role_name)
                return
            raise
        logger.info("Deleted IAM role %s", role_name)

    @staticmethod
    def _ignoring_missing(call, **kwargs) -> None:
        try:
            call(**kwargs)
        except ClientError as e:
            if not _no_such_entity(e):
                raise

    def list_instance_profiles(self, input: FilterInput) -> List[str]:
        profiles = []
        for summary in boto3_pager(self.iam_client.list_instance_profiles, "InstanceProfiles"):
            name = summary["InstanceProfileName"]
            if not name.startswith(TEST_RESOURCE_PREFIX):
                continue
            try:
                profile = self.iam_client.get_instance_profile(InstanceProfileName=name)["InstanceProfile"]
            except ClientError as e:
                if _no_such_entity(e):
                    continue
                raise
            resource = ResourceWithTags(id=name, creation_time=profile["CreateDate"],
                                        tags=unflatten_tags(profile.get("Tags")))
            if should_delete_resource(resource, input):
                profiles.append(name)
        return profiles

    def list_roles_for_instance_profile(self, profile_name: str) -> List[str]:
        try:
            profile = self.iam_client.get_instance_profile(InstanceProfileName=profile_name)["InstanceProfile"]
        except ClientError as e:
            if _no_such_entity(e):
                logger.info("IAM instance profile %s already deleted", profile_name)
                return []
            raise
        return [role["RoleName"] for role in profile.get("Roles", [])]

    def remove_roles_from_instance_profile(self, roles: List[str], profile_name: str) -> None:
        for role in roles:
            self.iam_client.remove_role_from_instance_profile(InstanceProfileName=profile_name, RoleName=role)

    def delete_instance_profile(self, profile_name: str) -> None:
        """Remove the profile's roles, then delete it."""
        self.remove_roles_from_instance_profile(self.list_roles_for_instance_profile(profile_name), profile_name)
        try:
            self.iam_client.delete_instance_profile(InstanceProfileName=profile_name)
        except ClientError as e:
            if _no_such_entity(e):
                logger.info("IAM instance profile %s already deleted", profile_name)
                return
            raise
        logger.info("Deleted IAM instance profile %s", profile_name)
