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
    from mypy_boto3_rolesanywhere import IAMRolesAnywhereClient

logger = logging.getLogger(__name__)


class RolesAnywhereCleaner:
    """Cleans up IAM Roles Anywhere profiles and trust anchors."""

    def __init__(self, rolesanywhere_client: "IAMRolesAnywhereClient") -> None:
        self.rolesanywhere_client = rolesanywhere_client

    def _list(self, operation: str, result_key: str, arn_key: str, id_key: str, input: FilterInput) -> List[str]:
        ids = []
        for item in boto3_pager(getattr(self.rolesanywhere_client, operation), result_key):
            if not item["name"].startswith(TEST_RESOURCE_PREFIX):
                continue
            try:
                tags = self.rolesanywhere_client.list_tags_for_resource(resourceArn=item[arn_key])["tags"]
            except ClientError as e:
                if is_boto_error(e, "ValidationException"):
                    continue
                raise
            resource = ResourceWithTags(id=item["name"], creation_time=item["createdAt"], tags=unflatten_tags(tags))
            if should_delete_resource(resource, input):
                ids.append(item[id_key])
        return ids

    def list_profiles(self, input: FilterInput) -> List[str]:
        return self._list("list_profiles", "profiles", "profileArn", "profileId", input)

    def list_trust_anchors(self, input: FilterInput) -> List[str]:
        return self._list("list_trust_anchors", "trustAnchors", "trustAnchorArn", "trustAnchorId", input)

    def delete_profile(self, profile_id: str) -> None:
        try:
            self.rolesanywhere_client.delete_profile(profileId=profile_id)
        except ClientError as e:
            if is_boto_error(e, "ResourceNotFoundException"):
                logger.info("Roles Anywhere profile %s already deleted", profile_id)
                return
            raise
        logger.info("Deleted Roles Anywhere profile %s", profile_id)

    def delete_trust_anchor(self, trust_anchor_id: str) -> None:
        try:
            self.rolesanywhere_client.delete_trust_anchor(trustAnchorId=trust_anchor_id)
        except ClientError as e:
            if is_boto_error(e, "ResourceNotFoundException"):
                logger.info("Roles Anywhere trust anchor %s already deleted", trust_anchor_id)
                return
            raise
        logger.info("Deleted Roles Anywhere trust anchor %s", trust_anchor_id)
