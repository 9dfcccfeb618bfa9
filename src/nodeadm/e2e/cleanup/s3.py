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
from typing import TYPE_CHECKING, Any, Dict, List, cast

from botocore.exceptions import ClientError

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          should_delete_resource)
from nodeadm.e2e.constants import POD_IDENTITY_S3_BUCKET_PREFIX
from nodeadm.lib.aws.utils import unflatten_tags
from nodeadm.lib.retry import is_boto_error

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)


class S3Cleaner:
    """Cleans up the buckets the pod identity tests create."""

    def __init__(self, s3_client: "S3Client") -> None:
        self.s3_client = s3_client

    def list_buckets(self, input: FilterInput) -> List[str]:
        names = []
        for bucket in self.s3_client.list_buckets().get("Buckets", []):
            name = bucket["Name"]
            if not name.startswith(POD_IDENTITY_S3_BUCKET_PREFIX):
                continue
            try:
                tags = self.s3_client.get_bucket_tagging(Bucket=name)["TagSet"]
            except ClientError as e:
                # Untagged buckets aren't ours.
                if is_boto_error(e, "NoSuchBucket", "NoSuchTagSet"):
                    continue
                raise
            resource = ResourceWithTags(id=name, creation_time=bucket["CreationDate"], tags=unflatten_tags(tags))
            if should_delete_resource(resource, input):
                names.append(name)
        return names

    def empty_bucket(self, bucket_name: str) -> None:
        """Delete every object version and delete marker in the bucket."""
        paginator = self.s3_client.get_paginator("list_object_versions")
        try:
            for response in paginator.paginate(Bucket=bucket_name):
                to_delete: List[Dict[str, Any]] = cast(List[Dict[str, Any]], response.get("Versions", [])) + \
                    cast(List[Dict[str, Any]], response.get("DeleteMarkers", []))
                for entry in to_delete:
                    logger.debug("Deleting %s version %s from %s", entry["Key"], entry["VersionId"], bucket_name)
                    self.s3_client.delete_object(Bucket=bucket_name, Key=entry["Key"], VersionId=entry["VersionId"])
        except ClientError as e:
            if is_boto_error(e, "NoSuchBucket"):
                logger.info("Bucket %s already deleted", bucket_name)
                return
            raise
        logger.info("Emptied bucket %s", bucket_name)

    def delete_bucket(self, bucket_name: str) -> None:
        self.empty_bucket(bucket_name)
        try:
            self.s3_client.delete_bucket(Bucket=bucket_name)
        except ClientError as e:
            if is_boto_error(e, "NoSuchBucket"):
                logger.info("Bucket %s already deleted", bucket_name)
                return
            raise
        logger.info("Deleted bucket %s", bucket_name)
