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
from nodeadm.lib.aws.utils import boto3_pager
from nodeadm.lib.retry import ErrorCondition, is_boto_error, retry

if TYPE_CHECKING:
    from mypy_boto3_eks import EKSClient

logger = logging.getLogger(__name__)

# 60 polls, 15s apart.
CLUSTER_DELETED_WAITER_CONFIG = {"Delay": 15, "MaxAttempts": 60}

# Clusters can't be deleted while nodegroups or addons still are being.
resource_in_use_intervals = [10] * 59


class EKSClusterCleaner:
    def __init__(self, eks_client: "EKSClient") -> None:
        self.eks_client = eks_client

    def list_clusters(self, input: FilterInput) -> List[str]:
        names = []
        for name in boto3_pager(self.eks_client.list_clusters, "clusters"):
            try:
                cluster = self.eks_client.describe_cluster(name=name)["cluster"]
            except ClientError as e:
                if is_boto_error(e, "ResourceNotFoundException"):
                    continue
                raise
            resource = ResourceWithTags(id=name, creation_time=cluster["createdAt"], tags=cluster.get("tags", {}))
            if should_delete_resource(resource, input):
                names.append(name)
        return names

    @retry(intervals=resource_in_use_intervals,
           errors=[ErrorCondition(error=ClientError, boto_error_codes=["ResourceInUseException"])])
    def _request_delete(self, name: str) -> None:
        self.eks_client.delete_cluster(name=name)

    def delete_cluster(self, name: str) -> None:
        """
        Delete a cluster and wait for it to be gone.

        Access denied on delete often means the cluster is already on its
        way out and has lost the tags the policy keys on. A describe that
        still finds it is taken as deletion in progress.
        """
        try:
            try:
                self._request_delete(name)
            except ClientError as e:
                if not is_boto_error(e, "AccessDeniedException"):
                    raise
                self.eks_client.describe_cluster(name=name)
        except ClientError as e:
            if is_boto_error(e, "ResourceNotFoundException"):
                logger.info("Cluster %s already deleted", name)
                return
            raise

        self.eks_client.get_waiter("cluster_deleted").wait(name=name, WaiterConfig=CLUSTER_DELETED_WAITER_CONFIG)
        logger.info("Deleted cluster %s", name)
