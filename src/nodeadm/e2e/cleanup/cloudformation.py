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
from typing import TYPE_CHECKING, Callable, List, Optional

from botocore.exceptions import ClientError

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          should_delete_resource)
from nodeadm.e2e.constants import ARCH_STACK_PREFIX, CREDENTIALS_STACK_PREFIX
from nodeadm.lib.aws.cfn import (UnexpectedResourceState,
                                 get_stack_status,
                                 is_stack_not_found,
                                 wait_for_stack_operation)
from nodeadm.lib.aws.utils import boto3_pager, unflatten_tags

if TYPE_CHECKING:
    from mypy_boto3_cloudformation import CloudFormationClient

logger = logging.getLogger(__name__)

delete_attempts = 3

# Every stack status except DELETE_COMPLETE.
LIVE_STACK_STATUSES = [
    "CREATE_IN_PROGRESS", "CREATE_FAILED", "CREATE_COMPLETE",
    "ROLLBACK_IN_PROGRESS", "ROLLBACK_FAILED", "ROLLBACK_COMPLETE",
    "DELETE_IN_PROGRESS", "DELETE_FAILED",
    "UPDATE_IN_PROGRESS", "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS", "UPDATE_COMPLETE", "UPDATE_FAILED",
    "UPDATE_ROLLBACK_IN_PROGRESS", "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS", "UPDATE_ROLLBACK_COMPLETE",
    "REVIEW_IN_PROGRESS",
    "IMPORT_IN_PROGRESS", "IMPORT_COMPLETE", "IMPORT_ROLLBACK_IN_PROGRESS",
    "IMPORT_ROLLBACK_FAILED", "IMPORT_ROLLBACK_COMPLETE",
]


class CFNStackCleaner:
    """Finds and deletes the CloudFormation stacks the tests deploy."""

    def __init__(self, cfn_client: "CloudFormationClient", stack_wait_interval: float = 5) -> None:
        self.cfn_client = cfn_client
        self.stack_wait_interval = stack_wait_interval

    def list_credential_stacks(self, input: FilterInput) -> List[str]:
        return self._list_stacks(input, lambda name: (name.startswith(CREDENTIALS_STACK_PREFIX)
                                                      and not name.startswith(ARCH_STACK_PREFIX)))

    def list_arch_stacks(self, input: FilterInput) -> List[str]:
        return self._list_stacks(input, lambda name: name.startswith(ARCH_STACK_PREFIX))

    def _list_stacks(self, input: FilterInput, want_name: Callable[[str], bool]) -> List[str]:
        stacks = []
        for summary in boto3_pager(self.cfn_client.list_stacks, "StackSummaries",
                                   StackStatusFilter=LIVE_STACK_STATUSES):
            name = summary["StackName"]
            if not want_name(name):
                continue
            try:
                described = self.cfn_client.describe_stacks(StackName=name)["Stacks"]
            except ClientError as e:
                if is_stack_not_found(e):
                    continue
                raise
            if not described:
                raise RuntimeError(f"stack {name} not found")
            resource = ResourceWithTags(id=summary["StackId"],
                                        creation_time=summary["CreationTime"],
                                        tags=unflatten_tags(described[0].get("Tags")))
            if should_delete_resource(resource, input):
                stacks.append(name)
        return stacks

    def delete_stack(self, stack_name: str) -> None:
        """
        Delete a stack, force deleting it if a previous deletion already
        failed. Gives up after a few attempts.
        """
        for attempt in range(delete_attempts):
            status = self._settled_status(stack_name)
            if status is None or status == "DELETE_COMPLETE":
                return

            deletion_mode = "FORCE_DELETE_STACK" if status == "DELETE_FAILED" else "STANDARD"
            logger.info("Deleting stack %s with deletion mode %s (attempt %i)", stack_name, deletion_mode, attempt + 1)
            try:
                self.cfn_client.delete_stack(StackName=stack_name, DeletionMode=deletion_mode)
            except ClientError as e:
                if is_stack_not_found(e):
                    return
                raise
        if self._settled_status(stack_name) in (None, "DELETE_COMPLETE"):
            return
        raise RuntimeError(f"failed to delete hybrid nodes cfn stack: {stack_name}")

    def _settled_status(self, stack_name: str) -> Optional[str]:
        """Wait out any operation in progress on the stack and return its status."""
        try:
            wait_for_stack_operation(self.cfn_client, stack_name, interval=self.stack_wait_interval)
        except (UnexpectedResourceState, TimeoutError, ClientError) as e:
            logger.error("Failed while waiting for stack %s to stabilize, proceeding with deletion: %s",
                         stack_name, e)
        return get_stack_status(self.cfn_client, stack_name)
