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
import time
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from botocore.exceptions import ClientError

from nodeadm.lib.misc import utc_now
from nodeadm.lib.retry import get_error_code, get_error_message

if TYPE_CHECKING:
    from mypy_boto3_cloudformation import CloudFormationClient

logger = logging.getLogger(__name__)

a_short_time = 5
stack_wait_timeout = 15 * 60

COMPLETE_STATES = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "DELETE_COMPLETE"}
IN_PROGRESS_STATES = {"CREATE_IN_PROGRESS", "UPDATE_IN_PROGRESS", "DELETE_IN_PROGRESS",
                      "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS"}
FAILED_RESOURCE_STATES = {"CREATE_FAILED", "UPDATE_FAILED", "DELETE_FAILED"}


class UnexpectedResourceState(Exception):
    def __init__(self, resource, to_state, state, reason=None):
        message = f"Expected state of {resource} to be '{to_state}' but got '{state}'"
        if reason is not None:
            message += f". Potential root cause: [{reason}]"
        super().__init__(message)
        self.state = state


def is_stack_not_found(e: Exception) -> bool:
    """CloudFormation reports a missing stack as a plain ValidationError."""
    return (isinstance(e, ClientError)
            and get_error_code(e) == "ValidationError"
            and "does not exist" in get_error_message(e))


def get_stack_status(cfn_client: "CloudFormationClient", stack_name: str) -> Optional[str]:
    """Get the status of a stack, or None if there is no such stack."""
    try:
        stacks = cfn_client.describe_stacks(StackName=stack_name)["Stacks"]
    except ClientError as e:
        if is_stack_not_found(e):
            return None
        raise
    return stacks[0]["StackStatus"] if stacks else None


def get_stack_failure_reason(cfn_client: "CloudFormationClient", stack_name: str) -> str:
    """
    Explain why a stack failed, using the earliest failed resource event.

    Returns the empty string if no event gives a reason.
    """
    events = cfn_client.describe_stack_events(StackName=stack_name)["StackEvents"]
    earliest: Optional[datetime] = None
    reason = ""
    for event in events:
        if event.get("ResourceStatus") not in FAILED_RESOURCE_STATES or not event.get("ResourceStatusReason"):
            continue
        timestamp = event.get("Timestamp") or utc_now()
        if earliest is None or timestamp < earliest:
            earliest = timestamp
            reason = (f"{event['ResourceStatus']} for {event.get('LogicalResourceId') or 'UnknownResource'}: "
                      f"{event['ResourceStatusReason']}")
    return reason


def wait_for_stack_operation(cfn_client: "CloudFormationClient",
                             stack_name: str,
                             interval: float = a_short_time,
                             timeout: float = stack_wait_timeout) -> None:
    """
    Wait for whatever the stack is doing to finish.

    Returns once the stack reaches a *_COMPLETE state or disappears. Raises
    UnexpectedResourceState, with the failure reason when one can be found,
    if it lands anywhere else, and TimeoutError if it is still going after
    timeout seconds.
    """
    logger.info("Waiting on stack %s (timeout: %is)", stack_name, timeout)
    deadline = time.time() + timeout
    while True:
        status = get_stack_status(cfn_client, stack_name)
        if status is None or status in COMPLETE_STATES:
            return
        if status not in IN_PROGRESS_STATES:
            try:
                reason = get_stack_failure_reason(cfn_client, stack_name)
            except ClientError as e:
                raise UnexpectedResourceState(stack_name, "*_COMPLETE", status,
                                              f"failed getting failure reason: {e}") from e
            raise UnexpectedResourceState(stack_name, "*_COMPLETE", status, reason or None)
        if time.time() >= deadline:
            raise TimeoutError(f"Timed out waiting on stack {stack_name}, last status was {status}")
        time.sleep(interval)
