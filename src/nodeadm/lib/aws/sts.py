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
"""Checks on the AWS identity nodeadm is running as."""
import logging
from typing import TYPE_CHECKING, Optional

from botocore.exceptions import BotoCoreError, ClientError

from nodeadm.lib.aws import parse_partition_from_arn
from nodeadm.lib.aws.session import client

if TYPE_CHECKING:
    from mypy_boto3_sts import STSClient

logger = logging.getLogger(__name__)

AUTHENTICATION_REMEDIATION = "Check your AWS configuration and make sure you can obtain valid AWS credentials."


class AWSConfigError(Exception):
    """Raised when the AWS configuration can't tell us what we need to know."""


class AuthenticationError(Exception):
    """Raised when we can't authenticate to AWS."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"AWS authentication failed: {cause}. {AUTHENTICATION_REMEDIATION}")
        self.remediation = AUTHENTICATION_REMEDIATION


def get_partition_from_config(region: Optional[str] = None, sts_client: Optional["STSClient"] = None) -> str:
    """
    Find the partition of the account our credentials belong to, by asking STS
    who we are.
    """
    sts_client = sts_client or client("sts", region_name=region)
    try:
        identity = sts_client.get_caller_identity()
    except (BotoCoreError, ClientError) as e:
        raise AWSConfigError("failed to get caller identity") from e
    arn = identity.get("Arn")
    if not arn:
        raise AWSConfigError("caller identity ARN is nil")
    return parse_partition_from_arn(arn)


def validate_authentication(region: Optional[str] = None, sts_client: Optional["STSClient"] = None) -> str:
    """
    Make sure the configured AWS credentials work. Returns the caller's ARN.

    :raises AuthenticationError: with remediation advice if they do not.
    """
    sts_client = sts_client or client("sts", region_name=region)
    try:
        identity = sts_client.get_caller_identity()
    except (BotoCoreError, ClientError) as e:
        raise AuthenticationError(e) from e
    logger.debug("Authenticated to AWS as %s", identity.get("Arn"))
    return identity.get("Arn", "")
