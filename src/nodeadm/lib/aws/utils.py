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
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from botocore.exceptions import (
    ClientError,
    CredentialRetrievalError,
    NoCredentialsError,
    PartialCredentialsError,
    TokenRetrievalError,
)

from nodeadm.lib.retry import get_error_code

logger = logging.getLogger(__name__)

# Error codes AWS uses when the caller's credentials can't be used at all.
# Nothing else will work either, so callers should stop rather than carry on.
CREDENTIAL_ERROR_CODES = [
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "UnrecognizedClientException",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "AuthFailure",
    "RequestExpired",
]


def is_credentials_error(e: BaseException) -> bool:
    """Return True if the error means we have no usable AWS credentials."""
    if isinstance(e, (NoCredentialsError, PartialCredentialsError, TokenRetrievalError,
                      CredentialRetrievalError)):
        return True
    return isinstance(e, ClientError) and get_error_code(e) in CREDENTIAL_ERROR_CODES


def flatten_tags(tags: Mapping[str, str]) -> List[Dict[str, str]]:
    """
    Convert tags from a key to value dict into a list of 'Key': xxx, 'Value': xxx dicts.
    """
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def unflatten_tags(tags: Optional[Iterable[Mapping[str, Any]]]) -> Dict[str, str]:
    """
    Convert tags from a list of 'Key': xxx, 'Value': xxx dicts into a key to value dict.

    Some services (IAM Roles Anywhere) spell these 'key' and 'value' instead.
    """
    result = {}
    for tag in tags or []:
        key = tag.get("Key", tag.get("key"))
        if key is not None:
            result[key] = tag.get("Value", tag.get("value", ""))
    return result


def boto3_pager(
    requestor_callable: Callable[..., Any], result_attribute_name: str, **kwargs: Any
) -> Iterable[Any]:
    """
    Yield all the results from calling the given Boto 3 method with the
    given keyword arguments, paging through the results using the Marker or
    NextToken, and fetching out and looping over the list in the response
    with the given attribute name.
    """

    # Recover the Boto3 client, and the name of the operation
    client = requestor_callable.__self__  # type: ignore[attr-defined]
    op_name = requestor_callable.__name__

    # grab a Boto 3 built-in paginator. See
    # <https://boto3.amazonaws.com/v1/documentation/api/latest/guide/paginators.html>
    paginator = client.get_paginator(op_name)

    for page in paginator.paginate(**kwargs):
        # Invoke it and go through the pages, yielding from them
        yield from page.get(result_attribute_name, [])
