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
"""
Retrying calls that fail in known, transient ways.

AWS is eventually consistent, and a fresh IAM instance profile or a cluster
still tearing down its nodegroups will fail requests for a while before they
start working. Decorate the call with retry() and list what to wait out::

    @retry(intervals=[5, 5, 10, 20],
           errors=[ErrorCondition(boto_error_codes=["InvalidGroup.NotFound"]),
                   ErrorCondition(error_message_must_include="Invalid IAM Instance Profile")])
    def terminate(ec2_client, instance_ids):
        ec2_client.terminate_instances(InstanceIds=instance_ids)

Exception classes listed bare are retried unconditionally. An ErrorCondition
narrows a class down by HTTP status, AWS error code or message text, and with
retry_on_this_condition=False it instead carves an exception out of a bare
class listed alongside it.
"""
import functools
import http.client
import logging
import time
import traceback
import urllib.error
from typing import Any, Callable, Iterable, List, Optional, Union

import botocore.exceptions
import requests.exceptions
import urllib3.exceptions

SUPPORTED_HTTP_ERRORS = [http.client.HTTPException,
                         urllib.error.HTTPError,
                         urllib3.exceptions.HTTPError,
                         requests.exceptions.HTTPError,
                         botocore.exceptions.ClientError]

DEFAULT_INTERVALS = [1, 1, 2, 4, 8, 16]

logger = logging.getLogger(__name__)


class ErrorCondition:
    """
    An exception class plus the details an instance of it must match to count.

    :param error: The exception class. Defaults to ClientError when
        boto_error_codes is given, and to Exception otherwise.
    :param error_codes: HTTP statuses, like 503, to match. Only for the classes in SUPPORTED_HTTP_ERRORS.
    :param boto_error_codes: AWS error codes, like "NoSuchEntity", to match.
    :param error_message_must_include: Text the error message must contain.
    :param retry_on_this_condition: Set to False to fail at once on a match.
    """

    def __init__(self,
                 error: Optional[Any] = None,
                 error_codes: Optional[List[int]] = None,
                 boto_error_codes: Optional[List[str]] = None,
                 error_message_must_include: Optional[str] = None,
                 retry_on_this_condition: bool = True):
        if error is None:
            error = botocore.exceptions.ClientError if boto_error_codes else Exception
        if error_codes and error not in SUPPORTED_HTTP_ERRORS:
            raise NotImplementedError(f'Unknown error type used with error_codes: {error}')
        if boto_error_codes and not issubclass(error, botocore.exceptions.ClientError):
            raise NotImplementedError(f'Unknown error type used with boto_error_codes: {error}')

        self.error = error
        self.error_codes = error_codes
        self.boto_error_codes = boto_error_codes
        self.error_message_must_include = error_message_must_include
        self.retry_on_this_condition = retry_on_this_condition

    def has_details(self) -> bool:
        return bool(self.error_codes or self.boto_error_codes or self.error_message_must_include)

    def matches(self, e: Exception) -> bool:
        """True if e is of this condition's class and meets all of its details."""
        if not isinstance(e, self.error) or not self.has_details():
            return False
        if self.error_codes and get_error_status(e) not in self.error_codes:
            return False
        if self.boto_error_codes and get_error_code(e) not in self.boto_error_codes:
            return False
        return meets_error_message_condition(e, self.error_message_must_include)


def retry(intervals: Optional[List[float]] = None,
          errors: Optional[Iterable[Union[ErrorCondition, type]]] = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Make a decorator that calls the function again after each interval, in
    seconds, for as long as it keeps failing with one of the given errors.

    :param intervals: The sleeps between attempts. Defaults to 1, 1, 2, 4, 8 and 16 seconds.
    :param errors: Exception classes and ErrorConditions to retry on. Defaults to any Exception.
    """
    intervals = list(intervals) if intervals is not None else list(DEFAULT_INTERVALS)
    errors = list(errors) if errors else [Exception]

    bare_errors = tuple(e for e in errors if not isinstance(e, ErrorCondition))
    conditions = [e for e in errors if isinstance(e, ErrorCondition)]
    # A condition on a class that is already retried bare only matters as an exception to it
    conditions = [c for c in conditions if not (c.retry_on_this_condition and c.error in bare_errors)]
    caught = bare_errors + tuple(c.error for c in conditions if c.retry_on_this_condition)

    def should_retry(e: Exception) -> bool:
        if any(c.matches(e) and not c.retry_on_this_condition for c in conditions):
            return False
        return isinstance(e, bare_errors) or any(c.matches(e) for c in conditions)

    def decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def call(*args: Any, **kwargs: Any) -> Any:
            remaining = list(intervals)
            while True:
                try:
                    return func(*args, **kwargs)
                except caught as e:
                    if not remaining or not should_retry(e):
                        raise
                    interval = remaining.pop(0)
                    logger.debug(f"Error in {getattr(func, '__name__', func)}: {e}. Retrying after {interval} s...")
                    time.sleep(interval)
        return call
    return decorate


def get_error_code(e: Exception) -> str:
    """The AWS error code of a Boto 3 error, like "NoSuchEntity", or the empty string."""
    response = getattr(e, 'response', None)
    if hasattr(response, 'get'):
        code = response.get('Error', {}).get('Code')
        if isinstance(code, str):
            return code
    return ''


def get_error_message(e: Exception) -> str:
    """The message of a Boto 3 error, or the empty string."""
    response = getattr(e, 'response', None)
    if hasattr(response, 'get'):
        message = response.get('Error', {}).get('Message')
        if isinstance(message, str):
            return message
    return ''


def get_error_status(e: Exception) -> int:
    """
    The HTTP status of a Boto 3, requests, urllib, urllib3 or http.client
    error, or 0 if it carries none.
    """
    if hasattr(e, 'status'):
        return int(str(e.status).strip())
    response = getattr(e, 'response', None)
    if response is not None:
        if hasattr(response, 'status_code'):
            return int(response.status_code)
        if hasattr(response, 'get'):
            return int(response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0))
    if hasattr(e, 'code'):
        return int(str(e.code).strip())
    return 0


def meets_error_message_condition(e: Exception, error_message: Optional[str]) -> bool:
    if not error_message:
        return True
    if isinstance(e, urllib.error.HTTPError):
        return error_message in e.msg
    if isinstance(e, (botocore.exceptions.ClientError, http.client.HTTPException,
                      urllib3.exceptions.HTTPError, requests.exceptions.HTTPError)):
        return error_message in str(e)
    return error_message in traceback.format_exc()


def is_boto_error(e: Exception, *codes: str) -> bool:
    """Return True if e is a Boto 3 ClientError carrying one of the given error codes."""
    return isinstance(e, botocore.exceptions.ClientError) and get_error_code(e) in codes
