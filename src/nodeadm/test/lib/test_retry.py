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
import functools
from unittest.mock import patch

import botocore.exceptions
import pytest
import requests

from nodeadm.lib.retry import ErrorCondition, is_boto_error, retry
from nodeadm.test import NodeadmTest


def client_error(code: str, message: str = "") -> botocore.exceptions.ClientError:
    return botocore.exceptions.ClientError({"Error": {"Code": code, "Message": message}}, "Operation")


class Flaky:
    """Fail with the given errors in turn, then succeed."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "done"


@patch("nodeadm.lib.retry.time.sleep")
class RetryTest(NodeadmTest):
    def test_retries_then_succeeds(self, sleep):
        flaky = Flaky(ValueError(), ValueError())
        self.assertEqual(retry(intervals=[1, 2], errors=[ValueError])(flaky)(), "done")
        self.assertEqual(flaky.calls, 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [1, 2])

    def test_wraps_callables_without_a_name(self, sleep):
        flaky = Flaky(ValueError("first"))
        wrapped = retry(intervals=[1], errors=[ValueError])(functools.partial(flaky))
        with self.assertLogs("nodeadm.lib.retry", level="DEBUG") as logs:
            self.assertEqual(wrapped(), "done")
        self.assertIn("first. Retrying after 1 s", logs.output[0])
        self.assertEqual(flaky.calls, 2)

    def test_gives_up(self, sleep):
        flaky = Flaky(ValueError(), ValueError(), ValueError())
        with pytest.raises(ValueError):
            retry(intervals=[1, 1], errors=[ValueError])(flaky)()
        self.assertEqual(flaky.calls, 3)

    def test_other_errors_are_not_retried(self, sleep):
        flaky = Flaky(KeyError())
        with pytest.raises(KeyError):
            retry(intervals=[1], errors=[ValueError])(flaky)()
        self.assertEqual(flaky.calls, 1)

    def test_boto_error_codes(self, sleep):
        condition = ErrorCondition(boto_error_codes=["ResourceInUseException"])
        flaky = Flaky(client_error("ResourceInUseException"))
        self.assertEqual(retry(intervals=[1], errors=[condition])(flaky)(), "done")

        flaky = Flaky(client_error("AccessDenied"))
        with pytest.raises(botocore.exceptions.ClientError):
            retry(intervals=[1], errors=[condition])(flaky)()
        self.assertEqual(flaky.calls, 1)

    def test_message_condition(self, sleep):
        condition = ErrorCondition(error_message_must_include="no associated IAM Roles")
        flaky = Flaky(client_error("InvalidParameterValue", "Instance profile has no associated IAM Roles"))
        self.assertEqual(retry(intervals=[1], errors=[condition])(flaky)(), "done")

    def test_bare_errors_retry_alongside_conditions(self, sleep):
        errors = [requests.exceptions.ConnectionError,
                  ErrorCondition(error=requests.exceptions.HTTPError, error_codes=[503])]
        flaky = Flaky(requests.exceptions.ConnectionError())
        self.assertEqual(retry(intervals=[1], errors=errors)(flaky)(), "done")
        self.assertEqual(flaky.calls, 2)

    def test_carve_out(self, sleep):
        errors = [botocore.exceptions.ClientError,
                  ErrorCondition(boto_error_codes=["AccessDenied"], retry_on_this_condition=False)]
        flaky = Flaky(client_error("Throttling"), client_error("AccessDenied"))
        with pytest.raises(botocore.exceptions.ClientError) as info:
            retry(intervals=[1, 1], errors=errors)(flaky)()
        self.assertEqual(info.value.response["Error"]["Code"], "AccessDenied")
        self.assertEqual(flaky.calls, 2)

    def test_is_boto_error(self, sleep):
        assert is_boto_error(client_error("NoSuchEntity"), "NoSuchEntity", "NotFound")
        assert not is_boto_error(client_error("Throttling"), "NoSuchEntity")
        assert not is_boto_error(ValueError("NoSuchEntity"), "NoSuchEntity")
