# Copyright (C) 2024 Regents of the University of California
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
Contains functions for making web requests with nodeadm.

All web requests should go through this module, to make sure they use the right
user agent.
>>> httpserver = getfixture("httpserver")
>>> handler = httpserver.expect_request("/path").respond_with_data(b"hello")
>>> from nodeadm.lib.web import get_url
>>> get_url(httpserver.url_for("/path"))
b'hello'

"""

import logging

import requests

from nodeadm.lib.misc import get_arch, get_os
from nodeadm.lib.retry import ErrorCondition, retry
from nodeadm.version import baseVersion

logger = logging.getLogger(__name__)

# How long to wait for a server to answer, in seconds
DEFAULT_TIMEOUT = 30

# We manage a Requests session at the module level to send a sensible user
# agent on every request.
web_session = requests.Session()
web_session.headers.update({"User-Agent": f"nodeadm/{baseVersion} ({get_os()}/{get_arch()})"})

# Three attempts in total; client errors other than throttling are final.
RETRIABLE_WEB_ERRORS = [
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ErrorCondition(error=requests.exceptions.HTTPError, error_codes=[429, 500, 502, 503, 504]),
]


@retry(intervals=[1, 2], errors=RETRIABLE_WEB_ERRORS)
def get_url(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """
    GET the given URL and return the response body, retrying on connection
    problems and server-side errors.
    """
    logger.debug("Fetching %s", url)
    response = web_session.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content
