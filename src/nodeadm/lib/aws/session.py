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
Boto3 sessions and clients shared by nodeadm.

Sessions are not thread safe, and creating clients isn't either, so every
thread gets its own session per region and client construction is done
under one lock.
"""
import collections
import logging
import os
import threading
from typing import TYPE_CHECKING, Dict, Literal, Optional, Tuple, cast, overload

import botocore
from boto3 import Session
from botocore.client import Config
from botocore.session import get_session
from botocore.utils import JSONFileCache

if TYPE_CHECKING:
    from mypy_boto3_ecr import ECRClient
    from mypy_boto3_eks import EKSClient
    from mypy_boto3_s3 import S3Client
    from mypy_boto3_sts import STSClient

logger = logging.getLogger(__name__)

_init_lock = threading.RLock()

ServiceName = Literal["ecr", "eks", "s3", "sts"]

ClientKey = Tuple[Optional[str], str, Optional[str]]


def _new_boto3_session(region_name: Optional[str] = None) -> Session:
    """
    Make a new Boto3 session that caches assumed role credentials on disk.

    The profile comes from NODEADM_AWS_PROFILE when it is set.
    """
    with _init_lock:
        botocore_session = get_session()
        assume_role = botocore_session.get_component("credential_provider").get_provider("assume-role")
        assume_role.cache = JSONFileCache()
        return Session(botocore_session=botocore_session,
                       region_name=region_name,
                       profile_name=os.environ.get("NODEADM_AWS_PROFILE") or None)


class AWSConnectionManager:
    """
    Hands out Boto3 sessions and clients, one per thread, keyed by region.

    A region of None leaves the choice of region to Boto3's own
    configuration lookup.
    """

    def __init__(self) -> None:
        self._sessions: Dict[Optional[str], threading.local] = collections.defaultdict(threading.local)
        self._clients: Dict[ClientKey, threading.local] = collections.defaultdict(threading.local)

    def session(self, region: Optional[str]) -> Session:
        """Get this thread's session for the region."""
        storage = self._sessions[region]
        if not hasattr(storage, "item"):
            storage.item = _new_boto3_session(region_name=region)
        return cast(Session, storage.item)

    def _make_client(self, region: Optional[str], service_name: str, endpoint_url: Optional[str],
                     config: Optional[Config]) -> botocore.client.BaseClient:
        kwargs = {}
        if endpoint_url is not None:
            kwargs["endpoint_url"] = endpoint_url
        if config is not None:
            kwargs["config"] = config
        with _init_lock:
            return self.session(region).client(service_name, **kwargs)

    @overload
    def client(self, region: Optional[str], service_name: Literal["ecr"],
               endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "ECRClient": ...
    @overload
    def client(self, region: Optional[str], service_name: Literal["eks"],
               endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "EKSClient": ...
    @overload
    def client(self, region: Optional[str], service_name: Literal["s3"],
               endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "S3Client": ...
    @overload
    def client(self, region: Optional[str], service_name: Literal["sts"],
               endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "STSClient": ...

    def client(self, region: Optional[str], service_name: ServiceName,
               endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> botocore.client.BaseClient:
        """
        Get this thread's client for a service in a region.

        Clients made with a custom botocore Config are never cached, since
        the config isn't part of the cache key.
        """
        if config is not None:
            return self._make_client(region, service_name, endpoint_url, config)

        storage = self._clients[(region, service_name, endpoint_url)]
        if not hasattr(storage, "item"):
            storage.item = self._make_client(region, service_name, endpoint_url, None)
        return cast(botocore.client.BaseClient, storage.item)


_global_manager = AWSConnectionManager()


def establish_boto3_session(region_name: Optional[str] = None) -> Session:
    """Get a session usable by the current thread. Repeat calls may return the same one."""
    return _global_manager.session(region_name)


@overload
def client(service_name: Literal["ecr"], region_name: Optional[str] = None,
           endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "ECRClient": ...
@overload
def client(service_name: Literal["eks"], region_name: Optional[str] = None,
           endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "EKSClient": ...
@overload
def client(service_name: Literal["s3"], region_name: Optional[str] = None,
           endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "S3Client": ...
@overload
def client(service_name: Literal["sts"], region_name: Optional[str] = None,
           endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> "STSClient": ...


def client(service_name: ServiceName, region_name: Optional[str] = None,
           endpoint_url: Optional[str] = None, config: Optional[Config] = None) -> botocore.client.BaseClient:
    """Get a client for the current thread from the process-wide AWSConnectionManager."""
    return _global_manager.client(region_name, service_name, endpoint_url=endpoint_url, config=config)
