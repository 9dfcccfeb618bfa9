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
import os
import re
import socket
from http.client import HTTPException
from typing import Dict, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

# This file isn't allowed to import anything that depends on Boto3, because
# the partition logic has to be importable everywhere.

DEFAULT_PARTITION = 'aws'
DEFAULT_DNS_SUFFIX = 'amazonaws.com'

PARTITION_DNS_SUFFIXES: Dict[str, str] = {
    'aws': 'amazonaws.com',
    'aws-cn': 'amazonaws.com.cn',
    'aws-us-gov': 'amazonaws.com',
    'aws-iso': 'c2s.ic.gov',
    'aws-iso-b': 'sc2s.sgov.gov',
    'aws-iso-e': 'cloud.adc-e.uk',
    'aws-iso-f': 'csp.hci.ic.gov',
    'aws-eusc': 'amazonaws.eu',
}

# Checked in order; the first matching region prefix wins.
REGION_PREFIX_PARTITIONS = [
    ('cn-', 'aws-cn'),
    ('us-gov-', 'aws-us-gov'),
    ('us-iso-', 'aws-iso'),
    ('us-isob-', 'aws-iso-b'),
    ('us-isoe-', 'aws-iso-e'),
    ('us-isof-', 'aws-iso-f'),
    ('eusc-', 'aws-eusc'),
]

IMDS_ENDPOINT = 'http://169.254.169.254'


def parse_partition_from_arn(arn: str) -> str:
    """
    Get the partition (like "aws" or "aws-cn") out of an ARN such as
    "arn:aws-cn:iam::123456789012:user/someone".

    >>> parse_partition_from_arn('arn:aws-us-gov:iam::123:role/x')
    'aws-us-gov'
    """
    if len(arn) < 6 or not arn.startswith('arn:'):
        raise ValueError(f'invalid ARN format: {arn}')
    end = arn.find(':', 4)
    if end == -1:
        raise ValueError(f'invalid ARN format: {arn}')
    partition = arn[4:end]
    if not partition:
        raise ValueError('partition not found in ARN')
    return partition


def get_partition_dns_suffix(partition: str) -> str:
    """Get the DNS suffix that service endpoints in the given partition use."""
    return PARTITION_DNS_SUFFIXES.get(partition, DEFAULT_DNS_SUFFIX)


def get_service_endpoint_for_partition(service: str, region: str, partition: str) -> str:
    """
    >>> get_service_endpoint_for_partition('ecr', 'cn-north-1', 'aws-cn')
    'ecr.cn-north-1.amazonaws.com.cn'
    """
    return f'{service}.{region}.{get_partition_dns_suffix(partition)}'


def get_ec2_service_principal(partition: str) -> str:
    """Get the EC2 service principal for IAM trust policies in the partition."""
    if partition == 'aws-cn':
        return 'ec2.amazonaws.com.cn'
    return 'ec2.amazonaws.com'


def get_partition_from_region_fallback(region: str) -> str:
    """
    Guess the partition of a region from its name alone, for when we can't
    ask STS. Unknown regions are assumed to be commercial.
    """
    if not region:
        return DEFAULT_PARTITION
    for prefix, partition in REGION_PREFIX_PARTITIONS:
        if region.startswith(prefix):
            return partition
    return DEFAULT_PARTITION


def zone_to_region(zone: str) -> str:
    """Get a region (e.g. us-west-2) from a zone (e.g. us-west-1c)."""
    # re.compile() caches the regex internally so we don't have to
    availability_zone = re.compile(r'^([a-z]{2}(?:-[a-z]+)+-[1-9][0-9]*)([a-z])$')
    m = availability_zone.match(zone)
    if not m:
        raise ValueError(f"Can't extract region from availability zone '{zone}'")
    return m.group(1)


def get_instance_metadata(path: str, timeout: float = 1) -> Optional[str]:
    """
    Read a value from the EC2 instance metadata service (IMDSv2), or return
    None if the metadata service can't be reached.
    """
    try:
        token_request = Request(f'{IMDS_ENDPOINT}/latest/api/token', method='PUT',
                                headers={'X-aws-ec2-metadata-token-ttl-seconds': '60'})
        token = urlopen(token_request, timeout=timeout).read().decode('utf-8')
        request = Request(f'{IMDS_ENDPOINT}/latest/meta-data/{path}',
                          headers={'X-aws-ec2-metadata-token': token})
        return urlopen(request, timeout=timeout).read().decode('utf-8')
    except (URLError, socket.timeout, HTTPException, OSError) as e:
        logger.debug("Could not read instance metadata %s: %s", path, e)
        return None


def running_on_ec2() -> bool:
    """
    Return True if we are currently running on EC2, and false otherwise.
    """
    def file_begins_with(path: str, prefix: str) -> bool:
        with open(path) as f:
            return f.read(len(prefix)) == prefix

    hv_uuid_path = '/sys/hypervisor/uuid'
    if os.path.exists(hv_uuid_path) and file_begins_with(hv_uuid_path, 'ec2'):
        return True
    # Some instances do not have the /sys/hypervisor/uuid file, so check the identity document instead.
    # See https://docs.aws.amazon.com/AWSEC2/latest/UserGuide/instance-identity-documents.html
    try:
        urlopen(f'{IMDS_ENDPOINT}/latest/dynamic/instance-identity/document', timeout=1)
        return True
    except (URLError, socket.timeout, HTTPException):
        return False


def get_current_aws_region() -> Optional[str]:
    """
    Get the AWS region to work in.

    Reports NODEADM_AWS_REGION if set, then the usual AWS_REGION and
    AWS_DEFAULT_REGION variables, and finally the region of the EC2 instance
    we are running on. Returns None if no method can produce a region.
    """
    for variable in ('NODEADM_AWS_REGION', 'AWS_REGION', 'AWS_DEFAULT_REGION'):
        region = os.environ.get(variable)
        if region:
            return region
    if running_on_ec2():
        zone = get_instance_metadata('placement/availability-zone')
        if zone:
            return zone_to_region(zone)
    return None
