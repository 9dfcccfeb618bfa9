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
"""Deciding which test resources are due for deletion."""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from dateutil import parser as date_parser

from nodeadm.e2e.constants import CREATION_TIME_TAG_KEY, TEST_CLUSTER_TAG_KEY
from nodeadm.lib.misc import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceWithTags:
    id: str
    creation_time: datetime.datetime
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FilterInput:
    cluster_name: str = ""
    cluster_name_prefix: str = ""
    all_clusters: bool = False
    instance_age_threshold: datetime.timedelta = datetime.timedelta(0)
    dry_run: bool = False


def should_delete_resource(resource: ResourceWithTags, input: FilterInput,
                           now: Optional[datetime.datetime] = None) -> bool:
    """
    Decide whether a resource belongs to the clusters being cleaned up.

    Resources without the test cluster tag are never touched. Naming a
    cluster exactly means deleting its resources regardless of age; prefix
    and all-cluster sweeps only take resources older than the threshold.
    """
    cluster = resource.tags.get(TEST_CLUSTER_TAG_KEY, "")
    if not cluster:
        return False

    if input.cluster_name:
        return cluster == input.cluster_name

    if input.all_clusters or (input.cluster_name_prefix and cluster.startswith(input.cluster_name_prefix)):
        age = (now or utc_now()) - resource.creation_time
        return age > input.instance_age_threshold

    return False


def tag_filters(input: FilterInput) -> List[Dict[str, Any]]:
    """
    EC2 style Filters narrowing a describe call to test resources, and to the
    requested cluster or cluster prefix when there is one.
    """
    filters: List[Dict[str, Any]] = [{"Name": "tag-key", "Values": [TEST_CLUSTER_TAG_KEY]}]
    cluster_filter = input.cluster_name
    if input.cluster_name_prefix:
        cluster_filter = input.cluster_name_prefix + "*"
    if cluster_filter:
        filters.append({"Name": f"tag:{TEST_CLUSTER_TAG_KEY}", "Values": [cluster_filter]})
    return filters


def creation_time_from_tags(tags: Mapping[str, str]) -> datetime.datetime:
    """
    Read the RFC3339 creation time some resources carry as a tag. Resources
    without a readable one count as just created.
    """
    value = tags.get(CREATION_TIME_TAG_KEY)
    if value:
        try:
            created = date_parser.isoparse(value)
        except ValueError:
            logger.warning("Ignoring unparseable %s tag value %s", CREATION_TIME_TAG_KEY, value)
        else:
            if created.tzinfo is None:
                created = created.replace(tzinfo=datetime.timezone.utc)
            return created
    return utc_now()
