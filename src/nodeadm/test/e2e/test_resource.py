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
import datetime

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          creation_time_from_tags,
                                          should_delete_resource,
                                          tag_filters)
from nodeadm.e2e.constants import CREATION_TIME_TAG_KEY, TEST_CLUSTER_TAG_KEY
from nodeadm.test import NodeadmTest

NOW = datetime.datetime(2024, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


def resource(cluster: str = "", hours_old: float = 0) -> ResourceWithTags:
    tags = {TEST_CLUSTER_TAG_KEY: cluster} if cluster else {"Name": "not-ours"}
    return ResourceWithTags(id="r-1", creation_time=NOW - datetime.timedelta(hours=hours_old), tags=tags)


class ShouldDeleteTest(NodeadmTest):
    day = datetime.timedelta(hours=24)

    def test_untagged_resources_are_never_deleted(self):
        for input in (FilterInput(all_clusters=True), FilterInput(cluster_name_prefix=""),
                      FilterInput(cluster_name="c1")):
            assert not should_delete_resource(resource(hours_old=100), input, now=NOW)

    def test_exact_cluster_ignores_age(self):
        input = FilterInput(cluster_name="c1", instance_age_threshold=self.day)
        assert should_delete_resource(resource("c1"), input, now=NOW)
        assert not should_delete_resource(resource("c10", hours_old=100), input, now=NOW)

    def test_prefix_respects_age(self):
        input = FilterInput(cluster_name_prefix="nightly-", instance_age_threshold=self.day)
        assert should_delete_resource(resource("nightly-123", hours_old=25), input, now=NOW)
        assert not should_delete_resource(resource("nightly-123", hours_old=23), input, now=NOW)
        assert not should_delete_resource(resource("manual-123", hours_old=25), input, now=NOW)

    def test_all_clusters_respects_age(self):
        input = FilterInput(all_clusters=True, instance_age_threshold=self.day)
        assert should_delete_resource(resource("anything", hours_old=48), input, now=NOW)
        assert not should_delete_resource(resource("anything", hours_old=1), input, now=NOW)
        # Exactly at the threshold is not old enough
        assert not should_delete_resource(resource("anything", hours_old=24), input, now=NOW)

    def test_nothing_selected(self):
        assert not should_delete_resource(resource("c1", hours_old=100), FilterInput(), now=NOW)


class TagHelpersTest(NodeadmTest):
    def test_tag_filters(self):
        self.assertEqual(tag_filters(FilterInput(all_clusters=True)),
                         [{"Name": "tag-key", "Values": [TEST_CLUSTER_TAG_KEY]}])
        self.assertEqual(tag_filters(FilterInput(cluster_name="c1"))[1],
                         {"Name": f"tag:{TEST_CLUSTER_TAG_KEY}", "Values": ["c1"]})
        self.assertEqual(tag_filters(FilterInput(cluster_name_prefix="nightly-"))[1],
                         {"Name": f"tag:{TEST_CLUSTER_TAG_KEY}", "Values": ["nightly-*"]})

    def test_creation_time_from_tags(self):
        self.assertEqual(creation_time_from_tags({CREATION_TIME_TAG_KEY: "2024-05-01T10:00:00Z"}),
                         datetime.datetime(2024, 5, 1, 10, tzinfo=datetime.timezone.utc))
        naive = creation_time_from_tags({CREATION_TIME_TAG_KEY: "2024-05-01T10:00:00"})
        self.assertEqual(naive.tzinfo, datetime.timezone.utc)
        before = datetime.datetime.now(datetime.timezone.utc)
        assert creation_time_from_tags({CREATION_TIME_TAG_KEY: "yesterday"}) >= before
        assert creation_time_from_tags({}) >= before
