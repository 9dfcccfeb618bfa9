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
Cleaners for services moto can't stand in for, checked against canned
responses with botocore's Stubber.
"""
import datetime
from unittest.mock import patch

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import ANY, Stubber

from nodeadm.e2e.cleanup.cloudwatchlogs import CloudWatchLogsCleaner
from nodeadm.e2e.cleanup.ec2 import EC2Cleaner
from nodeadm.e2e.cleanup.eks import EKSClusterCleaner
from nodeadm.e2e.cleanup.resource import FilterInput
from nodeadm.e2e.cleanup.resource_tagging import ResourceTaggingClient
from nodeadm.e2e.cleanup.rolesanywhere import RolesAnywhereCleaner
from nodeadm.e2e.cleanup.ssm import SSMCleaner
from nodeadm.e2e.cleanup.vpc import VPCCleaner
from nodeadm.e2e.constants import CREATION_TIME_TAG_KEY, TEST_CLUSTER_TAG_KEY
from nodeadm.test import NodeadmTest

REGION = "us-west-2"
CLUSTER = "nodeadm-e2e-c1"
NOW = datetime.datetime.now(datetime.timezone.utc)
LONG_AGO = NOW - datetime.timedelta(days=20)
PROFILE_ID = "6f1c2a1e-3c6b-4d7a-9c1e-2b4a5d6e7f80"
OTHER_PROFILE_ID = "0b9e8d7c-6a5f-4e3d-8c2b-1a0f9e8d7c6b"
TRUST_ANCHOR_ID = "a3d2c1b0-9f8e-4d7c-b6a5-4e3d2c1b0a9f"
MANAGED_INSTANCE_ID = "mi-0123456789abcdef0"
OTHER_MANAGED_INSTANCE_ID = "mi-0fedcba9876543210"


def tags(cluster: str = CLUSTER, lower: bool = False):
    if lower:
        return [{"key": TEST_CLUSTER_TAG_KEY, "value": cluster}]
    return [{"Key": TEST_CLUSTER_TAG_KEY, "Value": cluster}]


class StubbedTest(NodeadmTest):
    service = ""

    def setUp(self):
        super().setUp()
        self.client = boto3.client(self.service, region_name=REGION)
        self.stubber = Stubber(self.client)
        self.stubber.activate()

    def tearDown(self):
        self.stubber.deactivate()
        super().tearDown()


class RolesAnywhereCleanerTest(StubbedTest):
    service = "rolesanywhere"

    def test_profiles(self):
        arn = "arn:aws:rolesanywhere:us-west-2:123456789012:profile/" + PROFILE_ID
        self.stubber.add_response("list_profiles", {"profiles": [
            {"profileId": PROFILE_ID, "profileArn": arn, "name": "EKSHybridCI-c1", "createdAt": NOW},
            {"profileId": OTHER_PROFILE_ID, "profileArn": arn + "x", "name": "not-a-test-profile", "createdAt": NOW},
        ]})
        self.stubber.add_response("list_tags_for_resource", {"tags": tags(lower=True)}, {"resourceArn": arn})
        self.stubber.add_response("delete_profile", {"profile": {"profileId": PROFILE_ID}}, {"profileId": PROFILE_ID})
        self.stubber.add_client_error("delete_profile", "ResourceNotFoundException",
                                      expected_params={"profileId": PROFILE_ID})

        cleaner = RolesAnywhereCleaner(self.client)
        self.assertEqual(cleaner.list_profiles(FilterInput(cluster_name=CLUSTER)), [PROFILE_ID])
        cleaner.delete_profile(PROFILE_ID)
        cleaner.delete_profile(PROFILE_ID)
        self.stubber.assert_no_pending_responses()

    def test_trust_anchors(self):
        arn = "arn:aws:rolesanywhere:us-west-2:123456789012:trust-anchor/" + TRUST_ANCHOR_ID
        self.stubber.add_response("list_trust_anchors", {"trustAnchors": [
            {"trustAnchorId": TRUST_ANCHOR_ID, "trustAnchorArn": arn, "name": "EKSHybridCI-c1", "createdAt": LONG_AGO},
        ]})
        self.stubber.add_response("list_tags_for_resource", {"tags": tags("nightly-7", lower=True)},
                                  {"resourceArn": arn})
        self.stubber.add_client_error("delete_trust_anchor", "AccessDeniedException",
                                      expected_params={"trustAnchorId": TRUST_ANCHOR_ID})

        cleaner = RolesAnywhereCleaner(self.client)
        input = FilterInput(cluster_name_prefix="nightly-", instance_age_threshold=datetime.timedelta(days=1))
        self.assertEqual(cleaner.list_trust_anchors(input), [TRUST_ANCHOR_ID])
        with pytest.raises(ClientError):
            cleaner.delete_trust_anchor(TRUST_ANCHOR_ID)


class SSMCleanerTest(StubbedTest):
    service = "ssm"

    def test_activations(self):
        self.stubber.add_response("describe_activations", {"ActivationList": [
            {"ActivationId": "a1", "CreatedDate": NOW, "Tags": tags()},
            {"ActivationId": "a2", "CreatedDate": NOW, "Tags": tags("someone-else")},
        ]})
        self.stubber.add_client_error("delete_activation", "InvalidActivation", expected_params={"ActivationId": "a1"})

        cleaner = SSMCleaner(self.client)
        self.assertEqual(cleaner.list_activations(FilterInput(cluster_name=CLUSTER)), ["a1"])
        cleaner.delete_activation("a1")
        self.stubber.assert_no_pending_responses()

    def test_managed_instances(self):
        self.stubber.add_response("describe_instance_information", {"InstanceInformationList": [
            {"InstanceId": MANAGED_INSTANCE_ID, "ResourceType": "ManagedInstance", "LastPingDateTime": NOW},
            {"InstanceId": "i-1", "ResourceType": "EC2Instance", "LastPingDateTime": NOW},
            {"InstanceId": OTHER_MANAGED_INSTANCE_ID, "ResourceType": "ManagedInstance", "LastPingDateTime": NOW},
        ]}, {"Filters": [{"Key": f"tag:{TEST_CLUSTER_TAG_KEY}", "Values": [CLUSTER]}]})
        self.stubber.add_response("list_tags_for_resource", {"TagList": tags()},
                                  {"ResourceType": "ManagedInstance", "ResourceId": MANAGED_INSTANCE_ID})
        self.stubber.add_client_error("list_tags_for_resource", "InvalidResourceId",
                                      expected_params={"ResourceType": "ManagedInstance",
                                                       "ResourceId": OTHER_MANAGED_INSTANCE_ID})
        self.stubber.add_response("deregister_managed_instance", {}, {"InstanceId": MANAGED_INSTANCE_ID})

        cleaner = SSMCleaner(self.client)
        self.assertEqual(cleaner.list_managed_instances(FilterInput(cluster_name=CLUSTER)), [MANAGED_INSTANCE_ID])
        cleaner.deregister_managed_instance(MANAGED_INSTANCE_ID)
        self.stubber.assert_no_pending_responses()

    def test_parameters(self):
        self.stubber.add_response("describe_parameters", {"Parameters": [
            {"Name": "/nodeadm/e2e/c1", "LastModifiedDate": NOW},
        ]}, {"ParameterFilters": [{"Key": "tag-key", "Values": [TEST_CLUSTER_TAG_KEY]}]})
        self.stubber.add_response("list_tags_for_resource", {"TagList": tags()},
                                  {"ResourceType": "Parameter", "ResourceId": "/nodeadm/e2e/c1"})
        self.stubber.add_response("delete_parameter", {}, {"Name": "/nodeadm/e2e/c1"})
        self.stubber.add_client_error("delete_parameter", "ParameterNotFound",
                                      expected_params={"Name": "/nodeadm/e2e/c1"})

        cleaner = SSMCleaner(self.client)
        self.assertEqual(cleaner.list_parameters(FilterInput(cluster_name=CLUSTER)), ["/nodeadm/e2e/c1"])
        cleaner.delete_parameter("/nodeadm/e2e/c1")
        cleaner.delete_parameter("/nodeadm/e2e/c1")


class CloudWatchLogsCleanerTest(NodeadmTest):
    def setUp(self):
        super().setUp()
        self.logs = boto3.client("logs", region_name=REGION)
        self.tagging = boto3.client("resourcegroupstaggingapi", region_name=REGION)
        self.logs_stubber = Stubber(self.logs)
        self.tagging_stubber = Stubber(self.tagging)
        self.logs_stubber.activate()
        self.tagging_stubber.activate()

    def tearDown(self):
        self.logs_stubber.deactivate()
        self.tagging_stubber.deactivate()
        super().tearDown()

    def stub_log_groups(self, tag_filter, prefix):
        arn = "arn:aws:logs:us-west-2:123456789012:log-group:/aws/eks/{}/cluster"
        self.tagging_stubber.add_response("get_resources", {"ResourceTagMappingList": [
            {"ResourceARN": arn.format(CLUSTER), "Tags": tags()},
            {"ResourceARN": arn.format(CLUSTER + "-new"), "Tags": tags()},
        ]}, {"ResourceTypeFilters": ["logs:log-group"], "TagFilters": [tag_filter]})
        self.logs_stubber.add_response("describe_log_groups", {"logGroups": [
            {"logGroupName": f"/aws/eks/{CLUSTER}/cluster", "creationTime": int(LONG_AGO.timestamp() * 1000)},
            {"logGroupName": f"/aws/eks/{CLUSTER}-new/cluster", "creationTime": int(NOW.timestamp() * 1000)},
            {"logGroupName": f"/aws/eks/{CLUSTER}-untagged/cluster", "creationTime": 0},
        ]}, {"logGroupNamePrefix": prefix})

    def test_named_cluster_takes_all_its_log_groups(self):
        self.stub_log_groups({"Key": TEST_CLUSTER_TAG_KEY, "Values": [CLUSTER]}, f"/aws/eks/{CLUSTER}")
        self.logs_stubber.add_response("delete_log_group", {}, {"logGroupName": f"/aws/eks/{CLUSTER}/cluster"})

        cleaner = CloudWatchLogsCleaner(self.logs, ResourceTaggingClient(self.tagging))
        names = cleaner.list_log_groups(FilterInput(cluster_name=CLUSTER))
        self.assertEqual(names, [f"/aws/eks/{CLUSTER}/cluster", f"/aws/eks/{CLUSTER}-new/cluster"])
        cleaner.delete_log_group(names[0])
        self.logs_stubber.assert_no_pending_responses()

    def test_sweeps_keep_recent_log_groups(self):
        self.stub_log_groups({"Key": TEST_CLUSTER_TAG_KEY}, "/aws/eks/nodeadm-e2e-")

        cleaner = CloudWatchLogsCleaner(self.logs, ResourceTaggingClient(self.tagging))
        # The instance threshold is replaced by the log group retention
        input = FilterInput(cluster_name_prefix="nodeadm-e2e-", instance_age_threshold=datetime.timedelta(0))
        self.assertEqual(cleaner.list_log_groups(input), [f"/aws/eks/{CLUSTER}/cluster"])
        self.logs_stubber.assert_no_pending_responses()


class VPCStubbedCleanerTest(StubbedTest):
    service = "ec2"

    def test_route_tables(self):
        self.stubber.add_response("describe_route_tables", {"RouteTables": [
            {"RouteTableId": "rtb-main", "Associations": [{"Main": True, "RouteTableAssociationId": "rtbassoc-0"}],
             "Tags": tags()},
            {"RouteTableId": "rtb-1", "Associations": [{"Main": False, "RouteTableAssociationId": "rtbassoc-1",
                                                        "SubnetId": "subnet-1"}],
             "Tags": tags() + [{"Key": CREATION_TIME_TAG_KEY, "Value": "2024-01-01T00:00:00Z"}]},
        ]}, {"Filters": ANY})
        self.stubber.add_response("describe_route_tables", {"RouteTables": [
            {"RouteTableId": "rtb-1", "Associations": [{"Main": False, "RouteTableAssociationId": "rtbassoc-1"}]},
        ]}, {"RouteTableIds": ["rtb-1"]})
        self.stubber.add_response("disassociate_route_table", {}, {"AssociationId": "rtbassoc-1"})
        self.stubber.add_response("delete_route_table", {}, {"RouteTableId": "rtb-1"})
        self.stubber.add_client_error("describe_route_tables", "InvalidRouteTableID.NotFound",
                                      expected_params={"RouteTableIds": ["rtb-1"]})

        cleaner = VPCCleaner(self.client)
        input = FilterInput(all_clusters=True, instance_age_threshold=datetime.timedelta(days=1))
        self.assertEqual(cleaner.list_route_tables(input), ["rtb-1"])
        cleaner.delete_route_table("rtb-1")
        cleaner.delete_route_table("rtb-1")
        self.stubber.assert_no_pending_responses()

    def test_transit_gateways(self):
        self.stubber.add_response("describe_transit_gateways", {"TransitGateways": [
            {"TransitGatewayId": "tgw-1", "State": "available", "Tags": tags()},
            {"TransitGatewayId": "tgw-2", "State": "deleted", "Tags": tags()},
        ]}, {"Filters": ANY})
        self.stubber.add_response("delete_transit_gateway", {}, {"TransitGatewayId": "tgw-1"})

        cleaner = VPCCleaner(self.client)
        self.assertEqual(cleaner.list_transit_gateways(FilterInput(cluster_name=CLUSTER)), ["tgw-1"])
        cleaner.delete_transit_gateway("tgw-1")

    def test_peering_connections(self):
        self.stubber.add_response("describe_vpc_peering_connections", {"VpcPeeringConnections": [
            {"VpcPeeringConnectionId": "pcx-1", "Status": {"Code": "active"}, "Tags": tags()},
            {"VpcPeeringConnectionId": "pcx-2", "Status": {"Code": "deleting"}, "Tags": tags()},
        ]}, {"Filters": ANY})
        self.stubber.add_response("delete_vpc_peering_connection", {"Return": True},
                                  {"VpcPeeringConnectionId": "pcx-1"})
        self.stubber.add_response("describe_vpc_peering_connections", {"VpcPeeringConnections": [
            {"VpcPeeringConnectionId": "pcx-1", "Status": {"Code": "deleted"}},
        ]}, {"VpcPeeringConnectionIds": ["pcx-1"]})

        cleaner = VPCCleaner(self.client)
        self.assertEqual(cleaner.list_peering_connections(FilterInput(cluster_name=CLUSTER)), ["pcx-1"])
        cleaner.delete_peering_connection("pcx-1")
        self.stubber.assert_no_pending_responses()

    def test_loose_network_interfaces(self):
        self.stubber.add_response("describe_network_interfaces", {"NetworkInterfaces": [
            {"NetworkInterfaceId": "eni-1", "Attachment": {"AttachmentId": "eni-attach-1"}},
            {"NetworkInterfaceId": "eni-2"},
        ]}, {"Filters": [{"Name": "vpc-id", "Values": ["vpc-1"]}]})
        self.stubber.add_client_error("delete_network_interface", "InvalidNetworkInterfaceID.NotFound",
                                      expected_params={"NetworkInterfaceId": "eni-2"})

        cleaner = VPCCleaner(self.client)
        self.assertEqual(cleaner.list_network_interfaces("vpc-1"), ["eni-2"])
        cleaner.delete_network_interface("eni-2")


class KeyPairCleanerTest(StubbedTest):
    service = "ec2"

    def test_key_pairs(self):
        self.stubber.add_response("describe_key_pairs", {"KeyPairs": [
            {"KeyPairId": "key-1", "CreateTime": NOW, "Tags": tags()},
            {"KeyPairId": "key-2", "CreateTime": NOW, "Tags": tags("other")},
        ]}, {"Filters": ANY})
        self.stubber.add_response("delete_key_pair", {}, {"KeyPairId": "key-1"})

        cleaner = EC2Cleaner(self.client)
        self.assertEqual(cleaner.list_key_pairs(FilterInput(cluster_name=CLUSTER)), ["key-1"])
        cleaner.delete_key_pair("key-1")
        self.stubber.assert_no_pending_responses()

    @patch("nodeadm.lib.retry.time.sleep")
    def test_terminate_waits_out_iam_consistency(self, sleep):
        self.stubber.add_client_error("terminate_instances", "InvalidParameterValue",
                                      service_message="Value (EKSHybridCI-p) for parameter iamInstanceProfile.name "
                                                      "is invalid. Invalid IAM Instance Profile name",
                                      expected_params={"InstanceIds": ["i-1"]})
        self.stubber.add_response("terminate_instances", {}, {"InstanceIds": ["i-1"]})
        self.stubber.add_response("describe_instances", {"Reservations": [
            {"Instances": [{"InstanceId": "i-1", "State": {"Name": "terminated", "Code": 48}}]},
        ]}, {"InstanceIds": ["i-1"]})

        EC2Cleaner(self.client).delete_instances(["i-1"])
        sleep.assert_called_once_with(5)
        self.stubber.assert_no_pending_responses()


class EKSStubbedCleanerTest(StubbedTest):
    service = "eks"

    def test_access_denied_on_a_cluster_that_is_gone(self):
        self.stubber.add_client_error("delete_cluster", "AccessDeniedException", expected_params={"name": "c1"})
        self.stubber.add_client_error("describe_cluster", "ResourceNotFoundException", expected_params={"name": "c1"})
        EKSClusterCleaner(self.client).delete_cluster("c1")
        self.stubber.assert_no_pending_responses()

    def test_access_denied_on_a_deleting_cluster_waits(self):
        self.stubber.add_client_error("delete_cluster", "AccessDeniedException", expected_params={"name": "c1"})
        self.stubber.add_response("describe_cluster", {"cluster": {"name": "c1", "status": "DELETING"}},
                                  {"name": "c1"})
        self.stubber.add_client_error("describe_cluster", "ResourceNotFoundException", expected_params={"name": "c1"})
        EKSClusterCleaner(self.client).delete_cluster("c1")
        self.stubber.assert_no_pending_responses()

    def test_other_errors_on_describe_are_raised(self):
        self.stubber.add_client_error("delete_cluster", "AccessDeniedException", expected_params={"name": "c1"})
        self.stubber.add_client_error("describe_cluster", "AccessDeniedException", expected_params={"name": "c1"})
        with pytest.raises(ClientError):
            EKSClusterCleaner(self.client).delete_cluster("c1")

    @patch("nodeadm.lib.retry.time.sleep")
    def test_waits_for_nodegroups(self, sleep):
        self.stubber.add_client_error("delete_cluster", "ResourceInUseException", expected_params={"name": "c1"})
        self.stubber.add_response("delete_cluster", {"cluster": {"name": "c1", "status": "DELETING"}},
                                  {"name": "c1"})
        self.stubber.add_client_error("describe_cluster", "ResourceNotFoundException", expected_params={"name": "c1"})
        EKSClusterCleaner(self.client).delete_cluster("c1")
        sleep.assert_called_once_with(10)
        self.stubber.assert_no_pending_responses()
