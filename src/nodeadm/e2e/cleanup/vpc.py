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
Cleanup for the networking the tests leave behind when their CloudFormation
stacks fail to delete everything.

Most of these resources have no creation timestamp of their own, so the
tests tag them with one.
"""
import logging
from typing import TYPE_CHECKING, Any, Iterable, List, Mapping

from botocore.exceptions import ClientError

from nodeadm.e2e.cleanup.resource import (FilterInput,
                                          ResourceWithTags,
                                          creation_time_from_tags,
                                          should_delete_resource,
                                          tag_filters)
from nodeadm.lib.aws.utils import boto3_pager, unflatten_tags
from nodeadm.lib.retry import is_boto_error

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

logger = logging.getLogger(__name__)

PEERING_DELETED_WAITER_CONFIG = {"Delay": 15, "MaxAttempts": 20}


def _tagged_resource(resource_id: str, raw_tags: Iterable[Mapping[str, Any]]) -> ResourceWithTags:
    tags = unflatten_tags(raw_tags)
    return ResourceWithTags(id=resource_id, creation_time=creation_time_from_tags(tags), tags=tags)


class VPCCleaner:
    def __init__(self, ec2_client: "EC2Client") -> None:
        self.ec2_client = ec2_client

    def _matching(self, operation: str, result_key: str, id_key: str, input: FilterInput,
                  skip=lambda item: False) -> List[str]:
        ids = []
        describe = getattr(self.ec2_client, operation)
        for item in boto3_pager(describe, result_key, Filters=tag_filters(input)):
            if skip(item):
                continue
            if should_delete_resource(_tagged_resource(item[id_key], item.get("Tags")), input):
                ids.append(item[id_key])
        return ids

    def list_peering_connections(self, input: FilterInput) -> List[str]:
        return self._matching("describe_vpc_peering_connections", "VpcPeeringConnections",
                              "VpcPeeringConnectionId", input,
                              skip=lambda pcx: pcx.get("Status", {}).get("Code") in ("deleted", "deleting"))

    def delete_peering_connection(self, peering_connection_id: str) -> None:
        try:
            self.ec2_client.delete_vpc_peering_connection(VpcPeeringConnectionId=peering_connection_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidVpcPeeringConnectionID.NotFound", "InvalidVpcPeeringConnectionId.NotFound"):
                logger.info("Peering connection %s already deleted", peering_connection_id)
                return
            raise
        self.ec2_client.get_waiter("vpc_peering_connection_deleted").wait(
            VpcPeeringConnectionIds=[peering_connection_id], WaiterConfig=PEERING_DELETED_WAITER_CONFIG)
        logger.info("Deleted peering connection %s", peering_connection_id)

    def list_internet_gateways(self, input: FilterInput) -> List[str]:
        return self._matching("describe_internet_gateways", "InternetGateways", "InternetGatewayId", input)

    def delete_internet_gateway(self, igw_id: str) -> None:
        """Detach the gateway from its VPCs, then delete it."""
        try:
            gateways = self.ec2_client.describe_internet_gateways(InternetGatewayIds=[igw_id])["InternetGateways"]
        except ClientError as e:
            if is_boto_error(e, "InvalidInternetGatewayID.NotFound"):
                logger.info("Internet gateway %s already deleted", igw_id)
                return
            raise
        if not gateways:
            return
        for attachment in gateways[0].get("Attachments", []):
            logger.info("Detaching internet gateway %s from %s", igw_id, attachment["VpcId"])
            self.ec2_client.detach_internet_gateway(InternetGatewayId=igw_id, VpcId=attachment["VpcId"])
        try:
            self.ec2_client.delete_internet_gateway(InternetGatewayId=igw_id)
        except ClientError as e:
            if not is_boto_error(e, "InvalidInternetGatewayID.NotFound"):
                raise
        logger.info("Deleted internet gateway %s", igw_id)

    def list_network_interfaces(self, vpc_id: str) -> List[str]:
        """
        Find the loose network interfaces in a VPC. They don't carry our
        tags, so they are found through the VPCs that do.
        """
        interface_ids = []
        for eni in boto3_pager(self.ec2_client.describe_network_interfaces, "NetworkInterfaces",
                               Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]):
            attachment = eni.get("Attachment") or {}
            if attachment.get("AttachmentId"):
                logger.info("Skipping network interface %s with attachment %s",
                            eni["NetworkInterfaceId"], attachment["AttachmentId"])
                continue
            interface_ids.append(eni["NetworkInterfaceId"])
        return interface_ids

    def delete_network_interface(self, interface_id: str) -> None:
        try:
            self.ec2_client.delete_network_interface(NetworkInterfaceId=interface_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidNetworkInterfaceID.NotFound"):
                logger.info("Network interface %s already deleted", interface_id)
                return
            raise
        logger.info("Deleted network interface %s", interface_id)

    def list_transit_gateways(self, input: FilterInput) -> List[str]:
        return self._matching("describe_transit_gateways", "TransitGateways", "TransitGatewayId", input,
                              skip=lambda tgw: tgw.get("State") in ("deleted", "deleting"))

    def delete_transit_gateway(self, transit_gateway_id: str) -> None:
        try:
            self.ec2_client.delete_transit_gateway(TransitGatewayId=transit_gateway_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidTransitGatewayID.NotFound"):
                logger.info("Transit gateway %s already deleted", transit_gateway_id)
                return
            raise
        logger.info("Deleted transit gateway %s", transit_gateway_id)

    def list_subnets(self, input: FilterInput) -> List[str]:
        return self._matching("describe_subnets", "Subnets", "SubnetId", input)

    def delete_subnet(self, subnet_id: str) -> None:
        try:
            self.ec2_client.delete_subnet(SubnetId=subnet_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidSubnetID.NotFound", "InvalidSubnetId.NotFound"):
                logger.info("Subnet %s already deleted", subnet_id)
                return
            raise
        logger.info("Deleted subnet %s", subnet_id)

    def list_route_tables(self, input: FilterInput) -> List[str]:
        # The main route table goes away with its VPC.
        return self._matching("describe_route_tables", "RouteTables", "RouteTableId", input,
                              skip=lambda rt: any(a.get("Main") for a in rt.get("Associations", [])))

    def delete_route_table(self, route_table_id: str) -> None:
        try:
            tables = self.ec2_client.describe_route_tables(RouteTableIds=[route_table_id])["RouteTables"]
            for table in tables:
                for association in table.get("Associations", []):
                    if not association.get("Main"):
                        self.ec2_client.disassociate_route_table(
                            AssociationId=association["RouteTableAssociationId"])
            self.ec2_client.delete_route_table(RouteTableId=route_table_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidRouteTableID.NotFound"):
                logger.info("Route table %s already deleted", route_table_id)
                return
            raise
        logger.info("Deleted route table %s", route_table_id)

    def list_security_groups(self, input: FilterInput) -> List[str]:
        return self._matching("describe_security_groups", "SecurityGroups", "GroupId", input,
                              skip=lambda sg: sg.get("GroupName") == "default")

    def delete_security_group(self, group_id: str) -> None:
        try:
            self.ec2_client.delete_security_group(GroupId=group_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidSecurityGroupId.NotFound", "InvalidGroup.NotFound"):
                logger.info("Security group %s already deleted", group_id)
                return
            raise
        logger.info("Deleted security group %s", group_id)

    def list_vpcs(self, input: FilterInput) -> List[str]:
        return self._matching("describe_vpcs", "Vpcs", "VpcId", input)

    def delete_vpc(self, vpc_id: str) -> None:
        try:
            self.ec2_client.delete_vpc(VpcId=vpc_id)
        except ClientError as e:
            if is_boto_error(e, "InvalidVpcID.NotFound"):
                logger.info("VPC %s already deleted", vpc_id)
                return
            raise
        logger.info("Deleted VPC %s", vpc_id)
