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
Sweep leaked end-to-end test infrastructure out of an AWS account.

Resources are deleted in dependency order: instances first, since they hold
on to instance profiles and network interfaces; then the stacks and clusters
that own most of the rest; then whatever a failed stack deletion leaves
behind.
"""
import datetime
import logging
import os
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from boto3 import Session
from botocore.config import Config

from nodeadm.e2e.cleanup.cloudformation import CFNStackCleaner
from nodeadm.e2e.cleanup.cloudwatchlogs import CloudWatchLogsCleaner
from nodeadm.e2e.cleanup.ec2 import EC2Cleaner
from nodeadm.e2e.cleanup.eks import EKSClusterCleaner
from nodeadm.e2e.cleanup.iam import IAMCleaner
from nodeadm.e2e.cleanup.resource import FilterInput
from nodeadm.e2e.cleanup.resource_tagging import ResourceTaggingClient
from nodeadm.e2e.cleanup.rolesanywhere import RolesAnywhereCleaner
from nodeadm.e2e.cleanup.s3 import S3Cleaner
from nodeadm.e2e.cleanup.ssm import SSMCleaner
from nodeadm.e2e.cleanup.vpc import VPCCleaner
from nodeadm.lib.aws.session import establish_boto3_session
from nodeadm.lib.aws.utils import is_credentials_error

logger = logging.getLogger(__name__)

# Sweeps make a lot of calls in a short time, so lean on botocore's
# client side rate limiting instead of failing on throttles.
SWEEPER_CLIENT_CONFIG = Config(retries={"mode": "adaptive", "max_attempts": 40})


class SweeperError(Exception):
    """Raised at the end of a sweep with everything that went wrong during it."""

    def __init__(self, errors: List[Tuple[str, Exception]]) -> None:
        super().__init__("\n".join(f"{message}: {error}" for message, error in errors))
        self.errors = errors


@dataclass(frozen=True)
class SweeperInput:
    all_clusters: bool = False
    dry_run: bool = False
    cluster_name: str = ""
    cluster_name_prefix: str = ""
    instance_age_threshold: datetime.timedelta = datetime.timedelta(hours=24)

    def validate(self) -> None:
        if self.cluster_name_prefix and self.cluster_name:
            raise ValueError("cannot use --cluster-prefix and --cluster-name together")
        if self.cluster_name_prefix and self.all_clusters:
            raise ValueError("cannot use --cluster-prefix and --all together")
        if self.cluster_name and self.all_clusters:
            raise ValueError("cannot use --cluster-name and --all together")
        if not (self.cluster_name_prefix or self.cluster_name or self.all_clusters):
            raise ValueError("either --cluster-prefix, --cluster-name, or --all must be specified")

    def filter_input(self) -> FilterInput:
        return FilterInput(cluster_name=self.cluster_name,
                           cluster_name_prefix=self.cluster_name_prefix,
                           all_clusters=self.all_clusters,
                           instance_age_threshold=self.instance_age_threshold,
                           dry_run=self.dry_run)


def skip_ira_test() -> bool:
    return os.environ.get("SKIP_IRA_TEST") == "true"


class Sweeper:
    def __init__(self, cfn_client, ec2_client, eks_client, iam_client, s3_client, ssm_client,
                 rolesanywhere_client, logs_client, tagging_client) -> None:
        self.cfn = CFNStackCleaner(cfn_client)
        self.ec2 = EC2Cleaner(ec2_client)
        self.vpc = VPCCleaner(ec2_client)
        self.eks = EKSClusterCleaner(eks_client)
        self.iam = IAMCleaner(iam_client)
        self.s3 = S3Cleaner(s3_client)
        self.ssm = SSMCleaner(ssm_client)
        self.rolesanywhere = RolesAnywhereCleaner(rolesanywhere_client)
        self.logs = CloudWatchLogsCleaner(logs_client, ResourceTaggingClient(tagging_client))

    @classmethod
    def from_session(cls, session: Optional[Session] = None, region_name: Optional[str] = None,
                     eks_endpoint: Optional[str] = None) -> "Sweeper":
        """Make a Sweeper whose clients all share one session and retry policy."""
        session = session or establish_boto3_session(region_name=region_name)

        def make(service_name: str, endpoint_url: Optional[str] = None):
            return session.client(service_name, region_name=region_name, endpoint_url=endpoint_url,
                                  config=SWEEPER_CLIENT_CONFIG)

        return cls(cfn_client=make("cloudformation"),
                   ec2_client=make("ec2"),
                   eks_client=make("eks", endpoint_url=eks_endpoint),
                   iam_client=make("iam"),
                   s3_client=make("s3"),
                   ssm_client=make("ssm"),
                   rolesanywhere_client=make("rolesanywhere"),
                   logs_client=make("logs"),
                   tagging_client=make("resourcegroupstaggingapi"))

    def steps(self) -> List[Tuple[Callable[[FilterInput], None], str]]:
        return [
            (self.cleanup_ec2_instances, "cleaning up EC2 instances"),
            (self.cleanup_instance_profiles, "cleaning up IAM instance profiles"),
            (self.cleanup_credential_stacks, "cleaning up credential stacks"),
            (self.cleanup_eks_clusters, "cleaning up EKS clusters"),
            (self.empty_pod_identity_buckets, "emptying S3 pod identity buckets"),
            (self.cleanup_arch_stacks, "cleaning up architecture stacks"),
            (self.cleanup_rolesanywhere_profiles, "cleaning up Roles Anywhere profiles"),
            (self.cleanup_rolesanywhere_trust_anchors, "cleaning up Roles Anywhere trust anchors"),
            (self.cleanup_iam_roles, "cleaning up IAM roles"),
            (self.cleanup_peering_connections, "cleaning up peering connections"),
            (self.cleanup_internet_gateways, "cleaning up internet gateways"),
            (self.cleanup_network_interfaces, "cleaning up network interfaces"),
            (self.cleanup_transit_gateways, "cleaning up transit gateways"),
            (self.cleanup_subnets, "cleaning up subnets"),
            (self.cleanup_route_tables, "cleaning up route tables"),
            (self.cleanup_security_groups, "cleaning up security groups"),
            (self.cleanup_vpcs, "cleaning up VPCs"),
            (self.cleanup_pod_identity_buckets, "cleaning up S3 pod identity buckets"),
            (self.cleanup_key_pairs, "cleaning up key pairs"),
            (self.cleanup_ssm_parameters, "cleaning up SSM parameters"),
            (self.cleanup_ssm_managed_instances, "cleaning up SSM managed instances"),
            (self.cleanup_ssm_activations, "cleaning up SSM hybrid activations"),
            (self.cleanup_log_groups, "cleaning up CloudWatch log groups"),
        ]

    def run(self, input: SweeperInput) -> None:
        """
        Run every cleanup step, carrying on past failures so one stuck
        resource doesn't leak everything after it. Failures are raised
        together at the end as a SweeperError. Credential problems stop the
        sweep at once, since every later step would fail the same way.
        """
        input.validate()
        filter_input = input.filter_input()
        if filter_input.dry_run:
            logger.info("Dry run enabled, skipping deletions")

        errors: List[Tuple[str, Exception]] = []
        for step, failure_message in self.steps():
            try:
                step(filter_input)
            except Exception as e:
                if is_credentials_error(e):
                    logger.error("%s: AWS credentials are not usable, stopping: %s", failure_message, e)
                    errors.append((failure_message, e))
                    break
                logger.error("%s: %s", failure_message, e)
                errors.append((failure_message, e))
        if errors:
            raise SweeperError(errors)

    @staticmethod
    def _sweep(kind: str, ids: Iterable[str], delete: Callable[[str], None], input: FilterInput) -> None:
        ids = list(ids)
        logger.info("Deleting %s: %s", kind, ids)
        if input.dry_run:
            return
        for resource_id in ids:
            delete(resource_id)

    def cleanup_ec2_instances(self, input: FilterInput) -> None:
        instance_ids = self.ec2.list_tagged_instances(input)
        logger.info("Deleting tagged EC2 instances: %s", instance_ids)
        if not input.dry_run:
            self.ec2.delete_instances(instance_ids)

    def cleanup_instance_profiles(self, input: FilterInput) -> None:
        self._sweep("IAM instance profiles", self.iam.list_instance_profiles(input),
                    self.iam.delete_instance_profile, input)

    def cleanup_credential_stacks(self, input: FilterInput) -> None:
        self._sweep("credential stacks", self.cfn.list_credential_stacks(input), self.cfn.delete_stack, input)

    def cleanup_eks_clusters(self, input: FilterInput) -> None:
        self._sweep("EKS hybrid clusters", self.eks.list_clusters(input), self.eks.delete_cluster, input)

    def empty_pod_identity_buckets(self, input: FilterInput) -> None:
        # The architecture stack owns these buckets but can't delete them with objects inside.
        self._sweep("the contents of S3 pod identity buckets", self.s3.list_buckets(input),
                    self.s3.empty_bucket, input)

    def cleanup_arch_stacks(self, input: FilterInput) -> None:
        self._sweep("architecture stacks", self.cfn.list_arch_stacks(input), self.cfn.delete_stack, input)

    def cleanup_rolesanywhere_profiles(self, input: FilterInput) -> None:
        if skip_ira_test():
            logger.info("Skipping Roles Anywhere profiles cleanup")
            return
        self._sweep("Roles Anywhere profiles", self.rolesanywhere.list_profiles(input),
                    self.rolesanywhere.delete_profile, input)

    def cleanup_rolesanywhere_trust_anchors(self, input: FilterInput) -> None:
        if skip_ira_test():
            logger.info("Skipping Roles Anywhere trust anchors cleanup")
            return
        self._sweep("Roles Anywhere trust anchors", self.rolesanywhere.list_trust_anchors(input),
                    self.rolesanywhere.delete_trust_anchor, input)

    def cleanup_iam_roles(self, input: FilterInput) -> None:
        self._sweep("IAM roles", self.iam.list_roles(input), self.iam.delete_role, input)

    def cleanup_peering_connections(self, input: FilterInput) -> None:
        self._sweep("peering connections", self.vpc.list_peering_connections(input),
                    self.vpc.delete_peering_connection, input)

    def cleanup_internet_gateways(self, input: FilterInput) -> None:
        self._sweep("internet gateways", self.vpc.list_internet_gateways(input),
                    self.vpc.delete_internet_gateway, input)

    def cleanup_network_interfaces(self, input: FilterInput) -> None:
        interface_ids: List[str] = []
        for vpc_id in self.vpc.list_vpcs(input):
            interface_ids.extend(self.vpc.list_network_interfaces(vpc_id))
        self._sweep("network interfaces", interface_ids, self.vpc.delete_network_interface, input)

    def cleanup_transit_gateways(self, input: FilterInput) -> None:
        self._sweep("transit gateways", self.vpc.list_transit_gateways(input),
                    self.vpc.delete_transit_gateway, input)

    def cleanup_subnets(self, input: FilterInput) -> None:
        self._sweep("subnets", self.vpc.list_subnets(input), self.vpc.delete_subnet, input)

    def cleanup_route_tables(self, input: FilterInput) -> None:
        self._sweep("route tables", self.vpc.list_route_tables(input), self.vpc.delete_route_table, input)

    def cleanup_security_groups(self, input: FilterInput) -> None:
        self._sweep("security groups", self.vpc.list_security_groups(input), self.vpc.delete_security_group, input)

    def cleanup_vpcs(self, input: FilterInput) -> None:
        self._sweep("VPCs", self.vpc.list_vpcs(input), self.vpc.delete_vpc, input)

    def cleanup_pod_identity_buckets(self, input: FilterInput) -> None:
        self._sweep("S3 pod identity buckets", self.s3.list_buckets(input), self.s3.delete_bucket, input)

    def cleanup_key_pairs(self, input: FilterInput) -> None:
        self._sweep("key pairs", self.ec2.list_key_pairs(input), self.ec2.delete_key_pair, input)

    def cleanup_ssm_parameters(self, input: FilterInput) -> None:
        self._sweep("SSM parameters", self.ssm.list_parameters(input), self.ssm.delete_parameter, input)

    def cleanup_ssm_managed_instances(self, input: FilterInput) -> None:
        self._sweep("SSM managed instances", self.ssm.list_managed_instances(input),
                    self.ssm.deregister_managed_instance, input)

    def cleanup_ssm_activations(self, input: FilterInput) -> None:
        self._sweep("SSM hybrid activations", self.ssm.list_activations(input), self.ssm.delete_activation, input)

    def cleanup_log_groups(self, input: FilterInput) -> None:
        self._sweep("CloudWatch log groups", self.logs.list_log_groups(input), self.logs.delete_log_group, input)
