"""
VPC Stack for the private API endpoint.

Creates two subnets in an existing (or the default) VPC, deploys the API
Gateway interface endpoint into them and resolves the endpoint's private IP
addresses for use by the application stack.
"""

from dataclasses import dataclass
from typing import Tuple

from aws_cdk import (
    Stack,
    Tags,
    CfnOutput,
    Fn,
    aws_ec2 as ec2,
    aws_logs as logs,
    custom_resources as cr,
)
from constructs import Construct

from infrastructure.config import DeploymentOptions
from infrastructure.utils.logging_utils import log_section_start, log_section_complete


@dataclass(frozen=True)
class NetworkDescriptor:
    """Identifiers produced by the VPC stack and consumed by the application stack."""

    vpc_id: str
    vpc_cidr_block: str
    subnet_id_1: str
    subnet_id_2: str
    availability_zones: Tuple[str, str]
    vpc_endpoint_id: str
    endpoint_ip_addresses: Tuple[str, str]


def check_subnet_cidrs(options: DeploymentOptions) -> None:
    """
    Reject default VPC subnet ranges when a custom VPC is selected.

    Raises:
        ValueError: If a custom VPC id is set but a subnet CIDR is still in 172.31.0.0/16.
    """
    if options.vpc.custom_vpc_id and options.uses_default_vpc_ranges():
        raise ValueError(
            "Update the subnet CIDR ranges in the options if you are using a custom VPC"
        )


class VpcStack(Stack):
    """
    Stack that deploys the API Gateway VPC endpoint into two new subnets.

    Creates:
    - Security group allowing HTTPS from inside the VPC
    - Route table and two private subnets in different availability zones
    - Interface VPC endpoint for execute-api
    - Two chained SDK-call custom resources resolving the endpoint's private IPs
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        options: DeploymentOptions,
        **kwargs,
    ) -> None:
        # Fail before anything is added to the app
        check_subnet_cidrs(options)

        super().__init__(scope, construct_id, **kwargs)
        log_section_start(f"VPC stack {construct_id}")

        # Tag all resources in this stack
        Tags.of(self).add("project", options.project_tag)

        vpc_attr = options.vpc

        # Use an existing VPC if specified in options, or the default VPC if not
        if vpc_attr.custom_vpc_id:
            vpc = ec2.Vpc.from_lookup(self, "Vpc", vpc_id=vpc_attr.custom_vpc_id)
        else:
            vpc = ec2.Vpc.from_lookup(self, "Vpc", is_default=True)

        # Subnets can go in any zone of the region the VPC lives in
        availability_zones = self.availability_zones
        if len(availability_zones) < 2:
            raise ValueError(
                f"Region {self.region} must have at least two availability zones"
            )

        # Security group for the endpoint, HTTPS from inside the VPC only
        endpoint_sg = ec2.SecurityGroup(
            self,
            "ApiEndpointSg",
            description="Internal API Endpoint SG",
            vpc=vpc,
            allow_all_outbound=True,
        )
        endpoint_sg.add_ingress_rule(
            ec2.Peer.ipv4(vpc.vpc_cidr_block),
            ec2.Port.tcp(443),
            "allow internal Endpoint access",
        )

        # L1 constructs: the L2 Subnet cannot be added to a looked-up VPC
        route_table = ec2.CfnRouteTable(self, "RouteTable", vpc_id=vpc.vpc_id)

        subnets = []
        for index, cidr in enumerate(
            [vpc_attr.subnet_cidr_1, vpc_attr.subnet_cidr_2], start=1
        ):
            subnet = ec2.CfnSubnet(
                self,
                f"Subnet{index}",
                cidr_block=cidr,
                vpc_id=vpc.vpc_id,
                map_public_ip_on_launch=False,
                availability_zone=availability_zones[index - 1],
            )
            Tags.of(subnet).add("Name", f"albDemoSubnet{index}")
            ec2.CfnSubnetRouteTableAssociation(
                self,
                f"Assoc{index}",
                route_table_id=route_table.ref,
                subnet_id=subnet.ref,
            )
            subnets.append(subnet)

        # The API endpoint, attached to both new subnets
        api_endpoint = ec2.CfnVPCEndpoint(
            self,
            "ApiEndpoint",
            vpc_id=vpc.vpc_id,
            service_name=f"com.amazonaws.{self.region}.execute-api",
            private_dns_enabled=True,
            vpc_endpoint_type="Interface",
            subnet_ids=[subnet.ref for subnet in subnets],
            security_group_ids=[endpoint_sg.security_group_id],
        )

        endpoint_ips = self._resolve_endpoint_ips(api_endpoint.ref)

        self.vpc = vpc
        self.network = NetworkDescriptor(
            vpc_id=vpc.vpc_id,
            vpc_cidr_block=vpc.vpc_cidr_block,
            subnet_id_1=subnets[0].ref,
            subnet_id_2=subnets[1].ref,
            availability_zones=(availability_zones[0], availability_zones[1]),
            vpc_endpoint_id=api_endpoint.ref,
            endpoint_ip_addresses=endpoint_ips,
        )

        # Outputs
        CfnOutput(
            self,
            "ApiEndpointId",
            value=api_endpoint.ref,
            description="API Endpoint Id",
        )

        CfnOutput(
            self,
            "EndpointIpAddresses",
            value=Fn.join(",", list(endpoint_ips)),
            description="Private IP addresses of the API Endpoint",
        )

        log_section_complete(
            f"VPC stack {construct_id}",
            f"subnets {vpc_attr.subnet_cidr_1}, {vpc_attr.subnet_cidr_2}",
        )

    def _resolve_endpoint_ips(self, vpc_endpoint_id: str) -> Tuple[str, str]:
        """
        Look up the private IPs of the endpoint's two network interfaces.

        The interface endpoint resource does not expose its addresses, so the
        network interface ids are read first and then described.
        """
        policy = cr.AwsCustomResourcePolicy.from_sdk_calls(
            resources=cr.AwsCustomResourcePolicy.ANY_RESOURCE
        )

        endpoint_props = cr.AwsCustomResource(
            self,
            "VpcEndpointProps",
            on_update=cr.AwsSdkCall(
                service="EC2",
                action="describeVpcEndpoints",
                parameters={"VpcEndpointIds": [vpc_endpoint_id]},
                physical_resource_id=cr.PhysicalResourceId.from_response(
                    "VpcEndpoints.0.VpcEndpointId"
                ),
                output_paths=[
                    "VpcEndpoints.0.VpcEndpointId",
                    "VpcEndpoints.0.NetworkInterfaceIds.0",
                    "VpcEndpoints.0.NetworkInterfaceIds.1",
                ],
            ),
            policy=policy,
            log_retention=logs.RetentionDays.ONE_WEEK,
        )

        interface_props = cr.AwsCustomResource(
            self,
            "NetworkInterfaceProps",
            on_update=cr.AwsSdkCall(
                service="EC2",
                action="describeNetworkInterfaces",
                parameters={
                    "NetworkInterfaceIds": [
                        endpoint_props.get_response_field(
                            "VpcEndpoints.0.NetworkInterfaceIds.0"
                        ),
                        endpoint_props.get_response_field(
                            "VpcEndpoints.0.NetworkInterfaceIds.1"
                        ),
                    ],
                },
                physical_resource_id=cr.PhysicalResourceId.from_response(
                    "NetworkInterfaces.0.NetworkInterfaceId"
                ),
                output_paths=[
                    "NetworkInterfaces.0.NetworkInterfaceId",
                    "NetworkInterfaces.0.PrivateIpAddress",
                    "NetworkInterfaces.1.PrivateIpAddress",
                ],
            ),
            policy=policy,
            log_retention=logs.RetentionDays.ONE_WEEK,
        )

        return (
            interface_props.get_response_field("NetworkInterfaces.0.PrivateIpAddress"),
            interface_props.get_response_field("NetworkInterfaces.1.PrivateIpAddress"),
        )
