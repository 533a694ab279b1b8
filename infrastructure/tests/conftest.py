"""
Shared fixtures for the infrastructure tests.
"""

import aws_cdk as cdk
import pytest

from infrastructure.config import DeploymentOptions, DnsAttributes, VpcAttributes
from infrastructure.vpc.vpc_stack import NetworkDescriptor

TEST_ENV = cdk.Environment(account="123456789012", region="eu-west-1")
TEST_CERTIFICATE_ARN = (
    "arn:aws:acm:eu-west-1:123456789012:certificate/11111111-2222-3333-4444-555555555555"
)


@pytest.fixture
def env():
    return TEST_ENV


@pytest.fixture
def options():
    """Valid options importing an existing certificate into the default VPC."""
    return DeploymentOptions(
        vpc=VpcAttributes(),
        dns=DnsAttributes(zone_name="example.internal", hosted_zone_id="Z0123456789ABCDEFGHIJ"),
        create_certificate=False,
        certificate_arn=TEST_CERTIFICATE_ARN,
        alb_hostname="alb-test",
        api_path_1="test-api1",
        api_path_2="test-api2",
    )


@pytest.fixture
def network():
    """Resolved network identifiers as handed over by the VPC stack."""
    return NetworkDescriptor(
        vpc_id="vpc-12345",
        vpc_cidr_block="10.0.0.0/16",
        subnet_id_1="subnet-0aaa1111",
        subnet_id_2="subnet-0bbb2222",
        availability_zones=("eu-west-1a", "eu-west-1b"),
        vpc_endpoint_id="vpce-0123456789abcdef0",
        endpoint_ip_addresses=("10.0.1.10", "10.0.2.20"),
    )
