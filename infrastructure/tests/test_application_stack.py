"""
Unit tests for the application stack (APIs, ALB and DNS).
"""

import dataclasses

import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Match, Template

from infrastructure.application.application_stack import (
    ApplicationStack,
    REQUEST_TEMPLATE,
    build_api_policy,
)
from infrastructure.tests.conftest import TEST_CERTIFICATE_ARN


def _synth(options, network, env):
    app = cdk.App()
    stack = ApplicationStack(
        app, "TestApplicationStack", options=options, network=network, env=env
    )
    return Template.from_stack(stack)


@pytest.fixture
def template(options, network, env):
    return _synth(options, network, env)


class TestCertificate:
    """Test the certificate decision in the stack."""

    def test_import_existing(self, template):
        """Test an existing ARN is attached without creating a certificate."""
        template.resource_count_is("AWS::CertificateManager::Certificate", 0)
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 443,
            "Certificates": [{"CertificateArn": TEST_CERTIFICATE_ARN}],
        })
        template.has_resource_properties("AWS::ApiGateway::DomainName", {
            "RegionalCertificateArn": TEST_CERTIFICATE_ARN,
        })

    @pytest.mark.parametrize("certificate_arn", ["", TEST_CERTIFICATE_ARN])
    def test_issue_wildcard(self, options, network, env, certificate_arn):
        """Test the create flag issues a DNS validated wildcard certificate."""
        options = dataclasses.replace(
            options, create_certificate=True, certificate_arn=certificate_arn
        )
        template = _synth(options, network, env)

        template.resource_count_is("AWS::CertificateManager::Certificate", 1)
        template.has_resource_properties("AWS::CertificateManager::Certificate", {
            "DomainName": "*.example.internal",
            "ValidationMethod": "DNS",
        })


class TestApis:
    """Test the private REST APIs and the shared function."""

    def test_two_private_apis(self, template, network):
        template.resource_count_is("AWS::ApiGateway::RestApi", 2)
        for index in (1, 2):
            template.has_resource_properties("AWS::ApiGateway::RestApi", {
                "Name": f"albTestApi{index}",
                "EndpointConfiguration": {
                    "Types": ["PRIVATE"],
                    "VpcEndpointIds": [network.vpc_endpoint_id],
                },
            })
        template.has_resource_properties("AWS::ApiGateway::Stage", {
            "StageName": "v1",
        })

    def test_policy_restricts_to_endpoint(self, template, network):
        """Test deny unless the call came through the VPC endpoint."""
        template.has_resource_properties("AWS::ApiGateway::RestApi", {
            "Policy": {
                "Statement": [
                    Match.object_like({
                        "Action": "execute-api:Invoke",
                        "Effect": "Deny",
                        "Resource": "execute-api:/*",
                        "Condition": {
                            "StringNotEquals": {"aws:SourceVpce": network.vpc_endpoint_id},
                        },
                    }),
                    Match.object_like({
                        "Action": "execute-api:Invoke",
                        "Effect": "Allow",
                        "Resource": "execute-api:/*",
                    }),
                ],
                "Version": "2012-10-17",
            },
        })

    def test_build_api_policy(self):
        policy = build_api_policy("vpce-0abc").to_json()
        deny, allow = policy["Statement"]

        assert deny["Effect"] == "Deny"
        assert deny["Condition"] == {"StringNotEquals": {"aws:SourceVpce": "vpce-0abc"}}
        assert allow["Effect"] == "Allow"
        assert "Condition" not in allow

    def test_domain_and_path_mappings(self, template, options):
        template.has_resource_properties("AWS::ApiGateway::DomainName", {
            "DomainName": "alb-test.example.internal",
            "EndpointConfiguration": {"Types": ["REGIONAL"]},
            "SecurityPolicy": "TLS_1_2",
        })
        template.resource_count_is("AWS::ApiGateway::BasePathMapping", 2)
        for api_path in options.api_paths:
            template.has_resource_properties("AWS::ApiGateway::BasePathMapping", {
                "BasePath": api_path,
            })

    def test_single_shared_function(self, template, options):
        template.resource_count_is("AWS::Lambda::Function", 1)
        template.has_resource_properties("AWS::Lambda::Function", {
            "FunctionName": options.function_name,
            "Handler": "request_echo.handler",
            "Runtime": "python3.11",
        })
        template.has_resource_properties("AWS::Logs::LogGroup", {
            "RetentionInDays": 30,
        })

    def test_root_get_methods(self, template):
        """Test both APIs integrate GET / with the function, non-proxy."""
        template.resource_count_is("AWS::ApiGateway::Method", 2)
        template.has_resource_properties("AWS::ApiGateway::Method", {
            "HttpMethod": "GET",
            "Integration": Match.object_like({
                "Type": "AWS",
                "IntegrationHttpMethod": "POST",
                "RequestTemplates": {"application/json": REQUEST_TEMPLATE},
                "IntegrationResponses": [
                    {
                        "StatusCode": "200",
                        "ResponseTemplates": {"application/json": "$input.body"},
                    }
                ],
            }),
        })

    def test_outputs(self, template):
        template.has_output("ApiUrl1", {})
        template.has_output("ApiUrl2", {})
        template.has_output("ApiAlbUrl1", {
            "Value": "https://alb-test.example.internal/test-api1",
        })
        template.has_output("ApiAlbUrl2", {
            "Value": "https://alb-test.example.internal/test-api2",
        })


class TestLoadBalancer:
    """Test the internal ALB, its routing and DNS alias."""

    def test_internal_alb_in_both_subnets(self, template, network):
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
            "Scheme": "internal",
            "Type": "application",
            "Subnets": [network.subnet_id_1, network.subnet_id_2],
        })

    def test_security_group(self, template, network):
        template.has_resource_properties("AWS::EC2::SecurityGroup", {
            "GroupDescription": "ALB Endpoint SG",
            "SecurityGroupIngress": Match.array_with([
                Match.object_like({"CidrIp": network.vpc_cidr_block, "FromPort": 443}),
            ]),
        })
        template.has_resource_properties("AWS::EC2::SecurityGroup", {
            "GroupDescription": "ALB Endpoint SG",
            "SecurityGroupIngress": Match.array_with([
                Match.object_like({"CidrIp": network.vpc_cidr_block, "FromPort": 80}),
            ]),
        })

    def test_no_public_ingress(self, template):
        """Test the listeners do not open the ALB to 0.0.0.0/0."""
        groups = template.find_resources("AWS::EC2::SecurityGroup", {
            "Properties": {"GroupDescription": "ALB Endpoint SG"},
        })
        (group,) = groups.values()
        cidrs = [rule.get("CidrIp") for rule in group["Properties"]["SecurityGroupIngress"]]
        assert "0.0.0.0/0" not in cidrs
        assert len(cidrs) == 2

    def test_target_group_holds_endpoint_ips(self, template, network):
        """Test the target group contains exactly the two endpoint addresses."""
        template.resource_count_is("AWS::ElasticLoadBalancingV2::TargetGroup", 1)
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::TargetGroup", {
            "Name": "ApiEndpoints",
            "Port": 443,
            "Protocol": "HTTPS",
            "TargetType": "ip",
            "Targets": [{"Id": ip_address} for ip_address in network.endpoint_ip_addresses],
            "HealthCheckPath": "/",
            "HealthCheckIntervalSeconds": 300,
            "Matcher": {"HttpCode": "200-202,400-404"},
        })

    def test_default_fixed_404(self, template):
        """Test paths that match no API get a plain-text 404."""
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 443,
            "Protocol": "HTTPS",
            "DefaultActions": [
                {
                    "Type": "fixed-response",
                    "FixedResponseConfig": {
                        "StatusCode": "404",
                        "ContentType": "text/plain",
                        "MessageBody": "Nothing to see here",
                    },
                }
            ],
        })

    def test_api_paths_forward_to_target_group(self, template, options):
        template.resource_count_is("AWS::ElasticLoadBalancingV2::ListenerRule", 1)
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::ListenerRule", {
            "Priority": 1,
            "Conditions": [
                {
                    "Field": "path-pattern",
                    "PathPatternConfig": {"Values": ["/test-api1", "/test-api2"]},
                }
            ],
            "Actions": [Match.object_like({"Type": "forward"})],
        })

    def test_custom_paths(self, options, network, env):
        options = dataclasses.replace(options, api_path_1="orders", api_path_2="payments")
        template = _synth(options, network, env)

        template.has_resource_properties("AWS::ElasticLoadBalancingV2::ListenerRule", {
            "Conditions": [
                {
                    "Field": "path-pattern",
                    "PathPatternConfig": {"Values": ["/orders", "/payments"]},
                }
            ],
        })

    def test_http_redirects_to_https(self, template):
        template.resource_count_is("AWS::ElasticLoadBalancingV2::Listener", 2)
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 80,
            "Protocol": "HTTP",
            "DefaultActions": [
                Match.object_like({
                    "Type": "redirect",
                    "RedirectConfig": Match.object_like({
                        "Port": "443",
                        "Protocol": "HTTPS",
                    }),
                })
            ],
        })

    def test_dns_alias(self, template):
        template.has_resource_properties("AWS::Route53::RecordSet", {
            "Name": "alb-test.example.internal.",
            "Type": "A",
            "HostedZoneId": "Z0123456789ABCDEFGHIJ",
            "Comment": "Alias for API ALB Demo",
            "AliasTarget": Match.any_value(),
        })
