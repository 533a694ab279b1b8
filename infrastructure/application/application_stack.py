"""
Application Stack for the private APIs and the internal ALB in front of them.

Creates two private REST APIs backed by a single Lambda function, a custom
domain mapping both APIs by path, and an internal Application Load Balancer
that forwards the API paths to the VPC endpoint's private IP addresses.
"""

from pathlib import Path

from aws_cdk import (
    Stack,
    Duration,
    Tags,
    CfnOutput,
    aws_apigateway as apigateway,
    aws_certificatemanager as acm,
    aws_ec2 as ec2,
    aws_elasticloadbalancingv2 as elbv2,
    aws_elasticloadbalancingv2_targets as elbv2_targets,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_route53 as route53,
    aws_route53_targets as route53_targets,
)
from constructs import Construct

from infrastructure.config import CertificateMode, DeploymentOptions
from infrastructure.utils.logging_utils import (
    log_section_start,
    log_section_complete,
    log_progress,
)
from infrastructure.vpc.vpc_stack import NetworkDescriptor

# Lambda code directory
LAMBDA_DIR = Path(__file__).parent.parent.parent / "api_lambda"

# Mapping template handing the API Gateway request id to the function
REQUEST_TEMPLATE = """{
    "context": {
        "requestId" : "$context.requestId"
    }
}"""


def build_api_policy(vpc_endpoint_id: str) -> iam.PolicyDocument:
    """
    Resource policy allowing invocation only through the given VPC endpoint.

    Args:
        vpc_endpoint_id: Id of the execute-api interface endpoint.

    Returns:
        iam.PolicyDocument: Deny unless aws:SourceVpce matches, then allow.
    """
    return iam.PolicyDocument(
        statements=[
            iam.PolicyStatement(
                principals=[iam.AnyPrincipal()],
                actions=["execute-api:Invoke"],
                resources=["execute-api:/*"],
                effect=iam.Effect.DENY,
                conditions={
                    "StringNotEquals": {"aws:SourceVpce": vpc_endpoint_id},
                },
            ),
            iam.PolicyStatement(
                principals=[iam.AnyPrincipal()],
                actions=["execute-api:Invoke"],
                resources=["execute-api:/*"],
                effect=iam.Effect.ALLOW,
            ),
        ]
    )


class ApplicationStack(Stack):
    """
    Stack that deploys two simple APIs and the ALB in front of them.

    Creates:
    - TLS certificate (issued or imported) and the API custom domain
    - Lambda function shared by both APIs
    - Two private REST APIs with a GET method at the root
    - Internal ALB with HTTPS listener, HTTP redirect and path routing
    - Route53 alias record for the ALB hostname
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        options: DeploymentOptions,
        network: NetworkDescriptor,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        log_section_start(f"Application stack {construct_id}")

        # Tag all resources in this stack
        Tags.of(self).add("project", options.project_tag)

        self.options = options
        self.network = network

        # VPC and subnets from the VPC stack
        self.vpc = ec2.Vpc.from_lookup(self, "Vpc", vpc_id=network.vpc_id)
        self.subnets = [
            ec2.Subnet.from_subnet_attributes(
                self,
                f"Subnet{index}",
                subnet_id=subnet_id,
                availability_zone=availability_zone,
            )
            for index, (subnet_id, availability_zone) in enumerate(
                zip(
                    [network.subnet_id_1, network.subnet_id_2],
                    network.availability_zones,
                ),
                start=1,
            )
        ]

        # DNS zone
        self.zone = route53.HostedZone.from_hosted_zone_attributes(
            self,
            "Zone",
            hosted_zone_id=options.dns.hosted_zone_id,
            zone_name=options.dns.zone_name,
        )
        self.alb_domain_name = options.alb_domain_name

        self.certificate = self._create_certificate()

        # API VPC endpoint
        self.api_endpoint = ec2.InterfaceVpcEndpoint.from_interface_vpc_endpoint_attributes(
            self,
            "ApiEndpoint",
            port=443,
            vpc_endpoint_id=network.vpc_endpoint_id,
        )

        self.function = self._create_function()

        # API domain, REGIONAL is the only type a custom domain supports but it
        # still serves the private APIs
        self.api_domain = apigateway.DomainName(
            self,
            "ApiDomain",
            domain_name=self.alb_domain_name,
            certificate=self.certificate,
            endpoint_type=apigateway.EndpointType.REGIONAL,
            security_policy=apigateway.SecurityPolicy.TLS_1_2,
        )

        api_policy = build_api_policy(network.vpc_endpoint_id)
        self.apis = [
            self._create_api(index, api_path, api_policy)
            for index, api_path in enumerate(options.api_paths, start=1)
        ]

        self._create_load_balancer()

        log_section_complete(
            f"Application stack {construct_id}",
            f"https://{self.alb_domain_name}/{{{','.join(options.api_paths)}}}",
        )

    def _create_certificate(self) -> acm.ICertificate:
        """Issue a wildcard certificate for the zone or import the configured one."""
        mode = self.options.certificate_mode
        if mode is CertificateMode.IMPORT:
            log_progress("Certificate", f"Importing {self.options.certificate_arn}")
            return acm.Certificate.from_certificate_arn(
                self, "Certificate", self.options.certificate_arn
            )

        if self.options.certificate_arn:
            log_progress(
                "Certificate",
                "create_certificate is set, ignoring the supplied certificate ARN",
            )
        log_progress("Certificate", f"Issuing *.{self.zone.zone_name}")
        # Validation adds the auth records to the Route53 zone
        return acm.Certificate(
            self,
            "Certificate",
            domain_name=f"*.{self.zone.zone_name}",
            validation=acm.CertificateValidation.from_dns(self.zone),
        )

    def _create_function(self) -> lambda_.Function:
        function = lambda_.Function(
            self,
            "LambdaFnc",
            function_name=self.options.function_name,
            runtime=lambda_.Runtime.PYTHON_3_11,
            handler="request_echo.handler",
            code=lambda_.Code.from_asset(
                str(LAMBDA_DIR),
                exclude=["__pycache__", "__init__.py", "*.pyc"],
            ),
            timeout=Duration.seconds(10),
        )

        logs.LogGroup(
            self,
            "LambdaFncLogGroup",
            log_group_name=f"/aws/lambda/{function.function_name}",
            retention=logs.RetentionDays.ONE_MONTH,
        )
        return function

    def _create_api(
        self, index: int, api_path: str, api_policy: iam.PolicyDocument
    ) -> apigateway.RestApi:
        """
        Create one private REST API, mapped to api_path on the shared domain.
        """
        api = apigateway.RestApi(
            self,
            f"AlbTestApi{index}",
            rest_api_name=f"albTestApi{index}",
            description=f"The ALB Test Api{index}",
            deploy_options=apigateway.StageOptions(
                stage_name="v1",
                description="V1 Deployment",
            ),
            endpoint_configuration=apigateway.EndpointConfiguration(
                types=[apigateway.EndpointType.PRIVATE],
                vpc_endpoints=[self.api_endpoint],
            ),
            policy=api_policy,
        )

        # Model for the integration method response
        json_response_model = api.add_model(
            f"JsonResponse{index}",
            content_type="application/json",
            schema=apigateway.JsonSchema(
                schema=apigateway.JsonSchemaVersion.DRAFT7,
                title="JsonResponse",
                type=apigateway.JsonSchemaType.OBJECT,
                properties={
                    "requestId": apigateway.JsonSchema(
                        type=apigateway.JsonSchemaType.STRING
                    ),
                },
            ),
        )

        # Map the API domain name to the API
        apigateway.BasePathMapping(
            self,
            f"PathMapping{index}",
            base_path=api_path,
            domain_name=self.api_domain,
            rest_api=api,
        )

        integration = apigateway.LambdaIntegration(
            self.function,
            proxy=False,
            request_templates={"application/json": REQUEST_TEMPLATE},
            integration_responses=[
                apigateway.IntegrationResponse(
                    status_code="200",
                    response_templates={"application/json": "$input.body"},
                )
            ],
        )

        # API method at root
        api.root.add_method(
            "GET",
            integration,
            method_responses=[
                apigateway.MethodResponse(
                    status_code="200",
                    response_models={"application/json": json_response_model},
                )
            ],
        )

        # Outputs
        CfnOutput(
            self,
            f"ApiUrl{index}",
            value=api.url,
            description=f"API Endpoint URL{index}",
        )

        CfnOutput(
            self,
            f"ApiAlbUrl{index}",
            value=f"https://{self.alb_domain_name}/{api_path}",
            description=f"API{index} URL via ALB",
        )

        return api

    def _create_load_balancer(self) -> None:
        vpc_cidr = self.network.vpc_cidr_block

        alb_sg = ec2.SecurityGroup(
            self,
            "AlbSg",
            description="ALB Endpoint SG",
            vpc=self.vpc,
            allow_all_outbound=True,
        )
        alb_sg.add_ingress_rule(
            ec2.Peer.ipv4(vpc_cidr), ec2.Port.tcp(443), "allow internal ALB access"
        )
        alb_sg.add_ingress_rule(
            ec2.Peer.ipv4(vpc_cidr), ec2.Port.tcp(80), "allow internal ALB access"
        )

        self.alb = elbv2.ApplicationLoadBalancer(
            self,
            "Alb",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnets=self.subnets),
            internet_facing=False,
            security_group=alb_sg,
        )

        self.https_listener = self.alb.add_listener(
            "Https",
            port=443,
            protocol=elbv2.ApplicationProtocol.HTTPS,
            certificates=[
                elbv2.ListenerCertificate.from_certificate_manager(self.certificate)
            ],
            # Ingress is limited to the VPC CIDR by the security group
            open=False,
        )

        # HTTP listener redirecting to HTTPS
        self.alb.add_redirect(
            source_protocol=elbv2.ApplicationProtocol.HTTP,
            source_port=80,
            target_protocol=elbv2.ApplicationProtocol.HTTPS,
            target_port=443,
            open=False,
        )

        # DNS alias for the ALB
        route53.ARecord(
            self,
            "AlbAlias",
            record_name=self.alb_domain_name,
            zone=self.zone,
            comment="Alias for API ALB Demo",
            target=route53.RecordTarget.from_alias(
                route53_targets.LoadBalancerTarget(self.alb)
            ),
        )

        self.api_target_group = elbv2.ApplicationTargetGroup(
            self,
            "ApiEndpointGroup",
            target_group_name="ApiEndpoints",
            port=443,
            protocol=elbv2.ApplicationProtocol.HTTPS,
            health_check=elbv2.HealthCheck(
                path="/",
                interval=Duration.minutes(5),
                healthy_http_codes="200-202,400-404",
            ),
            target_type=elbv2.TargetType.IP,
            targets=[
                elbv2_targets.IpTarget(ip_address)
                for ip_address in self.network.endpoint_ip_addresses
            ],
            vpc=self.vpc,
        )

        # Send a 404 if the request does not match one of the API paths
        self.https_listener.add_action(
            "Default",
            action=elbv2.ListenerAction.fixed_response(
                404,
                content_type="text/plain",
                message_body="Nothing to see here",
            ),
        )
        self.https_listener.add_action(
            "Apis",
            action=elbv2.ListenerAction.forward([self.api_target_group]),
            conditions=[
                elbv2.ListenerCondition.path_patterns(
                    [f"/{api_path}" for api_path in self.options.api_paths]
                )
            ],
            priority=1,
        )
