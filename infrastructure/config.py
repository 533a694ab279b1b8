"""
Deployment options for the ALB / private API stacks.

Reads environment variables (optionally from a project-root .env file) and
provides the validated configuration consumed by the VPC and application
stacks at synthesis time.
"""

import ipaddress
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

import aws_cdk as cdk
from dotenv import load_dotenv

# Subnet ranges of the AWS default VPC (172.31.0.0/16)
DEFAULT_VPC_PREFIX = "172.31."
DEFAULT_SUBNET_CIDR_1 = "172.31.128.0/20"
DEFAULT_SUBNET_CIDR_2 = "172.31.144.0/20"

_TRUTHY = ("1", "true", "yes", "on")


def load_dotenv_if_present(dotenv_path: Optional[Path] = None) -> bool:
    """
    Load environment variables from a .env file if it exists.

    Variables already set in the process environment are not overwritten.

    Args:
        dotenv_path: Path to the .env file. Defaults to the project root.

    Returns:
        bool: True if a .env file was found and loaded.
    """
    if dotenv_path is None:
        dotenv_path = Path(__file__).parent.parent / ".env"
    if not dotenv_path.exists():
        return False
    return load_dotenv(dotenv_path=dotenv_path, override=False)


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _api_path(value: Optional[str], default: str) -> str:
    if value is None:
        value = default
    return value.strip().strip("/")


class CertificateMode(Enum):
    """How the wildcard TLS certificate for the DNS zone is obtained."""

    ISSUE = "issue"
    IMPORT = "import"


@dataclass(frozen=True)
class VpcAttributes:
    # Empty custom_vpc_id selects the account's default VPC
    custom_vpc_id: str = ""
    subnet_cidr_1: str = DEFAULT_SUBNET_CIDR_1
    subnet_cidr_2: str = DEFAULT_SUBNET_CIDR_2


@dataclass(frozen=True)
class DnsAttributes:
    zone_name: str = ""
    hosted_zone_id: str = ""


@dataclass(frozen=True)
class DeploymentOptions:
    """
    Static configuration for both stacks.

    Build it with from_env() for deployments, or directly in tests, and call
    validate() before declaring any resource.
    """

    vpc: VpcAttributes = field(default_factory=VpcAttributes)
    dns: DnsAttributes = field(default_factory=DnsAttributes)
    create_certificate: bool = False
    certificate_arn: str = ""
    alb_hostname: str = "alb-test"
    api_path_1: str = "test-api1"
    api_path_2: str = "test-api2"
    project_tag: str = "alb-private-api"
    function_name: str = "albTestFnc"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DeploymentOptions":
        """
        Build options from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            DeploymentOptions: Unvalidated options.
        """
        env = os.environ if environ is None else environ
        return cls(
            vpc=VpcAttributes(
                custom_vpc_id=env.get("CUSTOM_VPC_ID", "").strip(),
                subnet_cidr_1=env.get("SUBNET_CIDR_1", DEFAULT_SUBNET_CIDR_1).strip(),
                subnet_cidr_2=env.get("SUBNET_CIDR_2", DEFAULT_SUBNET_CIDR_2).strip(),
            ),
            dns=DnsAttributes(
                zone_name=env.get("DNS_ZONE_NAME", "").strip(),
                hosted_zone_id=env.get("HOSTED_ZONE_ID", "").strip(),
            ),
            create_certificate=_flag(env.get("CREATE_CERTIFICATE")),
            certificate_arn=env.get("CERTIFICATE_ARN", "").strip(),
            alb_hostname=env.get("ALB_HOSTNAME", "alb-test").strip(),
            api_path_1=_api_path(env.get("API_PATH_1"), "test-api1"),
            api_path_2=_api_path(env.get("API_PATH_2"), "test-api2"),
            project_tag=env.get("PROJECT_TAG", "alb-private-api").strip(),
            function_name=env.get("FUNCTION_NAME", "albTestFnc").strip(),
        )

    @property
    def certificate_mode(self) -> CertificateMode:
        """
        Resolve how the certificate is obtained.

        The issuance flag wins over a supplied ARN. Without the flag an ARN
        is required.

        Raises:
            ValueError: If neither the flag nor an ARN is set.
        """
        if self.create_certificate:
            return CertificateMode.ISSUE
        if self.certificate_arn:
            return CertificateMode.IMPORT
        raise ValueError(
            "We must either create a new certificate or supply an existing certificate ARN"
        )

    @property
    def alb_domain_name(self) -> str:
        return f"{self.alb_hostname}.{self.dns.zone_name}"

    @property
    def api_paths(self) -> List[str]:
        return [self.api_path_1, self.api_path_2]

    def uses_default_vpc_ranges(self) -> bool:
        """Check whether either subnet CIDR still contains the default VPC prefix."""
        return (
            DEFAULT_VPC_PREFIX in self.vpc.subnet_cidr_1
            or DEFAULT_VPC_PREFIX in self.vpc.subnet_cidr_2
        )

    def validate(self) -> None:
        """
        Validate that the options describe a deployable configuration.

        Raises:
            ValueError: With every problem found, if any.
        """
        errors = []

        if not self.certificate_arn and not self.create_certificate:
            errors.append(
                "We must either create a new certificate or supply an existing certificate ARN"
            )

        cidrs = [self.vpc.subnet_cidr_1, self.vpc.subnet_cidr_2]
        if not all(cidrs):
            errors.append(
                "We need both subnet CIDR ranges (and they must be valid for the VPC CIDR)"
            )
        else:
            for cidr in cidrs:
                try:
                    ipaddress.IPv4Network(cidr)
                except ValueError as e:
                    errors.append(f"Invalid subnet CIDR range '{cidr}': {e}")
            if cidrs[0] == cidrs[1]:
                errors.append("The two subnet CIDR ranges must be different")

        if not self.dns.hosted_zone_id or not self.dns.zone_name:
            errors.append(
                "We need both the DNS zone name (domain name) and the Zone Id from Route53"
            )

        if (
            not self.alb_hostname
            or not self.api_path_1
            or not self.api_path_2
            or self.api_path_1.strip("/") == self.api_path_2.strip("/")
        ):
            errors.append(
                "We need the ALB hostname and the api paths. API paths must be unique"
            )

        slashed = [p for p in self.api_paths if p.startswith("/") or p.endswith("/")]
        if slashed:
            errors.append(
                f"API paths cannot start or end with /: {', '.join(slashed)}"
            )

        if errors:
            raise ValueError("; ".join(errors))


def resolve_environment(environ: Optional[Mapping[str, str]] = None) -> cdk.Environment:
    """
    Target account and region from the deployment credentials.

    Args:
        environ: Mapping to read from. Defaults to os.environ.

    Returns:
        cdk.Environment: Account and region for both stacks.
    """
    env = os.environ if environ is None else environ
    return cdk.Environment(
        account=env.get("AWS_ACCOUNT_ID", env.get("CDK_DEFAULT_ACCOUNT")),
        region=env.get("AWS_DEFAULT_REGION", env.get("CDK_DEFAULT_REGION")),
    )
