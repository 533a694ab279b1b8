#!/usr/bin/env python3
"""
AWS CDK App for the internal ALB in front of private API Gateway APIs

Will deploy into the account and region of the current AWS credentials.

Deployment:
    cdk deploy --all
"""

import sys
from typing import Optional

import aws_cdk as cdk

from infrastructure.config import (
    DeploymentOptions,
    load_dotenv_if_present,
    resolve_environment,
)
from infrastructure.utils.logging_utils import (
    log_section_start,
    log_section_complete,
    log_error,
)
from infrastructure.vpc.vpc_stack import VpcStack
from infrastructure.application.application_stack import ApplicationStack

VPC_STACK_NAME = "AlbVpcDemoStack"
APPLICATION_STACK_NAME = "AlbApiDemoStack"


def build_app(
    options: Optional[DeploymentOptions] = None,
    app: Optional[cdk.App] = None,
    env: Optional[cdk.Environment] = None,
) -> cdk.App:
    """
    Declare both stacks on a CDK app.

    Options are validated before any stack is created, so an invalid
    configuration leaves the app empty.

    Args:
        options: Deployment options. Read from the environment if omitted.
        app: App to add the stacks to. A new one is created if omitted.
        env: Target account and region. Read from the environment if omitted.

    Returns:
        cdk.App: The app holding the VPC and application stacks.

    Raises:
        ValueError: If the options are invalid.
    """
    if options is None:
        options = DeploymentOptions.from_env()
    options.validate()

    if app is None:
        app = cdk.App()
    if env is None:
        env = resolve_environment()

    # Create stacks in dependency order
    vpc_stack = VpcStack(
        app,
        VPC_STACK_NAME,
        options=options,
        description="ALB VPC Demo Stack",
        env=env,
    )

    ApplicationStack(
        app,
        APPLICATION_STACK_NAME,
        options=options,
        network=vpc_stack.network,
        description="ALB API Demo Stack",
        env=env,
    )

    return app


def main() -> None:
    load_dotenv_if_present()

    log_section_start("CDK synthesis")
    try:
        app = build_app()
    except ValueError as e:
        log_error("CDK synthesis", e)
        sys.exit(1)

    app.synth()
    log_section_complete("CDK synthesis", f"{VPC_STACK_NAME}, {APPLICATION_STACK_NAME}")


if __name__ == "__main__":
    main()
