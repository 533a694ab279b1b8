"""
Print the outputs of the deployed stacks.

Reads the CloudFormation outputs (API endpoint id, API URLs and the URLs via
the ALB) so they can be used for testing after `cdk deploy --all`.
"""

import sys
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from infrastructure.config import load_dotenv_if_present
from infrastructure.deploy_infra import APPLICATION_STACK_NAME, VPC_STACK_NAME
from infrastructure.utils.logging_utils import log_error, log_progress


def get_stack_outputs(stack_name: str, client=None) -> Dict[str, str]:
    """
    Get the outputs of a deployed CloudFormation stack.

    Args:
        stack_name: Name of the stack.
        client: Optional CloudFormation client, created if not supplied.

    Returns:
        Dict mapping output key to output value.

    Raises:
        ValueError: If the stack does not exist.
    """
    if client is None:
        client = boto3.client("cloudformation")

    try:
        response = client.describe_stacks(StackName=stack_name)
    except ClientError as e:
        if e.response["Error"]["Code"] == "ValidationError":
            raise ValueError(f"Stack {stack_name} is not deployed") from e
        raise

    stacks = response.get("Stacks", [])
    if not stacks:
        raise ValueError(f"Stack {stack_name} is not deployed")

    return {
        output["OutputKey"]: output["OutputValue"]
        for output in stacks[0].get("Outputs", [])
    }


def main(argv: Optional[List[str]] = None) -> int:
    stack_names = argv if argv else [VPC_STACK_NAME, APPLICATION_STACK_NAME]
    load_dotenv_if_present()

    client = boto3.client("cloudformation")
    for stack_name in stack_names:
        try:
            outputs = get_stack_outputs(stack_name, client=client)
        except ValueError as e:
            log_error(f"Reading outputs of {stack_name}", e)
            return 1

        for key, value in sorted(outputs.items()):
            log_progress(stack_name, f"{key} = {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
