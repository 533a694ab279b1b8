"""
Console logging for `cdk synth` / `cdk deploy` runs.

Each line carries a UTC timestamp so synthesis output can be lined up with
CloudFormation events.
"""

from datetime import datetime, UTC
from typing import Optional


def _utc_timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def log_section_start(section: str) -> None:
    """
    Announce that a stack or synthesis step has begun declaring resources.

    Args:
        section (str): Stack or step name, e.g. "VPC stack AlbVpcDemoStack".
    """
    print(f"[{_utc_timestamp()}] Starting: {section}")


def log_section_complete(section: str, details: Optional[str] = None) -> None:
    """
    Announce that a stack or synthesis step has finished.

    Args:
        section (str): Stack or step name passed to log_section_start.
        details (Optional[str]): Summary of what was declared (subnets, URLs).
    """
    suffix = f" - {details}" if details else ""
    print(f"[{_utc_timestamp()}] Completed: {section}{suffix}")


def log_progress(section: str, message: str) -> None:
    """Note a decision taken while declaring a stack, such as the certificate mode."""
    print(f"[{_utc_timestamp()}] {section}: {message}")


def log_error(section: str, error: Exception | str) -> None:
    """
    Report why synthesis or an output lookup stopped.

    Args:
        section (str): Step that failed.
        error (Exception | str): Validation error or AWS error.
    """
    print(f"[{_utc_timestamp()}] Error in {section}: {error}")
