"""AWS API Mock for Integration Testing.

In-memory implementations of the EC2, EKS, IAM, EFS and classic ELB calls
the operator makes, so reconcilers can be exercised end to end without AWS.

Key Features:
- Stateful resources returned in the shapes boto3 returns them
- Realistic dependency errors (DependencyViolation, DeleteConflict)
- Error injection per method via MockService.fail()
- Call recording for asserting idempotence (no mutations on a second pass)

Usage:
    from aws_mock import MockAWS

    aws = MockAWS()
    ctx = aws.context("demo")
    await reconcile_network(ctx, spec.aws, None)
    assert aws.mutation_calls()
"""

from .base import MockService, make_client_error, tag_list, tag_map
from .context import FAST_TIMEOUTS, MockAWS
from .ec2 import MockEC2
from .efs import MockEFS
from .eks import MockEKS
from .elb import MockELB
from .iam import MockIAM

__all__ = [
    "FAST_TIMEOUTS",
    "MockAWS",
    "MockEC2",
    "MockEFS",
    "MockEKS",
    "MockELB",
    "MockIAM",
    "MockService",
    "make_client_error",
    "tag_list",
    "tag_map",
]
