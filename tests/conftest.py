"""Shared fixtures: an in-memory CloudFormation client and stack factories."""

import copy
from typing import Any, Dict, Optional

import pytest

from fakes import ACCOUNT, BUCKET_TEMPLATE, REGION, FakeCloudFormation
from stack_deploy.config.models import EngineSettings
from stack_deploy.deployments.descriptor import StackDescriptor
from stack_deploy.utils.aws_client import AWSEnvironment


@pytest.fixture
def cfn():
    return FakeCloudFormation()


@pytest.fixture
def settings():
    return EngineSettings(poll_interval_seconds=0)


@pytest.fixture
def environment():
    return AWSEnvironment(account=ACCOUNT, region=REGION)


@pytest.fixture
def make_stack(environment):
    """Factory for stack descriptors with a one-bucket template by default."""
    def factory(name: str = 'my-stack', template: Optional[Dict[str, Any]] = None, **kwargs) -> StackDescriptor:
        return StackDescriptor(
            name=name,
            template=copy.deepcopy(template if template is not None else BUCKET_TEMPLATE),
            environment=environment,
            **kwargs
        )
    return factory
