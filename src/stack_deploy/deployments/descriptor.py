"""Desired state of a stack and the options of one deployment attempt."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from stack_deploy.assets.manifest import AssetManifest
from stack_deploy.config.models import DeploymentMethod
from stack_deploy.utils.aws_client import AWSEnvironment


def tags_from_mapping(tags: Optional[Dict[str, str]]) -> List[Dict[str, str]]:
    """``{'k': 'v'}`` to CloudFormation's ordered ``[{'Key': 'k', 'Value': 'v'}]``."""
    return [{'Key': key, 'Value': value} for key, value in (tags or {}).items()]


@dataclass
class StackDescriptor:
    """A locally synthesized stack.

    Attributes:
        name: Stack name
        template: Template document
        environment: Target account and region
        parameters: Parameter values declared with the stack
        tags: Ordered stack tags
        notification_arns: SNS topics; None leaves the remote setting alone
        termination_protection: Desired flag; None leaves the remote setting alone
        dependencies: Names of stacks that must deploy first
        assets: Assets to publish before deploying
        required_bootstrap_version: Minimum bootstrap version of the environment
    """
    name: str
    template: Dict[str, Any]
    environment: AWSEnvironment
    parameters: Dict[str, str] = field(default_factory=dict)
    tags: List[Dict[str, str]] = field(default_factory=list)
    notification_arns: Optional[List[str]] = None
    termination_protection: Optional[bool] = None
    dependencies: List[str] = field(default_factory=list)
    assets: Optional[AssetManifest] = None
    required_bootstrap_version: Optional[int] = None

    def __post_init__(self):
        if self.assets is None:
            self.assets = AssetManifest(stack_name=self.name)

    @property
    def has_resources(self) -> bool:
        return bool(self.template.get('Resources'))


# Alternative deployment method. Returns None to decline, in which case a
# full change-set deployment is performed.
HotswapDeployer = Callable[['StackDescriptor', Any], Optional[Any]]


@dataclass
class DeployStackOptions:
    """Everything one attempt needs besides the CloudFormation client.

    Attributes:
        stack: Desired stack
        parameters: Explicit parameter values; None values count as unsupplied
        tags: Tags to apply; None uses the stack's own tags
        notification_arns: SNS topics; None leaves the remote setting alone
        role_arn: Role CloudFormation assumes while deploying
        use_previous_parameters: Keep deployed values of unsupplied parameters
        rollback: Roll back on failure
        force_deployment: Deploy even if nothing changed
        deployment_method: Change set, direct or hotswap
        hotswap_deployer: Implementation of the hotswap method
    """
    stack: StackDescriptor
    parameters: Dict[str, Optional[str]] = field(default_factory=dict)
    tags: Optional[List[Dict[str, str]]] = None
    notification_arns: Optional[List[str]] = None
    role_arn: Optional[str] = None
    use_previous_parameters: bool = True
    rollback: bool = True
    force_deployment: bool = False
    deployment_method: DeploymentMethod = field(default_factory=DeploymentMethod)
    hotswap_deployer: Optional[HotswapDeployer] = None

    @property
    def effective_tags(self) -> List[Dict[str, str]]:
        return list(self.tags) if self.tags is not None else list(self.stack.tags)
