"""Per-stack deployment: decision logic, change-set state machine and rollback."""

from stack_deploy.deployments.descriptor import (
    DeployStackOptions,
    StackDescriptor,
    HotswapDeployer,
    tags_from_mapping,
)
from stack_deploy.deployments.decision import (
    SkipDecision,
    can_skip_deploy,
    change_set_type,
    merge_notification_arns,
)
from stack_deploy.deployments.deploy_stack import StackDeployer
from stack_deploy.deployments.environment import EnvironmentResources
from stack_deploy.deployments.parameters import TemplateParameters, ParameterValues
from stack_deploy.deployments.progress import DeployEvent, ProgressCallback, notify
from stack_deploy.deployments.results import (
    DeployStackResult,
    DeployStackResultType,
    SuccessfulDeployStackResult,
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
    assert_is_successful,
)
from stack_deploy.deployments.rollback import StackRollbacker, RollbackResult

__all__ = [
    # Inputs
    'DeployStackOptions',
    'StackDescriptor',
    'HotswapDeployer',
    'tags_from_mapping',

    # Decisions
    'SkipDecision',
    'can_skip_deploy',
    'change_set_type',
    'merge_notification_arns',
    'TemplateParameters',
    'ParameterValues',

    # Execution
    'StackDeployer',
    'EnvironmentResources',
    'StackRollbacker',
    'RollbackResult',

    # Results
    'DeployStackResult',
    'DeployStackResultType',
    'SuccessfulDeployStackResult',
    'NeedRollbackFirstDeployStackResult',
    'ReplacementRequiresRollbackStackResult',
    'assert_is_successful',

    # Progress
    'DeployEvent',
    'ProgressCallback',
    'notify',
]
