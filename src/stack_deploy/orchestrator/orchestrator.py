"""Runs a deployment: builds the work graph, executes it, aggregates results."""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from stack_deploy.assets.handler import AssetHandler, S3FileAssetHandler
from stack_deploy.assets.manifest import AssetManifest
from stack_deploy.config.models import DeployOptions, EngineSettings
from stack_deploy.config.parser import Config
from stack_deploy.deployments.decision import merge_notification_arns
from stack_deploy.deployments.deploy_stack import StackDeployer
from stack_deploy.deployments.descriptor import (
    DeployStackOptions,
    HotswapDeployer,
    StackDescriptor,
    tags_from_mapping,
)
from stack_deploy.deployments.environment import EnvironmentResources
from stack_deploy.deployments.progress import DeployEvent, ProgressCallback, notify
from stack_deploy.deployments.results import DeployStackResultType, SuccessfulDeployStackResult
from stack_deploy.deployments.rollback import StackRollbacker
from stack_deploy.orchestrator.builder import WorkGraphBuilder
from stack_deploy.orchestrator.work_graph import (
    AssetBuildNode,
    AssetPublishNode,
    NodeState,
    StackNode,
    WorkGraphActions,
    WorkGraphResult,
)
from stack_deploy.utils.aws_client import AWSClientManager, AWSEnvironment
from stack_deploy.utils.errors import (
    ConfigurationError,
    DeploymentError,
    ErrorContext,
    InternalError,
    StackDeploymentError,
    error_handler,
)
from stack_deploy.utils.logging import get_logger, get_stack_logger

logger = get_logger(__name__)

# Asked before rolling a stack back so the deployment can be retried
ConfirmCallback = Callable[[str], bool]


def always_confirm(question: str) -> bool:
    return True


@dataclass
class StackRunResult:
    """Outcome of one stack in a run.

    Attributes:
        stack_name: Stack name
        state: Final state of the stack's work graph node
        outputs: Stack outputs, empty unless the stack deployed or was skipped
        stack_arn: Stack ARN, empty if unknown
        no_op: Nothing was executed for this stack
        error: Normalized failure, if the stack failed
    """
    stack_name: str
    state: NodeState = NodeState.PENDING
    outputs: Dict[str, str] = field(default_factory=dict)
    stack_arn: str = ''
    no_op: bool = False
    error: Optional[DeploymentError] = None

    def is_success(self) -> bool:
        return self.state == NodeState.COMPLETED


@dataclass
class DeploymentRunResult:
    """Aggregated result of a run, one entry per selected stack in input order."""
    stacks: List[StackRunResult] = field(default_factory=list)
    graph: Optional[WorkGraphResult] = None
    first_error: Optional[DeploymentError] = None

    def is_success(self) -> bool:
        return self.first_error is None and all(stack.is_success() for stack in self.stacks)

    @property
    def outputs(self) -> Dict[str, Dict[str, str]]:
        return {stack.stack_name: dict(stack.outputs) for stack in self.stacks if stack.is_success()}


class Orchestrator:
    """Coordinates the work graph, the node executors and per-stack retries."""

    # A stack attempt either succeeds or needs one rollback before succeeding
    MAX_ATTEMPTS = 2

    def __init__(
        self,
        client_manager: AWSClientManager,
        options: Optional[DeployOptions] = None,
        settings: Optional[EngineSettings] = None,
        asset_handler: Optional[AssetHandler] = None,
        confirm: Optional[ConfirmCallback] = None,
        progress_callback: Optional[ProgressCallback] = None,
        hotswap_deployer: Optional[HotswapDeployer] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize the orchestrator.

        Args:
            client_manager: Source of boto3 clients per environment
            options: Run options
            settings: Poll intervals, timeouts and bootstrap contracts
            asset_handler: Builds and publishes assets, S3 file assets by default
            confirm: Asked before a rollback-then-retry; defaults to yes
            progress_callback: Receives advisory progress events
            hotswap_deployer: Implementation of the hotswap method
            sleep: Function used to wait between polls
        """
        self.client_manager = client_manager
        self.options = options or DeployOptions()
        self.settings = settings or EngineSettings()
        self.asset_handler = asset_handler or S3FileAssetHandler(client_manager)
        self.confirm = confirm or always_confirm
        self.progress_callback = progress_callback
        self.hotswap_deployer = hotswap_deployer
        self.sleep = sleep

        self._lock = threading.Lock()
        self._environment_resources: Dict[str, EnvironmentResources] = {}
        self._results: Dict[str, SuccessfulDeployStackResult] = {}

    def deploy(self, stacks: List[StackDescriptor]) -> DeploymentRunResult:
        """Deploy the stacks and their assets.

        Args:
            stacks: Selected stacks in the order results are reported

        Returns:
            DeploymentRunResult

        Raises:
            DependencyError: If the stacks and assets form a cycle
        """
        self._results = {}

        graph = WorkGraphBuilder(prebuild_assets=self.options.prebuild_assets).build(stacks)
        if not self.options.force_asset_publishing:
            graph.remove_unnecessary_assets(lambda node: self.asset_handler.is_published(node.asset))

        actions = WorkGraphActions(
            deploy_stack=self._deploy_stack_node,
            build_asset=self._build_asset_node,
            publish_asset=self._publish_asset_node
        )
        graph_result = graph.do_parallel(self.options.concurrency, actions, self.progress_callback)

        result = DeploymentRunResult(graph=graph_result)
        if graph_result.first_error is not None:
            result.first_error = error_handler.handle_exception(graph_result.first_error)

        for stack in stacks:
            result.stacks.append(self._stack_result(stack.name, graph_result))

        if self.options.outputs_file:
            write_outputs_file(self.options.outputs_file, result.outputs)

        succeeded = sum(1 for stack in result.stacks if stack.is_success())
        logger.info(f"Deployment finished in {graph_result.duration:.1f}s: "
                    f"{succeeded}/{len(result.stacks)} stack(s) succeeded")
        return result

    def deploy_stack(self, stack: StackDescriptor) -> SuccessfulDeployStackResult:
        """Deploy one stack, rolling it back and retrying once if needed.

        Raises:
            ConfigurationError: If the stack targets another account than the credentials
            InternalError: If the attempt does not stabilize
            StackDeploymentError: If the user refuses a required rollback
        """
        stack_logger = get_stack_logger(__name__, stack.name)
        environment = stack.environment
        context = ErrorContext(stack_name=stack.name, operation='deploy')
        self._check_account(environment, context)

        cfn = self.client_manager.get_client('cloudformation', region=environment.region)
        deployer = StackDeployer(
            cfn,
            settings=self.settings,
            environment_resources=self.environment_resources(environment),
            progress_callback=self.progress_callback,
            sleep=self.sleep
        )

        rollback = self.options.rollback
        attempts = 0
        while True:
            attempts += 1
            if attempts > self.MAX_ATTEMPTS:
                raise InternalError(
                    f"Deployment of stack {stack.name} did not stabilize in {self.MAX_ATTEMPTS} attempts",
                    context=context
                )

            result = deployer.deploy(self._stack_options(stack, rollback))

            if result.type == DeployStackResultType.DID_DEPLOY_STACK:
                return result

            if result.type == DeployStackResultType.FAILPAUSED_NEED_ROLLBACK_FIRST:
                if result.reason == 'replacement':
                    motivation = 'Stack is in a paused fail state and change includes a replacement which cannot be deployed with rollback disabled'
                else:
                    motivation = f"Stack is in a paused fail state ({result.status}) and rollback is enabled"
                if not self.confirm(f"{motivation}. Roll back first and then proceed with deployment?"):
                    raise StackDeploymentError('Aborted by user', context=context)

                stack_logger.info('Rolling back before retrying the deployment')
                notify(self.progress_callback, stack.name, DeployEvent.ROLLBACK_STARTED, motivation)
                StackRollbacker(cfn, settings=self.settings, sleep=self.sleep).rollback(
                    stack.name,
                    role_arn=self.options.role_arn,
                    orphan_failed_resources=self.options.orphan_failed_resources_during_rollback
                )
                notify(self.progress_callback, stack.name, DeployEvent.ROLLBACK_FINISHED)
                rollback = True

            elif result.type == DeployStackResultType.REPLACEMENT_REQUIRES_ROLLBACK:
                motivation = 'Change includes a replacement which cannot be deployed with rollback disabled'
                if not self.confirm(f"{motivation}. Perform a regular deployment?"):
                    raise StackDeploymentError('Aborted by user', context=context)
                stack_logger.info('Retrying the deployment with rollback enabled')
                rollback = True

            else:
                raise InternalError(f"Unexpected deployment result: {result.type}", context=context)

    def _check_account(self, environment: AWSEnvironment, context: ErrorContext) -> None:
        account = self.client_manager.get_account_id()
        if environment.account != account:
            raise ConfigurationError(
                f"Stack {context.stack_name} targets account {environment.account}, "
                f"but the current credentials belong to account {account}",
                context=context,
                suggestions=[f"Use a profile with credentials for account {environment.account}"]
            )

    def environment_resources(self, environment: AWSEnvironment) -> EnvironmentResources:
        """Bootstrap facts of an environment, shared by all stacks in it."""
        with self._lock:
            resources = self._environment_resources.get(environment.name)
            if resources is None:
                resources = EnvironmentResources(
                    environment,
                    self.client_manager.get_client('ssm', region=environment.region),
                    qualifier=self.settings.bootstrap_qualifier
                )
                self._environment_resources[environment.name] = resources
            return resources

    def _stack_options(self, stack: StackDescriptor, rollback: bool) -> DeployStackOptions:
        parameters: Dict[str, Optional[str]] = dict(stack.parameters)
        parameters.update(self.options.parameters_for(stack.name))
        return DeployStackOptions(
            stack=stack,
            parameters=parameters,
            tags=tags_from_mapping(self.options.tags) if self.options.tags else None,
            notification_arns=merge_notification_arns(self.options.notification_arns, stack.notification_arns),
            role_arn=self.options.role_arn,
            use_previous_parameters=self.options.keep_existing_parameters,
            rollback=rollback,
            force_deployment=self.options.force_deployment,
            deployment_method=self.options.deployment_method,
            hotswap_deployer=self.hotswap_deployer
        )

    def _deploy_stack_node(self, node: StackNode) -> None:
        result = self.deploy_stack(node.stack)
        with self._lock:
            self._results[node.stack.name] = result

    def _build_asset_node(self, node: AssetBuildNode) -> None:
        self.asset_handler.build(node.asset)

    def _publish_asset_node(self, node: AssetPublishNode) -> None:
        self.asset_handler.publish(node.asset)

    def _stack_result(self, stack_name: str, graph_result: WorkGraphResult) -> StackRunResult:
        stack_result = StackRunResult(
            stack_name=stack_name,
            state=graph_result.states.get(stack_name, NodeState.PENDING)
        )
        deployed = self._results.get(stack_name)
        if deployed is not None:
            stack_result.outputs = dict(deployed.outputs)
            stack_result.stack_arn = deployed.stack_arn
            stack_result.no_op = deployed.no_op
        error = graph_result.errors.get(stack_name)
        if error is not None:
            stack_result.error = error_handler.handle_exception(error, ErrorContext(stack_name=stack_name))
        return stack_result


def write_outputs_file(path: str, outputs: Dict[str, Dict[str, str]]) -> bool:
    """Write stack outputs as JSON. Failures are logged, never raised.

    Returns:
        True if the file was written
    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(outputs, indent=2, sort_keys=True))
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write outputs to {target}: {e}")
        return False
    logger.info(f"Stack outputs written to {target}")
    return True


def load_stacks(config: Config, client_manager: AWSClientManager,
                names: Optional[List[str]] = None) -> List[StackDescriptor]:
    """Turn configured stacks into descriptors with resolved environments.

    Args:
        config: Loaded configuration
        client_manager: Used to fill in unspecified accounts and regions
        names: Optional stack names to select

    Returns:
        Descriptors in configuration order
    """
    descriptors = []
    for stack in config.get_stacks(names):
        environment = client_manager.resolve_environment(stack.environment.account, stack.environment.region)
        descriptors.append(StackDescriptor(
            name=stack.name,
            template=config.load_template(stack),
            environment=environment,
            parameters=dict(stack.parameters),
            tags=tags_from_mapping(stack.tags),
            notification_arns=stack.notification_arns,
            termination_protection=stack.termination_protection,
            dependencies=list(stack.depends_on),
            assets=AssetManifest.from_config(
                stack.name, stack.assets, config.config_path.parent, environment.region
            ),
            required_bootstrap_version=stack.required_bootstrap_version
        ))
    return descriptors
