"""Deployment of a single stack: skip check, change set, execution."""

from typing import Any, Callable, Dict, Optional

from botocore.exceptions import ClientError

from stack_deploy.cloudformation.change_set import (
    CAPABILITIES,
    ChangeTracker,
    change_set_has_no_changes,
    change_set_has_replacement,
    is_change_set_not_found,
)
from stack_deploy.cloudformation.events import EarlyValidationReporter, augment_with_failed_events
from stack_deploy.cloudformation.stack import (
    CloudFormationStack,
    delete_stack_and_wait,
    is_no_updates_error,
    wait_for_stack,
)
from stack_deploy.config.models import EngineSettings
from stack_deploy.deployments.decision import can_skip_deploy, change_set_type
from stack_deploy.deployments.descriptor import DeployStackOptions
from stack_deploy.deployments.environment import EnvironmentResources
from stack_deploy.deployments.parameters import ParameterValues, TemplateParameters
from stack_deploy.deployments.progress import DeployEvent, ProgressCallback, notify
from stack_deploy.deployments.results import (
    DeployStackResult,
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
    SuccessfulDeployStackResult,
)
from stack_deploy.utils.digest import (
    DEFAULT_CHANGE_SET_PREFIX,
    change_set_name,
    client_token,
    template_body,
    validate_sns_topic_arn,
)
from stack_deploy.utils.errors import (
    ChangeSetNotExecutableError,
    ChangeSetNotFoundError,
    ErrorContext,
    StackDeploymentError,
)
from stack_deploy.utils.logging import get_stack_logger
from stack_deploy.utils.retry import RetryStrategy


class StackDeployer:
    """Brings one stack to its desired state.

    One ``deploy`` call is one attempt. An attempt either succeeds (possibly
    as a no-op) or reports that the stack has to be rolled back before the
    change can be applied; performing that rollback is up to the caller.
    """

    def __init__(
        self,
        cfn,
        settings: Optional[EngineSettings] = None,
        environment_resources: Optional[EnvironmentResources] = None,
        progress_callback: Optional[ProgressCallback] = None,
        retry: Optional[RetryStrategy] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize the deployer.

        Args:
            cfn: CloudFormation client for the stack's environment
            settings: Poll intervals, timeouts and bootstrap contracts
            environment_resources: Bootstrap facts of the stack's environment
            progress_callback: Receives advisory progress events
            retry: Retry strategy for read-only calls
            sleep: Function used to wait between polls
        """
        self.cfn = cfn
        self.settings = settings or EngineSettings()
        self.environment_resources = environment_resources
        self.progress_callback = progress_callback
        self.retry = retry or RetryStrategy()
        self.sleep = sleep

    def deploy(self, options: DeployStackOptions) -> DeployStackResult:
        """Run one deployment attempt.

        Args:
            options: Desired stack and run options

        Returns:
            The attempt's outcome

        Raises:
            ConfigurationError: Before any mutating call, for invalid input
            ChangeSetCreationError: If CloudFormation could not create the change set
            StackDeploymentError: If the stack ended in a failed state
        """
        stack_name = options.stack.name
        logger = get_stack_logger(__name__, stack_name)

        if self.environment_resources is not None:
            self.environment_resources.validate_version(options.stack.required_bootstrap_version, stack_name)
        for arn in options.notification_arns or []:
            validate_sns_topic_arn(arn)

        stack = CloudFormationStack.lookup(self.cfn, stack_name, self.retry)
        in_review = stack.exists and stack.stack_status.is_review_in_progress
        if in_review:
            # Created by a change set that was never executed: nothing is deployed yet
            logger.debug('Stack is in REVIEW_IN_PROGRESS, treating it as not deployed')
            stack = CloudFormationStack(self.cfn, stack_name, None, self.retry)
        recreate = stack.exists and stack.stack_status.is_creation_failure

        if not options.stack.has_resources:
            return self._deploy_empty_stack(options, stack)

        template_parameters = TemplateParameters.from_template(options.stack.template)
        if options.use_previous_parameters and stack.exists and not recreate:
            parameters = template_parameters.update_existing(options.parameters, stack.parameters, stack_name)
        else:
            parameters = template_parameters.supply_all(options.parameters, stack_name)

        if recreate:
            logger.info(f"Found existing stack in {stack.stack_status.name} state, deleting it before redeploying")
            self._delete_stack(stack_name)
            stack = CloudFormationStack(self.cfn, stack_name, None, self.retry)

        method = options.deployment_method
        if method.execute_existing_change_set:
            return self._execute_existing_change_set(options, stack)

        decision = can_skip_deploy(options, stack, parameters.has_changes(stack.parameters))
        if decision.skip:
            logger.info('Skipping deployment, no changes')
            notify(self.progress_callback, stack_name, DeployEvent.SKIPPED, decision.reason)
            return SuccessfulDeployStackResult(no_op=True, outputs=stack.outputs, stack_arn=stack.stack_id)
        logger.debug(f"Deploying because {decision.reason}")

        if method.method == 'hotswap':
            result = self._try_hotswap(options, stack)
            if result is not None:
                return result
            logger.warning('Hotswap deployment not possible, falling back to a full CloudFormation deployment')

        if method.method == 'direct':
            return self._direct_deployment(options, stack, parameters)
        return self._change_set_deployment(options, stack, parameters, clean_up=stack.exists or in_review)

    def _try_hotswap(self, options: DeployStackOptions,
                     stack: CloudFormationStack) -> Optional[SuccessfulDeployStackResult]:
        if options.hotswap_deployer is None or not stack.exists:
            return None
        hotswapped = options.hotswap_deployer(options.stack, stack)
        if hotswapped is None:
            return None
        return SuccessfulDeployStackResult(no_op=False, outputs=stack.outputs, stack_arn=stack.stack_id)

    def _change_set_deployment(self, options: DeployStackOptions, stack: CloudFormationStack,
                               parameters: ParameterValues, clean_up: bool) -> DeployStackResult:
        stack_name = options.stack.name
        logger = get_stack_logger(__name__, stack_name)
        method = options.deployment_method
        tracker = self._tracker(stack_name, change_set_name(method.change_set_name))

        if clean_up:
            if method.change_set_name:
                tracker.delete_existing()
            else:
                tracker.delete_stale(DEFAULT_CHANGE_SET_PREFIX)

        description = tracker.create(
            change_set_type(stack),
            template_body(options.stack.template),
            parameters.api_parameters,
            options.effective_tags,
            notification_arns=options.notification_arns,
            role_arn=options.role_arn,
            import_existing_resources=method.import_existing_resources
        )
        notify(self.progress_callback, stack_name, DeployEvent.CHANGE_SET_CREATED, tracker.change_set_name)

        self._update_termination_protection(stack, options)

        if change_set_has_no_changes(description):
            logger.info('No changes are to be performed')
            if method.execute:
                tracker.delete()
            notify(self.progress_callback, stack_name, DeployEvent.NO_CHANGES, tracker.change_set_name)
            return SuccessfulDeployStackResult(no_op=True, outputs=stack.outputs, stack_arn=description['StackId'])

        if not method.execute:
            logger.info(f"Change set {tracker.change_set_name} created and waiting in review")
            return SuccessfulDeployStackResult(no_op=False, outputs=stack.outputs, stack_arn=description['StackId'])

        return self._execute_change_set(options, stack, tracker, description)

    def _execute_existing_change_set(self, options: DeployStackOptions,
                                     stack: CloudFormationStack) -> DeployStackResult:
        stack_name = options.stack.name
        method = options.deployment_method
        name = method.change_set_name
        tracker = self._tracker(stack_name, name)
        context = ErrorContext(stack_name=stack_name, change_set_name=name)

        try:
            description = tracker.describe()
        except ClientError as e:
            if not is_change_set_not_found(e):
                raise
            description = None

        if not description:
            raise ChangeSetNotFoundError(f"Change set {name} not found on stack {stack_name}", context=context)

        status = description.get('Status')
        if status != 'CREATE_COMPLETE':
            raise ChangeSetNotExecutableError(
                f"Change set {name} is in status {status} and cannot be executed",
                context=context
            )

        if not method.execute:
            return SuccessfulDeployStackResult(no_op=False, outputs=stack.outputs, stack_arn=description['StackId'])

        return self._execute_change_set(options, stack, tracker, description)

    def _execute_change_set(self, options: DeployStackOptions, stack: CloudFormationStack,
                            tracker: ChangeTracker, description: Dict[str, Any]) -> DeployStackResult:
        stack_name = options.stack.name
        status = stack.stack_status
        paused = status.is_paused_after_failed_update
        replacement = change_set_has_replacement(description)

        if paused and replacement:
            return NeedRollbackFirstDeployStackResult(reason='replacement', status=status.name)
        if paused and options.rollback:
            return NeedRollbackFirstDeployStackResult(reason='not-norollback', status=status.name)
        if not options.rollback and replacement:
            return ReplacementRequiresRollbackStackResult()

        notify(self.progress_callback, stack_name, DeployEvent.EXECUTION_STARTED, tracker.change_set_name)
        tracker.execute(disable_rollback=not options.rollback)
        final = self._wait_for_deploy(stack_name)
        notify(self.progress_callback, stack_name, DeployEvent.EXECUTION_FINISHED, final.stack_status.name)

        return SuccessfulDeployStackResult(no_op=False, outputs=final.outputs, stack_arn=description['StackId'])

    def _direct_deployment(self, options: DeployStackOptions, stack: CloudFormationStack,
                           parameters: ParameterValues) -> SuccessfulDeployStackResult:
        stack_name = options.stack.name
        request = {
            'StackName': stack_name,
            'TemplateBody': template_body(options.stack.template),
            'Parameters': parameters.api_parameters,
            'Capabilities': CAPABILITIES,
            'Tags': options.effective_tags,
        }
        if options.notification_arns is not None:
            request['NotificationARNs'] = options.notification_arns
        if options.role_arn:
            request['RoleARN'] = options.role_arn
        if not options.rollback:
            request['DisableRollback'] = True

        update = change_set_type(stack) == 'UPDATE'
        notify(self.progress_callback, stack_name, DeployEvent.EXECUTION_STARTED, 'update' if update else 'create')
        if update:
            self._update_termination_protection(stack, options)
            try:
                self.cfn.update_stack(ClientRequestToken=client_token('update'), **request)
            except ClientError as e:
                if is_no_updates_error(e):
                    notify(self.progress_callback, stack_name, DeployEvent.NO_CHANGES, '')
                    return SuccessfulDeployStackResult(no_op=True, outputs=stack.outputs, stack_arn=stack.stack_id)
                raise
        else:
            if options.stack.termination_protection:
                request['EnableTerminationProtection'] = True
            self.cfn.create_stack(ClientRequestToken=client_token('create'), **request)

        final = self._wait_for_deploy(stack_name)
        notify(self.progress_callback, stack_name, DeployEvent.EXECUTION_FINISHED, final.stack_status.name)
        return SuccessfulDeployStackResult(no_op=False, outputs=final.outputs, stack_arn=final.stack_id)

    def _deploy_empty_stack(self, options: DeployStackOptions,
                            stack: CloudFormationStack) -> SuccessfulDeployStackResult:
        stack_name = options.stack.name
        logger = get_stack_logger(__name__, stack_name)
        if not stack.exists:
            logger.info('Stack has no resources and does not exist, skipping')
            notify(self.progress_callback, stack_name, DeployEvent.SKIPPED, 'no resources')
            return SuccessfulDeployStackResult(no_op=True)

        logger.info('Stack has no resources, deleting existing stack')
        self._delete_stack(stack_name)
        notify(self.progress_callback, stack_name, DeployEvent.STACK_DELETED, '')
        return SuccessfulDeployStackResult(no_op=False)

    def _update_termination_protection(self, stack: CloudFormationStack, options: DeployStackOptions) -> None:
        desired = options.stack.termination_protection
        if desired is None or stack.termination_protection == desired:
            return

        get_stack_logger(__name__, options.stack.name).info(
            f"{'Enabling' if desired else 'Disabling'} termination protection"
        )
        self.cfn.update_termination_protection(
            StackName=options.stack.name,
            EnableTerminationProtection=desired
        )

    def _wait_for_deploy(self, stack_name: str) -> CloudFormationStack:
        context = ErrorContext(stack_name=stack_name, operation='wait_for_deploy')
        final = wait_for_stack(
            self.cfn,
            stack_name,
            self.settings.poll_interval_seconds,
            self.settings.stack_timeout_seconds,
            self.retry,
            self.sleep
        )
        if not final.exists:
            raise StackDeploymentError(f"The stack named {stack_name} was deleted during deployment", context=context)

        status = final.stack_status
        if status.is_creation_failure:
            message = (
                f"The stack named {stack_name} failed creation, it may need to be manually deleted "
                f"from the AWS console: {status}"
            )
        elif not status.is_deploy_success:
            message = f"The stack named {stack_name} failed to deploy: {status}"
        else:
            return final

        raise StackDeploymentError(
            augment_with_failed_events(self.cfn, stack_name, message),
            context=context
        )

    def _delete_stack(self, stack_name: str) -> None:
        delete_stack_and_wait(
            self.cfn,
            stack_name,
            self.settings.poll_interval_seconds,
            self.settings.stack_timeout_seconds,
            self.retry,
            self.sleep
        )

    def _tracker(self, stack_name: str, name: str) -> ChangeTracker:
        return ChangeTracker(
            self.cfn,
            stack_name,
            name,
            poll_interval=self.settings.poll_interval_seconds,
            timeout=self.settings.change_set_timeout_seconds,
            validation_reporter=EarlyValidationReporter(
                self.cfn,
                self.environment_resources,
                self.settings.early_validation_min_bootstrap_version
            ),
            retry=self.retry,
            sleep=self.sleep
        )

