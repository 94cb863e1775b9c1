"""Create, inspect, execute and clean up the change set of one stack attempt."""

from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from stack_deploy.cloudformation.events import augment_with_failed_events
from stack_deploy.utils.digest import client_token
from stack_deploy.utils.errors import (
    ChangeSetCreationError,
    ErrorContext,
    error_code,
)
from stack_deploy.utils.logging import get_stack_logger
from stack_deploy.utils.retry import RetryStrategy, poll_until

CAPABILITIES = ['CAPABILITY_IAM', 'CAPABILITY_NAMED_IAM', 'CAPABILITY_AUTO_EXPAND']

NO_CHANGE_REASON_PREFIXES = (
    "The submitted information didn't contain changes.",
    # Reported instead of the above when the template uses a Transform
    'No updates are to be performed.',
)

EARLY_VALIDATION_MARKER = 'AWS::EarlyValidation'

PENDING_STATUSES = ('CREATE_PENDING', 'CREATE_IN_PROGRESS')

EXECUTING_STATUSES = ('EXECUTE_IN_PROGRESS', 'EXECUTE_COMPLETE')


def change_set_has_no_changes(description: Dict[str, Any]) -> bool:
    """A FAILED change set whose reason says there was nothing to change."""
    reason = description.get('StatusReason') or ''
    return description.get('Status') == 'FAILED' and reason.startswith(NO_CHANGE_REASON_PREFIXES)


def change_set_has_replacement(description: Dict[str, Any]) -> bool:
    """Whether any resource change in the set destroys and recreates a resource."""
    return any(
        (change.get('ResourceChange') or {}).get('Replacement') == 'True'
        for change in description.get('Changes') or []
    )


def is_change_set_not_found(error: Exception) -> bool:
    return error_code(error) in ('ChangeSetNotFound', 'ChangeSetNotFoundException')


class ChangeTracker:
    """Drives the change-set protocol for one stack during one attempt."""

    def __init__(
        self,
        cfn,
        stack_name: str,
        change_set_name: str,
        poll_interval: float = 5,
        timeout: float = 1800,
        validation_reporter=None,
        retry: Optional[RetryStrategy] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize the tracker.

        Args:
            cfn: CloudFormation client
            stack_name: Stack the change set belongs to
            change_set_name: Name of the change set
            poll_interval: Seconds between DescribeChangeSet calls
            timeout: Seconds to wait for the change set to finish creating
            validation_reporter: Explains early validation failures
            retry: Retry strategy for read-only calls
            sleep: Function used to wait between polls
        """
        self._cfn = cfn
        self.stack_name = stack_name
        self.change_set_name = change_set_name
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._validation_reporter = validation_reporter
        self._retry = retry or RetryStrategy()
        self._sleep = sleep
        self.logger = get_stack_logger(__name__, stack_name)

    @property
    def _context(self) -> ErrorContext:
        return ErrorContext(stack_name=self.stack_name, change_set_name=self.change_set_name)

    def delete_existing(self) -> None:
        """Remove a change set of the same name left behind by an earlier attempt."""
        try:
            self._cfn.delete_change_set(StackName=self.stack_name, ChangeSetName=self.change_set_name)
            self.logger.debug(f"Removed existing change set {self.change_set_name}")
        except ClientError as e:
            if not is_change_set_not_found(e):
                raise

    def delete_stale(self, prefix: str) -> List[str]:
        """Remove unexecuted change sets whose name starts with ``prefix``.

        Args:
            prefix: Name prefix of change sets this engine generated

        Returns:
            Names of the deleted change sets
        """
        deleted = []
        paginator = self._cfn.get_paginator('list_change_sets')
        for page in paginator.paginate(StackName=self.stack_name):
            for summary in page.get('Summaries') or []:
                name = summary.get('ChangeSetName') or ''
                if not name.startswith(prefix) or summary.get('ExecutionStatus') in EXECUTING_STATUSES:
                    continue
                try:
                    self._cfn.delete_change_set(StackName=self.stack_name, ChangeSetName=name)
                except ClientError as e:
                    if not is_change_set_not_found(e):
                        raise
                    continue
                deleted.append(name)

        if deleted:
            self.logger.debug(f"Removed stale change sets: {', '.join(deleted)}")
        return deleted

    def create(
        self,
        change_set_type: str,
        template_body: str,
        parameters: List[Dict[str, Any]],
        tags: List[Dict[str, str]],
        notification_arns: Optional[List[str]] = None,
        role_arn: Optional[str] = None,
        import_existing_resources: bool = False
    ) -> Dict[str, Any]:
        """Create the change set and wait until CloudFormation has computed it.

        Args:
            change_set_type: 'CREATE' or 'UPDATE'
            template_body: Serialized template
            parameters: API-ready parameter list
            tags: Stack tags
            notification_arns: SNS topics, None to leave them unmanaged
            role_arn: Role CloudFormation assumes for the deployment
            import_existing_resources: Adopt resources with matching physical names

        Returns:
            The change set description, possibly a no-changes FAILED one

        Raises:
            ChangeSetCreationError: If creation failed for any other reason
        """
        self.logger.info(f"Creating {change_set_type} change set {self.change_set_name}")
        request = {
            'StackName': self.stack_name,
            'ChangeSetName': self.change_set_name,
            'ChangeSetType': change_set_type,
            'ClientToken': client_token('create'),
            'Capabilities': CAPABILITIES,
            'Parameters': parameters,
            'Tags': tags,
            'TemplateBody': template_body,
            'ImportExistingResources': import_existing_resources,
        }
        if notification_arns is not None:
            request['NotificationARNs'] = notification_arns
        if role_arn:
            request['RoleARN'] = role_arn

        self._cfn.create_change_set(**request)
        return self.wait_until_created()

    def describe(self, fetch_all_changes: bool = True) -> Dict[str, Any]:
        """Describe the change set, following pagination of its changes."""
        description = self._retry.execute_with_retry(
            self._cfn.describe_change_set,
            StackName=self.stack_name,
            ChangeSetName=self.change_set_name
        )
        next_token = description.get('NextToken')
        while fetch_all_changes and next_token:
            page = self._retry.execute_with_retry(
                self._cfn.describe_change_set,
                StackName=self.stack_name,
                ChangeSetName=self.change_set_name,
                NextToken=next_token
            )
            description.setdefault('Changes', []).extend(page.get('Changes') or [])
            next_token = page.get('NextToken')
        return description

    def wait_until_created(self) -> Dict[str, Any]:
        """Poll until the change set leaves its pending statuses and classify the result."""
        kwargs = {'sleep': self._sleep} if self._sleep else {}
        description = poll_until(
            self.describe,
            lambda d: d.get('Status') not in PENDING_STATUSES,
            interval=self.poll_interval,
            timeout=self.timeout,
            description=f"change set {self.change_set_name} on {self.stack_name}",
            context=self._context,
            **kwargs
        )

        if description.get('Status') == 'CREATE_COMPLETE' or change_set_has_no_changes(description):
            return description

        reason = description.get('StatusReason') or 'no reason provided'
        if EARLY_VALIDATION_MARKER in reason and self._validation_reporter is not None:
            raise ChangeSetCreationError(
                self._validation_reporter.fetch_details(self.change_set_name, self.stack_name),
                context=self._context
            )

        message = (
            f"Failed to create ChangeSet {self.change_set_name} on {self.stack_name}: "
            f"{description.get('Status') or 'NO_STATUS'}, {reason}"
        )
        raise ChangeSetCreationError(
            augment_with_failed_events(self._cfn, self.stack_name, message),
            context=self._context
        )

    def execute(self, disable_rollback: bool = False) -> None:
        request = {
            'StackName': self.stack_name,
            'ChangeSetName': self.change_set_name,
            'ClientRequestToken': client_token('exec'),
        }
        if disable_rollback:
            request['DisableRollback'] = True

        self.logger.info(f"Executing change set {self.change_set_name}")
        self._cfn.execute_change_set(**request)

    def delete(self) -> None:
        self.logger.debug(f"Deleting change set {self.change_set_name}")
        self._cfn.delete_change_set(StackName=self.stack_name, ChangeSetName=self.change_set_name)

