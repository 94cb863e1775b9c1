"""Snapshot of a deployed CloudFormation stack and stack-level waiters."""

from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from stack_deploy.cloudformation.stack_status import StackStatus
from stack_deploy.utils.digest import parse_template_body
from stack_deploy.utils.errors import ErrorContext, StackDeploymentError, error_code, error_message
from stack_deploy.utils.logging import get_logger
from stack_deploy.utils.retry import RetryStrategy, poll_until

logger = get_logger(__name__)

NO_UPDATES_MESSAGE = 'No updates are to be performed.'


def is_stack_not_found(error: Exception, stack_name: Optional[str] = None) -> bool:
    """``DescribeStacks`` reports a missing stack as a ValidationError."""
    if error_code(error) != 'ValidationError':
        return False
    message = error_message(error)
    if stack_name is not None:
        return message == f"Stack with id {stack_name} does not exist"
    return message.startswith('Stack with id ') and message.endswith(' does not exist')


def is_no_updates_error(error: Exception) -> bool:
    """``UpdateStack`` reports an unchanged stack as a ValidationError."""
    return error_code(error) == 'ValidationError' and error_message(error) == NO_UPDATES_MESSAGE


class CloudFormationStack:
    """Read-only view of a stack as CloudFormation currently reports it.

    A stack that does not exist is represented by an instance whose
    ``exists`` is False, so callers never need to special-case ``None``.
    """

    def __init__(self, cfn, stack_name: str, description: Optional[Dict[str, Any]] = None,
                 retry: Optional[RetryStrategy] = None):
        self._cfn = cfn
        self.stack_name = stack_name
        self._description = description
        self._retry = retry or RetryStrategy()
        self._template: Optional[Any] = None

    @classmethod
    def lookup(cls, cfn, stack_name: str, retry: Optional[RetryStrategy] = None) -> 'CloudFormationStack':
        """Describe ``stack_name``; a missing stack yields a non-existent snapshot.

        Args:
            cfn: CloudFormation client
            stack_name: Name or ID of the stack
            retry: Retry strategy for the describe call

        Returns:
            Stack snapshot
        """
        retry = retry or RetryStrategy()
        try:
            response = retry.execute_with_retry(cfn.describe_stacks, StackName=stack_name)
        except ClientError as e:
            if is_stack_not_found(e, stack_name):
                return cls(cfn, stack_name, None, retry)
            raise

        stacks = response.get('Stacks') or []
        return cls(cfn, stack_name, stacks[0] if stacks else None, retry)

    @property
    def exists(self) -> bool:
        return self._description is not None

    @property
    def stack_id(self) -> str:
        self._assert_exists()
        return self._description['StackId']

    @property
    def stack_status(self) -> StackStatus:
        if not self.exists:
            return StackStatus('NOT_FOUND', 'Stack not found during lookup')
        return StackStatus.from_description(self._description)

    @property
    def tags(self) -> List[Dict[str, str]]:
        return list((self._description or {}).get('Tags') or [])

    @property
    def notification_arns(self) -> List[str]:
        return list((self._description or {}).get('NotificationARNs') or [])

    @property
    def termination_protection(self) -> bool:
        return bool((self._description or {}).get('EnableTerminationProtection', False))

    @property
    def outputs(self) -> Dict[str, str]:
        if not self.exists:
            return {}
        return {
            output['OutputKey']: output['OutputValue']
            for output in self._description.get('Outputs') or []
        }

    @property
    def parameters(self) -> Dict[str, str]:
        """Currently deployed parameter values, resolved where CloudFormation resolved them."""
        return {
            parameter['ParameterKey']: parameter.get('ResolvedValue', parameter.get('ParameterValue'))
            for parameter in (self._description or {}).get('Parameters') or []
        }

    def template(self) -> Any:
        """The originally submitted template, fetched once."""
        if not self.exists:
            return {}
        if self._template is None:
            response = self._retry.execute_with_retry(
                self._cfn.get_template,
                StackName=self.stack_name,
                TemplateStage='Original'
            )
            self._template = parse_template_body(response.get('TemplateBody'))
        return self._template

    def _assert_exists(self):
        if not self.exists:
            raise StackDeploymentError(
                f"No stack named '{self.stack_name}'",
                context=ErrorContext(stack_name=self.stack_name)
            )


def wait_for_stack(cfn, stack_name: str, interval: float, timeout: float,
                   retry: Optional[RetryStrategy] = None,
                   sleep: Optional[Callable[[float], None]] = None) -> CloudFormationStack:
    """Poll until the stack leaves every ``*_IN_PROGRESS`` status.

    Returns:
        The settled stack snapshot, which does not exist if the stack was deleted
    """
    kwargs = {'sleep': sleep} if sleep else {}

    def settled(stack: CloudFormationStack) -> bool:
        if not stack.exists:
            return True
        status = stack.stack_status
        if status.is_in_progress:
            logger.debug(f"Stack {stack_name} is still {status.name}")
            return False
        return True

    stack = poll_until(
        lambda: CloudFormationStack.lookup(cfn, stack_name, retry),
        settled,
        interval=interval,
        timeout=timeout,
        description=f"stack {stack_name} to stabilize",
        context=ErrorContext(stack_name=stack_name, operation='wait_for_stack'),
        **kwargs
    )
    if stack.exists and stack.stack_status.is_deleted:
        return CloudFormationStack(cfn, stack_name, None, retry)
    return stack


def delete_stack_and_wait(cfn, stack_name: str, interval: float, timeout: float,
                          retry: Optional[RetryStrategy] = None,
                          sleep: Optional[Callable[[float], None]] = None) -> None:
    """Delete a stack and wait until it is gone.

    Raises:
        StackDeploymentError: If the stack could not be deleted
    """
    logger.info(f"Deleting stack {stack_name}")
    cfn.delete_stack(StackName=stack_name)
    stack = wait_for_stack(cfn, stack_name, interval, timeout, retry, sleep)
    if stack.exists:
        raise StackDeploymentError(
            f"Failed deleting stack {stack_name} that had previously failed creation "
            f"(current state: {stack.stack_status})",
            context=ErrorContext(stack_name=stack_name, operation='delete_stack')
        )
