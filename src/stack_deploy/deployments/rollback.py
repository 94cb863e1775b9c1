"""Rolling back stacks that were left paused by a failed deployment."""

import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from stack_deploy.cloudformation.stack import CloudFormationStack, wait_for_stack
from stack_deploy.cloudformation.stack_status import RollbackChoice
from stack_deploy.config.models import EngineSettings
from stack_deploy.utils.errors import ErrorContext, RollbackError
from stack_deploy.utils.logging import get_stack_logger
from stack_deploy.utils.retry import RetryStrategy


@dataclass
class RollbackResult:
    """Result of a rollback request.

    Attributes:
        not_in_rollbackable_state: The stack needed no rollback or cannot be rolled back
        orphaned_resources: Logical ids skipped while continuing a rollback
        final_status: Stack status after the rollback settled
    """
    not_in_rollbackable_state: bool = False
    orphaned_resources: List[str] = field(default_factory=list)
    final_status: Optional[str] = None

    def is_success(self) -> bool:
        return not self.not_in_rollbackable_state


class StackRollbacker:
    """Starts or continues the rollback of a paused stack and waits for it."""

    def __init__(
        self,
        cfn,
        settings: Optional[EngineSettings] = None,
        retry: Optional[RetryStrategy] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.cfn = cfn
        self.settings = settings or EngineSettings()
        self.retry = retry or RetryStrategy()
        self.sleep = sleep

    def rollback(self, stack_name: str, role_arn: Optional[str] = None,
                 orphan_failed_resources: bool = False) -> RollbackResult:
        """Roll the stack back to its last stable state.

        Args:
            stack_name: Stack to roll back
            role_arn: Role CloudFormation assumes during the rollback
            orphan_failed_resources: Skip resources whose update failed when continuing a rollback

        Returns:
            RollbackResult

        Raises:
            RollbackError: If the rollback did not reach a rollback-complete status
        """
        logger = get_stack_logger(__name__, stack_name)
        stack = CloudFormationStack.lookup(self.cfn, stack_name, self.retry)
        status = stack.stack_status
        choice = status.rollback_choice
        orphaned: List[str] = []

        if choice == RollbackChoice.START_ROLLBACK:
            logger.info('Initiating rollback')
            request = {'StackName': stack_name, 'ClientRequestToken': str(uuid.uuid4())}
            if role_arn:
                request['RoleARN'] = role_arn
            self.cfn.rollback_stack(**request)

        elif choice == RollbackChoice.CONTINUE_UPDATE_ROLLBACK:
            if orphan_failed_resources:
                orphaned = self._failed_resources(stack_name)
            suffix = f" (orphaning: {', '.join(orphaned)})" if orphaned else ''
            logger.warning(f"Continuing rollback{suffix}")
            request = {
                'StackName': stack_name,
                'ClientRequestToken': str(uuid.uuid4()),
                'ResourcesToSkip': orphaned,
            }
            if role_arn:
                request['RoleARN'] = role_arn
            self.cfn.continue_update_rollback(**request)

        elif choice == RollbackChoice.ROLLBACK_FAILED:
            logger.warning(
                'Stack failed creation and rollback. This state cannot be rolled back; '
                'deploy again to recreate the stack.'
            )
            return RollbackResult(not_in_rollbackable_state=True, final_status=status.name)

        else:
            logger.warning(f"Stack does not need a rollback: {status}")
            return RollbackResult(not_in_rollbackable_state=True, final_status=status.name)

        final = wait_for_stack(
            self.cfn,
            stack_name,
            self.settings.poll_interval_seconds,
            self.settings.stack_timeout_seconds,
            self.retry,
            self.sleep
        )
        context = ErrorContext(stack_name=stack_name, operation='rollback')
        if not final.exists:
            raise RollbackError('The stack disappeared while it was being rolled back', context=context)
        if not final.stack_status.is_rollback_success:
            raise RollbackError(
                f"Rollback of stack {stack_name} ended in {final.stack_status}",
                context=context,
                suggestions=['Fix the problem and retry, or orphan the failed resources']
            )

        logger.info(f"Rollback finished: {final.stack_status.name}")
        return RollbackResult(orphaned_resources=orphaned, final_status=final.stack_status.name)

    def _failed_resources(self, stack_name: str) -> List[str]:
        """Resources that failed to update since the stack's rollback began."""
        failed = []
        paginator = self.cfn.get_paginator('describe_stack_events')
        for page in paginator.paginate(StackName=stack_name):
            for event in page.get('StackEvents') or []:
                logical_id = event.get('LogicalResourceId')
                status = event.get('ResourceStatus', '')
                if event.get('ResourceType') == 'AWS::CloudFormation::Stack' and logical_id == stack_name:
                    if status == 'UPDATE_ROLLBACK_IN_PROGRESS':
                        return failed
                    continue
                if status == 'UPDATE_FAILED' and logical_id not in failed:
                    failed.append(logical_id)
        return failed
