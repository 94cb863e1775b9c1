"""Thin wrappers around the CloudFormation API."""

from stack_deploy.cloudformation.stack_status import StackStatus, RollbackChoice
from stack_deploy.cloudformation.stack import (
    CloudFormationStack,
    is_stack_not_found,
    is_no_updates_error,
    wait_for_stack,
    delete_stack_and_wait,
)
from stack_deploy.cloudformation.change_set import (
    ChangeTracker,
    change_set_has_no_changes,
    change_set_has_replacement,
)
from stack_deploy.cloudformation.events import (
    EarlyValidationReporter,
    augment_with_failed_events,
    summarize_failed_events,
)

__all__ = [
    'StackStatus',
    'RollbackChoice',
    'CloudFormationStack',
    'is_stack_not_found',
    'is_no_updates_error',
    'wait_for_stack',
    'delete_stack_and_wait',
    'ChangeTracker',
    'change_set_has_no_changes',
    'change_set_has_replacement',
    'EarlyValidationReporter',
    'summarize_failed_events',
    'augment_with_failed_events',
]
