"""Decides whether a stack needs deploying, and how."""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from stack_deploy.cloudformation.stack import CloudFormationStack
from stack_deploy.deployments.descriptor import DeployStackOptions
from stack_deploy.deployments.parameters import ParameterChanges
from stack_deploy.utils.digest import templates_equal


@dataclass(frozen=True)
class SkipDecision:
    """Result of the skip check; ``reason`` says why a deployment is needed."""
    skip: bool
    reason: str = ''


def _deploy(reason: str) -> SkipDecision:
    return SkipDecision(skip=False, reason=reason)


def tags_equal(current: Iterable[Dict[str, str]], desired: Iterable[Dict[str, str]]) -> bool:
    """Compare tag lists as unordered multisets of key/value pairs."""
    def as_pairs(tags):
        return Counter((tag['Key'], tag['Value']) for tag in tags)

    return as_pairs(current) == as_pairs(desired)


def notification_arns_equal(current: Iterable[str], desired: Optional[Iterable[str]]) -> bool:
    """None means the caller does not manage notification targets."""
    if desired is None:
        return True
    return set(current) == set(desired)


def termination_protection_matches(current: bool, desired: Optional[bool]) -> bool:
    if desired is None:
        return True
    return bool(current) == bool(desired)


def can_skip_deploy(
    options: DeployStackOptions,
    stack: CloudFormationStack,
    parameter_changes: ParameterChanges
) -> SkipDecision:
    """Decide whether the deployment can be skipped without any mutating call.

    Args:
        options: Desired state and run options
        stack: Current remote state
        parameter_changes: Result of ``ParameterValues.has_changes``

    Returns:
        SkipDecision with the first reason found to deploy
    """
    method = options.deployment_method
    if options.force_deployment:
        return _deploy('forced deployment')

    if method.method == 'change-set' and not method.execute:
        return _deploy('change set requested without execution')

    if not stack.exists:
        return _deploy('stack does not exist yet')

    if not templates_equal(stack.template(), options.stack.template):
        return _deploy('template has changed')

    if not tags_equal(stack.tags, options.effective_tags):
        return _deploy('tags have changed')

    if not notification_arns_equal(stack.notification_arns, options.notification_arns):
        return _deploy('notification arns have changed')

    if not termination_protection_matches(stack.termination_protection, options.stack.termination_protection):
        return _deploy('termination protection has been updated')

    if parameter_changes:
        if parameter_changes == 'ssm':
            return _deploy('some parameters come from SSM so we have to assume they may have changed')
        return _deploy('parameters have changed')

    if stack.stack_status.is_failure:
        return _deploy(f"stack is in a failure state ({stack.stack_status.name})")

    return SkipDecision(skip=True, reason='no changes')


def change_set_type(stack: CloudFormationStack) -> str:
    """CREATE for stacks that are not deployed, UPDATE otherwise.

    Stacks still in REVIEW_IN_PROGRESS reach this point as non-existent.
    """
    return 'UPDATE' if stack.exists else 'CREATE'


def merge_notification_arns(*sources: Optional[List[str]]) -> Optional[List[str]]:
    """Concatenate notification ARN lists; None if no source sets any."""
    if all(source is None for source in sources):
        return None
    merged: List[str] = []
    for source in sources:
        merged.extend(source or [])
    return merged
