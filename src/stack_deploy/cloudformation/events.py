"""Stack and change-set event summaries used to explain failures."""

from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class EarlyValidationReporter:
    """Explains why a change set failed CloudFormation's early validation.

    Early validation runs while the change set is created, so the failed
    checks are reported as operation events of the change set rather than
    as stack events.
    """

    def __init__(self, cfn, environment_resources=None, min_bootstrap_version: int = 30):
        """Initialize the reporter.

        Args:
            cfn: CloudFormation client
            environment_resources: Source of the environment's bootstrap version
            min_bootstrap_version: Bootstrap version whose roles may call DescribeEvents
        """
        self._cfn = cfn
        self._environment_resources = environment_resources
        self.min_bootstrap_version = min_bootstrap_version

    def fetch_details(self, change_set_name: str, stack_name: str) -> str:
        """Build a human readable summary of the failed validations.

        Args:
            change_set_name: Name of the failed change set
            stack_name: Name of the stack the change set belongs to

        Returns:
            Summary message; never raises for lookup failures
        """
        try:
            events = self._failed_events(stack_name, change_set_name)
        except Exception as e:
            return (
                "The template cannot be deployed because of early validation errors, but retrieving more details "
                f"about those errors failed ({e}). Make sure you have permissions to call the DescribeEvents API, "
                "or re-bootstrap your environment with the latest version of the CLI "
                f"(need at least version {self.min_bootstrap_version}, "
                f"current version {self._current_version() or 'unknown'})."
            )

        message = f"ChangeSet '{change_set_name}' on stack '{stack_name}' failed early validation"
        if events:
            failures = '\n'.join(
                f"  - {event.get('ValidationStatusReason')} (at {event.get('ValidationPath')})"
                for event in events
            )
            message += f":\n{failures}\n"
        return message

    def _failed_events(self, stack_name: str, change_set_name: str) -> List[dict]:
        events = []
        kwargs = {
            'StackName': stack_name,
            'ChangeSetName': change_set_name,
            'Filters': {'FailedEvents': True},
        }
        while True:
            response = self._cfn.describe_events(**kwargs)
            events.extend(response.get('OperationEvents') or [])
            next_token = response.get('NextToken')
            if not next_token:
                return events
            kwargs['NextToken'] = next_token

    def _current_version(self) -> Optional[int]:
        if self._environment_resources is None:
            return None
        try:
            return self._environment_resources.bootstrap_version()
        except Exception as e:
            logger.debug(f"Could not look up bootstrap version: {e}")
            return None


def summarize_failed_events(cfn, stack_name: str, limit: int = 5) -> List[str]:
    """Most recent failed resource events of a stack, newest first.

    Args:
        cfn: CloudFormation client
        stack_name: Stack to inspect
        limit: Maximum number of events to return

    Returns:
        One line per failed event
    """
    response = cfn.describe_stack_events(StackName=stack_name)
    lines = []
    for event in response.get('StackEvents') or []:
        status = event.get('ResourceStatus', '')
        if not status.endswith('FAILED'):
            continue
        lines.append(
            f"{event.get('LogicalResourceId')} ({event.get('ResourceType')}): "
            f"{status} {event.get('ResourceStatusReason', '')}".rstrip()
        )
        if len(lines) >= limit:
            break
    return lines


def augment_with_failed_events(cfn, stack_name: str, message: str) -> str:
    """Append recent failed stack events to ``message``, if they can be read."""
    try:
        events = summarize_failed_events(cfn, stack_name)
    except (ClientError, BotoCoreError) as e:
        logger.debug(f"Could not read stack events of {stack_name}: {e}")
        return message
    if not events:
        return message
    return message + '\nRecent failures:\n' + '\n'.join(f"  - {line}" for line in events)
