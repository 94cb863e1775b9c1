"""Advisory progress notifications."""

from enum import Enum
from typing import Callable, Optional

from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class DeployEvent(Enum):
    """Points in a run at which progress is reported."""
    SKIPPED = "skipped"
    CHANGE_SET_CREATED = "change_set_created"
    NO_CHANGES = "no_changes"
    EXECUTION_STARTED = "execution_started"
    EXECUTION_FINISHED = "execution_finished"
    STACK_DELETED = "stack_deleted"
    ROLLBACK_STARTED = "rollback_started"
    ROLLBACK_FINISHED = "rollback_finished"
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"


# Callback for progress updates: (subject, event, message)
ProgressCallback = Callable[[str, DeployEvent, str], None]


def notify(callback: Optional[ProgressCallback], subject: str, event: DeployEvent, message: str = '') -> None:
    """Deliver a progress event; a failing callback never affects the deployment."""
    if callback is None:
        return
    try:
        callback(subject, event, message)
    except Exception as e:
        logger.warning(f"Progress callback failed for {subject} ({event.value}): {e}")
