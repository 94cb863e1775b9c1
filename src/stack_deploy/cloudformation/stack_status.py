"""Classification of CloudFormation stack statuses."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RollbackChoice(Enum):
    """What a caller has to do to bring a stack back to a stable state."""
    START_ROLLBACK = "start_rollback"
    CONTINUE_UPDATE_ROLLBACK = "continue_update_rollback"
    ROLLBACK_FAILED = "rollback_failed"
    NONE = "none"


@dataclass(frozen=True)
class StackStatus:
    """A stack status string plus the reason CloudFormation reported for it."""
    name: str
    reason: Optional[str] = None

    @classmethod
    def from_description(cls, description: dict) -> 'StackStatus':
        """Build from a ``DescribeStacks`` stack entry."""
        return cls(description['StackStatus'], description.get('StackStatusReason'))

    @property
    def is_creation_failure(self) -> bool:
        """The stack never finished its first create and must be deleted before retrying."""
        return self.name in ('ROLLBACK_COMPLETE', 'ROLLBACK_FAILED')

    @property
    def is_deleted(self) -> bool:
        return self.name.startswith('DELETE_')

    @property
    def is_failure(self) -> bool:
        return self.name.endswith('FAILED')

    @property
    def is_in_progress(self) -> bool:
        return self.name.endswith('_IN_PROGRESS') and not self.is_review_in_progress

    @property
    def is_review_in_progress(self) -> bool:
        """Created through a change set that was never executed."""
        return self.name == 'REVIEW_IN_PROGRESS'

    @property
    def is_not_found(self) -> bool:
        return self.name == 'NOT_FOUND'

    @property
    def is_deploy_success(self) -> bool:
        return self.name in ('CREATE_COMPLETE', 'UPDATE_COMPLETE', 'IMPORT_COMPLETE')

    @property
    def is_rollback_success(self) -> bool:
        return self.name in ('ROLLBACK_COMPLETE', 'UPDATE_ROLLBACK_COMPLETE')

    @property
    def rollback_choice(self) -> RollbackChoice:
        if self.name in ('CREATE_FAILED', 'UPDATE_FAILED'):
            return RollbackChoice.START_ROLLBACK
        if self.name == 'UPDATE_ROLLBACK_FAILED':
            return RollbackChoice.CONTINUE_UPDATE_ROLLBACK
        if self.name == 'ROLLBACK_FAILED':
            return RollbackChoice.ROLLBACK_FAILED
        return RollbackChoice.NONE

    @property
    def is_rollbackable(self) -> bool:
        return self.rollback_choice in (
            RollbackChoice.START_ROLLBACK,
            RollbackChoice.CONTINUE_UPDATE_ROLLBACK
        )

    @property
    def is_paused_after_failed_update(self) -> bool:
        """Left mid-update by a deployment that ran with rollback disabled."""
        return self.is_rollbackable

    def __str__(self) -> str:
        if self.reason:
            return f"{self.name} ({self.reason})"
        return self.name
