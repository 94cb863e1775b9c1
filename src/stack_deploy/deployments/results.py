"""Outcomes of a single stack deployment attempt."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

from stack_deploy.utils.errors import InternalError


class DeployStackResultType(Enum):
    """Variant tag of a deployment attempt result."""
    DID_DEPLOY_STACK = "did-deploy-stack"
    FAILPAUSED_NEED_ROLLBACK_FIRST = "failpaused-need-rollback-first"
    REPLACEMENT_REQUIRES_ROLLBACK = "replacement-requires-rollback"


@dataclass(frozen=True)
class SuccessfulDeployStackResult:
    """The stack is in its desired state, or was left unchanged on purpose.

    Attributes:
        no_op: True if nothing was executed (skipped, empty change set, or create-only)
        outputs: Stack outputs after the attempt
        stack_arn: ARN of the stack, empty if the stack does not exist
    """
    no_op: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    stack_arn: str = ''
    type: DeployStackResultType = field(default=DeployStackResultType.DID_DEPLOY_STACK, init=False)

    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class NeedRollbackFirstDeployStackResult:
    """The stack is paused after a failed update and must be rolled back first.

    Attributes:
        reason: 'not-norollback' when the caller asked for rollback, 'replacement'
            when the pending change replaces a resource
        status: Stack status at the time of the decision
    """
    reason: str
    status: str
    type: DeployStackResultType = field(default=DeployStackResultType.FAILPAUSED_NEED_ROLLBACK_FIRST, init=False)

    def is_success(self) -> bool:
        return False


@dataclass(frozen=True)
class ReplacementRequiresRollbackStackResult:
    """The pending change replaces a resource but rollback was disabled."""
    type: DeployStackResultType = field(default=DeployStackResultType.REPLACEMENT_REQUIRES_ROLLBACK, init=False)

    def is_success(self) -> bool:
        return False


DeployStackResult = Union[
    SuccessfulDeployStackResult,
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
]


def assert_is_successful(result: Optional[DeployStackResult]) -> SuccessfulDeployStackResult:
    """Narrow a result to the successful variant.

    Raises:
        InternalError: For any other variant
    """
    if not isinstance(result, SuccessfulDeployStackResult):
        kind = result.type.value if result is not None else 'none'
        raise InternalError(f"Unexpected deployment result: {kind}")
    return result
