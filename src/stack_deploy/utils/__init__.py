"""Utility modules for logging, AWS client management, errors and digests."""

from stack_deploy.utils.aws_client import AWSClientManager, AWSEnvironment, AssumeRoleConfig
from stack_deploy.utils.retry import RetryStrategy, poll_until
from stack_deploy.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    DeploymentError,
    ConfigurationError,
    ChangeSetNotFoundError,
    ChangeSetNotExecutableError,
    CredentialError,
    NetworkError,
    DependencyError,
    ChangeSetCreationError,
    StackDeploymentError,
    RollbackError,
    AssetError,
    PollTimeoutError,
    InternalError,
    ErrorHandler,
    error_handler
)
from stack_deploy.utils.logging import get_logger, get_stack_logger, setup_logging

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSEnvironment',
    'AssumeRoleConfig',

    # Retry
    'RetryStrategy',
    'poll_until',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'DeploymentError',
    'ConfigurationError',
    'ChangeSetNotFoundError',
    'ChangeSetNotExecutableError',
    'CredentialError',
    'NetworkError',
    'DependencyError',
    'ChangeSetCreationError',
    'StackDeploymentError',
    'RollbackError',
    'AssetError',
    'PollTimeoutError',
    'InternalError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'get_stack_logger',
    'setup_logging',
]
