"""Error types raised by the deploy engine and translation of foreign errors."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import ClientError, HTTPClientError, NoCredentialsError, PartialCredentialsError


class ErrorCategory(Enum):
    """Categories of errors that can occur during deployment."""
    CONFIGURATION = "configuration"
    AWS = "aws"
    NETWORK = "network"
    DEPENDENCY = "dependency"
    CHANGE_SET = "change_set"
    STACK = "stack"
    ROLLBACK = "rollback"
    ASSET = "asset"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    RESOURCE_LIMIT = "resource_limit"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """How far a failure reaches."""
    CRITICAL = "critical"  # The run cannot continue
    ERROR = "error"  # One stack or asset failed, unrelated ones continue


@dataclass
class ErrorContext:
    """Where an error happened."""
    stack_name: Optional[str] = None
    change_set_name: Optional[str] = None
    node_id: Optional[str] = None
    operation: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class DeploymentError(Exception):
    """Base exception for deployment errors.

    Subclasses pick their category and severity through the class
    attributes; ``str()`` of any instance is its message.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize deployment error.

        Args:
            message: Human-readable error message
            category: Overrides the class category
            severity: Overrides the class severity
            context: Where the error happened
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Render the error, its location and suggested fixes for a terminal."""
        lines = [f"❌ {self.severity.value.upper()}: {self.message}"]

        if self.context.stack_name:
            lines.append(f"   Stack: {self.context.stack_name}")
        if self.context.change_set_name:
            lines.append(f"   Change set: {self.context.change_set_name}")
        if self.context.node_id and self.context.node_id != self.context.stack_name:
            lines.append(f"   Node: {self.context.node_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.context.request_id:
            lines.append(f"   Request ID: {self.context.request_id}")

        if self.cause:
            lines.append(f"   Cause: {self.cause}")

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)


class ConfigurationError(DeploymentError):
    """Invalid input detected before any mutating call."""
    category = ErrorCategory.CONFIGURATION


class ChangeSetNotFoundError(ConfigurationError):
    """A named change set the caller wants to execute does not exist."""


class ChangeSetNotExecutableError(ConfigurationError):
    """A named change set exists but is not in an executable state."""


class CredentialError(DeploymentError):
    category = ErrorCategory.CREDENTIAL
    severity = ErrorSeverity.CRITICAL


class NetworkError(DeploymentError):
    category = ErrorCategory.NETWORK


class DependencyError(DeploymentError):
    """Error in the work graph's dependency structure."""
    category = ErrorCategory.DEPENDENCY
    severity = ErrorSeverity.CRITICAL


class ChangeSetCreationError(DeploymentError):
    """The remote service failed to create a change set."""
    category = ErrorCategory.CHANGE_SET


class StackDeploymentError(DeploymentError):
    """A stack operation finished in a failed state."""
    category = ErrorCategory.STACK


class RollbackError(DeploymentError):
    """A caller-requested rollback did not reach a stable state."""
    category = ErrorCategory.ROLLBACK


class AssetError(DeploymentError):
    """Building or publishing an asset failed."""
    category = ErrorCategory.ASSET


class PollTimeoutError(DeploymentError):
    """A poll loop did not observe a terminal state within its bound."""
    category = ErrorCategory.TIMEOUT


class InternalError(DeploymentError):
    """An internal invariant was violated. Never retried."""
    category = ErrorCategory.INTERNAL
    severity = ErrorSeverity.CRITICAL


# botocore's connection and HTTP errors do not derive from the builtin ones
NETWORK_ERRORS = (ConnectionError, TimeoutError, BotoConnectionError, HTTPClientError)


def error_code(error: Exception) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', '')
    return ''


def error_message(error: Exception) -> str:
    """Return the AWS error message of a ClientError, or str(error)."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Message', str(error))
    return str(error)


class ErrorHandler:
    """Normalizes exceptions from boto3, the network and node executors."""

    # AWS error code -> (category, summary, suggestions)
    AWS_ERRORS = {
        'InvalidClientTokenId': (
            ErrorCategory.CREDENTIAL,
            'AWS credentials are invalid or expired',
            ['Verify credentials using: aws sts get-caller-identity'],
        ),
        'ExpiredToken': (
            ErrorCategory.CREDENTIAL,
            'AWS session token has expired',
            ['Refresh your AWS session credentials'],
        ),
        'AccessDenied': (
            ErrorCategory.PERMISSION,
            'Access denied',
            [
                'Check the IAM policies of the deploying identity',
                'If you pass --role-arn, check that CloudFormation can assume it',
            ],
        ),
        'InsufficientCapabilitiesException': (
            ErrorCategory.PERMISSION,
            'The template requires capabilities that were not acknowledged',
            ['Check the template for macros or transforms that need CAPABILITY_AUTO_EXPAND'],
        ),
        'LimitExceededException': (
            ErrorCategory.RESOURCE_LIMIT,
            'CloudFormation limit exceeded',
            ['Delete unused stacks or change sets, or request a limit increase'],
        ),
        'Throttling': (
            ErrorCategory.RESOURCE_LIMIT,
            'API rate limit exceeded',
            ['Lower the stack concurrency for this run'],
        ),
        'AlreadyExistsException': (
            ErrorCategory.CHANGE_SET,
            'A stack or change set with this name already exists',
            ['Pass a different --change-set-name or delete the existing change set'],
        ),
        'TokenAlreadyExistsException': (
            ErrorCategory.STACK,
            'Another request with this client token is in flight',
            ['Wait for the running operation on the stack to finish'],
        ),
        'NoSuchBucket': (
            ErrorCategory.ASSET,
            'The asset bucket does not exist',
            ['Bootstrap the environment or fix the bucket_name of the asset'],
        ),
        'ValidationError': (
            ErrorCategory.VALIDATION,
            'CloudFormation rejected the request',
            ['Check that the stack is not in an *_IN_PROGRESS state'],
        ),
    }

    def handle_exception(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None
    ) -> DeploymentError:
        """Convert any exception into a DeploymentError.

        DeploymentErrors are returned as they are; only a missing stack name
        is filled in from ``context``.

        Args:
            error: The exception to handle
            context: Where the error occurred

        Returns:
            DeploymentError with category and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, DeploymentError):
            if error.context.stack_name is None:
                error.context.stack_name = context.stack_name
            return error

        if isinstance(error, ClientError):
            return self._from_client_error(error, context)

        if isinstance(error, NoCredentialsError):
            return CredentialError(
                'No AWS credentials found',
                context=context,
                cause=error,
                suggestions=['Configure credentials with aws configure, or pass --profile']
            )
        if isinstance(error, PartialCredentialsError):
            return CredentialError('Incomplete AWS credentials', context=context, cause=error)

        if isinstance(error, NETWORK_ERRORS):
            return NetworkError(
                f"Network error: {error}",
                context=context,
                cause=error,
                suggestions=['Check your connection, VPN and proxy settings']
            )

        return DeploymentError(
            str(error) or type(error).__name__,
            context=context,
            cause=error,
            suggestions=['Run with --log-level debug and check .stack-deploy/logs for details']
        )

    def _from_client_error(self, error: ClientError, context: ErrorContext) -> DeploymentError:
        code = error_code(error) or 'Unknown'
        message = error_message(error)
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_operation = error.operation_name

        known = self.AWS_ERRORS.get(code)
        if known is None:
            return DeploymentError(
                f"AWS Error ({code}): {message}",
                category=ErrorCategory.AWS,
                context=context,
                cause=error,
                suggestions=['Review the stack events in the CloudFormation console']
            )

        category, summary, suggestions = known
        severity = ErrorSeverity.CRITICAL if category == ErrorCategory.CREDENTIAL else ErrorSeverity.ERROR
        return DeploymentError(
            f"{summary}: {message}",
            category=category,
            severity=severity,
            context=context,
            cause=error,
            suggestions=list(suggestions)
        )


# Global error handler instance
error_handler = ErrorHandler()
