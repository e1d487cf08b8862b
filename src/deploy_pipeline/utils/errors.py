"""Error handling framework for pipeline operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors, one per pipeline error family."""
    CONFIGURATION = "configuration"
    PUSH = "push"
    DEPLOY = "deploy"
    WATCH = "watch"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Pipeline cannot continue
    ERROR = "error"  # Stage failed
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


class ConfigErrorKind(Enum):
    """Kinds of configuration errors."""
    INVALID_CONFIG = "InvalidConfig"
    MALFORMED_OVERRIDES = "MalformedOverrides"
    UNPINNED_IMAGE = "UnpinnedImage"
    DIGEST_ALREADY_SET = "DigestAlreadySet"


class PushErrorKind(Enum):
    """Kinds of registry push errors."""
    AUTH_FAILURE = "AuthFailure"
    NETWORK_FAILURE = "NetworkFailure"
    REGISTRY_REJECTED = "RegistryRejected"
    CANCELLED = "Cancelled"


class DeployErrorKind(Enum):
    """Kinds of deployment submission errors."""
    CLUSTER_NOT_FOUND = "ClusterNotFound"
    SERVICE_NOT_FOUND = "ServiceNotFound"
    QUOTA_EXCEEDED = "QuotaExceeded"
    CONTROL_PLANE_UNAVAILABLE = "ControlPlaneUnavailable"
    REQUEST_REJECTED = "RequestRejected"
    ALREADY_SUBMITTED = "AlreadySubmitted"
    CANCELLED = "Cancelled"


class WatchErrorKind(Enum):
    """Kinds of stability watch failures."""
    TIMED_OUT = "TimedOut"
    ROLLED_BACK = "RolledBack"
    CONTROL_PLANE_UNAVAILABLE = "ControlPlaneUnavailable"
    CANCELLED = "Cancelled"


@dataclass
class ErrorContext:
    """Context information for an error."""
    stage: Optional[str] = None
    service_name: Optional[str] = None
    cluster_name: Optional[str] = None
    image: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(
        self,
        message: str,
        kind: Optional[Enum] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize pipeline error.

        Args:
            message: Human-readable error message
            kind: Named kind within the error family
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    @property
    def error_kind(self) -> str:
        """Name of the error kind, e.g. ``RegistryRejected``."""
        return self.kind.value if self.kind else "Unknown"

    @property
    def retryable(self) -> bool:
        """Whether a caller may retry the failed operation."""
        return False

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()} [{self.error_kind}]: {self.message}"]

        if self.context.stage:
            lines.append(f"   Stage: {self.context.stage}")
        if self.context.service_name:
            lines.append(f"   Service: {self.context.service_name}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'message': self.message,
            'kind': self.error_kind,
            'category': self.category.value,
            'severity': self.severity.value,
            'retryable': self.retryable,
            'context': {
                'stage': self.context.stage,
                'service_name': self.context.service_name,
                'cluster_name': self.context.cluster_name,
                'image': self.context.image,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'aws_operation': self.context.aws_operation,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigError(PipelineError):
    """Invalid pipeline configuration or revision overrides."""

    def __init__(self, message: str, kind: ConfigErrorKind = ConfigErrorKind.INVALID_CONFIG, **kwargs):
        super().__init__(
            message,
            kind=kind,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class PushError(PipelineError):
    """Image push to the registry failed."""

    RETRYABLE_KINDS = {PushErrorKind.AUTH_FAILURE, PushErrorKind.NETWORK_FAILURE}

    def __init__(self, message: str, kind: PushErrorKind, reason: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            kind=kind,
            category=ErrorCategory.PUSH,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.kind in self.RETRYABLE_KINDS


class DeployError(PipelineError):
    """Submitting a revision to the control plane failed."""

    def __init__(self, message: str, kind: DeployErrorKind, **kwargs):
        super().__init__(
            message,
            kind=kind,
            category=ErrorCategory.DEPLOY,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class WatchError(PipelineError):
    """The deployed revision did not reach a stable state."""

    def __init__(
        self,
        message: str,
        kind: WatchErrorKind,
        history: Optional[List[Any]] = None,
        polls: int = 0,
        **kwargs
    ):
        super().__init__(
            message,
            kind=kind,
            category=ErrorCategory.WATCH,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )
        self.history = history or []
        self.polls = polls


class ErrorHandler:
    """Translates boto and network exceptions into typed pipeline errors."""

    # AWS error codes raised by the control plane
    DEPLOY_ERROR_MAPPING = {
        'ClusterNotFoundException': {
            'kind': DeployErrorKind.CLUSTER_NOT_FOUND,
            'message': 'Cluster not found',
            'suggestions': [
                'Verify the cluster name in the pipeline configuration',
                'Check that you are deploying to the correct AWS region'
            ]
        },
        'ServiceNotFoundException': {
            'kind': DeployErrorKind.SERVICE_NOT_FOUND,
            'message': 'Service not found in cluster',
            'suggestions': [
                'Create the service before running the pipeline',
                'Verify the service name in the pipeline configuration'
            ]
        },
        'ServiceNotActiveException': {
            'kind': DeployErrorKind.SERVICE_NOT_FOUND,
            'message': 'Service is not active',
            'suggestions': [
                'Recreate the service; inactive services cannot be updated'
            ]
        },
        'LimitExceededException': {
            'kind': DeployErrorKind.QUOTA_EXCEEDED,
            'message': 'Service quota exceeded',
            'suggestions': [
                'Request a service limit increase through AWS Support',
                'Deregister unused task definition revisions'
            ]
        },
        'PlatformTaskDefinitionIncompatibilityException': {
            'kind': DeployErrorKind.REQUEST_REJECTED,
            'message': 'Task definition is incompatible with the platform',
            'suggestions': [
                'Check cpu/memory combinations supported by the launch type'
            ]
        },
        'InvalidParameterException': {
            'kind': DeployErrorKind.REQUEST_REJECTED,
            'message': 'Invalid parameter value',
            'suggestions': [
                'Check revision overrides against ECS parameter constraints'
            ]
        },
        'ClientException': {
            'kind': DeployErrorKind.REQUEST_REJECTED,
            'message': 'Request rejected by the control plane',
            'suggestions': [
                'Review the error message for the rejected parameter'
            ]
        },
        'AccessDeniedException': {
            'kind': DeployErrorKind.REQUEST_REJECTED,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'ecs:RegisterTaskDefinition, ecs:UpdateService and iam:PassRole are required'
            ]
        },
        'ServerException': {
            'kind': DeployErrorKind.CONTROL_PLANE_UNAVAILABLE,
            'message': 'Control plane server error',
            'suggestions': ['Wait a few moments and rerun the pipeline']
        },
        'ThrottlingException': {
            'kind': DeployErrorKind.CONTROL_PLANE_UNAVAILABLE,
            'message': 'Control plane API rate limit exceeded',
            'suggestions': ['Reduce concurrent pipeline runs against the same account']
        },
    }

    # AWS error codes raised while resolving registry credentials
    PUSH_ERROR_MAPPING = {
        'AccessDeniedException': PushErrorKind.AUTH_FAILURE,
        'UnrecognizedClientException': PushErrorKind.AUTH_FAILURE,
        'InvalidSignatureException': PushErrorKind.AUTH_FAILURE,
        'ExpiredTokenException': PushErrorKind.AUTH_FAILURE,
        'InvalidParameterException': PushErrorKind.REGISTRY_REJECTED,
        'RepositoryNotFoundException': PushErrorKind.REGISTRY_REJECTED,
        'ServerException': PushErrorKind.NETWORK_FAILURE,
        'ThrottlingException': PushErrorKind.NETWORK_FAILURE,
    }

    NETWORK_EXCEPTIONS = (
        EndpointConnectionError,
        ConnectTimeoutError,
        ReadTimeoutError,
        ConnectionError,
        TimeoutError,
    )

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def to_deploy_error(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> DeployError:
        """Convert a control-plane exception to a DeployError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            DeployError with kind and suggestions
        """
        context = context or ErrorContext(stage="deploy")

        if isinstance(error, DeployError):
            return error

        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', 'Unknown')
            error_message = error.response.get('Error', {}).get('Message', str(error))
            context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

            error_info = self.DEPLOY_ERROR_MAPPING.get(error_code)
            if error_info:
                return DeployError(
                    f"{error_info['message']}: {error_message}",
                    kind=error_info['kind'],
                    context=context,
                    cause=error,
                    suggestions=error_info['suggestions']
                )

            return DeployError(
                f"AWS Error ({error_code}): {error_message}",
                kind=DeployErrorKind.REQUEST_REJECTED,
                context=context,
                cause=error,
                suggestions=[
                    'Check AWS documentation for this error code',
                    f'AWS Request ID: {context.request_id}'
                ]
            )

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return DeployError(
                'No usable AWS credentials for the control plane',
                kind=DeployErrorKind.REQUEST_REJECTED,
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Specify a profile with --profile'
                ]
            )

        if isinstance(error, self.NETWORK_EXCEPTIONS):
            return DeployError(
                f'Control plane unreachable: {error}',
                kind=DeployErrorKind.CONTROL_PLANE_UNAVAILABLE,
                context=context,
                cause=error,
                suggestions=[
                    'Check your network connectivity',
                    'Verify the ECS endpoint for the region is reachable'
                ]
            )

        return DeployError(
            str(error),
            kind=DeployErrorKind.CONTROL_PLANE_UNAVAILABLE,
            context=context,
            cause=error
        )

    def to_push_error(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> PushError:
        """Convert a registry or credential exception to a PushError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            PushError with kind set
        """
        context = context or ErrorContext(stage="push")

        if isinstance(error, PushError):
            return error

        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', 'Unknown')
            error_message = error.response.get('Error', {}).get('Message', str(error))
            context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
            kind = self.PUSH_ERROR_MAPPING.get(error_code, PushErrorKind.REGISTRY_REJECTED)
            return PushError(
                f"Registry error ({error_code}): {error_message}",
                kind=kind,
                reason=error_message,
                context=context,
                cause=error
            )

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return PushError(
                'No usable AWS credentials to authenticate with the registry',
                kind=PushErrorKind.AUTH_FAILURE,
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Specify a profile with --profile'
                ]
            )

        if isinstance(error, self.NETWORK_EXCEPTIONS):
            return PushError(
                f'Registry unreachable: {error}',
                kind=PushErrorKind.NETWORK_FAILURE,
                context=context,
                cause=error
            )

        return PushError(
            str(error),
            kind=PushErrorKind.REGISTRY_REJECTED,
            reason=str(error),
            context=context,
            cause=error
        )

    def log_error(self, error: PipelineError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
