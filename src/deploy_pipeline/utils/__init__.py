"""Utility modules for logging, AWS client management, retries and errors."""

from deploy_pipeline.utils.aws_client import AWSClientManager, AssumeRoleConfig
from deploy_pipeline.utils.retry import RetryStrategy
from deploy_pipeline.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ConfigErrorKind,
    PushErrorKind,
    DeployErrorKind,
    WatchErrorKind,
    PipelineError,
    ConfigError,
    PushError,
    DeployError,
    WatchError,
    ErrorHandler,
    error_handler
)
from deploy_pipeline.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AssumeRoleConfig',

    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ConfigErrorKind',
    'PushErrorKind',
    'DeployErrorKind',
    'WatchErrorKind',
    'PipelineError',
    'ConfigError',
    'PushError',
    'DeployError',
    'WatchError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
