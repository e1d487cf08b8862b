"""Registry credential providers.

The pipeline never holds credential material in configuration. A provider is
injected into the coordinator and asked for credentials right before the
push, so short-lived tokens (ECR tokens last twelve hours) are always fresh.
"""

import base64
import os
from abc import ABC, abstractmethod
from typing import Optional

from deploy_pipeline.registry.models import RegistryCredentials
from deploy_pipeline.utils.errors import (
    ErrorContext,
    PushError,
    PushErrorKind,
    error_handler,
)
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)


class CredentialsProvider(ABC):
    """Capability object that resolves registry credentials on demand."""

    @abstractmethod
    def resolve_credentials(self) -> RegistryCredentials:
        """Resolve credentials for the configured registry.

        Returns:
            RegistryCredentials for the registry host

        Raises:
            PushError: AUTH_FAILURE or NETWORK_FAILURE when credentials cannot be resolved
        """
        pass


class EcrCredentialsProvider(CredentialsProvider):
    """Resolves Amazon ECR login tokens through the ECR API."""

    def __init__(self, ecr_client, registry_host: Optional[str] = None):
        """Initialize provider.

        Args:
            ecr_client: boto3 ECR client
            registry_host: Registry host the token is meant for; defaults to the
                proxy endpoint ECR returns
        """
        self.ecr_client = ecr_client
        self.registry_host = registry_host

    def resolve_credentials(self) -> RegistryCredentials:
        try:
            response = self.ecr_client.get_authorization_token()
        except Exception as e:
            raise error_handler.to_push_error(
                e, ErrorContext(stage="push", operation="resolve_credentials", aws_service="ecr",
                                aws_operation="GetAuthorizationToken")
            ) from e

        auth_data = response.get('authorizationData') or []
        if not auth_data:
            raise PushError(
                "ECR returned no authorization data",
                kind=PushErrorKind.AUTH_FAILURE,
                context=ErrorContext(stage="push", operation="resolve_credentials")
            )

        data = auth_data[0]
        try:
            decoded = base64.b64decode(data['authorizationToken']).decode('utf-8')
            username, password = decoded.split(':', 1)
        except (KeyError, TypeError, ValueError, UnicodeDecodeError) as e:
            raise PushError(
                "ECR authorization token is malformed",
                kind=PushErrorKind.AUTH_FAILURE,
                cause=e,
                context=ErrorContext(stage="push", operation="resolve_credentials")
            ) from e

        endpoint = data.get('proxyEndpoint', '')
        host = self.registry_host or endpoint.split('://', 1)[-1].rstrip('/')

        logger.debug(f"Resolved ECR credentials for {host} (expires {data.get('expiresAt')})")

        return RegistryCredentials(
            username=username,
            password=password,
            registry_host=host,
            expires_at=data.get('expiresAt'),
        )


class EnvironmentCredentialsProvider(CredentialsProvider):
    """Reads a username/password pair from named environment variables."""

    def __init__(self, registry_host: str, username_env: str, password_env: str):
        self.registry_host = registry_host
        self.username_env = username_env
        self.password_env = password_env

    def resolve_credentials(self) -> RegistryCredentials:
        username = os.environ.get(self.username_env)
        password = os.environ.get(self.password_env)

        missing = [name for name, value in ((self.username_env, username), (self.password_env, password))
                   if not value]
        if missing:
            raise PushError(
                f"Registry credentials not set: {', '.join(missing)}",
                kind=PushErrorKind.AUTH_FAILURE,
                context=ErrorContext(stage="push", operation="resolve_credentials"),
                suggestions=[f"Export {name} before running the pipeline" for name in missing]
            )

        return RegistryCredentials(
            username=username,
            password=password,
            registry_host=self.registry_host,
        )
