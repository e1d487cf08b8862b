"""AWS client management and session handling."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from typing import Optional, Dict, Any
from dataclasses import dataclass
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AssumeRoleConfig:
    """Configuration for IAM role assumption."""
    role_arn: str
    session_name: str = "deploy-pipeline"
    external_id: Optional[str] = None
    duration_seconds: int = 3600


class AWSClientManager:
    """Manages boto3 sessions and cached clients for the pipeline."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        assume_role_config: Optional[AssumeRoleConfig] = None,
        max_pool_connections: int = 10
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            assume_role_config: Configuration for assuming an IAM role
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.profile = profile
        self.region = region
        self.assume_role_config = assume_role_config
        self._session: Optional[boto3.Session] = None
        self._assumed_session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        # Retries here cover transport-level throttling only; pipeline-level
        # retry policy is applied by the coordinator.
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'standard',
                'max_attempts': 3
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session."""
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get a cached boto3 client for a service.

        The assumed-role session is used once ``assume_role`` has succeeded.

        Args:
            service_name: AWS service name (e.g., 'ecs', 'ecr')

        Returns:
            Boto3 client for the service
        """
        if self.assume_role_config and self._assumed_session is None:
            self.assume_role()

        cache_key = f"{service_name}:{'assumed' if self._assumed_session else 'base'}"
        if cache_key in self._clients:
            return self._clients[cache_key]

        session = self._assumed_session or self.session
        client = session.client(service_name, config=self._boto_config)
        self._clients[cache_key] = client

        logger.debug(f"Created {service_name} client (cached: {cache_key})")

        return client

    def assume_role(self, config: Optional[AssumeRoleConfig] = None) -> boto3.Session:
        """Assume an IAM role for cross-account deployments.

        Args:
            config: Role assumption configuration. If None, uses self.assume_role_config

        Returns:
            Session holding the assumed role credentials

        Raises:
            ValueError: If no assume role configuration is provided
            ClientError: If role assumption fails
        """
        config = config or self.assume_role_config

        if config is None:
            raise ValueError("No assume role configuration provided")

        logger.info(f"Assuming IAM role: {config.role_arn}")

        params = {
            'RoleArn': config.role_arn,
            'RoleSessionName': config.session_name,
            'DurationSeconds': config.duration_seconds
        }
        if config.external_id:
            params['ExternalId'] = config.external_id

        try:
            sts = self.session.client('sts', config=self._boto_config)
            response = sts.assume_role(**params)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'AccessDenied':
                logger.error(f"Access denied when assuming role {config.role_arn}. "
                             f"Check that the role exists and your user has sts:AssumeRole permission.")
            else:
                logger.error(f"Failed to assume role: {e}")
            raise

        credentials = response['Credentials']
        self._assumed_session = boto3.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=self.region or self.session.region_name
        )
        self._clients.clear()

        logger.info(f"Assumed role {config.role_arn}")
        return self._assumed_session
