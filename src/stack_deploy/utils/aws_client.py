"""AWS client management and session handling."""

import threading
import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass
from stack_deploy.utils.errors import CredentialError, error_code, error_message
from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AWSEnvironment:
    """Target account and region of a stack."""
    account: str
    region: str

    @property
    def name(self) -> str:
        return f"aws://{self.account}/{self.region}"


@dataclass
class AssumeRoleConfig:
    """Configuration for IAM role assumption."""
    role_arn: str
    session_name: str = 'stack-deploy'
    external_id: Optional[str] = None
    duration_seconds: int = 3600


class AWSClientManager:
    """Builds and caches boto3 clients per region and role.

    Clients are created lazily and shared between worker threads. boto3
    sessions are not thread safe, so every session and cache access holds
    the manager's re-entrant lock.
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 50
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: Default AWS region
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.profile = profile
        self.region = region
        self._lock = threading.RLock()
        self._base_session: Optional[boto3.Session] = None
        self._role_sessions: Dict[Tuple[str, str], boto3.Session] = {}
        self._clients: Dict[Tuple[str, str, str], Any] = {}
        self._account_id: Optional[str] = None

        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'adaptive',
                'max_attempts': 5
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create the base boto3 session."""
        with self._lock:
            if self._base_session is None:
                kwargs = {}
                if self.profile:
                    kwargs['profile_name'] = self.profile
                if self.region:
                    kwargs['region_name'] = self.region

                self._base_session = boto3.Session(**kwargs)
                logger.info(f"Created AWS session - Region: {self._base_session.region_name}, "
                            f"Profile: {self.profile or 'default'}")

            return self._base_session

    def get_client(self, service_name: str, region: Optional[str] = None,
                   assume_role: Optional[AssumeRoleConfig] = None):
        """Get a cached boto3 client.

        Args:
            service_name: AWS service name (e.g., 'cloudformation', 's3')
            region: Region for the client, defaults to the session region
            assume_role: Role to assume for this client, if any

        Returns:
            Boto3 client for the service
        """
        with self._lock:
            region = region or self.region or self.session.region_name
            role_key = assume_role.role_arn if assume_role else ''
            cache_key = (service_name, region or '', role_key)

            client = self._clients.get(cache_key)
            if client is not None:
                return client

            session = self._session_for(region, assume_role) if assume_role else self.session
            client = session.client(service_name, region_name=region, config=self._boto_config)
            self._clients[cache_key] = client
            logger.debug(f"Created {service_name} client for {region} (role: {role_key or 'default'})")

            return client

    def _session_for(self, region: str, config: AssumeRoleConfig) -> boto3.Session:
        key = (config.role_arn, region)
        with self._lock:
            if key in self._role_sessions:
                return self._role_sessions[key]

        logger.info(f"Assuming IAM role: {config.role_arn}")
        params = {
            'RoleArn': config.role_arn,
            'RoleSessionName': config.session_name,
            'DurationSeconds': config.duration_seconds
        }
        if config.external_id:
            params['ExternalId'] = config.external_id

        try:
            response = self.get_client('sts', region).assume_role(**params)
        except ClientError as e:
            if error_code(e) == 'AccessDenied':
                raise CredentialError(
                    f"Access denied when assuming role {config.role_arn}",
                    cause=e,
                    suggestions=['Check that the role trusts your principal and grants sts:AssumeRole']
                ) from e
            logger.error(f"Failed to assume role: {error_message(e)}")
            raise

        credentials = response['Credentials']
        session = boto3.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=region
        )
        with self._lock:
            self._role_sessions[key] = session
        return session

    def get_account_id(self) -> str:
        """Get the account ID of the base credentials.

        Raises:
            CredentialError: If no usable credentials are configured
        """
        with self._lock:
            if self._account_id is not None:
                return self._account_id

            try:
                identity = self.get_client('sts').get_caller_identity()
            except (NoCredentialsError, PartialCredentialsError) as e:
                raise CredentialError(
                    'No usable AWS credentials found',
                    cause=e,
                    suggestions=[
                        'Configure AWS credentials using: aws configure',
                        'Specify a profile with --profile flag'
                    ]
                ) from e

            self._account_id = identity['Account']
            logger.info(f"AWS credentials validated - Account: {self._account_id}, "
                        f"Principal: {identity['Arn']}")
            return self._account_id

    def resolve_environment(self, account: Optional[str], region: Optional[str]) -> AWSEnvironment:
        """Fill in an unspecified account or region from the session."""
        return AWSEnvironment(
            account=account or self.get_account_id(),
            region=region or self.region or self.session.region_name
        )
