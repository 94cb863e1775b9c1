"""Per-environment facts the deploy engine needs but does not own."""

import threading
from typing import Optional

from botocore.exceptions import ClientError

from stack_deploy.utils.aws_client import AWSEnvironment
from stack_deploy.utils.errors import ConfigurationError, ErrorContext, error_code
from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class EnvironmentResources:
    """Cached lookups against one account/region.

    The bootstrap version lives in an SSM parameter written by the
    bootstrap stack. It is read at most once per run.
    """

    def __init__(self, environment: AWSEnvironment, ssm_client, qualifier: str = 'hnb659fds'):
        self.environment = environment
        self._ssm = ssm_client
        self.qualifier = qualifier
        self._lock = threading.Lock()
        self._bootstrap_version: Optional[int] = None
        self._looked_up = False

    @property
    def version_parameter_name(self) -> str:
        return f"/cdk-bootstrap/{self.qualifier}/version"

    def bootstrap_version(self) -> Optional[int]:
        """The environment's bootstrap version, or None if it is not bootstrapped.

        Raises:
            ClientError: On lookup failures other than a missing parameter
        """
        with self._lock:
            if self._looked_up:
                return self._bootstrap_version

            try:
                response = self._ssm.get_parameter(Name=self.version_parameter_name)
                self._bootstrap_version = int(response['Parameter']['Value'])
            except ClientError as e:
                if error_code(e) != 'ParameterNotFound':
                    raise
                logger.debug(f"{self.environment.name} has no {self.version_parameter_name}")
                self._bootstrap_version = None

            self._looked_up = True
            return self._bootstrap_version

    def validate_version(self, required: Optional[int], stack_name: Optional[str] = None) -> None:
        """Check that the environment is bootstrapped at ``required`` or newer.

        Raises:
            ConfigurationError: If the environment is older or not bootstrapped
        """
        if not required:
            return

        current = self.bootstrap_version()
        if current is None:
            raise ConfigurationError(
                f"{self.environment.name}: this stack requires bootstrap stack version "
                f"{required}, but the environment is not bootstrapped",
                context=ErrorContext(stack_name=stack_name),
                suggestions=[f"Run 'cdk bootstrap {self.environment.name}'"]
            )
        if current < required:
            raise ConfigurationError(
                f"{self.environment.name}: this stack requires bootstrap stack version "
                f"{required}, found {current}",
                context=ErrorContext(stack_name=stack_name),
                suggestions=[f"Re-bootstrap {self.environment.name} with a newer toolkit"]
            )
