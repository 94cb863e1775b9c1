"""Building and publishing file assets."""

import os
import shutil
import subprocess
import threading
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from botocore.exceptions import ClientError

from stack_deploy.assets.manifest import FileAsset
from stack_deploy.utils.aws_client import AWSClientManager, AssumeRoleConfig
from stack_deploy.utils.errors import AssetError, ErrorContext, error_code
from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)

# Never packaged into zip assets
EXCLUDED_DIRECTORIES = {'__pycache__', '.git', '.venv', 'venv', 'node_modules', '.pytest_cache', '.mypy_cache'}
EXCLUDED_SUFFIXES = ('.pyc', '.pyo', '.DS_Store')


class AssetHandler(ABC):
    """Builds and publishes assets for the work graph."""

    @abstractmethod
    def build(self, asset: FileAsset) -> None:
        """Produce the publishable artifact of ``asset``."""

    @abstractmethod
    def publish(self, asset: FileAsset) -> None:
        """Upload the built artifact to its destination."""

    @abstractmethod
    def is_published(self, asset: FileAsset) -> bool:
        """Whether the destination already holds the artifact."""


class S3FileAssetHandler(AssetHandler):
    """File assets staged locally and uploaded to S3."""

    def __init__(self, client_manager: AWSClientManager, staging_dir: str = '.stack-deploy/staging'):
        """Initialize the handler.

        Args:
            client_manager: Source of S3 clients
            staging_dir: Directory built artifacts are written to
        """
        self.client_manager = client_manager
        self.staging_dir = Path(staging_dir)
        self._staged: Dict[str, Path] = {}
        self._lock = threading.Lock()

    def build(self, asset: FileAsset) -> None:
        """Run the asset's build command, then stage the file or zip archive.

        Raises:
            AssetError: If the build command fails or the source is missing
        """
        context = ErrorContext(node_id=asset.build_id, operation='build_asset')
        source = Path(asset.source.path)

        if asset.source.build_command:
            logger.info(f"Building asset {asset.id}: {' '.join(asset.source.build_command)}")
            try:
                subprocess.run(
                    list(asset.source.build_command),
                    cwd=str(source if source.is_dir() else source.parent),
                    check=True,
                    capture_output=True,
                    text=True
                )
            except subprocess.CalledProcessError as e:
                raise AssetError(
                    f"Build command for asset {asset.id} exited with {e.returncode}: {e.stderr.strip()}",
                    context=context,
                    cause=e
                ) from e
            except FileNotFoundError as e:
                raise AssetError(f"Build command for asset {asset.id} not found", context=context, cause=e) from e

        if not source.exists():
            raise AssetError(f"Asset source does not exist: {source}", context=context)

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        if asset.source.packaging == 'zip':
            staged = self.staging_dir / f"{asset.id}.zip"
            self._zip(source, staged)
        else:
            if not source.is_file():
                raise AssetError(f"File asset {asset.id} must point to a file: {source}", context=context)
            staged = self.staging_dir / f"{asset.id}{source.suffix}"
            shutil.copyfile(source, staged)

        with self._lock:
            self._staged[asset.build_id] = staged
        logger.debug(f"Staged asset {asset.id} at {staged}")

    def publish(self, asset: FileAsset) -> None:
        """Upload the staged artifact.

        Raises:
            AssetError: If the asset was not built or the upload fails
        """
        context = ErrorContext(node_id=asset.publish_id, operation='publish_asset')
        with self._lock:
            staged = self._staged.get(asset.build_id)
        if staged is None:
            raise AssetError(f"Asset {asset.id} has not been built", context=context)

        destination = asset.destination
        logger.info(f"Publishing asset {asset.id} to s3://{destination.bucket_name}/{destination.object_key}")
        try:
            self._s3(asset).upload_file(str(staged), destination.bucket_name, destination.object_key)
        except ClientError as e:
            raise AssetError(
                f"Failed to publish asset {asset.id} to s3://{destination.bucket_name}/{destination.object_key}",
                context=context,
                cause=e
            ) from e

    def is_published(self, asset: FileAsset) -> bool:
        """Whether the destination object already exists."""
        destination = asset.destination
        try:
            self._s3(asset).head_object(Bucket=destination.bucket_name, Key=destination.object_key)
            return True
        except ClientError as e:
            if error_code(e) in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def staged_path(self, asset: FileAsset) -> Optional[Path]:
        """Where the asset was staged, if it has been built."""
        with self._lock:
            return self._staged.get(asset.build_id)

    def _s3(self, asset: FileAsset):
        role = asset.destination.assume_role_arn
        return self.client_manager.get_client(
            's3',
            region=asset.destination.region,
            assume_role=AssumeRoleConfig(role_arn=role) if role else None
        )

    @staticmethod
    def _zip(source: Path, target: Path) -> None:
        with zipfile.ZipFile(target, 'w', zipfile.ZIP_DEFLATED) as zipf:
            if source.is_file():
                zipf.write(source, source.name)
                return

            for root, dirs, files in os.walk(source):
                dirs[:] = sorted(d for d in dirs if d not in EXCLUDED_DIRECTORIES)
                for file in sorted(files):
                    if file.endswith(EXCLUDED_SUFFIXES):
                        continue
                    file_path = os.path.join(root, file)
                    zipf.write(file_path, os.path.relpath(file_path, source))
