"""Asset manifests and handlers."""

from stack_deploy.assets.manifest import AssetManifest, FileAsset, FileAssetSource, FileAssetDestination
from stack_deploy.assets.handler import AssetHandler, S3FileAssetHandler

__all__ = [
    'AssetManifest',
    'FileAsset',
    'FileAssetSource',
    'FileAssetDestination',
    'AssetHandler',
    'S3FileAssetHandler',
]
