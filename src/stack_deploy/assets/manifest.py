"""File assets referenced by stack templates."""

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Tuple

from stack_deploy.utils.digest import content_hash


@dataclass(frozen=True)
class FileAssetSource:
    """Where an asset comes from and how it is packaged."""
    path: str
    packaging: str = 'file'
    build_command: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class FileAssetDestination:
    """Where an asset is published."""
    bucket_name: str
    object_key: str
    region: Optional[str] = None
    assume_role_arn: Optional[str] = None


@dataclass(frozen=True)
class FileAsset:
    """One asset: a source built once and published to one destination."""
    id: str
    source: FileAssetSource
    destination: FileAssetDestination

    @property
    def build_id(self) -> str:
        """Work graph id of the build node; equal sources share it."""
        return f"build-{self.id}-{content_hash(self.id, asdict(self.source))[:10]}"

    @property
    def publish_id(self) -> str:
        return f"publish-{self.id}-{content_hash(self.id, asdict(self.destination))[:10]}"


@dataclass
class AssetManifest:
    """Assets a stack needs published before it can deploy."""
    stack_name: str
    assets: List[FileAsset] = field(default_factory=list)

    @classmethod
    def from_config(cls, stack_name: str, asset_configs, base_path=None, default_region=None) -> 'AssetManifest':
        """Build a manifest from ``FileAssetConfig`` entries.

        Args:
            stack_name: Owning stack
            asset_configs: Iterable of FileAssetConfig
            base_path: Directory relative asset paths are resolved against
            default_region: Destination region of assets that name none
        """
        assets = []
        for config in asset_configs:
            path = str(base_path / config.path) if base_path is not None else config.path
            assets.append(FileAsset(
                id=config.id,
                source=FileAssetSource(
                    path=path,
                    packaging=config.packaging,
                    build_command=tuple(config.build_command) if config.build_command else None
                ),
                destination=FileAssetDestination(
                    bucket_name=config.bucket_name,
                    object_key=config.object_key,
                    region=config.region or default_region
                )
            ))
        return cls(stack_name=stack_name, assets=assets)
