"""Pydantic models for configuration schema."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


def _validate_tags(v: Dict[str, str]) -> Dict[str, str]:
    for key, value in v.items():
        if not key or not isinstance(key, str):
            raise ValueError(f"Tag key must be a non-empty string: {key}")
        if not isinstance(value, str):
            raise ValueError(f"Tag value must be a string for key '{key}': {value}")
        if len(key) > 128:
            raise ValueError(f"Tag key exceeds 128 characters: {key}")
        if len(value) > 256:
            raise ValueError(f"Tag value exceeds 256 characters for key '{key}'")
    return v


class ConcurrencyConfig(BaseModel):
    """Maximum number of simultaneously running work graph nodes, per kind."""

    stack: int = Field(1, ge=1)
    asset_build: int = Field(1, ge=1)
    asset_publish: int = Field(8, ge=1)


class DeploymentMethod(BaseModel):
    """How a stack is pushed to CloudFormation."""

    method: str = Field("change-set", pattern="^(change-set|direct|hotswap)$")
    change_set_name: Optional[str] = Field(None, min_length=1, max_length=128)
    execute: bool = True
    execute_existing_change_set: bool = False
    import_existing_resources: bool = False

    @model_validator(mode="after")
    def validate_method(self):
        """Validate option combinations."""
        if self.execute_existing_change_set:
            if self.method != "change-set":
                raise ValueError("execute_existing_change_set requires the change-set method")
            if not self.change_set_name:
                raise ValueError("change_set_name is required when executing an existing change set")
        if self.method == "direct" and self.import_existing_resources:
            raise ValueError("import_existing_resources cannot be used with the direct method")
        return self


class EngineSettings(BaseModel):
    """Timing and environment contracts of the deploy engine."""

    poll_interval_seconds: float = Field(5, ge=0)
    change_set_timeout_seconds: float = Field(1800, gt=0)
    stack_timeout_seconds: float = Field(7200, gt=0)
    early_validation_min_bootstrap_version: int = Field(30, ge=1)
    bootstrap_qualifier: str = Field("hnb659fds", pattern="^[A-Za-z0-9_-]{1,10}$")


class DeployOptions(BaseModel):
    """Options of one deployment run."""

    role_arn: Optional[str] = Field(None, pattern="^arn:aws[a-z0-9-]*:iam::[0-9]{12}:role/.+$")
    notification_arns: Optional[List[str]] = None
    tags: Optional[Dict[str, str]] = None
    parameters: Dict[str, Dict[str, Optional[str]]] = Field(default_factory=dict)
    keep_existing_parameters: bool = True
    rollback: bool = True
    orphan_failed_resources_during_rollback: bool = False
    force_deployment: bool = False
    force_asset_publishing: bool = False
    prebuild_assets: bool = True
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    deployment_method: DeploymentMethod = Field(default_factory=DeploymentMethod)
    outputs_file: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """Validate tag keys and values."""
        return _validate_tags(v) if v is not None else v

    def parameters_for(self, stack_name: str) -> Dict[str, Optional[str]]:
        """Global ``*`` parameters overridden by the stack's own."""
        return {**self.parameters.get("*", {}), **self.parameters.get(stack_name, {})}


class FileAssetConfig(BaseModel):
    """A file or directory uploaded to S3 before its stack deploys."""

    id: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    packaging: str = Field("file", pattern="^(file|zip)$")
    build_command: Optional[List[str]] = None
    bucket_name: str = Field(..., min_length=3, max_length=63)
    object_key: str = Field(..., min_length=1)
    region: Optional[str] = None


class EnvironmentRef(BaseModel):
    """Target account and region; either may be resolved from the session."""

    account: Optional[str] = Field(None, pattern="^[0-9]{12}$")
    region: Optional[str] = Field(None, min_length=1)


class StackConfig(BaseModel):
    """A stack to deploy."""

    name: str = Field(..., min_length=1, max_length=128, pattern="^[A-Za-z][A-Za-z0-9-]*$")
    template: str = Field(..., min_length=1)
    environment: EnvironmentRef = Field(default_factory=EnvironmentRef)
    parameters: Dict[str, str] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)
    notification_arns: Optional[List[str]] = None
    termination_protection: Optional[bool] = None
    depends_on: List[str] = Field(default_factory=list)
    assets: List[FileAssetConfig] = Field(default_factory=list)
    required_bootstrap_version: Optional[int] = Field(None, ge=1)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate tag keys and values."""
        return _validate_tags(v)
