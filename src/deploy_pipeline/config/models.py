"""Pydantic models for the pipeline configuration schema."""

from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from deploy_pipeline.registry.models import REPOSITORY_PATTERN, TAG_PATTERN
from deploy_pipeline.revision.builder import RevisionOverrides


class _ConfigModel(BaseModel):
    """Immutable, strict base for configuration sections."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class PipelineSettings(_ConfigModel):
    """Pipeline identity."""

    name: str = Field("deploy-pipeline", min_length=1, max_length=64, pattern="^[a-z0-9-]+$")


class AWSConfig(_ConfigModel):
    """AWS session configuration."""

    region: Optional[str] = None
    profile: Optional[str] = None
    role_arn: Optional[str] = Field(None, pattern=r"^arn:aws[a-z-]*:iam::[0-9]{12}:role/.+$")
    external_id: Optional[str] = None


class CredentialsConfig(_ConfigModel):
    """Where registry credentials come from."""

    provider: Literal["ecr", "env"] = "ecr"
    username_env: Optional[str] = None
    password_env: Optional[str] = None

    @model_validator(mode="after")
    def validate_env_names(self):
        """The env provider needs both variable names."""
        if self.provider == "env" and not (self.username_env and self.password_env):
            raise ValueError("username_env and password_env are required when provider is 'env'")
        return self


class RegistryConfig(_ConfigModel):
    """Target registry and the locally built image to push."""

    host: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1, pattern=REPOSITORY_PATTERN)
    tag: str = Field(..., min_length=1, pattern=TAG_PATTERN)
    source_image: str = Field(..., min_length=1, description="Local image produced by the build")
    docker_binary: str = "docker"
    push_timeout: float = Field(900.0, gt=0)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Registry host is a bare host[:port]."""
        if "://" in v or "/" in v:
            raise ValueError(f"Registry host must not include a scheme or path: {v}")
        return v

    @field_validator("tag", mode="before")
    @classmethod
    def coerce_tag(cls, v: Any) -> Any:
        """YAML reads tags such as 1.4 as numbers."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ServiceConfig(_ConfigModel):
    """Target service in the control plane."""

    cluster: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255, pattern="^[A-Za-z0-9_-]+$")
    desired_count: int = Field(..., ge=0, alias="desiredCount")
    launch_type: str = Field("FARGATE", pattern="^(FARGATE|EC2|EXTERNAL)$")
    network_mode: str = Field("awsvpc", pattern="^(awsvpc|bridge|host|none)$")
    count_unknown_health: bool = True
    overrides: RevisionOverrides = Field(default_factory=RevisionOverrides)


class WatchConfig(_ConfigModel):
    """Stability watch timing."""

    timeout_seconds: float = Field(600.0, gt=0, alias="timeoutSeconds")
    poll_interval_seconds: float = Field(15.0, gt=0, alias="pollIntervalSeconds")
    jitter: bool = True
    max_poll_failures: int = Field(3, ge=1)

    @model_validator(mode="after")
    def validate_interval(self):
        """At least one poll must fit inside the deadline."""
        if self.poll_interval_seconds > self.timeout_seconds:
            raise ValueError(
                f"pollIntervalSeconds ({self.poll_interval_seconds}) exceeds "
                f"timeoutSeconds ({self.timeout_seconds})"
            )
        return self


class RetryConfig(_ConfigModel):
    """Retry policy for retryable push failures."""

    max_retries: int = Field(3, ge=0, le=10)
    base_delay: float = Field(1.0, gt=0)
    max_delay: float = Field(30.0, gt=0)
    exponential_base: float = Field(2.0, ge=1)

    @model_validator(mode="after")
    def validate_delays(self):
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay cannot exceed max_delay")
        return self


class PipelineConfig(_ConfigModel):
    """Complete, validated pipeline configuration."""

    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    aws: AWSConfig = Field(default_factory=AWSConfig)
    registry: RegistryConfig
    service: ServiceConfig
    watch: WatchConfig = Field(default_factory=WatchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
