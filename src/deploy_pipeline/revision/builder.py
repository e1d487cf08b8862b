"""Builds revision descriptors from a pushed image and per-service overrides."""

from typing import Any, Dict, List, Mapping, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from deploy_pipeline.registry.models import ImageReference
from deploy_pipeline.revision.models import (
    CPU_UNITS,
    DEFAULT_MEMORY,
    MEMORY_MIB,
    MIN_MEMORY_RESERVATION,
    NAME_PATTERN,
    ResourceLimits,
    RevisionDescriptor,
)
from deploy_pipeline.utils.errors import ConfigError, ConfigErrorKind, ErrorContext


def _env_string(value: Any) -> Any:
    """YAML reads values such as 8080 or true as scalars; ECS wants strings."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class EnvironmentVariable(BaseModel):
    """ECS-style ``{name, value}`` environment entry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        return _env_string(v)


class RevisionOverrides(BaseModel):
    """Recognized revision override keys, validated with the configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    cpu: Optional[int] = Field(None, ge=CPU_UNITS[0], le=CPU_UNITS[1])
    memory: Optional[int] = Field(None, ge=MEMORY_MIB[0], le=MEMORY_MIB[1])
    memory_reservation: Optional[int] = Field(None, ge=MIN_MEMORY_RESERVATION)
    environment: Union[Dict[str, str], List[EnvironmentVariable]] = Field(default_factory=dict)
    container_name: Optional[str] = Field(None, min_length=1, max_length=255, pattern=NAME_PATTERN)
    port: Optional[int] = Field(None, ge=1, le=65535)
    execution_role_arn: Optional[str] = None
    task_role_arn: Optional[str] = None

    @field_validator("environment", mode="before")
    @classmethod
    def coerce_environment(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {name: _env_string(value) for name, value in v.items()}
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Environment names must be non-empty and unique."""
        names = list(v.keys()) if isinstance(v, dict) else [item.name for item in v]
        seen = set()
        for name in names:
            if not name:
                raise ValueError("Environment variable name must be a non-empty string")
            if name in seen:
                raise ValueError(f"Duplicate environment variable: {name}")
            seen.add(name)
        return v

    @model_validator(mode="after")
    def validate_reservation(self):
        """Soft limit may not exceed the hard limit, or the default one when unset."""
        memory = self.memory if self.memory is not None else DEFAULT_MEMORY
        if self.memory_reservation is not None and self.memory_reservation > memory:
            raise ValueError(f"memory_reservation ({self.memory_reservation}) exceeds memory ({memory})")
        return self

    def environment_mapping(self) -> Dict[str, str]:
        if isinstance(self.environment, dict):
            return dict(self.environment)
        return {item.name: item.value for item in self.environment}


class RevisionBuilder:
    """Pure builder for RevisionDescriptor objects."""

    def build(
        self,
        service_name: str,
        image: ImageReference,
        overrides: Optional[Union[RevisionOverrides, Mapping[str, Any]]] = None
    ) -> RevisionDescriptor:
        """Build a revision descriptor pinned to ``image``'s digest.

        Args:
            service_name: Service the revision belongs to
            image: Pushed image reference (digest required)
            overrides: Validated overrides, or a raw mapping of them

        Returns:
            RevisionDescriptor

        Raises:
            ConfigError: UNPINNED_IMAGE if the image has no digest,
                MALFORMED_OVERRIDES if the overrides do not validate
        """
        context = ErrorContext(stage="revision", service_name=service_name, image=str(image))

        if not image.is_pushed():
            raise ConfigError(
                f"Image {image.tagged_name} has no digest; revisions must reference a pushed image",
                kind=ConfigErrorKind.UNPINNED_IMAGE,
                context=context
            )

        if overrides is not None and not isinstance(overrides, (RevisionOverrides, Mapping)):
            raise ConfigError(
                f"Revision overrides must be a mapping, got {type(overrides).__name__}",
                kind=ConfigErrorKind.MALFORMED_OVERRIDES,
                context=context
            )

        try:
            if isinstance(overrides, RevisionOverrides):
                parsed = overrides
            else:
                parsed = RevisionOverrides(**dict(overrides or {}))
            limits = ResourceLimits(**{
                key: value
                for key, value in (
                    ("cpu", parsed.cpu),
                    ("memory", parsed.memory),
                    ("memory_reservation", parsed.memory_reservation),
                )
                if value is not None
            })
            return RevisionDescriptor(
                service_name=service_name,
                image=image,
                resource_limits=limits,
                environment=parsed.environment_mapping(),
                container_name=parsed.container_name or service_name,
                port=parsed.port,
                execution_role_arn=parsed.execution_role_arn,
                task_role_arn=parsed.task_role_arn,
            )
        except (ValidationError, TypeError) as e:
            raise ConfigError(
                f"Malformed revision overrides for {service_name}: {e}",
                kind=ConfigErrorKind.MALFORMED_OVERRIDES,
                context=context,
                cause=e
            ) from e


def build_revision(
    service_name: str,
    image: ImageReference,
    overrides: Optional[Union[RevisionOverrides, Mapping[str, Any]]] = None
) -> RevisionDescriptor:
    """Module-level shortcut for ``RevisionBuilder().build``."""
    return RevisionBuilder().build(service_name, image, overrides)
