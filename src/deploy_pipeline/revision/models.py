"""Revision descriptor models."""

import hashlib
import json
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from deploy_pipeline.registry.models import ImageReference

# ECS task limits
CPU_UNITS = (128, 16384)
MEMORY_MIB = (128, 122880)
MIN_MEMORY_RESERVATION = 4
DEFAULT_CPU = 256
DEFAULT_MEMORY = 512
NAME_PATTERN = "^[A-Za-z0-9_-]+$"


class ResourceLimits(BaseModel):
    """CPU and memory limits for a revision."""

    model_config = ConfigDict(frozen=True)

    cpu: int = Field(DEFAULT_CPU, ge=CPU_UNITS[0], le=CPU_UNITS[1], description="CPU units (1024 = one vCPU)")
    memory: int = Field(DEFAULT_MEMORY, ge=MEMORY_MIB[0], le=MEMORY_MIB[1], description="Hard memory limit in MiB")
    memory_reservation: Optional[int] = Field(None, ge=MIN_MEMORY_RESERVATION, description="Soft memory limit in MiB")

    @model_validator(mode="after")
    def validate_reservation(self):
        """Soft limit may not exceed the hard limit."""
        if self.memory_reservation is not None and self.memory_reservation > self.memory:
            raise ValueError(
                f"memory_reservation ({self.memory_reservation}) exceeds memory ({self.memory})"
            )
        return self


class RevisionDescriptor(BaseModel):
    """Immutable, fully specified deployable configuration for a service."""

    model_config = ConfigDict(frozen=True)

    service_name: str = Field(..., min_length=1, max_length=255, pattern=NAME_PATTERN)
    image: ImageReference
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)
    environment: Dict[str, str] = Field(default_factory=dict)
    container_name: str = Field(..., min_length=1, max_length=255, pattern=NAME_PATTERN)
    port: Optional[int] = Field(None, ge=1, le=65535)
    execution_role_arn: Optional[str] = None
    task_role_arn: Optional[str] = None

    @model_validator(mode="after")
    def validate_pinned_image(self):
        """A revision always references the image digest."""
        if not self.image.is_pushed():
            raise ValueError(f"Revision image {self.image.tagged_name} has no digest")
        return self

    @property
    def image_uri(self) -> str:
        """Digest-pinned image reference used by the control plane."""
        return self.image.pinned_name

    @property
    def revision_id(self) -> str:
        """Content hash identifying this exact configuration."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
