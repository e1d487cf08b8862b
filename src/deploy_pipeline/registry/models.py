"""Pydantic models for image references and registry credentials."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from deploy_pipeline.utils.errors import ConfigError, ConfigErrorKind

# OCI distribution reference grammar
TAG_PATTERN = r"^[\w][\w.-]{0,127}$"
DIGEST_PATTERN = r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$"
REPOSITORY_PATTERN = r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$"


class ImageReference(BaseModel):
    """A tagged image in a remote registry, pinned to a digest once pushed."""

    model_config = ConfigDict(frozen=True)

    registry_host: str = Field(..., min_length=1, description="Registry host, e.g. 123.dkr.ecr.us-east-1.amazonaws.com")
    repository: str = Field(..., min_length=1, pattern=REPOSITORY_PATTERN)
    tag: str = Field(..., min_length=1, pattern=TAG_PATTERN)
    digest: Optional[str] = Field(None, pattern=DIGEST_PATTERN)

    @field_validator("registry_host")
    @classmethod
    def validate_registry_host(cls, v: str) -> str:
        """Reject hosts carrying a scheme or path."""
        if "://" in v or "/" in v:
            raise ValueError(f"Registry host must be a bare host[:port]: {v}")
        return v

    @property
    def repository_name(self) -> str:
        """Fully qualified repository, ``host/repository``."""
        return f"{self.registry_host}/{self.repository}"

    @property
    def tagged_name(self) -> str:
        """Mutable reference, ``host/repository:tag``."""
        return f"{self.repository_name}:{self.tag}"

    @property
    def pinned_name(self) -> str:
        """Immutable reference, ``host/repository@digest``."""
        if not self.digest:
            raise ConfigError(
                f"Image {self.tagged_name} has not been pushed; no digest available",
                kind=ConfigErrorKind.UNPINNED_IMAGE
            )
        return f"{self.repository_name}@{self.digest}"

    def is_pushed(self) -> bool:
        """Check if the reference carries a content digest."""
        return self.digest is not None

    def with_digest(self, digest: str) -> "ImageReference":
        """Return a copy pinned to ``digest``.

        A digest is set exactly once: re-applying the same digest is a no-op,
        a different one is rejected.
        """
        if self.digest is not None and self.digest != digest:
            raise ConfigError(
                f"Image {self.tagged_name} is already pinned to {self.digest}; "
                f"refusing to repin to {digest}",
                kind=ConfigErrorKind.DIGEST_ALREADY_SET
            )
        return ImageReference(
            registry_host=self.registry_host,
            repository=self.repository,
            tag=self.tag,
            digest=digest,
        )

    def __str__(self) -> str:
        return self.pinned_name if self.digest else self.tagged_name


class RegistryCredentials(BaseModel):
    """Short-lived credentials for a registry host."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)
    registry_host: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None

    def is_valid_for(self, registry_host: str) -> bool:
        """Check the credentials were issued for ``registry_host``."""
        return self.registry_host == registry_host
