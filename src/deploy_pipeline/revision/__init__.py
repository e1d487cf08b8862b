"""Revision descriptors and the builder that produces them."""

from .models import ResourceLimits, RevisionDescriptor
from .builder import RevisionBuilder, RevisionOverrides, build_revision

__all__ = [
    "ResourceLimits",
    "RevisionDescriptor",
    "RevisionBuilder",
    "RevisionOverrides",
    "build_revision",
]
