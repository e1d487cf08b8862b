"""Control plane interface and ECS implementation."""

from .base import ControlPlane, DeploymentRequest, DeploymentHandle, DeploymentStatus
from .ecs import EcsControlPlane

__all__ = [
    "ControlPlane",
    "DeploymentRequest",
    "DeploymentHandle",
    "DeploymentStatus",
    "EcsControlPlane",
]
