"""Control plane interface and the records exchanged with it."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from deploy_pipeline.revision.models import RevisionDescriptor


@dataclass(frozen=True)
class DeploymentRequest:
    """A request to replace a service's running revision."""

    cluster_name: str
    service_name: str
    revision: RevisionDescriptor
    desired_count: int

    def __post_init__(self):
        if self.desired_count < 0:
            raise ValueError(f"desired_count must be >= 0, got {self.desired_count}")
        if self.revision.service_name != self.service_name:
            raise ValueError(
                f"Revision belongs to {self.revision.service_name}, not {self.service_name}"
            )


@dataclass(frozen=True)
class DeploymentHandle:
    """Correlates status polls with a submitted deployment."""

    handle_id: str
    cluster_name: str
    service_name: str
    revision_arn: str
    desired_count: int
    previous_revision_arn: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class DeploymentStatus:
    """Snapshot of a deployment as reported by the control plane.

    Counts refer to the new revision only; tasks of any other revision are
    summed into ``previous_running_count``.
    """

    desired_count: int
    running_count: int
    healthy_count: int
    last_event_timestamp: Optional[datetime] = None
    terminal: bool = False
    previous_running_count: int = 0
    primary_revision_arn: Optional[str] = None
    rollout_state: Optional[str] = None

    @property
    def converged(self) -> bool:
        """True when running == desired == healthy for the new revision."""
        return self.running_count == self.desired_count == self.healthy_count

    def counts(self) -> tuple:
        return (self.desired_count, self.running_count, self.healthy_count)

    def to_dict(self) -> dict:
        return {
            'desired_count': self.desired_count,
            'running_count': self.running_count,
            'healthy_count': self.healthy_count,
            'previous_running_count': self.previous_running_count,
            'last_event_timestamp': (
                self.last_event_timestamp.isoformat() if self.last_event_timestamp else None
            ),
            'terminal': self.terminal,
            'primary_revision_arn': self.primary_revision_arn,
            'rollout_state': self.rollout_state,
        }


class ControlPlane(ABC):
    """Orchestration control plane capability pair."""

    @abstractmethod
    def submit_revision(self, request: DeploymentRequest) -> DeploymentHandle:
        """Register the revision and make it the service's target.

        Args:
            request: Deployment request

        Returns:
            DeploymentHandle for subsequent status polls

        Raises:
            DeployError: On any control plane failure
        """
        pass

    @abstractmethod
    def get_status(self, handle: DeploymentHandle) -> DeploymentStatus:
        """Fetch the current status of a submitted deployment.

        Args:
            handle: Handle returned by ``submit_revision``

        Returns:
            DeploymentStatus for the handle's revision

        Raises:
            DeployError: When the control plane cannot be queried
        """
        pass
