"""Deployment driver that submits a revision to the control plane once."""

from typing import Set, Tuple

from deploy_pipeline.control_plane.base import ControlPlane, DeploymentHandle, DeploymentRequest
from deploy_pipeline.utils.errors import DeployError, DeployErrorKind, ErrorContext, error_handler
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)


class DeploymentDriver:
    """Submits deployment requests; never retries."""

    def __init__(self, control_plane: ControlPlane):
        """Initialize deployment driver.

        Args:
            control_plane: Control plane receiving the revision
        """
        self.control_plane = control_plane
        self._submitted: Set[Tuple[str, str, str, int]] = set()
        self.logger = get_logger(__name__)

    def deploy(self, request: DeploymentRequest) -> DeploymentHandle:
        """Submit ``request`` and return a handle for status polling.

        Args:
            request: Deployment request

        Returns:
            DeploymentHandle

        Raises:
            DeployError: CLUSTER_NOT_FOUND, SERVICE_NOT_FOUND, QUOTA_EXCEEDED,
                CONTROL_PLANE_UNAVAILABLE, REQUEST_REJECTED, or ALREADY_SUBMITTED
                when this driver has already submitted the same request
        """
        key = (
            request.cluster_name,
            request.service_name,
            request.revision.revision_id,
            request.desired_count,
        )
        context = ErrorContext(
            stage="deploy",
            service_name=request.service_name,
            cluster_name=request.cluster_name,
            image=request.revision.image_uri,
        )

        if key in self._submitted:
            raise DeployError(
                f"Revision {request.revision.revision_id} was already submitted "
                f"to {request.cluster_name}/{request.service_name}",
                kind=DeployErrorKind.ALREADY_SUBMITTED,
                context=context
            )
        self._submitted.add(key)

        self.logger.info(
            f"Submitting {request.revision.image_uri} to {request.cluster_name}/{request.service_name} "
            f"(desired count {request.desired_count})"
        )

        try:
            handle = self.control_plane.submit_revision(request)
        except DeployError:
            raise
        except Exception as e:
            raise error_handler.to_deploy_error(e, context) from e

        self.logger.info(f"Deployment {handle.handle_id} accepted (revision {handle.revision_arn})")
        return handle
