"""Pipeline coordinator: push, build revision, deploy, watch."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

from deploy_pipeline.config.models import PipelineConfig
from deploy_pipeline.control_plane.base import (
    ControlPlane,
    DeploymentHandle,
    DeploymentRequest,
    DeploymentStatus,
)
from deploy_pipeline.orchestrator.driver import DeploymentDriver
from deploy_pipeline.orchestrator.watcher import StabilityWatcher, WatchResult
from deploy_pipeline.registry.client import RegistryClient
from deploy_pipeline.registry.credentials import CredentialsProvider
from deploy_pipeline.registry.models import ImageReference
from deploy_pipeline.revision.builder import RevisionBuilder
from deploy_pipeline.revision.models import RevisionDescriptor
from deploy_pipeline.utils.errors import (
    DeployError,
    DeployErrorKind,
    ErrorCategory,
    PipelineError,
    PushError,
    PushErrorKind,
    WatchError,
    error_handler,
)
from deploy_pipeline.utils.logging import LogContext, get_logger
from deploy_pipeline.utils.retry import RetryStrategy

logger = get_logger(__name__)

T = TypeVar('T')

# Process exit codes per failing error family
EXIT_SUCCESS = 0
EXIT_UNEXPECTED = 1
EXIT_CODES = {
    ErrorCategory.CONFIGURATION: 2,
    ErrorCategory.PUSH: 3,
    ErrorCategory.DEPLOY: 4,
    ErrorCategory.WATCH: 5,
}


class PipelineStage(Enum):
    """Pipeline stages, in execution order."""
    PUSH = "push"
    REVISION = "revision"
    DEPLOY = "deploy"
    WATCH = "watch"


class StageStatus(Enum):
    """Status of a single stage."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineOutcome(Enum):
    """Overall result of a pipeline run."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEPLOYED_BUT_UNSTABLE = "deployed-but-unstable"


@dataclass
class StageResult:
    """Result of executing one stage."""

    stage: PipelineStage
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[PipelineError] = None

    @property
    def duration(self) -> float:
        """Execution time in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage.value,
            'status': self.status.value,
            'duration': round(self.duration, 3),
            'error_kind': self.error.error_kind if self.error else None,
        }


@dataclass
class PipelineReport:
    """Summary of one pipeline run."""

    pipeline_name: str
    cluster_name: str
    service_name: str
    outcome: PipelineOutcome = PipelineOutcome.FAILED
    stage: Optional[PipelineStage] = None
    result: Optional[str] = None
    stages: List[StageResult] = field(default_factory=list)
    image: Optional[ImageReference] = None
    revision: Optional[RevisionDescriptor] = None
    handle: Optional[DeploymentHandle] = None
    watch: Optional[WatchResult] = None
    error: Optional[PipelineError] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def is_success(self) -> bool:
        """Check if the pipeline ended with a stable deployment."""
        return self.outcome == PipelineOutcome.SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.is_success():
            return EXIT_SUCCESS
        if self.error is None:
            return EXIT_UNEXPECTED
        return EXIT_CODES.get(self.error.category, EXIT_UNEXPECTED)

    @property
    def duration(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    @property
    def failure(self) -> Optional[Dict[str, str]]:
        """Structured ``{stage, errorKind, message}`` for the failed stage."""
        if self.error is None:
            return None
        return {
            'stage': self.stage.value if self.stage else 'unknown',
            'errorKind': self.error.error_kind,
            'message': self.error.message,
        }

    @property
    def last_status(self) -> Optional[DeploymentStatus]:
        """Last deployment status observed by the watch, if any."""
        if self.watch is not None:
            return self.watch.final_status
        if isinstance(self.error, WatchError) and self.error.history:
            return self.error.history[-1]
        return None

    def get_stage(self, stage: PipelineStage) -> Optional[StageResult]:
        return next((s for s in self.stages if s.stage == stage), None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to a JSON-serializable dictionary."""
        return {
            'pipeline': self.pipeline_name,
            'cluster': self.cluster_name,
            'service': self.service_name,
            'outcome': self.outcome.value,
            'stage': self.stage.value if self.stage else None,
            'result': self.result,
            'exit_code': self.exit_code,
            'image': str(self.image) if self.image else None,
            'revision_id': self.revision.revision_id if self.revision else None,
            'deployment': (
                {'handle_id': self.handle.handle_id, 'revision_arn': self.handle.revision_arn}
                if self.handle else None
            ),
            'polls': self.watch.polls if self.watch else None,
            'last_status': self.last_status.to_dict() if self.last_status else None,
            'stages': [s.to_dict() for s in self.stages],
            'failure': self.failure,
            'duration': round(self.duration, 3),
        }


class PipelineCoordinator:
    """Runs push -> revision -> deploy -> watch, stopping at the first failure."""

    def __init__(
        self,
        registry_client: RegistryClient,
        credentials_provider: CredentialsProvider,
        control_plane: ControlPlane,
        revision_builder: Optional[RevisionBuilder] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize pipeline coordinator.

        Args:
            registry_client: Client used to push the image
            credentials_provider: Resolves registry credentials before each push attempt
            control_plane: Control plane for deploy and status polls
            revision_builder: Builder for revision descriptors
            retry_strategy: Push retry policy; built from the run's config when omitted
            cancel_event: Event that stops the run when set; a run cancelled
                before the deploy stage submits nothing
            clock: Monotonic clock passed to the watcher
            sleep: Sleep function passed to the watcher and retry policy
        """
        self.registry_client = registry_client
        self.credentials_provider = credentials_provider
        self.control_plane = control_plane
        self.revision_builder = revision_builder or RevisionBuilder()
        self.retry_strategy = retry_strategy
        self.cancel_event = cancel_event
        self.clock = clock
        self.sleep = sleep
        self.logger = get_logger(__name__)

    def run(self, config: PipelineConfig) -> PipelineReport:
        """Execute one pipeline run.

        Args:
            config: Validated pipeline configuration

        Returns:
            PipelineReport; failures are recorded in the report, never raised
        """
        report = PipelineReport(
            pipeline_name=config.pipeline.name,
            cluster_name=config.service.cluster,
            service_name=config.service.name,
            stages=[StageResult(stage=stage) for stage in PipelineStage],
        )
        driver = DeploymentDriver(self.control_plane)
        watcher = StabilityWatcher(
            self.control_plane,
            jitter=config.watch.jitter,
            max_poll_failures=config.watch.max_poll_failures,
            clock=self.clock,
            sleep=self.sleep,
            cancel_event=self.cancel_event
        )

        with LogContext(self.logger, pipeline=config.pipeline.name, service=config.service.name):
            self.logger.info(
                f"Starting pipeline {config.pipeline.name} for "
                f"{config.service.cluster}/{config.service.name}"
            )
            try:
                report.image = self._run_stage(report, PipelineStage.PUSH, self._push, config)

                report.revision = self._run_stage(
                    report, PipelineStage.REVISION,
                    self.revision_builder.build,
                    config.service.name, report.image, config.service.overrides
                )

                request = DeploymentRequest(
                    cluster_name=config.service.cluster,
                    service_name=config.service.name,
                    revision=report.revision,
                    desired_count=config.service.desired_count,
                )
                report.handle = self._run_stage(report, PipelineStage.DEPLOY, self._deploy, driver, request)

                report.watch = self._run_stage(
                    report, PipelineStage.WATCH,
                    watcher.watch,
                    report.handle, config.watch.timeout_seconds, config.watch.poll_interval_seconds
                )
                report.outcome = PipelineOutcome.SUCCEEDED
                report.result = report.watch.state.value
            except PipelineError as e:
                report.error = e
                report.result = e.error_kind
                report.outcome = (
                    PipelineOutcome.DEPLOYED_BUT_UNSTABLE if report.handle is not None
                    else PipelineOutcome.FAILED
                )
                error_handler.log_error(e)
            finally:
                for stage_result in report.stages:
                    if stage_result.status == StageStatus.PENDING:
                        stage_result.status = StageStatus.SKIPPED
                report.completed_at = datetime.utcnow()

            self.logger.info(
                f"Pipeline finished: {report.outcome.value} at stage "
                f"{report.stage.value if report.stage else '-'} ({report.result}) in {report.duration:.1f}s"
            )

        return report

    def _run_stage(
        self,
        report: PipelineReport,
        stage: PipelineStage,
        func: Callable[..., T],
        *args
    ) -> T:
        """Run one stage, recording its timing and outcome in ``report``."""
        stage_result = report.get_stage(stage)
        stage_result.started_at = datetime.utcnow()
        report.stage = stage

        with LogContext(self.logger, stage=stage.value):
            self.logger.info(f"Stage {stage.value} started")
            try:
                value = func(*args)
            except PipelineError as e:
                stage_result.status = StageStatus.FAILED
                stage_result.error = e
                if e.context.stage is None:
                    e.context.stage = stage.value
                raise
            finally:
                stage_result.completed_at = datetime.utcnow()

            stage_result.status = StageStatus.SUCCESS
            self.logger.info(f"Stage {stage.value} completed in {stage_result.duration:.1f}s")

        return value

    def _push(self, config: PipelineConfig) -> ImageReference:
        """Resolve credentials and push, retrying retryable failures."""
        image = ImageReference(
            registry_host=config.registry.host,
            repository=config.registry.repository,
            tag=config.registry.tag,
        )
        strategy = self.retry_strategy or RetryStrategy(
            max_retries=config.retry.max_retries,
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
            exponential_base=config.retry.exponential_base,
            sleep=self.sleep,
            cancel_event=self.cancel_event
        )

        def attempt() -> ImageReference:
            if self._cancelled():
                raise PushError("Push cancelled", kind=PushErrorKind.CANCELLED)
            credentials = self.credentials_provider.resolve_credentials()
            return self.registry_client.push(image, credentials)

        return strategy.execute_with_retry(attempt)

    def _deploy(self, driver: DeploymentDriver, request: DeploymentRequest) -> DeploymentHandle:
        if self._cancelled():
            raise DeployError("Deployment cancelled before submission", kind=DeployErrorKind.CANCELLED)
        return driver.deploy(request)

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
