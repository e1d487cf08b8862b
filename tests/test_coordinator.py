"""End-to-end tests for the pipeline coordinator with in-memory collaborators."""

import threading

import boto3
import pytest
from botocore.stub import Stubber

from deploy_pipeline.config.parser import Config, ConfigValidationError
from deploy_pipeline.orchestrator.coordinator import (
    PipelineCoordinator,
    PipelineOutcome,
    PipelineStage,
    StageStatus,
)
from deploy_pipeline.registry.credentials import EcrCredentialsProvider
from deploy_pipeline.utils.errors import (
    DeployError,
    DeployErrorKind,
    PushError,
    PushErrorKind,
)
from deploy_pipeline.utils.retry import RetryStrategy

from fakes import FakeControlPlane, FakeRegistryClient, StaticCredentialsProvider, status


class CancellingRegistryClient(FakeRegistryClient):
    """Sets the cancel event while the push is in flight."""

    def __init__(self, cancel_event, **kwargs):
        super().__init__(**kwargs)
        self.cancel_event = cancel_event

    def push(self, image, credentials):
        self.cancel_event.set()
        return super().push(image, credentials)


class UnpinnedRegistryClient(FakeRegistryClient):
    """Returns the pushed image without a digest."""

    def push(self, image, credentials):
        self.calls.append(image)
        return image


class CancellingControlPlane(FakeControlPlane):
    """Sets the cancel event once the revision is submitted."""

    def __init__(self, cancel_event, statuses=None):
        super().__init__(statuses)
        self.cancel_event = cancel_event

    def submit_revision(self, request):
        handle = super().submit_revision(request)
        self.cancel_event.set()
        return handle


def make_coordinator(clock, registry_client=None, control_plane=None, credentials_provider=None, **kwargs):
    return PipelineCoordinator(
        registry_client=registry_client or FakeRegistryClient(),
        credentials_provider=credentials_provider or StaticCredentialsProvider(),
        control_plane=control_plane or FakeControlPlane([status(2, 2, 2)]),
        clock=clock,
        sleep=clock.sleep,
        **kwargs
    )


class TestPipelineCoordinator:
    """Tests for PipelineCoordinator.run."""

    def test_successful_run(self, clock, pipeline_config):
        """A stable rollout reports the watch stage as Stable with exit code 0."""
        registry_client = FakeRegistryClient(digest="sha256:abc")
        control_plane = FakeControlPlane([status(2, 0, 0), status(2, 1, 1), status(2, 2, 2)])

        report = make_coordinator(clock, registry_client, control_plane).run(pipeline_config)

        assert report.outcome == PipelineOutcome.SUCCEEDED
        assert report.stage == PipelineStage.WATCH
        assert report.result == "Stable"
        assert report.exit_code == 0
        assert report.failure is None
        assert report.image.digest == "sha256:abc"
        assert report.handle.handle_id == "h1"
        assert report.watch.polls == 3
        assert [s.status for s in report.stages] == [StageStatus.SUCCESS] * 4

        request = control_plane.submitted[0]
        assert request.desired_count == 2
        assert request.revision.image_uri.endswith("@sha256:abc")
        assert request.revision.environment == {"SPRING_PROFILES_ACTIVE": "prod"}

    def test_push_rejection_short_circuits(self, clock, pipeline_config):
        """A rejected push never reaches the control plane."""
        registry_client = FakeRegistryClient(errors=[
            PushError("manifest invalid", kind=PushErrorKind.REGISTRY_REJECTED)
        ])
        control_plane = FakeControlPlane()

        report = make_coordinator(clock, registry_client, control_plane).run(pipeline_config)

        assert report.outcome == PipelineOutcome.FAILED
        assert report.stage == PipelineStage.PUSH
        assert report.result == "RegistryRejected"
        assert report.exit_code == 3
        assert report.failure == {
            'stage': 'push', 'errorKind': 'RegistryRejected', 'message': 'manifest invalid'
        }
        assert len(registry_client.calls) == 1
        assert control_plane.submitted == []
        assert control_plane.status_calls == 0
        assert report.get_stage(PipelineStage.DEPLOY).status == StageStatus.SKIPPED

    def test_retryable_push_errors_retried(self, clock, pipeline_config):
        """Network and auth failures are retried with fresh credentials."""
        registry_client = FakeRegistryClient(errors=[
            PushError("connection reset", kind=PushErrorKind.NETWORK_FAILURE),
            PushError("token expired", kind=PushErrorKind.AUTH_FAILURE),
        ])
        credentials_provider = StaticCredentialsProvider()

        report = make_coordinator(
            clock, registry_client, credentials_provider=credentials_provider
        ).run(pipeline_config)

        assert report.is_success()
        assert len(registry_client.calls) == 3
        assert credentials_provider.calls == 3
        assert len(clock.sleeps) == 2

    def test_retries_exhausted(self, clock, pipeline_config):
        errors = [PushError("connection refused", kind=PushErrorKind.NETWORK_FAILURE) for _ in range(5)]
        registry_client = FakeRegistryClient(errors=errors)
        control_plane = FakeControlPlane()

        report = make_coordinator(clock, registry_client, control_plane).run(pipeline_config)

        assert report.result == "NetworkFailure"
        assert report.exit_code == 3
        # max_retries is 2 in the fixture configuration
        assert len(registry_client.calls) == 3
        assert control_plane.submitted == []

    def test_explicit_retry_strategy(self, clock, pipeline_config):
        registry_client = FakeRegistryClient(errors=[
            PushError("connection refused", kind=PushErrorKind.NETWORK_FAILURE)
        ])

        report = make_coordinator(
            clock, registry_client, retry_strategy=RetryStrategy.no_retry()
        ).run(pipeline_config)

        assert report.result == "NetworkFailure"
        assert len(registry_client.calls) == 1

    def test_unpinned_push_fails_revision_stage(self, clock, pipeline_config):
        """A push that reports no digest stops at the revision stage."""
        registry_client = UnpinnedRegistryClient()
        control_plane = FakeControlPlane()

        report = make_coordinator(clock, registry_client, control_plane).run(pipeline_config)

        assert report.stage == PipelineStage.REVISION
        assert report.result == "UnpinnedImage"
        assert report.exit_code == 2
        assert control_plane.submitted == []

    def test_invalid_overrides_never_reach_a_run(self, config_data):
        """Overrides are rejected while parsing, before any stage runs."""
        config_data["service"]["overrides"] = {"cpu": "lots"}

        with pytest.raises(ConfigValidationError):
            Config.parse(config_data)

    def test_deploy_failure(self, clock, pipeline_config):
        control_plane = FakeControlPlane(
            submit_error=DeployError("Cluster not found", kind=DeployErrorKind.CLUSTER_NOT_FOUND)
        )

        report = make_coordinator(clock, control_plane=control_plane).run(pipeline_config)

        assert report.outcome == PipelineOutcome.FAILED
        assert report.stage == PipelineStage.DEPLOY
        assert report.result == "ClusterNotFound"
        assert report.exit_code == 4
        assert report.get_stage(PipelineStage.WATCH).status == StageStatus.SKIPPED
        assert control_plane.status_calls == 0

    def test_watch_timeout_is_deployed_but_unstable(self, clock, pipeline_config):
        """A timeout after submission is distinguished from a failed deploy."""
        control_plane = FakeControlPlane([status(2, 1, 1)])

        report = make_coordinator(clock, control_plane=control_plane).run(pipeline_config)

        assert report.outcome == PipelineOutcome.DEPLOYED_BUT_UNSTABLE
        assert report.stage == PipelineStage.WATCH
        assert report.result == "TimedOut"
        assert report.exit_code == 5
        assert report.handle.handle_id == "h1"
        assert control_plane.status_calls == 21
        assert report.last_status.counts() == (2, 1, 1)
        assert clock.now == 300

    def test_cancelled_watch(self, clock, pipeline_config):
        """Cancelling after submission stops the watch and reports the deployment."""
        cancel_event = threading.Event()
        control_plane = CancellingControlPlane(cancel_event, [status(2, 1, 1)])

        report = make_coordinator(
            clock, control_plane=control_plane, cancel_event=cancel_event
        ).run(pipeline_config)

        assert report.stage == PipelineStage.WATCH
        assert report.result == "Cancelled"
        assert report.outcome == PipelineOutcome.DEPLOYED_BUT_UNSTABLE
        assert report.exit_code == 5
        assert len(control_plane.submitted) == 1

    def test_cancel_during_push_submits_nothing(self, clock, pipeline_config):
        """A cancel that arrives while the push runs stops before deployment."""
        cancel_event = threading.Event()
        registry_client = CancellingRegistryClient(cancel_event)
        control_plane = FakeControlPlane()

        report = make_coordinator(
            clock, registry_client, control_plane, cancel_event=cancel_event
        ).run(pipeline_config)

        assert report.outcome == PipelineOutcome.FAILED
        assert report.stage == PipelineStage.DEPLOY
        assert report.result == "Cancelled"
        assert report.exit_code == 4
        assert report.handle is None
        assert control_plane.submitted == []
        assert control_plane.status_calls == 0
        assert report.get_stage(PipelineStage.PUSH).status == StageStatus.SUCCESS
        assert report.get_stage(PipelineStage.WATCH).status == StageStatus.SKIPPED

    def test_cancel_during_push_backoff(self, pipeline_config):
        """A cancel during a retry wait ends the push without another attempt."""
        cancel_event = threading.Event()
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            cancel_event.set()

        registry_client = FakeRegistryClient(errors=[
            PushError("connection reset", kind=PushErrorKind.NETWORK_FAILURE)
        ])
        control_plane = FakeControlPlane()
        coordinator = PipelineCoordinator(
            registry_client=registry_client,
            credentials_provider=StaticCredentialsProvider(),
            control_plane=control_plane,
            cancel_event=cancel_event,
            sleep=sleep,
        )

        report = coordinator.run(pipeline_config)

        assert report.stage == PipelineStage.PUSH
        assert report.result == "Cancelled"
        assert report.exit_code == 3
        assert len(sleeps) == 1
        assert len(registry_client.calls) == 1
        assert control_plane.submitted == []

    def test_cancel_before_run(self, clock, pipeline_config):
        cancel_event = threading.Event()
        cancel_event.set()
        registry_client = FakeRegistryClient()

        report = make_coordinator(clock, registry_client, cancel_event=cancel_event).run(pipeline_config)

        assert report.result == "Cancelled"
        assert report.outcome == PipelineOutcome.FAILED
        assert registry_client.calls == []

    def test_runs_are_independent(self, clock, pipeline_config):
        """The same coordinator can run the same configuration again."""
        control_plane = FakeControlPlane([status(2, 2, 2)])
        coordinator = make_coordinator(clock, control_plane=control_plane)

        first = coordinator.run(pipeline_config)
        second = coordinator.run(pipeline_config)

        assert first.is_success() and second.is_success()
        assert len(control_plane.submitted) == 2

    def test_report_serializes(self, clock, pipeline_config):
        report = make_coordinator(clock).run(pipeline_config)

        data = report.to_dict()

        assert data['outcome'] == 'succeeded'
        assert data['stage'] == 'watch'
        assert data['result'] == 'Stable'
        assert data['deployment']['handle_id'] == 'h1'
        assert data['last_status']['healthy_count'] == 2
        assert [s['stage'] for s in data['stages']] == ['push', 'revision', 'deploy', 'watch']

    @pytest.mark.parametrize("error,code", [
        (PushError("denied", kind=PushErrorKind.AUTH_FAILURE), 3),
        (PushError("unreachable", kind=PushErrorKind.REGISTRY_REJECTED), 3),
    ])
    def test_push_exit_codes(self, clock, pipeline_config, error, code):
        registry_client = FakeRegistryClient(errors=[error] * 5)

        report = make_coordinator(clock, registry_client).run(pipeline_config)

        assert report.exit_code == code

    def test_tokenless_ecr_response_reported(self, clock, pipeline_config):
        """A credentials failure from ECR ends the run with a push error, not an exception."""
        ecr = boto3.client(
            'ecr', region_name='us-east-1', aws_access_key_id='testing', aws_secret_access_key='testing'
        )
        with Stubber(ecr) as stubber:
            stubber.add_response('get_authorization_token', {'authorizationData': [{}]}, {})
            registry_client = FakeRegistryClient()

            report = make_coordinator(
                clock,
                registry_client,
                credentials_provider=EcrCredentialsProvider(ecr),
                retry_strategy=RetryStrategy.no_retry(),
            ).run(pipeline_config)

        assert report.stage == PipelineStage.PUSH
        assert report.result == "AuthFailure"
        assert report.exit_code == 3
        assert registry_client.calls == []
