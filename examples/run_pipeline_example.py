"""Example usage of the pipeline coordinator from Python."""

import sys

from deploy_pipeline.cli.main import create_coordinator
from deploy_pipeline.config import Config
from deploy_pipeline.orchestrator import PipelineOutcome
from deploy_pipeline.registry import ImageReference
from deploy_pipeline.revision import build_revision
from deploy_pipeline.control_plane import EcsControlPlane
from deploy_pipeline.utils import setup_logging


def example_preview_task_definition(config):
    """Example: Preview the task definition a release would register."""
    print("=== Task Definition Preview ===")

    image = ImageReference(
        registry_host=config.registry.host,
        repository=config.registry.repository,
        tag=config.registry.tag,
        digest="sha256:" + "0" * 64,  # placeholder until the image is pushed
    )
    revision = build_revision(config.service.name, image, config.service.overrides)

    # No client needed to render parameters
    params = EcsControlPlane(ecs_client=None).build_task_definition(revision)
    print(f"  Family: {params['family']}")
    print(f"  CPU/memory: {params['cpu']}/{params['memory']}")
    print(f"  Revision id: {revision.revision_id}")


def example_run(config):
    """Example: Run the full pipeline and inspect the report."""
    print("\n=== Pipeline Run ===")

    coordinator = create_coordinator(config)
    report = coordinator.run(config)

    if report.outcome == PipelineOutcome.SUCCEEDED:
        print(f"✓ {report.image.pinned_name} stable after {report.watch.polls} polls")
    else:
        print(f"✗ {report.failure['stage']} failed: {report.failure['errorKind']}")
        print(f"  {report.failure['message']}")

    return report.exit_code


if __name__ == '__main__':
    setup_logging('info', log_dir=None)
    config = Config(sys.argv[1] if len(sys.argv) > 1 else 'examples/pipeline.yaml').load().pipeline

    example_preview_task_definition(config)
    sys.exit(example_run(config))
