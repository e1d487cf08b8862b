"""Main CLI entry point."""

import signal
import sys
import threading
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from deploy_pipeline.config.models import PipelineConfig
from deploy_pipeline.config.parser import Config, ConfigValidationError
from deploy_pipeline.control_plane.ecs import EcsControlPlane
from deploy_pipeline.orchestrator.coordinator import (
    EXIT_CODES,
    EXIT_UNEXPECTED,
    PipelineCoordinator,
    PipelineOutcome,
    PipelineReport,
    StageStatus,
)
from deploy_pipeline.registry.client import DockerRegistryClient
from deploy_pipeline.registry.credentials import (
    CredentialsProvider,
    EcrCredentialsProvider,
    EnvironmentCredentialsProvider,
)
from deploy_pipeline.utils.aws_client import AWSClientManager, AssumeRoleConfig
from deploy_pipeline.utils.errors import ErrorCategory
from deploy_pipeline.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

EXIT_CONFIG_ERROR = EXIT_CODES[ErrorCategory.CONFIGURATION]

OUTCOME_STYLES = {
    PipelineOutcome.SUCCEEDED: ("green", "Deployment stable"),
    PipelineOutcome.DEPLOYED_BUT_UNSTABLE: ("yellow", "Deployed but unstable"),
    PipelineOutcome.FAILED: ("red", "Pipeline failed"),
}

STAGE_MARKS = {
    StageStatus.SUCCESS: "[green]✓[/green]",
    StageStatus.FAILED: "[red]✗[/red]",
    StageStatus.SKIPPED: "[dim]-[/dim]",
    StageStatus.PENDING: "[dim]?[/dim]",
}


def load_config(config_path: str) -> PipelineConfig:
    """Load and validate configuration file, exiting on failure."""
    try:
        return Config(config_path).load().pipeline
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(EXIT_CONFIG_ERROR)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        sys.exit(EXIT_CONFIG_ERROR)


def create_credentials_provider(
    config: PipelineConfig,
    client_manager: AWSClientManager
) -> CredentialsProvider:
    """Create the credentials provider named in the registry configuration."""
    credentials = config.registry.credentials
    if credentials.provider == "env":
        return EnvironmentCredentialsProvider(
            registry_host=config.registry.host,
            username_env=credentials.username_env,
            password_env=credentials.password_env,
        )
    return EcrCredentialsProvider(client_manager.get_client('ecr'), registry_host=config.registry.host)


def create_coordinator(
    config: PipelineConfig,
    profile: Optional[str] = None,
    region: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None
) -> PipelineCoordinator:
    """Create pipeline coordinator with AWS-backed collaborators."""
    assume_role_config = None
    if config.aws.role_arn:
        assume_role_config = AssumeRoleConfig(
            role_arn=config.aws.role_arn,
            session_name=config.pipeline.name,
            external_id=config.aws.external_id,
        )

    client_manager = AWSClientManager(
        profile=profile or config.aws.profile,
        region=region or config.aws.region,
        assume_role_config=assume_role_config,
    )

    control_plane = EcsControlPlane(
        client_manager.get_client('ecs'),
        launch_type=config.service.launch_type,
        network_mode=config.service.network_mode,
        count_unknown_health=config.service.count_unknown_health,
    )
    registry_client = DockerRegistryClient(
        source_image=config.registry.source_image,
        docker_binary=config.registry.docker_binary,
        timeout=config.registry.push_timeout,
    )

    return PipelineCoordinator(
        registry_client=registry_client,
        credentials_provider=create_credentials_provider(config, client_manager),
        control_plane=control_plane,
        cancel_event=cancel_event,
    )


def install_cancel_handlers(cancel_event: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into a cancellation request for the running pipeline."""
    def handler(signum, frame):
        if cancel_event.is_set():
            # Second signal: give up immediately
            raise KeyboardInterrupt
        logger.warning("Cancellation requested; stopping after the current step")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def render_report(report: PipelineReport) -> None:
    """Display a pipeline report with Rich."""
    color, title = OUTCOME_STYLES[report.outcome]

    lines = [
        f"[bold]{report.pipeline_name}[/bold]",
        f"Service: {report.cluster_name}/{report.service_name}",
        f"Stage: {report.stage.value if report.stage else '-'}",
        f"Result: [{color}]{report.result}[/{color}]",
    ]
    if report.image and report.image.digest:
        lines.append(f"Image: {report.image.pinned_name}")
    if report.handle:
        lines.append(f"Deployment: {report.handle.handle_id}")
        lines.append(f"Revision: {report.handle.revision_arn}")
    if report.watch:
        lines.append(f"Polls: {report.watch.polls}")
    if report.last_status:
        last = report.last_status
        lines.append(f"Tasks: {last.running_count}/{last.desired_count} running, {last.healthy_count} healthy")
    lines.append(f"Duration: {report.duration:.2f}s")

    console.print(Panel.fit("\n".join(lines), title=title, border_style=color))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for stage_result in report.stages:
        table.add_row(
            stage_result.stage.value,
            f"{STAGE_MARKS[stage_result.status]} {stage_result.status.value}",
            f"{stage_result.duration:.1f}s",
            stage_result.error.error_kind if stage_result.error else "",
        )
    console.print(table)

    if report.failure:
        console.print(
            f"\n[{color}]{report.failure['stage']} failed ({report.failure['errorKind']}):[/{color}] "
            f"{escape(report.failure['message'])}",
            markup=True,
            highlight=False,
        )
        for suggestion in report.error.suggestions:
            console.print(f"  • {escape(suggestion)}", highlight=False)

    if report.outcome == PipelineOutcome.DEPLOYED_BUT_UNSTABLE:
        console.print(
            "\n[yellow]The new revision was submitted and may still be running. "
            "Check the service and roll back if needed.[/yellow]"
        )


@click.command(name="deploy-pipeline")
@click.option('--config', 'config_path', default='pipeline.yaml', show_default=True,
              help='Path to pipeline configuration file')
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-dir', default='.deploy-pipeline/logs', show_default=True,
              help='Directory for JSON log files')
@click.option('--output', 'output_format', default='table', type=click.Choice(['table', 'json']),
              help='Report format')
@click.option('--no-jitter', is_flag=True, help='Poll at exactly the configured interval')
def main(config_path, profile, region, log_level, log_dir, output_format, no_jitter):
    """Push a built image and roll it out to an ECS service."""
    # Keep stdout clean for the JSON report
    setup_logging(log_level, log_dir, stream=sys.stderr if output_format == 'json' else None)

    config = load_config(config_path)
    if no_jitter:
        config = config.model_copy(update={'watch': config.watch.model_copy(update={'jitter': False})})

    cancel_event = threading.Event()
    install_cancel_handlers(cancel_event)

    try:
        coordinator = create_coordinator(config, profile=profile, region=region, cancel_event=cancel_event)
        report = coordinator.run(config)
    except Exception as e:
        logger.exception("Unexpected error during pipeline run")
        failure = {'stage': 'unknown', 'errorKind': type(e).__name__, 'message': str(e)}
        if output_format == 'json':
            console.print_json(data={'outcome': 'failed', 'exit_code': EXIT_UNEXPECTED, 'failure': failure})
        else:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}", highlight=False)
        sys.exit(EXIT_UNEXPECTED)

    if output_format == 'json':
        console.print_json(data=report.to_dict())
    else:
        render_report(report)

    sys.exit(report.exit_code)


if __name__ == '__main__':
    main()
