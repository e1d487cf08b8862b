"""Orchestrator module: deployment driver, stability watcher and pipeline coordinator."""

from deploy_pipeline.orchestrator.driver import DeploymentDriver
from deploy_pipeline.orchestrator.watcher import StabilityWatcher, WatchResult, WatchState
from deploy_pipeline.orchestrator.coordinator import (
    EXIT_CODES,
    EXIT_SUCCESS,
    EXIT_UNEXPECTED,
    PipelineCoordinator,
    PipelineOutcome,
    PipelineReport,
    PipelineStage,
    StageResult,
    StageStatus,
)

__all__ = [
    # Deploy
    'DeploymentDriver',

    # Watch
    'StabilityWatcher',
    'WatchResult',
    'WatchState',

    # Coordination
    'PipelineCoordinator',
    'PipelineOutcome',
    'PipelineReport',
    'PipelineStage',
    'StageResult',
    'StageStatus',
    'EXIT_CODES',
    'EXIT_SUCCESS',
    'EXIT_UNEXPECTED',
]
