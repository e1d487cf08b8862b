"""Shared fixtures for pipeline tests."""

import copy

import pytest

from deploy_pipeline.config.parser import Config
from deploy_pipeline.control_plane.base import DeploymentHandle

from fakes import PREVIOUS_ARN, REGISTRY_HOST, REVISION_ARN, FakeClock

BOOKMANAGER_CONFIG = {
    "pipeline": {"name": "bookmanager-release"},
    "aws": {"region": "us-east-1"},
    "registry": {
        "host": REGISTRY_HOST,
        "repository": "bookmanager",
        "tag": "1.4.0",
        "source_image": "bookmanager:latest",
    },
    "service": {
        "cluster": "production",
        "name": "bookmanager",
        "desiredCount": 2,
        "overrides": {"cpu": 256, "memory": 512, "environment": {"SPRING_PROFILES_ACTIVE": "prod"}},
    },
    "watch": {"timeoutSeconds": 300, "pollIntervalSeconds": 15, "jitter": False},
    "retry": {"max_retries": 2, "base_delay": 1.0, "max_delay": 5.0},
}


@pytest.fixture
def config_data():
    """Raw bookmanager configuration, safe to mutate."""
    return copy.deepcopy(BOOKMANAGER_CONFIG)


@pytest.fixture
def pipeline_config(config_data):
    return Config.parse(config_data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def handle():
    return DeploymentHandle(
        handle_id="h1",
        cluster_name="production",
        service_name="bookmanager",
        revision_arn=REVISION_ARN,
        desired_count=2,
        previous_revision_arn=PREVIOUS_ARN,
    )
