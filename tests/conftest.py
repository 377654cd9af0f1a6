import json

import boto3
import pytest
from moto import mock_aws

from shipctl.aws.clients import AWSClientManager
from shipctl.config.settings import get_settings
from tests.consts import TEST_REGION, TEST_REPOSITORY

from tests.fixtures.ecs_fixtures import ecs_fixtures, recording_sink  # noqa: F401

SAMPLE_MANIFEST = {
    "schemaVersion": 2,
    "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
    "config": {
        "mediaType": "application/vnd.docker.container.image.v1+json",
        "size": 1512,
        "digest": "sha256:" + "a" * 64,
    },
    "layers": [
        {
            "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
            "size": 2811478,
            "digest": "sha256:" + "b" * 64,
        }
    ],
}


@pytest.fixture(autouse=True)
def aws_environment(monkeypatch):
    """Fake credentials and a region for every test; fresh settings and clients."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_REGION", TEST_REGION)
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    monkeypatch.setenv("SHIPCTL_POLL_INTERVAL", "0")
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    monkeypatch.delenv("SHIPCTL_SLACK_WEBHOOK_URL", raising=False)

    get_settings.cache_clear()
    AWSClientManager.reset()
    yield
    get_settings.cache_clear()
    AWSClientManager.reset()


@pytest.fixture
def mocked_aws():
    with mock_aws():
        yield


@pytest.fixture
def ssm_client(mocked_aws):
    return boto3.client("ssm", region_name=TEST_REGION)


@pytest.fixture
def ecr_client(mocked_aws):
    return boto3.client("ecr", region_name=TEST_REGION)


@pytest.fixture
def sample_manifest():
    return json.dumps(SAMPLE_MANIFEST)


@pytest.fixture
def ecr_repository(ecr_client, sample_manifest):
    """An ECR repository holding one image tagged ``latest``."""
    ecr_client.create_repository(repositoryName=TEST_REPOSITORY)
    ecr_client.put_image(
        repositoryName=TEST_REPOSITORY,
        imageManifest=sample_manifest,
        imageTag="latest",
    )
    return TEST_REPOSITORY
