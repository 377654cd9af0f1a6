import pytest

from shipctl.aws.services import ServiceUpdater, is_converged
from shipctl.exceptions import ConflictError, NotFoundError
from tests.consts import TEST_CLUSTER, TEST_SERVICE_NAME

ARN_6 = "arn:aws:ecs:us-east-1:123456789012:task-definition/web:6"
ARN_7 = "arn:aws:ecs:us-east-1:123456789012:task-definition/web:7"


def test_is_converged(ecs_fixtures):
    assert is_converged(ecs_fixtures.service(ARN_7))
    assert not is_converged(ecs_fixtures.service(ARN_7, deployments=2))
    assert not is_converged(ecs_fixtures.service(ARN_7, running=1, desired=2))


def test_wait_continues_while_two_deployments(ecs_fixtures, recording_sink):
    client = ecs_fixtures.client
    client.service_states = [
        ecs_fixtures.service(ARN_7, deployments=2),
        ecs_fixtures.service(ARN_7, deployments=2),
        ecs_fixtures.service(ARN_7, running=1),
        ecs_fixtures.service(ARN_7),
    ]
    updater = ServiceUpdater(client, poll_interval=0)

    service = updater.await_convergence(TEST_CLUSTER, TEST_SERVICE_NAME, recording_sink)

    assert service['taskDefinition'] == ARN_7
    assert len(client.calls['describe_services']) == 4
    logs = recording_sink.texts("log")
    assert len(logs) == 4
    assert all(m.startswith("still service updating... [") for m in logs)


def test_submit_carries_over_service_settings(ecs_fixtures):
    client = ecs_fixtures.client
    service = ecs_fixtures.service(ARN_6, desired=3, running=3)
    updater = ServiceUpdater(client, poll_interval=0)

    updater.submit(service, ARN_7)

    call = client.calls['update_service'][0]
    assert call['taskDefinition'] == ARN_7
    assert call['desiredCount'] == 3
    assert call['deploymentConfiguration'] == service['deploymentConfiguration']


def test_submit_during_rollout_conflicts(ecs_fixtures):
    updater = ServiceUpdater(ecs_fixtures.client, poll_interval=0)

    with pytest.raises(ConflictError):
        updater.submit(ecs_fixtures.service(ARN_6, deployments=2), ARN_7)

    assert ecs_fixtures.client.calls['update_service'] == []


def test_describe_unknown_service(ecs_fixtures):
    updater = ServiceUpdater(ecs_fixtures.client, poll_interval=0)

    with pytest.raises(NotFoundError):
        updater.describe_service(TEST_CLUSTER, "missing")


def test_describe_skips_inactive_service(ecs_fixtures):
    inactive = ecs_fixtures.service(ARN_6)
    inactive['status'] = 'INACTIVE'
    ecs_fixtures.client.service_states = [inactive]
    updater = ServiceUpdater(ecs_fixtures.client, poll_interval=0)

    with pytest.raises(NotFoundError):
        updater.describe_service(TEST_CLUSTER, TEST_SERVICE_NAME)
