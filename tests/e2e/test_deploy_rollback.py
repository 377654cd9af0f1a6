"""
End-to-end deploy and rollback workflows.

ECR and SSM are served by moto, ECS by the scripted fake client so each
rollout phase can be observed.
"""
import pytest
from botocore.exceptions import ClientError

from shipctl.exceptions import ConflictError, GuardError, NotFoundError, ValidationError
from shipctl.orchestration.deploy import Deployer
from shipctl.orchestration.rollback import RollbackManager
from shipctl.state.history import SSMHistoryStore
from shipctl.state.models import DeploymentRecord, DeploymentStatus
from tests.consts import TEST_CLUSTER, TEST_REGISTRY, TEST_REPOSITORY, TEST_SERVICE_NAME

pytestmark = pytest.mark.e2e

DEPLOYMENT_ID = "01JABCDEFGHJKMNPQRSTVWXYZ0"
PENDING = DeploymentStatus.PENDING
DEPLOYED = DeploymentStatus.DEPLOYED


def _arn(revision):
    return f"arn:aws:ecs:us-east-1:123456789012:task-definition/web:{revision}"


@pytest.fixture
def history(ssm_client):
    return SSMHistoryStore(ssm_client, TEST_CLUSTER, TEST_SERVICE_NAME)


class TestDeployWorkflow:

    @pytest.fixture(autouse=True)
    def setup(self, ecs_fixtures, ecr_client, ecr_repository, history, recording_sink):
        self.fixtures = ecs_fixtures
        self.client = ecs_fixtures.client
        self.ecr_client = ecr_client
        self.history = history
        self.sink = recording_sink
        ecs_fixtures.add_task_definition(6, [
            ecs_fixtures.container("app", ecs_fixtures.managed_image()),
            ecs_fixtures.container("proxy", "nginx:1.25"),
        ])
        self.deployer = Deployer(self.client, ecr_client, history, recording_sink,
                                 poll_interval=0, id_factory=lambda: DEPLOYMENT_ID)

    def test_happy_path(self):
        self.client.service_states = [
            self.fixtures.service(_arn(6)),
            self.fixtures.service(_arn(7), deployments=2),
            self.fixtures.service(_arn(7)),
        ]
        snapshots = []
        self.client.on_describe_services = lambda n: snapshots.append(self.history.pull()) if n == 2 else None

        result = self.deployer.deploy(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert result.revision == 7
        assert result.previous_revision == 6
        assert snapshots == [[DeploymentRecord(7, PENDING, "deploy: 6 -> 7")]]
        assert self.history.pull() == [DeploymentRecord(7, DEPLOYED, "deploy: 6 -> 7")]

        registered = self.client.calls['register_task_definition'][0]
        assert [c['image'] for c in registered['containerDefinitions']] == \
            [f"{TEST_REGISTRY}/{TEST_REPOSITORY}:{DEPLOYMENT_ID}"]

        images = self.ecr_client.batch_get_image(
            repositoryName=TEST_REPOSITORY,
            imageIds=[{'imageTag': DEPLOYMENT_ID}]
        )['images']
        assert len(images) == 1

        assert self.client.calls['update_service'][0]['taskDefinition'] == _arn(7)
        assert self.sink.texts("log")[0] == "task definition registered successfully: revision 6 -> 7\n"
        assert self.sink.texts("success") == ["service updated successfully\n"]

    def test_explicit_source_revision(self):
        self.fixtures.add_task_definition(4, [self.fixtures.container("app", self.fixtures.managed_image())])
        self.client.service_states = [self.fixtures.service(_arn(6))]

        self.deployer.deploy(TEST_CLUSTER, TEST_SERVICE_NAME, revision=4)

        assert self.client.calls['describe_task_definition'][0] == _arn(4)
        assert self.sink.texts("log")[0] == "task definition registered successfully: revision 4 -> 7\n"

    def test_service_already_rolling_out(self):
        self.client.service_states = [self.fixtures.service(_arn(6), deployments=2)]

        with pytest.raises(ConflictError, match="is currently deployed"):
            self.deployer.deploy(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert self.client.calls['register_task_definition'] == []
        assert self.history.pull() == []

    def test_missing_base_tag_stops_before_register(self):
        self.client.service_states = [self.fixtures.service(_arn(6))]

        with pytest.raises(NotFoundError):
            self.deployer.deploy(TEST_CLUSTER, TEST_SERVICE_NAME, base_tag="release")

        assert self.client.calls['register_task_definition'] == []
        assert self.client.calls['update_service'] == []
        assert self.history.pull() == []

    def test_describe_failure_during_rollout_leaves_pending_record(self):
        self.client.service_states = [
            self.fixtures.service(_arn(6)),
            self.fixtures.service(_arn(7), deployments=2),
        ]
        throttled = ClientError(
            {'Error': {'Code': 'ThrottlingException', 'Message': 'Rate exceeded'}},
            'DescribeServices'
        )

        def fail_after_first(n):
            if n == 1:
                self.client.describe_error = throttled
        self.client.on_describe_services = fail_after_first

        with pytest.raises(ClientError) as exc:
            self.deployer.deploy(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert exc.value is throttled
        # No retry of the failed describe
        assert len(self.client.calls['describe_services']) == 2
        assert len(self.client.calls['update_service']) == 1
        assert self.history.pull() == [DeploymentRecord(7, PENDING, "deploy: 6 -> 7")]
        assert self.sink.texts("success") == []

    def test_malformed_service_arn_fails_before_promotion(self):
        self.client.service_states = [
            self.fixtures.service("arn:aws:ecs:us-east-1:123456789012:task-definition/web")
        ]

        with pytest.raises(ValidationError):
            self.deployer.deploy(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert self.client.calls['describe_task_definition'] == []
        assert self.client.calls['register_task_definition'] == []
        images = self.ecr_client.batch_get_image(
            repositoryName=TEST_REPOSITORY,
            imageIds=[{'imageTag': DEPLOYMENT_ID}]
        )['images']
        assert images == []


class TestRollbackWorkflow:

    @pytest.fixture(autouse=True)
    def setup(self, ecs_fixtures, history, recording_sink):
        self.fixtures = ecs_fixtures
        self.client = ecs_fixtures.client
        self.history = history
        self.sink = recording_sink
        for revision in (5, 7):
            ecs_fixtures.add_task_definition(revision, [
                ecs_fixtures.container("app", ecs_fixtures.managed_image(tag=f"r{revision}"))
            ])
        self.manager = RollbackManager(self.client, history, recording_sink, poll_interval=0)

    def test_returns_to_previous_revision(self):
        self.history.push_pending(5, "deploy: 4 -> 5")
        self.history.mark_deployed(5)
        self.history.push_pending(7, "deploy: 5 -> 7")
        self.history.mark_deployed(7)
        self.client.service_states = [self.fixtures.service(_arn(7))]

        result = self.manager.rollback(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert result.to_revision == 5
        assert self.client.calls['update_service'][0]['taskDefinition'] == _arn(5)
        assert self.history.pull() == [
            DeploymentRecord(5, DEPLOYED, "deploy: 4 -> 5"),
            DeploymentRecord(7, DEPLOYED, "deploy: 5 -> 7"),
            DeploymentRecord(5, PENDING, "rollback: 7 -> 5"),
        ]
        assert self.sink.texts("log")[0] == "rollback: revision 7 -> 5\n"

    def test_single_record_cannot_roll_back(self):
        self.history.push_pending(7, "deploy: 6 -> 7")
        self.client.service_states = [self.fixtures.service(_arn(7))]

        with pytest.raises(GuardError, match="can not found a prev state"):
            self.manager.rollback(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert self.client.calls['update_service'] == []

    def test_rollout_in_progress(self):
        self.history.push_pending(5, "deploy: 4 -> 5")
        self.history.push_pending(7, "deploy: 5 -> 7")
        self.client.service_states = [self.fixtures.service(_arn(7), deployments=2)]

        with pytest.raises(GuardError):
            self.manager.rollback(TEST_CLUSTER, TEST_SERVICE_NAME)

        assert self.client.calls['update_service'] == []
