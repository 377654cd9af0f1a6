"""
ECS service rollback management.

Returns a service to the revision recorded just before the latest one in its
deployment history.
"""
import logging
from dataclasses import dataclass
from typing import List

from shipctl.aws.revisions import specify_revision
from shipctl.aws.services import DEFAULT_POLL_INTERVAL, ServiceUpdater
from shipctl.aws.task_definitions import TaskDefinitionBuilder
from shipctl.exceptions import GuardError
from shipctl.orchestration.deploy import require_options
from shipctl.state.history import DeploymentHistoryStore
from shipctl.state.models import DeploymentRecord
from shipctl.utils.decorators import log_operation

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    """Outcome of a successful rollback."""
    from_revision: int
    to_revision: int
    task_definition_arn: str


class RollbackManager:
    """Manages rollback operations for ECS services."""

    def __init__(self, ecs_client, history: DeploymentHistoryStore, sink,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.updater = ServiceUpdater(ecs_client, poll_interval)
        self.builder = TaskDefinitionBuilder(ecs_client)
        self.history = history
        self.sink = sink

    @staticmethod
    def can_rollback(records: List[DeploymentRecord]) -> bool:
        """A rollback needs a current and a previous record."""
        return len(records) >= 2

    @log_operation("ECS service rollback")
    def rollback(self, cluster: str, service_name: str) -> RollbackResult:
        """Roll ``service_name`` back to the second most recent recorded revision.

        The history gets a new PENDING record with a ``rollback: A -> B``
        cause once the service has converged; no record is marked DEPLOYED.
        """
        require_options(cluster=cluster, service_name=service_name)

        records = self.history.pull()
        if not self.can_rollback(records):
            raise GuardError("can not found a prev state")

        prev_state = records[-2]
        state = records[-1]

        service = self.updater.describe_service(cluster, service_name)
        if len(service.get('deployments', [])) > 1:
            raise GuardError(f"{service_name} is currently deploying")

        task_def_arn = specify_revision(prev_state.revision, service['taskDefinition'])
        task_def = self.builder.describe_task_definition(task_def_arn)

        self.sink.log(f"rollback: revision {state.revision} -> {prev_state.revision}\n")

        self.updater.submit(service, task_def['taskDefinitionArn'])
        self.sink.log("service updating\n")

        self.updater.await_convergence(cluster, service_name, self.sink)

        self.history.push_pending(
            prev_state.revision,
            f"rollback: {state.revision} -> {prev_state.revision}",
            allow_duplicate=True
        )

        self.sink.success("service updated successfully\n")

        return RollbackResult(
            from_revision=state.revision,
            to_revision=prev_state.revision,
            task_definition_arn=task_def['taskDefinitionArn'],
        )
