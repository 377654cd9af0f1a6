"""Rolling deployment of an ECS service with ECR image promotion."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ulid import ULID

from shipctl.aws.images import DEFAULT_TAG, ImagePromoter, ImageReference
from shipctl.aws.revisions import revision_of, specify_revision
from shipctl.aws.services import DEFAULT_POLL_INTERVAL, ServiceUpdater
from shipctl.aws.task_definitions import TaskDefinitionBuilder, build_candidate
from shipctl.exceptions import ConflictError, ValidationError
from shipctl.state.history import DeploymentHistoryStore
from shipctl.utils.decorators import log_operation

logger = logging.getLogger(__name__)


def generate_deployment_id() -> str:
    """Deployment-unique, time-ordered image tag."""
    return str(ULID())


def require_options(**options) -> None:
    """Fail before any API call when a required option is empty."""
    for name, value in options.items():
        if not value:
            raise ValidationError(f"--{name.replace('_', '-')} is required")


@dataclass
class DeployResult:
    """Outcome of a successful deployment."""
    deployment_id: str
    previous_revision: int
    revision: int
    task_definition_arn: str
    promoted_images: List[ImageReference] = field(default_factory=list)


class Deployer:
    """Ships a new task definition revision to an ECS service.

    Steps, each finishing before the next starts:
    describe service -> resolve source revision -> promote images ->
    register draft -> record PENDING -> update service -> wait for
    convergence -> record DEPLOYED.
    """

    def __init__(self, ecs_client, ecr_client, history: DeploymentHistoryStore, sink,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 first_container_only: bool = False,
                 id_factory: Callable[[], str] = generate_deployment_id):
        self.updater = ServiceUpdater(ecs_client, poll_interval)
        self.builder = TaskDefinitionBuilder(ecs_client)
        self.promoter = ImagePromoter(ecr_client, first_container_only)
        self.history = history
        self.sink = sink
        self.first_container_only = first_container_only
        self.id_factory = id_factory

    @log_operation("ECS service deployment")
    def deploy(self, cluster: str, service_name: str, revision: int = 0,
               base_tag: str = DEFAULT_TAG,
               selectors: Optional[Dict[str, str]] = None) -> DeployResult:
        """Deploy ``service_name`` from its current (or an explicit) revision.

        Args:
            cluster: ECS cluster name or ARN
            service_name: ECS service name
            revision: Source task definition revision, 0 for the running one
            base_tag: ECR tag promoted for repositories without a selector
            selectors: Repository -> tag overrides from ``--image``
        """
        require_options(cluster=cluster, service_name=service_name)

        service = self.updater.describe_service(cluster, service_name)
        if len(service.get('deployments', [])) > 1:
            raise ConflictError(f"{service_name} is currently deployed")
        previous_revision = revision_of(service['taskDefinition'])

        deployment_id = self.id_factory()
        logger.info(f"Deployment id for {cluster}/{service_name}: {deployment_id}")

        source_arn = specify_revision(revision, service['taskDefinition'])
        task_def = self.builder.describe_task_definition(source_arn)

        # Validated before anything is promoted
        candidate = build_candidate(task_def, deployment_id, self.first_container_only)

        promoted = self.promoter.promote(task_def, deployment_id, base_tag, selectors)
        registered = self.builder.register_task_definition(candidate)

        self.sink.log(
            f"task definition registered successfully: "
            f"revision {task_def['revision']} -> {registered['revision']}\n"
        )

        self.history.push_pending(
            registered['revision'],
            f"deploy: {previous_revision} -> {registered['revision']}"
        )

        self.updater.submit(service, registered['taskDefinitionArn'])
        self.sink.log("service updating\n")

        self.updater.await_convergence(cluster, service_name, self.sink)
        self.history.mark_deployed(registered['revision'])

        self.sink.success("service updated successfully\n")

        return DeployResult(
            deployment_id=deployment_id,
            previous_revision=previous_revision,
            revision=registered['revision'],
            task_definition_arn=registered['taskDefinitionArn'],
            promoted_images=promoted,
        )
