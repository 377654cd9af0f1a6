"""
ECS Task Definition Builder

Purpose: derive the candidate task definition of a deployment from the one the
service currently runs, and register it with ECS.

Main class: TaskDefinitionBuilder (describe_*: fetch from ECS, register_*:
register and return the new task definition). build_candidate() produces the
draft: every managed container has its image pointed at the deployment tag,
unmanaged containers are left out of the draft.

Key features: drafts are frozen TaskDefinitionConfig values built from the
source plus overrides, so the described task definition is never mutated.
Server-assigned fields (ARN, revision, status, registration metadata) never
make it into a draft.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, Optional, Tuple

from botocore.exceptions import ClientError

from shipctl.aws.images import eligible_containers, parse_image
from shipctl.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Registerable fields carried over verbatim when present on the source
EXTRA_REGISTER_FIELDS = (
    'pidMode',
    'ipcMode',
    'proxyConfiguration',
    'inferenceAccelerators',
    'ephemeralStorage',
    'runtimePlatform',
)


@dataclass(frozen=True)
class TaskDefinitionConfig:
    """Registration payload of an ECS task definition."""
    family: str
    container_definitions: Tuple[Dict[str, Any], ...] = ()
    network_mode: Optional[str] = None
    placement_constraints: Tuple[Dict[str, Any], ...] = ()
    task_role_arn: Optional[str] = None
    execution_role_arn: Optional[str] = None
    volumes: Tuple[Dict[str, Any], ...] = ()
    requires_compatibilities: Tuple[str, ...] = ()
    cpu: Optional[str] = None
    memory: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_task_definition(cls, task_def: Dict[str, Any]) -> "TaskDefinitionConfig":
        """Copy the registerable fields of a described task definition."""
        return cls(
            family=task_def['family'],
            container_definitions=tuple(task_def.get('containerDefinitions', [])),
            network_mode=task_def.get('networkMode'),
            placement_constraints=tuple(task_def.get('placementConstraints', [])),
            task_role_arn=task_def.get('taskRoleArn'),
            execution_role_arn=task_def.get('executionRoleArn'),
            volumes=tuple(task_def.get('volumes', [])),
            requires_compatibilities=tuple(task_def.get('requiresCompatibilities', [])),
            cpu=task_def.get('cpu'),
            memory=task_def.get('memory'),
            extra={k: task_def[k] for k in EXTRA_REGISTER_FIELDS if k in task_def},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to register_task_definition keyword arguments."""
        task_def = {
            'family': self.family,
            'containerDefinitions': list(self.container_definitions),
        }

        # Add optional fields if provided
        if self.network_mode:
            task_def['networkMode'] = self.network_mode
        if self.placement_constraints:
            task_def['placementConstraints'] = list(self.placement_constraints)
        if self.task_role_arn:
            task_def['taskRoleArn'] = self.task_role_arn
        if self.execution_role_arn:
            task_def['executionRoleArn'] = self.execution_role_arn
        if self.volumes:
            task_def['volumes'] = list(self.volumes)
        if self.requires_compatibilities:
            task_def['requiresCompatibilities'] = list(self.requires_compatibilities)
        if self.cpu:
            task_def['cpu'] = self.cpu
        if self.memory:
            task_def['memory'] = self.memory
        task_def.update(self.extra)

        return task_def


def build_candidate(task_def: Dict[str, Any], unique_id: str,
                    first_container_only: bool = False) -> TaskDefinitionConfig:
    """Build the draft that ships ``unique_id`` images.

    Each container definition is shallow-copied; managed containers get
    ``image = <name>:<unique_id>`` and nothing else changes. Containers whose
    image is not hosted in ECR are dropped from the draft.
    """
    source = TaskDefinitionConfig.from_task_definition(task_def)

    containers = []
    for container in eligible_containers(task_def, first_container_only):
        ref = parse_image(container['image'])
        if not ref.is_managed:
            logger.warning(
                f"Dropping container {container.get('name')} from {source.family}: "
                f"{container['image']} is not an ECR image"
            )
            continue

        candidate = dict(container)
        candidate['image'] = ref.with_tag(unique_id)
        containers.append(candidate)

    if not containers:
        raise ValidationError(f"task definition {source.family} has no container image hosted in ECR")

    return replace(source, container_definitions=tuple(containers))


class TaskDefinitionBuilder:
    """Describes and registers ECS task definitions."""

    def __init__(self, ecs_client):
        self.ecs_client = ecs_client

    def describe_task_definition(self, task_definition: str) -> Dict[str, Any]:
        """Describe a task definition by ARN or ``family[:revision]``."""
        try:
            response = self.ecs_client.describe_task_definition(taskDefinition=task_definition)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ClientException':
                raise NotFoundError(f"task definition {task_definition} is not found") from e
            logger.error(f"Failed to describe task definition {task_definition}: {e}")
            raise

        return response['taskDefinition']

    def register_task_definition(self, config: TaskDefinitionConfig) -> Dict[str, Any]:
        """Register ``config`` with ECS. Returns the registered task definition."""
        try:
            response = self.ecs_client.register_task_definition(**config.to_dict())
        except ClientError as e:
            logger.error(f"Failed to register task definition {config.family}: {e}")
            raise

        registered = response['taskDefinition']
        logger.info(f"Registered task definition: {registered['taskDefinitionArn']}")
        return registered
