"""ECS service updates and rollout convergence polling."""
import time
import logging
from typing import Dict, Any

from botocore.exceptions import ClientError

from shipctl.exceptions import ConflictError, NotFoundError
from shipctl.utils.decorators import format_elapsed

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10


def is_converged(service: Dict[str, Any]) -> bool:
    """One active deployment and every desired task running."""
    return (len(service.get('deployments', [])) == 1 and
            service.get('runningCount') == service.get('desiredCount'))


class ServiceUpdater:
    """Submits task definition changes to an ECS service and waits for the rollout."""

    def __init__(self, ecs_client, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.ecs_client = ecs_client
        self.poll_interval = poll_interval

    def describe_service(self, cluster: str, service_name: str) -> Dict[str, Any]:
        """Describe one service; NotFoundError when ECS does not know it."""
        try:
            response = self.ecs_client.describe_services(
                cluster=cluster,
                services=[service_name]
            )
        except ClientError as e:
            logger.error(f"Failed to describe service {service_name} in {cluster}: {e}")
            raise

        services = [s for s in response.get('services', []) if s.get('status') != 'INACTIVE']
        if not services:
            raise NotFoundError(f"service {service_name} is not found in cluster {cluster}")

        return services[0]

    def submit(self, service: Dict[str, Any], task_definition_arn: str) -> Dict[str, Any]:
        """Point the service at ``task_definition_arn``.

        Desired count and deployment configuration are carried over from the
        described service unchanged.
        """
        if len(service.get('deployments', [])) > 1:
            raise ConflictError(f"{service['serviceName']} is currently deploying")

        params = {
            'cluster': service['clusterArn'],
            'service': service['serviceName'],
            'taskDefinition': task_definition_arn,
            'desiredCount': service['desiredCount'],
        }
        if service.get('deploymentConfiguration'):
            params['deploymentConfiguration'] = service['deploymentConfiguration']

        try:
            response = self.ecs_client.update_service(**params)
        except ClientError as e:
            logger.error(f"Failed to update service {service['serviceName']}: {e}")
            raise

        logger.info(f"Updated service {service['serviceName']} to {task_definition_arn}")
        return response['service']

    def await_convergence(self, cluster: str, service_name: str, sink) -> Dict[str, Any]:
        """Poll until the rollout converges.

        There is no upper bound on the wait. A failing describe call ends the
        wait with that error.
        """
        start = time.monotonic()
        while True:
            time.sleep(self.poll_interval)

            service = self.describe_service(cluster, service_name)

            elapsed = format_elapsed(time.monotonic() - start)
            sink.log(f"still service updating... [{elapsed}]\n")

            if is_converged(service):
                return service

            logger.debug(
                f"{service_name}: {len(service.get('deployments', []))} deployments, "
                f"{service.get('runningCount')}/{service.get('desiredCount')} running"
            )
