"""AWS client management."""
import os
import boto3
import logging
from typing import Any

from shipctl.config.settings import get_settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Singleton manager for AWS service clients."""
    _instance = None
    _clients = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AWSClientManager, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize the client manager with settings."""
        self.settings = get_settings()

        # Fails here, before any client exists, when no region is configured
        self.region = self.settings.require_region()
        self.endpoint_url = self.settings.aws_endpoint_url

        logger.info("Initializing AWSClientManager")
        logger.info(f"  Region: {self.region}")
        if self.endpoint_url:
            logger.info(f"  Endpoint: {self.endpoint_url}")

    def get_client(self, service_name: str) -> Any:
        """Get or create an AWS service client."""
        if service_name in self._clients:
            return self._clients[service_name]

        client_kwargs = {
            'region_name': self.region
        }
        if self.endpoint_url:
            client_kwargs['endpoint_url'] = self.endpoint_url

        aws_profile = os.environ.get('AWS_PROFILE')
        try:
            if aws_profile:
                session = boto3.Session(profile_name=aws_profile)
                client = session.client(service_name, **client_kwargs)
                logger.debug(f"Created {service_name} client using profile: {aws_profile}")
            else:
                client = boto3.client(service_name, **client_kwargs)
                logger.debug(f"Created {service_name} client")
        except Exception as e:
            logger.error(f"Error creating {service_name} client: {str(e)}")
            raise

        self._clients[service_name] = client
        return client

    def clear_clients(self):
        """Clear all cached clients."""
        self._clients.clear()
        logger.debug("Cleared all AWS clients")

    @classmethod
    def reset(cls):
        """Drop the singleton so the next access re-reads settings."""
        if cls._instance is not None:
            cls._instance.clear_clients()
        cls._instance = None


# Convenience functions for common operations

def get_ecs_client():
    """Get the ECS client."""
    return AWSClientManager().get_client('ecs')


def get_ecr_client():
    """Get the ECR client."""
    return AWSClientManager().get_client('ecr')


def get_ssm_client():
    """Get the SSM client."""
    return AWSClientManager().get_client('ssm')
