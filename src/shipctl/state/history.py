"""
Deployment history management.

Keeps a bounded, ordered record of deployment attempts per
``(cluster, service)`` so a later rollback knows which revision to return to.
The whole history is rewritten on every change. Backends provide no locking:
two concurrent deploys of the same service can lose an update (last writer
wins).
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from botocore.exceptions import ClientError

from shipctl.aws.clients import get_ssm_client
from shipctl.config.settings import HISTORY_BACKENDS, get_settings
from shipctl.exceptions import (
    DuplicateRevisionError,
    ShipctlError,
    StateNotFoundError,
    ValidationError,
)
from shipctl.state.models import DeploymentRecord, DeploymentStatus

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 5
DEFAULT_PARAMETER_PREFIX = "deploy-state"


class DeploymentHistoryStore(ABC):
    """Bounded deployment history of one service.

    Subclasses only move the serialized blob in and out of their backend;
    ordering, truncation and status transitions live here.
    """

    def __init__(self, cluster: str, service_name: str,
                 limit: int = DEFAULT_HISTORY_LIMIT):
        self.cluster = cluster
        self.service_name = service_name
        self.limit = limit

    @property
    def key(self) -> str:
        return f"{self.cluster}.{self.service_name}"

    @abstractmethod
    def _read(self) -> Optional[str]:
        """Return the stored blob, or None when nothing was stored yet."""

    @abstractmethod
    def _write(self, blob: str) -> None:
        """Overwrite the stored blob."""

    def pull(self) -> List[DeploymentRecord]:
        """Stored records, oldest first. Empty for a first-ever deploy."""
        blob = self._read()
        if blob is None:
            return []

        try:
            data = json.loads(blob)
        except json.JSONDecodeError as e:
            raise ShipctlError(f"deployment history of {self.key} is not valid JSON: {e}") from e

        return [DeploymentRecord.from_dict(item) for item in data or []]

    def push_pending(self, revision: int, cause: str,
                     allow_duplicate: bool = False) -> List[DeploymentRecord]:
        """Append a PENDING record and persist the truncated history.

        Deploys never reuse a revision already in the history window;
        ``allow_duplicate`` is for rollbacks, which re-enter an older revision.
        """
        records = self.pull()
        if not allow_duplicate:
            for record in records:
                if record.revision == revision:
                    raise DuplicateRevisionError(
                        f"validation error: revision {revision} is already exists"
                    )

        records.append(DeploymentRecord(revision=revision,
                                        status=DeploymentStatus.PENDING,
                                        cause=cause))
        records = records[-self.limit:]

        self._persist(records)
        logger.info(f"Recorded pending revision {revision} for {self.key}: {cause}")
        return records

    def mark_deployed(self, revision: int) -> List[DeploymentRecord]:
        """Flip the most recent PENDING record of ``revision`` to DEPLOYED."""
        records = self.pull()
        for record in reversed(records):
            if record.revision == revision and record.status == DeploymentStatus.PENDING:
                record.status = DeploymentStatus.DEPLOYED
                self._persist(records)
                logger.info(f"Marked revision {revision} of {self.key} as deployed")
                return records

        raise StateNotFoundError(f"can not found a pending state of revision {revision}")

    def _persist(self, records: List[DeploymentRecord]) -> None:
        self._write(json.dumps([record.to_dict() for record in records]))


class SSMHistoryStore(DeploymentHistoryStore):
    """History stored as a String parameter in SSM Parameter Store."""

    def __init__(self, ssm_client, cluster: str, service_name: str,
                 limit: int = DEFAULT_HISTORY_LIMIT,
                 prefix: str = DEFAULT_PARAMETER_PREFIX):
        super().__init__(cluster, service_name, limit)
        self.ssm_client = ssm_client
        self.prefix = prefix

    @property
    def parameter_name(self) -> str:
        return f"{self.prefix}.{self.cluster}.{self.service_name}"

    def _exists(self) -> bool:
        name = self.parameter_name
        paginator = self.ssm_client.get_paginator('describe_parameters')
        pages = paginator.paginate(
            ParameterFilters=[
                {'Key': 'Name', 'Option': 'BeginsWith', 'Values': [name]}
            ]
        )
        for page in pages:
            for parameter in page.get('Parameters', []):
                if parameter['Name'] == name:
                    return True
        return False

    def _read(self) -> Optional[str]:
        try:
            if not self._exists():
                return None
            response = self.ssm_client.get_parameter(
                Name=self.parameter_name,
                WithDecryption=False
            )
        except ClientError as e:
            logger.error(f"Failed to read parameter {self.parameter_name}: {e}")
            raise

        return response['Parameter']['Value']

    def _write(self, blob: str) -> None:
        try:
            self.ssm_client.put_parameter(
                Name=self.parameter_name,
                Type='String',
                Value=blob,
                Overwrite=True
            )
        except ClientError as e:
            logger.error(f"Failed to write parameter {self.parameter_name}: {e}")
            raise


class HistoryStoreFactory:
    """Factory to initialize the history store for a backend name."""

    @staticmethod
    def create(backend: str, cluster: str, service_name: str, settings=None, client=None) -> DeploymentHistoryStore:
        settings = settings or get_settings()

        backend = (backend or settings.history_backend).strip().upper()

        if backend == "SSM":
            client = client or get_ssm_client()
            logger.info(f"Creating {backend} history store for {cluster}.{service_name}")
            return SSMHistoryStore(
                client,
                cluster,
                service_name,
                limit=settings.history_limit,
                prefix=settings.history_parameter_prefix,
            )

        raise ValidationError(f"Invalid history backend: {backend}. Choose from {list(HISTORY_BACKENDS)}")

