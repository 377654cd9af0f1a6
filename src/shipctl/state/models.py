"""
Deployment history records.

Records are stored as a JSON array, oldest first, with the status stored as
an integer code so blobs written by earlier releases stay readable.
"""
from dataclasses import dataclass, asdict
from enum import IntEnum
from typing import Dict, Any


class DeploymentStatus(IntEnum):
    """Status of a deployment attempt."""
    UNKNOWN = 0
    PENDING = 1
    DEPLOYED = 2


@dataclass
class DeploymentRecord:
    """One deployment attempt of a service."""
    revision: int
    status: DeploymentStatus = DeploymentStatus.PENDING
    cause: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = int(self.status)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        status = data.get("status", DeploymentStatus.UNKNOWN)
        try:
            status = DeploymentStatus(status)
        except ValueError:
            status = DeploymentStatus.UNKNOWN
        return cls(
            revision=int(data["revision"]),
            status=status,
            cause=data.get("cause", ""),
        )
