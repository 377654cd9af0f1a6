"""Deployment history records and their persistence."""
from shipctl.state.models import DeploymentRecord, DeploymentStatus
from shipctl.state.history import DeploymentHistoryStore, HistoryStoreFactory, SSMHistoryStore

__all__ = [
    "DeploymentRecord",
    "DeploymentStatus",
    "DeploymentHistoryStore",
    "HistoryStoreFactory",
    "SSMHistoryStore",
]
