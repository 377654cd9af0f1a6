"""Error taxonomy shared by every shipctl workflow.

botocore ``ClientError``/``BotoCoreError`` are never wrapped in these; they
propagate as raised by boto3.
"""


class ShipctlError(Exception):
    """Base class for all shipctl errors."""


class ValidationError(ShipctlError):
    """Missing or malformed input, detected before any network call."""


class ConfigurationError(ShipctlError):
    """Environment configuration is incomplete (e.g. no AWS region)."""


class NotFoundError(ShipctlError):
    """A service, task definition, image or history record does not exist."""


class StateNotFoundError(NotFoundError):
    """No pending history record matches the requested revision."""


class ConflictError(ShipctlError):
    """The requested change overlaps with existing state."""


class DuplicateRevisionError(ConflictError):
    """The revision is already present in the deployment history."""


class RemoteError(ShipctlError):
    """ECS answered successfully but reported failures in the response."""

    def __init__(self, message: str, reasons=None):
        self.reasons = list(reasons or [])
        if self.reasons:
            message = message + "\n" + "".join(f"    {r}\n" for r in self.reasons)
        super().__init__(message)


class LaunchError(RemoteError):
    """run_task reported capacity or placement failures."""


class GuardError(ShipctlError):
    """A precondition for rollback is not met."""
