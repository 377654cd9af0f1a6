"""Task definition revision resolution."""
import re

from shipctl.exceptions import ValidationError

REVISION_SUFFIX_PATTERN = re.compile(r"(.*):[1-9][0-9]*$")


def specify_revision(revision: int, arn: str) -> str:
    """Point ``arn`` at an explicit task definition revision.

    A revision of zero or less means "use as given" and returns ``arn``
    unchanged. Otherwise the trailing ``:<number>`` of the ARN is replaced by
    ``:<revision>``; ARNs without a numeric suffix are rejected.
    """
    if revision <= 0:
        return arn

    match = REVISION_SUFFIX_PATTERN.match(arn)
    if match is None:
        raise ValidationError(f"{arn} has no revision suffix, cannot select revision {revision}")

    return f"{match.group(1)}:{revision}"


def revision_of(arn: str) -> int:
    """Return the numeric revision carried by ``arn``."""
    if REVISION_SUFFIX_PATTERN.match(arn) is None:
        raise ValidationError(f"{arn} has no revision suffix")
    return int(arn.rsplit(":", 1)[1])
