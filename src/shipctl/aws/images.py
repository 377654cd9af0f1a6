"""
ECR image promotion.

Purpose: give every deployment a unique, immutable image identity without
rebuilding. The manifest currently behind a base tag is read from ECR and put
back under the deployment-unique tag, so only the tag pointer moves.

Main pieces: ImageReference (parsed image string with the managed-registry
check), ImagePromoter (retags every managed container image of a task
definition) and parse_image_selectors (``--image repo:tag`` option values).
"""
import re
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Iterable, Tuple

from botocore.exceptions import ClientError

from shipctl.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# <account>.dkr.ecr.<region>.amazonaws.com (and the China/FIPS variants)
MANAGED_REGISTRY_PATTERN = re.compile(
    r"^[0-9]{12}\.dkr\.ecr(-fips)?\.[a-z0-9-]+\.amazonaws\.com(\.cn)?$"
)

IMAGE_PATTERN = re.compile(
    r"^(?P<name>[^:@\s]+(?::[0-9]+/[^:@\s]+)?)"
    r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
    r"(?:@(?P<digest>[A-Za-z][A-Za-z0-9+._-]*:[0-9a-fA-F]{32,}))?$"
)

DEFAULT_TAG = "latest"

ACCEPTED_MEDIA_TYPES = [
    "application/vnd.docker.distribution.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
]


@dataclass(frozen=True)
class ImageReference:
    """A container image reference split into its registry parts."""
    registry_host: str
    repository_name: str
    name: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def is_managed(self) -> bool:
        """True when the image lives in ECR and can therefore be retagged."""
        return bool(MANAGED_REGISTRY_PATTERN.match(self.registry_host))

    @property
    def registry_id(self) -> Optional[str]:
        """Account ID owning the ECR registry, None for other registries."""
        if not self.is_managed:
            return None
        return self.registry_host.split(".", 1)[0]

    def with_tag(self, tag: str) -> str:
        return f"{self.name}:{tag}"


def parse_image(image: str) -> ImageReference:
    """Parse ``[host[:port]/]repository[:tag][@digest]``."""
    match = IMAGE_PATTERN.match(image or "")
    if match is None:
        raise ValidationError(f"invalid image reference: {image!r}")

    name = match.group("name")
    tag = match.group("tag")
    digest = match.group("digest")
    if tag is None and digest is None:
        tag = DEFAULT_TAG

    host, _, remainder = name.partition("/")
    if remainder and ("." in host or ":" in host or host == "localhost"):
        registry_host, repository_name = host, remainder
    else:
        # Docker Hub style reference, no registry host
        registry_host, repository_name = "", name

    return ImageReference(
        registry_host=registry_host,
        repository_name=repository_name,
        name=name,
        tag=tag,
        digest=digest,
    )


def parse_image_selectors(selectors: Iterable[str]) -> Dict[str, str]:
    """Turn ``repo:tag`` option values into a repository -> base tag map."""
    result = {}
    for selector in selectors or ():
        repository, sep, tag = selector.rpartition(":")
        if not sep or not repository or not tag or "/" in tag:
            raise ValidationError(f"--image expects <repository>:<tag>, got {selector!r}")
        # A full ECR image name selects the same repository as its bare path
        result[parse_image(selector).repository_name] = tag
    return result


def eligible_containers(task_definition: Dict[str, Any],
                        first_container_only: bool = False) -> List[Dict[str, Any]]:
    """Container definitions considered for promotion and mutation."""
    containers = list(task_definition.get('containerDefinitions', []))
    if first_container_only:
        if len(containers) > 1:
            raise ValidationError("multiple container is not supported")
        return containers[:1]
    return containers


class ImagePromoter:
    """Retags ECR images of a task definition under a deployment-unique tag."""

    def __init__(self, ecr_client, first_container_only: bool = False):
        self.ecr_client = ecr_client
        self.first_container_only = first_container_only

    def promote(self, task_definition: Dict[str, Any], unique_id: str,
                base_tag: str = DEFAULT_TAG,
                selectors: Optional[Dict[str, str]] = None) -> List[ImageReference]:
        """Retag every managed container image with ``unique_id``.

        The source tag is the selector for the image's repository when one is
        given, ``base_tag`` otherwise. Images are promoted one after the other;
        the first failure propagates and aborts the deployment.

        Returns:
            References of the promoted images, pointing at ``unique_id``
        """
        selectors = selectors or {}
        promoted = []
        seen: set = set()

        for container in eligible_containers(task_definition, self.first_container_only):
            ref = parse_image(container['image'])
            if not ref.is_managed:
                logger.info(f"Skipping unmanaged image {container['image']} ({container.get('name')})")
                continue

            source_tag = selectors.get(ref.repository_name, base_tag)
            key: Tuple[str, str, str] = (ref.registry_host, ref.repository_name, source_tag)
            if key not in seen:
                self.retag(ref.repository_name, source_tag, unique_id, registry_id=ref.registry_id)
                seen.add(key)

            promoted.append(parse_image(ref.with_tag(unique_id)))

        return promoted

    def retag(self, repository_name: str, from_tag: str, to_tag: str,
              registry_id: Optional[str] = None) -> None:
        """Copy the manifest behind ``from_tag`` to ``to_tag``.

        ``registry_id`` addresses a registry other than the caller's default
        one, e.g. an image owned by another account.
        """
        registry = {'registryId': registry_id} if registry_id else {}
        try:
            response = self.ecr_client.batch_get_image(
                repositoryName=repository_name,
                imageIds=[{'imageTag': from_tag}],
                acceptedMediaTypes=ACCEPTED_MEDIA_TYPES,
                **registry
            )
        except ClientError as e:
            logger.error(f"Failed to read image {repository_name}:{from_tag}: {e}")
            raise

        images = response.get('images', [])
        if not images:
            reasons = [
                f"{f.get('failureCode', 'Unknown')}: {f.get('failureReason', '')}"
                for f in response.get('failures', [])
            ]
            detail = f" ({'; '.join(reasons)})" if reasons else ""
            raise NotFoundError(f"image {repository_name}:{from_tag} is not found{detail}")

        image = images[0]
        put_kwargs = {
            **registry,
            'repositoryName': repository_name,
            'imageManifest': image['imageManifest'],
            'imageTag': to_tag,
        }
        if image.get('imageManifestMediaType'):
            put_kwargs['imageManifestMediaType'] = image['imageManifestMediaType']

        try:
            self.ecr_client.put_image(**put_kwargs)
        except ClientError as e:
            logger.error(f"Failed to tag image {repository_name}:{from_tag} as {to_tag}: {e}")
            raise

        logger.info(f"Promoted image {repository_name}:{from_tag} -> {to_tag}")
