"""
Migration status: does an instance run the designated image?
"""
import logging
from typing import Callable, List, Optional

from .models import ImageDetails, MigrationStatus
from .platform import PlatformInspector
from ..core.exceptions import (
    ImageNotFound,
    InstanceNotFound,
    ProviderCallFailed,
    ProviderError,
    ValidationError,
)
from ..providers.base import ComputeProvider
from ..providers.models import TAG_MIGRATE, TAG_OS, ImageRecord, InstanceRecord


logger = logging.getLogger(__name__)

LATEST_VALUE = "latest"
OUTDATED_VALUE = "outdated"


class StatusReporter:
    """Compares instances against an explicitly designated image.

    "Latest" is whatever image the caller names, or the image tagged
    ``ami-migrate=latest``. Creation dates only break ties between tagged
    images.
    """

    def __init__(
        self,
        provider: ComputeProvider,
        platform_inspector: Optional[Callable[[InstanceRecord], str]] = None,
    ):
        self.provider = provider
        self.platform_inspector = platform_inspector or PlatformInspector(provider)

    def check_migration_status(self, instance_id: str, designated_image_id: str) -> MigrationStatus:
        """Report whether ``instance_id`` needs migrating to ``designated_image_id``.

        Raises:
            ValidationError: If either id is empty
            InstanceNotFound: If the instance does not exist
            ImageNotFound: If the designated image does not exist
        """
        if not instance_id:
            raise ValidationError("instance id is required")
        if not designated_image_id:
            raise ValidationError("designated image id is required")

        instance = self._describe(instance_id, self.provider.get_instance)
        if instance is None:
            raise InstanceNotFound(instance_id)

        latest = self._describe(designated_image_id, self.provider.get_image)
        if latest is None:
            raise ImageNotFound(designated_image_id)

        current = self._describe(instance.image_id, self.provider.get_image) if instance.image_id else None
        if current is None:
            logger.warning(f"Current image {instance.image_id} of {instance_id} no longer resolves")

        needs_migrate = instance.image_id != latest.image_id
        logger.info(
            f"Instance {instance_id} runs {instance.image_id}, designated {latest.image_id}: "
            f"needs_migrate={needs_migrate}"
        )

        return MigrationStatus(
            instance_id=instance.instance_id,
            instance_type=instance.instance_type,
            state=instance.state,
            os=self.platform_inspector(instance),
            current_image=self._details(instance.image_id, current),
            latest_image=self._details(latest.image_id, latest),
            needs_migrate=needs_migrate,
            launch_time=instance.launch_time,
            private_ip=instance.private_ip,
            public_ip=instance.public_ip,
        )

    def find_latest_image(self, os_name: Optional[str] = None) -> ImageRecord:
        """Image tagged ``ami-migrate=latest``, optionally also ``OS=<os_name>``.

        When several images carry the tags, the most recently created wins.

        Raises:
            ImageNotFound: If no image carries the tags
        """
        filters = {f"tag:{TAG_MIGRATE}": [LATEST_VALUE]}
        if os_name:
            filters[f"tag:{TAG_OS}"] = [os_name]
        scope = f" for OS {os_name}" if os_name else ""

        images = self.provider.find_images(filters)
        if not images:
            raise ImageNotFound(
                os_name or LATEST_VALUE,
                message=f"no AMI tagged {TAG_MIGRATE}={LATEST_VALUE}{scope}",
            )

        latest = max(images, key=lambda image: image.creation_date or "")
        if len(images) > 1:
            logger.warning(f"{len(images)} images tagged latest{scope}; using newest {latest.image_id}")
        return latest

    def mark_latest_image(self, image_id: str, name_prefix: Optional[str] = None) -> List[str]:
        """Designate ``image_id`` as latest, re-tagging previous latest images outdated.

        Args:
            image_id: Image to designate
            name_prefix: Restrict re-tagging to images whose name starts with this

        Returns:
            Ids of the images that were re-tagged outdated
        """
        if self._describe(image_id, self.provider.get_image) is None:
            raise ImageNotFound(image_id)

        filters = {f"tag:{TAG_MIGRATE}": [LATEST_VALUE]}
        if name_prefix:
            filters["name"] = [f"{name_prefix}*"]

        outdated = []
        for image in self.provider.find_images(filters):
            if image.image_id == image_id:
                continue
            self._tag(image.image_id, {TAG_MIGRATE: OUTDATED_VALUE})
            outdated.append(image.image_id)

        self._tag(image_id, {TAG_MIGRATE: LATEST_VALUE})
        logger.info(f"Marked {image_id} latest; {len(outdated)} image(s) now outdated")
        return outdated

    def _describe(self, resource_id: str, getter):
        try:
            return getter(resource_id)
        except ProviderError as e:
            if e.is_not_found:
                return None
            raise ProviderCallFailed(f"describe {resource_id} failed: {e.message}", step='describe', cause=e) from e

    def _tag(self, resource_id: str, tags) -> None:
        try:
            self.provider.tag_resource(resource_id, tags)
        except ProviderError as e:
            raise ProviderCallFailed(f"tagging {resource_id} failed: {e.message}", step='tag', cause=e) from e

    @staticmethod
    def _details(image_id: str, image: Optional[ImageRecord]) -> ImageDetails:
        if image is None:
            return ImageDetails(image_id=image_id)
        return ImageDetails(image_id=image.image_id, name=image.name, creation_date=image.creation_date)


def render_status(status: MigrationStatus) -> str:
    """Human readable rendering of a MigrationStatus."""
    lines = [
        f"Instance Status for {status.instance_id}:",
        f"  OS Type:        {status.os}",
        f"  Instance Type:  {status.instance_type}",
        f"  State:          {status.state}",
    ]
    if status.launch_time is not None:
        lines.append(f"  Launch Time:    {status.launch_time.isoformat()}")
    if status.private_ip:
        lines.append(f"  Private IP:     {status.private_ip}")
    if status.public_ip:
        lines.append(f"  Public IP:      {status.public_ip}")

    lines.append("")
    lines.append("AMI Status:")
    for label, details in (("Current AMI", status.current_image), ("Latest AMI", status.latest_image)):
        lines.append(f"  {label + ':':<16}{details.image_id}")
        if details.name:
            lines.append(f"    Name:         {details.name}")
        if details.creation_date:
            lines.append(f"    Created:      {details.creation_date}")

    lines.append("")
    lines.append(f"Migration Needed: {'yes' if status.needs_migrate else 'no'}")
    if status.needs_migrate:
        lines.append("")
        lines.append(
            f"Run 'ami-migrate migrate --instance-id {status.instance_id} "
            f"--new-ami {status.latest_image.image_id}' to update this instance."
        )
    return "\n".join(lines)
